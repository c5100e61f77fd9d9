"""Command-line post management.

The command surface is implemented with Typer and Rich; the content store
behind it is an injected host (SQLite by default).
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
