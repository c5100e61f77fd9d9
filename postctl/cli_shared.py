from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Any

from rich.console import Console
from rich.markup import escape


class PostCtlError(Exception):
    pass


class UsageError(PostCtlError):
    pass


class OpError(PostCtlError):
    pass


POSTCTL_DB = "POSTCTL_DB"
POSTCTL_QUIET = "POSTCTL_QUIET"
DEFAULT_DB_PATH = ".postctl/site.sqlite"


_ERROR_CONSOLE = Console(stderr=True)


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {escape(msg)}", highlight=False)


def _success(msg: str) -> None:
    sys.stdout.write(f"Success: {msg}\n")


def _line(msg: Any) -> None:
    sys.stdout.write(f"{msg}\n")


@dataclass(frozen=True)
class GlobalOpts:
    db_path: str
    quiet: bool = False


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _truthy(raw: str | None) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def _numeric_arg(raw: Any, name: str) -> int:
    s = str(raw if raw is not None else "").strip()
    if not (s.isascii() and s.isdigit()):
        raise UsageError(f"{name} must be numeric.")
    return int(s)


def _parse_assoc_args(tokens: list[str] | None) -> dict[str, Any]:
    """Parse free-form ``--key=value`` / ``--key value`` / ``--flag`` tokens.

    Values stay strings; a bare flag maps to ``True``. Later keys win.
    """
    out: dict[str, Any] = {}
    items = list(tokens or [])
    i = 0
    while i < len(items):
        tok = str(items[i])
        if not tok.startswith("--") or tok == "--":
            raise UsageError(f"unexpected argument: {tok!r}")
        body = tok[2:]
        if "=" in body:
            key, value = body.split("=", 1)
        elif i + 1 < len(items) and not str(items[i + 1]).startswith("--"):
            key, value = body, str(items[i + 1])
            i += 1
        else:
            key, value = body, True
        key = key.strip()
        if not key:
            raise UsageError(f"invalid field argument: {tok!r}")
        out[key] = value
        i += 1
    return out
