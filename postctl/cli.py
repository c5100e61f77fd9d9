from __future__ import annotations

import argparse
import contextlib
import io
import os
import sys
from typing import Any

import click
import typer
from dotenv import load_dotenv

from . import __version__
from .cli_shared import (
    DEFAULT_DB_PATH,
    POSTCTL_DB,
    POSTCTL_QUIET,
    GlobalOpts,
    OpError,
    UsageError,
    _eprint,
    _env_or_none,
    _parse_assoc_args,
    _rich_error,
    _truthy,
)
from .post_commands import (
    cmd_post_create,
    cmd_post_delete,
    cmd_post_delete_many,
    cmd_post_generate,
    cmd_post_update,
)

_FIELD_ARGS = {"allow_extra_args": True, "ignore_unknown_options": True}


def _bootstrap_env() -> None:
    # Discover and load .env without overriding already-exported values.
    load_dotenv()


def _namespace(**kwargs: Any) -> argparse.Namespace:
    return argparse.Namespace(**kwargs)


def _apply_global_env(args: argparse.Namespace) -> GlobalOpts:
    db_path = (getattr(args, "db", None) or "").strip() or _env_or_none(POSTCTL_DB) or DEFAULT_DB_PATH
    quiet = bool(getattr(args, "quiet", False)) or _truthy(os.environ.get(POSTCTL_QUIET))
    return GlobalOpts(db_path=db_path, quiet=quiet)


def _root_help_text(*, root_app: typer.Typer, prog_name: str) -> str:
    buf = io.StringIO()
    try:
        with contextlib.redirect_stdout(buf):
            try:
                root_app(args=["--help"], prog_name=prog_name, standalone_mode=False)
            except (typer.Exit, click.ClickException):
                pass
    except Exception:
        return ""
    return str(buf.getvalue() or "").strip()


def _render_usage_error_with_help(
    *,
    message: str,
    ctx: click.Context | None = None,
    fallback_help: str = "",
) -> None:
    _rich_error(message)
    help_text = ""
    if isinstance(ctx, click.Context):
        try:
            help_text = str(ctx.get_help() or "").strip()
        except Exception:
            help_text = ""
    if not help_text:
        help_text = str(fallback_help or "").strip()
    if help_text:
        _eprint("")
        _eprint(help_text)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"postctl {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name="postctl",
    help="Manage posts in a content store from the command line.",
    no_args_is_help=True,
    add_completion=False,
)

post_app = typer.Typer(help="Create, update, delete and generate posts", no_args_is_help=True)

app.add_typer(post_app, name="post")


@app.callback()
def app_callback(
    ctx: typer.Context,
    db: str | None = typer.Option(
        None,
        "--db",
        help=f"SQLite database path (default: {DEFAULT_DB_PATH}; env override: {POSTCTL_DB})",
    ),
    quiet: bool = typer.Option(False, "--quiet", help="Hide progress output"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    ctx.obj = {"g": _apply_global_env(_namespace(db=db, quiet=quiet))}


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    root = ctx.find_root()
    for obj in (ctx.obj, root.obj):
        if isinstance(obj, dict) and isinstance(obj.get("g"), GlobalOpts):
            return obj["g"]
    return _apply_global_env(_namespace(db=None, quiet=False))


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = _namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


def _fields_from_ctx(ctx: typer.Context) -> dict[str, Any]:
    try:
        return _parse_assoc_args(list(ctx.args))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)


@post_app.command(
    "create",
    context_settings=_FIELD_ARGS,
    help="Create a post from --<field>=<value> pairs (e.g. --post_title='Hello' --post_status=publish).",
)
def post_create(
    ctx: typer.Context,
    porcelain: bool = typer.Option(False, "--porcelain", help="Print only the new post ID"),
) -> None:
    _invoke(ctx, cmd_post_create, fields=_fields_from_ctx(ctx), porcelain=porcelain)


@post_app.command(
    "update",
    context_settings=_FIELD_ARGS,
    help="Update fields of an existing post from --<field>=<value> pairs.",
)
def post_update(
    ctx: typer.Context,
    post_id: str = typer.Argument(..., metavar="ID", help="Post ID"),
) -> None:
    _invoke(ctx, cmd_post_update, post_id=post_id, fields=_fields_from_ctx(ctx))


@post_app.command("delete", help="Trash a post by ID, or delete it permanently with --force.")
def post_delete(
    ctx: typer.Context,
    post_id: str = typer.Argument(..., metavar="ID", help="Post ID"),
    force: bool = typer.Option(False, "--force", help="Skip the trash and delete permanently"),
) -> None:
    _invoke(ctx, cmd_post_delete, post_id=post_id, force=force)


@post_app.command("delete-many", help="Trash or delete every post matching the given filters.")
def post_delete_many(
    ctx: typer.Context,
    post_type: str | None = typer.Option(None, "--post_type", help="Post type (default: post; 'any' for all)"),
    post_author: str | None = typer.Option(None, "--post_author", help="Author user ID, or a login present in the users table of --db"),
    post_status: str | None = typer.Option(None, "--post_status", help="Post status (default: publish; 'any' for all but trash)"),
    force: bool = typer.Option(False, "--force", help="Skip the trash and delete permanently"),
) -> None:
    _invoke(
        ctx,
        cmd_post_delete_many,
        post_type=post_type,
        post_author=post_author,
        post_status=post_status,
        force=force,
    )


@post_app.command("generate", help="Generate placeholder posts quickly, skipping normal validation.")
def post_generate(
    ctx: typer.Context,
    count: int = typer.Option(100, "--count", help="Number of posts to generate"),
    post_type: str = typer.Option("post", "--post_type", help="Registered post type"),
    post_status: str = typer.Option("publish", "--post_status", help="Status for generated posts"),
    post_author: str | None = typer.Option(
        None,
        "--post_author",
        help="Author login, resolved against the users table of --db (postctl never adds users; an unknown login is stored as given)",
    ),
    post_date: str | None = typer.Option(None, "--post_date", help="Post date (default: now, YYYY-MM-DD HH:MM:SS)"),
    max_depth: int = typer.Option(1, "--max_depth", help="Maximum nesting depth for hierarchical types"),
) -> None:
    _invoke(
        ctx,
        cmd_post_generate,
        count=count,
        post_type=post_type,
        post_status=post_status,
        post_author=post_author,
        post_date=post_date,
        max_depth=max_depth,
    )


def _run_cli(*, root_app: typer.Typer, prog_name: str, argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    _bootstrap_env()
    try:
        result = root_app(args=argv, prog_name=prog_name, standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _render_usage_error_with_help(
            message=str(e),
            fallback_help=_root_help_text(root_app=root_app, prog_name=prog_name),
        )
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


def main(argv: list[str] | None = None) -> int:
    return _run_cli(root_app=app, prog_name="postctl", argv=argv)


if __name__ == "__main__":
    raise SystemExit(main())
