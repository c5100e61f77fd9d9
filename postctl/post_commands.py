from __future__ import annotations

import argparse
import random
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Protocol

from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeRemainingColumn

from .cli_shared import (
    _ERROR_CONSOLE,
    GlobalOpts,
    OpError,
    UsageError,
    _line,
    _numeric_arg,
    _rich_error,
    _success,
)
from .host import HostError, PostHost, PostTypeInfo, current_time
from .sqlite_host import SqliteHost


class RandomSource(Protocol):
    def randint(self, a: int, b: int) -> int: ...


def build_host(g: GlobalOpts) -> PostHost:
    return SqliteHost(g.db_path)


def build_rng() -> RandomSource:
    return random.Random()


@contextmanager
def _open_host(g: GlobalOpts) -> Iterator[PostHost]:
    host = build_host(g)
    try:
        yield host
    except HostError as e:
        raise OpError(str(e)) from e
    finally:
        host.close()


def cmd_post_create(args: argparse.Namespace, g: GlobalOpts) -> int:
    fields = dict(getattr(args, "fields", None) or {})
    with _open_host(g) as host:
        post_id = host.create_post(fields, strict=True)
    if getattr(args, "porcelain", False):
        _line(post_id)
    else:
        _success(f"Created post {post_id}.")
    return 0


def cmd_post_update(args: argparse.Namespace, g: GlobalOpts) -> int:
    post_id = _numeric_arg(args.post_id, "Post ID")
    fields = dict(getattr(args, "fields", None) or {})
    if not fields:
        raise UsageError("Need some fields to update.")

    params = {**fields, "ID": post_id}
    with _open_host(g) as host:
        if not host.update_post(params):
            raise OpError(f"Failed updating post {post_id}.")
    _success(f"Updated post {post_id}.")
    return 0


def delete_posts(host: PostHost, post_ids: list[int], *, force: bool) -> list[int]:
    """Delete each post independently; return the IDs that failed."""
    action = "Deleted" if force else "Trashed"
    failed: list[int] = []
    for post_id in post_ids:
        if host.delete_post(post_id, force):
            _success(f"{action} post {post_id}.")
        else:
            _rich_error(f"Failed deleting post {post_id}.")
            failed.append(post_id)
    return failed


def cmd_post_delete(args: argparse.Namespace, g: GlobalOpts) -> int:
    post_id = _numeric_arg(args.post_id, "Post ID")
    with _open_host(g) as host:
        failed = delete_posts(host, [post_id], force=bool(getattr(args, "force", False)))
    # delete_posts already printed the per-post error.
    return 1 if failed else 0


def cmd_post_delete_many(args: argparse.Namespace, g: GlobalOpts) -> int:
    with _open_host(g) as host:
        post_ids = host.query_posts(
            post_type=getattr(args, "post_type", None),
            post_author=getattr(args, "post_author", None),
            post_status=getattr(args, "post_status", None),
            limit=-1,
        )
        if not post_ids:
            raise OpError("No posts to delete.")
        failed = delete_posts(host, list(post_ids), force=bool(getattr(args, "force", False)))
    if failed:
        raise OpError(f"Failed deleting {len(failed)} of {len(post_ids)} posts.")
    return 0


def _maybe_make_child(rng: RandomSource) -> bool:
    # 50%
    return rng.randint(1, 2) == 1


def _maybe_reset_depth(rng: RandomSource) -> bool:
    # 10%
    return rng.randint(1, 10) == 7


def next_position(
    rng: RandomSource,
    *,
    depth: int,
    parent: int,
    previous_id: int | None,
    max_depth: int,
) -> tuple[int, int]:
    """Advance the (depth, parent) walk by one post of a hierarchical type.

    Descends under the previously generated post, or resets to the root,
    or keeps the current level. ``previous_id`` is None for the first post
    of a run, which can only stay at the root.
    """
    if _maybe_make_child(rng) and depth < max_depth and previous_id is not None:
        return depth + 1, previous_id
    if _maybe_reset_depth(rng):
        return 1, 0
    return depth, parent


def _require_post_type(host: PostHost, post_type: str) -> PostTypeInfo:
    info = host.post_type_info(post_type)
    if info is None:
        raise UsageError(f"'{post_type}' is not a registered post type.")
    return info


def generate_posts(
    host: PostHost,
    *,
    count: int = 100,
    post_type: str = "post",
    post_status: str = "publish",
    post_author: str | None = None,
    post_date: str | None = None,
    max_depth: int = 1,
    rng: RandomSource | None = None,
    on_tick: Callable[[], None] | None = None,
) -> list[int]:
    """Insert ``count`` placeholder posts, bypassing host validation.

    Posts are numbered from the current total of ``post_type``. For
    hierarchical types each post may become a child of the one before it,
    up to ``max_depth`` levels. Returns the inserted IDs in order.
    """
    info = _require_post_type(host, post_type)

    author: Any = 0
    if post_author:
        # An unknown login is stored as given.
        resolved = host.resolve_user(post_author)
        author = resolved if resolved is not None else post_author

    date = post_date or current_time()
    rng = rng or build_rng()

    total = host.count_posts(post_type)
    limit = total + count

    depth = 1
    parent = 0
    post_ids: list[int] = []
    for i in range(total, limit):
        if info.hierarchical:
            depth, parent = next_position(
                rng,
                depth=depth,
                parent=parent,
                previous_id=post_ids[-1] if post_ids else None,
                max_depth=max_depth,
            )

        fields = {
            "post_type": post_type,
            "post_title": f"{info.label} {i}",
            "post_status": post_status,
            "post_author": author,
            "post_parent": parent,
            "post_name": f"post-{i}",
            "post_date": date,
        }
        post_ids.append(host.bulk_insert(fields))
        if on_tick is not None:
            on_tick()
    return post_ids


def _progress(g: GlobalOpts) -> Progress:
    return Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=_ERROR_CONSOLE,
        disable=g.quiet,
        transient=False,
    )


def cmd_post_generate(args: argparse.Namespace, g: GlobalOpts) -> int:
    count = int(getattr(args, "count", 100))
    max_depth = int(getattr(args, "max_depth", 1))
    post_type = getattr(args, "post_type", None) or "post"
    with _open_host(g) as host:
        _require_post_type(host, post_type)
        with _progress(g) as progress:
            task = progress.add_task("Generating posts", total=max(count, 0))
            generate_posts(
                host,
                count=count,
                post_type=post_type,
                post_status=getattr(args, "post_status", None) or "publish",
                post_author=getattr(args, "post_author", None),
                post_date=getattr(args, "post_date", None),
                max_depth=max_depth,
                rng=build_rng(),
                on_tick=lambda: progress.advance(task),
            )
    return 0
