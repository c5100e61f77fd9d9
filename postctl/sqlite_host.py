"""
SQLite-backed content store used by the ``postctl`` CLI.

Implements the :class:`postctl.host.PostHost` capabilities: strict post
creation, updates, trash/purge deletion, filtered ID queries, user login
lookup, post type metadata and a raw bulk insert that skips validation.
"""

from __future__ import annotations

import functools
import re
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, TypeVar

from .host import DATE_FORMAT, HostError, PostTypeInfo, current_time

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    ID INTEGER PRIMARY KEY AUTOINCREMENT,
    user_login TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS posts (
    ID INTEGER PRIMARY KEY AUTOINCREMENT,
    post_author INTEGER NOT NULL DEFAULT 0,
    post_date TEXT NOT NULL,
    post_title TEXT NOT NULL DEFAULT '',
    post_content TEXT NOT NULL DEFAULT '',
    post_excerpt TEXT NOT NULL DEFAULT '',
    post_status TEXT NOT NULL DEFAULT 'draft',
    post_name TEXT NOT NULL DEFAULT '',
    post_parent INTEGER NOT NULL DEFAULT 0,
    post_type TEXT NOT NULL DEFAULT 'post',
    trash_meta_status TEXT
);

CREATE INDEX IF NOT EXISTS posts_type_status_date ON posts (post_type, post_status, post_date, ID);
CREATE INDEX IF NOT EXISTS posts_parent ON posts (post_parent);
"""

POST_FIELDS = (
    "post_author",
    "post_date",
    "post_title",
    "post_content",
    "post_excerpt",
    "post_status",
    "post_name",
    "post_parent",
    "post_type",
)

POST_STATUSES = frozenset(
    {"publish", "future", "draft", "pending", "private", "trash", "auto-draft", "inherit"}
)

DEFAULT_POST_TYPES = (
    PostTypeInfo(name="post", label="Post", hierarchical=False),
    PostTypeInfo(name="page", label="Page", hierarchical=True),
    PostTypeInfo(name="attachment", label="Media", hierarchical=False),
)

# Only these types go to the trash on a non-forced delete.
TRASHABLE_TYPES = frozenset({"post", "page"})

_DATE_INPUT_FORMATS = (DATE_FORMAT, "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

_F = TypeVar("_F", bound=Callable[..., Any])


def _db_errors(func: _F) -> _F:
    """Re-raise SQLite failures as HostError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            raise HostError(f"database error: {e}") from e

    return wrapper  # type: ignore[return-value]


def sanitize_title(title: str) -> str:
    return _SLUG_RE.sub("-", str(title or "").lower()).strip("-")


def _parse_date(raw: Any) -> str:
    s = str(raw or "").strip()
    for fmt in _DATE_INPUT_FORMATS:
        try:
            return datetime.strptime(s, fmt).strftime(DATE_FORMAT)
        except ValueError:
            continue
    raise HostError(f"Invalid date: {s!r}.")


def _non_negative_int(raw: Any, field: str) -> int:
    if isinstance(raw, bool):
        raise HostError(f"Invalid {field}: {raw!r}.")
    s = str(raw).strip()
    if not (s.isascii() and s.isdigit()):
        raise HostError(f"Invalid {field}: {raw!r}.")
    return int(s)


class SqliteHost:
    def __init__(
        self,
        db_path: str | Path,
        *,
        post_types: Iterable[PostTypeInfo] = DEFAULT_POST_TYPES,
    ) -> None:
        self.db_path = str(db_path)
        self._post_types = {pt.name: pt for pt in post_types}
        self._db: sqlite3.Connection | None = None

    @property
    def db(self) -> sqlite3.Connection:
        if self._db is None:
            try:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.db_path)
                conn.row_factory = sqlite3.Row
                conn.executescript(SCHEMA)
                conn.commit()
            except (OSError, sqlite3.Error) as e:
                raise HostError(f"cannot open database {self.db_path!r}: {e}") from e
            self._db = conn
        return self._db

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def __enter__(self) -> "SqliteHost":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- users -----------------------------------------------------------

    @_db_errors
    def add_user(self, login: str) -> int:
        cur = self.db.execute("INSERT INTO users (user_login) VALUES (?)", (login,))
        self.db.commit()
        return int(cur.lastrowid)

    @_db_errors
    def resolve_user(self, login: str) -> int | None:
        row = self.db.execute("SELECT ID FROM users WHERE user_login = ?", (login,)).fetchone()
        return int(row["ID"]) if row else None

    # -- post types ------------------------------------------------------

    def post_type_info(self, name: str) -> PostTypeInfo | None:
        return self._post_types.get(name)

    @_db_errors
    def count_posts(self, post_type: str) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) AS n FROM posts WHERE post_type = ?", (post_type,)
        ).fetchone()
        return int(row["n"])

    # -- reads -----------------------------------------------------------

    @_db_errors
    def get_post(self, post_id: int) -> dict[str, Any] | None:
        row = self.db.execute("SELECT * FROM posts WHERE ID = ?", (post_id,)).fetchone()
        return dict(row) if row else None

    @_db_errors
    def query_posts(
        self,
        *,
        post_type: str | None = None,
        post_author: Any = None,
        post_status: str | None = None,
        limit: int = -1,
    ) -> list[int]:
        """Return matching post IDs, newest first.

        Unset ``post_type`` means ``post`` and unset ``post_status`` means
        ``publish``. ``any`` matches every type, or every status but trash.
        ``post_author`` accepts a user ID or a login; an unknown login
        matches nothing.
        """
        where: list[str] = []
        params: list[Any] = []

        ptype = post_type or "post"
        if ptype != "any":
            where.append("post_type = ?")
            params.append(ptype)

        status = post_status or "publish"
        if status == "any":
            where.append("post_status NOT IN ('trash', 'auto-draft')")
        else:
            where.append("post_status = ?")
            params.append(status)

        if post_author not in (None, ""):
            author = str(post_author).strip()
            if author.isascii() and author.isdigit():
                author_id: int | None = int(author)
            else:
                author_id = self.resolve_user(author)
            if author_id is None:
                return []
            where.append("post_author = ?")
            params.append(author_id)

        sql = "SELECT ID FROM posts WHERE " + " AND ".join(where) + " ORDER BY post_date DESC, ID DESC"
        if limit is not None and int(limit) >= 0:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [int(r["ID"]) for r in self.db.execute(sql, params).fetchall()]

    # -- writes ----------------------------------------------------------

    def _normalize(self, fields: Mapping[str, Any], *, post_id: int | None = None) -> dict[str, Any]:
        unknown = sorted(k for k in fields if k not in POST_FIELDS)
        if unknown:
            raise HostError(f"Unknown post field(s): {', '.join(unknown)}.")

        out: dict[str, Any] = {}
        for key, val in fields.items():
            if key == "post_type":
                if self.post_type_info(str(val)) is None:
                    raise HostError(f"Invalid post type: {val!r}.")
                out[key] = str(val)
            elif key == "post_status":
                if str(val) not in POST_STATUSES:
                    raise HostError(f"Invalid post status: {val!r}.")
                out[key] = str(val)
            elif key == "post_author":
                author = _non_negative_int(val, key)
                if author and not self.db.execute("SELECT 1 FROM users WHERE ID = ?", (author,)).fetchone():
                    raise HostError(f"Invalid author ID: {author}.")
                out[key] = author
            elif key == "post_parent":
                parent = _non_negative_int(val, key)
                if parent:
                    self._check_parent(parent, post_id=post_id)
                out[key] = parent
            elif key == "post_date":
                out[key] = _parse_date(val)
            else:
                out[key] = str(val)
        return out

    def _check_parent(self, parent: int, *, post_id: int | None) -> None:
        seen: set[int] = set()
        cur = parent
        while cur:
            if post_id is not None and cur == post_id:
                raise HostError(f"Invalid parent: {parent} would create a cycle.")
            if cur in seen:
                break
            seen.add(cur)
            row = self.db.execute("SELECT post_parent FROM posts WHERE ID = ?", (cur,)).fetchone()
            if row is None:
                if cur == parent:
                    raise HostError(f"Invalid parent ID: {parent}.")
                break
            cur = int(row["post_parent"])

    def _unique_slug(self, slug: str, post_type: str, *, exclude_id: int = 0) -> str:
        candidate = slug
        n = 2
        while self.db.execute(
            "SELECT 1 FROM posts WHERE post_name = ? AND post_type = ? AND ID != ?",
            (candidate, post_type, exclude_id),
        ).fetchone():
            candidate = f"{slug}-{n}"
            n += 1
        return candidate

    @_db_errors
    def create_post(self, fields: Mapping[str, Any], strict: bool = True) -> int:
        try:
            data = self._normalize(fields)
            if not any(str(data.get(k) or "").strip() for k in ("post_title", "post_content", "post_excerpt")):
                raise HostError("Content, title, and excerpt are empty.")
        except HostError:
            if strict:
                raise
            return 0

        data.setdefault("post_status", "draft")
        data.setdefault("post_type", "post")
        data.setdefault("post_author", 0)
        data.setdefault("post_parent", 0)
        data.setdefault("post_date", current_time())
        slug = sanitize_title(data.get("post_name") or data.get("post_title") or "")
        if slug:
            data["post_name"] = self._unique_slug(slug, data["post_type"])
        return self.bulk_insert(data)

    @_db_errors
    def update_post(self, fields: Mapping[str, Any]) -> bool:
        changes = dict(fields)
        try:
            post_id = _non_negative_int(changes.pop("ID", ""), "ID")
        except HostError:
            return False
        current = self.get_post(post_id)
        if current is None:
            return False
        try:
            data = self._normalize(changes, post_id=post_id)
        except HostError:
            return False
        if "post_name" in data:
            slug = sanitize_title(data["post_name"])
            ptype = data.get("post_type", current["post_type"])
            data["post_name"] = self._unique_slug(slug, ptype, exclude_id=post_id) if slug else ""
        if not data:
            return True
        cols = ", ".join(f"{k} = ?" for k in data)
        self.db.execute(f"UPDATE posts SET {cols} WHERE ID = ?", [*data.values(), post_id])
        self.db.commit()
        return True

    @_db_errors
    def delete_post(self, post_id: int, force: bool = False) -> bool:
        post = self.get_post(post_id)
        if post is None:
            return False
        if not force and post["post_type"] in TRASHABLE_TYPES and post["post_status"] != "trash":
            return self.trash_post(post_id)
        self.db.execute(
            "UPDATE posts SET post_parent = ? WHERE post_parent = ? AND post_type = ?",
            (post["post_parent"], post_id, post["post_type"]),
        )
        self.db.execute("DELETE FROM posts WHERE ID = ?", (post_id,))
        self.db.commit()
        return True

    @_db_errors
    def trash_post(self, post_id: int) -> bool:
        post = self.get_post(post_id)
        if post is None or post["post_status"] == "trash":
            return False
        self.db.execute(
            "UPDATE posts SET trash_meta_status = post_status, post_status = 'trash' WHERE ID = ?",
            (post_id,),
        )
        self.db.commit()
        return True

    @_db_errors
    def untrash_post(self, post_id: int) -> bool:
        post = self.get_post(post_id)
        if post is None or post["post_status"] != "trash":
            return False
        self.db.execute(
            "UPDATE posts SET post_status = COALESCE(trash_meta_status, 'draft'), trash_meta_status = NULL WHERE ID = ?",
            (post_id,),
        )
        self.db.commit()
        return True

    @_db_errors
    def bulk_insert(self, fields: Mapping[str, Any]) -> int:
        """Insert a post row as-is, with no validation, slug handling or defaults beyond the schema."""
        row = {k: v for k, v in fields.items() if k in POST_FIELDS}
        row.setdefault("post_date", current_time())
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        cur = self.db.execute(f"INSERT INTO posts ({cols}) VALUES ({marks})", list(row.values()))
        self.db.commit()
        return int(cur.lastrowid)
