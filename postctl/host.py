from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def current_time() -> str:
    return datetime.now().strftime(DATE_FORMAT)


class HostError(Exception):
    """Raised by a host when it rejects a post operation."""


@dataclass(frozen=True)
class PostTypeInfo:
    name: str
    label: str
    hierarchical: bool = False


class PostHost(Protocol):
    """Capabilities the post commands need from the content store."""

    def create_post(self, fields: Mapping[str, Any], strict: bool = True) -> int: ...

    def update_post(self, fields: Mapping[str, Any]) -> bool: ...

    def delete_post(self, post_id: int, force: bool = False) -> bool: ...

    def query_posts(
        self,
        *,
        post_type: str | None = None,
        post_author: Any = None,
        post_status: str | None = None,
        limit: int = -1,
    ) -> list[int]: ...

    def resolve_user(self, login: str) -> int | None: ...

    def post_type_info(self, name: str) -> PostTypeInfo | None: ...

    def count_posts(self, post_type: str) -> int: ...

    def bulk_insert(self, fields: Mapping[str, Any]) -> int: ...

    def close(self) -> None: ...
