"""Store capability interface and error classification for chat provisioning."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Protocol, Sequence


CHATROOMS = "chatrooms"
CHATROOM_MEMBERS = "chatroom_members"
CHATROOM_ROLES = "chatroom_roles"

MEMBER_KEY = ("chatroom_id", "user_id")

# PostgREST / Postgres error codes the engine reacts to
NOT_FOUND_CODE = "PGRST116"
UNIQUE_VIOLATION_CODE = "23505"
UNDEFINED_FUNCTION_CODE = "42883"
SCHEMA_CACHE_MISS_CODE = "PGRST202"

GROUP_PROCEDURE = "create_group_chatroom"

Row = Dict[str, Any]
Filters = Dict[str, Any]


@dataclass
class StoreError(Exception):
    code: str | None
    message: str
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}" if self.code else self.message


class ChatStore(Protocol):
    def select_one(self, table: str, filters: Filters) -> Row | None:
        ...

    def select(self, table: str, filters: Filters, columns: Sequence[str] | None = None) -> List[Row]:
        ...

    def insert(self, table: str, rows: Iterable[Row]) -> None:
        ...

    def upsert(self, table: str, rows: Iterable[Row], on_conflict: Sequence[str]) -> None:
        ...

    def delete(self, table: str, filters: Filters) -> None:
        ...

    def rpc(self, name: str, params: dict) -> Any:
        ...


def _code(error: Any) -> str | None:
    code = getattr(error, "code", None)
    return code if isinstance(code, str) else None


def is_not_found(error: Any) -> bool:
    return _code(error) == NOT_FOUND_CODE


def is_unique_violation(error: Any) -> bool:
    return _code(error) == UNIQUE_VIOLATION_CODE


def is_missing_procedure(error: Any) -> bool:
    """True when the group procedure is absent or not yet in the schema cache."""
    if error is None:
        return False
    if _code(error) in (UNDEFINED_FUNCTION_CODE, SCHEMA_CACHE_MISS_CODE):
        return True
    message = getattr(error, "message", None)
    if not isinstance(message, str):
        return False
    message = message.lower()
    return GROUP_PROCEDURE in message or "schema cache" in message
