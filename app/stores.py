"""In-memory chat store for tests and local runs without a database."""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Sequence

from chat_store import (
    CHATROOM_MEMBERS,
    CHATROOM_ROLES,
    CHATROOMS,
    GROUP_PROCEDURE,
    NOT_FOUND_CODE,
    SCHEMA_CACHE_MISS_CODE,
    UNIQUE_VIOLATION_CODE,
    StoreError,
)
from linkup.ids import generate_uuid
from linkup.roles import role_row


Procedure = Callable[["InMemoryChatStore", dict], Any]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# Unique keys per table. The team key only applies to rows that carry a team_id.
_UNIQUE_KEYS: Dict[str, List[tuple]] = {
    CHATROOMS: [("id",), ("team_id",)],
    CHATROOM_MEMBERS: [("chatroom_id", "user_id")],
    CHATROOM_ROLES: [("chatroom_id", "user_id")],
}

_DEFAULTS: Dict[str, Callable[[], dict]] = {
    CHATROOMS: lambda: {"team_id": None, "recruitment_post_id": None, "name": None, "archived": False, "created_at": _now()},
    CHATROOM_MEMBERS: lambda: {"id": generate_uuid(), "joined_at": _now(), "last_read_at": _now()},
    CHATROOM_ROLES: lambda: {},
}


def _key(row: dict, columns: Sequence[str]) -> tuple | None:
    values = tuple(row.get(c) for c in columns)
    if any(v is None for v in values):
        return None
    return values


def _matches(row: dict, filters: dict) -> bool:
    return all(row.get(col) == value for col, value in filters.items())


class InMemoryChatStore:
    def __init__(self) -> None:
        self._tables: Dict[str, List[dict]] = {CHATROOMS: [], CHATROOM_MEMBERS: [], CHATROOM_ROLES: []}
        self._procedures: Dict[str, Procedure] = {}
        self._lock = threading.RLock()
        self.calls: List[tuple] = []

    def register_procedure(self, name: str, fn: Procedure) -> None:
        self._procedures[name] = fn

    def rows(self, table: str) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._tables.get(table, [])]

    def _table(self, table: str) -> List[dict]:
        if table not in self._tables:
            raise StoreError("42P01", f'relation "public.{table}" does not exist')
        return self._tables[table]

    def _conflict(self, table: str, rows: List[dict], candidate: dict) -> tuple | None:
        for columns in _UNIQUE_KEYS.get(table, []):
            key = _key(candidate, columns)
            if key is None:
                continue
            for row in rows:
                if _key(row, columns) == key:
                    return columns
        return None

    def select_one(self, table: str, filters: dict) -> dict | None:
        self.calls.append(("select_one", table))
        with self._lock:
            found = [r for r in self._table(table) if _matches(r, filters)]
            if len(found) > 1:
                raise StoreError(NOT_FOUND_CODE, "JSON object requested, multiple (or no) rows returned")
            return copy.deepcopy(found[0]) if found else None

    def select(self, table: str, filters: dict, columns: Sequence[str] | None = None) -> list[dict]:
        self.calls.append(("select", table))
        with self._lock:
            found = [r for r in self._table(table) if _matches(r, filters)]
            if columns:
                return [{c: r.get(c) for c in columns} for r in found]
            return [copy.deepcopy(r) for r in found]

    def insert(self, table: str, rows: Iterable[dict]) -> None:
        self.calls.append(("insert", table))
        with self._lock:
            existing = self._table(table)
            staged: List[dict] = []
            for row in rows:
                record = _DEFAULTS[table]()
                record.update(copy.deepcopy(row))
                columns = self._conflict(table, existing + staged, record)
                if columns is not None:
                    raise StoreError(
                        UNIQUE_VIOLATION_CODE,
                        f'duplicate key value violates unique constraint "{table}_{"_".join(columns)}_key"',
                    )
                staged.append(record)
            existing.extend(staged)

    def upsert(self, table: str, rows: Iterable[dict], on_conflict: Sequence[str]) -> None:
        self.calls.append(("upsert", table))
        with self._lock:
            existing = self._table(table)
            for row in rows:
                key = _key(row, on_conflict)
                target = next((r for r in existing if key is not None and _key(r, on_conflict) == key), None)
                if target is not None:
                    target.update(copy.deepcopy(row))
                    continue
                record = _DEFAULTS[table]()
                record.update(copy.deepcopy(row))
                existing.append(record)

    def delete(self, table: str, filters: dict) -> None:
        self.calls.append(("delete", table))
        with self._lock:
            rows = self._table(table)
            rows[:] = [r for r in rows if not _matches(r, filters)]

    def rpc(self, name: str, params: dict) -> Any:
        self.calls.append(("rpc", name))
        fn = self._procedures.get(name)
        if fn is None:
            raise StoreError(
                SCHEMA_CACHE_MISS_CODE,
                f"Could not find the function public.{name} in the schema cache",
            )
        with self._lock:
            return fn(self, copy.deepcopy(params))


def group_chatroom_procedure(caller_id: str) -> Procedure:
    """Server-side group creation as executed on behalf of ``caller_id``."""

    def _create(store: InMemoryChatStore, params: dict) -> str:
        chatroom_id = generate_uuid()
        participants = [p for p in dict.fromkeys(params.get("p_participants") or []) if p and p != caller_id]
        user_ids = [caller_id] + participants
        store.insert(
            CHATROOMS,
            [{"id": chatroom_id, "type": "group", "name": params.get("p_name") or "Group chat", "archived": False}],
        )
        store.insert(CHATROOM_MEMBERS, [{"chatroom_id": chatroom_id, "user_id": u} for u in user_ids])
        store.upsert(CHATROOM_ROLES, [role_row(chatroom_id, u, caller_id) for u in user_ids], on_conflict=("chatroom_id", "user_id"))
        return chatroom_id

    return _create


def register_default_procedures(store: InMemoryChatStore, caller_id: str | None = None) -> InMemoryChatStore:
    store.register_procedure("create_notification", lambda _store, _params: None)
    if caller_id:
        store.register_procedure(GROUP_PROCEDURE, group_chatroom_procedure(caller_id))
    return store
