"""Chatroom provisioning and membership reconciliation.

Every store call commits on its own. The functions here never assume an
ambient transaction: team rooms are repaired by re-running
``ensure_team_chatroom``, group rooms built client-side are rolled back with
best-effort compensating deletes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List

from chat_store import (
    CHATROOM_MEMBERS,
    CHATROOM_ROLES,
    CHATROOMS,
    GROUP_PROCEDURE,
    MEMBER_KEY,
    ChatStore,
    StoreError,
    is_missing_procedure,
    is_not_found,
    is_unique_violation,
)
from linkup.ids import generate_uuid
from linkup.roles import role_row


logger = logging.getLogger("linkup.chatrooms")

DEFAULT_GROUP_NAME = "Group chat"


class GroupChatroomError(RuntimeError):
    pass


def _dedupe(ids: Iterable[str] | None) -> List[str]:
    return [i for i in dict.fromkeys(ids or []) if i]


def _sanitize_participants(owner_id: str, participant_ids: Iterable[str] | None) -> List[str]:
    return [i for i in _dedupe(participant_ids) if i != owner_id]


def _trimmed_or_none(name: str | None) -> str | None:
    if not isinstance(name, str):
        return None
    return name.strip() or None


def _insert_ignoring_conflicts(store: ChatStore, table: str, rows: list[dict]) -> None:
    if not rows:
        return
    try:
        store.insert(table, rows)
        return
    except StoreError as exc:
        if not is_unique_violation(exc):
            raise
        if len(rows) == 1:
            return
    # The batch statement was rejected as a whole; place the rows one by one.
    for row in rows:
        try:
            store.insert(table, [row])
        except StoreError as exc:
            if not is_unique_violation(exc):
                raise


def find_team_chatroom(store: ChatStore, team_id: str) -> dict | None:
    try:
        return store.select_one(CHATROOMS, {"type": "team", "team_id": team_id})
    except StoreError as exc:
        if is_not_found(exc):
            return None
        raise


def cleanup_chatroom(store: ChatStore, chatroom_id: str) -> None:
    """Best-effort delete of roles, memberships and the room itself. Never raises."""
    for table, filters in (
        (CHATROOM_ROLES, {"chatroom_id": chatroom_id}),
        (CHATROOM_MEMBERS, {"chatroom_id": chatroom_id}),
        (CHATROOMS, {"id": chatroom_id}),
    ):
        try:
            store.delete(table, filters)
        except Exception as exc:
            logger.warning("chatroom_cleanup_failed chatroom_id=%s table=%s error=%s", chatroom_id, table, exc)


def reconcile_members(store: ChatStore, chatroom_id: str, member_ids: Iterable[str], owner_id: str | None) -> List[str]:
    """Add the members of ``member_ids`` that are not in the room yet.

    Additive only: existing members are never removed. Returns the ids that
    were missing before this call.
    """
    desired = _dedupe(member_ids)
    if not desired:
        return []
    current = store.select(CHATROOM_MEMBERS, {"chatroom_id": chatroom_id}, columns=["user_id"])
    present = {row.get("user_id") for row in current}
    missing = [user_id for user_id in desired if user_id not in present]
    if not missing:
        return []

    _insert_ignoring_conflicts(
        store,
        CHATROOM_MEMBERS,
        [{"chatroom_id": chatroom_id, "user_id": user_id} for user_id in missing],
    )
    store.upsert(
        CHATROOM_ROLES,
        [role_row(chatroom_id, user_id, owner_id) for user_id in missing],
        on_conflict=MEMBER_KEY,
    )
    logger.info("chatroom_members_added chatroom_id=%s count=%s", chatroom_id, len(missing))
    return missing


def _insert_team_chatroom(store: ChatStore, team_id: str, team_name: str | None) -> tuple[str, bool]:
    chatroom_id = generate_uuid()
    try:
        store.insert(
            CHATROOMS,
            [
                {
                    "id": chatroom_id,
                    "type": "team",
                    "team_id": team_id,
                    "name": team_name,
                    "recruitment_post_id": None,
                }
            ],
        )
    except StoreError as exc:
        if not is_unique_violation(exc):
            raise
        existing = find_team_chatroom(store, team_id)
        if existing is None:
            raise
        logger.info("team_chatroom_exists chatroom_id=%s team_id=%s", existing["id"], team_id)
        return existing["id"], False
    logger.info("chatroom_created chatroom_id=%s team_id=%s", chatroom_id, team_id)
    return chatroom_id, True


def ensure_team_chatroom(
    store: ChatStore,
    team_id: str,
    team_name: str | None,
    leader_id: str,
    member_ids: Iterable[str] | None = None,
    cleanup_on_failure: bool = False,
) -> str:
    """Return the team's chatroom id, creating the room and missing members as needed."""
    existing = find_team_chatroom(store, team_id)
    if existing is not None:
        chatroom_id, created = existing["id"], False
    else:
        chatroom_id, created = _insert_team_chatroom(store, team_id, team_name)
    try:
        if created:
            _insert_ignoring_conflicts(store, CHATROOM_MEMBERS, [{"chatroom_id": chatroom_id, "user_id": leader_id}])
            store.upsert(CHATROOM_ROLES, [role_row(chatroom_id, leader_id, leader_id)], on_conflict=MEMBER_KEY)
        reconcile_members(store, chatroom_id, member_ids or [], leader_id)
    except Exception:
        if cleanup_on_failure and created:
            cleanup_chatroom(store, chatroom_id)
        raise
    return chatroom_id


def remove_member_from_team_chat(store: ChatStore, team_id: str, user_id: str) -> None:
    """Drop ``user_id``'s membership and role. The room itself is kept."""
    chatroom = find_team_chatroom(store, team_id)
    if chatroom is None:
        return
    pair = {"chatroom_id": chatroom["id"], "user_id": user_id}
    for table in (CHATROOM_MEMBERS, CHATROOM_ROLES):
        try:
            store.delete(table, pair)
        except StoreError as exc:
            if not is_not_found(exc):
                raise
    logger.info("chatroom_member_removed chatroom_id=%s user_id=%s", chatroom["id"], user_id)


class ProcedureGroupProvisioner:
    """Create the room, memberships and roles in one server-side call."""

    def __init__(self, procedure: str = GROUP_PROCEDURE) -> None:
        self.procedure = procedure

    def provision(self, store: ChatStore, owner_id: str, name: str | None, participant_ids: List[str]) -> str:
        chatroom_id = store.rpc(
            self.procedure,
            {"p_name": _trimmed_or_none(name), "p_participants": list(participant_ids)},
        )
        if not chatroom_id:
            raise GroupChatroomError("Group chat creation did not return an identifier")
        return chatroom_id


class ClientGroupProvisioner:
    """Multi-step group creation with compensating cleanup on failure."""

    def provision(self, store: ChatStore, owner_id: str, name: str | None, participant_ids: List[str]) -> str:
        chatroom_id = generate_uuid()
        store.insert(
            CHATROOMS,
            [
                {
                    "id": chatroom_id,
                    "type": "group",
                    "name": _trimmed_or_none(name) or DEFAULT_GROUP_NAME,
                    "archived": False,
                }
            ],
        )
        user_ids = [owner_id] + list(participant_ids)
        try:
            _insert_ignoring_conflicts(
                store,
                CHATROOM_MEMBERS,
                [{"chatroom_id": chatroom_id, "user_id": user_id} for user_id in user_ids],
            )
            store.upsert(
                CHATROOM_ROLES,
                [role_row(chatroom_id, user_id, owner_id) for user_id in user_ids],
                on_conflict=MEMBER_KEY,
            )
        except Exception:
            cleanup_chatroom(store, chatroom_id)
            raise
        logger.info("chatroom_created chatroom_id=%s type=group members=%s", chatroom_id, len(user_ids))
        return chatroom_id


def provision_group_chatroom(
    store: ChatStore,
    owner_id: str,
    participant_ids: Iterable[str] | None,
    name: str | None = None,
    primary: Any = None,
    fallback: Any = None,
    is_unavailable: Callable[[Any], bool] = is_missing_procedure,
) -> str:
    participants = _sanitize_participants(owner_id, participant_ids)
    primary = primary or ProcedureGroupProvisioner()
    fallback = fallback or ClientGroupProvisioner()
    try:
        return primary.provision(store, owner_id, name, participants)
    except Exception as exc:
        if not is_unavailable(exc):
            raise
        logger.warning("group_procedure_unavailable falling back to client provisioning error=%s", exc)
    return fallback.provision(store, owner_id, name, participants)
