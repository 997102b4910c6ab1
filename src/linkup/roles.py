"""Chatroom role assignment policy."""

from __future__ import annotations

from typing import Any, Dict


OWNER = "owner"
MEMBER = "member"

RoleGrant = Dict[str, Any]


def role_for(user_id: str, owner_id: str | None) -> RoleGrant:
    """Role and capability flags for ``user_id`` in a room owned by ``owner_id``."""
    is_owner = owner_id is not None and user_id == owner_id
    return {
        "role": OWNER if is_owner else MEMBER,
        "can_post": True,
        "can_manage_members": is_owner,
        "can_manage_messages": is_owner,
    }


def role_row(chatroom_id: str, user_id: str, owner_id: str | None) -> dict:
    row = {"chatroom_id": chatroom_id, "user_id": user_id}
    row.update(role_for(user_id, owner_id))
    return row
