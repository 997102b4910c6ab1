"""HTTP workflows that keep team and group chatrooms in sync."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.auth import SupabaseAuthMiddleware, auth_disabled
from app.stores import InMemoryChatStore, register_default_procedures
from app.supabase_rest import SupabaseRestStore, supabase_rest_enabled
from chat_store import StoreError
from chatrooms import (
    GroupChatroomError,
    ensure_team_chatroom,
    provision_group_chatroom,
    remove_member_from_team_chat,
)
from notifications import NotificationDispatcher
from outbox import NotificationOutbox


app = FastAPI(title="LinkUp chat provisioning")
logger = logging.getLogger("linkup")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "0") == "1"
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_AUD = os.getenv("SUPABASE_JWT_AUD", "").strip() or None


def _build_store():
    if USE_DB:
        from app.stores_db import DbChatStore

        return DbChatStore()
    if supabase_rest_enabled():
        return SupabaseRestStore()
    return register_default_procedures(InMemoryChatStore())


OUTBOX_MAXLEN = int(os.getenv("LINKUP_OUTBOX_MAXLEN", "500"))

store = _build_store()
outbox = NotificationOutbox(maxlen=OUTBOX_MAXLEN)
notifier = NotificationDispatcher(store, outbox=outbox)
logger.info("store_backend=%s auth_disabled=%s", type(store).__name__, auth_disabled())

if not auth_disabled() and not SUPABASE_URL:
    raise RuntimeError("SUPABASE_URL is required for auth")
app.add_middleware(SupabaseAuthMiddleware, supabase_url=SUPABASE_URL, audience=SUPABASE_AUD)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _issue(code: str, message: str, path: str | None = None) -> dict:
    return {"code": code, "message": message, "path": path}


def _store_error_response(exc: StoreError) -> JSONResponse:
    return _error_response(
        "STORE_ERROR",
        exc.message,
        detail={"code": exc.code, "details": exc.details, "hint": exc.hint},
        status=500,
    )


def _current_user(request: Request) -> dict | None:
    user = getattr(request.state, "user", None)
    return user if isinstance(user, dict) and user.get("id") else None


def _store_for(request: Request):
    """Store acting as the signed-in user, so server procedures see auth.uid()."""
    user = _current_user(request)
    token = user.get("token") if user else None
    if token and isinstance(store, SupabaseRestStore):
        return store.with_access_token(token)
    return store


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _string_list(value: Any) -> list[str] | None:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return value


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.post("/teams/{team_id}/chatroom")
async def sync_team_chatroom(team_id: str, request: Request):
    body = await _json_body(request)
    leader_id = body.get("leader_id")
    if not isinstance(leader_id, str) or not leader_id:
        return _error_response("LEADER_REQUIRED", "leader_id is required", "leader_id")
    member_ids = _string_list(body.get("member_ids"))
    if member_ids is None:
        return _error_response("MEMBER_IDS_INVALID", "member_ids must be a list of strings", "member_ids")
    try:
        chatroom_id = ensure_team_chatroom(store, team_id, body.get("team_name"), leader_id, member_ids)
    except StoreError as exc:
        logger.warning("team_chat_sync_failed team_id=%s error=%s", team_id, exc)
        return _store_error_response(exc)
    return _ok_response({"chatroom_id": chatroom_id})


@app.post("/teams/{team_id}/members")
async def add_team_member(team_id: str, request: Request):
    body = await _json_body(request)
    user_id = body.get("user_id")
    leader_id = body.get("leader_id")
    if not isinstance(user_id, str) or not user_id:
        return _error_response("USER_REQUIRED", "user_id is required", "user_id")
    team_name = body.get("team_name") or "a team"
    warnings = []
    chatroom_id = None
    if isinstance(leader_id, str) and leader_id:
        try:
            chatroom_id = ensure_team_chatroom(store, team_id, body.get("team_name"), leader_id, [user_id])
        except Exception as exc:
            logger.error("team_chat_sync_failed team_id=%s user_id=%s error=%s", team_id, user_id, exc)
            warnings.append(_issue("TEAM_CHAT_SYNC_FAILED", "Member added but team chat may need a refresh."))
    notifier.send(
        user_id,
        "team_invite",
        "Join request approved",
        f"You have been added to {team_name}.",
        link=f"/teams/{team_id}",
    )
    return _ok_response({"chatroom_id": chatroom_id}, warnings=warnings)


@app.delete("/teams/{team_id}/members/{user_id}")
async def remove_team_member(team_id: str, user_id: str, request: Request):
    body = await _json_body(request)
    team_name = body.get("team_name") or "the team"
    note = body.get("note").strip() if isinstance(body.get("note"), str) else ""
    try:
        remove_member_from_team_chat(store, team_id, user_id)
    except StoreError as exc:
        logger.warning("team_chat_remove_failed team_id=%s user_id=%s error=%s", team_id, user_id, exc)
        return _store_error_response(exc)
    notifier.send(
        user_id,
        "team_invite",
        f"Removed from {team_name}",
        note or f"You have been removed from {team_name}.",
        link=f"/teams/{team_id}",
    )
    return _ok_response({})


@app.post("/chatrooms/group")
async def create_group_chatroom(request: Request):
    user = _current_user(request)
    if user is None:
        return _error_response("AUTH_REQUIRED", "Sign in to create a group chat", status=401)
    body = await _json_body(request)
    participant_ids = _string_list(body.get("participant_ids"))
    if participant_ids is None:
        return _error_response("PARTICIPANTS_INVALID", "participant_ids must be a list of strings", "participant_ids")
    if not [p for p in participant_ids if p and p != user["id"]]:
        return _error_response("GROUP_PARTICIPANTS_REQUIRED", "Select at least one participant", "participant_ids")
    name = body.get("name") if isinstance(body.get("name"), str) else None
    try:
        chatroom_id = provision_group_chatroom(_store_for(request), user["id"], participant_ids, name=name)
    except StoreError as exc:
        return _store_error_response(exc)
    except GroupChatroomError as exc:
        return _error_response("GROUP_CHAT_FAILED", str(exc), status=500)
    return _ok_response({"chatroom_id": chatroom_id}, status=201)
