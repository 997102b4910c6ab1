"""Supabase JWT authentication for the workflow API."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


_JWKS_TTL_S = 600.0
_JWKS_CACHE: Dict[str, Any] = {"keys": None, "fetched_at": 0.0}
_PUBLIC_PATHS = {"/health"}

logger = logging.getLogger("linkup.auth")


def auth_disabled() -> bool:
    return os.getenv("LINKUP_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _unauthorized(code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}], "warnings": []},
        status_code=401,
    )


def _jwks(jwks_url: str, force: bool = False) -> dict:
    now = time.time()
    if not force and _JWKS_CACHE["keys"] and now - _JWKS_CACHE["fetched_at"] < _JWKS_TTL_S:
        return _JWKS_CACHE["keys"]
    res = httpx.get(jwks_url, timeout=10.0)
    res.raise_for_status()
    _JWKS_CACHE.update(keys=res.json(), fetched_at=now)
    return _JWKS_CACHE["keys"]


def _signing_key(jwks_url: str, kid: str | None) -> dict:
    for force in (False, True):
        for jwk in _jwks(jwks_url, force=force).get("keys", []):
            if jwk.get("kid") == kid:
                return jwk
    raise JWTError("Unknown kid")


def verify_token(token: str, supabase_url: str, audience: Optional[str] = None) -> dict:
    base = supabase_url.rstrip("/")
    header = jwt.get_unverified_header(token)
    key = _signing_key(f"{base}/auth/v1/.well-known/jwks.json", header.get("kid"))
    return jwt.decode(
        token,
        key,
        algorithms=[header.get("alg", "RS256")],
        issuer=f"{base}/auth/v1",
        audience=audience,
        options={"verify_aud": audience is not None},
    )


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    """Attach ``request.state.user`` from a Supabase bearer token.

    With auth disabled the user id is taken from the ``X-User-Id`` header,
    which is how tests and local tooling act as a given student.
    """

    def __init__(self, app, supabase_url: str, audience: Optional[str] = None) -> None:
        super().__init__(app)
        self._supabase_url = supabase_url
        self._audience = audience

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in _PUBLIC_PATHS:
            return await call_next(request)
        if auth_disabled():
            user_id = request.headers.get("X-User-Id")
            request.state.user = {"id": user_id, "token": None} if user_id else None
            return await call_next(request)

        auth = request.headers.get("Authorization", "")
        token = auth.split(" ", 1)[1].strip() if auth.startswith("Bearer ") else ""
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized("AUTH_MISSING_TOKEN", "Missing bearer token")
        try:
            claims = verify_token(token, self._supabase_url, self._audience)
        except Exception as exc:
            logger.warning("auth_invalid_token path=%s error=%s", request.url.path, exc)
            return _unauthorized("AUTH_INVALID_TOKEN", "Invalid bearer token", {"error": str(exc)})
        request.state.user = {"id": claims.get("sub"), "email": claims.get("email"), "token": token}
        return await call_next(request)
