from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.settings import settings
from app.services.credits_engine import get_or_create_credit_account


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str


def _require_jwks_url() -> str:
    if not settings.auth_jwks_url:
        raise HTTPException(status_code=500, detail="AUTH_JWKS_URL is not configured")
    return settings.auth_jwks_url


@lru_cache(maxsize=4)
def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(jwks_url)


def _decode_jwt(token: str) -> dict[str, Any]:
    jwks_url = _require_jwks_url()
    options: dict[str, Any] = {"require": ["exp", "sub"]}
    kwargs: dict[str, Any] = {}
    if settings.auth_jwt_audience:
        kwargs["audience"] = settings.auth_jwt_audience
    else:
        options["verify_aud"] = False
    if settings.auth_jwt_issuer:
        kwargs["issuer"] = settings.auth_jwt_issuer

    try:
        signing_key = _jwks_client(jwks_url).get_signing_key_from_jwt(token).key
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256", "ES256"],
            options=options,
            **kwargs,
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def _claimed_role(claims: dict[str, Any]) -> str:
    for key in ("public_metadata", "metadata", "app_metadata"):
        meta = claims.get(key) or {}
        if isinstance(meta, dict) and meta.get("role"):
            return str(meta.get("role")).strip().lower()
    return str(claims.get("role") or "").strip().lower()


def _decide_role(*, user_is_listed_admin: bool, claimed_role: str | None) -> tuple[str, str]:
    if user_is_listed_admin:
        return ("admin", "admin_user_ids")
    role = str(claimed_role or "").strip().lower()
    if role == "admin":
        return ("admin", "jwt_claim")
    if role:
        return (role, "jwt_claim")
    return ("user", "default")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _get_bearer_token(request)
    claims = _decode_jwt(token)
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    email = str(claims.get("email") or "").strip()

    role, _reason = _decide_role(
        user_is_listed_admin=user_id in (settings.admin_user_ids or set()),
        claimed_role=_claimed_role(claims),
    )
    # First authenticated request opens the credit account.
    get_or_create_credit_account(db, user_id)
    return CurrentUser(id=user_id, email=email, role=role)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if (user.role or "").lower() != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
