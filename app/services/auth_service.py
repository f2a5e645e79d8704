from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from app.config import get_settings
from app.metrics.store import SessionCredentials


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_session_token(user_id: str, email: str) -> tuple[str, SessionCredentials]:
    """Signed session cookie value plus the credentials it stands for.

    The jti claim identifies this session; metrics context is stashed under it.
    """

    settings = get_settings()
    now = datetime.now(timezone.utc)
    token_id = uuid.uuid4().hex
    payload: dict[str, Any] = {
        "sub": user_id,
        "email": email,
        "jti": token_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_exp_minutes)).timestamp()),
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, SessionCredentials(uid=user_id, token_id=token_id)


def decode_session_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])


def credentials_from_token(token: str) -> SessionCredentials:
    claims = decode_session_token(token)
    uid, token_id = claims.get("sub"), claims.get("jti")
    if not uid or not token_id:
        raise jwt.InvalidTokenError("session token is missing sub or jti")
    return SessionCredentials(uid=str(uid), token_id=str(token_id))
