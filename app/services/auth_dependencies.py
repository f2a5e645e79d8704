from __future__ import annotations

import uuid

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.models import User
from app.db.session import get_db
from app.metrics.store import SessionCredentials
from app.services.auth_service import credentials_from_token


def _session_cookie(request: Request) -> str | None:
    return request.cookies.get(get_settings().jwt_cookie_name)


def get_credentials(request: Request) -> SessionCredentials:
    token = _session_cookie(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        return credentials_from_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid session") from exc


def get_current_user(
    credentials: SessionCredentials = Depends(get_credentials),
    db: Session = Depends(get_db),
) -> User:
    try:
        user_uuid = uuid.UUID(credentials.uid)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid session") from exc

    user = db.execute(select(User).where(User.id == user_uuid)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user
