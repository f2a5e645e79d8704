from __future__ import annotations

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.models import User
from app.db.session import get_db
from app.metrics.request import RequestFacade, build_request_facade
from app.metrics.store import SessionCredentials
from app.models.schemas import AccountRequest, AccountResponse, SessionEventResponse
from app.services.auth_dependencies import get_credentials, get_current_user
from app.services.auth_service import create_session_token, hash_password, verify_password

router = APIRouter(tags=["account"])


def _track_flow(facade: RequestFacade, complete_signal: str) -> bool:
    # An invalid flow never fails the request; it just goes untracked.
    if not facade.validate_metrics_context():
        facade.clear_metrics_context()
        return False
    facade.set_metrics_flow_complete_signal(complete_signal)
    return True


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=get_settings().jwt_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
    )


@router.post("/account/create", response_model=AccountResponse)
def create_account(
    body: AccountRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> AccountResponse:
    email_norm = body.email.strip().lower()
    if "@" not in email_norm:
        raise HTTPException(status_code=400, detail="Valid email is required")

    existing = db.execute(select(User).where(User.email == email_norm)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    facade = build_request_facade(
        request,
        db=db,
        metrics_context=body.metrics_context,
        payload={"email": email_norm},
    )
    tracked = _track_flow(facade, "account.verified")

    user = User(id=uuid.uuid4(), email=email_norm, password_hash=hash_password(body.password), created_at=datetime.now(timezone.utc))
    db.add(user)
    db.commit()

    token, credentials = create_session_token(user_id=str(user.id), email=user.email)
    facade.stash_metrics_context(credentials)
    facade.emit_route_flow_event(200)
    facade.emit_metrics_event("account.created", {"uid": str(user.id)})

    _set_session_cookie(response, token)
    return AccountResponse(uid=str(user.id), email=user.email, flow_tracked=tracked)


@router.post("/account/login", response_model=AccountResponse)
def login(
    body: AccountRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> AccountResponse:
    email_norm = body.email.strip().lower()
    user = db.execute(select(User).where(User.email == email_norm)).scalar_one_or_none()
    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    facade = build_request_facade(
        request,
        db=db,
        metrics_context=body.metrics_context,
        payload={"email": email_norm},
    )
    tracked = _track_flow(facade, "account.login")

    token, credentials = create_session_token(user_id=str(user.id), email=user.email)
    facade.emit_route_flow_event(200)
    # Completes the flow, so there is nothing left to stash afterwards.
    facade.emit_metrics_event("account.login", {"uid": str(user.id)})
    facade.stash_metrics_context(credentials)

    _set_session_cookie(response, token)
    return AccountResponse(uid=str(user.id), email=user.email, flow_tracked=tracked)


@router.post("/session/verify", response_model=SessionEventResponse)
def verify_session(
    request: Request,
    user: User = Depends(get_current_user),
    credentials: SessionCredentials = Depends(get_credentials),
    db: Session = Depends(get_db),
) -> SessionEventResponse:
    facade = build_request_facade(request, db=db, credentials=credentials)
    facade.emit_route_flow_event(200)
    gathered = facade.emit_metrics_event("account.verified", {"uid": str(user.id)})
    return SessionEventResponse(status="verified", flow_id=gathered.get("flow_id"))


@router.post("/session/destroy", response_model=SessionEventResponse)
def destroy_session(
    request: Request,
    response: Response,
    credentials: SessionCredentials = Depends(get_credentials),
    db: Session = Depends(get_db),
) -> SessionEventResponse:
    facade = build_request_facade(request, db=db, credentials=credentials)
    gathered = facade.emit_metrics_event("session.destroyed", {"uid": credentials.uid})
    facade.clear_metrics_context()
    response.delete_cookie(get_settings().jwt_cookie_name)
    return SessionEventResponse(status="destroyed", flow_id=gathered.get("flow_id"))
