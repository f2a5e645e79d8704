from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable

import structlog
from fastapi import Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.metrics.context import MetricsContext
from app.metrics.events import MetricsEvents
from app.metrics.flow_id import get_flow_id_generator
from app.metrics.store import MetricsContextStore, SessionCredentials
from app.models.schemas import MetricsContextPayload
from app.observability.metrics import get_metrics


DEFAULT_LOCALE = "en-US"


@dataclass
class RequestFacade:
    """What handlers see of a request: pass-through fields plus the metrics
    operations bound to this request's context."""

    metrics_context: MetricsContext
    events: MetricsEvents
    path: str
    client_address: str | None = None
    locale: str = DEFAULT_LOCALE
    accept_language: str = DEFAULT_LOCALE
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    credentials: SessionCredentials | None = None
    features: frozenset[str] = frozenset()

    gather_metrics_context: Callable[[dict[str, Any]], dict[str, Any]] = field(init=False, repr=False)
    stash_metrics_context: Callable[..., None] = field(init=False, repr=False)
    clear_metrics_context: Callable[..., None] = field(init=False, repr=False)
    validate_metrics_context: Callable[[], bool] = field(init=False, repr=False)
    set_metrics_flow_complete_signal: Callable[..., None] = field(init=False, repr=False)
    emit_metrics_event: Callable[..., dict[str, Any]] = field(init=False, repr=False)
    emit_route_flow_event: Callable[[int], dict[str, Any] | None] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.gather_metrics_context = self.metrics_context.gather
        self.stash_metrics_context = self.metrics_context.stash
        self.clear_metrics_context = self.metrics_context.clear
        self.validate_metrics_context = self.metrics_context.validate
        self.set_metrics_flow_complete_signal = self.metrics_context.set_flow_complete_signal
        self.emit_metrics_event = self.events.emit
        self.emit_route_flow_event = partial(self.events.emit_route_flow_event, self.path)


def _client_address(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _locale(accept_language: str) -> str:
    first = accept_language.split(",")[0].split(";")[0].strip()
    return first or DEFAULT_LOCALE


def parse_metrics_context(raw: MetricsContextPayload | dict[str, Any] | None) -> MetricsContextPayload | None:
    """Payload from a request body, or None when absent or malformed."""

    if raw is None or isinstance(raw, MetricsContextPayload):
        return raw
    try:
        return MetricsContextPayload.model_validate(raw)
    except ValidationError as exc:
        get_metrics().observe_flow_validation_failure()
        structlog.get_logger("metrics").warning(
            "metrics.context.invalid",
            reason="malformed",
            errors=exc.error_count(),
        )
        return None


def build_request_facade(
    request: Request,
    *,
    db: Session,
    metrics_context: MetricsContextPayload | dict[str, Any] | None = None,
    credentials: SessionCredentials | None = None,
    payload: dict[str, Any] | None = None,
    log: Any = None,
) -> RequestFacade:
    settings = get_settings()
    context = MetricsContext(
        parse_metrics_context(metrics_context),
        generator=get_flow_id_generator(),
        store=MetricsContextStore(db, ttl_ms=settings.metrics_context_ttl_ms),
        credentials=credentials,
        expiry_ms=settings.flow_id_expiry_ms,
    )

    accept_language = request.headers.get("accept-language", DEFAULT_LOCALE)
    locale = _locale(accept_language)
    request_fields: dict[str, Any] = {
        "userAgent": request.headers.get("user-agent"),
        "locale": locale,
    }
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        request_fields["request_id"] = request_id

    return RequestFacade(
        metrics_context=context,
        events=MetricsEvents(context, log=log, request_fields=request_fields),
        path=request.url.path,
        client_address=_client_address(request),
        locale=locale,
        accept_language=accept_language,
        headers=dict(request.headers),
        query=dict(request.query_params),
        payload=payload or {},
        credentials=credentials,
    )
