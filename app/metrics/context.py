from __future__ import annotations

from typing import Any, Callable

import structlog

from app.metrics.flow_id import FlowIdGenerator, now_ms
from app.metrics.store import MetricsContextStore, SessionCredentials
from app.models.schemas import MetricsContextPayload
from app.observability.metrics import get_metrics


logger = structlog.get_logger("metrics")


class MetricsContext:
    """Flow state for one request.

    Every operation is a no-op when the request carries no metrics context, so
    handlers never need to check whether a flow is being tracked. Once cleared,
    the context stays absent for the rest of the request.
    """

    def __init__(
        self,
        payload: MetricsContextPayload | None,
        *,
        generator: FlowIdGenerator,
        store: MetricsContextStore | None = None,
        credentials: SessionCredentials | None = None,
        expiry_ms: int = 0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.payload = payload
        self.credentials = credentials
        self._generator = generator
        self._store = store
        self._expiry_ms = expiry_ms
        self._clock = clock
        self._stash_checked = False
        self._discarded = False

    @property
    def discarded(self) -> bool:
        return self._discarded

    def current(self) -> MetricsContextPayload | None:
        """The request's own payload, else the one stashed for its session."""

        if self._discarded:
            return None
        if self.payload is None and not self._stash_checked:
            self._stash_checked = True
            if self._store is not None and self.credentials is not None:
                self.payload = self._store.get(self.credentials)
        return self.payload

    def gather(self, event_data: dict[str, Any]) -> dict[str, Any]:
        payload = self.current()
        if payload is None:
            return event_data

        time = self._clock()
        gathered = dict(event_data)
        gathered.update(payload.attribution())
        gathered.update(
            time=time,
            flow_id=payload.flow_id,
            # Negative under clock skew; reported as-is.
            flow_time=time - payload.flow_begin_time,
            flowCompleteSignal=payload.flow_complete_signal,
        )
        return gathered

    def set_flow_complete_signal(self, signal: str, flow_type: str | None = None) -> None:
        payload = self.current()
        if payload is None:
            return
        payload.flow_complete_signal = signal
        if flow_type is not None:
            payload.flow_type = flow_type

    def stash(self, credentials: SessionCredentials | None = None) -> None:
        if credentials is not None and self.credentials is None:
            # Later clear() calls on this request target the same session.
            self.credentials = credentials
        credentials = credentials or self.credentials
        payload = self.current()
        if payload is None or credentials is None or self._store is None:
            return
        self._store.put(credentials, payload)

    def clear(self, credentials: SessionCredentials | None = None) -> None:
        credentials = credentials or self.credentials
        self._discarded = True
        self.payload = None
        if credentials is not None and self._store is not None:
            self._store.delete(credentials)

    def validate(self) -> bool:
        payload = self.payload
        if payload is None or self._discarded:
            return False

        if not self._generator.validate(payload.flow_id, payload.flow_begin_time):
            return self._invalid("bad_signature", payload)

        if self._expiry_ms > 0:
            age = self._clock() - payload.flow_begin_time
            if age > self._expiry_ms or age < 0:
                return self._invalid("expired", payload, age=age)

        return True

    def _invalid(self, reason: str, payload: MetricsContextPayload, **extra: Any) -> bool:
        get_metrics().observe_flow_validation_failure()
        logger.warning(
            "metrics.context.invalid",
            reason=reason,
            flow_id=payload.flow_id,
            flow_begin_time=payload.flow_begin_time,
            **extra,
        )
        return False
