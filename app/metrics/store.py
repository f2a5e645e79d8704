from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.models import StashedMetricsContext
from app.metrics.flow_id import now_ms
from app.models.schemas import MetricsContextPayload


@dataclass(frozen=True)
class SessionCredentials:
    uid: str
    token_id: str

    @property
    def stash_key(self) -> str:
        return hashlib.sha256(f"{self.uid}:{self.token_id}".encode("utf-8")).hexdigest()


class MetricsContextStore:
    """Keeps metrics context against session tokens so later requests on the
    same session can report into the flow that created it."""

    def __init__(self, db: Session, ttl_ms: int, clock: Callable[[], int] = now_ms) -> None:
        self.db = db
        self.ttl_ms = ttl_ms
        self._clock = clock

    def put(self, credentials: SessionCredentials, payload: MetricsContextPayload) -> None:
        key = credentials.stash_key
        row = self.db.get(StashedMetricsContext, key)
        data = payload.model_dump(by_alias=True, exclude_none=True)
        expires_at = self._clock() + self.ttl_ms
        if row is None:
            self.db.add(StashedMetricsContext(key=key, payload=data, expires_at=expires_at))
        else:
            row.payload = data
            row.expires_at = expires_at
        self.db.commit()

    def get(self, credentials: SessionCredentials) -> MetricsContextPayload | None:
        row = self.db.execute(
            select(StashedMetricsContext).where(StashedMetricsContext.key == credentials.stash_key)
        ).scalar_one_or_none()
        if row is None or row.expires_at <= self._clock():
            return None
        return MetricsContextPayload.model_validate(row.payload)

    def delete(self, credentials: SessionCredentials) -> None:
        self.db.execute(delete(StashedMetricsContext).where(StashedMetricsContext.key == credentials.stash_key))
        self.db.commit()
