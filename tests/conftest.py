from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.db.session import create_tables, get_engine
from app.main import app
from app.metrics.context import MetricsContext
from app.metrics.events import MetricsEvents
from app.metrics.flow_id import FlowIdGenerator, set_flow_id_generator
from app.metrics.request import RequestFacade
from app.metrics.store import MetricsContextStore, SessionCredentials
from app.models.schemas import MetricsContextPayload
from app.observability.metrics import reset_metrics


FLOW_KEY = b"test-flow-id-key"


class FixedClock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class SpyLog:
    """Records every logging call, in order."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    def _record(self, level: str, event: str, **kwargs: Any) -> None:
        self.messages.append({"level": level, "event": event, "args": kwargs})

    def info(self, event: str, **kwargs: Any) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._record("error", event, **kwargs)

    def event_types(self) -> list[str]:
        return [m["args"].get("event_type") for m in self.messages]


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    monkeypatch.setenv("FLOW_ID_KEY", FLOW_KEY.decode("utf-8"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'accounts.db'}")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.delenv("FLOW_ID_EXPIRY_MS", raising=False)
    get_settings.cache_clear()
    set_flow_id_generator(None)
    reset_metrics()
    create_tables()

    yield

    set_flow_id_generator(None)
    get_settings.cache_clear()


@pytest.fixture
def generator() -> FlowIdGenerator:
    return FlowIdGenerator(FLOW_KEY)


@pytest.fixture
def db_session() -> Iterator[Session]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def credentials() -> SessionCredentials:
    return SessionCredentials(uid="0f4b8c1e", token_id="a1b2c3d4")


def mock_request(
    *,
    generator: FlowIdGenerator,
    metrics_context: MetricsContextPayload | None = None,
    store: MetricsContextStore | None = None,
    credentials: SessionCredentials | None = None,
    clock: FixedClock | None = None,
    log: SpyLog | None = None,
    path: str = "/account/create",
    **fields: Any,
) -> RequestFacade:
    context_kwargs: dict[str, Any] = {}
    if clock is not None:
        context_kwargs["clock"] = clock
    context = MetricsContext(
        metrics_context,
        generator=generator,
        store=store,
        credentials=credentials,
        **context_kwargs,
    )
    fields.setdefault("client_address", "63.245.221.32")
    fields.setdefault("headers", {"user-agent": "test user-agent"})
    return RequestFacade(
        metrics_context=context,
        events=MetricsEvents(context, log=log or SpyLog(), request_fields={"userAgent": "test user-agent"}),
        path=path,
        credentials=credentials,
        **fields,
    )


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
