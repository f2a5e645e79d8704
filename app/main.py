from fastapi import FastAPI

from app.api.account import router as account_router
from app.api.flow import router as flow_router
from app.api.metrics import router as metrics_router
from app.config import get_settings
from app.db.session import create_tables
from app.metrics.flow_id import get_flow_id_generator
from app.observability.logging import configure_logging
from app.observability.middleware import RequestContextMiddleware


app = FastAPI(title="Account Flow Metrics", version="0.1.0")
app.add_middleware(RequestContextMiddleware)
app.include_router(flow_router)
app.include_router(account_router)
app.include_router(metrics_router)


@app.on_event("startup")
def _startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)
    # Fails fast with ConfigurationError when FLOW_ID_KEY is missing.
    get_flow_id_generator()
    create_tables()


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
