from __future__ import annotations

import structlog
from fastapi import APIRouter

from app.metrics.flow_id import get_flow_id_generator
from app.models.schemas import FlowResponse
from app.observability.metrics import get_metrics

router = APIRouter(tags=["metrics-flow"])


@router.get("/metrics-flow", response_model=FlowResponse)
def begin_flow() -> FlowResponse:
    flow = get_flow_id_generator().generate()
    get_metrics().observe_flow_issued()
    structlog.get_logger("metrics").info("flow.issued", flow_id=flow.flow_id, flow_begin_time=flow.flow_begin_time)
    return FlowResponse(flow_id=flow.flow_id, flow_begin_time=flow.flow_begin_time)
