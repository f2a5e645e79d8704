from __future__ import annotations

import re
from typing import Any

import structlog

from app.metrics.context import MetricsContext
from app.observability.metrics import get_metrics


FLOW_COMPLETE_EVENT = "flow.complete"

# Only account-lifecycle routes report route.<path>.<status> flow events.
ROUTE_FLOW_EVENT_PATHS = re.compile(r"^/(account|session)/[a-z_]+$")


class MetricsEvents:
    """Hands gathered event data to the metrics log.

    Events on a tracked flow are logged as ``flowEvent``; everything else as
    ``activityEvent``. Reaching the flow's complete signal also logs
    ``flow.complete`` and ends the flow.
    """

    def __init__(self, context: MetricsContext, *, log: Any = None, request_fields: dict[str, Any] | None = None) -> None:
        self._context = context
        self._log = log if log is not None else structlog.get_logger("metrics")
        self._request_fields = dict(request_fields or {})

    def emit(self, event: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        gathered = self._context.gather({**self._request_fields, **(data or {})})
        if gathered.get("flow_id"):
            self._emit_flow_event(event, gathered)
        else:
            self._log.info("activityEvent", event_type=event, data=gathered)
        return gathered

    def emit_route_flow_event(self, path: str, status_code: int) -> dict[str, Any] | None:
        if not ROUTE_FLOW_EVENT_PATHS.match(path):
            return None

        gathered = self._context.gather(dict(self._request_fields))
        if not gathered.get("flow_id"):
            return None

        self._emit_flow_event(f"route.{path}.{status_code}", gathered)
        return gathered

    def _emit_flow_event(self, event: str, gathered: dict[str, Any]) -> None:
        self._log.info("flowEvent", event_type=event, data=gathered)
        get_metrics().observe_flow_event()

        if event == gathered.get("flowCompleteSignal"):
            self._log.info("flowEvent", event_type=FLOW_COMPLETE_EVENT, data=gathered)
            get_metrics().observe_flow_complete()
            self._context.clear()
