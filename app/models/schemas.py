from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MetricsContextPayload(BaseModel):
    """Flow state a client sends alongside a request."""

    model_config = ConfigDict(populate_by_name=True)

    flow_id: str = Field(alias="flowId", frozen=True)
    flow_begin_time: int = Field(alias="flowBeginTime", frozen=True)
    flow_complete_signal: str | None = Field(default=None, alias="flowCompleteSignal")
    flow_type: str | None = Field(default=None, alias="flowType")

    device_id: str | None = Field(default=None, alias="deviceId")
    entrypoint: str | None = None
    utm_campaign: str | None = Field(default=None, alias="utmCampaign")
    utm_content: str | None = Field(default=None, alias="utmContent")
    utm_medium: str | None = Field(default=None, alias="utmMedium")
    utm_source: str | None = Field(default=None, alias="utmSource")
    utm_term: str | None = Field(default=None, alias="utmTerm")

    def attribution(self) -> dict[str, Any]:
        fields = {
            "flowType": self.flow_type,
            "device_id": self.device_id,
            "entrypoint": self.entrypoint,
            "utm_campaign": self.utm_campaign,
            "utm_content": self.utm_content,
            "utm_medium": self.utm_medium,
            "utm_source": self.utm_source,
            "utm_term": self.utm_term,
        }
        return {name: value for name, value in fields.items() if value is not None}


class FlowResponse(BaseModel):
    flow_id: str = Field(serialization_alias="flowId")
    flow_begin_time: int = Field(serialization_alias="flowBeginTime")


class AccountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(min_length=3)
    password: str = Field(min_length=8)
    # Parsed in the route; a malformed context leaves the request untracked.
    metrics_context: dict[str, Any] | None = Field(default=None, alias="metricsContext")


class AccountResponse(BaseModel):
    uid: str
    email: str
    flow_tracked: bool = Field(serialization_alias="flowTracked")


class SessionEventResponse(BaseModel):
    status: str
    flow_id: str | None = Field(default=None, serialization_alias="flowId")
