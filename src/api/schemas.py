"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StatusResponse(BaseModel):
    status: str = "ok"


class CallSummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(alias="callId")
    state: str
    caller_name: str = Field(alias="callerName")
    caller_id: str = Field(alias="callerId")
    age_seconds: float = Field(alias="ageSeconds", description="Seconds since the connect webhook.")
