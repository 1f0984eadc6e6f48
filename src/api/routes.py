"""FastAPI routes exposing the call bridge."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api import signaling_routes, webhook_routes
from api.dependencies import get_orchestrator
from api.schemas import CallSummaryResponse, StatusResponse
from bridge.orchestrator import BridgeOrchestrator

router = APIRouter()
router.include_router(webhook_routes.router)
router.include_router(signaling_routes.router)


@router.get("/health", response_model=StatusResponse)
async def health() -> StatusResponse:
    return StatusResponse()


@router.get("/calls", response_model=list[CallSummaryResponse])
async def list_calls(
    orchestrator: BridgeOrchestrator = Depends(get_orchestrator),
) -> list[CallSummaryResponse]:
    return [CallSummaryResponse(**summary) for summary in await orchestrator.list_calls()]
