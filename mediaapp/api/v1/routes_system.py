from __future__ import annotations

from fastapi import APIRouter, Depends

from mediaapp.api import deps
from mediaapp.core.runtime import Runtime

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(runtime: Runtime = Depends(deps.get_runtime)) -> HealthResponse:
    return HealthResponse(
        queue=runtime.queue.name,
        queue_backend=runtime.settings.work_queue_backend,
        admission_in_flight=runtime.gate.in_flight,
        admission_capacity=runtime.gate.capacity,
    )


__all__ = ["router"]
