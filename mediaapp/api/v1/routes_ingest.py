from __future__ import annotations

from typing import List

from fastapi import APIRouter, Query

from mediaapp.api import deps

from . import schemas


router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.get(
    "/failures",
    response_model=List[schemas.IngestFailureResponse],
    summary="Batch items skipped during search ingestion, newest first",
)
async def list_failures(
    store: deps.StoreDependency,
    limit: int = Query(default=50, ge=1, le=500),
) -> List[schemas.IngestFailureResponse]:
    failures = await store.list_failures(limit)
    return [schemas.IngestFailureResponse.from_domain(failure) for failure in failures]


__all__ = ["router"]
