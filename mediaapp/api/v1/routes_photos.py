from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from mediaapp.api import deps
from mediaapp.core.errors import AdmissionCancelled, AdmissionTimeout, IngestionError, PublishFailed, SourceNotFound
from mediaapp.core.logging import get_logger
from mediaapp.domain import DEFAULT_PAGE, MAX_PER_PAGE, SearchTask

from . import schemas


router = APIRouter(prefix="/photos", tags=["photos"])
logger = get_logger(component="photos_api")

# nginx's convention for "client closed request"; nobody reads the response.
CLIENT_CLOSED_REQUEST = 499
DEFAULT_LIST_PER_PAGE = 10


def _page_window(page: Optional[int], per_page: Optional[int]) -> tuple[int, int]:
    if page is None or page <= 0:
        page = DEFAULT_PAGE
    if per_page is None or per_page <= 0 or per_page > MAX_PER_PAGE:
        per_page = DEFAULT_LIST_PER_PAGE
    return page, per_page


@router.get(
    "/search",
    response_model=schemas.SearchAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": schemas.ErrorResponse}, 503: {"model": schemas.ErrorResponse}},
    summary="Queue a catalog search for ingestion",
)
async def search_catalog(
    request: Request,
    queue: deps.QueueDependency,
    gate: deps.GateDependency,
    settings: deps.SettingsDependency,
    query: str = Query(default=""),
    page: Optional[int] = Query(default=None),
    per_page: Optional[int] = Query(default=None),
):
    if not query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="query_required")
    task = SearchTask.normalized(query, page, per_page)

    try:
        async with gate.slot(timeout=settings.search_admission_wait_s, is_cancelled=request.is_disconnected):
            await queue.publish(task)
    except AdmissionTimeout:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="service_overloaded")
    except AdmissionCancelled:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except PublishFailed as exc:
        logger.error("search_enqueue_failed", query=task.query, error=str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="enqueue_failed") from exc

    logger.info("search_enqueued", query=task.query, page=task.page, per_page=task.per_page)
    return schemas.SearchAcceptedResponse(query=task.query, page=task.page, per_page=task.per_page)


@router.get("/recent", response_model=schemas.PhotoListResponse, summary="Most recently stored photos")
async def list_recent(
    store: deps.StoreDependency,
    page: Optional[int] = Query(default=None),
    per_page: Optional[int] = Query(default=None),
) -> schemas.PhotoListResponse:
    page, per_page = _page_window(page, per_page)
    photos = await store.list_recent(page, per_page)
    return schemas.PhotoListResponse.build(photos, page, per_page)


@router.get(
    "/external/{external_id}",
    response_model=schemas.PhotoResponse,
    summary="Resolve a catalog photo, ingesting it on first request",
    responses={404: {"model": schemas.ErrorResponse}, 500: {"model": schemas.ErrorResponse}},
)
async def resolve_external(
    external_id: str,
    request: Request,
    engine: deps.EngineDependency,
    gate: deps.GateDependency,
):
    try:
        async with gate.slot(is_cancelled=request.is_disconnected):
            photo = await engine.resolve_by_external_id(external_id)
    except AdmissionCancelled:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except SourceNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="photo_not_found")
    except IngestionError as exc:
        logger.error("photo_resolve_failed", external_id=external_id, reason=exc.reason, error=str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="resolve_failed") from exc
    return schemas.PhotoResponse.from_domain(photo)


@router.get("", response_model=schemas.PhotoListResponse, summary="Search stored photos")
async def search_stored(
    store: deps.StoreDependency,
    query: str = Query(default=""),
    page: Optional[int] = Query(default=None),
    per_page: Optional[int] = Query(default=None),
) -> schemas.PhotoListResponse:
    if not query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="query_required")
    page, per_page = _page_window(page, per_page)
    photos = await store.search(query, page, per_page)
    return schemas.PhotoListResponse.build(photos, page, per_page)


@router.get("/{photo_id}", response_model=schemas.PhotoResponse, summary="Fetch a stored photo")
async def get_photo(photo_id: str, store: deps.StoreDependency) -> schemas.PhotoResponse:
    photo = await store.get_by_id(photo_id)
    if photo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="photo_not_found")
    return schemas.PhotoResponse.from_domain(photo)


__all__ = ["router"]
