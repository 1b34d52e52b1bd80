"""Versioned API routing for MediaApp."""

from fastapi import APIRouter

from . import routes_ingest, routes_photos, routes_system


def get_api_router() -> APIRouter:
    router = APIRouter(prefix="/v1")
    router.include_router(routes_system.router)
    router.include_router(routes_photos.router)
    router.include_router(routes_ingest.router)
    return router


__all__ = ["get_api_router"]
