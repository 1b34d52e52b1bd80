"""Unsplash-backed PhotoSource."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from mediaapp.core.logging import get_logger
from mediaapp.domain import Photo, PhotoSource


def _parse_timestamp(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def map_unsplash_photo(payload: dict[str, Any]) -> Photo:
    """Translate an Unsplash photo object into a fresh, not yet ingested Photo.

    Unsplash photos rarely carry a title, so the description (or the
    alt description when that is empty) serves as both title and description.
    """
    description = payload.get("description") or payload.get("alt_description") or ""
    urls = payload.get("urls") or {}
    user = payload.get("user") or {}
    return Photo(
        external_id=str(payload["id"]),
        source_url=urls.get("full") or urls.get("raw") or "",
        title=description,
        description=description,
        author_name=user.get("name") or "",
        width=_as_int(payload.get("width")),
        height=_as_int(payload.get("height")),
        likes_count=_as_int(payload.get("likes")),
        views_count=_as_int(payload.get("views")),
        downloads_count=_as_int(payload.get("downloads")),
        uploaded_at=_parse_timestamp(payload.get("created_at")),
    )


@dataclass
class UnsplashPhotoSource(PhotoSource):
    """HTTPX-backed Unsplash client."""

    access_key: str
    base_url: str
    http_client: httpx.AsyncClient
    timeout_s: float = 10.0

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.logger = get_logger(component="unsplash_source")

    @classmethod
    def create(cls, access_key: str, base_url: str, *, timeout_s: float = 10.0) -> "UnsplashPhotoSource":
        """Create a client with a managed httpx session."""
        return cls(access_key=access_key, base_url=base_url, http_client=httpx.AsyncClient(), timeout_s=timeout_s)

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Client-ID {self.access_key}", "Accept-Version": "v1"}

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        return await self.http_client.get(
            f"{self.base_url}{path}",
            params=params,
            headers=self._headers,
            timeout=self.timeout_s,
        )

    async def fetch_by_id(self, external_id: str) -> Photo | None:
        self.logger.info("unsplash_fetch_by_id", external_id=external_id)
        response = await self._get(f"/photos/{external_id}")
        if response.status_code == httpx.codes.NOT_FOUND:
            self.logger.info("unsplash_photo_not_found", external_id=external_id)
            return None
        response.raise_for_status()
        return map_unsplash_photo(response.json())

    async def search(self, query: str, page: int, per_page: int) -> list[Photo]:
        self.logger.info("unsplash_search", query=query, page=page, per_page=per_page)
        response = await self._get("/search/photos", {"query": query, "page": page, "per_page": per_page})
        response.raise_for_status()
        results = response.json().get("results") or []
        photos = [map_unsplash_photo(item) for item in results]
        self.logger.info("unsplash_search_completed", query=query, count=len(photos))
        return photos

    async def list_new(self, page: int, per_page: int) -> list[Photo]:
        self.logger.info("unsplash_list_new", page=page, per_page=per_page)
        response = await self._get("/photos", {"page": page, "per_page": per_page})
        response.raise_for_status()
        return [map_unsplash_photo(item) for item in response.json()]

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


__all__ = ["UnsplashPhotoSource", "map_unsplash_photo"]
