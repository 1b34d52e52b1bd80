"""Collaborator contracts consumed by the ingestion engine.

Production adapters and test doubles both subclass these.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .photo import DownloadedBinary, Photo


@dataclass(slots=True)
class FailureRecord:
    external_id: Optional[str]
    reason: str
    message: str
    query: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


class PhotoSource(ABC):
    """Third-party photo catalog."""

    @abstractmethod
    async def fetch_by_id(self, external_id: str) -> Photo | None:
        """Return the photo, or ``None`` when the catalog does not know the id."""

    @abstractmethod
    async def search(self, query: str, page: int, per_page: int) -> list[Photo]: ...

    @abstractmethod
    async def list_new(self, page: int, per_page: int) -> list[Photo]: ...


class BinaryDownloader(ABC):
    @abstractmethod
    async def fetch(self, url: str) -> DownloadedBinary: ...


class PhotoStore(ABC):
    """Persistent photo and account records."""

    @abstractmethod
    async def save(self, photo: Photo) -> Photo:
        """Persist ``photo`` and return the durable record.

        When a record with the same external id already exists, that record
        is returned unchanged.
        """

    @abstractmethod
    async def get_by_id(self, photo_id: str) -> Photo | None: ...

    @abstractmethod
    async def get_by_external_id(self, external_id: str) -> Photo | None: ...

    @abstractmethod
    async def search(self, query: str, page: int, per_page: int) -> list[Photo]: ...

    @abstractmethod
    async def list_recent(self, page: int, per_page: int) -> list[Photo]: ...

    @abstractmethod
    async def get_or_create_system_account(self) -> str: ...

    @abstractmethod
    async def record_failure(self, failure: FailureRecord) -> None: ...

    @abstractmethod
    async def list_failures(self, limit: int = 50) -> list[FailureRecord]: ...


__all__ = ["PhotoSource", "BinaryDownloader", "PhotoStore", "FailureRecord"]
