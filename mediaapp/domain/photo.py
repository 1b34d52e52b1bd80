from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

SYSTEM_ACCOUNT_NAME = "system_user"
SYSTEM_ACCOUNT_EMAIL = "system@example.com"


def new_photo_id() -> str:
    return uuid4().hex


@dataclass(slots=True)
class Photo:
    """Ingested state of a single catalog photo.

    ``blob_url`` stays empty until the binary has been uploaded; a record is
    only persisted once it is set.
    """

    external_id: str
    source_url: str
    id: str = field(default_factory=new_photo_id)
    title: str = ""
    description: str = ""
    author_name: str = ""
    width: int = 0
    height: int = 0
    likes_count: int = 0
    views_count: int = 0
    downloads_count: int = 0
    blob_url: str = ""
    owner_id: Optional[str] = None
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_ingested(self) -> bool:
        return bool(self.blob_url)


@dataclass(slots=True)
class DownloadedBinary:
    status_code: int
    content: bytes
    content_type: Optional[str] = None


__all__ = [
    "Photo",
    "DownloadedBinary",
    "SYSTEM_ACCOUNT_NAME",
    "SYSTEM_ACCOUNT_EMAIL",
    "new_photo_id",
]
