from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from mediaapp.domain import FailureRecord, Photo


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    queue: str
    queue_backend: str
    admission_in_flight: int = Field(..., ge=0)
    admission_capacity: int = Field(..., ge=1)


class PhotoResponse(BaseModel):
    id: str
    external_id: str = Field(..., json_schema_extra={"example": "Dwu85P9SOIk"})
    title: str = ""
    description: str = ""
    author_name: str = ""
    width: int = 0
    height: int = 0
    likes_count: int = 0
    views_count: int = 0
    downloads_count: int = 0
    source_url: str
    blob_url: str
    owner_id: Optional[str] = None
    uploaded_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, photo: Photo) -> "PhotoResponse":
        return cls.model_validate(dataclasses.asdict(photo))


class PhotoListResponse(BaseModel):
    page: int
    per_page: int
    items: List[PhotoResponse]

    @classmethod
    def build(cls, photos: List[Photo], page: int, per_page: int) -> "PhotoListResponse":
        return cls(page=page, per_page=per_page, items=[PhotoResponse.from_domain(p) for p in photos])


class SearchAcceptedResponse(BaseModel):
    status: str = Field(default="accepted", description="Task enqueued; results are ingested asynchronously.")
    query: str
    page: int
    per_page: int


class IngestFailureResponse(BaseModel):
    id: Optional[int] = None
    external_id: Optional[str] = None
    query: Optional[str] = None
    reason: str
    message: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, failure: FailureRecord) -> "IngestFailureResponse":
        return cls.model_validate(dataclasses.asdict(failure))


class ErrorResponse(BaseModel):
    detail: str


__all__ = [
    "HealthResponse",
    "PhotoResponse",
    "PhotoListResponse",
    "SearchAcceptedResponse",
    "IngestFailureResponse",
    "ErrorResponse",
]
