"""Domain entities and collaborator contracts reused across the service."""

from mediaapp.domain.photo import (
    SYSTEM_ACCOUNT_EMAIL,
    SYSTEM_ACCOUNT_NAME,
    DownloadedBinary,
    Photo,
    new_photo_id,
)
from mediaapp.domain.ports import BinaryDownloader, FailureRecord, PhotoSource, PhotoStore
from mediaapp.domain.tasks import DEFAULT_PAGE, DEFAULT_PER_PAGE, MAX_PER_PAGE, SearchTask

__all__ = [
    "Photo",
    "DownloadedBinary",
    "SYSTEM_ACCOUNT_NAME",
    "SYSTEM_ACCOUNT_EMAIL",
    "new_photo_id",
    "PhotoSource",
    "PhotoStore",
    "BinaryDownloader",
    "FailureRecord",
    "SearchTask",
    "DEFAULT_PAGE",
    "DEFAULT_PER_PAGE",
    "MAX_PER_PAGE",
]
