"""Error taxonomy shared by the ingestion engine, the work queue and the admission gate."""

from __future__ import annotations

from typing import Optional


class IngestionError(Exception):
    """Base class for failures surfaced by the ingestion engine.

    ``reason`` is a stable code used in logs and in recorded batch failures.
    The underlying collaborator error is chained as ``__cause__``.
    """

    reason = "ingestion_failed"

    def __init__(self, message: str, *, external_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.external_id = external_id


class DedupLookupFailed(IngestionError):
    reason = "dedup_lookup_failed"


class SourceNotFound(IngestionError):
    reason = "source_not_found"


class SourceFetchFailed(IngestionError):
    reason = "source_fetch_failed"


class BinaryDownloadFailed(IngestionError):
    reason = "binary_download_failed"


class UnexpectedDownloadStatus(BinaryDownloadFailed):
    reason = "unexpected_download_status"

    def __init__(self, message: str, *, status_code: int, external_id: Optional[str] = None) -> None:
        super().__init__(message, external_id=external_id)
        self.status_code = status_code


class BlobUploadFailed(IngestionError):
    reason = "blob_upload_failed"


class AccountResolutionFailed(IngestionError):
    reason = "account_resolution_failed"


class PersistFailed(IngestionError):
    reason = "persist_failed"


class PublishFailed(Exception):
    """The task was not enqueued (serialization, transport or timeout)."""


class QueueClosed(Exception):
    """The broker connection went away; the consume loop cannot continue."""


class AdmissionTimeout(Exception):
    """No admission slot became free within the wait bound."""


class AdmissionCancelled(Exception):
    """The caller went away while waiting for an admission slot."""


__all__ = [
    "IngestionError",
    "DedupLookupFailed",
    "SourceNotFound",
    "SourceFetchFailed",
    "BinaryDownloadFailed",
    "UnexpectedDownloadStatus",
    "BlobUploadFailed",
    "AccountResolutionFailed",
    "PersistFailed",
    "PublishFailed",
    "QueueClosed",
    "AdmissionTimeout",
    "AdmissionCancelled",
]
