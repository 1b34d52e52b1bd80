from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from mediaapp.core.errors import (
    AccountResolutionFailed,
    BinaryDownloadFailed,
    BlobUploadFailed,
    DedupLookupFailed,
    IngestionError,
    PersistFailed,
    SourceFetchFailed,
    SourceNotFound,
    UnexpectedDownloadStatus,
)
from mediaapp.core.logging import get_logger
from mediaapp.core.storage import BlobStore, blob_key_for
from mediaapp.domain import (
    DEFAULT_PAGE,
    DEFAULT_PER_PAGE,
    BinaryDownloader,
    FailureRecord,
    Photo,
    PhotoSource,
    PhotoStore,
)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(slots=True)
class SkippedItem:
    external_id: str
    reason: str
    message: str


@dataclass(slots=True)
class BatchReport:
    """Outcome of one search batch.

    ``photos`` holds newly persisted and already stored records in source
    order; items that failed are listed in ``skipped``.
    """

    query: str
    page: int
    per_page: int
    photos: list[Photo] = field(default_factory=list)
    deduplicated: int = 0
    skipped: list[SkippedItem] = field(default_factory=list)

    @property
    def persisted(self) -> int:
        return len(self.photos) - self.deduplicated


class IngestionEngine:
    """Dedup lookup, source fetch, binary download, blob upload and persist.

    Nothing is retried here; redelivery of a failed search is the work queue's
    job, and the dedup lookup makes a re-run skip items that already landed.
    """

    def __init__(
        self,
        source: PhotoSource,
        store: PhotoStore,
        blobs: BlobStore,
        downloader: BinaryDownloader,
        *,
        key_prefix: str = "unsplash-photos",
    ):
        self.source = source
        self.store = store
        self.blobs = blobs
        self.downloader = downloader
        self.key_prefix = key_prefix
        self.logger = get_logger(component="ingestion_engine")

    async def resolve_by_external_id(self, external_id: str) -> Photo:
        existing = await self._lookup(external_id)
        if existing is not None:
            self.logger.info("photo_resolved_from_store", external_id=external_id, photo_id=existing.id)
            return existing

        try:
            photo = await self.source.fetch_by_id(external_id)
        except Exception as exc:
            raise SourceFetchFailed(f"fetching {external_id} from source failed: {exc}", external_id=external_id) from exc
        if photo is None:
            raise SourceNotFound(f"photo {external_id} is unknown to the source", external_id=external_id)

        owner_id = await self._system_account()
        stored = await self._ingest(photo, owner_id)
        self.logger.info("photo_resolved_from_source", external_id=external_id, photo_id=stored.id)
        return stored

    async def ingest_search(self, query: str, page: int, per_page: int) -> BatchReport:
        if per_page <= 0:
            per_page = DEFAULT_PER_PAGE
        if page <= 0:
            page = DEFAULT_PAGE
        report = BatchReport(query=query, page=page, per_page=per_page)
        logger = self.logger.bind(query=query, page=page, per_page=per_page)

        try:
            results = await self.source.search(query, page, per_page)
        except Exception as exc:
            raise SourceFetchFailed(f"searching source for {query!r} failed: {exc}") from exc
        if not results:
            logger.info("search_returned_no_results")
            return report

        owner_id = await self._system_account()

        for candidate in results:
            try:
                existing = await self._lookup(candidate.external_id)
                if existing is not None:
                    report.photos.append(existing)
                    report.deduplicated += 1
                    logger.info("photo_deduplicated", external_id=candidate.external_id, photo_id=existing.id)
                    continue
                report.photos.append(await self._ingest(candidate, owner_id))
            except IngestionError as exc:
                report.skipped.append(SkippedItem(candidate.external_id, exc.reason, str(exc)))
                logger.warning(
                    "batch_item_skipped",
                    external_id=candidate.external_id,
                    reason=exc.reason,
                    error=str(exc),
                )
                await self._record_failure(candidate.external_id, query, exc)

        logger.info(
            "search_batch_completed",
            results=len(results),
            persisted=report.persisted,
            deduplicated=report.deduplicated,
            skipped=len(report.skipped),
        )
        return report

    async def search_and_persist(self, query: str, page: int, per_page: int) -> list[Photo]:
        report = await self.ingest_search(query, page, per_page)
        return report.photos

    async def list_new(self, page: int, per_page: int) -> list[Photo]:
        try:
            return await self.source.list_new(page, per_page)
        except Exception as exc:
            raise SourceFetchFailed(f"listing new photos failed: {exc}") from exc

    async def _lookup(self, external_id: str) -> Optional[Photo]:
        try:
            return await self.store.get_by_external_id(external_id)
        except Exception as exc:
            raise DedupLookupFailed(f"looking up {external_id} failed: {exc}", external_id=external_id) from exc

    async def _system_account(self) -> str:
        try:
            return await self.store.get_or_create_system_account()
        except Exception as exc:
            raise AccountResolutionFailed(f"resolving system account failed: {exc}") from exc

    async def _ingest(self, photo: Photo, owner_id: str) -> Photo:
        external_id = photo.external_id
        try:
            binary = await self.downloader.fetch(photo.source_url)
        except Exception as exc:
            raise BinaryDownloadFailed(
                f"downloading {photo.source_url} failed: {exc}", external_id=external_id
            ) from exc
        if binary.status_code != 200:
            raise UnexpectedDownloadStatus(
                f"downloading {photo.source_url} returned status {binary.status_code}",
                status_code=binary.status_code,
                external_id=external_id,
            )

        key = blob_key_for(self.key_prefix, external_id)
        content_type = binary.content_type or DEFAULT_CONTENT_TYPE
        try:
            photo.blob_url = await self.blobs.upload(key, binary.content, content_type)
        except Exception as exc:
            raise BlobUploadFailed(f"uploading {key} failed: {exc}", external_id=external_id) from exc
        photo.owner_id = owner_id

        try:
            stored = await self.store.save(photo)
        except Exception as exc:
            raise PersistFailed(f"persisting {external_id} failed: {exc}", external_id=external_id) from exc
        self.logger.info("photo_ingested", external_id=external_id, photo_id=stored.id, blob_key=key)
        return stored

    async def _record_failure(self, external_id: str, query: str, exc: IngestionError) -> None:
        failure = FailureRecord(external_id=external_id, reason=exc.reason, message=str(exc), query=query)
        try:
            await self.store.record_failure(failure)
        except Exception as record_exc:
            self.logger.error("ingest_failure_not_recorded", external_id=external_id, error=str(record_exc))


__all__ = ["BatchReport", "IngestionEngine", "SkippedItem", "DEFAULT_CONTENT_TYPE"]
