"""Process-wide dependency wiring."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mediaapp.db.photo_store import SqlPhotoStore
from mediaapp.domain import BinaryDownloader, PhotoSource, PhotoStore
from mediaapp.ingest.download import HttpBinaryDownloader
from mediaapp.ingest.unsplash import UnsplashPhotoSource
from mediaapp.services.ingestion import IngestionEngine

from .admission import AdmissionGate
from .config import Settings
from .db import create_engine, create_session_factory
from .queue import WorkQueue, get_work_queue
from .storage import BlobStore, get_blob_store


@dataclass
class Runtime:
    """Holds every collaborator of one API or worker process."""

    settings: Settings
    db_engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    store: PhotoStore
    blobs: BlobStore
    source: PhotoSource
    downloader: BinaryDownloader
    engine: IngestionEngine
    queue: WorkQueue
    gate: AdmissionGate
    close_callbacks: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for callback in reversed(self.close_callbacks):
            await callback()
        self.close_callbacks.clear()


def build_runtime(
    settings: Settings,
    *,
    photo_source: Optional[PhotoSource] = None,
    blob_store: Optional[BlobStore] = None,
    downloader: Optional[BinaryDownloader] = None,
    work_queue: Optional[WorkQueue] = None,
    gate: Optional[AdmissionGate] = None,
) -> Runtime:
    """Create the default runtime; any collaborator may be supplied instead."""
    db_engine = create_engine(settings)
    session_factory = create_session_factory(db_engine)
    store = SqlPhotoStore(session_factory, dialect=db_engine.dialect.name)
    close_callbacks: list[Callable[[], Awaitable[None]]] = [db_engine.dispose]

    if photo_source is None:
        unsplash = UnsplashPhotoSource.create(
            settings.secrets.unsplash_access_key or "",
            settings.unsplash_api_url,
            timeout_s=settings.http_timeout_s,
        )
        close_callbacks.append(unsplash.close)
        photo_source = unsplash
    if downloader is None:
        http_downloader = HttpBinaryDownloader.create(timeout_s=settings.http_timeout_s)
        close_callbacks.append(http_downloader.close)
        downloader = http_downloader
    if blob_store is None:
        blob_store = get_blob_store(settings)
    if work_queue is None:
        work_queue = get_work_queue(settings)
        close_callbacks.append(work_queue.close)
    if gate is None:
        gate = AdmissionGate(settings.admission_capacity, cancel_poll_interval_s=settings.disconnect_poll_interval_s)

    engine = IngestionEngine(
        photo_source,
        store,
        blob_store,
        downloader,
        key_prefix=settings.blob_key_prefix,
    )
    return Runtime(
        settings=settings,
        db_engine=db_engine,
        session_factory=session_factory,
        store=store,
        blobs=blob_store,
        source=photo_source,
        downloader=downloader,
        engine=engine,
        queue=work_queue,
        gate=gate,
        close_callbacks=close_callbacks,
    )


__all__ = ["Runtime", "build_runtime"]
