from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediaapp.core.logging import get_logger
from mediaapp.db.models import IngestFailure, PhotoRecord, UserAccount
from mediaapp.domain import SYSTEM_ACCOUNT_EMAIL, SYSTEM_ACCOUNT_NAME, FailureRecord, Photo, PhotoStore

_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_domain(record: PhotoRecord) -> Photo:
    return Photo(
        id=record.id,
        external_id=record.external_id,
        source_url=record.source_url,
        title=record.title or "",
        description=record.description or "",
        author_name=record.author_name,
        width=record.width,
        height=record.height,
        likes_count=record.likes_count,
        views_count=record.views_count,
        downloads_count=record.downloads_count,
        blob_url=record.blob_url,
        owner_id=record.owner_id,
        uploaded_at=_as_utc(record.uploaded_at),
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


class SqlPhotoStore(PhotoStore):
    """PhotoStore over SQLAlchemy; every call uses its own pooled session.

    Uniqueness of external ids and of the system account name is enforced by
    the database through ``ON CONFLICT DO NOTHING`` inserts followed by a read,
    never by a check-then-insert in Python.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, dialect: str):
        if dialect not in _INSERTS:
            raise ValueError(f"Unsupported database dialect for upserts: {dialect}")
        self.session_factory = session_factory
        self.dialect = dialect
        self._insert = _INSERTS[dialect]
        self._system_account_id: Optional[str] = None
        self.logger = get_logger(component="photo_store")

    async def save(self, photo: Photo) -> Photo:
        if not photo.is_ingested:
            raise ValueError(f"refusing to persist photo {photo.external_id} without a blob url")
        if not photo.owner_id:
            raise ValueError(f"refusing to persist photo {photo.external_id} without an owner")

        stmt = (
            self._insert(PhotoRecord)
            .values(
                id=photo.id,
                external_id=photo.external_id,
                owner_id=photo.owner_id,
                blob_url=photo.blob_url,
                source_url=photo.source_url,
                title=photo.title,
                description=photo.description,
                author_name=photo.author_name,
                width=photo.width,
                height=photo.height,
                likes_count=photo.likes_count,
                views_count=photo.views_count,
                downloads_count=photo.downloads_count,
                uploaded_at=photo.uploaded_at,
            )
            .on_conflict_do_nothing(index_elements=[PhotoRecord.external_id])
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            stored = await self._get_record(session, PhotoRecord.external_id == photo.external_id)

        if stored is None:  # pragma: no cover - the row was deleted between insert and read
            raise LookupError(photo.external_id)
        if result.rowcount == 0:
            self.logger.info("photo_already_persisted", external_id=photo.external_id, photo_id=stored.id)
        else:
            self.logger.info("photo_persisted", external_id=photo.external_id, photo_id=stored.id)
        return _to_domain(stored)

    async def get_by_id(self, photo_id: str) -> Photo | None:
        async with self.session_factory() as session:
            record = await session.get(PhotoRecord, photo_id)
        return _to_domain(record) if record else None

    async def get_by_external_id(self, external_id: str) -> Photo | None:
        async with self.session_factory() as session:
            record = await self._get_record(session, PhotoRecord.external_id == external_id)
        return _to_domain(record) if record else None

    async def search(self, query: str, page: int, per_page: int) -> list[Photo]:
        stmt = (
            select(PhotoRecord)
            .where(
                or_(
                    PhotoRecord.title.icontains(query, autoescape=True),
                    PhotoRecord.description.icontains(query, autoescape=True),
                    PhotoRecord.author_name.icontains(query, autoescape=True),
                )
            )
            .order_by(PhotoRecord.uploaded_at.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        async with self.session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [_to_domain(record) for record in records]

    async def list_recent(self, page: int, per_page: int) -> list[Photo]:
        stmt = (
            select(PhotoRecord)
            .order_by(PhotoRecord.created_at.desc(), PhotoRecord.id)
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        async with self.session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [_to_domain(record) for record in records]

    async def get_or_create_system_account(self) -> str:
        if self._system_account_id:
            return self._system_account_id

        stmt = (
            self._insert(UserAccount)
            .values(id=uuid4().hex, username=SYSTEM_ACCOUNT_NAME, email=SYSTEM_ACCOUNT_EMAIL)
            .on_conflict_do_nothing()
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            account_id = (
                await session.execute(select(UserAccount.id).where(UserAccount.username == SYSTEM_ACCOUNT_NAME))
            ).scalar_one()

        if result.rowcount:
            self.logger.info("system_account_created", account_id=account_id)
        self._system_account_id = account_id
        return account_id

    async def record_failure(self, failure: FailureRecord) -> None:
        async with self.session_factory() as session:
            session.add(
                IngestFailure(
                    external_id=failure.external_id,
                    query=failure.query,
                    reason=failure.reason,
                    message=failure.message,
                )
            )
            await session.commit()

    async def list_failures(self, limit: int = 50) -> list[FailureRecord]:
        stmt = select(IngestFailure).order_by(IngestFailure.id.desc()).limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            FailureRecord(
                id=row.id,
                external_id=row.external_id,
                query=row.query,
                reason=row.reason,
                message=row.message,
                created_at=_as_utc(row.created_at),
            )
            for row in rows
        ]

    @staticmethod
    async def _get_record(session: AsyncSession, condition: Any) -> PhotoRecord | None:
        result = await session.execute(select(PhotoRecord).where(condition).limit(1))
        return result.scalar_one_or_none()


__all__ = ["SqlPhotoStore"]
