"""
Metadata store for photo records, in SQLAlchemy and in-memory flavours.

Both implementations serialize the read-compare-write of ``update_metadata``
per photo id: the in-memory store with a lock per id, the SQL store with a
conditional ``UPDATE ... WHERE last_modified = :expected``.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import JSON, BigInteger, Column, String, create_engine, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tagline.errors import BackendUnavailableError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

PHOTO_NOT_FOUND = "Photo not found"
METADATA_STORE_UNAVAILABLE = "Metadata store unavailable"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MICROSECOND = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_timestamp(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_micros(value: datetime) -> int:
    return (normalize_timestamp(value) - EPOCH) // ONE_MICROSECOND


def from_micros(value: int) -> datetime:
    return EPOCH + timedelta(microseconds=value)


def next_timestamp(previous: datetime) -> datetime:
    """A timestamp strictly after ``previous``, even if the clock went backwards."""
    return max(utcnow(), normalize_timestamp(previous) + ONE_MICROSECOND)


def default_metadata() -> dict:
    return {"description": ""}


@dataclass(frozen=True)
class PhotoRecord:
    id: str
    object_key: str
    metadata: dict = field(default_factory=default_metadata)
    last_modified: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "object_key": self.object_key,
            "metadata": copy.deepcopy(self.metadata),
            "last_modified": self.last_modified,
        }


class MetadataStore(Protocol):
    """Interface for photo record persistence."""

    def create_photo(
        self, object_key: str, metadata: Optional[dict] = None
    ) -> PhotoRecord:
        ...

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        ...

    def list_photos(
        self, limit: int, offset: int = 0
    ) -> tuple[list[PhotoRecord], int]:
        ...

    def object_key_index(self) -> Dict[str, str]:
        ...

    def update_metadata(
        self,
        photo_id: str,
        metadata: dict,
        expected_last_modified: datetime,
    ) -> PhotoRecord:
        ...


class InMemoryMetadataStore:
    """Simple in-memory metadata store for development and tests."""

    def __init__(self):
        self.records: Dict[str, PhotoRecord] = {}
        self._ids_by_key: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._photo_locks: Dict[str, threading.Lock] = {}

    def _photo_lock(self, photo_id: str) -> Optional[threading.Lock]:
        with self._lock:
            if photo_id not in self.records:
                return None
            return self._photo_locks.setdefault(photo_id, threading.Lock())

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.records.clear()
            self._ids_by_key.clear()
            self._photo_locks.clear()

    def create_photo(
        self, object_key: str, metadata: Optional[dict] = None
    ) -> PhotoRecord:
        now = utcnow()
        record = PhotoRecord(
            id=str(uuid.uuid4()),
            object_key=object_key,
            metadata=copy.deepcopy(metadata) if metadata is not None else default_metadata(),
            last_modified=now,
            created_at=now,
        )
        with self._lock:
            if object_key in self._ids_by_key:
                raise ConflictError("Object key already registered")
            self.records[record.id] = record
            self._ids_by_key[object_key] = record.id
        return replace(record, metadata=copy.deepcopy(record.metadata))

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        with self._lock:
            record = self.records.get(photo_id)
        if record is None:
            return None
        # Records are replaced wholesale on update, so this pair is never torn.
        return replace(record, metadata=copy.deepcopy(record.metadata))

    def list_photos(
        self, limit: int, offset: int = 0
    ) -> tuple[list[PhotoRecord], int]:
        with self._lock:
            records = list(self.records.values())
        window = records[offset : offset + limit]
        return [replace(r, metadata=copy.deepcopy(r.metadata)) for r in window], len(records)

    def object_key_index(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._ids_by_key)

    def update_metadata(
        self,
        photo_id: str,
        metadata: dict,
        expected_last_modified: datetime,
    ) -> PhotoRecord:
        photo_lock = self._photo_lock(photo_id)
        if photo_lock is None:
            raise NotFoundError(PHOTO_NOT_FOUND)
        with photo_lock:
            with self._lock:
                current = self.records.get(photo_id)
            if current is None:
                raise NotFoundError(PHOTO_NOT_FOUND)
            if current.last_modified != normalize_timestamp(expected_last_modified):
                raise ConflictError()
            updated = replace(
                current,
                metadata={**copy.deepcopy(current.metadata), **copy.deepcopy(metadata)},
                last_modified=next_timestamp(current.last_modified),
            )
            with self._lock:
                self.records[photo_id] = updated
        return replace(updated, metadata=copy.deepcopy(updated.metadata))


class SqlMetadataStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite).

    Timestamps are stored as integer microseconds since the epoch so the
    optimistic-concurrency comparison is exact on every backend.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("database_url is required for SqlMetadataStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        try:
            Base.metadata.create_all(self.engine)
        except DBAPIError as exc:
            raise BackendUnavailableError(METADATA_STORE_UNAVAILABLE) from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except IntegrityError:
            raise
        except DBAPIError as exc:
            logger.warning("Metadata store error: %s", exc)
            raise BackendUnavailableError(METADATA_STORE_UNAVAILABLE) from exc

    def _to_record(self, row: "PhotoRow") -> PhotoRecord:
        return PhotoRecord(
            id=row.id,
            object_key=row.object_key,
            metadata=copy.deepcopy(row.data or {}),
            last_modified=from_micros(row.last_modified_us),
            created_at=from_micros(row.created_at_us),
        )

    def create_photo(
        self, object_key: str, metadata: Optional[dict] = None
    ) -> PhotoRecord:
        now = to_micros(utcnow())
        row = PhotoRow(
            id=str(uuid.uuid4()),
            object_key=object_key,
            data=metadata if metadata is not None else default_metadata(),
            last_modified_us=now,
            created_at_us=now,
        )
        try:
            with self._session() as session:
                session.add(row)
                session.commit()
                return self._to_record(row)
        except IntegrityError as exc:
            raise ConflictError("Object key already registered") from exc

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        with self._session() as session:
            row = session.get(PhotoRow, photo_id)
            return self._to_record(row) if row else None

    def list_photos(
        self, limit: int, offset: int = 0
    ) -> tuple[list[PhotoRecord], int]:
        with self._session() as session:
            total = session.scalar(select(func.count()).select_from(PhotoRow)) or 0
            rows = session.scalars(
                select(PhotoRow)
                .order_by(PhotoRow.created_at_us.asc(), PhotoRow.id.asc())
                .offset(offset)
                .limit(limit)
            ).all()
            return [self._to_record(row) for row in rows], total

    def object_key_index(self) -> Dict[str, str]:
        with self._session() as session:
            rows = session.execute(select(PhotoRow.object_key, PhotoRow.id)).all()
            return {object_key: photo_id for object_key, photo_id in rows}

    def update_metadata(
        self,
        photo_id: str,
        metadata: dict,
        expected_last_modified: datetime,
    ) -> PhotoRecord:
        expected_us = to_micros(expected_last_modified)
        with self._session() as session:
            row = session.get(PhotoRow, photo_id)
            if row is None:
                raise NotFoundError(PHOTO_NOT_FOUND)
            if row.last_modified_us != expected_us:
                raise ConflictError()
            merged = {**(row.data or {}), **metadata}
            new_us = max(to_micros(utcnow()), row.last_modified_us + 1)
            result = session.execute(
                update(PhotoRow)
                .where(
                    PhotoRow.id == photo_id,
                    PhotoRow.last_modified_us == expected_us,
                )
                .values({PhotoRow.data: merged, PhotoRow.last_modified_us: new_us})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another writer committed between our read and our update.
                session.rollback()
                raise ConflictError()
            session.commit()
            return PhotoRecord(
                id=row.id,
                object_key=row.object_key,
                metadata=copy.deepcopy(merged),
                last_modified=from_micros(new_us),
                created_at=from_micros(row.created_at_us),
            )


Base = declarative_base()


class PhotoRow(Base):
    __tablename__ = "photos"

    id = Column(String(36), primary_key=True)
    object_key = Column(String, nullable=False, unique=True, index=True)
    data = Column("metadata", JSON, nullable=False)
    last_modified_us = Column(BigInteger, nullable=False)
    created_at_us = Column(BigInteger, nullable=False, index=True)
