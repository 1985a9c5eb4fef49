"""History store: durable identification records in a local SQLite database.

Records live in the ``fungi`` table. Every public operation runs in its own
transaction, ids come from SQLite ``AUTOINCREMENT`` so they are never reused,
and ``created_at`` is assigned by the store at insert time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, Text, create_engine, event, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from fungiscan.errors import InvalidScoreVector, PersistError, RecordNotFoundError
from fungiscan.ranking import dump_ranking, load_ranking

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from fungiscan.ranking import Prediction, RankedResult

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FungusRow(Base):
    __tablename__ = "fungi"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    predictions: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        "dateTime", DateTime, default=_utcnow, server_default=func.current_timestamp()
    )


@dataclass(frozen=True)
class HistoryRecord:
    """One stored identification."""

    id: int
    image_path: str
    ranking: RankedResult
    created_at: datetime


def _to_record(row: FungusRow) -> HistoryRecord:
    created_at = row.created_at
    # SQLite drops tzinfo; values are always written in UTC.
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    try:
        ranking = load_ranking(row.predictions)
    except InvalidScoreVector as exc:
        raise PersistError(f"Record {row.id} has a corrupt ranking: {exc}") from exc
    return HistoryRecord(id=row.id, image_path=row.path, ranking=ranking, created_at=created_at)


def create_db_engine(url: str) -> Engine:
    """Create a SQLAlchemy engine for the history database.

    In-memory databases share a single connection so every session sees the
    same data. File databases use WAL journaling.
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)

    engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


class HistoryStore:
    """Append, read, and delete identification records."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        # One SQLite connection may be shared across threads (in-memory databases).
        self._lock = threading.RLock()

    @classmethod
    def from_url(cls, url: str, *, data_dir: Path | None = None) -> HistoryStore:
        if data_dir is not None:
            data_dir.mkdir(parents=True, exist_ok=True)
        return cls(create_db_engine(url))

    def init_schema(self) -> None:
        """Create the ``fungi`` table if it does not exist yet. Safe to repeat."""
        try:
            Base.metadata.create_all(bind=self._engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise PersistError(f"Failed to initialize history schema: {exc}") from exc
        logger.info("History schema ready (%s)", self._engine.url)

    def append(self, image_path: str | Path, ranking: Iterable[Prediction]) -> HistoryRecord:
        """Insert a record and return it with its assigned id and timestamp."""
        row = FungusRow(path=str(image_path), predictions=dump_ranking(ranking))
        try:
            with self._lock, self._sessions.begin() as session:
                session.add(row)
                session.flush()
                record = _to_record(row)
        except SQLAlchemyError as exc:
            raise PersistError(f"Failed to save history record: {exc}") from exc
        return record

    def list_all(self) -> list[HistoryRecord]:
        """Return all records, oldest first."""
        stmt = select(FungusRow).order_by(FungusRow.created_at, FungusRow.id)
        try:
            with self._lock, self._sessions() as session:
                rows = session.scalars(stmt).all()
                return [_to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistError(f"Failed to read history: {exc}") from exc

    def get_by_id(self, record_id: int) -> HistoryRecord:
        """Return one record.

        Raises:
            RecordNotFoundError: If no record has this id.
        """
        try:
            with self._lock, self._sessions() as session:
                row = session.get(FungusRow, record_id)
                if row is None:
                    raise RecordNotFoundError(record_id)
                return _to_record(row)
        except SQLAlchemyError as exc:
            raise PersistError(f"Failed to read history record {record_id}: {exc}") from exc

    def delete(self, record_id: int) -> None:
        """Delete one record. The owned image file is left on disk.

        Raises:
            RecordNotFoundError: If no record has this id.
        """
        try:
            with self._lock, self._sessions.begin() as session:
                row = session.get(FungusRow, record_id)
                if row is None:
                    raise RecordNotFoundError(record_id)
                session.delete(row)
        except SQLAlchemyError as exc:
            raise PersistError(f"Failed to delete history record {record_id}: {exc}") from exc
        logger.info("Deleted history record %d", record_id)

    def dispose(self) -> None:
        """Close all pooled connections."""
        self._engine.dispose()
