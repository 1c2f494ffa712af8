"""
Local storage for the offline client.

One SQLite file (through SQLAlchemy async + aiosqlite) holds two things:

  cached_records   last known copy of server records, per store, keyed by
                   the record's natural key (upsert, no eviction, no TTL)
  outbound_queue   writes made while the portal API was unreachable,
                   drained in insertion order by the sync coordinator

Storage failures never reach the caller: when the local engine cannot be
opened, or a single operation fails, the operation logs and returns its
empty value (``None``, ``[]`` or ``0``).
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy import BigInteger, DateTime, Integer, JSON, String, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from portal.db.database import build_engine, build_session_maker

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientBase = declarative_base()

# Store name -> field holding the record's natural key
STORE_KEYS: Dict[str, str] = {
    "services": "id",
    "faqs": "id",
    "recent_activities": "timestamp",
}


def epoch_ms() -> int:
    return int(time.time() * 1000)


class CachedRecordRow(ClientBase):
    __tablename__ = "cached_records"

    store: Mapped[str] = mapped_column(String(50), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class QueueRow(ClientBase):
    __tablename__ = "outbound_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(50))
    payload: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[int] = mapped_column(BigInteger)  # epoch ms


@dataclass
class QueuedPayload:
    id: int
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0

    def to_sync_item(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type, "payload": self.payload}


class OfflineStore:
    """Owns the local engine; exposes ``cache`` and ``queue``."""

    def __init__(self, url: str, clock: Optional[Callable[[], int]] = None):
        self.url = url
        self.clock = clock or epoch_ms
        self.available = False
        self._engine = None
        self._session_maker: Optional[async_sessionmaker] = None
        self.cache = LocalRecordCache(self)
        self.queue = OutboundQueue(self)

    async def open(self) -> bool:
        """Create tables if needed. False when the local store cannot be used."""
        if self.available:
            return True
        engine = None
        try:
            engine = build_engine(self.url)
            async with engine.begin() as conn:
                await conn.run_sync(ClientBase.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("[CACHE] Local store unavailable (%s): %s", self.url, e)
            if engine is not None:
                await engine.dispose()
            return False

        self._engine = engine
        self._session_maker = build_session_maker(engine)
        self.available = True
        return True

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_maker = None
        self.available = False

    async def run(self, operation: Callable[[AsyncSession], Awaitable[T]], default: T) -> T:
        """Run one unit of work; storage errors degrade to ``default``."""
        if not self.available or self._session_maker is None:
            return default
        try:
            async with self._session_maker() as session:
                return await operation(session)
        except SQLAlchemyError as e:
            logger.warning("[CACHE] Local store operation failed: %s", e)
            return default


def _check_store(store: str) -> str:
    if store not in STORE_KEYS:
        raise ValueError(f"Unknown store: {store!r}")
    return STORE_KEYS[store]


class LocalRecordCache:
    """Last known copy of server records, usable while offline."""

    def __init__(self, store: OfflineStore):
        self._store = store

    def _row(self, store: str, record: Dict[str, Any]) -> CachedRecordRow:
        key_field = _check_store(store)
        if record.get(key_field) is None:
            raise ValueError(f"Record for {store!r} has no {key_field!r}")
        return CachedRecordRow(
            store=store, key=str(record[key_field]), data=dict(record), cached_at=datetime.utcnow(),
        )

    async def put(self, store: str, record: Dict[str, Any]) -> None:
        await self.put_many(store, [record])

    async def put_many(self, store: str, records: Iterable[Dict[str, Any]]) -> None:
        rows = [self._row(store, record) for record in records]
        if not rows:
            return

        async def op(session: AsyncSession) -> None:
            for row in rows:
                await session.merge(row)
            await session.commit()

        await self._store.run(op, None)

    async def get(self, store: str, key: Any) -> Optional[Dict[str, Any]]:
        _check_store(store)

        async def op(session: AsyncSession) -> Optional[Dict[str, Any]]:
            row = await session.get(CachedRecordRow, (store, str(key)))
            return dict(row.data) if row is not None else None

        return await self._store.run(op, None)

    async def get_all(self, store: str) -> List[Dict[str, Any]]:
        _check_store(store)

        async def op(session: AsyncSession) -> List[Dict[str, Any]]:
            result = await session.execute(
                select(CachedRecordRow).where(CachedRecordRow.store == store).order_by(CachedRecordRow.key)
            )
            return [dict(row.data) for row in result.scalars().all()]

        return await self._store.run(op, [])

    async def add_recent_activity(self, activity: Dict[str, Any]) -> Dict[str, Any]:
        record = {**activity, "timestamp": self._store.clock()}
        await self.put("recent_activities", record)
        return record


class OutboundQueue:
    """Durable FIFO of writes waiting for the portal API."""

    def __init__(self, store: OfflineStore):
        self._store = store

    async def enqueue(self, payload_type: str, payload: Dict[str, Any]) -> Optional[QueuedPayload]:
        async def op(session: AsyncSession) -> QueuedPayload:
            row = QueueRow(type=payload_type, payload=dict(payload), created_at=self._store.clock())
            session.add(row)
            await session.commit()
            return QueuedPayload(id=row.id, type=row.type, payload=row.payload, created_at=row.created_at)

        queued = await self._store.run(op, None)
        if queued is not None:
            logger.info("[QUEUE] Queued %s as #%d", payload_type, queued.id)
        return queued

    async def list(self) -> List[QueuedPayload]:
        async def op(session: AsyncSession) -> List[QueuedPayload]:
            result = await session.execute(select(QueueRow).order_by(QueueRow.id))
            return [
                QueuedPayload(id=row.id, type=row.type, payload=row.payload, created_at=row.created_at)
                for row in result.scalars().all()
            ]

        return await self._store.run(op, [])

    async def remove(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0

        async def op(session: AsyncSession) -> int:
            result = await session.execute(delete(QueueRow).where(QueueRow.id.in_(ids)))
            await session.commit()
            return result.rowcount or 0

        return await self._store.run(op, 0)

    async def clear(self) -> int:
        async def op(session: AsyncSession) -> int:
            result = await session.execute(delete(QueueRow))
            await session.commit()
            return result.rowcount or 0

        return await self._store.run(op, 0)

    async def size(self) -> int:
        async def op(session: AsyncSession) -> int:
            return await session.scalar(select(func.count(QueueRow.id))) or 0

        return await self._store.run(op, 0)
