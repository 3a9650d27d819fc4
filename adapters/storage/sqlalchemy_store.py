"""
SQLAlchemy 2.0 async key-value store.

One ``kv_entries`` table keyed by (collection, key) holding JSON documents.
Every put/delete commits its own transaction.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import JSON, DateTime, String, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from careplan_monitor.config import StorageConfig

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class KVEntry(Base):
    """One JSON document in a named collection."""

    __tablename__ = "kv_entries"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class SqlAlchemyStore:
    """Durable ``KeyValueStore`` backed by SQLite (aiosqlite) or any async SQLAlchemy URL."""

    def __init__(self, config: StorageConfig | None = None, engine: AsyncEngine | None = None) -> None:
        self.config = config or StorageConfig()
        self.engine = engine or create_async_engine(self.config.url)
        self._sessions = sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self.logger = logger.bind(component="sqlalchemy_store")

    async def initialize(self) -> None:
        """Create the table if it does not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logger.info("kv_store_initialized", url=self.engine.url.render_as_string())

    async def close(self) -> None:
        await self.engine.dispose()

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        async with self._sessions() as session:
            entry = await session.get(KVEntry, (collection, key))
            return dict(entry.value) if entry is not None else None

    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        async with self._sessions() as session:
            await session.merge(
                KVEntry(
                    collection=collection,
                    key=key,
                    value=value,
                    updated_at=datetime.now(UTC),
                )
            )
            await session.commit()

    async def delete(self, collection: str, key: str) -> None:
        async with self._sessions() as session:
            entry = await session.get(KVEntry, (collection, key))
            if entry is None:
                return
            await session.delete(entry)
            await session.commit()

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        async with self._sessions() as session:
            result = await session.execute(
                select(KVEntry).where(KVEntry.collection == collection).order_by(KVEntry.key)
            )
            return [dict(entry.value) for entry in result.scalars()]
