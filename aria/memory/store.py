from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DatabaseError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from aria.errors import CorruptMemoryStore, DuplicateMemory, MemoryDatabaseError, MemoryNotFound
from aria.memory import models
from aria.memory.models import MemoryRow, MemoryType, ProfileFact
from aria.telemetry.logging import get_logger

DEFAULT_TTL_DAYS: dict[MemoryType, int | None] = {
    MemoryType.FACT: 365,
    MemoryType.PREFERENCE: 365,
    MemoryType.NOTE: 90,
    MemoryType.CHECKIN: 7,
}

_STOPWORDS = frozenset(
    "the and for you your are was what who where when why how did does have has with that this from "
    "about tell know remember can could would should please my me our any "
    "is of to in it on at an as be do we us or".split()
)
_TOKEN_RE = re.compile(r"[a-z0-9]+")


def query_tokens(query: str) -> list[str]:
    seen: list[str] = []
    for token in _TOKEN_RE.findall(query.lower()):
        if len(token) >= 2 and token not in _STOPWORDS and token not in seen:
            seen.append(token)
    return seen


def like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class MemoryService(Protocol):
    async def add_memory(self, type: MemoryType, content: str, source: str = "conversation") -> MemoryRow: ...

    async def list_memories(self, filter_type: MemoryType | None = None) -> list[MemoryRow]: ...

    async def search_memories(self, query: str, limit: int = 12) -> list[MemoryRow]: ...

    async def delete_memory(self, memory_id: str) -> MemoryRow: ...

    async def clear_memories(self) -> int: ...

    async def upsert_profile_fact(self, attribute: str, value: str, confidence: float = 1.0) -> ProfileFact: ...

    async def core_identity_facts(self, max_items: int = 8) -> list[ProfileFact]: ...


class MemoryStore:
    """Async SQLAlchemy memory store.

    Writes are serialised through one asyncio lock. Deletes are soft: rows
    are deactivated, never removed, and expired rows are hidden from reads.
    """

    def __init__(
        self,
        dsn: str,
        max_pool_size: int = 10,
        ttl_days: dict[MemoryType, int | None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        engine_kwargs: dict = {"echo": False}
        if not dsn.startswith("sqlite"):
            engine_kwargs["pool_size"] = max_pool_size
        self._engine: AsyncEngine = create_async_engine(dsn, **engine_kwargs)
        self._session_factory = sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        self._write_lock = asyncio.Lock()
        self._ttl_days = {**DEFAULT_TTL_DAYS, **(ttl_days or {})}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = get_logger(__name__)

    async def init(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(models.Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise self._wrap(exc) from exc

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise self._wrap(exc) from exc

    def _wrap(self, exc: SQLAlchemyError) -> Exception:
        self._logger.error("memory.store.database_error", error=str(exc))
        if isinstance(exc, DatabaseError) and "not a database" in str(exc).lower():
            return CorruptMemoryStore(str(exc))
        return MemoryDatabaseError(str(exc))

    def _live_filter(self, now: datetime):
        return (
            models.MemoryRecord.is_active.is_(True),
            or_(models.MemoryRecord.expires_at.is_(None), models.MemoryRecord.expires_at > now),
        )

    async def add_memory(self, type: MemoryType, content: str, source: str = "conversation") -> MemoryRow:
        memory_type = MemoryType(type)
        text = content.strip()
        if not text:
            raise ValueError("memory content must not be empty")
        now = self._clock()
        ttl = self._ttl_days.get(memory_type)
        async with self._write_lock:
            async with self._session() as session:
                existing = await session.scalar(
                    select(models.MemoryRecord.id).where(
                        models.MemoryRecord.type == memory_type.value,
                        func.lower(models.MemoryRecord.content) == text.lower(),
                        *self._live_filter(now),
                    )
                )
                if existing is not None:
                    raise DuplicateMemory(f"an identical {memory_type.value} is already stored")
                record = models.MemoryRecord(
                    id=str(uuid4()),
                    type=memory_type.value,
                    content=text,
                    source=source,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + timedelta(days=ttl) if ttl else None,
                    is_active=True,
                )
                session.add(record)
                await session.commit()
        self._logger.info("memory.store.added", id=record.id, type=memory_type.value, source=source)
        return MemoryRow.from_record(record)

    async def list_memories(self, filter_type: MemoryType | None = None) -> list[MemoryRow]:
        stmt = select(models.MemoryRecord).where(*self._live_filter(self._clock()))
        if filter_type is not None:
            stmt = stmt.where(models.MemoryRecord.type == MemoryType(filter_type).value)
        stmt = stmt.order_by(models.MemoryRecord.created_at.desc())
        async with self._session() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [MemoryRow.from_record(record) for record in records]

    async def search_memories(self, query: str, limit: int = 12) -> list[MemoryRow]:
        """Case-insensitive substring match on the whole query or any of its tokens.

        Rows containing the whole query rank first, then by matching tokens.
        """
        phrase = query.strip().lower()
        if not phrase:
            return []
        tokens = query_tokens(query)
        content = models.MemoryRecord.content
        clauses = [content.ilike(like_pattern(phrase), escape="\\")]
        clauses.extend(content.ilike(like_pattern(token), escape="\\") for token in tokens)
        stmt = (
            select(models.MemoryRecord)
            .where(*self._live_filter(self._clock()))
            .where(or_(*clauses))
            .order_by(models.MemoryRecord.created_at.desc())
        )
        async with self._session() as session:
            records = (await session.execute(stmt)).scalars().all()

        def score(record: models.MemoryRecord) -> int:
            text = record.content.lower()
            hits = sum(1 for token in tokens if token in text)
            return hits + (len(tokens) + 1 if phrase in text else 0)

        ranked = sorted(records, key=score, reverse=True)
        return [MemoryRow.from_record(record) for record in ranked[: max(limit, 0)]]

    async def delete_memory(self, memory_id: str) -> MemoryRow:
        """Deactivate one memory by full id or by an unambiguous id prefix."""
        key = memory_id.strip().lower()
        if not key:
            raise MemoryNotFound(memory_id)
        async with self._write_lock:
            async with self._session() as session:
                record = await session.get(models.MemoryRecord, key)
                if record is None or not record.is_active:
                    matches = (
                        await session.execute(
                            select(models.MemoryRecord).where(
                                models.MemoryRecord.id.startswith(key, autoescape=True),
                                models.MemoryRecord.is_active.is_(True),
                            )
                        )
                    ).scalars().all()
                    if len(matches) != 1:
                        raise MemoryNotFound(memory_id)
                    record = matches[0]
                record.is_active = False
                record.updated_at = self._clock()
                await session.commit()
        self._logger.info("memory.store.deleted", id=record.id)
        return MemoryRow.from_record(record)

    async def clear_memories(self) -> int:
        async with self._write_lock:
            async with self._session() as session:
                result = await session.execute(
                    update(models.MemoryRecord)
                    .where(models.MemoryRecord.is_active.is_(True))
                    .values(is_active=False, updated_at=self._clock())
                )
                await session.commit()
        self._logger.info("memory.store.cleared", count=result.rowcount)
        return int(result.rowcount or 0)

    async def prune_expired(self) -> int:
        now = self._clock()
        async with self._write_lock:
            async with self._session() as session:
                result = await session.execute(
                    update(models.MemoryRecord)
                    .where(
                        models.MemoryRecord.is_active.is_(True),
                        models.MemoryRecord.expires_at.is_not(None),
                        models.MemoryRecord.expires_at < now,
                    )
                    .values(is_active=False, updated_at=now)
                )
                await session.commit()
        pruned = int(result.rowcount or 0)
        if pruned:
            self._logger.info("memory.store.pruned", count=pruned)
        return pruned

    async def upsert_profile_fact(self, attribute: str, value: str, confidence: float = 1.0) -> ProfileFact:
        key = attribute.strip().lower()
        if not key:
            raise ValueError("profile fact attribute must not be empty")
        now = self._clock()
        async with self._write_lock:
            async with self._session() as session:
                record = await session.get(models.ProfileFactRecord, key)
                if record is None:
                    record = models.ProfileFactRecord(
                        attribute=key, value=value, confidence=confidence, created_at=now, updated_at=now
                    )
                    session.add(record)
                else:
                    record.value = value
                    record.confidence = confidence
                    record.updated_at = now
                await session.commit()
        self._logger.info("memory.profile.upserted", attribute=key, confidence=confidence)
        return ProfileFact.from_record(record)

    async def core_identity_facts(self, max_items: int = 8) -> list[ProfileFact]:
        stmt = (
            select(models.ProfileFactRecord)
            .order_by(models.ProfileFactRecord.confidence.desc(), models.ProfileFactRecord.updated_at.desc())
            .limit(max_items)
        )
        async with self._session() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [ProfileFact.from_record(record) for record in records]


class NullMemoryStore:
    """Stand-in used when no database is configured; reads are empty, writes fail."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    async def init(self) -> None:  # pragma: no cover - trivial
        self._logger.warning("memory.null.init")

    async def close(self) -> None:  # pragma: no cover - trivial
        return None

    async def add_memory(self, type: MemoryType, content: str, source: str = "conversation") -> MemoryRow:
        self._logger.warning("memory.null.write_ignored", type=str(type))
        raise MemoryDatabaseError("memory store is disabled")

    async def list_memories(self, filter_type: MemoryType | None = None) -> list[MemoryRow]:
        return []

    async def search_memories(self, query: str, limit: int = 12) -> list[MemoryRow]:
        return []

    async def delete_memory(self, memory_id: str) -> MemoryRow:
        raise MemoryNotFound(memory_id)

    async def clear_memories(self) -> int:
        return 0

    async def prune_expired(self) -> int:
        return 0

    async def upsert_profile_fact(self, attribute: str, value: str, confidence: float = 1.0) -> ProfileFact:
        self._logger.warning("memory.null.write_ignored", attribute=attribute)
        raise MemoryDatabaseError("memory store is disabled")

    async def core_identity_facts(self, max_items: int = 8) -> list[ProfileFact]:
        return []


__all__ = ["MemoryService", "MemoryStore", "NullMemoryStore", "DEFAULT_TTL_DAYS", "query_tokens"]
