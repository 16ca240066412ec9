from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import TIMESTAMP, Boolean, Float, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def as_utc(value: datetime) -> datetime:
    """SQLite hands timestamps back naive; they are always written in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MemoryType(str, Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    NOTE = "note"
    CHECKIN = "checkin"


class Base(DeclarativeBase):
    pass


class MemoryRecord(Base):
    __tablename__ = "memories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(20), index=True)
    content: Mapped[str] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(64), default="conversation")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)


class ProfileFactRecord(Base):
    __tablename__ = "profile_facts"

    attribute: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))


@dataclass(slots=True, frozen=True)
class MemoryRow:
    id: str
    type: MemoryType
    content: str
    source: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None
    is_active: bool = True

    @property
    def short_id(self) -> str:
        return self.id[:8].lower()

    @classmethod
    def from_record(cls, record: MemoryRecord) -> "MemoryRow":
        return cls(
            id=record.id,
            type=MemoryType(record.type),
            content=record.content,
            source=record.source,
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
            expires_at=as_utc(record.expires_at) if record.expires_at else None,
            is_active=record.is_active,
        )


@dataclass(slots=True, frozen=True)
class ProfileFact:
    attribute: str
    value: str
    confidence: float
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: ProfileFactRecord) -> "ProfileFact":
        return cls(
            attribute=record.attribute,
            value=record.value,
            confidence=record.confidence,
            updated_at=as_utc(record.updated_at),
        )


__all__ = ["as_utc", "Base", "MemoryType", "MemoryRecord", "ProfileFactRecord", "MemoryRow", "ProfileFact"]
