"""
SQLAlchemy ORM models for the Fracture database.

Profiles are stored as their versioned export document; corrupt rows are
moved to a quarantine table for offline inspection.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Float, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fracture.database.types import ProfileDocumentJSON


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC timestamp for database defaults."""
    return datetime.now(UTC)


class EntityProfileRecord(Base):
    """Persisted entity profile (one row per entity)."""

    __tablename__ = "entity_profiles"

    entity_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    domain: Mapped[str] = mapped_column(String(50))
    schema_tag: Mapped[str] = mapped_column(String(50))
    document: Mapped[dict[str, Any]] = mapped_column(ProfileDocumentJSON)
    last_observed_at: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("length(entity_id) > 0", name="chk_entity_id"),)

    def __repr__(self) -> str:
        return f"<EntityProfileRecord(entity_id={self.entity_id}, domain={self.domain})>"


class QuarantinedProfile(Base):
    """A profile document that failed validation, kept for offline inspection."""

    __tablename__ = "quarantined_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(String(200), index=True)
    reason: Mapped[str] = mapped_column(Text)
    payload: Mapped[str] = mapped_column(Text)
    quarantined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self) -> str:
        return f"<QuarantinedProfile(id={self.id}, entity_id={self.entity_id})>"
