"""Persistence of entity profiles as versioned export documents."""

import json
import logging

from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import text
from sqlalchemy.orm import Session

from fracture.database import models
from fracture.database.session import session_scope
from fracture.models.profile import EntityProfile, ProfileDocument
from fracture.profiles.migrations import migrate_document

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]


class StoredProfileSummary(BaseModel):
    """Row-level summary of a persisted profile."""

    entity_id: str
    domain: str
    schema_tag: str
    last_observed_at: float | None = None
    updated_at: datetime | None = None


class QuarantineEntry(BaseModel):
    """A quarantined profile payload."""

    id: int
    entity_id: str
    reason: str
    payload: str = Field(description="Raw stored document")
    quarantined_at: datetime | None = None


class ProfileRepository:
    """
    Load and save EntityProfiles.

    A stored document that fails migration or validation is moved to the
    quarantine table and replaced by the caller's fallback profile.

    Example:
        >>> init_database("/tmp/fracture.db")
        >>> repo = ProfileRepository()
        >>> repo.save(profile)
        >>> repo.load("P1").thresholds == profile.thresholds
        True
    """

    def __init__(self, scope: SessionScope = session_scope):
        self._scope = scope

    def save(self, profile: EntityProfile) -> None:
        """Insert or replace the stored document for a profile."""
        self.save_document(ProfileDocument.from_profile(profile).to_json_dict())

    def save_document(self, document: dict[str, Any]) -> None:
        """Insert or replace a stored export document as-is."""
        with self._scope() as session:
            record = session.get(models.EntityProfileRecord, document["entity_id"])
            if record is None:
                record = models.EntityProfileRecord(entity_id=document["entity_id"])
                session.add(record)
            record.domain = document["domain"]
            record.schema_tag = document["schema"]
            record.document = document
            record.last_observed_at = document.get("last_observed_at")

    def load(
        self,
        entity_id: str,
        fallback: Callable[[str], EntityProfile] | None = None,
    ) -> EntityProfile | None:
        """
        Load a stored profile.

        Args:
            entity_id: Entity key
            fallback: Factory for a fresh profile, used when the stored one is
                corrupt

        Returns:
            The stored profile; the fallback profile if the stored one was
            quarantined; None if nothing is stored (or corrupt with no fallback)
        """
        try:
            with self._scope() as session:
                record = session.get(models.EntityProfileRecord, entity_id)
                if record is None:
                    return None
                document = record.document
            migrated = migrate_document(dict(document))
            return ProfileDocument.model_validate(migrated).to_profile()
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            self.quarantine(entity_id, str(e))

        if fallback is None:
            return None
        logger.warning(f"Falling back to a fresh profile for entity '{entity_id}'")
        profile = fallback(entity_id)
        self.save(profile)
        return profile

    def quarantine(self, entity_id: str, reason: str) -> None:
        """Move an entity's stored document into the quarantine table."""
        logger.error(f"Quarantining profile for entity '{entity_id}': {reason}")
        with self._scope() as session:
            raw = session.execute(
                text("SELECT document FROM entity_profiles WHERE entity_id = :id"),
                {"id": entity_id},
            ).scalar()
            session.add(
                models.QuarantinedProfile(
                    entity_id=entity_id,
                    reason=reason,
                    payload=raw if isinstance(raw, str) else json.dumps(raw),
                )
            )
            session.execute(
                text("DELETE FROM entity_profiles WHERE entity_id = :id"),
                {"id": entity_id},
            )

    def delete(self, entity_id: str) -> bool:
        """Delete a stored profile. Returns False if none existed."""
        with self._scope() as session:
            deleted = (
                session.query(models.EntityProfileRecord)
                .filter_by(entity_id=entity_id)
                .delete()
            )
        return bool(deleted)

    def list_entities(self, limit: int | None = None) -> list[StoredProfileSummary]:
        """Summaries of stored profiles, most recently updated first."""
        with self._scope() as session:
            query = session.query(
                models.EntityProfileRecord.entity_id,
                models.EntityProfileRecord.domain,
                models.EntityProfileRecord.schema_tag,
                models.EntityProfileRecord.last_observed_at,
                models.EntityProfileRecord.updated_at,
            ).order_by(models.EntityProfileRecord.updated_at.desc())
            if limit:
                query = query.limit(limit)
            return [
                StoredProfileSummary(
                    entity_id=row.entity_id,
                    domain=row.domain,
                    schema_tag=row.schema_tag,
                    last_observed_at=row.last_observed_at,
                    updated_at=row.updated_at,
                )
                for row in query.all()
            ]

    def inactive_entities(self, cutoff: float) -> list[str]:
        """Entities whose last observation is older than ``cutoff``."""
        with self._scope() as session:
            rows = (
                session.query(models.EntityProfileRecord.entity_id)
                .filter(models.EntityProfileRecord.last_observed_at < cutoff)
                .all()
            )
        return [row.entity_id for row in rows]

    def list_quarantined(self) -> list[QuarantineEntry]:
        with self._scope() as session:
            rows = session.query(models.QuarantinedProfile).order_by(
                models.QuarantinedProfile.id
            )
            return [
                QuarantineEntry(
                    id=row.id,
                    entity_id=row.entity_id,
                    reason=row.reason,
                    payload=row.payload,
                    quarantined_at=row.quarantined_at,
                )
                for row in rows
            ]

    def count(self) -> int:
        with self._scope() as session:
            return session.query(models.EntityProfileRecord).count()
