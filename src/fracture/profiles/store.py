"""
Entity profile store.

Owns one EntityProfile per entity: rolling channel baselines, bounded pattern
memory, learned thresholds and counters. Callers serialize access per entity
(EngineContext holds a lock per entity); the store's own lock only guards the
profile map.
"""

import logging
import threading

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from fracture.constants import ProfileConstants as PC
from fracture.domains.types import DomainConfig
from fracture.exceptions import ProfileCorruptionError
from fracture.models.features import FractureScore
from fracture.models.profile import (
    ChannelBaseline,
    EntityProfile,
    PatternEntry,
    ProfileDocument,
    ProfileSnapshot,
    Thresholds,
)
from fracture.profiles.migrations import migrate_document
from fracture.profiles.thresholds import enforce_ordering
from fracture.types import OutcomeLabel, Tier, Trend

if TYPE_CHECKING:
    from fracture.database.repository import ProfileRepository

logger = logging.getLogger(__name__)

__all__ = ["ProfileStore"]


class ProfileStore:
    """
    In-memory profile map with optional database backing.

    Profiles are created on first observation and never removed implicitly;
    ``evict`` and ``import_profile`` are the only ways in or out besides
    creation.

    Example:
        >>> store = ProfileStore(get_domain("clinical"))
        >>> profile = store.get_or_create("P1")
        >>> store.get_personalized_threshold("P1", 0.6)
        0.6
    """

    def __init__(
        self,
        domain: DomainConfig,
        repository: "ProfileRepository | None" = None,
    ):
        self.domain = domain
        self.repository = repository
        self._profiles: dict[str, EntityProfile] = {}
        self._lock = threading.Lock()

    def __contains__(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._profiles

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    def entity_ids(self) -> list[str]:
        with self._lock:
            return list(self._profiles)

    # ------------------------------------------------------------------
    # Lookup and creation
    # ------------------------------------------------------------------

    def new_profile(self, entity_id: str) -> EntityProfile:
        """Fresh default profile seeded with the domain's base thresholds."""
        return EntityProfile(
            entity_id=entity_id,
            domain=self.domain.name,
            thresholds=self.domain.thresholds,
        )

    def get(self, entity_id: str) -> EntityProfile | None:
        """
        Get an existing profile, loading it from the repository if needed.

        Args:
            entity_id: Entity key

        Returns:
            The profile, or None if the entity has never been seen
        """
        with self._lock:
            profile = self._profiles.get(entity_id)
        if profile is not None or self.repository is None:
            return profile

        loaded = self.repository.load(entity_id, fallback=self.new_profile)
        if loaded is None:
            return None
        with self._lock:
            return self._profiles.setdefault(entity_id, loaded)

    def get_or_create(self, entity_id: str) -> EntityProfile:
        """Get a profile, creating a default one on first observation."""
        profile = self.get(entity_id)
        if profile is not None:
            return profile

        with self._lock:
            profile = self._profiles.get(entity_id)
            if profile is None:
                profile = self.new_profile(entity_id)
                self._profiles[entity_id] = profile
                logger.info(f"Created profile for entity '{entity_id}'")
            return profile

    # ------------------------------------------------------------------
    # Observation updates
    # ------------------------------------------------------------------

    def update_baselines(
        self, profile: EntityProfile, channels: dict[str, float], timestamp: float
    ) -> None:
        """
        Fold validated channel values into the rolling baselines.

        Args:
            profile: Profile to update
            channels: Channel values already validated as finite and in range
            timestamp: Sample timestamp
        """
        for name, value in channels.items():
            baseline = profile.baselines.get(name)
            if baseline is None:
                baseline = profile.baselines[name] = ChannelBaseline()
            baseline.update(value, self.domain.baseline_window)
        profile.last_observed_at = timestamp
        profile.touch()

    def record_score(self, profile: EntityProfile, score: FractureScore) -> None:
        """
        Remember a scored evaluation.

        The FI baseline only learns from evaluations taken while the tier is
        stable, so episodes do not widen the personalization margin.
        """
        if score.insufficient_data:
            return
        profile.recent_fi.append(score.fi)
        if len(profile.recent_fi) > PC.RECENT_SCORES:
            del profile.recent_fi[: len(profile.recent_fi) - PC.RECENT_SCORES]
        if score.tier == Tier.STABLE:
            profile.fi_baseline.update(score.fi, self.domain.baseline_window)

    def record_pattern(
        self,
        profile: EntityProfile,
        score: FractureScore,
        channels: dict[str, float],
        timestamp: float,
        episode_id: str | None,
    ) -> PatternEntry | None:
        """
        Append a pattern-memory snapshot when FI reaches the notable floor.

        Returns:
            The stored entry, or None if FI was below the floor
        """
        if score.insufficient_data or score.fi < self.domain.notable_floor:
            return None

        entry = PatternEntry(
            timestamp=timestamp,
            fi=score.fi,
            tier=score.tier,
            features=score.features,
            channels=dict(channels),
            episode_id=episode_id,
        )
        profile.patterns.append(entry)
        overflow = len(profile.patterns) - self.domain.pattern_capacity
        if overflow > 0:
            del profile.patterns[:overflow]
        return entry

    def record_intervention(self, profile: EntityProfile) -> None:
        profile.counters.interventions += 1
        profile.touch()

    def record_crisis(self, profile: EntityProfile) -> None:
        profile.counters.crises += 1
        profile.touch()

    # ------------------------------------------------------------------
    # Personalization and risk
    # ------------------------------------------------------------------

    def _margin(self, profile: EntityProfile) -> float:
        if profile.fi_baseline.count < self.domain.min_personalization_samples:
            return 0.0
        return self.domain.threshold_std_factor * profile.fi_baseline.std

    def get_personalized_threshold(self, entity_id: str, base: float) -> float:
        """
        Adjust a base threshold by the entity's FI variability.

        Args:
            entity_id: Entity key
            base: Base threshold in FI units

        Returns:
            base + threshold_std_factor * std(FI) once enough stable samples
            exist, clamped to the safety band
        """
        profile = self.get(entity_id)
        margin = self._margin(profile) if profile is not None else 0.0
        return self.domain.safety_band.clamp(base + margin)

    def personalized_thresholds(self, profile: EntityProfile) -> Thresholds:
        """Learned thresholds shifted by the personalization margin."""
        margin = self._margin(profile)
        if margin == 0.0:
            return profile.thresholds
        learned = profile.thresholds
        return enforce_ordering(
            learned.gentle + margin,
            learned.moderate + margin,
            learned.aggressive + margin,
            self.domain.safety_band,
        )

    def _channel_matches(
        self, profile: EntityProfile, stored: dict[str, float], current: dict[str, float]
    ) -> bool:
        for name, value in stored.items():
            if name not in current:
                continue
            baseline = profile.baselines.get(name)
            tolerance = max(
                PC.MATCH_CHANNEL_RELATIVE_TOLERANCE * abs(value),
                baseline.std if baseline is not None else 0.0,
            )
            if abs(current[name] - value) > tolerance:
                return False
        return True

    def predict_risk(
        self, entity_id: str, fi: float, channels: dict[str, float] | None = None
    ) -> float:
        """
        Estimate crisis risk from similar labeled patterns.

        A stored pattern matches when its FI is within 0.1 of ``fi`` and every
        shared channel is within 10% or one baseline standard deviation.

        Args:
            entity_id: Entity key
            fi: Current Fracture Index
            channels: Current channel values

        Returns:
            Fraction of matching labeled patterns that resolved as crises, or
            0.5 when nothing labeled matches
        """
        profile = self.get(entity_id)
        if profile is None:
            return PC.DEFAULT_RISK

        current = channels or {}
        matched = [
            p
            for p in profile.patterns
            if p.outcome is not None
            and abs(p.fi - fi) <= PC.MATCH_FI_TOLERANCE
            and self._channel_matches(profile, p.channels, current)
        ]
        if not matched:
            return PC.DEFAULT_RISK
        crises = sum(1 for p in matched if p.outcome == OutcomeLabel.CRISIS)
        return crises / len(matched)

    # ------------------------------------------------------------------
    # Projection, export, import, eviction
    # ------------------------------------------------------------------

    def snapshot(
        self, entity_id: str, tier: Tier = Tier.STABLE, trend: Trend = Trend.STABLE
    ) -> ProfileSnapshot | None:
        """Read-only projection of a profile, or None for an unknown entity."""
        profile = self.get(entity_id)
        if profile is None:
            return None
        return ProfileSnapshot(
            entity_id=profile.entity_id,
            domain=profile.domain,
            thresholds=profile.thresholds,
            personalized_thresholds=self.personalized_thresholds(profile),
            counters=profile.counters.model_copy(),
            tier=tier,
            trend=trend,
            recent_fi=list(profile.recent_fi),
            pattern_count=len(profile.patterns),
            baselines={k: v.model_copy() for k, v in profile.baselines.items()},
            last_observed_at=profile.last_observed_at,
        )

    def export_profile(self, entity_id: str) -> ProfileDocument | None:
        profile = self.get(entity_id)
        if profile is None:
            return None
        return ProfileDocument.from_profile(profile)

    def import_profile(self, document: dict[str, Any]) -> EntityProfile:
        """
        Install a profile from an export document, migrating older schemas.

        Args:
            document: Parsed export document

        Returns:
            The installed profile (replacing any existing one)

        Raises:
            ProfileCorruptionError: If the document cannot be migrated or
                validated
        """
        entity_id = str(document.get("entity_id") or document.get("entityId") or "?")
        try:
            migrated = migrate_document(dict(document))
            profile = ProfileDocument.model_validate(migrated).to_profile()
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise ProfileCorruptionError(entity_id, str(e)) from e

        with self._lock:
            self._profiles[profile.entity_id] = profile
        logger.info(f"Imported profile for entity '{profile.entity_id}'")
        return profile

    def evict(self, entity_id: str) -> ProfileDocument | None:
        """Remove a profile from memory, returning its export document."""
        with self._lock:
            profile = self._profiles.pop(entity_id, None)
        if profile is None:
            return None
        logger.info(f"Evicted profile for entity '{entity_id}'")
        return ProfileDocument.from_profile(profile)

    def save(self, entity_id: str) -> bool:
        """Persist one profile through the repository, if one is configured."""
        if self.repository is None:
            return False
        with self._lock:
            profile = self._profiles.get(entity_id)
        if profile is None:
            return False
        self.repository.save(profile)
        return True
