"""
Intervention tier state machine.

Maps a stream of Fracture Index values to tiers with hysteresis on the way
down, a dwell requirement before a crisis is confirmed, and a recovery dwell
before a confirmed crisis is cleared.
"""

import logging
import uuid

from dataclasses import dataclass, field

from fracture.domains.types import DomainConfig
from fracture.models.events import CrisisRecord, EngineEvent, InterventionEvent
from fracture.models.features import FeatureSet, FractureScore
from fracture.models.profile import Thresholds
from fracture.types import EventKind, Tier

logger = logging.getLogger(__name__)

__all__ = [
    "InterventionStateMachine",
    "TransitionResult",
    "raw_tier",
]


def raw_tier(fi: float, thresholds: Thresholds) -> Tier:
    """Highest intervention tier whose threshold ``fi`` reaches."""
    if fi >= thresholds.aggressive:
        return Tier.AGGRESSIVE
    if fi >= thresholds.moderate:
        return Tier.MODERATE
    if fi >= thresholds.gentle:
        return Tier.GENTLE
    return Tier.STABLE


@dataclass
class TransitionResult:
    """Outcome of one state-machine evaluation."""

    tier: Tier
    score: FractureScore
    events: list[EngineEvent] = field(default_factory=list)
    recovering: bool = False


class InterventionStateMachine:
    """
    Per-entity tier tracker.

    Upgrades apply immediately. A downgrade needs ``hysteresis_count``
    consecutive evaluations below the current tier's threshold; in between
    the machine reports ``recovering``. A crisis is confirmed only after FI
    stays at or above the aggressive threshold for
    ``crisis_dwell_evaluations`` evaluations spanning at least
    ``crisis_dwell_seconds``. Crisis is terminal until FI stays below the
    moderate threshold for ``recovery_dwell_evaluations`` evaluations.

    Example:
        >>> machine = InterventionStateMachine("P1", get_domain("clinical"))
        >>> result = machine.evaluate(1.2, timestamp=10.0, thresholds=thresholds)
        >>> result.tier
        <Tier.MODERATE: 'moderate'>
    """

    def __init__(self, entity_id: str, domain: DomainConfig):
        self.entity_id = entity_id
        self.domain = domain
        self.tier = Tier.STABLE
        self.episode_id: str | None = None
        self.open_crisis: CrisisRecord | None = None

        self._below_count = 0
        self._breach_count = 0
        self._breach_started_at: float | None = None
        self._breach_peak = 0.0
        self._recovery_count = 0
        self._crisis_peak = 0.0

    @property
    def in_crisis(self) -> bool:
        return self.open_crisis is not None

    @property
    def recovering(self) -> bool:
        if self.in_crisis:
            return self._recovery_count > 0
        return self._below_count > 0

    @property
    def has_pending_confirmation(self) -> bool:
        return self._breach_started_at is not None

    def evaluate(
        self,
        fi: float,
        timestamp: float,
        thresholds: Thresholds,
        score: FractureScore | None = None,
    ) -> TransitionResult:
        """
        Advance the machine by one evaluation.

        Args:
            fi: Fracture Index for this evaluation
            timestamp: Sample timestamp (seconds)
            thresholds: Personalized thresholds in effect
            score: Full score to attach to emitted events; built from ``fi``
                if omitted

        Returns:
            TransitionResult with the resulting tier, the score tagged with
            that tier, and any emitted events
        """
        if score is None:
            score = FractureScore(fi=max(0.0, fi), features=FeatureSet())

        entered: Tier | None = None
        confirmed: CrisisRecord | None = None
        cleared: CrisisRecord | None = None

        if self.in_crisis:
            cleared = self._evaluate_crisis(fi, timestamp, thresholds)
        else:
            entered = self._evaluate_tier(fi, thresholds)
            confirmed = self._evaluate_dwell(fi, timestamp, thresholds)

        tagged = score.model_copy(update={"tier": self.tier, "timestamp": timestamp})
        events: list[EngineEvent] = []

        if entered is not None:
            events.append(
                EngineEvent(
                    kind=EventKind.INTERVENTION,
                    intervention=InterventionEvent(
                        entity_id=self.entity_id,
                        timestamp=timestamp,
                        episode_id=self.episode_id or "",
                        tier=entered,
                        score=tagged,
                        actions=self.domain.actions.for_tier(entered),
                    ),
                )
            )
        if confirmed is not None:
            events.append(
                EngineEvent(kind=EventKind.CRISIS_CONFIRMED, crisis=confirmed)
            )
        if cleared is not None:
            events.append(EngineEvent(kind=EventKind.CRISIS_CLEARED, crisis=cleared))

        return TransitionResult(
            tier=self.tier, score=tagged, events=events, recovering=self.recovering
        )

    def _evaluate_tier(self, fi: float, thresholds: Thresholds) -> Tier | None:
        """Apply upgrade/hysteresis rules; return the tier entered, if any."""
        target = raw_tier(fi, thresholds)

        if target.rank > self.tier.rank:
            self.tier = target
            self._below_count = 0
            if self.episode_id is None:
                self.episode_id = uuid.uuid4().hex
            logger.debug(f"{self.entity_id}: tier up to {target.value} (FI {fi:.3f})")
            return target

        if target.rank < self.tier.rank:
            self._below_count += 1
            if self._below_count >= self.domain.hysteresis_count:
                logger.debug(
                    f"{self.entity_id}: tier down {self.tier.value} -> {target.value} "
                    f"after {self._below_count} evaluations"
                )
                self.tier = target
                self._below_count = 0
                if target == Tier.STABLE:
                    self.episode_id = None
            return None

        self._below_count = 0
        return None

    def _evaluate_dwell(
        self, fi: float, timestamp: float, thresholds: Thresholds
    ) -> CrisisRecord | None:
        """Track a sustained aggressive breach; return a record once confirmed."""
        if fi < thresholds.aggressive:
            self._reset_breach()
            return None

        if self._breach_started_at is None:
            self._breach_started_at = timestamp
            self._breach_peak = fi
        self._breach_count += 1
        self._breach_peak = max(self._breach_peak, fi)

        elapsed = timestamp - self._breach_started_at
        if (
            self._breach_count < self.domain.crisis_dwell_evaluations
            or elapsed < self.domain.crisis_dwell_seconds
        ):
            return None

        if self.episode_id is None:
            self.episode_id = uuid.uuid4().hex
        record = CrisisRecord(
            entity_id=self.entity_id,
            episode_id=self.episode_id,
            started_at=self._breach_started_at,
            confirmed_at=timestamp,
            peak_fi=self._breach_peak,
        )
        logger.warning(
            f"{self.entity_id}: crisis confirmed after {self._breach_count} "
            f"evaluations (peak FI {record.peak_fi:.3f})"
        )
        self.open_crisis = record
        self.tier = Tier.CRISIS
        self._crisis_peak = self._breach_peak
        self._recovery_count = 0
        self._below_count = 0
        self._reset_breach()
        return record

    def _evaluate_crisis(
        self, fi: float, timestamp: float, thresholds: Thresholds
    ) -> CrisisRecord | None:
        """Hold the crisis tier until the recovery dwell is met."""
        if self.open_crisis is None:
            return None
        self._crisis_peak = max(self._crisis_peak, fi)

        if fi < thresholds.moderate:
            self._recovery_count += 1
        else:
            self._recovery_count = 0

        if self._recovery_count < self.domain.recovery_dwell_evaluations:
            return None

        closed = self.open_crisis.closed(timestamp, self._crisis_peak)
        logger.info(
            f"{self.entity_id}: crisis cleared after {closed.duration:.1f}s "
            f"(peak FI {closed.peak_fi:.3f})"
        )
        self.open_crisis = None
        self.tier = raw_tier(fi, thresholds)
        if self.tier == Tier.STABLE:
            self.episode_id = None
        self._recovery_count = 0
        self._crisis_peak = 0.0
        return closed

    def clear(self, timestamp: float) -> CrisisRecord | None:
        """
        Close the open crisis now instead of waiting for the recovery dwell.

        The machine returns to stable; a still-elevated FI escalates again
        on the next evaluation as a new episode.

        Args:
            timestamp: Time the crisis is closed at

        Returns:
            The closed CrisisRecord, or None when no crisis is open
        """
        if self.open_crisis is None:
            return None

        closed = self.open_crisis.closed(
            max(timestamp, self.open_crisis.confirmed_at), self._crisis_peak
        )
        logger.info(
            f"{self.entity_id}: crisis {closed.record_id} cleared explicitly "
            f"after {closed.duration:.1f}s"
        )
        self.open_crisis = None
        self.tier = Tier.STABLE
        self.episode_id = None
        self._crisis_peak = 0.0
        self.cancel()
        return closed

    def _reset_breach(self) -> None:
        self._breach_count = 0
        self._breach_started_at = None
        self._breach_peak = 0.0

    def cancel(self) -> None:
        """Release pending dwell state without emitting a crisis record."""
        if self.has_pending_confirmation:
            logger.info(f"{self.entity_id}: cancelled pending crisis confirmation")
        self._reset_breach()
        self._below_count = 0
        self._recovery_count = 0

    def reset(self) -> None:
        """Return to stable, dropping pending dwell and any open crisis."""
        self.cancel()
        if self.open_crisis is not None:
            logger.info(
                f"{self.entity_id}: discarding open crisis "
                f"{self.open_crisis.record_id} on reset"
            )
        self.open_crisis = None
        self.tier = Tier.STABLE
        self.episode_id = None
        self._crisis_peak = 0.0
