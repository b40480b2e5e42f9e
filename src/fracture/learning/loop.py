"""
Antifragile learning loop.

Consumes confirmed outcomes for intervention events and crisis records and
rewrites the entity's thresholds, rolling outcome counters and pattern
labels. False positives make the tier less sensitive; confirmed crises make
it more sensitive. Every step stays inside the domain's safety band.
"""

import logging

from dataclasses import dataclass

from fracture.constants import LearningConstants as LC
from fracture.constants import ProfileConstants as PC
from fracture.domains.types import DomainConfig
from fracture.exceptions import (
    LabelConflictError,
    StaleOutcomeError,
    ThresholdBandViolation,
    UnknownEntityError,
)
from fracture.models.events import CrisisRecord, InterventionEvent
from fracture.models.profile import EntityProfile, Thresholds
from fracture.profiles.store import ProfileStore
from fracture.profiles.thresholds import check_band, enforce_ordering
from fracture.types import OutcomeLabel, Tier

logger = logging.getLogger(__name__)

__all__ = [
    "AntifragileLearner",
    "LearningUpdate",
    "event_ref_id",
    "event_ref_time",
]


def event_ref_id(event: InterventionEvent | CrisisRecord) -> str:
    """Stable id used for outcome idempotency."""
    if isinstance(event, CrisisRecord):
        return event.record_id
    return event.event_id


def event_ref_time(event: InterventionEvent | CrisisRecord) -> float:
    """Timestamp used to order events for the outcome horizon."""
    if isinstance(event, CrisisRecord):
        return event.confirmed_at
    return event.timestamp


@dataclass
class LearningUpdate:
    """What one applied outcome changed."""

    entity_id: str
    event_id: str
    label: OutcomeLabel
    tier: Tier
    previous: Thresholds
    thresholds: Thresholds
    relabeled: int
    clamped: bool = False


class AntifragileLearner:
    """
    Applies outcome feedback to entity profiles.

    Not thread-safe on its own: the caller must hold the entity's lock while
    ``apply`` runs (EngineContext does).

    Example:
        >>> learner = AntifragileLearner(store, domain)
        >>> update = learner.apply("P1", event, OutcomeLabel.FALSE_POSITIVE)
        >>> update.thresholds.gentle > update.previous.gentle
        True
    """

    def __init__(self, store: ProfileStore, domain: DomainConfig):
        self.store = store
        self.domain = domain

    def apply(
        self,
        entity_id: str,
        event: InterventionEvent | CrisisRecord,
        label: OutcomeLabel | str,
    ) -> LearningUpdate | None:
        """
        Apply one confirmed outcome.

        Args:
            entity_id: Entity the event belongs to
            event: The intervention event or crisis record being labeled
            label: Outcome label

        Returns:
            LearningUpdate, or None when the same label was already applied
            to this event

        Raises:
            UnknownEntityError: If the entity has no profile
            LabelConflictError: If the event already carries a different label
            StaleOutcomeError: If the event is at or before the outcome horizon
        """
        label = OutcomeLabel(label)
        profile = self.store.get(entity_id)
        if profile is None:
            raise UnknownEntityError(entity_id)

        event_id = event_ref_id(event)
        existing = profile.processed_outcomes.get(event_id)
        if existing is not None:
            if existing == label:
                logger.debug(f"{entity_id}: outcome for {event_id} already applied")
                return None
            raise LabelConflictError(event_id, existing.value, label.value)

        event_time = event_ref_time(event)
        horizon = profile.outcome_horizon
        if horizon is not None and event_time <= horizon:
            raise StaleOutcomeError(event_id, event_time, horizon)

        tier = event.tier if isinstance(event, InterventionEvent) else Tier.AGGRESSIVE
        if tier == Tier.CRISIS:
            tier = Tier.AGGRESSIVE

        outcomes = self._record_tier_outcome(profile, tier, label)
        self._update_counters(profile, label)

        previous = profile.thresholds
        thresholds, clamped = self._adapt_thresholds(profile, tier, label, outcomes)
        profile.thresholds = thresholds

        relabeled = self._relabel_patterns(profile, event, label)
        self._mark_processed(profile, event_id, label, event_time)
        profile.touch()

        logger.info(
            f"{entity_id}: applied {label.value} to {tier.value} event {event_id}; "
            f"thresholds {previous.as_dict()} -> {thresholds.as_dict()}, "
            f"{relabeled} pattern(s) relabeled"
        )
        return LearningUpdate(
            entity_id=entity_id,
            event_id=event_id,
            label=label,
            tier=tier,
            previous=previous,
            thresholds=thresholds,
            relabeled=relabeled,
            clamped=clamped,
        )

    def _record_tier_outcome(
        self, profile: EntityProfile, tier: Tier, label: OutcomeLabel
    ) -> list[OutcomeLabel]:
        outcomes = profile.tier_outcomes.setdefault(tier.value, [])
        outcomes.append(label)
        overflow = len(outcomes) - self.domain.outcome_window
        if overflow > 0:
            del outcomes[:overflow]
        return outcomes

    @staticmethod
    def _update_counters(profile: EntityProfile, label: OutcomeLabel) -> None:
        if label == OutcomeLabel.FALSE_POSITIVE:
            profile.counters.false_positives += 1
        else:
            profile.counters.true_positives += 1

    def _adapt_thresholds(
        self,
        profile: EntityProfile,
        tier: Tier,
        label: OutcomeLabel,
        outcomes: list[OutcomeLabel],
    ) -> tuple[Thresholds, bool]:
        """Compute the new thresholds for ``tier`` and restore ordering."""
        current = profile.thresholds.as_dict()
        value = current[tier.value]

        if label == OutcomeLabel.FALSE_POSITIVE:
            fp_rate = outcomes.count(OutcomeLabel.FALSE_POSITIVE) / len(outcomes)
            proposed = value * (1 + self.domain.false_positive_penalty * fp_rate)
        elif label == OutcomeLabel.CRISIS:
            crisis_rate = outcomes.count(OutcomeLabel.CRISIS) / len(outcomes)
            proposed = value * (1 - self.domain.adaptation_rate * crisis_rate)
        else:
            return profile.thresholds, False

        clamped = False
        try:
            proposed = check_band(tier.value, proposed, self.domain.safety_band)
        except ThresholdBandViolation as e:
            logger.warning(f"{profile.entity_id}: {e}")
            proposed = e.clamped
            clamped = True

        current[tier.value] = proposed
        return (
            enforce_ordering(
                current["gentle"],
                current["moderate"],
                current["aggressive"],
                self.domain.safety_band,
            ),
            clamped,
        )

    @staticmethod
    def _relabel_patterns(
        profile: EntityProfile,
        event: InterventionEvent | CrisisRecord,
        label: OutcomeLabel,
    ) -> int:
        """Label the pattern entries captured during the event's episode."""
        matched = []
        if event.episode_id:
            matched = [p for p in profile.patterns if p.episode_id == event.episode_id]
        if not matched and isinstance(event, InterventionEvent):
            # No episode link: fall back to unlabeled entries close in FI
            matched = [
                p
                for p in profile.patterns
                if p.outcome is None
                and p.episode_id is None
                and abs(p.fi - event.score.fi) <= PC.MATCH_FI_TOLERANCE
            ]
        for pattern in matched:
            pattern.outcome = label
        return len(matched)

    @staticmethod
    def _mark_processed(
        profile: EntityProfile, event_id: str, label: OutcomeLabel, event_time: float
    ) -> None:
        """
        Remember an applied label, dropping the oldest events past capacity.

        Dropped events move the outcome horizon forward: later outcomes for
        events at or before it are refused, since a dropped label can no
        longer be recognized as a duplicate.
        """
        profile.processed_outcomes[event_id] = label
        profile.processed_at[event_id] = event_time
        while len(profile.processed_outcomes) > LC.PROCESSED_OUTCOME_CAPACITY:
            oldest = min(
                profile.processed_outcomes,
                key=lambda k: profile.processed_at.get(k, float("-inf")),
            )
            del profile.processed_outcomes[oldest]
            dropped = profile.processed_at.pop(oldest, None)
            if dropped is None:
                # Imported without a timestamp: assume it was the newest
                dropped = max(profile.processed_at.values(), default=None)
            if dropped is not None:
                horizon = profile.outcome_horizon
                profile.outcome_horizon = (
                    dropped if horizon is None else max(horizon, dropped)
                )
