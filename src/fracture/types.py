"""Core Fracture type definitions."""

from enum import Enum


class Tier(str, Enum):
    """Intervention tiers, ordered from least to most severe."""

    STABLE = "stable"
    GENTLE = "gentle"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"
    CRISIS = "crisis"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)

    @property
    def is_intervention(self) -> bool:
        """True for tiers that carry an action list."""
        return self in INTERVENTION_TIERS


TIER_ORDER = [Tier.STABLE, Tier.GENTLE, Tier.MODERATE, Tier.AGGRESSIVE, Tier.CRISIS]
INTERVENTION_TIERS = (Tier.GENTLE, Tier.MODERATE, Tier.AGGRESSIVE)


class Trend(str, Enum):
    """Direction of the Fracture Index relative to the previous score."""

    IMPROVING = "improving"
    STABLE = "stable"
    WORSENING = "worsening"


class OutcomeLabel(str, Enum):
    """Confirmed outcome of an intervention or crisis episode."""

    CRISIS = "crisis"
    FALSE_POSITIVE = "falsePositive"
    INTERVENTION_SUCCESS = "interventionSuccess"


class EventKind(str, Enum):
    """Kinds of events emitted by the intervention state machine."""

    INTERVENTION = "intervention"
    CRISIS_CONFIRMED = "crisis_confirmed"
    CRISIS_CLEARED = "crisis_cleared"
