"""Pydantic models for entity profiles and their export documents."""

import math
import uuid

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fracture.constants import PROFILE_SCHEMA_CURRENT
from fracture.models.features import FeatureSet
from fracture.types import OutcomeLabel, Tier, Trend


def utc_now() -> datetime:
    """Return current UTC timestamp for model defaults."""
    return datetime.now(UTC)


class ChannelBaseline(BaseModel):
    """
    Rolling mean/variance for one channel.

    Exact Welford accumulation until ``window`` samples have been seen, then an
    exponentially weighted update with alpha = 1 / window so the baseline keeps
    tracking slow drift with O(1) memory.
    """

    count: int = Field(default=0, ge=0, description="Samples accumulated")
    mean: float = Field(default=0.0, description="Running mean")
    m2: float = Field(default=0.0, ge=0, description="Sum of squared deviations")

    @property
    def variance(self) -> float:
        if self.count < 2:
            return 0.0
        return self.m2 / (self.count - 1)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def update(self, value: float, window: int) -> None:
        """
        Fold one value into the baseline.

        Args:
            value: New finite observation
            window: Sample count after which updates become exponential
        """
        if self.count < window:
            self.count += 1
            delta = value - self.mean
            self.mean += delta / self.count
            self.m2 += delta * (value - self.mean)
            return

        alpha = 1.0 / window
        delta = value - self.mean
        self.mean += alpha * delta
        variance = (1 - alpha) * (self.variance + alpha * delta * delta)
        self.m2 = max(0.0, variance * (self.count - 1))


class Thresholds(BaseModel):
    """Tier thresholds in FI units. Always strictly ascending."""

    model_config = ConfigDict(frozen=True)

    gentle: float = Field(gt=0, description="FI at which gentle intervention starts")
    moderate: float = Field(gt=0, description="FI at which moderate intervention starts")
    aggressive: float = Field(
        gt=0, description="FI at which aggressive intervention starts"
    )

    @model_validator(mode="after")
    def _check_ordering(self) -> "Thresholds":
        if not self.gentle < self.moderate < self.aggressive:
            raise ValueError(
                "Thresholds must satisfy gentle < moderate < aggressive, got "
                f"{self.gentle}, {self.moderate}, {self.aggressive}"
            )
        return self

    def for_tier(self, tier: Tier) -> float:
        """Threshold that must be reached to enter ``tier``."""
        if tier == Tier.CRISIS:
            return self.aggressive
        if tier == Tier.STABLE:
            return 0.0
        return float(getattr(self, tier.value))

    def as_dict(self) -> dict[str, float]:
        return {
            "gentle": self.gentle,
            "moderate": self.moderate,
            "aggressive": self.aggressive,
        }


class Counters(BaseModel):
    """Running outcome counters for an entity."""

    true_positives: int = Field(default=0, ge=0)
    false_positives: int = Field(default=0, ge=0)
    interventions: int = Field(default=0, ge=0)
    crises: int = Field(default=0, ge=0)


class PatternEntry(BaseModel):
    """A notable evaluation kept in pattern memory, labeled once its outcome is known."""

    pattern_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(description="Sample timestamp")
    fi: float = Field(ge=0, description="Fracture Index at capture time")
    tier: Tier = Field(description="Tier at capture time")
    features: FeatureSet = Field(description="Feature snapshot")
    channels: dict[str, float] = Field(
        default_factory=dict, description="Channel values at capture time"
    )
    episode_id: str | None = Field(default=None, description="Owning episode, if any")
    outcome: OutcomeLabel | None = Field(default=None, description="Resolved outcome")


class EntityProfile(BaseModel):
    """
    Everything learned about one monitored entity.

    Mutated only by ProfileStore and AntifragileLearner, always under the
    owning entity's lock.
    """

    entity_id: str = Field(min_length=1)
    domain: str = Field(description="Domain the profile was created under")
    thresholds: Thresholds = Field(description="Learned (unpersonalized) thresholds")
    baselines: dict[str, ChannelBaseline] = Field(default_factory=dict)
    fi_baseline: ChannelBaseline = Field(
        default_factory=ChannelBaseline,
        description="Baseline of FI during stable periods",
    )
    patterns: list[PatternEntry] = Field(default_factory=list)
    counters: Counters = Field(default_factory=Counters)
    tier_outcomes: dict[str, list[OutcomeLabel]] = Field(
        default_factory=dict, description="Most recent outcomes per tier"
    )
    processed_outcomes: dict[str, OutcomeLabel] = Field(
        default_factory=dict, description="Event id -> label already applied"
    )
    processed_at: dict[str, float] = Field(
        default_factory=dict, description="Event id -> timestamp of the labeled event"
    )
    outcome_horizon: float | None = Field(
        default=None,
        description="Newest event timestamp dropped from processed_outcomes",
    )
    recent_fi: list[float] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_observed_at: float | None = Field(default=None)

    def touch(self) -> None:
        self.updated_at = utc_now()


class ProfileSnapshot(BaseModel):
    """Read-only projection of an EntityProfile for front-end collaborators."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    domain: str
    thresholds: Thresholds = Field(description="Learned thresholds")
    personalized_thresholds: Thresholds = Field(
        description="Thresholds in effect after FI-variability personalization"
    )
    counters: Counters
    tier: Tier = Field(default=Tier.STABLE, description="Current tier")
    trend: Trend = Field(default=Trend.STABLE, description="Recent FI trend")
    recent_fi: list[float] = Field(default_factory=list)
    pattern_count: int = Field(default=0, ge=0)
    baselines: dict[str, ChannelBaseline] = Field(default_factory=dict)
    last_observed_at: float | None = None


class ProfileDocument(BaseModel):
    """Versioned, serializable export of one EntityProfile."""

    model_config = ConfigDict(populate_by_name=True)

    schema_tag: str = Field(default=PROFILE_SCHEMA_CURRENT, alias="schema")
    exported_at: datetime = Field(default_factory=utc_now)
    entity_id: str = Field(min_length=1)
    domain: str
    thresholds: Thresholds
    baselines: dict[str, ChannelBaseline] = Field(default_factory=dict)
    fi_baseline: ChannelBaseline = Field(default_factory=ChannelBaseline)
    patterns: list[PatternEntry] = Field(default_factory=list)
    counters: Counters = Field(default_factory=Counters)
    tier_outcomes: dict[str, list[OutcomeLabel]] = Field(default_factory=dict)
    processed_outcomes: dict[str, OutcomeLabel] = Field(default_factory=dict)
    processed_at: dict[str, float] = Field(default_factory=dict)
    outcome_horizon: float | None = None
    recent_fi: list[float] = Field(default_factory=list)
    last_observed_at: float | None = None

    @classmethod
    def from_profile(cls, profile: EntityProfile) -> "ProfileDocument":
        data = profile.model_dump(exclude={"created_at", "updated_at"})
        return cls.model_validate(data)

    def to_profile(self) -> EntityProfile:
        data = self.model_dump(exclude={"schema_tag", "exported_at"})
        return EntityProfile.model_validate(data)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
