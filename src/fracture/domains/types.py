"""Domain configuration type definitions."""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fracture.constants import FeatureConstants as FC
from fracture.constants import LearningConstants as LC
from fracture.constants import ProfileConstants as PC
from fracture.constants import ScoringConstants as SC
from fracture.constants import StateMachineConstants as SMC
from fracture.models.profile import Thresholds
from fracture.types import Tier


class ScoringWeights(BaseModel):
    """
    Weight vector for the composite Fracture Index.

    A wavelet or fractal weight of 0 disables that extractor entirely.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    spectral_slope: float = Field(default=SC.WEIGHT_SPECTRAL_SLOPE, ge=0)
    autocorrelation: float = Field(default=SC.WEIGHT_AUTOCORRELATION, ge=0)
    skewness: float = Field(default=SC.WEIGHT_SKEWNESS, ge=0)
    skew_boost: float = Field(
        default=SC.SKEW_BOOST,
        ge=1,
        description="Extra multiplier on |skew| for heavy-tailed populations",
    )
    wavelet: float = Field(default=0.0, ge=0)
    fractal: float = Field(default=0.0, ge=0)


class SafetyBand(BaseModel):
    """Hard bounds no personalized threshold may leave."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    lower: float = Field(default=SMC.SAFETY_BAND_LOWER, gt=0)
    upper: float = Field(default=SMC.SAFETY_BAND_UPPER, gt=0)
    min_gap: float = Field(
        default=SMC.SAFETY_BAND_MIN_GAP,
        gt=0,
        description="Minimum spacing between adjacent tier thresholds",
    )

    @model_validator(mode="after")
    def _check_width(self) -> "SafetyBand":
        if self.upper - self.lower < 2 * self.min_gap:
            raise ValueError(
                f"Safety band [{self.lower}, {self.upper}] cannot hold three "
                f"thresholds spaced {self.min_gap} apart"
            )
        return self

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper

    def clamp(self, value: float) -> float:
        return min(max(value, self.lower), self.upper)


class TierActions(BaseModel):
    """Ordered action lists attached to intervention events."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    gentle: tuple[str, ...] = ()
    moderate: tuple[str, ...] = ()
    aggressive: tuple[str, ...] = ()

    def for_tier(self, tier: Tier) -> list[str]:
        if not tier.is_intervention:
            return []
        return list(getattr(self, tier.value))


class DomainConfig(BaseModel):
    """
    Closed configuration for one monitoring domain.

    Validated once at construction; every weight, threshold, dwell and
    capacity the engine uses is a named field here.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Identity
    name: str = Field(description="Domain name (e.g., 'clinical')")
    description: str = Field(default="", description="Domain description")

    # Channels
    channels: tuple[str, ...] = Field(
        description="Channels the extractors run on; other keys are ignored"
    )
    stress_channel: str | None = Field(
        default=None, description="Optional channel that amplifies FI when low"
    )
    channel_bounds: dict[str, tuple[float, float]] = Field(
        default_factory=dict, description="Valid (min, max) range per channel"
    )

    # Scoring
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    thresholds: Thresholds = Field(
        default=Thresholds(
            gentle=SMC.GENTLE_THRESHOLD,
            moderate=SMC.MODERATE_THRESHOLD,
            aggressive=SMC.AGGRESSIVE_THRESHOLD,
        )
    )
    safety_band: SafetyBand = Field(default_factory=SafetyBand)

    # State machine dwell
    hysteresis_count: int = Field(default=SMC.HYSTERESIS_COUNT, ge=1)
    crisis_dwell_evaluations: int = Field(default=SMC.CRISIS_DWELL_EVALUATIONS, ge=1)
    crisis_dwell_seconds: float = Field(default=0.0, ge=0)
    recovery_dwell_evaluations: int = Field(
        default=SMC.RECOVERY_DWELL_EVALUATIONS, ge=1
    )

    # Windows
    window_capacity: int = Field(default=PC.WINDOW_CAPACITY, ge=2)
    min_samples: int = Field(default=PC.MIN_SAMPLES, ge=FC.MIN_SKEWNESS_SAMPLES)
    spectral_window: int = Field(
        default=PC.SPECTRAL_WINDOW, ge=FC.MIN_SPECTRAL_SAMPLES
    )

    # Learning
    false_positive_penalty: float = Field(
        default=LC.FALSE_POSITIVE_PENALTY, ge=0, le=1
    )
    adaptation_rate: float = Field(default=LC.ADAPTATION_RATE, ge=0, le=1)
    outcome_window: int = Field(default=LC.OUTCOME_WINDOW, ge=1)
    threshold_std_factor: float = Field(default=PC.THRESHOLD_STD_FACTOR, ge=0)
    min_personalization_samples: int = Field(
        default=PC.MIN_PERSONALIZATION_SAMPLES, ge=2
    )

    # Memory
    pattern_capacity: int = Field(default=PC.PATTERN_CAPACITY, ge=1)
    notable_floor: float = Field(default=PC.NOTABLE_FLOOR, ge=0)
    baseline_window: int = Field(default=PC.BASELINE_WINDOW, ge=2)

    actions: TierActions = Field(default_factory=TierActions)

    @model_validator(mode="after")
    def _check_consistency(self) -> "DomainConfig":
        if not self.channels:
            raise ValueError("Domain must declare at least one channel")
        if self.window_capacity < max(self.min_samples, FC.MIN_SPECTRAL_SAMPLES * 2):
            raise ValueError(
                f"window_capacity ({self.window_capacity}) must be at least "
                f"max(min_samples, {FC.MIN_SPECTRAL_SAMPLES * 2})"
            )
        for tier, value in self.thresholds.as_dict().items():
            if not self.safety_band.contains(value):
                raise ValueError(
                    f"Base {tier} threshold {value} lies outside the safety band "
                    f"[{self.safety_band.lower}, {self.safety_band.upper}]"
                )
        for channel, (low, high) in self.channel_bounds.items():
            if low >= high:
                raise ValueError(f"Invalid bounds for channel '{channel}': {low} >= {high}")
        return self

    @property
    def wavelet_enabled(self) -> bool:
        return self.weights.wavelet > 0

    @property
    def fractal_enabled(self) -> bool:
        return self.weights.fractal > 0
