"""Pydantic models for extracted features and Fracture Index scores."""

from pydantic import BaseModel, Field

from fracture.types import Tier, Trend


class FeatureSet(BaseModel):
    """
    Extractor outputs for one evaluation.

    A field set to None means the window was too short for that extractor
    (or the extractor is disabled for the domain).
    """

    spectral_slope_delta: float | None = Field(
        default=None, description="Current minus previous log-log spectral slope"
    )
    autocorrelation: float | None = Field(
        default=None, ge=-1, le=1, description="Lag-1 autocorrelation"
    )
    skewness: float | None = Field(default=None, description="Third standardized moment")
    variability: float | None = Field(
        default=None, description="Coefficient of variation (sigma / mu)"
    )
    wavelet_energy: float | None = Field(
        default=None, ge=0, le=1, description="Share of energy in detail bands"
    )
    wavelet_entropy: float | None = Field(
        default=None, ge=0, description="Shannon entropy of band energies"
    )
    fractal_dimension: float | None = Field(
        default=None, ge=1, le=2, description="Higuchi fractal dimension"
    )
    sample_count: int = Field(default=0, ge=0, description="Samples in the window")
    active_channels: list[str] = Field(
        default_factory=list, description="Channels that contributed features"
    )

    @property
    def insufficient_data(self) -> bool:
        return self.autocorrelation is None and self.skewness is None


class FractureScore(BaseModel):
    """A Fracture Index value with the features and tier it maps to."""

    fi: float = Field(ge=0, description="Fracture Index")
    features: FeatureSet = Field(description="Features that produced this score")
    tier: Tier = Field(default=Tier.STABLE, description="Tier after evaluation")
    trend: Trend = Field(default=Trend.STABLE, description="Change versus previous FI")
    insufficient_data: bool = Field(
        default=False, description="True when the window was below minimum samples"
    )
    confidence: float = Field(
        default=1.0, ge=0, le=1, description="Active channels / required channels"
    )
    stress_multiplier: float = Field(
        default=1.0, ge=1, description="Amplification applied from the stress channel"
    )
    timestamp: float | None = Field(default=None, description="Sample timestamp")
