"""Predefined domain configurations."""

from fracture.constants import StateMachineConstants as SMC
from fracture.domains.types import DomainConfig, SafetyBand, ScoringWeights, TierActions
from fracture.models.profile import Thresholds

__all__ = [
    "DomainConfig",
    "COGNITIVE_CONFIG",
    "CLINICAL_CONFIG",
    "MARKET_CONFIG",
    "AVAILABLE_DOMAINS",
    "DEFAULT_DOMAIN",
]

# ============================================================================
# Cognitive Load (user sessions)
# ============================================================================

COGNITIVE_CONFIG = DomainConfig(
    name="cognitive",
    description="Cognitive load monitoring from interaction and attention signals",
    channels=("attention", "interaction_rate", "error_rate"),
    weights=ScoringWeights(spectral_slope=1.0, autocorrelation=1.0, skewness=0.7),
    thresholds=Thresholds(
        gentle=SMC.GENTLE_THRESHOLD,  # 0.7
        moderate=SMC.MODERATE_THRESHOLD,  # 1.1
        aggressive=SMC.AGGRESSIVE_THRESHOLD,  # 1.8
    ),
    hysteresis_count=3,
    crisis_dwell_evaluations=3,
    recovery_dwell_evaluations=5,
    actions=TierActions(
        gentle=("dim_periphery", "delay_notifications"),
        moderate=("reduce_complexity", "simplify_navigation", "suggest_break"),
        aggressive=("reduce_complexity", "reduce_animation", "take_break"),
    ),
)

# ============================================================================
# Clinical (patient vital signs)
# ============================================================================

CLINICAL_CONFIG = DomainConfig(
    name="clinical",
    description="Physiological crisis early warning from vital-sign streams",
    channels=("heart_rate", "respiratory_rate", "spo2", "systolic_bp"),
    stress_channel="hrv",
    channel_bounds={
        "heart_rate": (20.0, 250.0),
        "respiratory_rate": (2.0, 70.0),
        "spo2": (50.0, 100.0),
        "systolic_bp": (40.0, 260.0),
        "hrv": (0.0, 500.0),
    },
    # Physiological baselines are heavy-tailed
    weights=ScoringWeights(
        spectral_slope=1.0, autocorrelation=1.0, skewness=0.7, skew_boost=1.2
    ),
    thresholds=Thresholds(gentle=0.6, moderate=1.0, aggressive=1.5),
    hysteresis_count=3,
    crisis_dwell_evaluations=3,
    crisis_dwell_seconds=30.0,
    recovery_dwell_evaluations=5,
    actions=TierActions(
        gentle=("dashboard_notification", "vital_signs_review"),
        moderate=("dashboard_alert", "data_amplification", "predictive_analysis"),
        aggressive=(
            "emergency_alert",
            "intervention_preparation",
            "data_stream_amplification",
        ),
    ),
)

# ============================================================================
# Market (asset price and liquidity)
# ============================================================================

MARKET_CONFIG = DomainConfig(
    name="market",
    description="Market fracture detection with wavelet and fractal descriptors",
    channels=("price", "volume", "spread"),
    weights=ScoringWeights(
        spectral_slope=0.3,
        autocorrelation=0.25,
        skewness=0.2,
        wavelet=0.15,
        fractal=0.1,
    ),
    thresholds=Thresholds(gentle=0.5, moderate=0.9, aggressive=1.4),
    safety_band=SafetyBand(lower=0.2, upper=3.0, min_gap=0.05),
    hysteresis_count=4,
    crisis_dwell_evaluations=5,
    recovery_dwell_evaluations=10,
    window_capacity=128,
    min_samples=32,
    spectral_window=64,
    actions=TierActions(
        gentle=("market_analysis", "limit_position_size"),
        moderate=("reduce_leverage", "options_positioning"),
        aggressive=("emergency_reduction", "circuit_breaker_activation"),
    ),
)

# ============================================================================
# Domain Registry
# ============================================================================

AVAILABLE_DOMAINS: dict[str, DomainConfig] = {
    "cognitive": COGNITIVE_CONFIG,
    "clinical": CLINICAL_CONFIG,
    "market": MARKET_CONFIG,
}

DEFAULT_DOMAIN = "cognitive"
