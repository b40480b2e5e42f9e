"""Safety-band and ordering rules for personalized thresholds."""

from fracture.domains.types import SafetyBand
from fracture.exceptions import ThresholdBandViolation
from fracture.models.profile import Thresholds


def check_band(tier: str, proposed: float, band: SafetyBand) -> float:
    """
    Validate a proposed threshold against the safety band.

    Args:
        tier: Tier name, for error reporting
        proposed: Threshold value an adaptation step computed
        band: Safety band

    Returns:
        ``proposed`` unchanged when inside the band

    Raises:
        ThresholdBandViolation: If the value lies outside the band; the
            exception carries the clamped value
    """
    if band.contains(proposed):
        return proposed
    raise ThresholdBandViolation(tier, proposed, band.clamp(proposed))


def enforce_ordering(
    gentle: float, moderate: float, aggressive: float, band: SafetyBand
) -> Thresholds:
    """
    Restore gentle < moderate < aggressive inside the band.

    Higher tiers are pushed up to keep ``min_gap`` above the tier below,
    then values are pulled down from the band ceiling so nothing leaves it.

    Args:
        gentle: Candidate gentle threshold
        moderate: Candidate moderate threshold
        aggressive: Candidate aggressive threshold
        band: Safety band (validated wide enough for three spaced values)

    Returns:
        Ordered Thresholds inside the band
    """
    gap = band.min_gap
    gentle = band.clamp(gentle)
    moderate = max(band.clamp(moderate), gentle + gap)
    aggressive = max(band.clamp(aggressive), moderate + gap)

    aggressive = min(aggressive, band.upper)
    moderate = min(moderate, aggressive - gap)
    gentle = min(gentle, moderate - gap)

    return Thresholds(gentle=gentle, moderate=moderate, aggressive=aggressive)
