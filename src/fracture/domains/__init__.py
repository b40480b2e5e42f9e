"""
Domain registry for Fracture Index monitoring.

Provides factory functions to look up domain configurations and apply
validated overrides.
"""

from typing import Any

from .config import (
    AVAILABLE_DOMAINS,
    CLINICAL_CONFIG,
    COGNITIVE_CONFIG,
    DEFAULT_DOMAIN,
    MARKET_CONFIG,
)
from .types import DomainConfig, SafetyBand, ScoringWeights, TierActions

__all__ = [
    "DomainConfig",
    "SafetyBand",
    "ScoringWeights",
    "TierActions",
    "COGNITIVE_CONFIG",
    "CLINICAL_CONFIG",
    "MARKET_CONFIG",
    "AVAILABLE_DOMAINS",
    "DEFAULT_DOMAIN",
    "get_domain",
    "load_domain",
]


def get_domain(name: str, **overrides: Any) -> DomainConfig:
    """
    Get a domain configuration by name.

    Args:
        name: Domain name (e.g., "cognitive", "clinical", "market")
        **overrides: Field values replacing the preset's; the result is
            revalidated as a whole

    Returns:
        DomainConfig instance

    Raises:
        ValueError: If domain name is not recognized
        pydantic.ValidationError: If overrides produce an invalid configuration
    """
    if name not in AVAILABLE_DOMAINS:
        raise ValueError(
            f"Unknown domain: {name}. Available: {list(AVAILABLE_DOMAINS.keys())}"
        )
    preset = AVAILABLE_DOMAINS[name]
    if not overrides:
        return preset
    return DomainConfig.model_validate({**preset.model_dump(), **overrides})


def load_domain(name: str | None = None) -> DomainConfig:
    """
    Resolve a domain using precedence: explicit name > config default > DEFAULT_DOMAIN.

    User overrides from the [domains.<name>] config section are applied.

    Args:
        name: Explicit domain name, or None

    Returns:
        DomainConfig instance
    """
    from fracture.config import get_default_domain, get_domain_overrides

    resolved = name or get_default_domain() or DEFAULT_DOMAIN
    return get_domain(resolved, **get_domain_overrides(resolved))
