"""Validation utilities for Fracture inputs."""

import math

from fracture.domains.types import DomainConfig
from fracture.exceptions import InvalidSampleError


def validate_entity_id(entity_id: str) -> str:
    """
    Validate an entity key.

    Args:
        entity_id: Entity key from a collaborator

    Returns:
        The stripped key

    Raises:
        ValueError: If the key is empty
    """
    if not isinstance(entity_id, str) or not entity_id.strip():
        raise ValueError(f"Invalid entity id: {entity_id!r}")
    return entity_id.strip()


def validate_timestamp(timestamp: float) -> float:
    """
    Validate a sample timestamp.

    Raises:
        ValueError: If the timestamp is not a finite, non-negative number
    """
    try:
        value = float(timestamp)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timestamp: {timestamp!r}") from None
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"Invalid timestamp: {timestamp!r}")
    return value


def validate_channel_value(channel: str, value: object, domain: DomainConfig) -> float:
    """
    Validate one channel reading against the domain's bounds.

    Args:
        channel: Channel name
        value: Raw reading
        domain: Domain configuration with optional per-channel bounds

    Returns:
        The reading as a float

    Raises:
        InvalidSampleError: If the value is not numeric, non-finite, or out of range
    """
    if isinstance(value, bool):
        raise InvalidSampleError(channel, value, "not numeric")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidSampleError(channel, value, "not numeric") from None
    if not math.isfinite(number):
        raise InvalidSampleError(channel, value, "non-finite")

    bounds = domain.channel_bounds.get(channel)
    if bounds is not None and not bounds[0] <= number <= bounds[1]:
        raise InvalidSampleError(
            channel, value, f"outside range [{bounds[0]}, {bounds[1]}]"
        )
    return number


def partition_channels(
    channels: dict[str, object], domain: DomainConfig
) -> tuple[dict[str, float], float | None, list[str]]:
    """
    Split raw channel values into feature channels, the stress reading and warnings.

    Unknown keys are ignored; invalid values are dropped with a warning.

    Args:
        channels: Raw channel map from a collaborator
        domain: Domain configuration

    Returns:
        Tuple of (valid feature channel values, stress reading or None,
        warning messages)
    """
    accepted: dict[str, float] = {}
    stress: float | None = None
    warnings: list[str] = []
    known = set(domain.channels)

    for name, raw in channels.items():
        if name not in known and name != domain.stress_channel:
            continue
        try:
            value = validate_channel_value(name, raw, domain)
        except InvalidSampleError as e:
            warnings.append(str(e))
            continue
        if name == domain.stress_channel:
            stress = value
        else:
            accepted[name] = value

    return accepted, stress, warnings
