"""Exception taxonomy for the Fracture engine."""


class FractureError(Exception):
    """Base class for all Fracture engine errors."""


class InsufficientDataError(FractureError):
    """A window holds fewer samples than an extractor requires."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient data: {available} samples available, {required} required"
        )


class InvalidSampleError(FractureError):
    """A channel value is non-finite or outside its configured range."""

    def __init__(self, channel: str, value: object, reason: str = "non-finite"):
        self.channel = channel
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid sample for channel '{channel}': {value!r} ({reason})")


class OutOfOrderSampleError(FractureError):
    """A sample timestamp is not newer than the last one seen for its entity."""

    def __init__(self, entity_id: str, timestamp: float, last_timestamp: float):
        self.entity_id = entity_id
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp
        super().__init__(
            f"Out-of-order sample for entity '{entity_id}': "
            f"timestamp {timestamp} <= last seen {last_timestamp}"
        )


class UnknownEntityError(FractureError):
    """An outcome was recorded for an entity that has no profile."""

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Unknown entity: '{entity_id}'")


class ThresholdBandViolation(FractureError):
    """An adaptation step would move a threshold outside the safety band."""

    def __init__(self, tier: str, proposed: float, clamped: float):
        self.tier = tier
        self.proposed = proposed
        self.clamped = clamped
        super().__init__(
            f"Threshold for tier '{tier}' proposed at {proposed:.4f} is outside "
            f"the safety band; clamped to {clamped:.4f}"
        )


class LabelConflictError(FractureError):
    """An event already processed with one label received a different label."""

    def __init__(self, event_id: str, existing: str, new: str):
        self.event_id = event_id
        self.existing = existing
        self.new = new
        super().__init__(
            f"Event '{event_id}' already labeled '{existing}'; ignoring '{new}'"
        )


class ProfileCorruptionError(FractureError):
    """A stored or imported profile document failed validation."""

    def __init__(self, entity_id: str, reason: str):
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Corrupt profile for entity '{entity_id}': {reason}")


class StaleOutcomeError(FractureError):
    """An outcome arrived for an event older than the retained outcome history."""

    def __init__(self, event_id: str, timestamp: float, horizon: float):
        self.event_id = event_id
        self.timestamp = timestamp
        self.horizon = horizon
        super().__init__(
            f"Outcome for event '{event_id}' at {timestamp} is at or before the "
            f"outcome horizon {horizon}; it may already have been applied"
        )
