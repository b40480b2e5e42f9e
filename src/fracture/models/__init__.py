"""Pydantic models for Fracture."""

from fracture.models.events import (
    BatchRejection,
    BatchResult,
    CrisisRecord,
    EngineEvent,
    EngineStatus,
    InterventionEvent,
    ObservationResult,
)
from fracture.models.features import FeatureSet, FractureScore
from fracture.models.profile import (
    ChannelBaseline,
    Counters,
    EntityProfile,
    PatternEntry,
    ProfileDocument,
    ProfileSnapshot,
    Thresholds,
)

__all__ = [
    "BatchRejection",
    "BatchResult",
    "ChannelBaseline",
    "Counters",
    "CrisisRecord",
    "EngineEvent",
    "EngineStatus",
    "EntityProfile",
    "FeatureSet",
    "FractureScore",
    "InterventionEvent",
    "ObservationResult",
    "PatternEntry",
    "ProfileDocument",
    "ProfileSnapshot",
    "Thresholds",
]
