"""Pydantic models for intervention events, crisis records and engine results."""

import uuid

from pydantic import BaseModel, ConfigDict, Field

from fracture.models.features import FractureScore
from fracture.models.profile import Thresholds
from fracture.types import EventKind, OutcomeLabel, Tier


def new_event_id() -> str:
    return uuid.uuid4().hex


class InterventionEvent(BaseModel):
    """Immutable record of a tier transition into an intervention tier."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=new_event_id)
    entity_id: str
    timestamp: float
    episode_id: str = Field(description="Episode shared with related events")
    tier: Tier
    score: FractureScore = Field(description="Score that triggered the transition")
    actions: list[str] = Field(default_factory=list, description="Actions, in order")


class CrisisRecord(BaseModel):
    """
    A confirmed crisis episode.

    Frozen: closing the record produces a new copy via ``closed``.
    """

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=new_event_id)
    entity_id: str
    episode_id: str
    started_at: float = Field(description="Timestamp of the first sustained breach")
    confirmed_at: float = Field(description="Timestamp at which dwell was satisfied")
    ended_at: float | None = Field(default=None, description="Clear timestamp")
    peak_fi: float = Field(ge=0, description="Maximum FI during the episode")
    outcome: OutcomeLabel | None = Field(default=None)

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def duration(self) -> float:
        end = self.ended_at if self.ended_at is not None else self.confirmed_at
        return end - self.started_at

    def closed(self, ended_at: float, peak_fi: float) -> "CrisisRecord":
        return self.model_copy(
            update={"ended_at": ended_at, "peak_fi": max(self.peak_fi, peak_fi)}
        )


class EngineEvent(BaseModel):
    """Typed event returned from a state-machine evaluation."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    intervention: InterventionEvent | None = None
    crisis: CrisisRecord | None = None


class ObservationResult(BaseModel):
    """Everything an observe call produced for one sample."""

    entity_id: str
    timestamp: float
    score: FractureScore
    thresholds: Thresholds = Field(description="Personalized thresholds applied")
    events: list[EngineEvent] = Field(default_factory=list)
    recovering: bool = Field(
        default=False, description="FI below the current tier but not yet downgraded"
    )
    risk: float = Field(default=0.5, ge=0, le=1, description="Pattern-match risk")
    markers: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    evaluated: bool = Field(
        default=True, description="False when every channel value was rejected"
    )

    @property
    def tier(self) -> Tier:
        return self.score.tier

    @property
    def interventions(self) -> list[InterventionEvent]:
        return [e.intervention for e in self.events if e.intervention is not None]

    @property
    def crises(self) -> list[CrisisRecord]:
        return [
            e.crisis
            for e in self.events
            if e.kind == EventKind.CRISIS_CONFIRMED and e.crisis is not None
        ]


class BatchRejection(BaseModel):
    """A sample from observe_batch that was not scored."""

    entity_id: str
    timestamp: float
    reason: str


class BatchResult(BaseModel):
    """Results of observe_batch, grouped per entity in arrival order."""

    results: dict[str, list[ObservationResult]] = Field(default_factory=dict)
    rejected: list[BatchRejection] = Field(default_factory=list)


class EngineStatus(BaseModel):
    """Aggregate engine status for front-end collaborators."""

    active_entities: int = Field(ge=0)
    open_crises: int = Field(ge=0)
    intervention_rate: float = Field(ge=0, description="Interventions per evaluation")
    evaluations: int = Field(default=0, ge=0)
    pending_outcomes: int = Field(default=0, ge=0)
