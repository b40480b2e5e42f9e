"""
Engine context: the single entry point for ingestion, outcomes and queries.

One EngineContext owns a domain configuration, the profile store, the
learning loop and per-entity runtime state (sample windows, state machine,
event history, pending outcomes). Work for one entity is serialized by that
entity's lock; different entities run in parallel.
"""

import logging
import threading

from collections import OrderedDict, deque
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from types import TracebackType
from typing import Any

from fracture.analysis.feature_extractors import FeatureExtractor
from fracture.analysis.scorer import classify_trend, compute_fi, stress_deficit
from fracture.analysis.state_machine import InterventionStateMachine, TransitionResult
from fracture.analysis.window import ChannelWindows
from fracture.constants import ProfileConstants as PC
from fracture.database.repository import ProfileRepository
from fracture.domains import DEFAULT_DOMAIN, DomainConfig, get_domain
from fracture.exceptions import FractureError, OutOfOrderSampleError
from fracture.learning.loop import AntifragileLearner, LearningUpdate
from fracture.markers import MarkerExtractor
from fracture.metrics import PopulationMetrics
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
from fracture.models.profile import EntityProfile, ProfileSnapshot
from fracture.profiles.store import ProfileStore
from fracture.types import EventKind, OutcomeLabel, Tier, Trend
from fracture.utils.validation import (
    partition_channels,
    validate_entity_id,
    validate_timestamp,
)

logger = logging.getLogger(__name__)

__all__ = ["EngineContext", "EventRef", "Sample"]

EventRef = InterventionEvent | CrisisRecord | str
Sample = tuple[str, dict[str, Any], float]


class _EntityState:
    """Runtime (non-persisted) state for one entity."""

    def __init__(self, entity_id: str, domain: DomainConfig):
        self.windows = ChannelWindows(domain.window_capacity)
        self.machine = InterventionStateMachine(entity_id, domain)
        self.last_timestamp: float | None = None
        self.last_score: FractureScore | None = None
        self.interventions: OrderedDict[str, InterventionEvent] = OrderedDict()
        self.crises: OrderedDict[str, CrisisRecord] = OrderedDict()

    def remember(self, event: EngineEvent) -> None:
        if event.intervention is not None:
            self.interventions[event.intervention.event_id] = event.intervention
            while len(self.interventions) > PC.HISTORY_CAPACITY:
                self.interventions.popitem(last=False)
        if event.crisis is not None:
            self.crises[event.crisis.record_id] = event.crisis
            while len(self.crises) > PC.HISTORY_CAPACITY:
                self.crises.popitem(last=False)

    def resolve(self, event_id: str) -> InterventionEvent | CrisisRecord | None:
        return self.interventions.get(event_id) or self.crises.get(event_id)

    def label_crisis(self, record: CrisisRecord, label: OutcomeLabel) -> CrisisRecord:
        """Replace the held copy of a crisis record with one carrying its outcome."""
        held = self.crises.get(record.record_id, record)
        labeled = held.model_copy(update={"outcome": label})
        self.remember(EngineEvent(kind=EventKind.CRISIS_CONFIRMED, crisis=labeled))
        open_crisis = self.machine.open_crisis
        if open_crisis is not None and open_crisis.record_id == record.record_id:
            self.machine.open_crisis = open_crisis.model_copy(update={"outcome": label})
        return labeled

    def clear_session(self) -> None:
        self.machine.reset()
        self.windows.clear()
        self.last_timestamp = None
        self.last_score = None


class EngineContext:
    """
    Streaming Fracture Index engine.

    Example:
        >>> with EngineContext("clinical") as engine:
        ...     result = engine.observe("P1", {"heart_rate": 72.0}, timestamp=1.0)
        ...     for event in result.interventions:
        ...         engine.record_outcome("P1", event, "falsePositive")
    """

    def __init__(
        self,
        domain: DomainConfig | str | None = None,
        *,
        repository: ProfileRepository | None = None,
        marker_extractor: MarkerExtractor | None = None,
        max_workers: int | None = None,
        background_learning: bool = False,
    ):
        """
        Args:
            domain: Domain configuration or registered domain name
            repository: Optional persistence for profiles
            marker_extractor: Optional signal classifier
            max_workers: Worker pool size for batches and background learning
            background_learning: Drain outcome queues on the worker pool as
                soon as outcomes arrive instead of on the next read
        """
        if domain is None:
            domain = get_domain(DEFAULT_DOMAIN)
        elif isinstance(domain, str):
            domain = get_domain(domain)
        self.domain = domain
        self.repository = repository
        self.marker_extractor = marker_extractor
        self.max_workers = max_workers
        self.background_learning = background_learning

        self.store = ProfileStore(domain, repository=repository)
        self.learner = AntifragileLearner(self.store, domain)
        self.extractor = FeatureExtractor(domain)
        self.metrics = PopulationMetrics()

        self._states: dict[str, _EntityState] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._pending: dict[str, deque[tuple[EventRef, OutcomeLabel]]] = {}
        self._pending_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "EngineContext":
        """Start the worker pool. Idempotent."""
        if self._closed:
            raise RuntimeError("EngineContext has been closed")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="fracture"
            )
            logger.info(f"Engine opened for domain '{self.domain.name}'")
        return self

    def close(self) -> None:
        """Apply pending outcomes, persist profiles and stop the worker pool."""
        if self._closed:
            return
        self.process_pending()
        self.save_profiles()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._closed = True
        logger.info("Engine closed")

    def __enter__(self) -> "EngineContext":
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("EngineContext has been closed")

    def _lock_for(self, entity_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(entity_id)
            if lock is None:
                lock = self._locks[entity_id] = threading.RLock()
            return lock

    def _state_for(self, entity_id: str) -> _EntityState:
        with self._registry_lock:
            state = self._states.get(entity_id)
            if state is None:
                state = self._states[entity_id] = _EntityState(entity_id, self.domain)
            return state

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def observe(
        self, entity_id: str, channels: dict[str, Any], timestamp: float
    ) -> ObservationResult:
        """
        Score one incoming sample for an entity.

        Unknown channel keys are ignored and invalid values are dropped with a
        warning on the result. Pending outcomes for the entity are applied
        first so the evaluation sees the latest thresholds.

        Args:
            entity_id: Entity key
            channels: Channel name -> reading
            timestamp: Sample timestamp in seconds, strictly increasing per entity

        Returns:
            ObservationResult with the score, thresholds used and any events

        Raises:
            OutOfOrderSampleError: If timestamp is not newer than the last
                accepted sample for this entity
            ValueError: If entity_id or timestamp is malformed
        """
        self._check_open()
        entity_id = validate_entity_id(entity_id)
        timestamp = validate_timestamp(timestamp)

        with self._lock_for(entity_id):
            self._drain_entity(entity_id)
            state = self._state_for(entity_id)
            if state.last_timestamp is not None and timestamp <= state.last_timestamp:
                self.metrics.increment("rejected_samples")
                raise OutOfOrderSampleError(entity_id, timestamp, state.last_timestamp)
            return self._observe_locked(entity_id, state, channels, timestamp)

    def _observe_locked(
        self,
        entity_id: str,
        state: _EntityState,
        channels: dict[str, Any],
        timestamp: float,
    ) -> ObservationResult:
        self.metrics.increment("observations")
        accepted, stress_value, warnings = partition_channels(channels, self.domain)
        for warning in warnings:
            logger.warning(f"{entity_id}: dropped sample value: {warning}")
        if warnings:
            self.metrics.increment("invalid_samples", len(warnings))

        profile = self.store.get_or_create(entity_id)
        thresholds = self.store.personalized_thresholds(profile)

        if not accepted:
            self.metrics.increment("skipped_samples")
            return ObservationResult(
                entity_id=entity_id,
                timestamp=timestamp,
                score=FractureScore(
                    fi=0.0,
                    features=FeatureSet(),
                    tier=state.machine.tier,
                    insufficient_data=True,
                    confidence=0.0,
                    timestamp=timestamp,
                ),
                thresholds=thresholds,
                recovering=state.machine.recovering,
                warnings=warnings,
                evaluated=False,
            )

        state.last_timestamp = timestamp
        state.windows.append(timestamp, accepted)

        stress = self._stress_for(profile, stress_value)
        baseline_values = dict(accepted)
        if stress_value is not None and self.domain.stress_channel:
            baseline_values[self.domain.stress_channel] = stress_value
        self.store.update_baselines(profile, baseline_values, timestamp)

        features = self.extractor.extract(state.windows)
        score = compute_fi(
            features,
            self.domain.weights,
            stress,
            min_samples=self.domain.min_samples,
            required_channels=len(self.domain.channels),
        )
        previous_fi = state.last_score.fi if state.last_score is not None else None
        score = score.model_copy(update={"trend": classify_trend(score.fi, previous_fi)})

        if score.insufficient_data:
            self.metrics.increment("insufficient_data")
            transition = TransitionResult(
                tier=state.machine.tier,
                score=score.model_copy(
                    update={
                        "tier": state.machine.tier,
                        "trend": Trend.STABLE,
                        "timestamp": timestamp,
                    }
                ),
                recovering=state.machine.recovering,
            )
        else:
            self.metrics.increment("evaluations")
            transition = state.machine.evaluate(score.fi, timestamp, thresholds, score)
            state.last_score = transition.score

        self._record_events(profile, state, transition.events)
        self.store.record_score(profile, transition.score)
        self.store.record_pattern(
            profile, transition.score, accepted, timestamp, state.machine.episode_id
        )

        return ObservationResult(
            entity_id=entity_id,
            timestamp=timestamp,
            score=transition.score,
            thresholds=thresholds,
            events=transition.events,
            recovering=transition.recovering,
            risk=self.store.predict_risk(entity_id, transition.score.fi, accepted),
            markers=self._extract_markers(entity_id, state),
            warnings=warnings,
        )

    def _stress_for(
        self, profile: EntityProfile, stress_value: float | None
    ) -> float | None:
        channel = self.domain.stress_channel
        if stress_value is None or channel is None:
            return None
        baseline = profile.baselines.get(channel)
        if baseline is None:
            return None
        return stress_deficit(
            stress_value, baseline, self.domain.min_personalization_samples
        )

    def _record_events(
        self, profile: EntityProfile, state: _EntityState, events: list[EngineEvent]
    ) -> None:
        for event in events:
            state.remember(event)
            if event.kind == EventKind.INTERVENTION:
                self.store.record_intervention(profile)
                self.metrics.increment("interventions")
            elif event.kind == EventKind.CRISIS_CONFIRMED:
                self.store.record_crisis(profile)
                self.metrics.increment("crises")
            elif event.kind == EventKind.CRISIS_CLEARED:
                self.metrics.increment("crises_cleared")

    def _extract_markers(self, entity_id: str, state: _EntityState) -> list[str]:
        if self.marker_extractor is None:
            return []
        data = {}
        for channel in self.domain.channels:
            window = state.windows.get(channel)
            if window is not None:
                data[channel] = window.values()
        try:
            return sorted(self.marker_extractor.extract_markers(data))
        except Exception as e:
            logger.warning(f"{entity_id}: marker extraction failed: {e}")
            self.metrics.increment("marker_failures")
            return []

    def observe_batch(self, samples: Iterable[Sample]) -> BatchResult:
        """
        Score many samples, parallel across entities and ordered within each.

        Rejected samples (out of order or malformed) are reported instead of
        raised so one bad feed cannot stall the others.

        Args:
            samples: (entity_id, channels, timestamp) tuples in arrival order

        Returns:
            BatchResult with per-entity results and rejections
        """
        self.open()
        assert self._executor is not None

        grouped: dict[str, list[tuple[dict[str, Any], float]]] = {}
        for entity_id, channels, timestamp in samples:
            grouped.setdefault(entity_id, []).append((channels, timestamp))

        def run(
            entity_id: str, items: list[tuple[dict[str, Any], float]]
        ) -> tuple[list[ObservationResult], list[BatchRejection]]:
            results: list[ObservationResult] = []
            rejected: list[BatchRejection] = []
            for channels, timestamp in items:
                try:
                    results.append(self.observe(entity_id, channels, timestamp))
                except (FractureError, ValueError) as e:
                    rejected.append(
                        BatchRejection(
                            entity_id=str(entity_id),
                            timestamp=float(timestamp)
                            if isinstance(timestamp, int | float)
                            else -1.0,
                            reason=str(e),
                        )
                    )
            return results, rejected

        futures: dict[Future[Any], str] = {
            self._executor.submit(run, entity_id, items): entity_id
            for entity_id, items in grouped.items()
        }

        batch = BatchResult()
        for future in as_completed(futures):
            entity_id = futures[future]
            results, rejected = future.result()
            batch.results[entity_id] = results
            batch.rejected.extend(rejected)

        logger.debug(
            f"Batch scored {sum(len(r) for r in batch.results.values())} samples "
            f"across {len(grouped)} entities ({len(batch.rejected)} rejected)"
        )
        return batch

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_outcome(
        self, entity_id: str, event_ref: EventRef, label: OutcomeLabel | str
    ) -> None:
        """
        Queue a confirmed outcome for the learning loop.

        Returns immediately. The outcome is applied before the entity's next
        observe or profile read, or sooner on the worker pool when background
        learning is enabled. Duplicate labels for the same event are no-ops.

        Args:
            entity_id: Entity key
            event_ref: The InterventionEvent or CrisisRecord, or its id
            label: "crisis", "falsePositive" or "interventionSuccess"

        Raises:
            ValueError: If label is not a known outcome label, or event_ref is
                neither an event, a crisis record nor an id
        """
        self._check_open()
        label = OutcomeLabel(label)
        if not isinstance(event_ref, InterventionEvent | CrisisRecord | str):
            raise ValueError(
                "event_ref must be an InterventionEvent, CrisisRecord or event id, "
                f"not {type(event_ref).__name__}"
            )
        with self._pending_lock:
            self._pending.setdefault(entity_id, deque()).append((event_ref, label))
        self.metrics.increment("outcomes_received")

        if self.background_learning and self._executor is not None:
            future = self._executor.submit(self._drain_entity_locked, entity_id)
            future.add_done_callback(self._log_background_failure)

    def _log_background_failure(self, future: Future[int]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Background outcome processing failed: {error}", exc_info=error)

    def _drain_entity_locked(self, entity_id: str) -> int:
        with self._lock_for(entity_id):
            return self._drain_entity(entity_id)

    def _drain_entity(self, entity_id: str) -> int:
        """
        Apply queued outcomes for one entity. Caller holds the entity lock.

        A failing outcome is logged and skipped; the rest of the queue still
        drains.
        """
        with self._pending_lock:
            queue = self._pending.pop(entity_id, None)
        if not queue:
            return 0

        applied = 0
        while queue:
            event_ref, label = queue.popleft()
            try:
                update = self._apply_outcome(entity_id, event_ref, label)
            except Exception as e:
                logger.error(
                    f"{entity_id}: failed to apply {label.value} outcome: {e}",
                    exc_info=True,
                )
                self.metrics.increment("outcome_failures")
                continue
            if update is not None:
                applied += 1
        return applied

    def _apply_outcome(
        self, entity_id: str, event_ref: EventRef, label: OutcomeLabel
    ) -> LearningUpdate | None:
        event: InterventionEvent | CrisisRecord | None
        if isinstance(event_ref, str):
            state = self._states.get(entity_id)
            event = state.resolve(event_ref) if state is not None else None
            if event is None:
                logger.warning(
                    f"{entity_id}: outcome for unknown event '{event_ref}' ignored"
                )
                self.metrics.increment("outcomes_ignored")
                return None
        else:
            event = event_ref

        try:
            update = self.learner.apply(entity_id, event, label)
        except FractureError as e:
            logger.warning(f"{entity_id}: outcome ignored: {e}")
            self.metrics.increment("outcomes_ignored")
            return None

        if update is not None:
            self.metrics.increment("outcomes_applied")
            state = self._states.get(entity_id)
            if isinstance(event, CrisisRecord) and state is not None:
                state.label_crisis(event, label)
        return update

    def process_pending(self) -> int:
        """
        Apply every queued outcome now.

        Returns:
            Number of outcomes that changed a profile
        """
        with self._pending_lock:
            entity_ids = list(self._pending)
        return sum(self._drain_entity_locked(entity_id) for entity_id in entity_ids)

    @property
    def pending_outcomes(self) -> int:
        with self._pending_lock:
            return sum(len(queue) for queue in self._pending.values())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_profile(self, entity_id: str) -> ProfileSnapshot | None:
        """
        Read-only projection of an entity's profile.

        Returns:
            ProfileSnapshot, or None for an entity never observed or imported
        """
        with self._lock_for(entity_id):
            self._drain_entity(entity_id)
            state = self._states.get(entity_id)
            tier = state.machine.tier if state is not None else Tier.STABLE
            trend = (
                state.last_score.trend
                if state is not None and state.last_score is not None
                else Trend.STABLE
            )
            return self.store.snapshot(entity_id, tier=tier, trend=trend)

    def get_status(self) -> EngineStatus:
        """Aggregate status across all entities."""
        with self._registry_lock:
            states = list(self._states.values())
        return EngineStatus(
            active_entities=len(states),
            open_crises=sum(1 for s in states if s.machine.in_crisis),
            intervention_rate=self.metrics.intervention_rate,
            evaluations=self.metrics.get("evaluations"),
            pending_outcomes=self.pending_outcomes,
        )

    def predict_risk(
        self,
        entity_id: str,
        fi: float | None = None,
        channels: dict[str, float] | None = None,
    ) -> float:
        """
        Crisis risk from pattern memory.

        Args:
            entity_id: Entity key
            fi: FI to match; defaults to the entity's last score
            channels: Channel values to match

        Returns:
            Risk probability in [0, 1] (0.5 without matching history)
        """
        with self._lock_for(entity_id):
            self._drain_entity(entity_id)
            if fi is None:
                state = self._states.get(entity_id)
                if state is None or state.last_score is None:
                    return PC.DEFAULT_RISK
                fi = state.last_score.fi
            return self.store.predict_risk(entity_id, fi, channels)

    def get_events(self, entity_id: str) -> list[InterventionEvent]:
        """Intervention history held for the current session, oldest first."""
        with self._lock_for(entity_id):
            state = self._states.get(entity_id)
            return list(state.interventions.values()) if state is not None else []

    def get_crises(self, entity_id: str) -> list[CrisisRecord]:
        """
        Crisis records held for the current session, oldest first.

        Records reflect their latest state: closed once cleared and carrying
        the outcome label once one has been applied.
        """
        with self._lock_for(entity_id):
            self._drain_entity(entity_id)
            state = self._states.get(entity_id)
            return list(state.crises.values()) if state is not None else []

    # ------------------------------------------------------------------
    # Session control, export, eviction
    # ------------------------------------------------------------------

    def reset_entity(self, entity_id: str) -> None:
        """
        Cancel pending dwell and clear windows; the profile is kept.

        No crisis record is emitted for a dwell that was in progress.
        """
        with self._lock_for(entity_id):
            state = self._states.get(entity_id)
            if state is not None:
                state.clear_session()
                logger.info(f"{entity_id}: session reset")

    def clear_crisis(
        self, entity_id: str, timestamp: float | None = None
    ) -> EngineEvent | None:
        """
        Close an entity's open crisis without waiting for the recovery dwell.

        Queued outcomes are applied first so the cleared record carries them.

        Args:
            entity_id: Entity key
            timestamp: Close time; defaults to the last accepted sample time

        Returns:
            The CRISIS_CLEARED event, or None when no crisis is open
        """
        self._check_open()
        with self._lock_for(entity_id):
            self._drain_entity(entity_id)
            state = self._states.get(entity_id)
            if state is None or not state.machine.in_crisis:
                return None
            if timestamp is None:
                timestamp = state.last_timestamp or 0.0
            record = state.machine.clear(validate_timestamp(timestamp))
            if record is None:
                return None
            event = EngineEvent(kind=EventKind.CRISIS_CLEARED, crisis=record)
            profile = self.store.get_or_create(entity_id)
            self._record_events(profile, state, [event])
            return event

    def end_session(self, entity_id: str) -> None:
        """Reset the entity, apply its outcomes and persist its profile."""
        with self._lock_for(entity_id):
            self._drain_entity(entity_id)
            with self._registry_lock:
                state = self._states.pop(entity_id, None)
            if state is not None:
                state.clear_session()
            self.store.save(entity_id)
            logger.info(f"{entity_id}: session ended")

    def export_profile(self, entity_id: str) -> dict[str, Any] | None:
        """Versioned export document for an entity, or None if unknown."""
        with self._lock_for(entity_id):
            self._drain_entity(entity_id)
            document = self.store.export_profile(entity_id)
            return document.to_json_dict() if document is not None else None

    def import_profile(self, document: dict[str, Any]) -> ProfileSnapshot:
        """
        Install an exported profile, migrating older schema versions.

        Raises:
            ProfileCorruptionError: If the document fails migration or validation
        """
        entity_id = str(document.get("entity_id") or document.get("entityId") or "")
        with self._lock_for(entity_id):
            profile = self.store.import_profile(document)
            snapshot = self.store.snapshot(profile.entity_id)
        assert snapshot is not None
        return snapshot

    def save_profiles(self) -> int:
        """Persist every in-memory profile. Returns the number saved."""
        if self.repository is None:
            return 0
        saved = 0
        for entity_id in self.store.entity_ids():
            with self._lock_for(entity_id):
                if self.store.save(entity_id):
                    saved += 1
        logger.info(f"Saved {saved} profile(s)")
        return saved

    def evict_inactive(
        self, retention_seconds: float, now: float
    ) -> dict[str, dict[str, Any]]:
        """
        Export and remove profiles idle for longer than the retention window.

        Entities whose lock is currently held (actively scoring) are skipped.

        Args:
            retention_seconds: Idle time after which an entity is evicted
            now: Current time on the same clock as sample timestamps

        Returns:
            Entity id -> export document for every evicted entity
        """
        evicted: dict[str, dict[str, Any]] = {}
        for entity_id in self.store.entity_ids():
            profile = self.store.get(entity_id)
            if profile is None or profile.last_observed_at is None:
                continue
            if now - profile.last_observed_at <= retention_seconds:
                continue

            lock = self._lock_for(entity_id)
            if not lock.acquire(blocking=False):
                logger.debug(f"{entity_id}: busy, skipping eviction")
                continue
            try:
                self._drain_entity(entity_id)
                self.store.save(entity_id)
                document = self.store.evict(entity_id)
                with self._registry_lock:
                    self._states.pop(entity_id, None)
                if document is not None:
                    evicted[entity_id] = document.to_json_dict()
            finally:
                lock.release()

        if evicted:
            logger.info(f"Evicted {len(evicted)} inactive profile(s)")
        return evicted
