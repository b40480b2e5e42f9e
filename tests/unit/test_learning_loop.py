"""
Unit tests for the antifragile learning loop.

Tests threshold adaptation from false positives and confirmed crises, the
safety band, idempotent labels, the outcome horizon and pattern relabeling.
"""

import pytest

from fracture.constants import LearningConstants
from fracture.domains import SafetyBand, get_domain
from fracture.exceptions import (
    LabelConflictError,
    StaleOutcomeError,
    UnknownEntityError,
)
from fracture.learning import AntifragileLearner
from fracture.models.events import CrisisRecord, InterventionEvent
from fracture.models.features import FeatureSet, FractureScore
from fracture.profiles import ProfileStore
from fracture.types import OutcomeLabel, Tier


def make_event(
    tier: Tier, fi: float = 0.35, episode_id: str = "ep1", timestamp: float = 1.0
):
    return InterventionEvent(
        entity_id="E1",
        timestamp=timestamp,
        episode_id=episode_id,
        tier=tier,
        score=FractureScore(fi=fi, features=FeatureSet(), tier=tier),
    )


@pytest.fixture
def store(test_domain):
    store = ProfileStore(test_domain)
    store.get_or_create("E1")
    return store


@pytest.fixture
def learner(store, test_domain):
    return AntifragileLearner(store, test_domain)


class TestFalsePositives:
    """False positives make a tier less sensitive."""

    def test_repeated_false_positives_raise_threshold(self, learner, store):
        gentle = [store.get("E1").thresholds.gentle]
        for _ in range(3):
            update = learner.apply("E1", make_event(Tier.GENTLE), "falsePositive")
            gentle.append(update.thresholds.gentle)

        assert gentle[0] == pytest.approx(0.3)
        assert gentle[1] == pytest.approx(0.39)
        assert gentle[2] == pytest.approx(0.507)
        assert gentle == sorted(gentle)
        assert len(set(gentle)) == 4

    def test_ordering_is_restored(self, learner, store, test_domain):
        for _ in range(3):
            learner.apply("E1", make_event(Tier.GENTLE), OutcomeLabel.FALSE_POSITIVE)

        t = store.get("E1").thresholds
        gap = test_domain.safety_band.min_gap
        assert t.gentle == pytest.approx(0.6591)
        assert t.moderate >= t.gentle + gap - 1e-12
        assert t.aggressive >= t.moderate + gap - 1e-12
        assert t.aggressive <= test_domain.safety_band.upper

    def test_counters(self, learner, store):
        learner.apply("E1", make_event(Tier.GENTLE), "falsePositive")
        learner.apply("E1", make_event(Tier.MODERATE), "interventionSuccess")

        counters = store.get("E1").counters
        assert counters.false_positives == 1
        assert counters.true_positives == 1


class TestCrisisLabels:
    """Confirmed crises make the aggressive tier more sensitive."""

    def test_crisis_lowers_aggressive(self, learner, store):
        record = CrisisRecord(
            entity_id="E1",
            episode_id="ep1",
            started_at=1.0,
            confirmed_at=5.0,
            peak_fi=1.4,
        )

        update = learner.apply("E1", record, "crisis")

        assert update.tier == Tier.AGGRESSIVE
        assert update.thresholds.aggressive == pytest.approx(0.81)
        assert update.thresholds.gentle == pytest.approx(0.3)

    def test_success_leaves_thresholds(self, learner, store):
        before = store.get("E1").thresholds
        update = learner.apply("E1", make_event(Tier.MODERATE), "interventionSuccess")

        assert update.thresholds == before


class TestSafetyBand:
    """Adaptation never leaves the safety band."""

    def test_clamped_at_upper_bound(self):
        domain = get_domain(
            "cognitive",
            channels=("signal",),
            thresholds={"gentle": 0.3, "moderate": 0.6, "aggressive": 0.9},
            safety_band=SafetyBand(lower=0.2, upper=1.0, min_gap=0.05),
        )
        store = ProfileStore(domain)
        store.get_or_create("E1")
        learner = AntifragileLearner(store, domain)

        updates = [
            learner.apply("E1", make_event(Tier.AGGRESSIVE, fi=1.0), "falsePositive")
            for _ in range(5)
        ]

        assert updates[0].clamped
        for update in updates:
            assert update.thresholds.aggressive <= 1.0
            assert update.thresholds.gentle >= 0.2


class TestIdempotency:
    """Each event is labeled at most once."""

    def test_same_label_twice_is_noop(self, learner, store):
        event = make_event(Tier.GENTLE)
        learner.apply("E1", event, "falsePositive")
        after_first = store.get("E1").thresholds

        assert learner.apply("E1", event, "falsePositive") is None
        assert store.get("E1").thresholds == after_first
        assert store.get("E1").counters.false_positives == 1

    def test_conflicting_label_raises(self, learner):
        event = make_event(Tier.GENTLE)
        learner.apply("E1", event, "falsePositive")

        with pytest.raises(LabelConflictError):
            learner.apply("E1", event, "crisis")

    def test_unknown_entity_raises(self, learner):
        with pytest.raises(UnknownEntityError):
            learner.apply("ghost", make_event(Tier.GENTLE), "falsePositive")

    def test_invalid_label_raises(self, learner):
        with pytest.raises(ValueError):
            learner.apply("E1", make_event(Tier.GENTLE), "maybe")


class TestOutcomeHorizon:
    """Labels dropped past capacity move the outcome horizon forward."""

    @pytest.fixture(autouse=True)
    def small_capacity(self, monkeypatch):
        monkeypatch.setattr(LearningConstants, "PROCESSED_OUTCOME_CAPACITY", 2)

    @pytest.fixture
    def events(self, learner):
        events = [make_event(Tier.GENTLE, timestamp=t) for t in (1.0, 2.0, 3.0)]
        for event in events:
            learner.apply("E1", event, "falsePositive")
        return events

    def test_oldest_label_dropped(self, events, store):
        profile = store.get("E1")

        assert set(profile.processed_outcomes) == {e.event_id for e in events[1:]}
        assert set(profile.processed_at) == {e.event_id for e in events[1:]}
        assert profile.outcome_horizon == 1.0

    def test_replayed_dropped_outcome_is_refused(self, events, learner, store):
        before = store.get("E1").thresholds

        with pytest.raises(StaleOutcomeError):
            learner.apply("E1", events[0], "falsePositive")

        assert store.get("E1").thresholds == before
        assert store.get("E1").counters.false_positives == 3

    def test_unseen_event_before_horizon_is_refused(self, events, learner):
        with pytest.raises(StaleOutcomeError):
            learner.apply("E1", make_event(Tier.GENTLE, timestamp=0.5), "crisis")

    def test_retained_duplicates_stay_noops(self, events, learner):
        assert learner.apply("E1", events[2], "falsePositive") is None

    def test_newer_events_still_apply(self, events, learner, store):
        update = learner.apply(
            "E1", make_event(Tier.GENTLE, timestamp=4.0), "interventionSuccess"
        )

        assert update is not None
        assert store.get("E1").counters.true_positives == 1
        assert store.get("E1").outcome_horizon == 2.0

    def test_drops_by_event_time_not_arrival(self, learner, store):
        for t in (5.0, 2.0, 8.0):
            learner.apply("E1", make_event(Tier.GENTLE, timestamp=t), "falsePositive")

        profile = store.get("E1")
        assert sorted(profile.processed_at.values()) == [5.0, 8.0]
        assert profile.outcome_horizon == 2.0
        update = learner.apply(
            "E1", make_event(Tier.GENTLE, timestamp=3.0), "interventionSuccess"
        )
        assert update is not None

    def test_crisis_records_use_confirmation_time(self, events, learner):
        record = CrisisRecord(
            entity_id="E1", episode_id="ep1", started_at=0.2, confirmed_at=0.8, peak_fi=2.0
        )

        with pytest.raises(StaleOutcomeError):
            learner.apply("E1", record, "crisis")


class TestPatternRelabeling:
    """Outcomes label the pattern entries of their episode."""

    def test_episode_patterns_relabeled(self, learner, store):
        profile = store.get("E1")
        score = FractureScore(fi=0.8, features=FeatureSet(), tier=Tier.MODERATE)
        store.record_pattern(profile, score, {"signal": 1.0}, 1.0, "ep1")
        store.record_pattern(profile, score, {"signal": 1.0}, 2.0, "ep2")

        update = learner.apply("E1", make_event(Tier.MODERATE, fi=0.8), "falsePositive")

        assert update.relabeled == 1
        assert profile.patterns[0].outcome == OutcomeLabel.FALSE_POSITIVE
        assert profile.patterns[1].outcome is None

    def test_relabeled_patterns_drive_risk(self, learner, store):
        profile = store.get("E1")
        score = FractureScore(fi=1.0, features=FeatureSet(), tier=Tier.AGGRESSIVE)
        store.record_pattern(profile, score, {"signal": 2.0}, 1.0, "ep9")
        record = CrisisRecord(
            entity_id="E1", episode_id="ep9", started_at=1.0, confirmed_at=2.0, peak_fi=1.0
        )

        learner.apply("E1", record, "crisis")

        assert store.predict_risk("E1", 1.0, {"signal": 2.0}) == 1.0
