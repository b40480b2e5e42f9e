"""
Unit tests for the entity profile store.

Tests baselines, FI personalization, pattern memory, risk prediction and
export/import.
"""

import numpy as np
import pytest

from fracture.exceptions import ProfileCorruptionError
from fracture.models.features import FeatureSet, FractureScore
from fracture.models.profile import ChannelBaseline, PatternEntry
from fracture.profiles import ProfileStore
from fracture.types import OutcomeLabel, Tier


def make_score(fi: float, tier: Tier = Tier.STABLE, insufficient: bool = False):
    return FractureScore(
        fi=fi, features=FeatureSet(), tier=tier, insufficient_data=insufficient
    )


@pytest.fixture
def store(test_domain):
    return ProfileStore(test_domain)


class TestChannelBaseline:
    """Test rolling mean/variance."""

    def test_welford_matches_numpy(self):
        values = [3.0, 7.0, 1.0, 9.0, 4.0]
        baseline = ChannelBaseline()
        for v in values:
            baseline.update(v, window=100)

        assert baseline.count == 5
        assert baseline.mean == pytest.approx(np.mean(values))
        assert baseline.std == pytest.approx(np.std(values, ddof=1))

    def test_exponential_after_window(self):
        baseline = ChannelBaseline()
        for _ in range(5):
            baseline.update(1.0, window=5)

        baseline.update(2.0, window=5)

        assert baseline.count == 5
        assert baseline.mean == pytest.approx(1.2)


class TestProfileLifecycle:
    """Test profile creation and lookup."""

    def test_get_unknown_returns_none(self, store):
        assert store.get("nobody") is None
        assert "nobody" not in store

    def test_get_or_create_seeds_domain_thresholds(self, store, test_domain):
        profile = store.get_or_create("E1")

        assert profile.thresholds == test_domain.thresholds
        assert profile.domain == test_domain.name
        assert store.get_or_create("E1") is profile
        assert len(store) == 1

    def test_update_baselines(self, store):
        profile = store.get_or_create("E1")
        store.update_baselines(profile, {"signal": 2.0}, timestamp=5.0)
        store.update_baselines(profile, {"signal": 4.0}, timestamp=6.0)

        assert profile.baselines["signal"].mean == pytest.approx(3.0)
        assert profile.last_observed_at == 6.0


class TestPersonalization:
    """Test FI-variability threshold personalization."""

    def test_no_margin_before_min_samples(self, store):
        profile = store.get_or_create("E1")
        for fi in [0.1, 0.3] * 4:
            store.record_score(profile, make_score(fi))

        assert store.get_personalized_threshold("E1", 0.7) == 0.7
        assert store.personalized_thresholds(profile) == profile.thresholds

    def test_margin_from_stable_fi(self, store):
        profile = store.get_or_create("E1")
        values = [0.1, 0.3] * 5
        for fi in values:
            store.record_score(profile, make_score(fi))

        expected = 0.7 + 0.5 * np.std(values, ddof=1)
        assert store.get_personalized_threshold("E1", 0.7) == pytest.approx(expected)

        personalized = store.personalized_thresholds(profile)
        assert personalized.gentle == pytest.approx(0.3 + 0.5 * np.std(values, ddof=1))

    def test_only_stable_scores_train_baseline(self, store):
        profile = store.get_or_create("E1")
        store.record_score(profile, make_score(2.0, tier=Tier.AGGRESSIVE))
        store.record_score(profile, make_score(0.0, insufficient=True))

        assert profile.fi_baseline.count == 0
        assert profile.recent_fi == [2.0]

    def test_personalized_threshold_clamped_to_band(self, store, test_domain):
        assert store.get_personalized_threshold("E1", 10.0) == test_domain.safety_band.upper


class TestPatternMemory:
    """Test notable-pattern capture and risk prediction."""

    def test_below_notable_floor_not_recorded(self, store):
        profile = store.get_or_create("E1")
        entry = store.record_pattern(profile, make_score(0.5), {"signal": 1.0}, 1.0, None)

        assert entry is None
        assert profile.patterns == []

    def test_capacity_drops_oldest(self, test_domain):
        from fracture.domains import get_domain

        domain = get_domain("cognitive", channels=("signal",), pattern_capacity=3)
        store = ProfileStore(domain)
        profile = store.get_or_create("E1")
        for i in range(5):
            store.record_pattern(profile, make_score(1.0), {"signal": 1.0}, float(i), None)

        assert [p.timestamp for p in profile.patterns] == [2.0, 3.0, 4.0]

    def test_risk_defaults_without_labeled_match(self, store):
        profile = store.get_or_create("E1")
        store.record_pattern(profile, make_score(1.0), {"signal": 1.0}, 1.0, None)

        assert store.predict_risk("E1", 1.0) == 0.5
        assert store.predict_risk("unknown", 1.0) == 0.5

    def test_risk_from_labeled_matches(self, store):
        profile = store.get_or_create("E1")
        for i, outcome in enumerate(
            [OutcomeLabel.CRISIS, OutcomeLabel.CRISIS, OutcomeLabel.FALSE_POSITIVE]
        ):
            entry = store.record_pattern(
                profile, make_score(1.0), {"signal": 5.0}, float(i), None
            )
            entry.outcome = outcome

        assert store.predict_risk("E1", 1.05, {"signal": 5.2}) == pytest.approx(2 / 3)
        # FI too far away
        assert store.predict_risk("E1", 1.5, {"signal": 5.0}) == 0.5
        # Channel too far away
        assert store.predict_risk("E1", 1.0, {"signal": 9.0}) == 0.5


class TestExportImport:
    """Test versioned export documents."""

    def test_export_then_import_preserves_learning(self, store, test_domain):
        profile = store.get_or_create("E1")
        store.update_baselines(profile, {"signal": 2.0}, timestamp=3.0)
        profile.counters.false_positives = 2

        document = store.export_profile("E1").to_json_dict()
        assert document["schema"] == "fracture.profile/v2"

        other = ProfileStore(test_domain)
        imported = other.import_profile(document)

        assert imported.thresholds == profile.thresholds
        assert imported.counters.false_positives == 2
        assert imported.baselines["signal"].mean == pytest.approx(2.0)

    def test_labeled_pattern_memory_round_trips(self, store, test_domain):
        profile = store.get_or_create("E1")
        profile.patterns = [
            PatternEntry(
                timestamp=10.0 + i,
                fi=0.7 + 0.1 * i,
                tier=Tier.MODERATE,
                features=FeatureSet(
                    autocorrelation=0.8,
                    skewness=-1.2,
                    sample_count=40,
                    active_channels=["signal"],
                ),
                channels={"signal": 5.0 + i},
                episode_id="ep-1" if i < 2 else "ep-2",
                outcome=OutcomeLabel.CRISIS if i < 2 else OutcomeLabel.FALSE_POSITIVE,
            )
            for i in range(3)
        ]
        profile.tier_outcomes = {
            "aggressive": [OutcomeLabel.CRISIS],
            "moderate": [OutcomeLabel.FALSE_POSITIVE, OutcomeLabel.INTERVENTION_SUCCESS],
        }
        profile.processed_outcomes = {"crisis-1": OutcomeLabel.CRISIS}
        profile.processed_at = {"crisis-1": 12.0}
        profile.outcome_horizon = 4.0
        profile.counters.true_positives = 1
        profile.counters.false_positives = 1

        document = store.export_profile("E1").to_json_dict()
        imported = ProfileStore(test_domain).import_profile(document)

        assert imported.patterns == profile.patterns
        assert imported.tier_outcomes == profile.tier_outcomes
        assert imported.processed_outcomes == profile.processed_outcomes
        assert imported.processed_at == profile.processed_at
        assert imported.outcome_horizon == 4.0
        assert imported.counters == profile.counters
        assert imported.thresholds == profile.thresholds

    def test_import_rejects_malformed_document(self, store):
        with pytest.raises(ProfileCorruptionError):
            store.import_profile({"schema": "fracture.profile/v2", "entity_id": "E1"})

    def test_evict_returns_document(self, store):
        store.get_or_create("E1")

        document = store.evict("E1")

        assert document.entity_id == "E1"
        assert store.get("E1") is None
        assert store.evict("E1") is None
