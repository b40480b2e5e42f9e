"""
Concurrency tests: batches, parallel entities, background learning and
eviction of busy entities.
"""

import threading
import time

from concurrent.futures import ThreadPoolExecutor

import pytest

from fracture.engine import EngineContext
from fracture.exceptions import OutOfOrderSampleError
from fracture.models.events import InterventionEvent
from fracture.models.features import FeatureSet, FractureScore
from fracture.types import Tier
from tests.helpers.synthetic_data import alternating_noise, feed, white_noise


def gentle_event(entity_id: str) -> InterventionEvent:
    return InterventionEvent(
        entity_id=entity_id,
        timestamp=1.0,
        episode_id="",
        tier=Tier.GENTLE,
        score=FractureScore(fi=0.35, features=FeatureSet()),
    )


class TestObserveBatch:
    """observe_batch parallelizes across entities, ordered within each."""

    def test_results_grouped_in_arrival_order(self, test_domain):
        entities = [f"E{i}" for i in range(6)]
        samples = [
            (entity_id, {"signal": float(v)}, float(t))
            for t, v in enumerate(white_noise(50, seed=1))
            for entity_id in entities
        ]

        with EngineContext(test_domain, max_workers=4) as engine:
            batch = engine.observe_batch(samples)
            status = engine.get_status()

        assert set(batch.results) == set(entities)
        assert batch.rejected == []
        for results in batch.results.values():
            assert [r.timestamp for r in results] == [float(t) for t in range(50)]
        assert status.active_entities == 6

    def test_rejections_do_not_stop_the_batch(self, test_domain):
        samples = [
            ("A", {"signal": 0.5}, 1.0),
            ("A", {"signal": 0.5}, 1.0),
            ("B", {"signal": 0.5}, 1.0),
            ("A", {"signal": 0.5}, 2.0),
            ("", {"signal": 0.5}, 3.0),
        ]

        with EngineContext(test_domain) as engine:
            batch = engine.observe_batch(samples)

        assert [r.timestamp for r in batch.results["A"]] == [1.0, 2.0]
        assert len(batch.results["B"]) == 1
        assert batch.results[""] == []
        assert len(batch.rejected) == 2
        assert {r.entity_id for r in batch.rejected} == {"A", ""}

    def test_batch_matches_sequential_scoring(self, test_domain):
        values = white_noise(40, seed=7)
        samples = [("P1", {"signal": float(v)}, float(t)) for t, v in enumerate(values)]

        with EngineContext(test_domain) as engine:
            batched = engine.observe_batch(samples).results["P1"]
        with EngineContext(test_domain) as engine:
            sequential = feed(engine, "P1", values)

        assert [r.score.fi for r in batched] == pytest.approx(
            [r.score.fi for r in sequential]
        )


class TestParallelObservers:
    """Concurrent callers keep per-entity state consistent."""

    def test_parallel_entities(self, test_domain):
        def run(entity_id):
            return feed(engine, entity_id, white_noise(80, seed=hash(entity_id) % 100))

        with EngineContext(test_domain) as engine:
            with ThreadPoolExecutor(max_workers=8) as pool:
                results = list(pool.map(run, [f"E{i}" for i in range(8)]))

            for i, entity_results in enumerate(results):
                profile = engine.get_profile(f"E{i}")
                assert len(entity_results) == 80
                assert profile.baselines["signal"].count == 80

    def test_contended_entity_accepts_only_increasing_timestamps(self, test_domain):
        accepted = []
        accepted_lock = threading.Lock()

        def run(offset):
            for t in range(offset, 200, 2):
                try:
                    result = engine.observe("shared", {"signal": float(t % 7)}, float(t))
                except OutOfOrderSampleError:
                    continue
                with accepted_lock:
                    accepted.append(result.timestamp)

        with EngineContext(test_domain) as engine:
            threads = [threading.Thread(target=run, args=(k,)) for k in (0, 1)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            profile = engine.get_profile("shared")

        assert len(set(accepted)) == len(accepted)
        assert profile.baselines["signal"].count == len(accepted)
        assert profile.last_observed_at == max(accepted)

    def test_outcomes_racing_observations(self, test_domain):
        with EngineContext(test_domain) as engine:
            feed(engine, "P1", alternating_noise(30))
            events = [gentle_event("P1") for _ in range(20)]

            def report():
                for event in events:
                    engine.record_outcome("P1", event, "interventionSuccess")

            reporter = threading.Thread(target=report)
            reporter.start()
            feed(engine, "P1", alternating_noise(50), start=30.0)
            reporter.join()

            profile = engine.get_profile("P1")

        assert profile.counters.true_positives == 20
        assert engine.pending_outcomes == 0


class TestBackgroundLearning:
    """Outcomes drain on the worker pool without a read."""

    def test_outcome_applied_without_read(self, test_domain):
        with EngineContext(test_domain, background_learning=True) as engine:
            feed(engine, "P1", alternating_noise(30))

            engine.record_outcome("P1", gentle_event("P1"), "falsePositive")

            deadline = time.monotonic() + 5.0
            while engine.pending_outcomes and time.monotonic() < deadline:
                time.sleep(0.01)

            assert engine.pending_outcomes == 0
            # The drain holds the entity lock until the outcome is applied
            with engine._lock_for("P1"):
                assert engine.store.get("P1").counters.false_positives == 1


class TestEviction:
    """Inactive profiles are exported and removed; busy ones are skipped."""

    def test_evicts_idle_entities(self, test_domain):
        with EngineContext(test_domain) as engine:
            feed(engine, "old", alternating_noise(5), start=0.0)
            feed(engine, "recent", alternating_noise(5), start=950.0)

            evicted = engine.evict_inactive(retention_seconds=100, now=1000.0)

            assert set(evicted) == {"old"}
            assert evicted["old"]["entity_id"] == "old"
            assert engine.get_profile("old") is None
            assert engine.get_profile("recent") is not None
            assert engine.get_status().active_entities == 1

    def test_skips_entity_whose_lock_is_held(self, test_domain):
        with EngineContext(test_domain) as engine:
            feed(engine, "busy", alternating_noise(5), start=0.0)
            feed(engine, "idle", alternating_noise(5), start=0.0)

            held = threading.Event()
            release = threading.Event()

            def hold_lock():
                with engine._lock_for("busy"):
                    held.set()
                    release.wait(5.0)

            holder = threading.Thread(target=hold_lock)
            holder.start()
            held.wait(5.0)
            try:
                evicted = engine.evict_inactive(retention_seconds=100, now=1000.0)
            finally:
                release.set()
                holder.join()

            assert set(evicted) == {"idle"}
            assert engine.get_profile("busy") is not None

    def test_evicted_profile_can_be_restored(self, test_domain):
        with EngineContext(test_domain) as engine:
            feed(engine, "P1", alternating_noise(25), start=0.0)
            document = engine.evict_inactive(retention_seconds=10, now=500.0)["P1"]

            snapshot = engine.import_profile(document)

            assert snapshot.baselines["signal"].count == 25
