"""
Tests for profile persistence.

These tests verify:
- Profiles round-trip through the database as export documents
- Corrupt stored documents are quarantined and replaced by a fallback
- Documents that are not finite JSON objects never reach the table
- Listing, deletion and inactivity queries
- The engine persists and reloads profiles through the repository
"""

import pytest

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, StatementError

from fracture.database import models
from fracture.database.repository import ProfileRepository
from fracture.database.session import session_scope
from fracture.engine import EngineContext
from fracture.models.profile import EntityProfile, Thresholds
from fracture.profiles.store import ProfileStore
from tests.helpers.synthetic_data import alternating_noise, feed


@pytest.fixture
def repository(initialized_db):
    return ProfileRepository()


def make_profile(entity_id: str, last_observed_at: float | None = None) -> EntityProfile:
    profile = EntityProfile(
        entity_id=entity_id,
        domain="cognitive",
        thresholds=Thresholds(gentle=0.4, moderate=0.8, aggressive=1.2),
    )
    profile.last_observed_at = last_observed_at
    return profile


class TestDatabaseSetup:
    """Connection pragmas and table constraints."""

    def test_busy_timeout_set(self, initialized_db):
        with session_scope() as session:
            result = session.execute(text("PRAGMA busy_timeout")).scalar()
            assert result == 5000

    def test_empty_entity_id_rejected(self, initialized_db):
        with pytest.raises(IntegrityError):
            with session_scope() as session:
                session.add(
                    models.EntityProfileRecord(
                        entity_id="",
                        domain="cognitive",
                        schema_tag="fracture.profile/v2",
                        document={},
                    )
                )


class TestSaveAndLoad:
    """Round-trips through the repository."""

    def test_round_trip(self, repository):
        profile = make_profile("P1", last_observed_at=12.5)
        profile.baselines["signal"] = profile.fi_baseline.model_copy()
        profile.baselines["signal"].update(3.0, 100)
        profile.counters.interventions = 4

        repository.save(profile)
        loaded = repository.load("P1")

        assert loaded.entity_id == "P1"
        assert loaded.thresholds == profile.thresholds
        assert loaded.counters.interventions == 4
        assert loaded.baselines["signal"].mean == pytest.approx(3.0)
        assert loaded.last_observed_at == 12.5

    def test_save_replaces_existing(self, repository):
        repository.save(make_profile("P1"))
        updated = make_profile("P1")
        updated.counters.crises = 2

        repository.save(updated)

        assert repository.count() == 1
        assert repository.load("P1").counters.crises == 2

    def test_missing_profile(self, repository):
        assert repository.load("nobody") is None
        assert repository.delete("nobody") is False


class TestQuarantine:
    """Corrupt documents never reach the engine."""

    def corrupt_document(self):
        return {
            "schema": "fracture.profile/v9",
            "entity_id": "P1",
            "domain": "cognitive",
        }

    def test_corrupt_document_quarantined_with_fallback(self, repository):
        repository.save_document(self.corrupt_document())
        fresh = make_profile("P1")

        loaded = repository.load("P1", fallback=lambda entity_id: fresh)

        assert loaded is fresh
        quarantined = repository.list_quarantined()
        assert len(quarantined) == 1
        assert quarantined[0].entity_id == "P1"
        assert "fracture.profile/v9" in quarantined[0].payload
        # The fallback replaces the corrupt row
        assert repository.load("P1").thresholds == fresh.thresholds

    def test_corrupt_document_without_fallback(self, repository):
        repository.save_document(self.corrupt_document())

        assert repository.load("P1") is None
        assert repository.count() == 0
        assert len(repository.list_quarantined()) == 1

    @pytest.mark.parametrize("stored", ["[1, 2]", "{broken", "null"])
    def test_undecodable_row_quarantined(self, repository, stored):
        repository.save(make_profile("P1"))
        with session_scope() as session:
            session.execute(
                text("UPDATE entity_profiles SET document = :doc WHERE entity_id = 'P1'"),
                {"doc": stored},
            )

        assert repository.load("P1") is None
        quarantined = repository.list_quarantined()
        assert [q.payload for q in quarantined] == [stored]

    def test_non_finite_document_refused(self, repository):
        document = {
            "schema": "fracture.profile/v2",
            "entity_id": "P1",
            "domain": "cognitive",
            "recent_fi": [float("nan")],
        }

        with pytest.raises(StatementError, match="Cannot serialize profile document"):
            repository.save_document(document)

        assert repository.count() == 0

    def test_store_falls_back_to_domain_defaults(self, repository, test_domain):
        repository.save_document(self.corrupt_document())
        store = ProfileStore(test_domain, repository=repository)

        profile = store.get("P1")

        assert profile.thresholds == test_domain.thresholds
        assert profile.domain == test_domain.name


class TestListing:
    """Listing, deletion and inactivity queries."""

    def test_list_entities(self, repository):
        for entity_id in ("A", "B", "C"):
            repository.save(make_profile(entity_id))

        summaries = repository.list_entities()

        assert {s.entity_id for s in summaries} == {"A", "B", "C"}
        assert all(s.schema_tag == "fracture.profile/v2" for s in summaries)
        assert len(repository.list_entities(limit=2)) == 2

    def test_delete(self, repository):
        repository.save(make_profile("A"))

        assert repository.delete("A") is True
        assert repository.count() == 0

    def test_inactive_entities(self, repository):
        repository.save(make_profile("old", last_observed_at=10.0))
        repository.save(make_profile("recent", last_observed_at=900.0))
        repository.save(make_profile("never"))

        assert repository.inactive_entities(cutoff=500.0) == ["old"]


class TestEnginePersistence:
    """The engine saves through the repository and reloads lazily."""

    def test_end_session_persists(self, repository, test_domain):
        with EngineContext(test_domain, repository=repository) as engine:
            feed(engine, "P1", alternating_noise(30))
            engine.end_session("P1")

            assert repository.load("P1").baselines["signal"].count == 30

    def test_profiles_survive_restart(self, repository, test_domain):
        with EngineContext(test_domain, repository=repository) as engine:
            feed(engine, "P1", alternating_noise(30))
            feed(engine, "P2", alternating_noise(10))

        with EngineContext(test_domain, repository=repository) as engine:
            profile = engine.get_profile("P1")
            assert profile is not None
            assert profile.baselines["signal"].count == 30
            assert engine.save_profiles() == 1

        assert repository.count() == 2

    def test_restart_continues_learning_from_stored_thresholds(
        self, repository, test_domain
    ):
        stored = make_profile("P1")
        repository.save(stored)

        with EngineContext(test_domain, repository=repository) as engine:
            result = engine.observe("P1", {"signal": 0.5}, 1.0)

        assert result.thresholds == stored.thresholds
