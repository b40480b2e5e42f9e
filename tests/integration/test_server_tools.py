"""
Tests for the MCP server tools.

Tool functions are called directly; the shared engine is rebuilt for every
test from the isolated user config.
"""

import pytest

import fracture.server as server
from fracture.database.session import cleanup_database
from tests.helpers.synthetic_data import alternating_noise


@pytest.fixture(autouse=True)
def fresh_engine(isolated_config):
    """Shared engine without persistence, reset around each test."""
    isolated_config.write_text(
        '[logging]\nenabled = false\n\n[engine]\ndefault_domain = "market"\n'
    )
    cleanup_database()
    server.shutdown_engine()
    yield
    server.shutdown_engine()
    cleanup_database()


def observe_series(entity_id, values):
    return [
        server.observe(
            entity_id=entity_id,
            channels={"price": float(v), "volume": 1000.0 + i, "spread": 0.01},
            timestamp=float(i),
        )
        for i, v in enumerate(values)
    ]


class TestEngineLifecycle:
    """The shared engine follows the configured default domain."""

    def test_engine_uses_default_domain(self):
        engine = server.get_engine()

        assert engine.domain.name == "market"
        assert engine.repository is None
        assert server.get_engine() is engine

    def test_shutdown_discards_engine(self):
        first = server.get_engine()

        server.shutdown_engine()

        assert server.get_engine() is not first


class TestObserveTool:
    """Scoring through the observe tool."""

    def test_observe_returns_result(self):
        results = observe_series("AAPL", alternating_noise(40, level=100.0, amplitude=0.5))

        assert results[-1].entity_id == "AAPL"
        assert results[0].score.insufficient_data
        assert results[-1].evaluated

    def test_out_of_order_surfaces_as_value_error(self):
        observe_series("AAPL", [100.0, 101.0])

        with pytest.raises(ValueError, match="AAPL"):
            server.observe(entity_id="AAPL", channels={"price": 100.0}, timestamp=0.0)


class TestOutcomeTool:
    """Outcome reporting."""

    def test_record_outcome_queues(self):
        observe_series("AAPL", [100.0])

        message = server.record_outcome(entity_id="AAPL", event_id="e-1", label="crisis")

        assert "queued" in message
        assert server.get_status().pending_outcomes == 1

    def test_invalid_label(self):
        with pytest.raises(ValueError, match="Invalid outcome label"):
            server.record_outcome(entity_id="AAPL", event_id="e-1", label="maybe")


class TestProfileTools:
    """Profile inspection and transfer."""

    def test_get_profile(self):
        observe_series("AAPL", [100.0, 101.0, 102.0])

        profile = server.get_profile(entity_id="AAPL")

        assert profile.domain == "market"
        assert profile.baselines["price"].count == 3

    def test_get_unknown_profile(self):
        with pytest.raises(ValueError, match="not found"):
            server.get_profile(entity_id="ghost")

    def test_export_and_import(self):
        observe_series("AAPL", [100.0, 101.0])
        document = server.export_profile(entity_id="AAPL")
        document["entity_id"] = "MSFT"

        snapshot = server.import_profile(document=document)

        assert snapshot.entity_id == "MSFT"
        assert server.get_profile(entity_id="MSFT").baselines["price"].count == 2

    def test_import_corrupt_document(self):
        with pytest.raises(ValueError):
            server.import_profile(document={"schema": "nope", "entity_id": "X"})

    def test_export_unknown(self):
        with pytest.raises(ValueError, match="not found"):
            server.export_profile(entity_id="ghost")


class TestStatusTools:
    """Status, risk and domain listing."""

    def test_status(self):
        observe_series("AAPL", [100.0])
        observe_series("MSFT", [50.0])

        status = server.get_status()

        assert status.active_entities == 2
        assert status.open_crises == 0

    def test_predict_risk_without_history(self):
        observe_series("AAPL", [100.0])

        assert server.predict_risk(entity_id="AAPL", fi=1.0) == 0.5

    def test_list_domains(self):
        domains = {d["name"]: d for d in server.list_domains()}

        assert set(domains) == {"cognitive", "clinical", "market"}
        assert domains["clinical"]["stress_channel"] == "hrv"
        assert domains["market"]["channels"] == ["price", "volume", "spread"]
        assert domains["market"]["thresholds"]["aggressive"] == 1.4

    def test_domains_resource(self):
        assert '"market"' in server.get_domains_documentation()
