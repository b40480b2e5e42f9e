"""
Fracture Server

MCP server exposing the streaming engine: feed samples, report outcomes and
inspect entity profiles.
"""

import json
import logging
import threading

from typing import Any

from mcp.server.fastmcp import FastMCP

from fracture.database.repository import ProfileRepository
from fracture.database.session import get_database_path
from fracture.domains import AVAILABLE_DOMAINS, load_domain
from fracture.engine import EngineContext
from fracture.exceptions import FractureError
from fracture.models.events import EngineStatus, ObservationResult
from fracture.models.profile import ProfileSnapshot

logger = logging.getLogger(__name__)

INSTRUCTIONS = """
Fracture: streaming early-warning engine

You are the Fracture server. Collaborators stream multi-channel samples per
entity (a user, a patient, a market instrument). Each sample is scored with a
Fracture Index (FI) built from spectral slope change, lag-1 autocorrelation
and skewness. FI drives an intervention tier:
stable -> gentle -> moderate -> aggressive, and crisis once an aggressive
breach has been sustained for the domain's dwell period.

IMPORTANT NOTES:
- Timestamps are seconds and must strictly increase per entity
- The first samples of each entity are flagged insufficient_data (FI = 0)
- Outcomes are applied before the entity's next observation or profile read

AVAILABLE TOOLS:
- observe: Score one sample for an entity
- record_outcome: Label an intervention or crisis (crisis, falsePositive,
  interventionSuccess); thresholds adapt per entity
- get_profile: Thresholds, counters and baselines for an entity
- predict_risk: Crisis risk from the entity's labeled pattern memory
- get_status: Active entities, open crises and intervention rate
- list_domains: Available domain presets
- export_profile / import_profile: Move a profile between deployments

WORKFLOW:
1. Use list_domains to check channel names for the configured domain
2. Call observe for each incoming sample
3. When an intervention or crisis is confirmed or dismissed, call
   record_outcome with its event id
"""

server = FastMCP(name="fracture", instructions=INSTRUCTIONS)

_engine: EngineContext | None = None
_engine_lock = threading.Lock()


def get_engine() -> EngineContext:
    """
    Engine shared by all tool calls, created on first use.

    Profiles are persisted when the database has been initialized.
    """
    global _engine
    with _engine_lock:
        if _engine is None:
            repository = ProfileRepository() if get_database_path() else None
            _engine = EngineContext(load_domain(), repository=repository).open()
            logger.info(
                f"Engine ready: domain={_engine.domain.name}, "
                f"persistence={'on' if repository else 'off'}"
            )
        return _engine


def shutdown_engine() -> None:
    """Close the shared engine, saving profiles."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.close()
            _engine = None


# ============================================================================
# Resources (Documentation)
# ============================================================================


@server.resource("docs://domains")
def get_domains_documentation() -> str:
    """Domain presets: channels, thresholds and actions."""
    return json.dumps(list_domains(), indent=2)


# ============================================================================
# Tools (Actions)
# ============================================================================


@server.tool("observe")
def observe(
    *, entity_id: str, channels: dict[str, float], timestamp: float
) -> ObservationResult:
    """
    Score one incoming sample.

    Args:
        entity_id: Entity key
        channels: Channel name -> value (unknown channels are ignored)
        timestamp: Sample time in seconds, strictly increasing per entity

    Returns:
        Observation result with FI, tier, thresholds used and any events
    """
    try:
        return get_engine().observe(entity_id, channels, timestamp)
    except (FractureError, ValueError) as e:
        raise ValueError(str(e)) from e
    except Exception as e:
        logger.error(f"Error observing sample for {entity_id}: {e}", exc_info=True)
        raise ValueError(f"Error observing sample: {e}") from e


@server.tool("record_outcome")
def record_outcome(*, entity_id: str, event_id: str, label: str) -> str:
    """
    Report the confirmed outcome of an intervention or crisis.

    Args:
        entity_id: Entity key
        event_id: event_id of an intervention or record_id of a crisis
        label: One of crisis, falsePositive, interventionSuccess

    Returns:
        Confirmation message
    """
    try:
        get_engine().record_outcome(entity_id, event_id, label)
    except ValueError as e:
        raise ValueError(f"Invalid outcome label '{label}'") from e
    return f"Outcome '{label}' queued for {entity_id} event {event_id}"


@server.tool("get_profile")
def get_profile(*, entity_id: str) -> ProfileSnapshot:
    """
    Get the learned profile for an entity.

    Args:
        entity_id: Entity key

    Returns:
        Base and personalized thresholds, counters, baselines and tier
    """
    snapshot = get_engine().get_profile(entity_id)
    if snapshot is None:
        raise ValueError(f"Entity '{entity_id}' not found")
    return snapshot


@server.tool("predict_risk")
def predict_risk(
    *,
    entity_id: str,
    fi: float | None = None,
    channels: dict[str, float] | None = None,
) -> float:
    """
    Crisis probability from similar labeled patterns.

    Args:
        entity_id: Entity key
        fi: FI to match (defaults to the entity's latest score)
        channels: Channel values to match

    Returns:
        Probability in [0, 1]; 0.5 when no labeled pattern matches
    """
    return get_engine().predict_risk(entity_id, fi, channels)


@server.tool("get_status")
def get_status() -> EngineStatus:
    """Aggregate engine status across all entities."""
    return get_engine().get_status()


@server.tool("list_domains")
def list_domains() -> list[dict[str, Any]]:
    """
    List available domain presets.

    Returns:
        Name, description, channels, thresholds and actions per domain
    """
    return [
        {
            "name": name,
            "description": config.description,
            "channels": list(config.channels),
            "stress_channel": config.stress_channel,
            "thresholds": config.thresholds.as_dict(),
            "actions": config.actions.model_dump(mode="json"),
        }
        for name, config in AVAILABLE_DOMAINS.items()
    ]


@server.tool("export_profile")
def export_profile(*, entity_id: str) -> dict[str, Any]:
    """
    Export an entity profile as a versioned document.

    Args:
        entity_id: Entity key

    Returns:
        Export document (schema fracture.profile/v2)
    """
    document = get_engine().export_profile(entity_id)
    if document is None:
        raise ValueError(f"Entity '{entity_id}' not found")
    return document


@server.tool("import_profile")
def import_profile(*, document: dict[str, Any]) -> ProfileSnapshot:
    """
    Import a profile export document; older schema versions are migrated.

    Args:
        document: Export document

    Returns:
        Snapshot of the installed profile
    """
    try:
        return get_engine().import_profile(document)
    except FractureError as e:
        raise ValueError(str(e)) from e
