"""
Forward migrations for exported profile documents.

v1 documents use the camelCase layout of the earlier exporter:

    {
        "schema": "fracture.profile/v1",
        "entityId": "P1",
        "domain": "clinical",
        "baselineData": {"heart_rate": {"mean": 72.0, "std": 4.1, "count": 310}},
        "adaptationData": {
            "thresholds": {"gentle": 0.6, "moderate": 1.0, "aggressive": 1.5},
            "patterns": [...],
            "statistics": {"truePositives": 3, "falsePositives": 1, ...}
        }
    }

v2 is the ProfileDocument layout.
"""

import logging

from typing import Any

from fracture.constants import PROFILE_SCHEMA_CURRENT, PROFILE_SCHEMA_V1, PROFILE_SCHEMA_V2

logger = logging.getLogger(__name__)

_V1_COUNTER_KEYS = {
    "truePositives": "true_positives",
    "falsePositives": "false_positives",
    "interventions": "interventions",
    "crises": "crises",
}


def _baseline_from_v1(stats: dict[str, Any]) -> dict[str, Any]:
    count = int(stats.get("count", 0))
    std = float(stats.get("std", 0.0))
    return {
        "count": count,
        "mean": float(stats.get("mean", 0.0)),
        "m2": std * std * (count - 1) if count > 1 else 0.0,
    }


def _pattern_from_v1(entry: dict[str, Any]) -> dict[str, Any]:
    pattern: dict[str, Any] = {
        "timestamp": entry["timestamp"],
        "fi": entry.get("fi", entry.get("pfi", 0.0)),
        "tier": entry.get("tier", "gentle"),
        "features": entry.get("features", {}),
        "channels": entry.get("vitals", entry.get("channels", {})),
        "episode_id": entry.get("episodeId"),
        "outcome": entry.get("outcome"),
    }
    if "id" in entry:
        pattern["pattern_id"] = entry["id"]
    return pattern


def migrate_v1_to_v2(document: dict[str, Any]) -> dict[str, Any]:
    """
    Convert a v1 document to the v2 layout.

    Args:
        document: Parsed v1 document

    Returns:
        New dictionary in v2 layout
    """
    adaptation = document.get("adaptationData", {})
    statistics = adaptation.get("statistics", {})
    baselines = document.get("baselineData", {})

    migrated: dict[str, Any] = {
        "schema": PROFILE_SCHEMA_V2,
        "entity_id": document["entityId"],
        "domain": document.get("domain", "clinical"),
        "thresholds": adaptation["thresholds"],
        "baselines": {
            channel: _baseline_from_v1(stats)
            for channel, stats in baselines.items()
            if channel != "fi"
        },
        "patterns": [_pattern_from_v1(p) for p in adaptation.get("patterns", [])],
        "counters": {
            new: int(statistics.get(old, 0)) for old, new in _V1_COUNTER_KEYS.items()
        },
    }
    if "fi" in baselines:
        migrated["fi_baseline"] = _baseline_from_v1(baselines["fi"])
    if "exportedAt" in document:
        migrated["exported_at"] = document["exportedAt"]
    return migrated


MIGRATIONS = {
    PROFILE_SCHEMA_V1: migrate_v1_to_v2,
}


def migrate_document(document: dict[str, Any]) -> dict[str, Any]:
    """
    Migrate a profile document forward to the current schema.

    Args:
        document: Parsed export document of any supported schema

    Returns:
        Document in the current schema (the input itself if already current)

    Raises:
        ValueError: If the schema tag is missing or unsupported
    """
    schema = document.get("schema")
    if schema is None:
        raise ValueError("Profile document has no schema tag")

    while schema != PROFILE_SCHEMA_CURRENT:
        step = MIGRATIONS.get(schema)
        if step is None:
            raise ValueError(
                f"Unsupported profile schema: {schema}. "
                f"Supported: {[*MIGRATIONS, PROFILE_SCHEMA_CURRENT]}"
            )
        logger.info(f"Migrating profile document from {schema}")
        document = step(document)
        schema = document["schema"]

    return document
