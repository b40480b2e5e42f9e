"""
Fracture: streaming early-warning engine

Scores multi-channel behavioural and physiological signals with a Fracture
Index, escalates graduated interventions and adapts per-entity thresholds
from confirmed outcomes.
"""

from typing import Any

__all__ = ["EngineContext", "server"]


def __getattr__(name: str) -> Any:
    """Lazy load the engine and server to keep package import light."""
    if name == "EngineContext":
        from fracture.engine import EngineContext

        return EngineContext
    if name == "server":
        from fracture.server import server

        return server
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
