"""Population-level counters shared across entity workers."""

import threading

from collections import Counter


class PopulationMetrics:
    """
    Lock-guarded accumulator for cross-entity counts.

    Entity workers never share state except through this object.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    @property
    def intervention_rate(self) -> float:
        """Interventions per scored evaluation."""
        with self._lock:
            evaluations = self._counts["evaluations"]
            if evaluations == 0:
                return 0.0
            return self._counts["interventions"] / evaluations

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
