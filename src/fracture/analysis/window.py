"""Fixed-capacity sample windows with ring-buffer eviction."""

from collections import deque

import numpy as np


class SampleWindow:
    """
    Ordered, fixed-capacity sequence of readings for one channel.

    Timestamps must increase strictly; the oldest entry is evicted once
    capacity is exceeded.

    Example:
        >>> window = SampleWindow(capacity=64)
        >>> window.append(1.0, 72.0)
        >>> window.values()
        array([72.])
    """

    def __init__(self, capacity: int):
        if capacity < 2:
            raise ValueError(f"Window capacity must be at least 2, got {capacity}")
        self.capacity = capacity
        self._timestamps: deque[float] = deque(maxlen=capacity)
        self._values: deque[float] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def last_timestamp(self) -> float | None:
        return self._timestamps[-1] if self._timestamps else None

    @property
    def is_full(self) -> bool:
        return len(self._values) == self.capacity

    def append(self, timestamp: float, value: float) -> None:
        """
        Append one reading.

        Raises:
            ValueError: If timestamp is not newer than the last entry
        """
        last = self.last_timestamp
        if last is not None and timestamp <= last:
            raise ValueError(
                f"Window timestamps must increase: {timestamp} <= {last}"
            )
        self._timestamps.append(timestamp)
        self._values.append(value)

    def values(self, last_n: int | None = None) -> np.ndarray:
        """Readings oldest first, optionally only the most recent ``last_n``."""
        data = np.fromiter(self._values, dtype=float, count=len(self._values))
        if last_n is not None:
            return data[-last_n:] if last_n > 0 else data[:0]
        return data

    def timestamps(self) -> np.ndarray:
        return np.fromiter(self._timestamps, dtype=float, count=len(self._timestamps))

    def clear(self) -> None:
        self._timestamps.clear()
        self._values.clear()


class ChannelWindows:
    """One SampleWindow per channel for a single entity."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._windows: dict[str, SampleWindow] = {}

    def append(self, timestamp: float, channels: dict[str, float]) -> None:
        for name, value in channels.items():
            window = self._windows.get(name)
            if window is None:
                window = SampleWindow(self.capacity)
                self._windows[name] = window
            window.append(timestamp, value)

    def get(self, channel: str) -> SampleWindow | None:
        return self._windows.get(channel)

    def sample_counts(self) -> dict[str, int]:
        return {name: len(window) for name, window in self._windows.items()}

    def clear(self) -> None:
        self._windows.clear()
