"""
Marker extraction interface.

Signal classifiers (e.g., arrhythmia or artifact detectors) plug in here. The
engine ships no classifier of its own; when none is configured, observations
carry an empty marker list.
"""

from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class MarkerExtractor(Protocol):
    """Classifies the current channel windows into named markers."""

    def extract_markers(self, channel_data: dict[str, np.ndarray]) -> set[str]:
        """
        Args:
            channel_data: Channel name -> window readings, oldest first

        Returns:
            Set of marker names present in the data
        """
        ...
