"""Outcome-driven threshold and pattern adaptation."""

from fracture.learning.loop import AntifragileLearner, LearningUpdate, event_ref_id

__all__ = [
    "AntifragileLearner",
    "LearningUpdate",
    "event_ref_id",
]
