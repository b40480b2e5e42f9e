"""Entity profile storage, personalization and export migrations."""

from fracture.profiles.migrations import migrate_document
from fracture.profiles.store import ProfileStore
from fracture.profiles.thresholds import check_band, enforce_ordering

__all__ = [
    "ProfileStore",
    "check_band",
    "enforce_ordering",
    "migrate_document",
]
