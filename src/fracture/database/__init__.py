"""Database layer for Fracture."""

from fracture.database.repository import ProfileRepository

__all__ = [
    "ProfileRepository",
]
