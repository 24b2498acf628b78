"""Database foundation: declarative base, mixins, and repository errors."""

from __future__ import annotations

from .base import NAMING_CONVENTION, Base, TimestampMixin, UUIDv7PKMixin, generate_uuid7, utcnow
from .exceptions import NotFoundError, RepositoryError
from .repository import BaseRepository

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "NotFoundError",
    "RepositoryError",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "generate_uuid7",
    "utcnow",
]
