"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from chatrelay.db.repositories.base import BaseRepository
from chatrelay.db.repositories.channel import ChannelRepository
from chatrelay.db.repositories.session_tree import SessionTreeRepository

__all__ = [
    "BaseRepository",
    "ChannelRepository",
    "SessionTreeRepository",
]
