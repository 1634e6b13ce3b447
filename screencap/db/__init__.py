"""
Screencap Database Module

SQLite schema migrations, domain records and the event store.
"""

from .migrations import MigrationRunner, get_connection, init_database
from .models import Event, QueueEntry, Screenshot
from .store import EventStore

__all__ = [
    "MigrationRunner",
    "get_connection",
    "init_database",
    "Event",
    "QueueEntry",
    "Screenshot",
    "EventStore",
]
