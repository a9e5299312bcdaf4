"""
State Storage Module
====================

Where machine state lives outside the process:
1. Storage backends (memory, file, SQLite, Redis)
2. Snapshot persistence (best-effort save/load)
3. Transition journal (append-only audit trail)
"""

from .events import TransitionJournal
from .persistence import HistoryEntry, Snapshot, SnapshotStore
from .storage import FileStorage, MemoryStorage, RedisStorage, SQLiteStorage, create_storage

__all__ = [
    "FileStorage",
    "HistoryEntry",
    "MemoryStorage",
    "RedisStorage",
    "SQLiteStorage",
    "Snapshot",
    "SnapshotStore",
    "TransitionJournal",
    "create_storage",
]
