"""
Snapshot Persistence
====================

Serializes ``{current_state, context, history}`` to a storage slot and
restores it when a machine is constructed with the same key.

Persistence is best-effort: every storage or decoding failure is logged
and swallowed so that a transition always completes in memory.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .storage import Storage

logger = logging.getLogger(__name__)


ROLLBACK_EVENT = "ROLLBACK"


@dataclass
class HistoryEntry:
    """A single committed transition"""
    from_state: str
    to_state: str
    event: str
    timestamp: str = ""
    metadata: Any = None

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "from": self.from_state,
            "to": self.to_state,
            "event": self.event,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            from_state=data["from"],
            to_state=data["to"],
            event=data["event"],
            timestamp=data.get("timestamp", ""),
            metadata=data.get("metadata"),
        )


def _check_json_shaped(value: Any, path: str) -> None:
    if value is None or isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, list):
        for i, item in enumerate(value):
            _check_json_shaped(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path}: key {key!r} is not a string")
            _check_json_shaped(item, f"{path}.{key}")
        return
    raise TypeError(f"{path}: {type(value).__name__} value is not JSON-shaped")


@dataclass
class Snapshot:
    """Everything needed to resume a machine instance"""
    current_state: str
    context: dict = field(default_factory=dict)
    history: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "currentState": self.current_state,
            "context": self.context,
            "history": [entry.to_dict() for entry in self.history],
        }

    def to_json(self) -> str:
        """
        Serialize to JSON, refusing anything that would not load back equal.

        Context and history metadata must be JSON-shaped: dicts with str
        keys, lists, str, int, float, bool and None. Tuples, sets, datetimes
        and non-str keys raise TypeError instead of being coerced.
        """
        data = self.to_dict()
        _check_json_shaped(data, "snapshot")
        return json.dumps(data, ensure_ascii=False)

    @classmethod
    def from_json(cls, data: str) -> "Snapshot":
        raw = json.loads(data)
        return cls(
            current_state=raw["currentState"],
            context=raw.get("context") or {},
            history=[HistoryEntry.from_dict(entry) for entry in raw.get("history", [])],
        )


class SnapshotStore:
    """
    Best-effort adapter between machines and a key-value storage backend.

    ``save`` returns False instead of raising, ``load`` returns None for
    both "never saved" and "unreadable".
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def save(self, key: str, snapshot: Snapshot) -> bool:
        try:
            self.storage.set(key, snapshot.to_json())
        except Exception as e:
            logger.warning("Failed to persist snapshot %s: %s", key, e)
            return False
        return True

    def load(self, key: str) -> Optional[Snapshot]:
        try:
            data = self.storage.get(key)
        except Exception as e:
            logger.warning("Failed to read snapshot %s: %s", key, e)
            return None

        if data is None:
            return None

        try:
            return Snapshot.from_json(data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Ignoring corrupted snapshot %s: %s", key, e)
            return None
