"""
Append-Only Transition Journal
==============================

Audit trail of committed transitions in JSONL format (one JSON object
per line):
- appends never rewrite earlier lines
- a partially written line only loses itself
- readable with any text tool

A machine's in-memory history is bounded; the journal is not.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional

from .persistence import HistoryEntry

if TYPE_CHECKING:
    from ..engine.machine import StateMachine

logger = logging.getLogger(__name__)


@dataclass
class JournalRecord:
    """One committed transition of one machine"""
    machine_id: str
    from_state: str
    to_state: str
    event: str
    timestamp: str
    metadata: Any = None


class TransitionJournal:
    """
    JSONL journal shared by any number of machines.

    ``attach(machine)`` subscribes to a StateMachine and journals the
    newest history entry after each commit, under the machine's
    persistence key (or its id when it has none). ``reset()`` clears history and
    produces no entry, so nothing is written for it.
    """

    def __init__(self, log_path: str | Path):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, machine_id: str, entry: HistoryEntry) -> JournalRecord:
        """Append one record with write + fsync"""
        record = JournalRecord(
            machine_id=machine_id,
            from_state=entry.from_state,
            to_state=entry.to_state,
            event=entry.event,
            timestamp=entry.timestamp,
            metadata=entry.metadata,
        )

        # Drop None values for compactness
        record_dict = {k: v for k, v in asdict(record).items() if v is not None}

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record_dict, default=str, ensure_ascii=False) + "\n")
            f.flush()
            os.fsync(f.fileno())

        return record

    def attach(self, machine: "StateMachine") -> Callable[[], None]:
        """Journal every commit of ``machine``; returns the unsubscribe function"""
        last_seen: list[Optional[HistoryEntry]] = [None]

        def on_commit(state: str, context: dict) -> None:
            history = machine.get_history()
            if not history or history[-1] is last_seen[0]:
                return
            last_seen[0] = history[-1]
            self.append(machine.persistence_key or machine.id, history[-1])

        return machine.subscribe(on_commit)

    def iterate(self) -> Iterator[JournalRecord]:
        """Iterate over all records, skipping corrupted lines"""
        if not self.log_path.exists():
            return

        with open(self.log_path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    yield JournalRecord(**json.loads(line))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning("Corrupted journal record at %s:%d: %s", self.log_path, line_num, e)
                    continue

    def read_all(self) -> list[JournalRecord]:
        return list(self.iterate())

    def read_last_n(self, n: int) -> list[JournalRecord]:
        # Whole-file scan; the journal is an audit trail, not an index
        records = list(self.iterate())
        return records[-n:] if n > 0 else []

    def find(
        self,
        machine_id: Optional[str] = None,
        event: Optional[str] = None,
        to_state: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[JournalRecord]:
        """
        Find records matching every given criterion.

        A naive ``since`` is taken to be UTC, matching the stored timestamps.
        """
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        results = []

        for record in self.iterate():
            if machine_id and record.machine_id != machine_id:
                continue
            if event and record.event != event:
                continue
            if to_state and record.to_state != to_state:
                continue
            if since:
                record_time = datetime.fromisoformat(record.timestamp.replace("Z", "+00:00"))
                if record_time.tzinfo is None:
                    record_time = record_time.replace(tzinfo=timezone.utc)
                if record_time < since:
                    continue

            results.append(record)

        return results
