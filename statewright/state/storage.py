"""
Key-Value Storage Backends
==========================

Durable homes for machine snapshots. Every backend stores opaque strings
under string keys:

- MemoryStorage: process-local dict (tests, ephemeral machines)
- FileStorage: one JSON file per key, atomic writes, cross-process locks
- SQLiteStorage: a single table through SQLAlchemy
- RedisStorage: namespaced string keys on a Redis server

Backends raise on I/O errors. Swallowing failures is the job of
SnapshotStore, not of the storage layer.
"""

import hashlib
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Protocol

import redis
from filelock import FileLock
from sqlalchemy import Column, DateTime, String, Text, create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from ..errors import ConfigError


class Storage(Protocol):
    """Minimal key-value contract used by SnapshotStore"""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStorage:
    """Dict-backed storage. Contents die with the process."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStorage:
    """
    File-based storage with atomic writes.

    Directory structure:
        {state_dir}/machines/
            ├── {safe_key}.json     # value + original key
            └── {safe_key}.lock     # filelock for cross-process writers

    Keys are free-form (``content:42``), so file names are derived from a
    sanitized prefix plus a short hash of the full key.
    """

    def __init__(self, state_dir: str | Path, lock_timeout: float = 10.0):
        self.state_dir = Path(state_dir)
        self.machines_dir = self.state_dir / "machines"
        self.machines_dir.mkdir(parents=True, exist_ok=True)
        self.lock_timeout = lock_timeout

    def path_for(self, key: str) -> Path:
        prefix = re.sub(r"[^A-Za-z0-9_.-]+", "_", key)[:64]
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
        return self.machines_dir / f"{prefix}-{digest}.json"

    def _lock(self, path: Path) -> FileLock:
        return FileLock(str(path.with_suffix(".lock")), timeout=self.lock_timeout)

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        with self._lock(path):
            with open(path, "r", encoding="utf-8") as f:
                return f.read()

    def set(self, key: str, value: str) -> None:
        """
        Atomic write: temp file → fsync → rename

        The file is either the old value or the new one, never a mix.
        """
        path = self.path_for(key)
        temp_path = path.with_suffix(".tmp")

        with self._lock(path):
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_path, path)

        # Directory fsync is unsupported on some platforms
        try:
            dir_fd = os.open(path.parent, os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError:
            pass

        self._index_key(key, path)

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        with self._lock(path):
            path.unlink(missing_ok=True)
        self._index_path(path).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        return sorted(self._iter_index())

    # Original keys live next to the data so keys() can report them

    def _index_path(self, path: Path) -> Path:
        return path.with_suffix(".key")

    def _index_key(self, key: str, path: Path) -> None:
        index_path = self._index_path(path)
        if not index_path.exists():
            index_path.write_text(key, encoding="utf-8")

    def _iter_index(self) -> Iterator[str]:
        for index_path in self.machines_dir.glob("*.key"):
            if index_path.with_suffix(".json").exists():
                yield index_path.read_text(encoding="utf-8")


Base = declarative_base()


class MachineSnapshotRow(Base):
    """One serialized snapshot per key"""
    __tablename__ = "machine_snapshots"

    key = Column(String(255), primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class SQLiteStorage:
    """SQLite storage, convenient when many machines share one process"""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )

        # WAL mode for concurrent readers
        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

    def get(self, key: str) -> Optional[str]:
        with self.Session() as session:
            row = session.get(MachineSnapshotRow, key)
            return row.payload if row else None

    def set(self, key: str, value: str) -> None:
        with self.Session() as session:
            row = session.get(MachineSnapshotRow, key)
            if row is None:
                session.add(MachineSnapshotRow(key=key, payload=value))
            else:
                row.payload = value
                row.updated_at = datetime.now(timezone.utc)
            session.commit()

    def delete(self, key: str) -> None:
        with self.Session() as session:
            session.query(MachineSnapshotRow).filter(
                MachineSnapshotRow.key == key
            ).delete()
            session.commit()

    def keys(self) -> list[str]:
        with self.Session() as session:
            rows = session.query(MachineSnapshotRow.key).order_by(MachineSnapshotRow.key).all()
            return [row.key for row in rows]

    def close(self) -> None:
        self.engine.dispose()


class RedisStorage:
    """Redis storage; keys are prefixed with ``{namespace}:``"""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        namespace: str = "statewright",
        client=None,
    ):
        self.redis = client if client is not None else redis.from_url(redis_url)
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[str]:
        data = self.redis.get(self._key(key))
        if data is None:
            return None
        return data.decode("utf-8") if isinstance(data, bytes) else data

    def set(self, key: str, value: str) -> None:
        self.redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self.redis.delete(self._key(key))

    def keys(self) -> list[str]:
        prefix = f"{self.namespace}:"
        found = []
        for raw in self.redis.scan_iter(match=f"{prefix}*"):
            name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            found.append(name[len(prefix):])
        return sorted(found)


def create_storage(config: dict) -> Storage:
    """Create a storage backend from config"""
    storage_config = config.get("storage", {})
    backend = storage_config.get("backend", "file")
    state_dir = Path(config.get("paths", {}).get("state_dir", "./state"))

    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        return FileStorage(state_dir)
    if backend == "sqlite":
        return SQLiteStorage(state_dir / storage_config.get("db_name", "statewright.db"))
    if backend == "redis":
        return RedisStorage(
            storage_config.get("redis_url", "redis://localhost:6379/0"),
            namespace=storage_config.get("namespace", "statewright"),
        )
    raise ConfigError(f"Unknown storage backend: '{backend}'")
