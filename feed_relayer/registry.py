"""
Registry store — durable identity → feed id mapping.

Turns "we created a feed once" into "we never create a second one,"
across restarts.

The store provides:
    - ``lookup(identity)`` — pure read, never touches the network.
    - ``record(identity, feed_id)`` — durable write, complete before
      returning. A crash mid-write leaves the previous state intact.
    - ``snapshot()`` — a copy of the whole mapping (diagnostics).

Invariants:
    - One feed per identity. Re-recording the same pair is a no-op;
      recording a different feed id raises RegistryConflict.
    - Records are never deleted or mutated once written.
    - An unreadable or malformed backing store at startup raises
      StoreCorruption. There is no in-process recovery.

Backends:
    - JsonFileRegistry: the owned file format. A JSON object mapping
      address → feed id number, pretty-printed, rewritten fully via
      temp file + fsync + os.replace + directory fsync on every new
      registration.
    - SqliteRegistry: embedded store, one row per identity.
    - MemoryRegistry: dict only, for tests and dry runs.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from feed_relayer.errors import RegistryConflict, StoreCorruption
from feed_relayer.model import FeedRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class RegistryStore(Protocol):
    """Interface the feed registrar depends on."""

    def lookup(self, identity: str) -> int | None:
        ...

    def record(self, identity: str, feed_id: int) -> None:
        ...

    def snapshot(self) -> dict[str, int]:
        ...


def _check_conflict(identity: str, existing: int | None, feed_id: int) -> bool:
    """Return True if the pair is already stored; raise on a different feed."""
    if existing is None:
        return False
    if existing != feed_id:
        raise RegistryConflict(identity, existing, feed_id)
    return True


# =========================================================================
# In-memory
# =========================================================================


class MemoryRegistry:
    """Dict-backed registry. Nothing survives the process."""

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._feeds: dict[str, int] = {}
        for identity, feed_id in (initial or {}).items():
            record = FeedRecord(identity, feed_id)
            self._feeds[record.identity] = record.feed_id

    def lookup(self, identity: str) -> int | None:
        return self._feeds.get(identity)

    def record(self, identity: str, feed_id: int) -> None:
        record = FeedRecord(identity, feed_id)
        if _check_conflict(identity, self._feeds.get(identity), feed_id):
            return
        self._feeds[record.identity] = record.feed_id

    def snapshot(self) -> dict[str, int]:
        return dict(self._feeds)


# =========================================================================
# JSON file
# =========================================================================


class JsonFileRegistry:
    """Registry persisted as a single pretty-printed JSON object.

    Args:
        path: Location of the feeds file. A missing file is an empty
            registry; it is created on the first ``record``.

    Raises:
        StoreCorruption: If the file exists but cannot be read, is not
            valid JSON, is not an object, or holds a non-integer or
            negative feed id.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._feeds = self._load()
        logger.info("Loaded %d feed(s) from %s", len(self._feeds), self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, int]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreCorruption(f"cannot read {self._path}: {exc}") from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StoreCorruption(f"{self._path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreCorruption(f"{self._path} must hold a JSON object")

        feeds: dict[str, int] = {}
        for identity, feed_id in data.items():
            try:
                record = FeedRecord(identity, feed_id)
            except ValueError as exc:
                raise StoreCorruption(f"{self._path}: bad entry {identity!r}: {exc}") from exc
            feeds[record.identity] = record.feed_id
        return feeds

    def _flush(self, feeds: dict[str, int]) -> None:
        """Write the full mapping atomically (temp file + rename)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(feeds, fh, indent=4)
                fh.write("\n")
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def lookup(self, identity: str) -> int | None:
        return self._feeds.get(identity)

    def record(self, identity: str, feed_id: int) -> None:
        """Persist identity → feed_id before returning.

        Raises:
            RegistryConflict: If identity maps to a different feed.
            OSError: If the file cannot be written. The previous file
                and the in-memory view are both left unchanged.
        """
        record = FeedRecord(identity, feed_id)
        with self._lock:
            if _check_conflict(identity, self._feeds.get(identity), feed_id):
                return
            updated = {**self._feeds, record.identity: record.feed_id}
            self._flush(updated)
            self._feeds = updated
            _fsync_dir(self._path.parent)

    def snapshot(self) -> dict[str, int]:
        return dict(self._feeds)


def _fsync_dir(directory: Path) -> None:
    """Make a completed rename durable (POSIX; a no-op elsewhere)."""
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


# =========================================================================
# SQLite
# =========================================================================


_SCHEMA = """\
CREATE TABLE IF NOT EXISTS feeds (
    identity TEXT PRIMARY KEY,
    feed_id INTEGER NOT NULL CHECK (feed_id >= 0)
);
"""


class SqliteRegistry:
    """SQLite-backed registry.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Raises:
        StoreCorruption: If the database cannot be opened or read.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._is_memory = self._db_path == ":memory:"
        # Serializes writers from worker threads on the shared connection.
        self._lock = threading.RLock()

        try:
            if self._is_memory:
                self._persistent_conn = sqlite3.connect(":memory:", check_same_thread=False)
            else:
                self._persistent_conn = None
            self._init_schema()
            # Force a full read so corruption surfaces at startup.
            self.snapshot()
        except sqlite3.DatabaseError as exc:
            raise StoreCorruption(f"cannot open registry {self._db_path}: {exc}") from exc

    def _get_conn(self) -> sqlite3.Connection:
        """Get a database connection with proper settings."""
        if self._persistent_conn is not None:
            return self._persistent_conn

        conn = sqlite3.connect(self._db_path)
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = FULL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for a database transaction."""
        with self._lock:
            conn = self._get_conn()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                if self._persistent_conn is None:
                    conn.close()

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.executescript(_SCHEMA)

    def lookup(self, identity: str) -> int | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT feed_id FROM feeds WHERE identity = ?",
                (identity,),
            ).fetchone()
        return None if row is None else int(row[0])

    def record(self, identity: str, feed_id: int) -> None:
        record = FeedRecord(identity, feed_id)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT feed_id FROM feeds WHERE identity = ?",
                (identity,),
            ).fetchone()
            if _check_conflict(identity, None if row is None else int(row[0]), feed_id):
                return
            conn.execute(
                "INSERT INTO feeds (identity, feed_id) VALUES (?, ?)",
                (record.identity, record.feed_id),
            )

    def snapshot(self) -> dict[str, int]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT identity, feed_id FROM feeds ORDER BY identity").fetchall()
        return {identity: int(feed_id) for identity, feed_id in rows}
