"""
Checkpoint persistence for simulation state.

Snapshots are stored in a SQLite database keyed by simulation time. Keys
are fixed-width, big-endian and order-preserving, so a range scan over
the key column returns checkpoints in time order.

Example:
    with CheckpointStore("run.db") as store:
        store.persist(0.0, tree)
        ...
        for t in store.times(start=10.0):
            tree = store.load(t)
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import struct
import threading
from pathlib import Path
from typing import Any, Optional, Union

from .spatial.octree import Octree
from .types import Body

logger = logging.getLogger(__name__)

_SIGN_BIT = 1 << 63
_MASK = (1 << 64) - 1


class StorageError(RuntimeError):
    """Raised when the checkpoint store cannot read or write."""

    pass


class CheckpointWarning(UserWarning):
    """Warning for checkpoints that could not be persisted."""

    pass


def encode_time_key(time: float) -> bytes:
    """
    Encode a simulation time as an 8-byte order-preserving key.

    The IEEE-754 bit pattern is written big-endian with the sign bit
    flipped for non-negative values and all bits inverted for negative
    ones, so byte order matches numeric order.

    Raises:
        ValueError: If time is NaN
    """
    time = float(time)
    if math.isnan(time):
        raise ValueError("Cannot encode NaN as a checkpoint key")
    (bits,) = struct.unpack(">Q", struct.pack(">d", time))
    if bits & _SIGN_BIT:
        bits = ~bits & _MASK
    else:
        bits |= _SIGN_BIT
    return struct.pack(">Q", bits)


def decode_time_key(key: bytes) -> float:
    """Inverse of encode_time_key()."""
    (bits,) = struct.unpack(">Q", key)
    if bits & _SIGN_BIT:
        bits &= ~_SIGN_BIT & _MASK
    else:
        bits = ~bits & _MASK
    (time,) = struct.unpack(">d", struct.pack(">Q", bits))
    return float(time)


def snapshot(time: float, tree: Octree) -> dict[str, Any]:
    """Serializable description of a tree, sufficient to rebuild it."""
    o = tree.region_origin
    return {
        "time": float(time),
        "opening_angle": tree.opening_angle,
        "gravitational_constant": tree.gravitational_constant,
        "margin": tree.margin,
        "region_origin": [o.x, o.y, o.z],
        "region_edge": tree.region_edge,
        "bodies": [list(body.as_row()) for body in tree.bodies()],
    }


def restore(data: dict[str, Any]) -> Octree:
    """Rebuild a tree from a snapshot() dict."""
    return Octree.from_bodies(
        [Body.from_row(row) for row in data["bodies"]],
        opening_angle=data["opening_angle"],
        gravitational_constant=data["gravitational_constant"],
        margin=data["margin"],
        region_origin=data["region_origin"],
        region_edge=data["region_edge"],
    )


class CheckpointStore:
    """
    Ordered key-value store of tree snapshots.

    The database uses write-ahead logging with full synchronous commits,
    so a committed checkpoint survives a crash. Whether the store already
    held checkpoints when it was opened is reported by ``was_recovered``;
    nothing is resumed automatically.

    All database errors are raised as StorageError.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        """
        Open (or create) a checkpoint store.

        Args:
            path: Database file, or ":memory:" for a transient store
        """
        self._path = str(path)
        self._lock = threading.Lock()
        logger.info("opening checkpoint store at %s", self._path)
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                self._path, check_same_thread=False
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS checkpoints (key BLOB PRIMARY KEY, value TEXT NOT NULL)"
            )
            self._conn.commit()
            (existing,) = self._conn.execute("SELECT COUNT(*) FROM checkpoints").fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"cannot open checkpoint store at {self._path}: {e}") from e

        self.was_recovered = existing > 0
        logger.info("checkpoint store recovered=%s (%d checkpoints)", self.was_recovered, existing)

    @property
    def path(self) -> str:
        return self._path

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("checkpoint store is closed")
        return self._conn

    def persist(self, time: float, tree: Octree) -> None:
        """
        Store the tree's state at ``time``, replacing any existing checkpoint.

        Raises:
            StorageError: If the write fails
        """
        logger.debug("persisting tree state @ t=%s", time)
        value = json.dumps(snapshot(time, tree))
        key = encode_time_key(time)
        with self._lock:
            conn = self._connection()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO checkpoints (key, value) VALUES (?, ?)",
                    (key, value),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"cannot persist checkpoint @ t={time}: {e}") from e

    def load_snapshot(self, time: float) -> dict[str, Any]:
        """
        Fetch the raw snapshot stored at ``time``.

        Raises:
            KeyError: If no checkpoint exists for that time
            StorageError: If the read fails
        """
        key = encode_time_key(time)
        with self._lock:
            conn = self._connection()
            try:
                row = conn.execute("SELECT value FROM checkpoints WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"cannot read checkpoint @ t={time}: {e}") from e
        if row is None:
            raise KeyError(time)
        return json.loads(row[0])

    def load(self, time: float) -> Octree:
        """Rebuild the tree stored at ``time``."""
        return restore(self.load_snapshot(time))

    def times(self, start: Optional[float] = None, end: Optional[float] = None) -> list[float]:
        """
        Checkpoint times in ascending order, optionally within [start, end].

        Raises:
            StorageError: If the read fails
        """
        clauses = []
        params: list[bytes] = []
        if start is not None:
            clauses.append("key >= ?")
            params.append(encode_time_key(start))
        if end is not None:
            clauses.append("key <= ?")
            params.append(encode_time_key(end))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._lock:
            conn = self._connection()
            try:
                rows = conn.execute(
                    f"SELECT key FROM checkpoints{where} ORDER BY key", params
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"cannot scan checkpoints: {e}") from e
        return [decode_time_key(row[0]) for row in rows]

    def latest_time(self) -> Optional[float]:
        """Most recent checkpoint time, or None if the store is empty."""
        with self._lock:
            conn = self._connection()
            try:
                row = conn.execute("SELECT MAX(key) FROM checkpoints").fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"cannot scan checkpoints: {e}") from e
        if row is None or row[0] is None:
            return None
        return decode_time_key(row[0])

    def __len__(self) -> int:
        with self._lock:
            conn = self._connection()
            try:
                (count,) = conn.execute("SELECT COUNT(*) FROM checkpoints").fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"cannot count checkpoints: {e}") from e
        return int(count)

    def __contains__(self, time: object) -> bool:
        if not isinstance(time, (int, float)):
            return False
        try:
            self.load_snapshot(time)
        except KeyError:
            return False
        return True

    def close(self) -> None:
        """Close the database. Further operations raise StorageError."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> CheckpointStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = [
    "StorageError",
    "CheckpointWarning",
    "CheckpointStore",
    "encode_time_key",
    "decode_time_key",
    "snapshot",
    "restore",
]
