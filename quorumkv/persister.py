"""Stable storage for Raft state and service snapshots."""

from __future__ import annotations

import threading


class Persister:
    """Holds the persisted Raft state and the latest snapshot.

    Both blobs are saved together so they can never get out of sync.
    """

    def __init__(self, raftstate: bytes = b"", snapshot: bytes = b"") -> None:
        self._lock = threading.Lock()
        self._raftstate = bytes(raftstate)
        self._snapshot = bytes(snapshot)

    def copy(self) -> "Persister":
        """Return a fresh persister holding the same content."""
        with self._lock:
            return Persister(self._raftstate, self._snapshot)

    def read_raft_state(self) -> bytes:
        with self._lock:
            return self._raftstate

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raftstate)

    def save(self, raftstate: bytes | None, snapshot: bytes | None) -> None:
        """Save Raft state and snapshot as a single atomic action."""
        with self._lock:
            self._raftstate = bytes(raftstate or b"")
            self._snapshot = bytes(snapshot or b"")

    def read_snapshot(self) -> bytes:
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        with self._lock:
            return len(self._snapshot)