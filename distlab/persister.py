"""Holds a peer's persisted Raft state and service snapshot."""

from __future__ import annotations

import threading


class Persister:
    """Thread-safe store for Raft state and snapshot bytes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._raft_state = b""
        self._snapshot = b""

    def copy(self) -> "Persister":
        """Return a new persister holding the same state and snapshot."""
        with self._lock:
            other = Persister()
            other._raft_state = self._raft_state
            other._snapshot = self._snapshot
            return other

    def save_raft_state(self, state) -> None:
        """Replace the saved Raft state."""
        with self._lock:
            self._raft_state = bytes(state)

    def read_raft_state(self) -> bytes:
        """Return the saved Raft state."""
        with self._lock:
            return self._raft_state

    def raft_state_size(self) -> int:
        """Return the size of the saved Raft state in bytes."""
        with self._lock:
            return len(self._raft_state)

    def save_state_and_snapshot(self, state, snapshot) -> None:
        """Save Raft state and snapshot together as one atomic action."""
        with self._lock:
            self._raft_state = bytes(state)
            self._snapshot = bytes(snapshot)

    def read_snapshot(self) -> bytes:
        """Return the saved snapshot."""
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        """Return the size of the saved snapshot in bytes."""
        with self._lock:
            return len(self._snapshot)