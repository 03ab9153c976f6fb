"""Thread-safe mailbox for parameter writes from external sources.

Bridges (OSC, HTTP, WebSocket, ...) run on their own threads and must never
touch the parameter tree.  They ``enqueue`` set intents here; the single
consumer (``SettingsManager.tick``) swaps the whole pending list out under
the lock and applies it after releasing the lock, so change callbacks can
safely enqueue more updates without deadlocking.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class QueuedUpdate:
    """An unvalidated request to set the parameter at ``path``."""
    path: str
    value: Any
    source: str = ""
    timestamp: float = field(default_factory=time.time)


class UpdateQueue:
    """Append-only list guarded by a lock; drained FIFO by one consumer.

    The lock is held only for a list append or a list swap.  No validation
    or tree access happens while it is held.
    """

    def __init__(self) -> None:
        self._pending: list[QueuedUpdate] = []
        self._lock = threading.Lock()
        self._total_enqueued = 0
        self._total_drained = 0

    def enqueue(self, path: str, value: Any, source: str = "") -> None:
        """Add an update.  Safe to call from any thread."""
        update = QueuedUpdate(path=path, value=value, source=source)
        with self._lock:
            self._pending.append(update)
            self._total_enqueued += 1

    def drain_all(self) -> list[QueuedUpdate]:
        """Atomically take every pending update, oldest first."""
        with self._lock:
            drained, self._pending = self._pending, []
            self._total_drained += len(drained)
        return drained

    def clear(self) -> int:
        """Drop pending updates without applying them; returns how many."""
        return len(self.drain_all())

    @property
    def depth(self) -> int:
        with self._lock:
            return len(self._pending)

    def __len__(self) -> int:
        return self.depth

    @property
    def total_enqueued(self) -> int:
        with self._lock:
            return self._total_enqueued

    @property
    def total_drained(self) -> int:
        with self._lock:
            return self._total_drained
