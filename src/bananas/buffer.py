"""Pending-record buffer shared by producers and the flush scheduler."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .records import Record


@dataclass
class BatchBuffer:
    """
    Ordered, append-only buffer of records awaiting transmission.

    Producers call ``push`` from any thread or callback; the scheduler
    calls ``drain_all`` to take everything pending in one atomic swap.
    A push that races a drain lands either in the drained batch or in the
    next one, never both.
    """
    # Internal state
    _records: list[Record] = field(default_factory=list, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "pushed": 0,
            "drained": 0,
        }

    def push(self, record: Record) -> None:
        """Append a record. Never blocks on I/O, never fails."""
        with self._lock:
            self._records.append(record)
            self._stats["pushed"] += 1

    def drain_all(self) -> list[Record]:
        """Take every pending record, in push order, leaving the buffer empty."""
        with self._lock:
            drained = self._records
            self._records = []
            self._stats["drained"] += len(drained)
        return drained

    def __len__(self) -> int:
        return len(self._records)

    @property
    def stats(self) -> dict:
        """Get buffer statistics."""
        return {
            **self._stats,
            "pending": len(self),
        }
