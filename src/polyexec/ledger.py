"""In-memory execution history and aggregate counters.

The ledger keeps the most recent executions (newest first) in a bounded
deque and process-wide counters that only ever grow.  One ledger is created
per application and handed to the coordinator; nothing else mutates it.
Appending to the history and bumping the counters happen under the same
lock, so the two never disagree.
"""

from __future__ import annotations

import itertools
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

from .models import ExecuteResponse, HistoryEntry


DEFAULT_CAPACITY = 100


@dataclass(frozen=True)
class Metrics:
    executions: int = 0
    errors: int = 0
    total_execution_time_ms: int = 0
    by_language: Dict[str, int] = field(default_factory=dict)

    @property
    def average_execution_time_ms(self) -> float:
        if not self.executions:
            return 0.0
        return round(self.total_execution_time_ms / self.executions, 2)


class Ledger:
    """Bounded execution history plus counters."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("Ledger capacity must be positive")
        self.capacity = capacity
        self._entries: Deque[HistoryEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._executions = 0
        self._errors = 0
        self._total_time_ms = 0
        self._by_language: Counter[str] = Counter()

    def record(self, result: ExecuteResponse, code: str) -> HistoryEntry:
        entry = HistoryEntry(
            **result.model_dump(),
            code=code,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )
        with self._lock:
            self._entries.appendleft(entry)
            self._executions += 1
            if not result.success:
                self._errors += 1
            self._total_time_ms += result.execution_time_ms
            self._by_language[result.language] += 1
        return entry

    def recent(self, n: int = 50) -> List[HistoryEntry]:
        """Return up to ``n`` entries, most recent first."""
        with self._lock:
            return list(itertools.islice(self._entries, max(0, n)))

    def get(self, execution_id: str) -> Optional[HistoryEntry]:
        with self._lock:
            for entry in self._entries:
                if entry.execution_id == execution_id:
                    return entry
        return None

    def discard(self, execution_id: str) -> bool:
        """Drop one entry from the history.  Counters are left untouched."""
        with self._lock:
            for entry in self._entries:
                if entry.execution_id == execution_id:
                    self._entries.remove(entry)
                    return True
        return False

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> Metrics:
        with self._lock:
            return Metrics(
                executions=self._executions,
                errors=self._errors,
                total_execution_time_ms=self._total_time_ms,
                by_language=dict(self._by_language),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
