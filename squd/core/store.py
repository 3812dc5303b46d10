from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Tuple

from .errors import StaleSnapshot
from .indicators import SQUDScore


logger = logging.getLogger(__name__)

StoreKey = Tuple[str, str]


@dataclass(frozen=True)
class Snapshot:
    entity_id: str
    domain_id: str
    timestamp: float
    score: SQUDScore
    health: float

    def as_record(self) -> Dict[str, float]:
        """Flat row for charting and export consumers."""
        return {
            "timestamp": self.timestamp,
            "S": self.score.S,
            "Q": self.score.Q,
            "U": self.score.U,
            "D": self.score.D,
            "health": self.health,
        }


class SnapshotStore:
    """Thread-safe, append-only snapshot log per (domain_id, entity_id).

    Every key keeps strictly increasing timestamps. When ``capacity`` is
    reached the oldest snapshot of that key is evicted; order is never
    rearranged. Reads return copies, so callers never observe a half-applied
    append.
    """

    def __init__(self, capacity: Optional[int] = 10_000) -> None:
        self._capacity = capacity
        self._logs: Dict[StoreKey, Deque[Snapshot]] = {}
        self._lock = threading.RLock()

    @property
    def capacity(self) -> Optional[int]:
        return self._capacity

    def append(self, snapshot: Snapshot) -> None:
        if not math.isfinite(snapshot.timestamp):
            # NaN compares false against everything and would unpin the ordering
            raise ValueError(
                f"snapshot for {snapshot.domain_id}/{snapshot.entity_id} has non-finite timestamp {snapshot.timestamp}"
            )
        key = (snapshot.domain_id, snapshot.entity_id)
        with self._lock:
            log = self._logs.get(key)
            if log is None:
                log = deque(maxlen=self._capacity)
                self._logs[key] = log
            elif log and snapshot.timestamp <= log[-1].timestamp:
                last = log[-1].timestamp
                logger.warning(
                    "rejected stale snapshot",
                    extra={
                        "domain_id": snapshot.domain_id,
                        "entity_id": snapshot.entity_id,
                        "timestamp": snapshot.timestamp,
                        "last_timestamp": last,
                    },
                )
                raise StaleSnapshot(snapshot.domain_id, snapshot.entity_id, snapshot.timestamp, last)
            log.append(snapshot)

    def range(
        self,
        domain_id: str,
        entity_id: str,
        from_ts: Optional[float] = None,
        to_ts: Optional[float] = None,
    ) -> List[Snapshot]:
        """Snapshots with ``from_ts <= timestamp <= to_ts`` in chronological order."""
        with self._lock:
            log = self._logs.get((domain_id, entity_id))
            if not log:
                return []
            return [
                s
                for s in log
                if (from_ts is None or s.timestamp >= from_ts) and (to_ts is None or s.timestamp <= to_ts)
            ]

    def latest(self, domain_id: str, entity_id: str) -> Optional[Snapshot]:
        with self._lock:
            log = self._logs.get((domain_id, entity_id))
            return log[-1] if log else None

    def series(self, domain_id: str, entity_id: str, limit: Optional[int] = None) -> List[Snapshot]:
        """Whole log for a key, or only its ``limit`` most recent snapshots."""
        with self._lock:
            log = self._logs.get((domain_id, entity_id))
            if not log:
                return []
            items = list(log)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def size(self, domain_id: str, entity_id: str) -> int:
        with self._lock:
            log = self._logs.get((domain_id, entity_id))
            return len(log) if log else 0

    def domains(self) -> List[str]:
        with self._lock:
            return sorted({domain for domain, _ in self._logs})

    def entities(self, domain_id: str) -> List[str]:
        with self._lock:
            return [entity for domain, entity in self._logs if domain == domain_id]
