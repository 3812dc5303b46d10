from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..config import CohortThresholds
from .errors import EmptyCohort
from .indicators import SQUDScore
from .store import Snapshot, SnapshotStore


@dataclass(frozen=True)
class CohortAggregate:
    group_id: str
    member_count: int
    mean: SQUDScore
    mean_health: float
    health_variance: float
    best_member_id: str
    worst_member_id: str
    min_health: float
    max_health: float


def aggregate(members: Sequence[Snapshot], group_id: str = "cohort") -> CohortAggregate:
    """Summary statistics over a group of same-domain snapshots.

    Variance is the population variance of member health. Ties for best or
    worst go to the earliest member.
    """
    if not members:
        raise EmptyCohort(f"cohort {group_id!r} has no members")
    health = np.array([m.health for m in members], dtype=float)
    best = int(np.argmax(health))
    worst = int(np.argmin(health))
    return CohortAggregate(
        group_id=group_id,
        member_count=len(members),
        mean=SQUDScore(
            S=float(np.mean([m.score.S for m in members])),
            Q=float(np.mean([m.score.Q for m in members])),
            U=float(np.mean([m.score.U for m in members])),
            D=float(np.mean([m.score.D for m in members])),
        ),
        mean_health=float(health.mean()),
        health_variance=float(health.var()),
        best_member_id=members[best].entity_id,
        worst_member_id=members[worst].entity_id,
        min_health=float(health[worst]),
        max_health=float(health[best]),
    )


def insights(
    agg: CohortAggregate,
    members: Sequence[Snapshot],
    thresholds: Optional[CohortThresholds] = None,
) -> List[str]:
    """Rule-based observations; every matching rule contributes, in order."""
    th = thresholds or CohortThresholds()
    out: List[str] = []

    avg = agg.mean_health
    if avg < th.review_below:
        out.append(f"Average health {avg:.1f}% requires comprehensive review")
    elif avg <= th.excellent_above:
        out.append(f"Average health {avg:.1f}% is good, continue monitoring")
    else:
        out.append(f"Average health {avg:.1f}% is excellent")

    var = agg.health_variance
    if var > th.high_dispersion_above:
        out.append(
            f"High dispersion in health (variance {var:.0f}), standardize maintenance; "
            f"prioritize {agg.worst_member_id} ({agg.min_health:.1f}%)"
        )
    elif var > th.moderate_dispersion_above:
        out.append(f"Moderate dispersion in health (variance {var:.0f}), review {agg.worst_member_id}")

    if agg.max_health > th.benchmark_above:
        out.append(f"{agg.best_member_id} ({agg.max_health:.1f}%) performs best, use as benchmark")

    lagging = [m.entity_id for m in members if m.health < th.attention_below]
    if lagging:
        out.append(f"{len(lagging)} member(s) require immediate attention: {', '.join(lagging)}")
    return out


class Cohort:
    """Named group of entities; the aggregate is fully recomputed on every change."""

    def __init__(self, group_id: str, thresholds: Optional[CohortThresholds] = None) -> None:
        self.group_id = group_id
        self.thresholds = thresholds or CohortThresholds()
        self._lock = threading.RLock()
        self._members: Dict[str, Snapshot] = {}
        self._aggregate: Optional[CohortAggregate] = None

    @classmethod
    def from_store(
        cls,
        store: SnapshotStore,
        domain_id: str,
        entity_ids: Optional[Iterable[str]] = None,
        group_id: Optional[str] = None,
        thresholds: Optional[CohortThresholds] = None,
    ) -> "Cohort":
        cohort = cls(group_id or domain_id, thresholds)
        for entity_id in entity_ids if entity_ids is not None else store.entities(domain_id):
            snap = store.latest(domain_id, entity_id)
            if snap is not None:
                cohort.add(snap)
        return cohort

    def add(self, member: Snapshot) -> None:
        with self._lock:
            self._members[member.entity_id] = member
            self._recompute()

    def remove(self, entity_id: str) -> bool:
        with self._lock:
            if self._members.pop(entity_id, None) is None:
                return False
            self._recompute()
            return True

    def members(self) -> List[Snapshot]:
        with self._lock:
            return list(self._members.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def aggregate(self) -> Optional[CohortAggregate]:
        with self._lock:
            return self._aggregate

    def insights(self) -> List[str]:
        with self._lock:
            if self._aggregate is None:
                return []
            return insights(self._aggregate, list(self._members.values()), self.thresholds)

    def _recompute(self) -> None:
        members = list(self._members.values())
        self._aggregate = aggregate(members, self.group_id) if members else None
