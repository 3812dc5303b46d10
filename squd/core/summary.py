from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..config import RiskTierThresholds
from .correlation import CorrelationMatrix
from .indicators import SQUDScore
from .store import Snapshot


STRONG_CORRELATION = 0.7

_METRIC_NAMES = {"S": "stability", "Q": "coherence", "U": "susceptibility", "D": "dissonance"}


@dataclass(frozen=True)
class DomainSummary:
    count: int
    mean: SQUDScore
    mean_health: float
    # Least-squares slope per second for S, Q, U, D and health
    trend: Dict[str, float] = field(default_factory=dict)


def summarize(snapshots: Sequence[Snapshot]) -> Optional[DomainSummary]:
    if not snapshots:
        return None
    ts = np.array([s.timestamp for s in snapshots], dtype=float)
    cols = {
        "S": np.array([s.score.S for s in snapshots]),
        "Q": np.array([s.score.Q for s in snapshots]),
        "U": np.array([s.score.U for s in snapshots]),
        "D": np.array([s.score.D for s in snapshots]),
        "health": np.array([s.health for s in snapshots]),
    }
    trend: Dict[str, float] = {}
    for name, values in cols.items():
        if len(snapshots) < 2 or np.ptp(ts) == 0:
            trend[name] = 0.0
        else:
            # Centre time to keep polyfit well conditioned on epoch seconds
            trend[name] = float(np.polyfit(ts - ts.mean(), values, 1)[0])
    mean = SQUDScore(
        S=float(cols["S"].mean()),
        Q=float(cols["Q"].mean()),
        U=float(cols["U"].mean()),
        D=float(cols["D"].mean()),
    )
    return DomainSummary(count=len(snapshots), mean=mean, mean_health=float(cols["health"].mean()), trend=trend)


def comparison_insights(
    latest: Mapping[str, Optional[Snapshot]],
    matrix: Optional[CorrelationMatrix],
    thresholds: Optional[RiskTierThresholds] = None,
    correlation_enabled: bool = True,
) -> List[str]:
    """Plain-language observations about one comparison run, in a fixed order."""
    th = thresholds or RiskTierThresholds()
    insights: List[str] = []

    present = {d: s for d, s in latest.items() if s is not None}
    missing = [d for d, s in latest.items() if s is None]
    if len(present) >= 2:
        best = max(present, key=lambda d: present[d].health)
        worst = min(present, key=lambda d: present[d].health)
        insights.append(f"{best} is the healthiest domain ({present[best].health:.1f}%)")
        if worst != best:
            insights.append(f"{worst} is the weakest domain ({present[worst].health:.1f}%)")

    attention = [d for d, s in present.items() if s.health < th.medium_below]
    if attention:
        insights.append(f"{', '.join(attention)} below {th.medium_below:.0f}% health, requires attention")
    if missing:
        insights.append(f"no snapshots yet for {', '.join(missing)}")

    if correlation_enabled and matrix is not None:
        if len(matrix) == 0:
            insights.append("no overlapping data for correlation")
        else:
            for entry in matrix.entries():
                if abs(entry.correlation) >= STRONG_CORRELATION:
                    direction = "positively" if entry.correlation > 0 else "inversely"
                    insights.append(
                        f"{entry.domain1} and {entry.domain2} {_METRIC_NAMES[entry.metric]} "
                        f"are strongly {direction} correlated (r={entry.correlation:.2f})"
                    )
    return insights
