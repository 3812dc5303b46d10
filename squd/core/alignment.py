from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from .indicators import SQUDScore
from .store import Snapshot


@dataclass(frozen=True)
class AlignedPoint:
    timestamp: float
    values: Mapping[str, Optional[SQUDScore]]

    def value(self, domain_id: str, metric: str) -> Optional[float]:
        score = self.values.get(domain_id)
        return None if score is None else score.get(metric)


def align(domain_series: Mapping[str, Sequence[Snapshot]]) -> List[AlignedPoint]:
    """Merge per-domain snapshot series onto one sorted timestamp axis.

    Only exact timestamp matches are paired; a domain without a snapshot at a
    given timestamp is ``None`` there. No interpolation is done, so series on
    different cadences produce a sparse table.
    """
    by_domain: Dict[str, Dict[float, SQUDScore]] = {
        domain: {snap.timestamp: snap.score for snap in series}
        for domain, series in domain_series.items()
    }
    timestamps = sorted({ts for lookup in by_domain.values() for ts in lookup})
    return [
        AlignedPoint(
            timestamp=ts,
            values={domain: lookup.get(ts) for domain, lookup in by_domain.items()},
        )
        for ts in timestamps
    ]


def metric_matrix(aligned: Sequence[AlignedPoint], domains: Sequence[str], metric: str) -> np.ndarray:
    """Rows are aligned timestamps, columns are ``domains``; missing values are NaN."""
    out = np.full((len(aligned), len(domains)), np.nan, dtype=float)
    for row, point in enumerate(aligned):
        for col, domain in enumerate(domains):
            value = point.value(domain, metric)
            if value is not None:
                out[row, col] = value
    return out
