from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from .alignment import AlignedPoint, metric_matrix


METRICS = ("S", "Q", "U", "D")


@dataclass(frozen=True)
class CorrelationEntry:
    domain1: str
    domain2: str
    metric: str
    correlation: float
    p_value: Optional[float] = None
    n: int = 0

    def as_dict(self) -> Dict[str, object]:
        return {
            "domain1": self.domain1,
            "domain2": self.domain2,
            "metric": self.metric,
            "correlation": self.correlation,
            "p_value": self.p_value,
            "n": self.n,
        }


def pearson_pairwise(x: np.ndarray, y: np.ndarray) -> Optional[Tuple[float, float, int]]:
    """Pearson r over pairwise-complete observations.

    Returns ``(r, p_value, n)`` or ``None`` when fewer than two points overlap
    or either side is constant, since r is undefined there.
    """
    mask = ~(np.isnan(x) | np.isnan(y))
    n = int(mask.sum())
    if n < 2:
        return None
    xs, ys = x[mask], y[mask]
    if np.ptp(xs) == 0 or np.ptp(ys) == 0:
        return None
    r, p = stats.pearsonr(xs, ys)
    r = float(np.clip(r, -1.0, 1.0))
    p = float(p)
    return r, (p if np.isfinite(p) else None), n


def _check_metric(metric: str) -> None:
    if metric not in METRICS:
        raise ValueError(f"metric must be one of {METRICS}, got {metric!r}")


def correlate(aligned: Sequence[AlignedPoint], domains: Sequence[str], metric: str) -> List[CorrelationEntry]:
    """One entry per unordered domain pair, in selection order.

    Pairs without at least two overlapping observations are omitted.
    """
    _check_metric(metric)
    domains = list(dict.fromkeys(domains))
    matrix = metric_matrix(aligned, domains, metric)
    entries: List[CorrelationEntry] = []
    for i, j in combinations(range(len(domains)), 2):
        result = pearson_pairwise(matrix[:, i], matrix[:, j])
        if result is None:
            continue
        r, p, n = result
        entries.append(CorrelationEntry(domains[i], domains[j], metric, r, p, n))
    return entries


def correlate_pair(aligned: Sequence[AlignedPoint], domain1: str, domain2: str) -> Dict[str, CorrelationEntry]:
    """All four metrics for one pair; metrics without enough overlap are absent."""
    out: Dict[str, CorrelationEntry] = {}
    for metric in METRICS:
        for entry in correlate(aligned, [domain1, domain2], metric):
            out[metric] = entry
    return out


class CorrelationMatrix:
    """Symmetric view over computed entries for a fixed domain selection."""

    def __init__(self, domains: Sequence[str], entries: Iterable[CorrelationEntry]) -> None:
        self.domains: List[str] = list(domains)
        self._entries: Dict[Tuple[str, str, str], CorrelationEntry] = {}
        for e in entries:
            self._entries[(e.metric, *sorted((e.domain1, e.domain2)))] = e

    def get(self, domain1: str, domain2: str, metric: str) -> Optional[float]:
        if domain1 == domain2:
            return 1.0
        entry = self._entries.get((metric, *sorted((domain1, domain2))))
        return None if entry is None else entry.correlation

    def entries(self) -> List[CorrelationEntry]:
        return list(self._entries.values())

    def for_metric(self, metric: str) -> List[CorrelationEntry]:
        return [e for e in self._entries.values() if e.metric == metric]

    def primary(self) -> Dict[str, float]:
        """metric -> r for the first two selected domains, where defined."""
        if len(self.domains) < 2:
            return {}
        d1, d2 = self.domains[0], self.domains[1]
        out: Dict[str, float] = {}
        for metric in METRICS:
            r = self.get(d1, d2, metric)
            if r is not None:
                out[metric] = r
        return out

    def __len__(self) -> int:
        return len(self._entries)


def correlate_all(
    aligned: Sequence[AlignedPoint],
    domains: Sequence[str],
    metrics: Iterable[str] = METRICS,
) -> CorrelationMatrix:
    entries: List[CorrelationEntry] = []
    for metric in metrics:
        entries.extend(correlate(aligned, domains, metric))
    return CorrelationMatrix(domains, entries)
