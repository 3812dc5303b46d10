from __future__ import annotations

import math
from typing import List

import numpy as np
import pytest

from squd.core.alignment import align
from squd.core.correlation import CorrelationMatrix, correlate, correlate_all, correlate_pair, pearson_pairwise
from squd.core.indicators import SQUDScore
from squd.core.store import Snapshot


def series(domain: str, values: List[float], start: float = 0.0) -> List[Snapshot]:
    out = []
    for i, v in enumerate(values):
        score = SQUDScore(S=v, Q=1.0 - v, U=0.5 + 0.1 * math.sin(i), D=0.5)
        out.append(Snapshot("e", domain, start + i * 60.0, score, 50.0))
    return out


def test_identical_series_correlate_to_one() -> None:
    rng = np.random.default_rng(5)
    values = list(rng.random(50))
    aligned = align({"grid": series("grid", values), "wind": series("wind", values)})
    entries = correlate(aligned, ["grid", "wind"], "S")
    assert len(entries) == 1
    assert entries[0].correlation == pytest.approx(1.0, abs=1e-9)
    assert entries[0].n == 50


def test_matrix_is_symmetric_with_unit_diagonal() -> None:
    rng = np.random.default_rng(11)
    aligned = align(
        {
            "grid": series("grid", list(rng.random(40))),
            "wind": series("wind", list(rng.random(40))),
            "solar": series("solar", list(rng.random(40))),
        }
    )
    matrix = correlate_all(aligned, ["grid", "wind", "solar"])
    for a in ("grid", "wind", "solar"):
        assert matrix.get(a, a, "S") == 1.0
        for b in ("grid", "wind", "solar"):
            assert matrix.get(a, b, "Q") == matrix.get(b, a, "Q")
    for entry in matrix.entries():
        assert -1.0 <= entry.correlation <= 1.0


def test_quarter_phase_signals_are_uncorrelated() -> None:
    n = 100
    sin = [0.5 + 0.4 * math.sin(2 * math.pi * i / n) for i in range(n)]
    cos = [0.5 + 0.4 * math.cos(2 * math.pi * i / n) for i in range(n)]
    aligned = align({"grid": series("grid", sin), "wind": series("wind", cos)})
    entries = correlate(aligned, ["grid", "wind"], "S")
    assert abs(entries[0].correlation) < 0.1


def test_inverse_series_correlate_to_minus_one() -> None:
    values = [0.1 * i for i in range(10)]
    aligned = align({"grid": series("grid", values), "wind": series("wind", values[::-1])})
    assert correlate(aligned, ["grid", "wind"], "S")[0].correlation == pytest.approx(-1.0)


def test_constant_series_is_omitted() -> None:
    aligned = align({"grid": series("grid", [0.4] * 20), "wind": series("wind", [0.1 * i for i in range(20)])})
    assert correlate(aligned, ["grid", "wind"], "S") == []


def test_insufficient_overlap_is_omitted() -> None:
    aligned = align(
        {
            "grid": series("grid", [0.1, 0.2, 0.3], start=0.0),
            "wind": series("wind", [0.5, 0.6, 0.7], start=120.0),
        }
    )
    # Only one shared timestamp (t=120)
    assert correlate(aligned, ["grid", "wind"], "S") == []
    assert len(correlate_all(aligned, ["grid", "wind"])) == 0


def test_pearson_pairwise_skips_nan_rows() -> None:
    x = np.array([1.0, 2.0, np.nan, 4.0, 5.0])
    y = np.array([2.0, 4.0, 6.0, np.nan, 10.0])
    result = pearson_pairwise(x, y)
    assert result is not None
    r, _p, n = result
    assert n == 3
    assert r == pytest.approx(1.0)
    assert pearson_pairwise(np.array([1.0]), np.array([2.0])) is None


def test_pairs_follow_selection_order() -> None:
    rng = np.random.default_rng(3)
    data = {d: series(d, list(rng.random(30))) for d in ("a", "b", "c")}
    aligned = align(data)
    entries = correlate(aligned, ["c", "a", "b"], "S")
    assert [(e.domain1, e.domain2) for e in entries] == [("c", "a"), ("c", "b"), ("a", "b")]


def test_correlate_pair_and_primary() -> None:
    rng = np.random.default_rng(8)
    values = list(rng.random(25))
    aligned = align({"grid": series("grid", values), "wind": series("wind", values)})
    pair = correlate_pair(aligned, "grid", "wind")
    # D is constant in these series, so it has no correlation
    assert set(pair) == {"S", "Q", "U"}
    matrix = correlate_all(aligned, ["grid", "wind"])
    primary = matrix.primary()
    assert set(primary) == {"S", "Q", "U"}
    assert primary["S"] == pytest.approx(1.0)


def test_unknown_metric_is_rejected() -> None:
    with pytest.raises(ValueError):
        correlate([], ["grid", "wind"], "health")


def test_empty_matrix() -> None:
    matrix = CorrelationMatrix(["grid"], [])
    assert len(matrix) == 0
    assert matrix.primary() == {}
    assert matrix.get("grid", "wind", "S") is None
