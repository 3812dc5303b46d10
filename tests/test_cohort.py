from __future__ import annotations

import numpy as np
import pytest

from squd.config import CohortThresholds
from squd.core.cohort import Cohort, aggregate, insights
from squd.core.errors import EmptyCohort
from squd.core.indicators import SQUDScore
from squd.core.store import Snapshot, SnapshotStore


def member(entity: str, health: float, ts: float = 1.0) -> Snapshot:
    d = 1.0 - health / 100.0
    return Snapshot(entity, "wind", ts, SQUDScore(S=0.6, Q=0.4, U=d, D=d), health)


def test_mean_matches_member_average_for_many_sizes() -> None:
    rng = np.random.default_rng(21)
    for size in (1, 2, 10, 1000):
        healths = rng.uniform(0.0, 100.0, size)
        members = [member(f"t-{i}", float(h)) for i, h in enumerate(healths)]
        agg = aggregate(members)
        assert agg.member_count == size
        assert agg.mean_health == pytest.approx(float(np.mean(healths)))
        assert agg.health_variance == pytest.approx(float(np.var(healths)))
        assert agg.mean.D == pytest.approx(float(np.mean([m.score.D for m in members])))
        assert agg.max_health == pytest.approx(float(healths.max()))
        assert agg.min_health == pytest.approx(float(healths.min()))


def test_ties_go_to_first_member() -> None:
    agg = aggregate([member("a", 80.0), member("b", 80.0), member("c", 40.0), member("d", 40.0)])
    assert agg.best_member_id == "a"
    assert agg.worst_member_id == "c"


def test_single_member_is_best_and_worst() -> None:
    agg = aggregate([member("solo", 72.0)], group_id="fleet")
    assert agg.group_id == "fleet"
    assert agg.best_member_id == agg.worst_member_id == "solo"
    assert agg.health_variance == 0.0


def test_empty_cohort_raises() -> None:
    with pytest.raises(EmptyCohort):
        aggregate([])


def test_insights_for_a_healthy_uniform_group() -> None:
    members = [member(f"t-{i}", 90.0) for i in range(5)]
    lines = insights(aggregate(members), members)
    assert lines[0].startswith("Average health 90.0% is excellent")
    assert any("t-0 (90.0%) performs best" in line for line in lines)
    assert not any("dispersion" in line for line in lines)
    assert not any("attention" in line for line in lines)


def test_insights_for_a_split_group() -> None:
    members = [member("strong", 90.0), member("weak", 30.0)]
    agg = aggregate(members)
    lines = insights(agg, members)
    # mean 60 is not below 60, so the group is "good"
    assert lines[0] == "Average health 60.0% is good, continue monitoring"
    assert "High dispersion" in lines[1] and "weak" in lines[1]
    assert "strong (90.0%) performs best, use as benchmark" in lines[2]
    assert lines[3] == "1 member(s) require immediate attention: weak"


def test_insights_review_and_moderate_dispersion() -> None:
    members = [member("a", 40.0), member("b", 62.0)]
    lines = insights(aggregate(members), members)
    assert "requires comprehensive review" in lines[0]
    assert lines[1].startswith("Moderate dispersion")
    assert lines[-1] == "2 member(s) require immediate attention: a, b"


def test_custom_thresholds() -> None:
    members = [member("a", 75.0)]
    th = CohortThresholds(excellent_above=70.0, attention_below=80.0)
    lines = insights(aggregate(members), members, th)
    assert "excellent" in lines[0]
    assert lines[-1].endswith(": a")


def test_cohort_recomputes_on_change() -> None:
    group = Cohort("fleet")
    assert group.aggregate() is None
    assert group.insights() == []
    group.add(member("a", 50.0))
    group.add(member("b", 70.0))
    agg = group.aggregate()
    assert agg is not None and agg.mean_health == pytest.approx(60.0)
    # Re-adding an entity replaces its previous snapshot
    group.add(member("a", 90.0, ts=2.0))
    assert len(group) == 2
    assert group.aggregate().mean_health == pytest.approx(80.0)  # type: ignore[union-attr]
    assert group.remove("b") is True
    assert group.remove("b") is False
    assert group.aggregate().best_member_id == "a"  # type: ignore[union-attr]
    group.remove("a")
    assert group.aggregate() is None


def test_cohort_from_store_uses_latest_snapshots() -> None:
    store = SnapshotStore()
    store.append(member("t-1", 40.0, ts=1.0))
    store.append(member("t-1", 60.0, ts=2.0))
    store.append(member("t-2", 80.0, ts=1.0))
    group = Cohort.from_store(store, "wind")
    assert group.group_id == "wind"
    assert {m.health for m in group.members()} == {60.0, 80.0}
    only = Cohort.from_store(store, "wind", entity_ids=["t-2", "missing"], group_id="subset")
    assert [m.entity_id for m in only.members()] == ["t-2"]
