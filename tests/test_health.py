from __future__ import annotations

import pytest

from squd.config import RiskTierThresholds
from squd.core.domains import compute_squd
from squd.core.health import assess, diagnose, reduce, to_health, to_risk_tier
from squd.core.indicators import SQUDScore, TelemetryReading


def test_health_is_inverse_dissonance_percent() -> None:
    assert to_health(SQUDScore(0.5, 0.5, 0.5, 0.25)) == pytest.approx(75.0)
    assert to_health(SQUDScore(0.5, 0.5, 0.5, 0.0)) == 100.0
    assert to_health(SQUDScore(0.5, 0.5, 0.5, 1.0)) == 0.0


def test_risk_tier_breakpoints() -> None:
    assert to_risk_tier(0.0) == "critical"
    assert to_risk_tier(49.9) == "critical"
    assert to_risk_tier(50.0) == "high"
    assert to_risk_tier(59.99) == "high"
    assert to_risk_tier(60.0) == "medium"
    assert to_risk_tier(69.99) == "medium"
    assert to_risk_tier(70.0) == "low"
    assert to_risk_tier(100.0) == "low"
    # Out-of-range health is clamped before tiering
    assert to_risk_tier(-5.0) == "critical"
    assert to_risk_tier(140.0) == "low"


def test_custom_risk_tiers() -> None:
    tiers = RiskTierThresholds(critical_below=20.0, high_below=40.0, medium_below=90.0)
    assert to_risk_tier(30.0, tiers) == "high"
    assert to_risk_tier(85.0, tiers) == "medium"


def test_risk_tiers_must_be_ordered() -> None:
    with pytest.raises(ValueError):
        RiskTierThresholds(critical_below=70.0, high_below=60.0, medium_below=50.0)


def test_reduce_and_assess_build_snapshots() -> None:
    reading = TelemetryReading("medical", "patient-7", 1_700_000_000.0, {"heart_rate": 130.0})
    score = compute_squd("medical", reading)
    snap = reduce(reading, score)
    assert snap.entity_id == "patient-7"
    assert snap.domain_id == "medical"
    assert snap.timestamp == 1_700_000_000.0
    assert snap.health == pytest.approx(to_health(score))
    assert assess(reading) == snap


def test_diagnose_adds_tier_and_status() -> None:
    reading = TelemetryReading("medical", "patient-7", 1_700_000_000.0, {"heart_rate": 130.0})
    result = diagnose(reading)
    assert result.snapshot == assess(reading)
    assert result.risk_tier == to_risk_tier(result.snapshot.health)
    assert result.status is not None
    assert result.status.statuses["heart_rate"] == "tachycardia"
    out = result.as_dict()
    assert out["entity_id"] == "patient-7"
    assert out["statuses"]["heart_rate"] == "tachycardia"
    assert out["recommendations"]

    plain = diagnose(TelemetryReading("cloud", "vm-1", 1.0, {})).as_dict()
    assert plain["risk_tier"] in {"critical", "high", "medium", "low"}
    assert "recommendations" not in plain
