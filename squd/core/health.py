from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ..config import RiskTierThresholds
from .domains import assess_status, compute_squd
from .indicators import SQUDScore, TelemetryReading, clip
from .status import DomainStatus
from .store import Snapshot


RISK_TIERS = ("critical", "high", "medium", "low")

_DEFAULT_TIERS = RiskTierThresholds()


def to_health(score: SQUDScore) -> float:
    """Health percentage, ``(1 - D) * 100`` clamped to ``[0, 100]``."""
    return clip((1.0 - score.D) * 100.0, 0.0, 100.0)


def to_risk_tier(health: float, thresholds: Optional[RiskTierThresholds] = None) -> str:
    th = thresholds or _DEFAULT_TIERS
    health = clip(health, 0.0, 100.0)
    if health < th.critical_below:
        return "critical"
    if health < th.high_below:
        return "high"
    if health < th.medium_below:
        return "medium"
    return "low"


def reduce(reading: TelemetryReading, score: SQUDScore) -> Snapshot:
    return Snapshot(
        entity_id=reading.entity_id,
        domain_id=reading.domain_id,
        timestamp=reading.timestamp,
        score=score,
        health=to_health(score),
    )


def assess(
    reading: TelemetryReading,
    domain_config: Optional[Mapping[str, float]] = None,
    weights: Optional[Mapping[str, Optional[float]]] = None,
) -> Snapshot:
    """Score a reading and reduce it to a snapshot in one step."""
    score = compute_squd(reading.domain_id, reading, domain_config, weights)
    return reduce(reading, score)


@dataclass(frozen=True)
class Assessment:
    snapshot: Snapshot
    risk_tier: str
    status: Optional[DomainStatus] = None

    def as_dict(self) -> Dict[str, object]:
        snap = self.snapshot
        out: Dict[str, object] = dict(snap.score.as_dict())
        out.update(
            domain_id=snap.domain_id,
            entity_id=snap.entity_id,
            timestamp=snap.timestamp,
            health=snap.health,
            risk_tier=self.risk_tier,
        )
        if self.status is not None:
            out.update(self.status.as_dict())
        return out


def diagnose(
    reading: TelemetryReading,
    domain_config: Optional[Mapping[str, float]] = None,
    weights: Optional[Mapping[str, Optional[float]]] = None,
    thresholds: Optional[RiskTierThresholds] = None,
) -> Assessment:
    """Snapshot plus risk tier and, for domains that define them, status levels and recommendations."""
    snap = assess(reading, domain_config, weights)
    return Assessment(
        snapshot=snap,
        risk_tier=to_risk_tier(snap.health, thresholds),
        status=assess_status(reading.domain_id, reading, domain_config),
    )
