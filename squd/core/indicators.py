from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


EPSILON = 0.01

# Canonical aggregation weights shared by most domains
W_S = 0.5
W_Q = 0.3
W_U = 0.4

Bounds = Tuple[float, float]


def clip(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp ``x`` into ``[lo, hi]``.

    Infinities land on the bound they point at. NaN has no nearest bound and
    maps to ``lo``.
    """
    x = float(x)
    if math.isnan(x):
        return lo
    return max(lo, min(hi, x))


def sigmoid(x: float) -> float:
    if math.isnan(x):
        return 0.5
    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    z = math.exp(x)
    return z / (1.0 + z)


@dataclass(frozen=True)
class TelemetryReading:
    """One immutable sample of domain measurements for an entity."""

    domain_id: str
    entity_id: str
    timestamp: float
    fields: Mapping[str, float] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        ts = float(self.timestamp)
        if not math.isfinite(ts):
            raise ValueError(f"reading timestamp must be finite, got {self.timestamp!r}")
        object.__setattr__(self, "timestamp", ts)
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


@dataclass(frozen=True)
class SQUDScore:
    S: float
    Q: float
    U: float
    D: float

    def get(self, metric: str) -> float:
        if metric not in ("S", "Q", "U", "D"):
            raise KeyError(metric)
        return getattr(self, metric)

    def as_dict(self) -> Dict[str, float]:
        return {"S": self.S, "Q": self.Q, "U": self.U, "D": self.D}


@dataclass(frozen=True)
class AggregationProfile:
    """How a domain folds S, Q and U into D, and the bounds each lives in.

    ``mode``:
      - ``logistic``: ``sigmoid(w_s*S + w_q*ln(Q) - w_u*U)``
      - ``u_proxy``: ``sigmoid(S - U)``

    ``q_log``:
      - ``offset``: ``ln(Q + eps)``
      - ``floor``: ``ln(max(eps, Q))``
    """

    w_s: float = W_S
    w_q: float = W_Q
    w_u: float = W_U
    mode: str = "logistic"
    q_log: str = "offset"
    s_bounds: Bounds = (0.0, 1.0)
    q_bounds: Bounds = (0.0, 1.0)
    u_bounds: Bounds = (0.0, 1.0)

    def with_weights(
        self,
        w_s: Optional[float] = None,
        w_q: Optional[float] = None,
        w_u: Optional[float] = None,
    ) -> "AggregationProfile":
        return replace(
            self,
            w_s=self.w_s if w_s is None else w_s,
            w_q=self.w_q if w_q is None else w_q,
            w_u=self.w_u if w_u is None else w_u,
        )


CANONICAL = AggregationProfile()
GEOPHYSICAL = AggregationProfile(
    w_s=2.0, w_q=1.2, w_u=1.0, q_log="floor", q_bounds=(EPSILON, 1.0), u_bounds=(0.0, 2.0)
)
U_PROXY = AggregationProfile(mode="u_proxy")


def aggregate_d(S: float, Q: float, U: float, profile: AggregationProfile = CANONICAL) -> float:
    """Fold S, Q and U into the dissonance index D in ``[0, 1]``."""
    if profile.mode == "u_proxy":
        x = S - U
    else:
        if profile.q_log == "floor":
            q_term = math.log(max(EPSILON, Q))
        else:
            q_term = math.log(max(0.0, Q) + EPSILON)
        x = profile.w_s * S + profile.w_q * q_term - profile.w_u * U
    return clip(sigmoid(x), 0.0, 1.0)


def score_from_components(
    S: float,
    Q: float,
    U: float,
    profile: AggregationProfile = CANONICAL,
    D: Optional[float] = None,
) -> SQUDScore:
    """Clip raw components into the profile's bounds and derive D.

    A domain that computes D directly passes it in; it is clipped to
    ``[0, 1]`` like everything else.
    """
    s = clip(S, *profile.s_bounds)
    q = clip(Q, *profile.q_bounds)
    u = clip(U, *profile.u_bounds)
    d = aggregate_d(s, q, u, profile) if D is None else clip(D, 0.0, 1.0)
    return SQUDScore(S=s, Q=q, U=u, D=d)
