"""SQUD cross-domain health engine.

Telemetry from heterogeneous domains (vehicles, grids, vital signs, qubits,
portfolios, ...) is reduced to a common four-dimensional signature: S
(stability), Q (quality/coherence), U (urgency/susceptibility) and D
(diagnostic/dissonance). Signatures become a 0-100 health percentage, are
stored per domain and entity, and can be aligned, correlated and streamed
across domains in comparison sessions.
"""

__all__ = [
    "config",
    "core",
    "data",
    "utils",
]
