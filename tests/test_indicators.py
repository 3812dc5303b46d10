from __future__ import annotations

import math

import numpy as np
import pytest

from squd.core.domains import DOMAINS, _cliodynamics_d, compute_squd, get_domain, resolve_fields
from squd.core.errors import InvalidConfiguration, UnknownDomain
from squd.core.indicators import (
    CANONICAL,
    GEOPHYSICAL,
    TelemetryReading,
    aggregate_d,
    clip,
    score_from_components,
    sigmoid,
)


def test_clip_handles_nan_and_infinities() -> None:
    assert clip(float("nan")) == 0.0
    assert clip(float("nan"), 0.2, 0.8) == 0.2
    assert clip(float("inf")) == 1.0
    assert clip(float("-inf")) == 0.0
    assert clip(0.4) == 0.4


def test_sigmoid_is_stable_at_extremes() -> None:
    assert sigmoid(0.0) == 0.5
    assert sigmoid(1000.0) == 1.0
    assert sigmoid(-1000.0) == 0.0
    assert sigmoid(float("nan")) == 0.5


def test_bounds_hold_for_random_telemetry_in_every_domain() -> None:
    rng = np.random.default_rng(1234)
    specials = [float("nan"), float("inf"), float("-inf"), 0.0, -1e12, 1e12]
    for domain_id, spec in DOMAINS.items():
        s_lo, s_hi = spec.profile.s_bounds
        q_lo, q_hi = spec.profile.q_bounds
        u_lo, u_hi = spec.profile.u_bounds
        for _ in range(200):
            fields = {}
            for name, base in spec.nominal.items():
                if rng.random() < 0.1:
                    fields[name] = specials[int(rng.integers(len(specials)))]
                else:
                    fields[name] = float(base * rng.uniform(-3.0, 3.0) + rng.normal())
            score = compute_squd(domain_id, fields)
            assert s_lo <= score.S <= s_hi, (domain_id, fields)
            assert q_lo <= score.Q <= q_hi, (domain_id, fields)
            assert u_lo <= score.U <= u_hi, (domain_id, fields)
            assert 0.0 <= score.D <= 1.0, (domain_id, fields)


def test_aggregation_is_monotonic_in_each_component() -> None:
    rng = np.random.default_rng(99)
    for _ in range(500):
        s, q, u = rng.random(3)
        step = float(rng.uniform(0.0, 0.5))
        base = aggregate_d(s, q, u, CANONICAL)
        assert aggregate_d(min(1.0, s + step), q, u, CANONICAL) >= base
        assert aggregate_d(s, min(1.0, q + step), u, CANONICAL) >= base
        # U enters the logistic with a negative weight
        assert aggregate_d(s, q, min(1.0, u + step), CANONICAL) <= base


def test_compute_is_pure() -> None:
    fields = {"voltage": 13.5, "frequency": 59.97, "power_flow": 91.0}
    first = compute_squd("grid", fields)
    second = compute_squd("grid", dict(fields))
    assert first == second
    assert fields == {"voltage": 13.5, "frequency": 59.97, "power_flow": 91.0}


def test_reading_and_mapping_inputs_agree() -> None:
    reading = TelemetryReading("wind", "t-1", 1000.0, {"wind_speed": 12.0, "vibration": 6.0})
    assert compute_squd("wind", reading) == compute_squd("wind", {"wind_speed": 12.0, "vibration": 6.0})


def test_grid_stability_branch_boundaries_are_strict() -> None:
    cfg = {"voltage_nominal": 100.0, "frequency_nominal": 60.0}
    assert compute_squd("grid", {"voltage": 101.0, "frequency": 60.0}, cfg).S == 0.85
    # Exactly 2% deviation is no longer "< 2%"
    assert compute_squd("grid", {"voltage": 102.0, "frequency": 60.0}, cfg).S == 0.65
    assert compute_squd("grid", {"voltage": 104.0, "frequency": 60.0}, cfg).S == 0.65
    assert compute_squd("grid", {"voltage": 105.0, "frequency": 60.0}, cfg).S == 0.45
    assert compute_squd("grid", {"voltage": 100.0, "frequency": 60.2}, cfg).S == 0.45


def test_missing_and_non_numeric_fields_take_nominal_values() -> None:
    nominal = compute_squd("grid", {})
    assert compute_squd("grid", {"voltage": "n/a", "frequency": None}) == nominal  # type: ignore[dict-item]
    assert nominal.S == 0.85


def test_non_finite_fields_fall_back_to_nominal() -> None:
    nominal = compute_squd("grid", {})
    assert compute_squd("grid", {"voltage": float("nan")}) == nominal
    assert compute_squd("grid", {"voltage": "nan", "frequency": float("inf")}) == nominal  # type: ignore[dict-item]
    resolved = resolve_fields(get_domain("grid"), {}, {"voltage_nominal": float("nan")})
    assert resolved["voltage_nominal"] == 13.8


def test_reading_rejects_non_finite_timestamp() -> None:
    for bad in (float("nan"), float("inf"), "nan"):
        with pytest.raises(ValueError):
            TelemetryReading("grid", "sub-1", bad, {})  # type: ignore[arg-type]
    assert TelemetryReading("grid", "sub-1", "12.5", {}).timestamp == 12.5  # type: ignore[arg-type]


def test_domain_config_overrides_ratings() -> None:
    spec = get_domain("grid")
    resolved = resolve_fields(spec, {"voltage": 230.0}, {"voltage_nominal": 230.0})
    assert resolved["voltage_nominal"] == 230.0
    assert resolved["voltage"] == 230.0
    assert resolved["frequency"] == spec.nominal["frequency"]
    assert compute_squd("grid", {"voltage": 230.0}, {"voltage_nominal": 230.0}).S == 0.85


def test_weight_overrides_change_aggregation() -> None:
    zero = {"w_s": 0.0, "w_q": 0.0, "w_u": 0.0}
    assert compute_squd("cloud", {}, weights=zero).D == pytest.approx(0.5)
    partial = compute_squd("cloud", {}, weights={"w_u": None, "w_s": 0.5})
    assert partial == compute_squd("cloud", {})


def test_geophysical_profile_widens_u_and_floors_q() -> None:
    hot = compute_squd("geophysical", {"co2_ppm": 1500.0, "methane_flux": 400.0})
    assert hot.U == 2.0
    collapsed = compute_squd("geophysical", {"amoc_strength": 0.0})
    assert collapsed.Q == GEOPHYSICAL.q_bounds[0]
    expected = aggregate_d(collapsed.S, collapsed.Q, collapsed.U, GEOPHYSICAL)
    assert collapsed.D == pytest.approx(expected)


def test_u_proxy_domains_use_stability_minus_susceptibility() -> None:
    for domain_id in ("quantum", "aerospace"):
        score = compute_squd(domain_id, {})
        assert score.D == pytest.approx(sigmoid(score.S - score.U))


def test_cliodynamics_computes_dissonance_directly() -> None:
    spec = get_domain("cliodynamics")
    fields = {"elite_share": 0.002, "warfare": 1.5, "real_wage_index": 0.7}
    score = compute_squd("cliodynamics", fields)
    assert score.D == pytest.approx(clip(_cliodynamics_d(resolve_fields(spec, fields))))


def test_zero_rating_does_not_raise() -> None:
    score = compute_squd("grid", {}, {"voltage_nominal": 0.0, "power_flow_rated": 0.0})
    assert 0.0 <= score.D <= 1.0
    assert not math.isnan(score.U)


def test_score_from_components_clips_direct_dissonance() -> None:
    score = score_from_components(1.5, -0.2, 0.3, CANONICAL, D=1.7)
    assert (score.S, score.Q, score.D) == (1.0, 0.0, 1.0)


def test_unknown_domain_is_a_configuration_error() -> None:
    with pytest.raises(UnknownDomain) as info:
        compute_squd("warp-drive", {})
    assert isinstance(info.value, InvalidConfiguration)
    assert info.value.domain_id == "warp-drive"
