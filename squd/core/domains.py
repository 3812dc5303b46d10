from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

from .errors import UnknownDomain
from .indicators import (
    CANONICAL,
    GEOPHYSICAL,
    U_PROXY,
    AggregationProfile,
    SQUDScore,
    TelemetryReading,
    clip,
    score_from_components,
)
from .status import DomainStatus, grid_status, industrial_status, medical_status, wind_status


Fields = Mapping[str, float]
ComponentFunc = Callable[[Fields], Tuple[float, float, float]]
DissonanceFunc = Callable[[Fields], float]
StatusFunc = Callable[[Fields], DomainStatus]


@dataclass(frozen=True)
class DomainSpec:
    key: str
    label: str
    # Healthy reading used when a telemetry field is absent
    nominal: Mapping[str, float]
    components: ComponentFunc
    profile: AggregationProfile = CANONICAL
    dissonance: Optional[DissonanceFunc] = None
    # Operator-facing status levels and recommendations, where the domain has them
    status: Optional[StatusFunc] = None
    # Ratings and thresholds a deployment may override through domain config
    config: Mapping[str, float] = field(default_factory=dict)

    def telemetry_fields(self) -> List[str]:
        return list(self.nominal)


def _ratio(num: float, den: float) -> float:
    # Division by a zero nominal is undefined; clip() later maps NaN to a bound.
    if den == 0:
        return math.nan
    return num / den


def _tiered(value: float, cuts: Tuple[float, ...], levels: Tuple[float, ...], below: bool = True) -> float:
    """Pick ``levels[i]`` for the first cut ``value`` is strictly under (or over)."""
    for cut, level in zip(cuts, levels):
        if (value < cut) if below else (value > cut):
            return level
    return levels[-1]


# ───────────────────────────── energy ─────────────────────────────
def _grid(f: Fields) -> Tuple[float, float, float]:
    v_nom = f["voltage_nominal"]
    f_nom = f["frequency_nominal"]
    voltage_dev = abs(_ratio(f["voltage"] - v_nom, v_nom)) * 100.0
    freq_dev = abs(f["frequency"] - f_nom)

    if voltage_dev < 2.0 and freq_dev < 0.05:
        s = 0.85
    elif voltage_dev < 5.0 and freq_dev < 0.1:
        s = 0.65
    else:
        s = 0.45

    pqi = 100.0 - clip(voltage_dev * 2.0 + freq_dev * 50.0, 0.0, 100.0)
    q = _tiered(pqi, (95.0, 90.0), (0.25, 0.45, 0.65), below=False)

    load = clip(_ratio(f["power_flow"], f["power_flow_rated"]))
    heat = clip(_ratio(f["transformer_temp"], f["transformer_temp_max"]))
    return s, q, load * 0.6 + heat * 0.4


def _wind(f: Fields) -> Tuple[float, float, float]:
    s = _tiered(f["availability"], (95.0, 90.0), (0.85, 0.70, 0.55), below=False)
    speed = clip(f["wind_speed"], 0.0, f["cut_out_wind_speed"])
    q = clip(1.0 - clip(_ratio(speed, f["rated_wind_speed"])), 0.1, 0.9)
    heat = max(
        clip(_ratio(f["nacelle_temp"], f["nacelle_temp_max"]), 0.0, 2.0),
        clip(_ratio(f["gearbox_temp"], f["gearbox_temp_max"]), 0.0, 2.0),
    )
    vib = clip(_ratio(f["vibration"], f["vibration_max"]), 0.0, 2.0)
    return s, q, heat * 0.6 + vib * 0.4


def _solar(f: Fields) -> Tuple[float, float, float]:
    pr = f["performance_ratio"]
    s = _tiered(pr, (0.85, 0.75), (0.85, 0.70, 0.55), below=False)
    q = clip(1.0 - pr, 0.1, 0.9)
    irr = clip(_ratio(f["irradiance"], f["irradiance_reference"]))
    heat = clip(_ratio(f["module_temp"], f["module_temp_max"]))
    return s, q, irr * 0.5 + heat * 0.5


def _geophysical(f: Fields) -> Tuple[float, float, float]:
    s = (1.0 - f["temp_anomaly"] / 3.0) * (f["sea_ice_extent"] / 6.0)
    q = (f["amoc_strength"] / 20.0) * f["enso_regularity"]
    u = (f["co2_ppm"] - f["co2_preindustrial"]) / 700.0 + f["methane_flux"] / 1000.0
    return s, q, u


# ───────────────────────────── health ─────────────────────────────
def _medical(f: Fields) -> Tuple[float, float, float]:
    hr, rr, sbp = f["heart_rate"], f["respiratory_rate"], f["systolic_bp"]
    hr_dev = abs(_ratio(hr - f["baseline_heart_rate"], f["baseline_heart_rate"]))
    bp_dev = abs(_ratio(sbp - f["baseline_systolic_bp"], f["baseline_systolic_bp"]))
    temp_dev = abs(_ratio(f["body_temp"] - f["baseline_body_temp"], f["baseline_body_temp"]))
    s = 1.0 - (hr_dev * 0.3 + bp_dev * 0.4 + temp_dev * 0.3)

    q = (f["oxygen_saturation"] - 88.0) / 12.0

    if hr > 100:
        hr_u = (hr - 100) / 50.0
    elif hr < 60:
        hr_u = (60 - hr) / 20.0
    else:
        hr_u = 0.0
    if rr > 20:
        rr_u = (rr - 20) / 10.0
    elif rr < 12:
        rr_u = (12 - rr) / 6.0
    else:
        rr_u = 0.0
    if sbp > 140:
        bp_u = (sbp - 140) / 40.0
    elif sbp < 90:
        bp_u = (90 - sbp) / 30.0
    else:
        bp_u = 0.0
    return s, q, hr_u * 0.3 + rr_u * 0.2 + bp_u * 0.5


def _personnel(f: Fields) -> Tuple[float, float, float]:
    s = 0.5 * f["reliability"] + 0.5 * f["integrity"]
    q = 0.5 * f["collaboration"] + 0.5 * f["learning"]
    u = 1.0 - (0.5 * f["well_being"] + 0.5 * f["performance"])
    return s, q, u


# ───────────────────────────── machines ─────────────────────────────
def _industrial(f: Fields) -> Tuple[float, float, float]:
    p = f["pressure"]
    s = 0.8 if f["pressure_min"] <= p <= f["pressure_max"] else 0.6
    q = _tiered(f["temperature"], (f["temperature_warn"], f["temperature_alarm"]), (0.3, 0.5, 0.7))
    u = _tiered(f["vibration"], (f["vibration_warn"], f["vibration_alarm"]), (0.3, 0.5, 0.7))
    return s, q, u


def _gas_vehicle(f: Fields) -> Tuple[float, float, float]:
    vib = clip(_ratio(f["vibration"], f["vibration_max"]))
    oil_deficit = clip(_ratio(f["oil_pressure_min"] - f["oil_pressure"], f["oil_pressure_min"]))
    faults = clip(f["dtc_count"] / 5.0)
    s = 1.0 - (vib * 0.5 + oil_deficit * 0.3 + faults * 0.2)

    # o2 sensor reports lambda; 1.0 is stoichiometric combustion
    q = 1.0 - abs(f["o2_sensor_1"] - 1.0) / 0.2

    thermal = clip(_ratio(f["coolant_temp"] - f["coolant_nominal"], f["coolant_max"] - f["coolant_nominal"]))
    load = clip(f["throttle_position"] / 100.0)
    revs = clip(_ratio(f["engine_rpm"], f["rpm_max"]))
    return s, q, thermal * 0.5 + load * 0.3 + revs * 0.2


def _electric_vehicle(f: Fields) -> Tuple[float, float, float]:
    spread = clip(_ratio(f["cell_voltage_spread"], f["cell_voltage_spread_max"]))
    s = 0.5 * (f["state_of_health"] / 100.0) + 0.5 * (1.0 - spread)
    q = f["battery_soc"] / 100.0
    battery_heat = clip(_ratio(f["battery_temp"] - f["battery_temp_nominal"], f["battery_temp_max"] - f["battery_temp_nominal"]))
    motor_heat = clip(_ratio(f["motor_temp"], f["motor_temp_max"]))
    return s, q, battery_heat * 0.6 + motor_heat * 0.4


def _quantum(f: Fields) -> Tuple[float, float, float]:
    t1 = clip((f["t1"] - 10.0) / 990.0)
    t2 = clip((f["t2"] - 5.0) / 495.0)
    coherence = (t1 + t2) / 2.0
    fidelity = clip(f["fidelity"])
    s = 0.4 * coherence + 0.6 * fidelity
    q = 1.0 - fidelity
    u = 0.6 * clip(f["noise"] / 0.1) + 0.4 * clip(f["crosstalk"] / 0.1)
    return s, q, u


def _aerospace(f: Fields) -> Tuple[float, float, float]:
    noise = f["noise"]
    stability = clip(1.0 - noise / 2.0)
    snr = clip((f["snr"] + 10.0) / 30.0)
    drift = clip(abs(f["drift"]) * 20.0)
    s = 0.5 * stability + 0.3 * snr - 0.2 * drift

    coherence = clip(1.0 - noise / 1.5)
    precision = clip(1.0 - noise / 2.0)
    q = 0.6 * (1.0 - coherence) + 0.4 * (1.0 - precision)

    u = 0.7 * clip(noise / 2.0) + 0.3 * clip(noise / 1.5)
    return s, q, u


# ───────────────────────────── software & networks ─────────────────────────────
def _cloud(f: Fields) -> Tuple[float, float, float]:
    cpu, mem, disk = f["cpu_utilization"], f["memory_utilization"], f["disk_utilization"]
    s = (
        _tiered(cpu, (70.0, 85.0), (0.9, 0.7, 0.5)) * 0.4
        + _tiered(mem, (75.0, 90.0), (0.9, 0.7, 0.5)) * 0.4
        + _tiered(disk, (70.0, 85.0), (0.9, 0.7, 0.5)) * 0.2
    )
    err = f["error_rate"]
    q = (
        _tiered(err, (0.002, 0.005), (0.9, 0.7, 0.5)) * 0.4
        + _tiered(f["latency_ms"], (200.0, 500.0), (0.9, 0.7, 0.5)) * 0.3
        + f["availability"] * 0.3
    )
    u = (
        clip(cpu / 80.0) * 0.25
        + clip(mem / 85.0) * 0.25
        + clip(disk / 90.0) * 0.2
        + clip(err / 0.01) * 0.3
    )
    return s, q, u


def _software(f: Fields) -> Tuple[float, float, float]:
    cpu, mem, err = f["cpu_usage"], f["memory_usage"], f["error_rate"]
    s = _tiered(cpu, (70.0, 85.0), (0.9, 0.7, 0.5)) * 0.5 + _tiered(mem, (75.0, 90.0), (0.9, 0.7, 0.5)) * 0.5
    q = (
        _tiered(f["response_time_ms"], (200.0, 500.0), (0.9, 0.7, 0.5)) * 0.5
        + _tiered(err, (0.005, 0.01), (0.9, 0.7, 0.5)) * 0.5
    )
    u = clip(cpu / 80.0) * 0.3 + clip(mem / 85.0) * 0.3 + clip(err / 0.01) * 0.4
    return s, q, u


def _network(f: Fields) -> Tuple[float, float, float]:
    load = (
        clip(f["cpu"] / 80.0) * 0.4
        + clip(f["memory"] / 85.0) * 0.3
        + clip(_ratio(f["packet_rate"], f["packet_rate_max"])) * 0.3
    )
    err = clip(f["error_rate"] / 100.0)
    bcast = clip(f["broadcast_ratio"] / 0.2)
    mcast = clip(f["multicast_ratio"] / 0.3)
    noise = err * 0.5 + bcast * 0.25 + mcast * 0.25
    s = 1.0 - (load * 0.6 + noise * 0.4)
    q = err * 0.5 + bcast * 0.25 + mcast * 0.15 + (1.0 - f["integrity"]) * 0.1
    u = load * 0.7 + clip(f["temperature"] / 75.0) * 0.3
    return s, q, u


# ───────────────────────────── economics & society ─────────────────────────────
def _business(f: Fields) -> Tuple[float, float, float]:
    growth = f["revenue_growth"]
    if 0.05 < growth < 0.5:
        revenue = 0.9
    elif 0.0 < growth < 1.0:
        revenue = 0.7
    else:
        revenue = 0.5
    margin = _tiered(f["gross_margin"], (0.6, 0.4), (0.9, 0.7, 0.5), below=False)
    cash = _tiered(f["cash_runway"], (12.0, 6.0), (0.9, 0.7, 0.5), below=False)
    s = revenue * 0.4 + margin * 0.3 + cash * 0.3

    retention = _tiered(f["net_revenue_retention"], (1.0, 0.9), (0.9, 0.7, 0.5), below=False)
    efficiency = _tiered(f["ltv_cac"], (3.0, 2.0), (0.9, 0.7, 0.5), below=False)
    q = retention * 0.5 + efficiency * 0.5

    churn = clip(_ratio(f["churn_rate"], f["churn_reference"]))
    burn = clip(1.0 - _ratio(f["cash_runway"], f["runway_reference"]))
    return s, q, churn * 0.5 + burn * 0.5


def _portfolio(f: Fields) -> Tuple[float, float, float]:
    s = 1.0 - (
        clip(_ratio(f["volatility"], f["volatility_reference"])) * 0.6
        + clip(_ratio(f["max_drawdown"], f["drawdown_reference"])) * 0.4
    )
    q = f["sharpe_ratio"] / 2.0
    u = clip(abs(f["beta"] - 1.0)) * 0.5 + clip(f["concentration"]) * 0.5
    return s, q, u


def _structural_demographic(f: Fields) -> Dict[str, float]:
    pop = max(1.0, f["population"])
    revenues = f.get("state_revenues", pop * 10.0)
    expenditures = f.get("state_expenditures", revenues * 1.02)
    debt = f.get("public_debt", revenues * 0.5)

    elites_per_10k = f["elite_share"] * 10_000.0
    elite_overproduction = clip((elites_per_10k - 3.0) / 10.0)

    fiscal = expenditures / max(1.0, revenues)
    debt_load = debt / max(1.0, revenues)
    sfd = clip(0.6 * (fiscal - 1.0) + 0.4 * (debt_load / 2.0))

    wage_stress = clip(1.2 - clip((f["real_wage_index"] - 0.8) / 1.2))
    mmp = clip(0.5 * f["urbanization"] + 0.5 * wage_stress)

    conflict = clip(f["warfare"] / 2.0)
    emp = clip(0.7 * elite_overproduction + 0.3 * conflict)

    psi = clip(0.45 * mmp + 0.35 * emp + 0.20 * sfd)
    return {"psi": psi, "mmp": mmp, "emp": emp, "sfd": sfd}


def _cliodynamics(f: Fields) -> Tuple[float, float, float]:
    sdt = _structural_demographic(f)
    psi = sdt["psi"]
    return 1.0 - psi, 1.0 - 0.8 * psi, 0.5 * psi + 0.3 * sdt["emp"] + 0.2 * sdt["mmp"]


def _cliodynamics_d(f: Fields) -> float:
    sdt = _structural_demographic(f)
    return 0.4 * sdt["psi"] + 0.35 * sdt["sfd"] + 0.25 * sdt["emp"]


def build_registry() -> Dict[str, DomainSpec]:
    specs = [
        DomainSpec(
            key="grid",
            label="Power Grid Substation",
            nominal={"voltage": 13.8, "frequency": 60.0, "power_flow": 80.0, "transformer_temp": 70.0},
            config={
                "voltage_nominal": 13.8, "frequency_nominal": 60.0,
                "power_flow_rated": 100.0, "transformer_temp_max": 85.0,
                "voltage_tolerance": 5.0, "frequency_tolerance": 0.1,
            },
            components=_grid,
            status=grid_status,
        ),
        DomainSpec(
            key="wind",
            label="Wind Turbine",
            nominal={
                "wind_speed": 10.0, "nacelle_temp": 50.0, "gearbox_temp": 66.0,
                "vibration": 4.0, "availability": 97.0,
            },
            config={
                "rated_wind_speed": 15.0, "cut_in_wind_speed": 3.0, "cut_out_wind_speed": 25.0,
                "nacelle_temp_max": 70.0, "gearbox_temp_max": 90.0, "vibration_max": 10.0,
                "nacelle_temp_warn": 55.0, "nacelle_temp_alarm": 60.0, "gearbox_temp_warn": 70.0,
                "gearbox_temp_alarm": 80.0, "vibration_warn": 5.0, "vibration_alarm": 8.0,
            },
            components=_wind,
            status=wind_status,
        ),
        DomainSpec(
            key="solar",
            label="Solar Plant",
            nominal={"performance_ratio": 0.82, "irradiance": 800.0, "module_temp": 45.0},
            config={"irradiance_reference": 1000.0, "module_temp_max": 80.0},
            components=_solar,
        ),
        DomainSpec(
            key="geophysical",
            label="Climate System",
            nominal={
                "temp_anomaly": 1.0, "co2_ppm": 410.0, "sea_ice_extent": 5.0, "amoc_strength": 18.0,
                "enso_regularity": 0.8, "methane_flux": 360.0,
            },
            config={"co2_preindustrial": 280.0},
            components=_geophysical,
            profile=GEOPHYSICAL,
        ),
        DomainSpec(
            key="medical",
            label="Patient Vitals",
            nominal={
                "heart_rate": 72.0, "respiratory_rate": 16.0, "systolic_bp": 120.0,
                "body_temp": 37.0, "oxygen_saturation": 98.0,
            },
            config={"baseline_heart_rate": 72.0, "baseline_systolic_bp": 120.0, "baseline_body_temp": 37.0},
            components=_medical,
            status=medical_status,
        ),
        DomainSpec(
            key="personnel-health",
            label="Personnel Health",
            nominal={
                "performance": 0.6, "reliability": 0.65, "collaboration": 0.6,
                "learning": 0.55, "well_being": 0.6, "integrity": 0.7,
            },
            components=_personnel,
        ),
        DomainSpec(
            key="industrial-fault",
            label="Industrial Equipment",
            nominal={"vibration": 3.0, "temperature": 65.0, "pressure": 8.5},
            config={
                "pressure_min": 7.5, "pressure_max": 9.5, "temperature_warn": 70.0,
                "temperature_alarm": 80.0, "vibration_warn": 5.0, "vibration_alarm": 8.0,
            },
            components=_industrial,
            status=industrial_status,
        ),
        DomainSpec(
            key="gas-vehicle",
            label="Gas Vehicle",
            nominal={
                "engine_rpm": 2500.0, "coolant_temp": 90.0, "throttle_position": 50.0,
                "o2_sensor_1": 1.0, "oil_pressure": 45.0, "vibration": 2.5, "dtc_count": 0.0,
            },
            config={
                "coolant_nominal": 90.0, "coolant_max": 110.0, "rpm_max": 6500.0,
                "oil_pressure_min": 25.0, "vibration_max": 10.0,
            },
            components=_gas_vehicle,
        ),
        DomainSpec(
            key="electric-vehicle",
            label="Electric Vehicle",
            nominal={
                "battery_soc": 80.0, "battery_temp": 30.0, "cell_voltage_spread": 0.02,
                "motor_temp": 60.0, "state_of_health": 95.0,
            },
            config={
                "battery_temp_nominal": 25.0, "battery_temp_max": 45.0,
                "cell_voltage_spread_max": 0.1, "motor_temp_max": 120.0,
            },
            components=_electric_vehicle,
        ),
        DomainSpec(
            key="quantum",
            label="Quantum Processor",
            nominal={"fidelity": 0.96, "t1": 100.0, "t2": 80.0, "noise": 0.012, "crosstalk": 0.025},
            components=_quantum,
            profile=U_PROXY,
        ),
        DomainSpec(
            key="aerospace",
            label="Aerospace Telemetry Link",
            nominal={"noise": 0.3, "snr": 20.0, "drift": 0.001},
            components=_aerospace,
            profile=U_PROXY,
        ),
        DomainSpec(
            key="cloud",
            label="Cloud Infrastructure",
            nominal={
                "cpu_utilization": 55.0, "memory_utilization": 60.0, "disk_utilization": 50.0,
                "error_rate": 0.002, "latency_ms": 350.0, "availability": 0.95,
            },
            components=_cloud,
        ),
        DomainSpec(
            key="software",
            label="Software Service",
            nominal={"cpu_usage": 50.0, "memory_usage": 60.0, "response_time_ms": 150.0, "error_rate": 0.003},
            components=_software,
        ),
        DomainSpec(
            key="network",
            label="Network",
            nominal={
                "cpu": 40.0, "memory": 55.0, "temperature": 48.0, "packet_rate": 10_000.0,
                "error_rate": 1.0, "broadcast_ratio": 0.12, "multicast_ratio": 0.06, "integrity": 0.9,
            },
            config={"packet_rate_max": 100_000.0},
            components=_network,
        ),
        DomainSpec(
            key="business",
            label="Business Operations",
            nominal={
                "revenue_growth": 0.15, "gross_margin": 0.70, "churn_rate": 0.08, "ltv_cac": 3.2,
                "cash_runway": 18.0, "net_revenue_retention": 1.12,
            },
            config={"churn_reference": 0.1, "runway_reference": 24.0},
            components=_business,
        ),
        DomainSpec(
            key="portfolio",
            label="Investment Portfolio",
            nominal={
                "volatility": 0.18, "max_drawdown": 0.12, "sharpe_ratio": 1.1,
                "beta": 1.0, "concentration": 0.25,
            },
            config={"volatility_reference": 0.5, "drawdown_reference": 0.5},
            components=_portfolio,
        ),
        DomainSpec(
            key="cliodynamics",
            label="Polity (Structural-Demographic)",
            nominal={
                "population": 1_000_000.0, "elite_share": 0.0005, "real_wage_index": 1.0,
                "urbanization": 0.2, "warfare": 0.0,
            },
            components=_cliodynamics,
            dissonance=_cliodynamics_d,
        ),
    ]
    return {spec.key: spec for spec in specs}


DOMAINS: Dict[str, DomainSpec] = build_registry()


def get_domain(domain_id: str) -> DomainSpec:
    try:
        return DOMAINS[domain_id]
    except KeyError:
        raise UnknownDomain(domain_id) from None


def domain_ids() -> List[str]:
    return list(DOMAINS)


def _coerce(value: object) -> Optional[float]:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def resolve_fields(
    spec: DomainSpec,
    telemetry: Fields,
    domain_config: Optional[Fields] = None,
) -> Dict[str, float]:
    """Layer built-in ratings, nominal readings, caller configuration and telemetry.

    Later layers win. Non-numeric and non-finite values are treated as missing
    and fall back to the layer below.
    """
    merged: Dict[str, float] = dict(spec.config)
    merged.update(spec.nominal)
    for layer in (domain_config or {}, telemetry):
        for key, value in layer.items():
            number = _coerce(value)
            if number is not None:
                merged[key] = number
    return merged


def assess_status(
    domain_id: str,
    telemetry: Union[TelemetryReading, Fields],
    domain_config: Optional[Fields] = None,
) -> Optional[DomainStatus]:
    """Status levels and recommendations for one reading, or None for domains without them."""
    spec = get_domain(domain_id)
    if spec.status is None:
        return None
    fields = telemetry.fields if isinstance(telemetry, TelemetryReading) else telemetry
    return spec.status(resolve_fields(spec, fields, domain_config))


def compute_squd(
    domain_id: str,
    telemetry: Union[TelemetryReading, Fields],
    domain_config: Optional[Fields] = None,
    weights: Optional[Mapping[str, Optional[float]]] = None,
) -> SQUDScore:
    """Map one telemetry reading to a bounded SQUD score.

    Missing or non-finite fields take the domain's nominal defaults; NaN and
    infinities produced by the arithmetic are clamped into each metric's
    interval rather than raised.
    """
    spec = get_domain(domain_id)
    fields = telemetry.fields if isinstance(telemetry, TelemetryReading) else telemetry
    resolved = resolve_fields(spec, fields, domain_config)

    profile = spec.profile
    if weights:
        profile = profile.with_weights(
            w_s=weights.get("w_s"), w_q=weights.get("w_q"), w_u=weights.get("w_u")
        )

    s, q, u = spec.components(resolved)
    d = spec.dissonance(resolved) if spec.dissonance is not None else None
    return score_from_components(s, q, u, profile, D=d)
