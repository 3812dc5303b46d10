from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

from .indicators import clip


Fields = Mapping[str, float]

LEVELS = ("normal", "warn", "alarm")

# Sub-system health shown next to each normal/warn/alarm level
_LEVEL_HEALTH = {"normal": 90.0, "warn": 70.0, "alarm": 50.0}


@dataclass(frozen=True)
class DomainStatus:
    """Operator-facing view of one reading: per-check levels plus advice."""

    statuses: Mapping[str, str]
    recommendations: Tuple[str, ...]
    component_health: Mapping[str, float] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "statuses": dict(self.statuses),
            "recommendations": list(self.recommendations),
            "component_health": dict(self.component_health),
        }


def _above(value: float, warn: float, alarm: float) -> str:
    if value > alarm:
        return "alarm"
    if value > warn:
        return "warn"
    return "normal"


def _at_or_above(value: float, warn: float, alarm: float) -> str:
    if value >= alarm:
        return "alarm"
    if value >= warn:
        return "warn"
    return "normal"


def _worst(*levels: str) -> str:
    return max(levels, key=LEVELS.index)


def _pct_deviation(value: float, nominal: float) -> float:
    # A zero rating can never be met, so treat it as out of band
    if nominal == 0:
        return math.inf
    return abs((value - nominal) / nominal) * 100.0


def _finish(
    statuses: Dict[str, str],
    recommendations: List[str],
    component_health: Dict[str, float],
    all_clear: str,
) -> DomainStatus:
    if not recommendations:
        recommendations.append(all_clear)
    return DomainStatus(statuses, tuple(recommendations), component_health)


def grid_status(f: Fields) -> DomainStatus:
    voltage_dev = _pct_deviation(f["voltage"], f["voltage_nominal"])
    freq_dev = abs(f["frequency"] - f["frequency_nominal"])
    v_tol = f["voltage_tolerance"]
    f_tol = f["frequency_tolerance"]

    voltage = _above(voltage_dev, v_tol, v_tol * 1.5)
    frequency = _above(freq_dev, f_tol * 1.5, f_tol * 3.0)
    quality = _worst(voltage, frequency)
    temp, temp_max = f["transformer_temp"], f["transformer_temp_max"]
    transformer = _at_or_above(temp, temp_max - 10.0, temp_max)
    outage = voltage_dev > v_tol * 3.0 or freq_dev > f_tol * 5.0

    recs: List[str] = []
    if voltage == "alarm":
        recs.append(f"Critical voltage deviation ({voltage_dev:.2f}% from nominal), immediate action required")
    elif voltage == "warn":
        recs.append(f"Voltage approaching limits ({voltage_dev:.2f}% deviation), monitor closely")
    if frequency == "alarm":
        recs.append(f"Critical frequency deviation ({freq_dev:.3f} Hz from nominal), grid stability at risk")
    elif frequency == "warn":
        recs.append(f"Frequency deviation ({freq_dev:.3f} Hz), monitor grid load")
    if transformer == "alarm":
        recs.append(f"Transformer overheating ({temp:.1f} C), check cooling immediately")
    elif transformer == "warn":
        recs.append(f"Transformer temperature elevated ({temp:.1f} C), monitor cooling system")
    if outage:
        recs.append("Potential outage condition detected, initiate emergency procedures")

    statuses = {
        "voltage": voltage,
        "frequency": frequency,
        "power_quality": quality,
        "transformer": transformer,
        "outage": "alarm" if outage else "normal",
    }
    components = {
        "voltage_regulation": _LEVEL_HEALTH[voltage],
        "frequency_control": _LEVEL_HEALTH[frequency],
        "transformer": _LEVEL_HEALTH[transformer],
        "power_quality": _LEVEL_HEALTH[quality],
    }
    return _finish(statuses, recs, components, "All grid parameters within normal operating ranges")


def medical_status(f: Fields) -> DomainStatus:
    hr, rr, sbp = f["heart_rate"], f["respiratory_rate"], f["systolic_bp"]
    temp, spo2 = f["body_temp"], f["oxygen_saturation"]

    vitals = {
        "heart_rate": "tachycardia" if hr > 100 else "bradycardia" if hr < 60 else "normal",
        "respiratory_rate": "tachypnea" if rr > 20 else "bradypnea" if rr < 12 else "normal",
        "blood_pressure": "hypertension" if sbp > 140 else "hypotension" if sbp < 90 else "normal",
        "temperature": "fever" if temp > 38 else "hypothermia" if temp < 36 else "normal",
        "oxygen_saturation": "hypoxia" if spo2 < 95 else "normal",
    }

    recs: List[str] = []
    if vitals["heart_rate"] != "normal":
        recs.append(f"Heart rate {vitals['heart_rate']} ({hr:g} bpm), monitor cardiac function")
    if vitals["respiratory_rate"] != "normal":
        recs.append(f"Respiratory rate {vitals['respiratory_rate']} ({rr:g} breaths/min), assess respiratory function")
    if vitals["blood_pressure"] != "normal":
        recs.append(f"Blood pressure {vitals['blood_pressure']} ({sbp:g} mmHg systolic), monitor hemodynamics")
    if vitals["temperature"] != "normal":
        recs.append(f"Temperature {vitals['temperature']} ({temp:.1f} C), assess thermoregulation")
    if vitals["oxygen_saturation"] == "hypoxia":
        recs.append(f"Oxygen saturation low ({spo2:g}%), consider supplemental oxygen")

    hr_dev = _pct_deviation(hr, f["baseline_heart_rate"]) / 100.0
    bp_dev = _pct_deviation(sbp, f["baseline_systolic_bp"]) / 100.0
    temp_dev = _pct_deviation(temp, f["baseline_body_temp"]) / 100.0
    rr_urgency = (rr - 20) / 10.0 if rr > 20 else (12 - rr) / 6.0 if rr < 12 else 0.0
    components = {
        "cardiovascular": clip(100.0 - (hr_dev * 50.0 + bp_dev * 50.0), 0.0, 100.0),
        "respiratory": clip(100.0 - rr_urgency * 100.0, 0.0, 100.0),
        "oxygenation": clip(spo2, 0.0, 100.0),
        "thermoregulation": clip(100.0 - temp_dev * 100.0, 0.0, 100.0),
    }
    return _finish(vitals, recs, components, "All vital signs within normal ranges, continue routine monitoring")


def wind_status(f: Fields) -> DomainStatus:
    availability = f["availability"]
    speed = f["wind_speed"]
    gearbox, nacelle, vibration = f["gearbox_temp"], f["nacelle_temp"], f["vibration"]

    avail = "normal" if availability > 95 else "warn" if availability > 90 else "alarm"
    gear_level = _above(gearbox, f["gearbox_temp_warn"], f["gearbox_temp_alarm"])
    nacelle_level = _above(nacelle, f["nacelle_temp_warn"], f["nacelle_temp_alarm"])
    vib_level = _above(vibration, f["vibration_warn"], f["vibration_alarm"])
    drivetrain = _worst(gear_level, nacelle_level, vib_level)

    recs: List[str] = []
    if availability < 90:
        recs.append(f"Availability below target ({availability:.1f}%), investigate downtime and curtailment")
    if drivetrain == "alarm":
        if gear_level == "alarm":
            recs.append(f"Critical gearbox temperature ({gearbox:.1f} C), immediate inspection required")
        if nacelle_level == "alarm":
            recs.append(f"Critical nacelle temperature ({nacelle:.1f} C), check nacelle cooling")
        if vib_level == "alarm":
            recs.append(f"High vibration ({vibration:.1f} mm/s), potential bearing or drivetrain issue")
    elif drivetrain == "warn":
        recs.append("Drivetrain parameters approaching limits, monitor closely")
    if speed < f["cut_in_wind_speed"]:
        recs.append(f"Wind speed below cut-in ({speed:.1f} m/s), normal low wind conditions")
    elif speed > f["cut_out_wind_speed"]:
        recs.append(f"Wind speed above cut-out ({speed:.1f} m/s), turbine shut down for protection")

    statuses = {"availability": avail, "drivetrain": drivetrain}
    components = {
        "turbine_availability": {"normal": 90.0, "warn": 75.0, "alarm": 60.0}[avail],
        "drivetrain_condition": _LEVEL_HEALTH[drivetrain],
    }
    return _finish(statuses, recs, components, "Turbine operating within normal parameters")


def industrial_status(f: Fields) -> DomainStatus:
    vibration = _at_or_above(f["vibration"], f["vibration_warn"], f["vibration_alarm"])
    temperature = _at_or_above(f["temperature"], f["temperature_warn"], f["temperature_alarm"])
    p, p_min, p_max = f["pressure"], f["pressure_min"], f["pressure_max"]
    if p < p_min or p > p_max:
        pressure = "alarm"
    elif p < p_min + 0.5 or p > p_max - 0.5:
        pressure = "warn"
    else:
        pressure = "normal"

    if vibration == "alarm":
        fault = "bearing"
    elif temperature == "alarm":
        fault = "overheating"
    else:
        fault = "none"

    recs: List[str] = []
    if vibration == "alarm":
        recs.append("Immediate bearing inspection recommended, vibration exceeds alarm threshold")
    elif vibration == "warn":
        recs.append("Monitor vibration trends, approaching alarm threshold")
    if temperature == "alarm":
        recs.append("Immediate cooling system check required, temperature critical")
    elif temperature == "warn":
        recs.append("Monitor temperature, approaching alarm threshold")
    if pressure == "alarm":
        recs.append("Pressure outside acceptable range, check pressure regulation")

    statuses = {"vibration": vibration, "temperature": temperature, "pressure": pressure, "fault_type": fault}
    components = {
        "vibration_sensor": _LEVEL_HEALTH[vibration],
        "temperature_sensor": _LEVEL_HEALTH[temperature],
        "pressure_sensor": _LEVEL_HEALTH[pressure],
    }
    return _finish(statuses, recs, components, "All systems operating within normal parameters")
