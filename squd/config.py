from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


COMPARISON_METRICS = ("S", "Q", "U", "D")


class RiskTierThresholds(BaseModel):
    """Health breakpoints for risk tiers; each bound is exclusive."""

    critical_below: float = Field(50.0, description="health < this is 'critical'")
    high_below: float = Field(60.0, description="health < this is 'high'")
    medium_below: float = Field(70.0, description="health < this is 'medium'; otherwise 'low'")

    @model_validator(mode="after")
    def _ordered(self) -> "RiskTierThresholds":
        if not (self.critical_below <= self.high_below <= self.medium_below):
            raise ValueError("risk tier breakpoints must be non-decreasing")
        return self


class CohortThresholds(BaseModel):
    review_below: float = Field(60.0, description="mean health < this needs comprehensive review")
    excellent_above: float = Field(80.0, description="mean health > this is excellent")
    high_dispersion_above: float = Field(400.0, description="health variance > this is high dispersion")
    moderate_dispersion_above: float = 100.0
    benchmark_above: float = Field(85.0, description="best member health > this is a benchmark")
    attention_below: float = Field(70.0, description="member health < this needs attention")


class WeightOverride(BaseModel):
    w_s: Optional[float] = None
    w_q: Optional[float] = None
    w_u: Optional[float] = None


class ComparisonConfiguration(BaseModel):
    metrics: List[str] = Field(default_factory=lambda: list(COMPARISON_METRICS))
    correlation_enabled: bool = True
    stream_interval_sec: Optional[float] = Field(
        None, gt=0, description="Tick cadence; falls back to RuntimeConfig.stream_interval_sec"
    )
    window_size: Optional[int] = Field(
        None, ge=2, description="Most recent snapshots per domain used for alignment"
    )

    @field_validator("metrics")
    @classmethod
    def _known_metrics(cls, v: List[str]) -> List[str]:
        unknown = [m for m in v if m not in COMPARISON_METRICS]
        if unknown:
            raise ValueError(f"unknown metrics: {unknown}")
        if not v:
            raise ValueError("at least one metric is required")
        return v


class RuntimeConfig(BaseModel):
    snapshot_capacity: int = Field(10_000, ge=1, description="Snapshots retained per domain/entity")
    stream_interval_sec: float = Field(60.0, gt=0, description="Default live comparison cadence")
    window_size: int = Field(100, ge=2)
    poll_interval_sec: float = Field(60.0, gt=0, description="Ingestion polling cadence")
    max_workers: int = Field(6, ge=1, description="Parallel per-domain fetches in one run")
    network_timeout_sec: int = 10
    max_retries: int = 5
    backoff_base_sec: float = 0.5
    backoff_cap_sec: float = 10.0
    risk_tiers: RiskTierThresholds = Field(default_factory=RiskTierThresholds)
    cohort: CohortThresholds = Field(default_factory=CohortThresholds)
    domains: Dict[str, Dict[str, float]] = Field(
        default_factory=dict, description="Per-domain nominal values and thresholds"
    )
    weights: Dict[str, WeightOverride] = Field(default_factory=dict)

    def domain_config(self, domain_id: str) -> Dict[str, float]:
        return dict(self.domains.get(domain_id, {}))

    def domain_weights(self, domain_id: str) -> Optional[Dict[str, Optional[float]]]:
        override = self.weights.get(domain_id)
        return override.model_dump() if override is not None else None


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    LOG_LEVEL: str = "INFO"

    # Remote telemetry gateway
    TELEMETRY_BASE_URL: Optional[str] = None
    TELEMETRY_API_KEY: Optional[str] = None


class AppConfig(BaseModel):
    env: EnvSettings
    runtime: RuntimeConfig

    # Allow tests to pass a plain dict or attribute bag for env
    @field_validator("env", mode="before")
    @classmethod
    def _coerce_env(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, EnvSettings):
            return v
        if isinstance(v, dict):
            return EnvSettings(**v)
        keys = ["LOG_LEVEL", "TELEMETRY_BASE_URL", "TELEMETRY_API_KEY"]
        data = {k: getattr(v, k) for k in keys if hasattr(v, k)}
        if data:
            return EnvSettings(**data)
        return v

    @staticmethod
    def load(config_path: Optional[Path] = None) -> "AppConfig":
        env = EnvSettings()  # loads from environment and .env

        runtime = RuntimeConfig()
        if config_path is None:
            default_path = Path("config.yaml")
            config_path = default_path if default_path.exists() else None

        if config_path and Path(config_path).exists():
            with open(config_path, "r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            try:
                runtime = RuntimeConfig(**raw)
            except ValidationError as ve:
                raise ValueError(f"Invalid {config_path}: {ve}") from ve

        return AppConfig(env=env, runtime=runtime)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load merged configuration from environment and optional YAML."""

    return AppConfig.load(config_path)
