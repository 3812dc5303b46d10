from __future__ import annotations

import json
import signal
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from squd.config import AppConfig, ComparisonConfiguration, load_config
from squd.core.cohort import Cohort
from squd.core.domains import DOMAINS, get_domain
from squd.core.errors import SQUDError
from squd.core.health import diagnose
from squd.core.indicators import TelemetryReading
from squd.core.session import ComparisonSessionManager
from squd.core.store import SnapshotStore
from squd.data.ingest import TelemetryIngestor
from squd.data.telemetry import CsvTelemetrySource, SyntheticTelemetrySource
from squd.utils.logging import setup_logging


app = typer.Typer(add_completion=False, help="Cross-domain SQUD health scoring and comparison.")


def _bootstrap(config_path: Optional[Path], log_level: Optional[str]) -> AppConfig:
    cfg = load_config(config_path)
    setup_logging(log_level or cfg.env.LOG_LEVEL)
    return cfg


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _fail(exc: Exception) -> None:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=2)


def _parse_fields(pairs: List[str]) -> Dict[str, float]:
    fields: Dict[str, float] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise typer.BadParameter(f"expected NAME=VALUE, got {pair!r}")
        try:
            fields[name.strip()] = float(value)
        except ValueError:
            raise typer.BadParameter(f"{name} is not numeric: {value!r}") from None
    return fields


def _synthetic_ingestor(
    cfg: AppConfig,
    store: SnapshotStore,
    domains: List[str],
    entity_id: str,
    start_ts: float,
    interval_sec: float,
    seed: int,
) -> TelemetryIngestor:
    ingestor = TelemetryIngestor(cfg, store)
    for i, domain_id in enumerate(domains):
        source = SyntheticTelemetrySource(
            domain_id,
            start_ts=start_ts,
            interval_sec=interval_sec,
            phase=i * 0.5,
            noise=0.01,
            seed=seed + i,
        )
        ingestor.register(domain_id, entity_id, source)
    return ingestor


@app.command()
def domains() -> None:
    """List registered domains."""
    for key, spec in DOMAINS.items():
        typer.echo(f"{key:<18} {spec.profile.mode:<9} {spec.label}")


@app.command()
def assess(
    domain: str = typer.Argument(..., help="Domain id, see `domains`"),
    field: List[str] = typer.Option([], "--field", "-f", help="Telemetry field as NAME=VALUE; repeatable"),
    entity: str = typer.Option("default"),
    config: Optional[Path] = typer.Option(None, help="Path to config.yaml"),
    log_level: Optional[str] = typer.Option(None),
) -> None:
    """Score one reading; unspecified fields take the domain's nominal values.

    Domains with status checks also print their levels and recommendations.
    """
    cfg = _bootstrap(config, log_level)
    try:
        get_domain(domain)
        reading = TelemetryReading(domain, entity, time.time(), _parse_fields(field))
        result = diagnose(
            reading,
            cfg.runtime.domain_config(domain),
            cfg.runtime.domain_weights(domain),
            cfg.runtime.risk_tiers,
        )
    except SQUDError as exc:
        _fail(exc)
        return
    _echo_json(result.as_dict())


@app.command()
def compare(
    domain: List[str] = typer.Argument(..., help="Two to six domain ids"),
    points: int = typer.Option(100, min=1, help="Synthetic readings backfilled per domain"),
    window: Optional[int] = typer.Option(None, min=2, help="Snapshots per domain used for correlation"),
    csv_path: List[str] = typer.Option(
        [], "--csv", help="Replay DOMAIN=PATH CSV instead of synthetic data for that domain; repeatable"
    ),
    entity: str = typer.Option("default"),
    seed: int = typer.Option(7),
    config: Optional[Path] = typer.Option(None, help="Path to config.yaml"),
    log_level: Optional[str] = typer.Option(None),
) -> None:
    """Backfill, run one comparison and print the payload."""
    cfg = _bootstrap(config, log_level)
    store = SnapshotStore(cfg.runtime.snapshot_capacity)
    interval = cfg.runtime.stream_interval_sec
    start_ts = time.time() - points * interval
    try:
        ingestor = _synthetic_ingestor(cfg, store, domain, entity, start_ts, interval, seed)
        for item in csv_path:
            domain_id, sep, path = item.partition("=")
            if not sep:
                raise typer.BadParameter(f"expected DOMAIN=PATH, got {item}")
            ingestor.register(domain_id, entity, CsvTelemetrySource(path, domain_id))
        for domain_id in domain:
            ingestor.backfill(domain_id, entity, points)
        manager = ComparisonSessionManager(cfg, store)
        session = manager.create(
            domain,
            ComparisonConfiguration(window_size=window),
            entities={d: entity for d in domain},
        )
        payload = manager.run_once(session)
    except (SQUDError, OSError) as exc:
        _fail(exc)
        return
    _echo_json(payload)


@app.command()
def stream(
    domain: List[str] = typer.Argument(..., help="Two to six domain ids"),
    ticks: int = typer.Option(5, min=1, help="Payloads to print before exiting"),
    interval: float = typer.Option(1.0, min=0.01, help="Seconds between ticks"),
    entity: str = typer.Option("default"),
    seed: int = typer.Option(7),
    config: Optional[Path] = typer.Option(None, help="Path to config.yaml"),
    log_level: Optional[str] = typer.Option(None),
) -> None:
    """Run a live comparison fed by synthetic telemetry until --ticks payloads are printed."""
    cfg = _bootstrap(config, log_level)
    store = SnapshotStore(cfg.runtime.snapshot_capacity)
    stop_event = threading.Event()
    emitted = {"count": 0}

    def on_payload(session_id: str, payload: Dict[str, Any]) -> None:
        _echo_json(payload)
        emitted["count"] += 1
        if emitted["count"] >= ticks:
            stop_event.set()

    def handle_signal(signum, frame):  # noqa: ANN001
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        ingestor = _synthetic_ingestor(cfg, store, domain, entity, time.time(), interval, seed)
        manager = ComparisonSessionManager(cfg, store, sink=on_payload, ingestor=ingestor)
        session = manager.create(
            domain,
            ComparisonConfiguration(stream_interval_sec=interval),
            entities={d: entity for d in domain},
        )
        manager.start_stream(session)
    except SQUDError as exc:
        _fail(exc)
        return
    try:
        while not stop_event.is_set():
            time.sleep(0.1)
    finally:
        manager.shutdown()
        ingestor.close()
    typer.echo(f"runs={session.runs} skipped_ticks={session.skipped_ticks}", err=True)


@app.command()
def cohort(
    domain: str = typer.Argument(..., help="Domain id shared by all members"),
    members: int = typer.Option(10, min=1, help="Synthetic members in the group"),
    spread: float = typer.Option(0.15, min=0.0, help="Per-member offset from nominal, as a fraction"),
    seed: int = typer.Option(7),
    config: Optional[Path] = typer.Option(None, help="Path to config.yaml"),
    log_level: Optional[str] = typer.Option(None),
) -> None:
    """Aggregate a synthetic group of same-domain entities and print insights."""
    cfg = _bootstrap(config, log_level)
    store = SnapshotStore(cfg.runtime.snapshot_capacity)
    ingestor = TelemetryIngestor(cfg, store)
    now = time.time()
    try:
        for i in range(members):
            entity_id = f"{domain}-{i + 1:03d}"
            source = SyntheticTelemetrySource(
                domain, start_ts=now, amplitude=spread, period=members, phase=0.0, seed=seed + i
            )
            # Advance each member to a different point on the wave
            for _ in range(i):
                source.read(entity_id)
            ingestor.register(domain, entity_id, source)
            ingestor.poll(domain, entity_id)
        group = Cohort.from_store(store, domain, thresholds=cfg.runtime.cohort)
    except SQUDError as exc:
        _fail(exc)
        return
    agg = group.aggregate()
    if agg is None:
        _fail(ValueError("no members were scored"))
        return
    _echo_json(
        {
            "group_id": agg.group_id,
            "member_count": agg.member_count,
            "mean": agg.mean.as_dict(),
            "mean_health": agg.mean_health,
            "health_variance": agg.health_variance,
            "best_member_id": agg.best_member_id,
            "worst_member_id": agg.worst_member_id,
            "insights": group.insights(),
        }
    )


if __name__ == "__main__":
    app()
