from __future__ import annotations

import time
from pathlib import Path

import pytest

from squd.config import AppConfig, RuntimeConfig
from squd.core.indicators import TelemetryReading
from squd.core.session import ComparisonSessionManager
from squd.core.store import SnapshotStore
from squd.data.ingest import TelemetryIngestor
from squd.data.telemetry import CsvTelemetrySource, SyntheticTelemetrySource, TelemetrySource


def make_config() -> AppConfig:
    runtime = RuntimeConfig()
    cfg = AppConfig(env=type("E", (), {"LOG_LEVEL": "INFO", "TELEMETRY_BASE_URL": None, "TELEMETRY_API_KEY": None})(), runtime=runtime)  # type: ignore
    return cfg


class BrokenSource(TelemetrySource):
    def read(self, entity_id: str) -> TelemetryReading:
        raise RuntimeError("sensor offline")


def test_ingest_scores_and_stores() -> None:
    cfg = make_config()
    store = SnapshotStore()
    ingestor = TelemetryIngestor(cfg, store)
    snap = ingestor.ingest(TelemetryReading("grid", "sub-1", 10.0, {"voltage": 13.8}))
    assert snap is not None
    assert store.latest("grid", "sub-1") == snap
    assert 0.0 <= snap.health <= 100.0


def test_stale_reading_is_dropped() -> None:
    store = SnapshotStore()
    ingestor = TelemetryIngestor(make_config(), store)
    assert ingestor.ingest(TelemetryReading("grid", "sub-1", 10.0, {})) is not None
    assert ingestor.ingest(TelemetryReading("grid", "sub-1", 10.0, {})) is None
    assert ingestor.ingest(TelemetryReading("grid", "sub-1", 5.0, {})) is None
    assert store.size("grid", "sub-1") == 1


def test_runtime_domain_config_reaches_scoring() -> None:
    cfg = make_config()
    cfg.runtime.domains = {"grid": {"voltage_nominal": 230.0}}
    store = SnapshotStore()
    ingestor = TelemetryIngestor(cfg, store)
    snap = ingestor.ingest(TelemetryReading("grid", "sub-1", 1.0, {"voltage": 230.0}))
    assert snap is not None and snap.score.S == 0.85
    bare = TelemetryIngestor(make_config(), SnapshotStore())
    off = bare.ingest(TelemetryReading("grid", "sub-1", 1.0, {"voltage": 230.0}))
    assert off is not None and off.score.S == 0.45


def test_register_checks_domain() -> None:
    ingestor = TelemetryIngestor(make_config(), SnapshotStore())
    with pytest.raises(ValueError):
        ingestor.register("wind", "t-1", SyntheticTelemetrySource("grid", start_ts=0.0))
    ingestor.register("grid", "sub-1", SyntheticTelemetrySource("grid", start_ts=0.0))
    assert ingestor.registrations() == [("grid", "sub-1")]
    assert ingestor.unregister("grid", "sub-1") is not None
    assert ingestor.registrations() == []


def test_poll_and_backfill() -> None:
    store = SnapshotStore()
    ingestor = TelemetryIngestor(make_config(), store)
    assert ingestor.poll("grid", "sub-1") is None
    ingestor.register("grid", "sub-1", SyntheticTelemetrySource("grid", start_ts=0.0, interval_sec=10.0))
    assert ingestor.poll("grid", "sub-1") is not None
    stored = ingestor.backfill("grid", "sub-1", 9)
    assert len(stored) == 9
    assert [s.timestamp for s in store.series("grid", "sub-1")] == [10.0 * i for i in range(10)]
    assert ingestor.backfill("wind", "t-1", 5) == []


def test_backfill_stops_when_replay_is_exhausted(tmp_path: Path) -> None:
    path = tmp_path / "wind.csv"
    path.write_text("timestamp,entity_id,wind_speed\n1,t-1,9\n2,t-1,11\n", encoding="utf-8")
    store = SnapshotStore()
    ingestor = TelemetryIngestor(make_config(), store)
    ingestor.register("wind", "t-1", CsvTelemetrySource(path, "wind"))
    assert len(ingestor.backfill("wind", "t-1", 10)) == 2
    assert ingestor.poll("wind", "t-1") is None


def test_poll_all_survives_a_broken_source() -> None:
    store = SnapshotStore()
    ingestor = TelemetryIngestor(make_config(), store)
    ingestor.register("grid", "sub-1", BrokenSource("grid"))
    ingestor.register("wind", "t-1", SyntheticTelemetrySource("wind", start_ts=0.0))
    assert ingestor.poll_all() == 1
    assert store.size("wind", "t-1") == 1
    with pytest.raises(RuntimeError):
        ingestor.poll("grid", "sub-1")


def test_background_polling() -> None:
    cfg = make_config()
    cfg.runtime.poll_interval_sec = 0.02
    store = SnapshotStore()
    ingestor = TelemetryIngestor(cfg, store)
    ingestor.register("solar", "p-1", SyntheticTelemetrySource("solar", start_ts=0.0))
    ingestor.start()
    ingestor.start()
    assert ingestor.is_running()
    deadline = time.monotonic() + 5.0
    while store.size("solar", "p-1") < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    ingestor.close()
    assert not ingestor.is_running()
    assert store.size("solar", "p-1") >= 3


def test_session_polls_attached_ingestor() -> None:
    cfg = make_config()
    store = SnapshotStore()
    ingestor = TelemetryIngestor(cfg, store)
    ingestor.register("grid", "sub-1", SyntheticTelemetrySource("grid", start_ts=0.0))
    ingestor.register("wind", "t-1", BrokenSource("wind"))
    manager = ComparisonSessionManager(cfg, store, ingestor=ingestor)
    session = manager.create(["grid", "wind"], entities={"grid": "sub-1", "wind": "t-1"})
    payload = manager.run_once(session)
    # The broken fetch falls back to what is stored, which is nothing
    assert list(payload["domains"]) == ["grid"]
    assert store.size("grid", "sub-1") == 1
    assert "no snapshots yet for wind" in payload["insights"]
