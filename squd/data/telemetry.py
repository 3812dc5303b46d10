from __future__ import annotations

import csv
import logging
import math
import threading
import time
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import numpy as np
import requests

from ..config import AppConfig
from ..core.domains import get_domain
from ..core.errors import InvalidConfiguration, TelemetryExhausted
from ..core.indicators import TelemetryReading
from ..utils.retry import with_retries


logger = logging.getLogger(__name__)


def _numeric_fields(raw: Mapping[str, object]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for key, value in raw.items():
        if value is None or value == "":
            continue
        try:
            out[key] = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
    return out


class TelemetrySource:
    """Produces readings for one domain, one entity at a time."""

    def __init__(self, domain_id: str) -> None:
        get_domain(domain_id)
        self.domain_id = domain_id

    def read(self, entity_id: str) -> TelemetryReading:
        raise NotImplementedError

    def close(self) -> None:
        return None


class SyntheticTelemetrySource(TelemetrySource):
    """Deterministic generator around a domain's nominal reading.

    Each field follows ``nominal * (1 + amplitude * sin(2*pi*k/period + phase))``
    plus gaussian noise scaled by ``noise``. Every entity keeps its own step
    counter, so timestamps per entity advance by ``interval_sec`` and never
    repeat.
    """

    def __init__(
        self,
        domain_id: str,
        start_ts: Optional[float] = None,
        interval_sec: float = 60.0,
        amplitude: float = 0.05,
        period: int = 100,
        phase: float = 0.0,
        noise: float = 0.0,
        seed: Optional[int] = None,
        overrides: Optional[Mapping[str, float]] = None,
    ) -> None:
        super().__init__(domain_id)
        if interval_sec <= 0:
            raise InvalidConfiguration("interval_sec must be positive")
        if period < 1:
            raise InvalidConfiguration("period must be at least 1")
        self.start_ts = float(start_ts) if start_ts is not None else time.time()
        self.interval_sec = float(interval_sec)
        self.amplitude = amplitude
        self.period = period
        self.phase = phase
        self.noise = noise
        self._nominal = dict(get_domain(domain_id).nominal)
        self._nominal.update(overrides or {})
        self._rng = np.random.default_rng(seed)
        self._steps: Dict[str, int] = {}
        self._lock = threading.Lock()

    def read(self, entity_id: str) -> TelemetryReading:
        with self._lock:
            k = self._steps.get(entity_id, 0)
            self._steps[entity_id] = k + 1
            wave = self.amplitude * math.sin(2.0 * math.pi * k / self.period + self.phase)
            fields = {}
            for name, base in self._nominal.items():
                jitter = float(self._rng.normal(0.0, self.noise)) if self.noise > 0 else 0.0
                fields[name] = base * (1.0 + wave + jitter)
        return TelemetryReading(
            domain_id=self.domain_id,
            entity_id=entity_id,
            timestamp=self.start_ts + k * self.interval_sec,
            fields=fields,
        )


class CsvTelemetrySource(TelemetrySource):
    """Replays a CSV export with ``entity_id``, ``timestamp`` and field columns.

    Rows are grouped per entity and replayed in timestamp order. Rows with a
    missing entity or an unparseable timestamp are skipped.
    """

    def __init__(self, path: Union[str, Path], domain_id: str) -> None:
        super().__init__(domain_id)
        self.path = Path(path)
        self._queues: Dict[str, List[TelemetryReading]] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        skipped = 0
        with open(self.path, "r", encoding="utf-8", newline="") as fh:
            for row in csv.DictReader(fh):
                entity_id = (row.pop("entity_id", None) or "").strip()
                raw_ts = row.pop("timestamp", None)
                try:
                    ts = float(raw_ts)  # type: ignore[arg-type]
                except (TypeError, ValueError):
                    skipped += 1
                    continue
                if not entity_id or not math.isfinite(ts):
                    skipped += 1
                    continue
                row.pop("domain_id", None)
                self._queues.setdefault(entity_id, []).append(
                    TelemetryReading(self.domain_id, entity_id, ts, _numeric_fields(row))
                )
        for queue in self._queues.values():
            queue.sort(key=lambda r: r.timestamp)
            queue.reverse()
        if skipped:
            logger.warning("skipped malformed telemetry rows", extra={"path": str(self.path), "rows": skipped})

    def entities(self) -> List[str]:
        with self._lock:
            return list(self._queues)

    def remaining(self, entity_id: str) -> int:
        with self._lock:
            return len(self._queues.get(entity_id, []))

    def read(self, entity_id: str) -> TelemetryReading:
        with self._lock:
            queue = self._queues.get(entity_id)
            if not queue:
                raise TelemetryExhausted(f"no more rows for {self.domain_id}/{entity_id} in {self.path}")
            return queue.pop()


class HttpTelemetrySource(TelemetrySource):
    """Polls ``GET {base}/telemetry/{domain}/{entity}/latest`` on a gateway.

    The body is either ``{"timestamp": ..., "fields": {...}}`` or a flat object
    whose non-timestamp keys are the fields. Transport errors and 5xx replies
    are retried with exponential backoff.
    """

    def __init__(
        self,
        config: AppConfig,
        domain_id: str,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,  # type: ignore[no-untyped-def]
    ) -> None:
        super().__init__(domain_id)
        base = config.env.TELEMETRY_BASE_URL
        if not base:
            raise InvalidConfiguration("TELEMETRY_BASE_URL is not set")
        self.base_url = base.rstrip("/")
        self.config = config
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "squd-telemetry/0.1", "Accept": "application/json"})
        if config.env.TELEMETRY_API_KEY:
            self._session.headers["Authorization"] = f"Bearer {config.env.TELEMETRY_API_KEY}"

    def _url(self, entity_id: str) -> str:
        return f"{self.base_url}/telemetry/{self.domain_id}/{entity_id}/latest"

    def _fetch(self, entity_id: str) -> Dict[str, object]:
        resp = self._session.get(self._url(entity_id), timeout=self.config.runtime.network_timeout_sec)
        if resp.status_code == 404:
            raise TelemetryExhausted(f"gateway has no telemetry for {self.domain_id}/{entity_id}")
        if resp.status_code >= 500:
            raise _ServerError(f"{resp.status_code} from {resp.url}", response=resp)
        resp.raise_for_status()
        return resp.json()

    def read(self, entity_id: str) -> TelemetryReading:
        rt = self.config.runtime
        body = with_retries(
            lambda: self._fetch(entity_id),
            max_attempts=rt.max_retries,
            base_seconds=rt.backoff_base_sec,
            cap_seconds=rt.backoff_cap_sec,
            retry_on=(requests.ConnectionError, requests.Timeout, _ServerError),
            sleep=self._sleep,
        )
        try:
            ts = float(body["timestamp"])  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"telemetry for {self.domain_id}/{entity_id} has no usable timestamp") from exc
        if not math.isfinite(ts):
            raise ValueError(f"telemetry for {self.domain_id}/{entity_id} has non-finite timestamp {ts}")
        raw = body.get("fields")
        if not isinstance(raw, Mapping):
            raw = {k: v for k, v in body.items() if k not in ("timestamp", "entity_id", "domain_id")}
        return TelemetryReading(self.domain_id, entity_id, ts, _numeric_fields(raw))

    def close(self) -> None:
        self._session.close()


class _ServerError(requests.HTTPError):
    pass


def build_source(
    kind: str,
    domain_id: str,
    config: Optional[AppConfig] = None,
    path: Optional[Union[str, Path]] = None,
    **kwargs: object,
) -> TelemetrySource:
    """Construct a source by name: ``synthetic``, ``csv`` or ``http``."""
    if kind == "synthetic":
        return SyntheticTelemetrySource(domain_id, **kwargs)  # type: ignore[arg-type]
    if kind == "csv":
        if path is None:
            raise InvalidConfiguration("csv telemetry needs a path")
        return CsvTelemetrySource(path, domain_id)
    if kind == "http":
        if config is None:
            raise InvalidConfiguration("http telemetry needs an AppConfig")
        return HttpTelemetrySource(config, domain_id)
    raise InvalidConfiguration(f"unknown telemetry source {kind!r}")
