from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

from ..config import AppConfig
from ..core.errors import StaleSnapshot, TelemetryExhausted
from ..core.health import assess
from ..core.indicators import TelemetryReading
from ..core.store import Snapshot, SnapshotStore
from .telemetry import TelemetrySource


logger = logging.getLogger(__name__)


class TelemetryIngestor:
    """Pull readings from registered sources, score them and append to the store.

    Sources are registered per (domain, entity). ``start()`` runs a background
    loop that polls every registration each ``poll_interval_sec``; failures in
    one source are logged and never stop the loop.
    """

    def __init__(self, config: AppConfig, store: SnapshotStore) -> None:
        self.config = config
        self.store = store
        self._sources: Dict[Tuple[str, str], TelemetrySource] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register(self, domain_id: str, entity_id: str, source: TelemetrySource) -> None:
        if source.domain_id != domain_id:
            raise ValueError(f"source produces {source.domain_id!r} readings, not {domain_id!r}")
        with self._lock:
            self._sources[(domain_id, entity_id)] = source

    def unregister(self, domain_id: str, entity_id: str) -> Optional[TelemetrySource]:
        with self._lock:
            return self._sources.pop((domain_id, entity_id), None)

    def registrations(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._sources)

    def ingest(self, reading: TelemetryReading) -> Optional[Snapshot]:
        rt = self.config.runtime
        snapshot = assess(
            reading,
            rt.domain_config(reading.domain_id),
            rt.domain_weights(reading.domain_id),
        )
        try:
            self.store.append(snapshot)
        except StaleSnapshot:
            # The store already logged the rejection; the reading is dropped
            return None
        return snapshot

    def poll(self, domain_id: str, entity_id: str) -> Optional[Snapshot]:
        """Read one reading for a registration and ingest it.

        Returns None when nothing is registered, the source is exhausted, or the
        reading was stale. Other source errors propagate.
        """
        with self._lock:
            source = self._sources.get((domain_id, entity_id))
        if source is None:
            logger.debug("no telemetry source registered", extra={"domain_id": domain_id, "entity_id": entity_id})
            return None
        try:
            reading = source.read(entity_id)
        except TelemetryExhausted:
            logger.info("telemetry source exhausted", extra={"domain_id": domain_id, "entity_id": entity_id})
            return None
        return self.ingest(reading)

    def backfill(self, domain_id: str, entity_id: str, count: int) -> List[Snapshot]:
        """Poll up to ``count`` readings back to back; stops early when exhausted."""
        with self._lock:
            source = self._sources.get((domain_id, entity_id))
        if source is None:
            return []
        out: List[Snapshot] = []
        for _ in range(max(0, count)):
            try:
                reading = source.read(entity_id)
            except TelemetryExhausted:
                break
            snapshot = self.ingest(reading)
            if snapshot is not None:
                out.append(snapshot)
        logger.info(
            "backfill complete",
            extra={"domain_id": domain_id, "entity_id": entity_id, "requested": count, "stored": len(out)},
        )
        return out

    # ───────────────────────────── background polling ─────────────────────────────
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="TelemetryIngestor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        interval = self.config.runtime.poll_interval_sec
        while not self._stop.is_set():
            self.poll_all()
            self._stop.wait(timeout=interval)

    def poll_all(self) -> int:
        stored = 0
        for domain_id, entity_id in self.registrations():
            if self._stop.is_set():
                break
            try:
                if self.poll(domain_id, entity_id) is not None:
                    stored += 1
            except Exception:  # noqa: BLE001
                logger.exception("telemetry poll failed", extra={"domain_id": domain_id, "entity_id": entity_id})
        return stored

    def close(self) -> None:
        self.stop()
        with self._lock:
            sources = list({id(s): s for s in self._sources.values()}.values())
        for source in sources:
            source.close()
