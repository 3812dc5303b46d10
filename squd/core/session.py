from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from ..config import AppConfig, ComparisonConfiguration
from .alignment import align
from .correlation import CorrelationMatrix, correlate_all
from .domains import DOMAINS
from .errors import ComputationFailed, InvalidConfiguration, SessionClosed, SubscriptionActive
from .store import Snapshot, SnapshotStore
from .summary import DomainSummary, comparison_insights, summarize

if TYPE_CHECKING:  # pragma: no cover
    from ..data.ingest import TelemetryIngestor


logger = logging.getLogger(__name__)

MIN_DOMAINS = 2
MAX_DOMAINS = 6
DEFAULT_ENTITY = "default"

EmitSink = Callable[[str, Dict[str, Any]], None]


class SessionState(str, Enum):
    IDLE = "idle"
    COMPUTING = "computing"
    READY = "ready"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass
class _RunResult:
    latest: Dict[str, Optional[Snapshot]]
    summaries: Dict[str, Optional[DomainSummary]]
    correlation: Optional[CorrelationMatrix]
    insights: List[str]


class ComparisonSession:
    """State of one multi-domain comparison; mutated only by its manager."""

    def __init__(
        self,
        session_id: str,
        domains: Sequence[str],
        configuration: ComparisonConfiguration,
        entities: Mapping[str, str],
    ) -> None:
        self.session_id = session_id
        self.domains: List[str] = list(domains)
        self.configuration = configuration
        self.entities: Dict[str, str] = dict(entities)
        self.state = SessionState.IDLE
        self.correlation: Optional[CorrelationMatrix] = None
        self.latest: Dict[str, Optional[Snapshot]] = {d: None for d in self.domains}
        self.summaries: Dict[str, Optional[DomainSummary]] = {}
        self.insights: List[str] = []
        self.updated_domains: List[str] = []
        self.runs = 0
        self.skipped_ticks = 0
        self.last_run_at: Optional[float] = None

        self._lock = threading.RLock()
        self._compute_lock = threading.Lock()
        self._subscriber: Optional[EmitSink] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_streaming(self) -> bool:
        with self._lock:
            return self.state is SessionState.STREAMING

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self.state is SessionState.CLOSED

    def subscribe(self, callback: EmitSink) -> Callable[[], None]:
        """Receive ``(session_id, payload)`` after every recomputation.

        A session carries one live subscription at a time; a second subscribe
        raises ``SubscriptionActive`` until the first one unsubscribes.
        """
        with self._lock:
            if self.state is SessionState.CLOSED:
                raise SessionClosed(self.session_id)
            if self._subscriber is not None:
                raise SubscriptionActive(self.session_id)
            self._subscriber = callback

        def unsubscribe() -> None:
            with self._lock:
                if self._subscriber is callback:
                    self._subscriber = None

        return unsubscribe

    def subscribers(self) -> List[EmitSink]:
        with self._lock:
            return [] if self._subscriber is None else [self._subscriber]

    def payload(self) -> Dict[str, Any]:
        with self._lock:
            domains: Dict[str, Dict[str, float]] = {}
            for domain, snap in self.latest.items():
                if snap is None:
                    continue
                row = snap.score.as_dict()
                row["health"] = snap.health
                row["timestamp"] = snap.timestamp
                domains[domain] = row
            matrix = self.correlation
            return {
                "session_id": self.session_id,
                "state": self.state.value,
                "domains": domains,
                "correlation": matrix.primary() if matrix is not None else {},
                "correlations": [e.as_dict() for e in matrix.entries()] if matrix is not None else [],
                "updated_domains": list(self.updated_domains),
                "insights": list(self.insights),
            }


class ComparisonSessionManager:
    """Creates comparison sessions, recomputes them and runs their live streams.

    Each streaming session owns one daemon thread that ticks every
    ``stream_interval_sec``. A tick that comes due while the previous
    computation is still running is skipped rather than queued.
    """

    def __init__(
        self,
        config: AppConfig,
        store: SnapshotStore,
        sink: Optional[EmitSink] = None,
        ingestor: Optional["TelemetryIngestor"] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.sink = sink
        self.ingestor = ingestor
        self._lock = threading.RLock()
        self._sessions: Dict[str, ComparisonSession] = {}

    # ───────────────────────────── lifecycle ─────────────────────────────
    def create(
        self,
        domains: Sequence[str],
        configuration: Union[ComparisonConfiguration, Mapping[str, Any], None] = None,
        entities: Optional[Mapping[str, str]] = None,
    ) -> ComparisonSession:
        domains = list(domains)
        if len(domains) < MIN_DOMAINS:
            raise InvalidConfiguration(f"select at least {MIN_DOMAINS} domains (got {len(domains)})")
        if len(domains) > MAX_DOMAINS:
            raise InvalidConfiguration(f"select at most {MAX_DOMAINS} domains (got {len(domains)})")
        if len(set(domains)) != len(domains):
            raise InvalidConfiguration(f"duplicate domains in selection: {domains}")
        unknown = [d for d in domains if d not in DOMAINS]
        if unknown:
            raise InvalidConfiguration(f"unknown domains: {unknown}")

        if configuration is None:
            configuration = ComparisonConfiguration()
        elif not isinstance(configuration, ComparisonConfiguration):
            try:
                configuration = ComparisonConfiguration.model_validate(dict(configuration))
            except ValidationError as ve:
                raise InvalidConfiguration(str(ve)) from ve

        resolved = {d: (entities or {}).get(d) or self._default_entity(d) for d in domains}
        session = ComparisonSession(uuid.uuid4().hex, domains, configuration, resolved)
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(
            "comparison session created",
            extra={"session_id": session.session_id, "domains": domains},
        )
        return session

    def get(self, session_id: str) -> Optional[ComparisonSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def sessions(self) -> List[ComparisonSession]:
        with self._lock:
            return list(self._sessions.values())

    def close(self, session: Union[ComparisonSession, str]) -> None:
        session = self._resolve(session)
        if session is None:
            return
        self.stop_stream(session)
        with session._lock:
            if session.state is not SessionState.CLOSED:
                session.state = SessionState.CLOSED
                session._subscriber = None
                logger.info("comparison session closed", extra={"session_id": session.session_id})
        with self._lock:
            self._sessions.pop(session.session_id, None)

    def shutdown(self) -> None:
        for session in self.sessions():
            self.close(session)

    # ───────────────────────────── computation ─────────────────────────────
    def run_once(self, session: Union[ComparisonSession, str]) -> Dict[str, Any]:
        """Recompute the session now, waiting for any in-flight tick to finish."""
        resolved = self._require(session)
        payload = self._compute(resolved, blocking=True)
        if payload is None:
            # Closed while the computation was in flight
            raise SessionClosed(resolved.session_id)
        return payload

    def _compute(self, session: ComparisonSession, blocking: bool) -> Optional[Dict[str, Any]]:
        if not session._compute_lock.acquire(blocking=blocking):
            return None
        try:
            with session._lock:
                if session.state is SessionState.CLOSED:
                    raise SessionClosed(session.session_id)
                previous = session.state
                if previous is not SessionState.STREAMING:
                    session.state = SessionState.COMPUTING

            try:
                result = self._evaluate(session)
            except Exception as exc:  # noqa: BLE001
                with session._lock:
                    if session.state is SessionState.COMPUTING:
                        session.state = previous
                logger.exception("comparison run failed", extra={"session_id": session.session_id})
                raise ComputationFailed(f"comparison {session.session_id} failed: {exc}") from exc

            with session._lock:
                if session.state is SessionState.CLOSED:
                    return None
                session.updated_domains = [
                    d for d in session.domains
                    if _timestamp(result.latest.get(d)) != _timestamp(session.latest.get(d))
                ]
                session.latest = result.latest
                session.summaries = result.summaries
                session.correlation = result.correlation
                session.insights = result.insights
                session.runs += 1
                session.last_run_at = time.time()
                if session.state is SessionState.COMPUTING:
                    session.state = SessionState.READY
                payload = session.payload()
        finally:
            session._compute_lock.release()

        self._emit(session, payload)
        return payload

    def _evaluate(self, session: ComparisonSession) -> _RunResult:
        runtime = self.config.runtime
        cfg = session.configuration
        window = cfg.window_size or runtime.window_size

        if self.ingestor is not None:
            self._poll_all(session)

        series = {
            d: self.store.series(d, session.entities[d], limit=window) for d in session.domains
        }
        latest = {d: (s[-1] if s else None) for d, s in series.items()}

        matrix: Optional[CorrelationMatrix] = None
        if cfg.correlation_enabled:
            matrix = correlate_all(align(series), session.domains, cfg.metrics)

        return _RunResult(
            latest=latest,
            summaries={d: summarize(s) for d, s in series.items()},
            correlation=matrix,
            insights=comparison_insights(latest, matrix, runtime.risk_tiers, cfg.correlation_enabled),
        )

    def _poll_all(self, session: ComparisonSession) -> None:
        ingestor = self.ingestor
        assert ingestor is not None
        workers = min(len(session.domains), self.config.runtime.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ComparisonFetch") as pool:
            futures = {
                d: pool.submit(ingestor.poll, d, session.entities[d]) for d in session.domains
            }
            for domain, future in futures.items():
                try:
                    future.result()
                except Exception:  # noqa: BLE001
                    # Fall back to what is already stored for this domain
                    logger.warning(
                        "telemetry fetch failed",
                        exc_info=True,
                        extra={"session_id": session.session_id, "domain_id": domain},
                    )

    def _emit(self, session: ComparisonSession, payload: Dict[str, Any]) -> None:
        targets = ([self.sink] if self.sink is not None else []) + session.subscribers()
        for target in targets:
            try:
                target(session.session_id, payload)
            except Exception:  # noqa: BLE001
                logger.exception("comparison sink failed", extra={"session_id": session.session_id})

    # ───────────────────────────── streaming ─────────────────────────────
    def start_stream(self, session: Union[ComparisonSession, str]) -> None:
        resolved = self._require(session)
        with resolved._lock:
            if resolved.state is SessionState.STREAMING:
                logger.debug("stream already running", extra={"session_id": resolved.session_id})
                return
            needs_initial = resolved.state is SessionState.IDLE

        if needs_initial:
            self.run_once(resolved)

        with resolved._lock:
            if resolved.state is SessionState.CLOSED:
                raise SessionClosed(resolved.session_id)
            if resolved.state is SessionState.STREAMING:
                return
            resolved.state = SessionState.STREAMING
            stop = threading.Event()
            resolved._stop = stop
            thread = threading.Thread(
                target=self._stream_loop,
                args=(resolved, stop),
                name=f"ComparisonStream-{resolved.session_id[:8]}",
                daemon=True,
            )
            resolved._thread = thread
            thread.start()
        logger.info(
            "comparison stream started",
            extra={"session_id": resolved.session_id, "interval_sec": self._interval(resolved)},
        )

    def stop_stream(self, session: Union[ComparisonSession, str]) -> None:
        resolved = self._resolve(session)
        if resolved is None:
            return
        with resolved._lock:
            thread = resolved._thread
            if resolved.state is not SessionState.STREAMING and thread is None:
                logger.debug("stream not running", extra={"session_id": resolved.session_id})
                return
            resolved._stop.set()
            resolved._thread = None
            if resolved.state is SessionState.STREAMING:
                resolved.state = SessionState.READY
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        logger.info("comparison stream stopped", extra={"session_id": resolved.session_id})

    def _stream_loop(self, session: ComparisonSession, stop: threading.Event) -> None:
        interval = self._interval(session)
        next_due = time.monotonic() + interval
        while not stop.wait(timeout=max(0.0, next_due - time.monotonic())):
            try:
                if self._compute(session, blocking=False) is None and not session.is_closed:
                    self._count_skip(session, 1)
            except SessionClosed:
                break
            except ComputationFailed:
                pass  # logged in _compute; keep ticking
            next_due += interval
            now = time.monotonic()
            if next_due <= now:
                missed = int((now - next_due) // interval) + 1
                next_due += missed * interval
                self._count_skip(session, missed)

    def _count_skip(self, session: ComparisonSession, count: int) -> None:
        with session._lock:
            session.skipped_ticks += count
        logger.info(
            "comparison tick skipped", extra={"session_id": session.session_id, "skipped": count}
        )

    # ───────────────────────────── helpers ─────────────────────────────
    def _interval(self, session: ComparisonSession) -> float:
        return session.configuration.stream_interval_sec or self.config.runtime.stream_interval_sec

    def _default_entity(self, domain_id: str) -> str:
        entities = self.store.entities(domain_id)
        return entities[0] if entities else DEFAULT_ENTITY

    def _resolve(self, session: Union[ComparisonSession, str]) -> Optional[ComparisonSession]:
        if isinstance(session, ComparisonSession):
            return session
        return self.get(session)

    def _require(self, session: Union[ComparisonSession, str]) -> ComparisonSession:
        resolved = self._resolve(session)
        if resolved is None:
            raise SessionClosed(str(session))
        with resolved._lock:
            if resolved.state is SessionState.CLOSED:
                raise SessionClosed(resolved.session_id)
        return resolved


def _timestamp(snapshot: Optional[Snapshot]) -> Optional[float]:
    return None if snapshot is None else snapshot.timestamp
