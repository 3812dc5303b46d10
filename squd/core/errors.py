from __future__ import annotations


class SQUDError(Exception):
    """Base class for errors raised by the engine."""


class InvalidConfiguration(SQUDError, ValueError):
    """A comparison was requested with an unusable domain selection or options."""


class UnknownDomain(InvalidConfiguration):
    def __init__(self, domain_id: str) -> None:
        super().__init__(f"unknown domain: {domain_id!r}")
        self.domain_id = domain_id


class StaleSnapshot(SQUDError, ValueError):
    """Append rejected because it would break chronological order."""

    def __init__(self, domain_id: str, entity_id: str, timestamp: float, last_timestamp: float) -> None:
        super().__init__(
            f"snapshot for {domain_id}/{entity_id} at {timestamp} is not newer than {last_timestamp}"
        )
        self.domain_id = domain_id
        self.entity_id = entity_id
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp


class SessionClosed(SQUDError, RuntimeError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"comparison session {session_id} is closed")
        self.session_id = session_id


class SubscriptionActive(SQUDError, RuntimeError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"comparison session {session_id} already has a live subscriber")
        self.session_id = session_id


class ComputationFailed(SQUDError, RuntimeError):
    """Unexpected failure while recomputing a comparison session."""


class EmptyCohort(SQUDError, ValueError):
    pass


class TelemetryExhausted(SQUDError, LookupError):
    """A replaying telemetry source has no more readings for an entity."""
