"""Prometheus metrics for the mixer bridge."""

from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from mixer_bridge.structs import SessionState

mixer_bridge_events_total: Final = Counter(  # type: ignore[assignment]
    "mixer_bridge_events_total",
    "Remote events received",
    ["kind", "outcome"],
)

mixer_bridge_commands_total: Final = Counter(  # type: ignore[assignment]
    "mixer_bridge_commands_total",
    "Local control commands executed against the remote mixer",
    ["command", "outcome"],
)

mixer_bridge_full_sync_seconds: Final = Histogram(  # type: ignore[assignment]
    "mixer_bridge_full_sync_seconds",
    "Full sync duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

mixer_bridge_full_sync_total: Final = Counter(  # type: ignore[assignment]
    "mixer_bridge_full_sync_total",
    "Full sync attempts",
    ["outcome"],
)

mixer_bridge_entities: Final = Gauge(  # type: ignore[assignment]
    "mixer_bridge_entities",
    "Entities currently held by the registry",
)

mixer_bridge_session_state: Final = Gauge(  # type: ignore[assignment]
    "mixer_bridge_session_state",
    "Current session state (1 for the active state)",
    ["state"],
)


def record_event(kind: str, outcome: str) -> None:
    """Record a remote event ("applied" or "dropped")."""
    mixer_bridge_events_total.labels(kind=kind, outcome=outcome).inc()


def record_command(command: str, outcome: str) -> None:
    mixer_bridge_commands_total.labels(command=command, outcome=outcome).inc()


def record_full_sync(duration_seconds: float, outcome: str) -> None:
    mixer_bridge_full_sync_total.labels(outcome=outcome).inc()
    if outcome == "success":
        mixer_bridge_full_sync_seconds.observe(duration_seconds)


def record_entity_count(count: int) -> None:
    mixer_bridge_entities.set(count)


def record_session_state(state: SessionState) -> None:
    """Set the gauge for ``state`` to 1 and every other state to 0."""
    for candidate in SessionState:
        mixer_bridge_session_state.labels(state=candidate.value).set(1 if candidate is state else 0)


def start_metrics_server(port: int) -> None:
    """Expose metrics over HTTP on ``port``."""
    start_http_server(port)
