"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"skillsync_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"skillsync_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"skillsync_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"skillsync_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

SOCKET_AUTH_REJECTS = Counter(
	"skillsync_socketio_auth_rejects_total",
	"Socket.IO handshakes refused",
	["reason"],
)

CHAT_SEND = Counter(
	"skillsync_chat_send_total",
	"Chat messages persisted and broadcast",
	["room_kind"],
)

CHAT_DEDUP_DROPS = Counter(
	"skillsync_chat_dedup_drops_total",
	"Chat sends absorbed by the dedup window",
)

CHAT_SEND_FAILURES = Counter(
	"skillsync_chat_send_failures_total",
	"Chat sends rejected or failed",
	["reason"],
)

PRESENCE_UPDATES = Counter(
	"skillsync_presence_updates_total",
	"Presence flag writes",
	["state"],
)

PRESENCE_FAILURES = Counter(
	"skillsync_presence_failures_total",
	"Presence flag writes that failed",
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def inc_auth_rejected(reason: str) -> None:
	SOCKET_AUTH_REJECTS.labels(reason=reason).inc()


def inc_chat_send(room_kind: str) -> None:
	CHAT_SEND.labels(room_kind=room_kind).inc()


def inc_chat_dedup_drop() -> None:
	CHAT_DEDUP_DROPS.inc()


def inc_chat_send_failure(reason: str) -> None:
	CHAT_SEND_FAILURES.labels(reason=reason).inc()


def inc_presence(state: str) -> None:
	PRESENCE_UPDATES.labels(state=state).inc()


def inc_presence_failure() -> None:
	PRESENCE_FAILURES.inc()
