"""Central registry for Prometheus metrics used across the sync layer."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

CACHE_WRITES = Counter(
	"booksync_cache_writes_total",
	"Cache writes by resource kind and outcome",
	["kind", "result"],
)

CACHE_INVALIDATIONS = Counter(
	"booksync_cache_invalidations_total",
	"Cache invalidations by resource kind and whether consumers were woken",
	["kind", "result"],
)

POLL_FETCHES = Counter(
	"booksync_poll_fetches_total",
	"Resource fetches issued by polling fetchers",
	["kind", "result"],
)

POLL_FETCH_LATENCY = Histogram(
	"booksync_poll_fetch_duration_seconds",
	"Resource fetch latency in seconds",
	["kind"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

PUSH_STATE = Gauge(
	"booksync_push_state",
	"Push channel state (0=disconnected,1=connecting,2=connected)",
)

PUSH_HANDSHAKES = Counter(
	"booksync_push_handshakes_total",
	"Push channel handshake attempts",
	["result"],
)

PUSH_EVENTS = Counter(
	"booksync_push_events_total",
	"Inbound push events by name and outcome",
	["event", "result"],
)

PUSH_SUBSCRIPTIONS = Gauge(
	"booksync_push_subscriptions",
	"Chats the live connection is currently joined to",
)

MUTATIONS = Counter(
	"booksync_mutations_total",
	"Outbound mutations by name and outcome",
	["name", "result"],
)


def cache_write(kind: str, result: str) -> None:
	CACHE_WRITES.labels(kind=kind, result=result).inc()


def cache_invalidated(kind: str, woke: bool) -> None:
	CACHE_INVALIDATIONS.labels(kind=kind, result="woke" if woke else "coalesced").inc()


def poll_fetch(kind: str, result: str, duration: float | None = None) -> None:
	POLL_FETCHES.labels(kind=kind, result=result).inc()
	if duration is not None:
		POLL_FETCH_LATENCY.labels(kind=kind).observe(duration)


def push_state(value: int) -> None:
	PUSH_STATE.set(value)


def push_handshake(result: str) -> None:
	PUSH_HANDSHAKES.labels(result=result).inc()


def push_event(event: str, result: str) -> None:
	PUSH_EVENTS.labels(event=event, result=result).inc()


def push_subscriptions(count: int) -> None:
	PUSH_SUBSCRIPTIONS.set(count)


def mutation(name: str, result: str) -> None:
	MUTATIONS.labels(name=name, result=result).inc()
