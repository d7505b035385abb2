"""Central registry for Prometheus metrics used by the messaging core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

CHAT_SEND = Counter(
	"portal_chat_send_total",
	"Chat messages sent",
)

CHAT_SEND_FAILED = Counter(
	"portal_chat_send_failed_total",
	"Chat message sends rejected by the store",
)

CHAT_READ_UPDATES = Counter(
	"portal_chat_read_updates_total",
	"Read receipts written",
)

CONVERSATIONS_CREATED = Counter(
	"portal_chat_conversations_created_total",
	"Conversations created",
	["type"],
)

PRIVATE_PAIR_RACES = Counter(
	"portal_chat_private_pair_races_total",
	"Private conversation creations that lost a concurrent create",
)

STORE_WRITES = Counter(
	"portal_realtime_writes_total",
	"Atomic multi-path writes by outcome",
	["backend", "outcome"],
)

STORE_WRITE_LATENCY = Histogram(
	"portal_realtime_write_duration_seconds",
	"Atomic multi-path write latency in seconds",
	["backend"],
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

STORE_EVENTS = Counter(
	"portal_realtime_events_total",
	"Subscription events delivered",
	["kind"],
)

STORE_SUBSCRIPTIONS = Gauge(
	"portal_realtime_subscriptions_active",
	"Active realtime subscriptions",
	["kind"],
)

USER_SEARCH_FAILURES = Counter(
	"portal_user_search_failures_total",
	"User directory searches that fell back to an empty result",
	["reason"],
)


def inc_chat_send() -> None:
	CHAT_SEND.inc()


def inc_chat_send_failed() -> None:
	CHAT_SEND_FAILED.inc()


def inc_chat_read(count: int = 1) -> None:
	CHAT_READ_UPDATES.inc(count)


def inc_conversation_created(kind: str) -> None:
	CONVERSATIONS_CREATED.labels(type=kind).inc()


def inc_private_pair_race() -> None:
	PRIVATE_PAIR_RACES.inc()


def record_store_write(backend: str, outcome: str, duration_s: float | None = None) -> None:
	STORE_WRITES.labels(backend=backend, outcome=outcome).inc()
	if duration_s is not None:
		STORE_WRITE_LATENCY.labels(backend=backend).observe(duration_s)


def store_event(kind: str) -> None:
	STORE_EVENTS.labels(kind=kind).inc()


def subscription_opened(kind: str) -> None:
	STORE_SUBSCRIPTIONS.labels(kind=kind).inc()


def subscription_closed(kind: str) -> None:
	STORE_SUBSCRIPTIONS.labels(kind=kind).dec()


def inc_user_search_failure(reason: str) -> None:
	USER_SEARCH_FAILURES.labels(reason=reason).inc()
