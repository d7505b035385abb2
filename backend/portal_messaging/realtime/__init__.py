"""Realtime store client: subscriptions, atomic multi-path writes, key generation."""

from .client import SessionHandle, connect, current_session, disconnect
from .errors import InvalidPath, PreconditionFailed, StoreError, StoreUnavailable, WriteRejected
from .memory import MemoryRealtimeStore
from .paths import SERVER_TIMESTAMP
from .store import RealtimeStore, Subscription

__all__ = [
	"InvalidPath",
	"MemoryRealtimeStore",
	"PreconditionFailed",
	"RealtimeStore",
	"SERVER_TIMESTAMP",
	"SessionHandle",
	"StoreError",
	"StoreUnavailable",
	"Subscription",
	"WriteRejected",
	"connect",
	"current_session",
	"disconnect",
]
