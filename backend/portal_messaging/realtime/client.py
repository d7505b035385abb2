"""Process-wide realtime session bootstrap.

``connect`` is idempotent: the first call opens the store and mints the
anonymous credential for this process, later calls reuse them and only
refresh the display profile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from portal_messaging.obs import init as obs_init
from portal_messaging.obs import logging as obs_logging
from portal_messaging.settings import settings

from .errors import StoreError
from .keys import generate_key
from .memory import MemoryRealtimeStore
from .paths import SERVER_TIMESTAMP, join_path
from .store import RealtimeStore

logger = logging.getLogger(__name__)


class ProfileLike(Protocol):
	id: int
	name: Optional[str]
	avatar: Optional[str]


@dataclass(slots=True)
class SessionHandle:
	store: RealtimeStore
	anonymous_id: str
	user_id: Optional[int] = None


_session: SessionHandle | None = None


def build_store() -> RealtimeStore:
	if settings.realtime_backend == "redis":
		from .redis_store import RedisRealtimeStore

		return RedisRealtimeStore()
	return MemoryRealtimeStore()


async def connect(user: ProfileLike | None = None, *, store: RealtimeStore | None = None) -> SessionHandle:
	"""Return the process session, opening it on first use."""
	global _session
	if _session is None or _session.store.closed:
		obs_init()
		_session = SessionHandle(store=store or build_store(), anonymous_id=generate_key())
		logger.info(
			"realtime session opened",
			extra={"backend": _session.store.backend, "session_id": _session.anonymous_id},
		)
	if user is not None:
		_session.user_id = int(user.id)
		await _update_profile(_session, user)
	return _session


async def _update_profile(session: SessionHandle, user: ProfileLike) -> None:
	profile = {
		"userId": int(user.id),
		"displayName": user.name or f"User {user.id}",
		"photoUrl": user.avatar or None,
		"updatedAt": SERVER_TIMESTAMP,
	}
	tokens = obs_logging.bind_context(session_id=session.anonymous_id, user_id=str(user.id))
	try:
		await session.store.update({join_path("sessions", session.anonymous_id): profile})
	except StoreError:
		# Profile enrichment is best-effort; messaging works without it.
		logger.warning("realtime profile update failed", extra={"session_id": session.anonymous_id}, exc_info=True)
	finally:
		obs_logging.reset_context(tokens)


async def disconnect() -> None:
	global _session
	session, _session = _session, None
	if session is not None and not session.store.closed:
		await session.store.close()
		logger.info("realtime session closed", extra={"session_id": session.anonymous_id})


def current_session() -> SessionHandle | None:
	return _session
