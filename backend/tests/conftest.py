import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from portal_messaging.domain.messaging import ChatUser, DisplayNameCache, MessagingSession
from portal_messaging.realtime import MemoryRealtimeStore
from portal_messaging.realtime import client as realtime_client
from portal_messaging.settings import settings


class Clock:
	"""Deterministic millisecond clock shared by a store and its sessions."""

	def __init__(self, start: int = 1_700_000_000_000) -> None:
		self.now = start

	def __call__(self) -> int:
		self.now += 1
		return self.now


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from portal_messaging.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		await realtime_client.disconnect()
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	original_backend = settings.realtime_backend
	original_poll = settings.realtime_listener_poll_seconds
	original_obs = settings.obs_enabled
	settings.realtime_backend = "memory"
	settings.obs_enabled = False
	settings.realtime_listener_poll_seconds = 0.05
	try:
		yield
	finally:
		settings.realtime_backend = original_backend
		settings.realtime_listener_poll_seconds = original_poll
		settings.obs_enabled = original_obs


@pytest.fixture
def clock():
	return Clock()


@pytest_asyncio.fixture
async def store(clock):
	memory = MemoryRealtimeStore(clock=clock)
	try:
		yield memory
	finally:
		await memory.close()


@pytest_asyncio.fixture
async def session_factory(store, clock):
	sessions = []

	async def _make(user_id: int | None, name: str | None = None, **kwargs) -> MessagingSession:
		user = ChatUser(id=user_id, name=name) if user_id is not None else None
		kwargs.setdefault("names", DisplayNameCache())
		kwargs.setdefault("store", store)
		session = MessagingSession(user, clock=clock, **kwargs)
		await session.start()
		sessions.append(session)
		return session

	yield _make
	for session in sessions:
		await session.stop()
