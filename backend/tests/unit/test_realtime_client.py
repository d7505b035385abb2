import pytest

from portal_messaging.domain.messaging import ChatUser
from portal_messaging.realtime import MemoryRealtimeStore, WriteRejected
from portal_messaging.realtime import client as realtime_client


@pytest.mark.asyncio
async def test_connect_is_idempotent_and_writes_profile():
    first = await realtime_client.connect(ChatUser(id=5, name="Eve"))
    second = await realtime_client.connect(ChatUser(id=5, name="Eve"))

    assert first is second
    assert realtime_client.current_session() is first
    profile = await first.store.get(f"sessions/{first.anonymous_id}")
    assert profile["userId"] == 5
    assert profile["displayName"] == "Eve"
    assert isinstance(profile["updatedAt"], int)


@pytest.mark.asyncio
async def test_connect_defaults_display_name():
    handle = await realtime_client.connect(ChatUser(id=6))
    profile = await handle.store.get(f"sessions/{handle.anonymous_id}")
    assert profile["displayName"] == "User 6"
    assert "photoUrl" not in profile


@pytest.mark.asyncio
async def test_profile_write_failure_is_not_fatal():
    class Offline(MemoryRealtimeStore):
        async def _commit(self, writes, guards):
            raise WriteRejected("offline")

    handle = await realtime_client.connect(ChatUser(id=7), store=Offline())
    assert handle.user_id == 7
    assert await handle.store.get("sessions") is None


@pytest.mark.asyncio
async def test_disconnect_closes_store_and_resets():
    handle = await realtime_client.connect()
    await realtime_client.disconnect()

    assert handle.store.closed
    assert realtime_client.current_session() is None
    fresh = await realtime_client.connect()
    assert fresh is not handle
