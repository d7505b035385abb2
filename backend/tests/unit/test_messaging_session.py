import asyncio

import httpx
import pytest

from portal_messaging.domain.messaging import (
    InvalidConversation,
    MessagingSession,
    SendFailed,
    SessionState,
    UnreadCounter,
)
from portal_messaging.domain.messaging.models import DIRECT_MESSAGE_TITLE, ChatUser
from portal_messaging.domain.messaging.profiles import LOADING_PLACEHOLDER
from portal_messaging.infra.user_directory import UserDirectoryClient
from portal_messaging.realtime import MemoryRealtimeStore, WriteRejected


class RacyStore(MemoryRealtimeStore):
    """Hides the private pair index from one read to simulate a concurrent creator."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.hide_next_pair_read = False

    async def get(self, path):
        if self.hide_next_pair_read and path.startswith("privatePairs/"):
            self.hide_next_pair_read = False
            return None
        return await super().get(path)


class SlowLogStore(MemoryRealtimeStore):
    """Delays reads of chosen paths so deliveries overlap."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.delays = {}

    async def get(self, path):
        delay = self.delays.get(path)
        if delay:
            await asyncio.sleep(delay)
        return await super().get(path)


def _user_directory(handler) -> UserDirectoryClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://portal.test")
    return UserDirectoryClient(http=http)


class RejectingStore(MemoryRealtimeStore):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.reject = False

    async def _commit(self, writes, guards):
        if self.reject:
            raise WriteRejected("permission_denied")
        await super()._commit(writes, guards)


@pytest.mark.asyncio
async def test_session_states(session_factory):
    anonymous = await session_factory(None)
    assert anonymous.state is SessionState.NO_USER
    assert await anonymous.send_message("hi") is None
    assert await anonymous.ensure_private_conversation(2) is None

    ann = await session_factory(1, "Ann")
    assert ann.state is SessionState.IDLE
    await ann.ensure_private_conversation(2, "Bob")
    assert ann.state is SessionState.CONVERSATION_SELECTED


@pytest.mark.asyncio
async def test_ensure_private_conversation_creates_once(session_factory, store):
    ann = await session_factory(1, "Ann")
    conversation_id = await ann.ensure_private_conversation(2, "Bob")

    assert ann.selected_conversation_id == conversation_id
    record = await store.get(f"conversations/{conversation_id}")
    assert record["members"] == [1, 2]
    assert record["type"] == "private"
    assert record["title"] == DIRECT_MESSAGE_TITLE
    assert (await store.get(f"userConversations/1/{conversation_id}"))["title"] == "Bob"
    assert (await store.get(f"userConversations/2/{conversation_id}"))["title"] == "Ann"
    assert await store.get("privatePairs/1_2") == {"id": conversation_id}

    assert await ann.ensure_private_conversation(2, "Bob") == conversation_id
    bob = await session_factory(2, "Bob")
    assert await bob.ensure_private_conversation(1, "Ann") == conversation_id
    assert list(await store.get("userConversations/1")) == [conversation_id]


@pytest.mark.asyncio
async def test_cannot_open_conversation_with_self(session_factory):
    ann = await session_factory(1, "Ann")
    with pytest.raises(InvalidConversation):
        await ann.ensure_private_conversation(1)
    assert ann.last_error is not None
    assert ann.last_error.reason == "cannot_message_self"


@pytest.mark.asyncio
async def test_private_pair_race_adopts_existing_conversation(clock, session_factory):
    racy = RacyStore(clock=clock)
    bob = await session_factory(2, "Bob", store=racy)
    winner = await bob.ensure_private_conversation(1, "Ann")

    ann = await session_factory(1, "Ann", store=racy)
    racy.hide_next_pair_read = True
    adopted = await ann.ensure_private_conversation(2, "Bob")

    assert adopted == winner
    assert ann.selected_conversation_id == winner
    assert list(await racy.get("userConversations/1")) == [winner]
    await racy.close()


@pytest.mark.asyncio
async def test_create_group_conversation(session_factory, store):
    ann = await session_factory(1, "Ann")
    conversation_id = await ann.create_group_conversation([2, 3, 1, 3], "Planning")

    record = await store.get(f"conversations/{conversation_id}")
    assert record["members"] == [1, 2, 3]
    assert record["type"] == "group"
    assert record["title"] == "Planning"
    for member in (1, 2, 3):
        entry = await store.get(f"userConversations/{member}/{conversation_id}")
        assert entry["title"] == "Planning"
    assert ann.selected_conversation_id == conversation_id


@pytest.mark.asyncio
async def test_create_group_requires_title_and_members(session_factory):
    ann = await session_factory(1, "Ann")
    with pytest.raises(InvalidConversation):
        await ann.create_group_conversation([2], "   ")
    with pytest.raises(InvalidConversation):
        await ann.create_group_conversation([1], "Solo")
    assert ann.conversations == []


@pytest.mark.asyncio
async def test_send_message_fans_out_to_every_member(session_factory, store):
    ann = await session_factory(1, "Ann")
    conversation_id = await ann.ensure_private_conversation(2, "Bob")

    message_id = await ann.send_message("  hello  ")

    node = await store.get(f"messages/{conversation_id}/{message_id}")
    assert node["text"] == "hello"
    assert node["senderId"] == 1
    assert node["senderName"] == "Ann"
    assert list(node["seenBy"]) == ["1"]
    for member in (1, 2):
        entry = await store.get(f"userConversations/{member}/{conversation_id}")
        assert entry["lastMessage"] == "hello"
    assert [message.text for message in ann.messages] == ["hello"]
    assert ann.conversations[0].last_message == "hello"


@pytest.mark.asyncio
async def test_send_message_ignores_blank_text(session_factory, store):
    ann = await session_factory(1, "Ann")
    conversation_id = await ann.ensure_private_conversation(2, "Bob")

    assert await ann.send_message("   ") is None
    assert await ann.send_message("") is None
    assert await store.get(f"messages/{conversation_id}") is None
    assert ann.messages == []


@pytest.mark.asyncio
async def test_send_message_without_selection_is_a_no_op(session_factory, store):
    ann = await session_factory(1, "Ann")
    assert await ann.send_message("hello") is None
    assert await store.get("messages") is None


@pytest.mark.asyncio
async def test_rejected_send_raises_send_failed(clock, session_factory):
    rejecting = RejectingStore(clock=clock)
    ann = await session_factory(1, "Ann", store=rejecting)
    conversation_id = await ann.ensure_private_conversation(2, "Bob")

    rejecting.reject = True
    with pytest.raises(SendFailed) as excinfo:
        await ann.send_message("hello")

    assert excinfo.value.conversation_id == conversation_id
    assert ann.last_error is excinfo.value
    assert ann.messages == []
    rejecting.reject = False
    await rejecting.close()


@pytest.mark.asyncio
async def test_mark_seen_is_idempotent(session_factory, store):
    ann = await session_factory(1, "Ann")
    conversation_id = await ann.ensure_private_conversation(2, "Bob")
    message_id = await ann.send_message("hello")

    bob = await session_factory(2, "Bob")
    assert bob.selected_conversation_id == conversation_id
    receipt_path = f"messages/{conversation_id}/{message_id}/seenBy/2"
    first = await store.get(receipt_path)
    assert first is not None

    assert await bob.mark_seen() == 0
    assert await store.get(receipt_path) == first
    assert all(message.has_seen(2) for message in bob.messages)


@pytest.mark.asyncio
async def test_switching_conversations_drops_old_messages(session_factory):
    ann = await session_factory(1, "Ann")
    private_id = await ann.ensure_private_conversation(2, "Bob")
    await ann.send_message("in private")
    group_id = await ann.create_group_conversation([2, 3], "Planning")

    assert ann.selected_conversation_id == group_id
    assert ann.messages == []

    bob = await session_factory(2, "Bob")
    await bob.select_conversation(private_id)
    await bob.send_message("late reply")
    await ann.send_message("in group")

    assert [message.text for message in ann.messages] == ["in group"]
    assert all(message.conversation_id == group_id for message in ann.messages)

    await ann.select_conversation(private_id)
    assert [message.text for message in ann.messages] == ["in private", "late reply"]


@pytest.mark.asyncio
async def test_unread_count_drops_after_mark_seen(session_factory, store):
    ann = await session_factory(1, "Ann")
    conversation_id = await ann.ensure_private_conversation(2, "Bob")
    await ann.send_message("one")
    await ann.send_message("two")

    counter = UnreadCounter(store, 2)
    await counter.open()
    assert counter.count_for(conversation_id) == 2
    assert counter.total == 2

    await session_factory(2, "Bob")
    assert counter.count_for(conversation_id) == 0
    counter.close()


@pytest.mark.asyncio
async def test_directory_auto_selects_most_recent(session_factory):
    ann = await session_factory(1, "Ann")
    await ann.ensure_private_conversation(2, "Bob")
    group_id = await ann.create_group_conversation([2, 3], "Planning")

    again = await session_factory(1, "Ann")
    assert again.selected_conversation_id == group_id
    assert [summary.id for summary in again.conversations][0] == group_id


@pytest.mark.asyncio
async def test_initial_conversation_is_selected_on_start(session_factory):
    ann = await session_factory(1, "Ann")
    private_id = await ann.ensure_private_conversation(2, "Bob")
    await ann.create_group_conversation([2, 3], "Planning")

    deep_linked = await session_factory(1, "Ann", initial_conversation_id=private_id)
    assert deep_linked.selected_conversation_id == private_id


@pytest.mark.asyncio
async def test_title_for_resolves_counterpart_name(session_factory):
    ann = await session_factory(1, "Ann")
    await ann.ensure_private_conversation(3)
    summary = ann.conversations[0]
    assert summary.title == DIRECT_MESSAGE_TITLE

    assert ann.title_for(summary) == LOADING_PLACEHOLDER
    await ann.names.wait_pending()
    assert ann.title_for(summary) == "User 3"


@pytest.mark.asyncio
async def test_listeners_are_notified_until_removed(session_factory):
    ann = await session_factory(1, "Ann")
    calls = []
    remove = ann.add_listener(lambda session: calls.append(session.state))

    await ann.ensure_private_conversation(2, "Bob")
    assert calls
    assert calls[-1] is SessionState.CONVERSATION_SELECTED

    remove()
    seen = len(calls)
    await ann.send_message("hello")
    assert len(calls) == seen


@pytest.mark.asyncio
async def test_start_connects_process_store_when_none_given():
    session = MessagingSession(ChatUser(id=1, name="Ann"))
    await session.start()
    try:
        assert session.state is SessionState.IDLE
        assert await session.store.get("sessions") is not None
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_overlapping_switches_keep_only_latest_conversation(clock, session_factory):
    slow = SlowLogStore(clock=clock)
    ann = await session_factory(1, "Ann", store=slow)
    private_id = await ann.ensure_private_conversation(2, "Bob")
    await ann.send_message("in private")
    group_id = await ann.create_group_conversation([2, 3], "Planning")
    await ann.send_message("in group")

    # The private log is read slower, so its replay lands after the group switch.
    slow.delays = {f"messages/{private_id}": 0.05, f"messages/{group_id}": 0.01}
    await asyncio.gather(ann.select_conversation(private_id), ann.select_conversation(group_id))

    assert ann.selected_conversation_id == group_id
    assert [message.text for message in ann.messages] == ["in group"]
    assert not [sub for sub in slow._subscriptions if sub.path == f"messages/{private_id}"]
    await slow.close()


@pytest.mark.asyncio
async def test_default_name_cache_uses_user_search(store, clock, monkeypatch):
    directory = _user_directory(lambda request: httpx.Response(200, json=[{"id": 2, "name": "Bob"}]))
    monkeypatch.setattr(
        "portal_messaging.domain.messaging.session.build_user_directory_client",
        lambda: directory,
    )
    ann = MessagingSession(ChatUser(id=1, name="Ann"), store=store, clock=clock)
    await ann.start()
    await ann.ensure_private_conversation(2)
    summary = ann.conversations[0]

    assert ann.title_for(summary) == LOADING_PLACEHOLDER
    await ann.names.wait_pending()
    assert ann.title_for(summary) == "Bob"

    await ann.stop()
    assert directory.http.is_closed


@pytest.mark.asyncio
async def test_stop_cancels_pending_name_lookups(store, clock):
    gate = asyncio.Event()

    async def handler(request):
        await gate.wait()
        return httpx.Response(200, json=[{"id": 2, "name": "Bob"}])

    directory = _user_directory(handler)
    ann = MessagingSession(ChatUser(id=1, name="Ann"), store=store, clock=clock, user_directory=directory)
    await ann.start()
    await ann.ensure_private_conversation(2)
    calls = []
    ann.add_listener(lambda session: calls.append(session.state))

    assert ann.title_for(ann.conversations[0]) == LOADING_PLACEHOLDER
    await ann.stop()
    gate.set()
    await asyncio.sleep(0.01)

    assert calls == []
    assert ann.names.cached(2) is None
    assert not directory.http.is_closed
    await directory.http.aclose()
