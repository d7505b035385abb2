"""Materialised child-added stream over one conversation's message log."""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from portal_messaging.realtime.store import RealtimeStore, Subscription, invoke

from . import wire
from .models import Message

logger = logging.getLogger(__name__)

StreamCallback = Callable[["MessageStream"], Optional[Awaitable[None]]]


class MessageStream:
	"""Ordered, append-only view of ``messages/{conversationId}``.

	The initial replay is materialised in one go and reported once; after that
	every appended message is reported as it arrives. Once closed the stream
	ignores anything the store still delivers.
	"""

	def __init__(self, store: RealtimeStore, conversation_id: str, *, on_change: StreamCallback | None = None) -> None:
		self.conversation_id = conversation_id
		self._store = store
		self._on_change = on_change
		self._messages: List[Message] = []
		self._subscription: Subscription | None = None
		self._replaying = False
		self._closed = False

	@property
	def messages(self) -> List[Message]:
		return list(self._messages)

	async def open(self) -> None:
		self._replaying = True
		try:
			subscription = await self._store.on_child_added(wire.messages(self.conversation_id), self._on_child)
		finally:
			self._replaying = False
		if self._closed:
			subscription.close()
			return
		self._subscription = subscription
		await self._changed()

	def close(self) -> None:
		self._closed = True
		if self._subscription is not None:
			self._subscription.close()
			self._subscription = None

	def mark_seen_locally(self, message_ids: Iterable[str], user_id: int, seen_at: int) -> None:
		wanted = set(message_ids)
		for message in self._messages:
			if message.id in wanted:
				message.seen_by.setdefault(str(user_id), seen_at)

	async def _on_child(self, key: str, record: Any) -> None:
		if self._closed:
			return
		message = Message.from_record(self.conversation_id, key, record, now_ms=int(time.time() * 1000))
		if message is None:
			logger.debug(
				"discarding malformed message node",
				extra={"conversation_id": self.conversation_id, "message_id": key},
			)
			return
		self._messages.append(message)
		if not self._replaying:
			await self._changed()

	async def _changed(self) -> None:
		if self._on_change is not None and not self._closed:
			await invoke(self._on_change, self)
