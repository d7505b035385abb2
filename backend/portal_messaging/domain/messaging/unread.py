"""Unread message aggregation across a user's conversations."""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from portal_messaging.realtime.paths import children_of
from portal_messaging.realtime.store import RealtimeStore, Subscription, invoke

from . import wire
from .models import Message

logger = logging.getLogger(__name__)

UnreadCallback = Callable[["UnreadCounter"], Optional[Awaitable[None]]]


def count_unread(conversation_id: str, messages: Iterable[Message], current_user_id: int) -> int:
	"""Messages of ``conversation_id`` without a receipt from ``current_user_id``."""
	return sum(
		1
		for message in messages
		if message.conversation_id == conversation_id and not message.has_seen(current_user_id)
	)


def materialise(conversation_id: str, value: Any) -> list[Message]:
	messages = []
	for message_id, record in children_of(value).items():
		message = Message.from_record(conversation_id, message_id, record)
		if message is not None:
			messages.append(message)
	return messages


class UnreadCounter:
	"""Keeps per-conversation unread counts for one user up to date.

	Follows the user's directory and holds one value stream per listed
	conversation; streams of conversations that leave the directory are closed.
	"""

	def __init__(self, store: RealtimeStore, user_id: int, *, on_change: UnreadCallback | None = None) -> None:
		self.user_id = user_id
		self._store = store
		self._on_change = on_change
		self._counts: Dict[str, int] = {}
		self._streams: Dict[str, Subscription | None] = {}
		self._directory: Subscription | None = None
		self._closed = False

	@property
	def total(self) -> int:
		return sum(self._counts.values())

	@property
	def per_conversation(self) -> Dict[str, int]:
		return dict(self._counts)

	def count_for(self, conversation_id: str) -> int:
		return self._counts.get(conversation_id, 0)

	async def open(self) -> None:
		self._closed = False
		if self._directory is None:
			self._directory = await self._store.on_value(wire.user_conversations(self.user_id), self._on_directory)

	def close(self) -> None:
		self._closed = True
		if self._directory is not None:
			self._directory.close()
			self._directory = None
		for stream in self._streams.values():
			if stream is not None:
				stream.close()
		self._streams.clear()
		self._counts.clear()

	async def _on_directory(self, value: Any) -> None:
		listed = set(children_of(value))
		for conversation_id in [cid for cid in self._streams if cid not in listed]:
			stream = self._streams.pop(conversation_id)
			if stream is not None:
				stream.close()
			self._counts.pop(conversation_id, None)
		for conversation_id in sorted(listed - set(self._streams)):
			# Reserve the slot so a re-entrant directory event does not attach twice.
			self._streams[conversation_id] = None
			stream = await self._store.on_value(
				wire.messages(conversation_id),
				functools.partial(self._on_messages, conversation_id),
			)
			if self._closed or conversation_id not in self._streams:
				stream.close()
				continue
			self._streams[conversation_id] = stream
		await self._changed()

	async def _on_messages(self, conversation_id: str, value: Any) -> None:
		if self._closed or conversation_id not in self._streams:
			return
		self._counts[conversation_id] = count_unread(conversation_id, materialise(conversation_id, value), self.user_id)
		await self._changed()

	async def _changed(self) -> None:
		if self._on_change is not None and not self._closed:
			await invoke(self._on_change, self)
