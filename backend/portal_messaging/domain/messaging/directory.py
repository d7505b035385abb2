"""Reactive projection of ``userConversations/{userId}``."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from portal_messaging.realtime.paths import children_of
from portal_messaging.realtime.store import RealtimeStore, Subscription, invoke

from . import wire
from .models import ConversationSummary

logger = logging.getLogger(__name__)

DirectoryCallback = Callable[["ConversationDirectory"], Optional[Awaitable[None]]]


class ConversationDirectory:
	def __init__(self, store: RealtimeStore, user_id: int, *, on_change: DirectoryCallback | None = None) -> None:
		self.user_id = user_id
		self._store = store
		self._on_change = on_change
		self._summaries: Dict[str, ConversationSummary] = {}
		self._subscription: Subscription | None = None

	async def open(self) -> None:
		if self._subscription is None:
			self._subscription = await self._store.on_value(wire.user_conversations(self.user_id), self._on_value)

	def close(self) -> None:
		if self._subscription is not None:
			self._subscription.close()
			self._subscription = None

	@property
	def summaries(self) -> List[ConversationSummary]:
		"""Summaries, most recently updated first; ties keep store order."""
		return sorted(self._summaries.values(), key=lambda summary: summary.updated_at, reverse=True)

	def get(self, conversation_id: str) -> Optional[ConversationSummary]:
		return self._summaries.get(conversation_id)

	def most_recent(self) -> Optional[ConversationSummary]:
		ordered = self.summaries
		return ordered[0] if ordered else None

	async def _on_value(self, value: Any) -> None:
		summaries: Dict[str, ConversationSummary] = {}
		for conversation_id, record in children_of(value).items():
			summary = ConversationSummary.from_record(record, conversation_id=conversation_id)
			if summary is None:
				logger.debug("skipping malformed directory entry", extra={"conversation_id": conversation_id})
				continue
			summaries[conversation_id] = summary
		self._summaries = summaries
		if self._on_change is not None:
			await invoke(self._on_change, self)
