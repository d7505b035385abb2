"""Messaging session controller.

One ``MessagingSession`` per client view composes the conversation directory,
the registry and the message log into the user-facing protocol. Every mutation
is a single atomic multi-path update built by :mod:`.registry`; the session
never writes a registry or directory path on its own, and a sender sees its
own message only through the same child-added stream every other member uses.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence

from portal_messaging.infra.user_directory import UserDirectoryClient, build_user_directory_client
from portal_messaging.obs import logging as obs_logging
from portal_messaging.obs import metrics as obs_metrics
from portal_messaging.realtime import client as realtime_client
from portal_messaging.realtime.errors import PreconditionFailed, StoreError
from portal_messaging.realtime.store import RealtimeStore, invoke

from . import registry, wire
from .directory import ConversationDirectory
from .errors import ConversationCreateFailed, InvalidConversation, MarkSeenFailed, MessagingError, SendFailed
from .message_stream import MessageStream
from .models import DIRECT_MESSAGE_TITLE, PRIVATE, ChatUser, Conversation, ConversationSummary, Message, PairKey
from .profiles import DisplayNameCache

logger = logging.getLogger(__name__)

Listener = Callable[["MessagingSession"], Optional[Awaitable[None]]]


class SessionState(str, enum.Enum):
	NO_USER = "no_user"
	IDLE = "idle"
	CONVERSATION_SELECTED = "conversation_selected"


class MessagingSession:
	def __init__(
		self,
		user: ChatUser | None,
		*,
		store: RealtimeStore | None = None,
		names: DisplayNameCache | None = None,
		user_directory: UserDirectoryClient | None = None,
		initial_conversation_id: str | None = None,
		clock: Callable[[], int] | None = None,
	) -> None:
		self.user = user
		self._store = store
		self._owned_directory: UserDirectoryClient | None = None
		if names is None:
			if user_directory is None:
				user_directory = self._owned_directory = build_user_directory_client()
			names = DisplayNameCache(user_directory)
		self._names = names
		self._names.on_resolved = self._on_name_resolved
		self._clock = clock or (lambda: int(time.time() * 1000))
		self._initial_conversation_id = initial_conversation_id
		self._directory: ConversationDirectory | None = None
		self._stream: MessageStream | None = None
		self._selected_id: str | None = None
		self._marking: set[str] = set()
		self._listeners: List[Listener] = []
		self.last_error: MessagingError | None = None
		if user is not None:
			self._names.remember(user.id, user.name)

	# --- reactive state --------------------------------------------------
	@property
	def state(self) -> SessionState:
		if self.user is None:
			return SessionState.NO_USER
		if self._selected_id is None:
			return SessionState.IDLE
		return SessionState.CONVERSATION_SELECTED

	@property
	def store(self) -> RealtimeStore:
		if self._store is None:
			raise RuntimeError("messaging session has not been started")
		return self._store

	@property
	def selected_conversation_id(self) -> str | None:
		return self._selected_id

	@property
	def conversations(self) -> List[ConversationSummary]:
		return self._directory.summaries if self._directory is not None else []

	@property
	def messages(self) -> List[Message]:
		return self._stream.messages if self._stream is not None else []

	@property
	def names(self) -> DisplayNameCache:
		return self._names

	def title_for(self, summary: ConversationSummary) -> str:
		"""Sidebar/header title; private threads fall back to the counterpart's name."""
		if summary.type != PRIVATE or self.user is None:
			return summary.title
		if summary.title and summary.title != DIRECT_MESSAGE_TITLE:
			return summary.title
		counterpart = summary.counterpart_of(self.user.id)
		if counterpart is None:
			return summary.title or DIRECT_MESSAGE_TITLE
		return self._names.name_for(counterpart)

	def add_listener(self, listener: Listener) -> Callable[[], None]:
		self._listeners.append(listener)

		def _remove() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return _remove

	async def _notify(self) -> None:
		for listener in list(self._listeners):
			await invoke(listener, self)

	# --- lifecycle -------------------------------------------------------
	async def start(self) -> None:
		if self._store is None:
			handle = await realtime_client.connect(self.user)
			self._store = handle.store
		if self.user is None or self._directory is not None:
			return
		self._directory = ConversationDirectory(self._store, self.user.id, on_change=self._on_directory)
		if self._initial_conversation_id:
			await self.select_conversation(self._initial_conversation_id)
		await self._directory.open()

	async def stop(self) -> None:
		if self._stream is not None:
			self._stream.close()
			self._stream = None
		if self._directory is not None:
			self._directory.close()
			self._directory = None
		self._selected_id = None
		self._marking.clear()
		await self._names.cancel_pending()
		owned, self._owned_directory = self._owned_directory, None
		if owned is not None:
			await owned.http.aclose()

	async def _on_directory(self, directory: ConversationDirectory) -> None:
		if self._selected_id is None:
			latest = directory.most_recent()
			if latest is not None:
				await self.select_conversation(latest.id)
				return
		await self._notify()

	async def _on_name_resolved(self, user_id: int, name: str) -> None:
		await self._notify()

	# --- conversation selection -----------------------------------------
	async def select_conversation(self, conversation_id: str) -> None:
		"""Switch the message stream to ``conversation_id``.

		The previous stream is closed and the materialised list cleared before the
		new stream opens, so nothing from the old conversation can be appended.
		"""
		if self.user is None:
			return
		previous, self._stream = self._stream, None
		if previous is not None:
			previous.close()
		self._selected_id = conversation_id
		self._marking.clear()
		await self._notify()
		stream = MessageStream(self.store, conversation_id, on_change=self._on_messages)
		self._stream = stream
		tokens = obs_logging.bind_context(user_id=str(self.user.id), conversation_id=conversation_id)
		try:
			await stream.open()
		finally:
			obs_logging.reset_context(tokens)

	async def _on_messages(self, stream: MessageStream) -> None:
		if stream is not self._stream:
			return
		await self._notify()
		try:
			await self.mark_seen()
		except MarkSeenFailed:
			# Already logged and recorded on last_error for the view.
			pass

	# --- operations ------------------------------------------------------
	async def send_message(self, text: str) -> str | None:
		"""Append a message to the selected conversation; returns its id.

		Blank text, no selection or no user is a silent no-op returning ``None``.
		"""
		body = (text or "").strip()
		if not body or self.user is None or self._selected_id is None:
			return None
		conversation_id = self._selected_id
		members = await self._members_of(conversation_id)
		message_id = self.store.generate_key()
		now = self._clock()
		payload: dict[str, Any] = {
			"text": body,
			"senderId": self.user.id,
			"sentAt": now,
			"seenBy": {str(self.user.id): now},
		}
		if self.user.name:
			payload["senderName"] = self.user.name
		try:
			await self.store.update(registry.message_batch(conversation_id, message_id, payload, members))
		except StoreError as exc:
			obs_metrics.inc_chat_send_failed()
			logger.warning(
				"chat.send failed",
				extra={"conversation_id": conversation_id, "message_id": message_id, "reason": exc.reason},
			)
			raise self._fail(SendFailed(exc.reason, conversation_id=conversation_id)) from exc
		obs_metrics.inc_chat_send()
		logger.info("chat.send", extra={"conversation_id": conversation_id, "message_id": message_id})
		return message_id

	async def mark_seen(self) -> int:
		"""Write receipts for materialised messages the user has not marked yet."""
		stream = self._stream
		if self.user is None or stream is None:
			return 0
		user_id = self.user.id
		pending = [m.id for m in stream.messages if not m.has_seen(user_id) and m.id not in self._marking]
		if not pending:
			return 0
		now = self._clock()
		self._marking.update(pending)
		try:
			await self.store.update(registry.seen_batch(stream.conversation_id, pending, user_id, now))
		except StoreError as exc:
			logger.warning(
				"chat.mark_seen failed",
				extra={"conversation_id": stream.conversation_id, "count": len(pending), "reason": exc.reason},
			)
			raise self._fail(MarkSeenFailed(exc.reason, conversation_id=stream.conversation_id)) from exc
		finally:
			self._marking.difference_update(pending)
		stream.mark_seen_locally(pending, user_id, now)
		obs_metrics.inc_chat_read(len(pending))
		return len(pending)

	async def ensure_private_conversation(self, other_user_id: int, title: str | None = None) -> str | None:
		"""Select the private conversation with ``other_user_id``, creating it if needed."""
		if self.user is None:
			return None
		other = int(other_user_id)
		if other == self.user.id:
			raise self._fail(InvalidConversation("cannot_message_self"))
		pair = PairKey.from_participants(self.user.id, other)
		if title:
			self._names.remember(other, title)
		existing = await self._lookup_pair(pair)
		if existing is not None:
			await self.select_conversation(existing)
			return existing
		conversation = registry.new_private_conversation(self.store.generate_key(), self.user.id, other, self._clock())
		batch = registry.private_conversation_batch(
			conversation,
			creator=self.user,
			counterpart_title=title or DIRECT_MESSAGE_TITLE,
			pair=pair,
		)
		try:
			await self.store.update(batch, if_absent=[wire.private_pair(pair)])
		except PreconditionFailed:
			# Another client created the pair between our lookup and write; adopt theirs.
			obs_metrics.inc_private_pair_race()
			winner = await self._lookup_pair(pair)
			if winner is None:
				raise self._fail(ConversationCreateFailed("pair_conflict"))
			logger.info("chat.private adopted concurrent conversation", extra={"conversation_id": winner})
			await self.select_conversation(winner)
			return winner
		except StoreError as exc:
			logger.warning("chat.private create failed", extra={"reason": exc.reason})
			raise self._fail(ConversationCreateFailed(exc.reason, conversation_id=conversation.id)) from exc
		obs_metrics.inc_conversation_created(PRIVATE)
		logger.info("chat.private created", extra={"conversation_id": conversation.id})
		await self.select_conversation(conversation.id)
		return conversation.id

	async def create_group_conversation(self, member_ids: Iterable[int], title: str) -> str | None:
		if self.user is None:
			return None
		clean_title = (title or "").strip()
		if not clean_title:
			raise self._fail(InvalidConversation("title_required"))
		others = [int(member) for member in member_ids if int(member) != self.user.id]
		if not others:
			raise self._fail(InvalidConversation("members_required"))
		conversation = registry.new_group_conversation(
			self.store.generate_key(),
			self.user.id,
			others,
			clean_title,
			self._clock(),
		)
		try:
			await self.store.update(registry.group_conversation_batch(conversation))
		except StoreError as exc:
			logger.warning("chat.group create failed", extra={"reason": exc.reason})
			raise self._fail(ConversationCreateFailed(exc.reason, conversation_id=conversation.id)) from exc
		obs_metrics.inc_conversation_created(conversation.type)
		logger.info(
			"chat.group created",
			extra={"conversation_id": conversation.id, "members": len(conversation.members)},
		)
		await self.select_conversation(conversation.id)
		return conversation.id

	# --- helpers ---------------------------------------------------------
	def _fail(self, error: MessagingError) -> MessagingError:
		self.last_error = error
		return error

	async def _lookup_pair(self, pair: PairKey) -> str | None:
		try:
			record = await self.store.get(wire.private_pair(pair))
		except StoreError as exc:
			raise self._fail(ConversationCreateFailed(exc.reason)) from exc
		if isinstance(record, dict) and isinstance(record.get("id"), str):
			return record["id"]
		return None

	async def _members_of(self, conversation_id: str) -> Sequence[int]:
		summary = self._directory.get(conversation_id) if self._directory is not None else None
		if summary is not None and summary.members:
			return summary.members
		try:
			record = await self.store.get(wire.conversation(conversation_id))
		except StoreError as exc:
			raise self._fail(SendFailed(exc.reason, conversation_id=conversation_id)) from exc
		conversation = Conversation.from_record(record, conversation_id=conversation_id)
		if conversation is None:
			raise self._fail(SendFailed("unknown_conversation", conversation_id=conversation_id))
		return conversation.members
