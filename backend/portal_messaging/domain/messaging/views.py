"""View-layer contracts over ``MessagingSession``.

These objects hold the ephemeral UI state (drafts, search queries, picker
selections) and only ever reach the store through session operations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List, Optional, Set

from portal_messaging.infra.user_directory import UserDirectoryClient, UserSummary

from .errors import MessagingError, SendFailed
from .models import ConversationSummary, Message
from .profiles import fallback_name

if TYPE_CHECKING:
	from .session import MessagingSession
	from .unread import UnreadCounter

logger = logging.getLogger(__name__)

SEEN = "seen"
SENT = "sent"


def delivery_status(message: Message, members: Iterable[int], current_user_id: int) -> str:
	"""``seen`` once any other member holds a receipt for ``message``."""
	for member in members:
		if member != current_user_id and message.has_seen(member):
			return SEEN
	return SENT


def sender_label(message: Message) -> str:
	return message.sender_name or fallback_name(message.sender_id)


class MessageComposer:
	def __init__(self, session: "MessagingSession") -> None:
		self.session = session
		self.draft = ""
		self.busy = False
		self.error: SendFailed | None = None

	async def submit(self) -> Optional[str]:
		text = self.draft.strip()
		if not text or self.busy:
			return None
		self.busy = True
		self.error = None
		try:
			message_id = await self.session.send_message(text)
		except SendFailed as exc:
			# Draft stays so the user can retry.
			self.error = exc
			return None
		finally:
			self.busy = False
		if message_id is not None:
			self.draft = ""
		return message_id


@dataclass(slots=True)
class SidebarItem:
	conversation_id: str
	title: str
	last_message: Optional[str]
	updated_at: int
	unread: int = 0
	selected: bool = False


class Sidebar:
	def __init__(self, session: "MessagingSession", unread: "UnreadCounter | None" = None) -> None:
		self.session = session
		self.unread = unread
		self.query = ""

	def _matches(self, title: str, summary: ConversationSummary) -> bool:
		needle = self.query.strip().casefold()
		if not needle:
			return True
		return needle in title.casefold() or needle in (summary.last_message or "").casefold()

	def items(self) -> List[SidebarItem]:
		selected = self.session.selected_conversation_id
		rows: List[SidebarItem] = []
		for summary in self.session.conversations:
			title = self.session.title_for(summary)
			if not self._matches(title, summary):
				continue
			rows.append(
				SidebarItem(
					conversation_id=summary.id,
					title=title,
					last_message=summary.last_message,
					updated_at=summary.updated_at,
					unread=self.unread.count_for(summary.id) if self.unread is not None else 0,
					selected=summary.id == selected,
				)
			)
		return rows


class DirectUserPicker:
	def __init__(self, session: "MessagingSession", directory: UserDirectoryClient) -> None:
		self.session = session
		self.directory = directory
		self.query = ""
		self.results: List[UserSummary] = []
		self.error: MessagingError | None = None

	def _current_user_id(self) -> Optional[int]:
		return self.session.user.id if self.session.user is not None else None

	async def search(self, query: str | None = None) -> List[UserSummary]:
		if query is not None:
			self.query = query
		self.results = await self.directory.search(self.query, exclude_user_id=self._current_user_id())
		for user in self.results:
			self.session.names.remember(user.id, user.name)
		return self.results

	async def choose(self, user: UserSummary) -> Optional[str]:
		self.error = None
		try:
			return await self.session.ensure_private_conversation(user.id, user.name or None)
		except MessagingError as exc:
			self.error = exc
			logger.info("direct message could not be opened", extra={"user_id": user.id, "reason": exc.reason})
			return None


@dataclass
class GroupPicker:
	session: "MessagingSession"
	directory: UserDirectoryClient
	query: str = ""
	title: str = ""
	results: List[UserSummary] = field(default_factory=list)
	selected: Set[int] = field(default_factory=set)
	error: Optional[MessagingError] = None

	async def search(self, query: str | None = None) -> List[UserSummary]:
		if query is not None:
			self.query = query
		exclude = self.session.user.id if self.session.user is not None else None
		self.results = await self.directory.search(self.query, exclude_user_id=exclude)
		for user in self.results:
			self.session.names.remember(user.id, user.name)
		return self.results

	def toggle(self, user_id: int) -> None:
		if user_id in self.selected:
			self.selected.discard(user_id)
		else:
			self.selected.add(user_id)

	@property
	def can_submit(self) -> bool:
		return bool(self.selected) and bool(self.title.strip())

	async def submit(self) -> Optional[str]:
		if not self.can_submit:
			return None
		self.error = None
		try:
			conversation_id = await self.session.create_group_conversation(sorted(self.selected), self.title)
		except MessagingError as exc:
			# Selection and title stay so the user can retry.
			self.error = exc
			logger.info("group conversation could not be created", extra={"reason": exc.reason})
			return None
		self.selected.clear()
		self.title = ""
		return conversation_id
