"""Domain-level exceptions for realtime messaging."""

from __future__ import annotations


class MessagingError(Exception):
	"""Base class for messaging failures surfaced to the view layer."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None, *, conversation_id: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason
		self.conversation_id = conversation_id


class SendFailed(MessagingError):
	reason = "send_failed"


class MarkSeenFailed(MessagingError):
	reason = "mark_seen_failed"


class ConversationCreateFailed(MessagingError):
	reason = "conversation_create_failed"


class InvalidConversation(MessagingError):
	reason = "invalid_conversation"
