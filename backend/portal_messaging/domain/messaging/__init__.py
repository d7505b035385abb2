"""Messaging domain exports."""

from .directory import ConversationDirectory
from .errors import ConversationCreateFailed, InvalidConversation, MarkSeenFailed, MessagingError, SendFailed
from .message_stream import MessageStream
from .models import ChatUser, Conversation, ConversationSummary, Message, PairKey
from .profiles import DisplayNameCache
from .session import MessagingSession, SessionState
from .unread import UnreadCounter, count_unread

__all__ = [
	"ChatUser",
	"Conversation",
	"ConversationCreateFailed",
	"ConversationDirectory",
	"ConversationSummary",
	"DisplayNameCache",
	"InvalidConversation",
	"MarkSeenFailed",
	"Message",
	"MessageStream",
	"MessagingError",
	"MessagingSession",
	"PairKey",
	"SendFailed",
	"SessionState",
	"UnreadCounter",
	"count_unread",
]
