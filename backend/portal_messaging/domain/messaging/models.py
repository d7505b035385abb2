"""Domain models for realtime conversations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

PRIVATE = "private"
GROUP = "group"
CONVERSATION_TYPES = (PRIVATE, GROUP)

DIRECT_MESSAGE_TITLE = "Direct Message"


def _as_user_id(value: Any) -> Optional[int]:
	if isinstance(value, bool) or not isinstance(value, int):
		return None
	return value


def _as_millis(value: Any) -> Optional[int]:
	if isinstance(value, bool) or not isinstance(value, (int, float)):
		return None
	return int(value)


@dataclass(slots=True, frozen=True)
class ChatUser:
	"""Identity tuple handed over by the authentication collaborator."""

	id: int
	name: Optional[str] = None
	avatar: Optional[str] = None

	@property
	def display_name(self) -> str:
		return self.name or f"User {self.id}"


@dataclass(slots=True, frozen=True)
class PairKey:
	"""Canonical representation of an unordered pair of user ids."""

	user_a: int
	user_b: int

	@classmethod
	def from_participants(cls, user_one: int, user_two: int) -> "PairKey":
		ordered = sorted((int(user_one), int(user_two)))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@property
	def key(self) -> str:
		return f"{self.user_a}_{self.user_b}"


@dataclass(slots=True)
class Conversation:
	id: str
	type: str
	title: str
	members: Tuple[int, ...]
	created_at: int
	updated_at: int

	def to_record(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"type": self.type,
			"title": self.title,
			"members": list(self.members),
			"createdAt": self.created_at,
			"updatedAt": self.updated_at,
		}

	def counterpart_of(self, user_id: int) -> Optional[int]:
		"""Other member of a private conversation."""
		if self.type != PRIVATE:
			return None
		others = [member for member in self.members if member != user_id]
		return others[0] if len(others) == 1 else None

	@classmethod
	def from_record(cls, record: Any, *, conversation_id: Optional[str] = None) -> Optional["Conversation"]:
		fields = _conversation_fields(record, conversation_id)
		return cls(**fields) if fields is not None else None


@dataclass(slots=True)
class ConversationSummary(Conversation):
	"""Directory copy of a conversation as one member sees it."""

	last_message: Optional[str] = None

	def to_record(self) -> Dict[str, Any]:
		record = Conversation.to_record(self)
		if self.last_message is not None:
			record["lastMessage"] = self.last_message
		return record

	@classmethod
	def from_record(cls, record: Any, *, conversation_id: Optional[str] = None) -> Optional["ConversationSummary"]:
		fields = _conversation_fields(record, conversation_id)
		if fields is None:
			return None
		last_message = record.get("lastMessage")
		return cls(**fields, last_message=last_message if isinstance(last_message, str) else None)


def _conversation_fields(record: Any, conversation_id: Optional[str]) -> Optional[Dict[str, Any]]:
	if not isinstance(record, Mapping):
		return None
	conv_id = record.get("id") or conversation_id
	kind = record.get("type")
	raw_members = record.get("members")
	if not isinstance(conv_id, str) or kind not in CONVERSATION_TYPES:
		return None
	if isinstance(raw_members, Mapping):
		raw_members = list(raw_members.values())
	if not isinstance(raw_members, Sequence) or isinstance(raw_members, str):
		return None
	members = tuple(member for member in (_as_user_id(item) for item in raw_members) if member is not None)
	if len(members) != len(raw_members):
		return None
	title = record.get("title")
	created_at = _as_millis(record.get("createdAt")) or 0
	updated_at = _as_millis(record.get("updatedAt")) or created_at
	return {
		"id": conv_id,
		"type": kind,
		"title": title if isinstance(title, str) else "",
		"members": members,
		"created_at": created_at,
		"updated_at": updated_at,
	}


@dataclass(slots=True)
class Message:
	id: str
	conversation_id: str
	sender_id: int
	text: str
	sent_at: int
	sender_name: Optional[str] = None
	seen_by: Dict[str, int] = field(default_factory=dict)

	def has_seen(self, user_id: int) -> bool:
		return bool(self.seen_by.get(str(user_id)))

	def to_record(self) -> Dict[str, Any]:
		record: Dict[str, Any] = {
			"text": self.text,
			"senderId": self.sender_id,
			"sentAt": self.sent_at,
			"seenBy": dict(self.seen_by),
		}
		if self.sender_name:
			record["senderName"] = self.sender_name
		return record

	@classmethod
	def from_record(
		cls,
		conversation_id: str,
		message_id: str,
		record: Any,
		*,
		now_ms: Optional[int] = None,
	) -> Optional["Message"]:
		"""Materialise a stream node, or ``None`` when the node is not a usable message."""
		if not isinstance(record, Mapping):
			return None
		text = record.get("text")
		sender_id = _as_user_id(record.get("senderId"))
		if not isinstance(text, str) or not text.strip() or sender_id is None:
			return None
		sent_at = _as_millis(record.get("sentAt"))
		if sent_at is None:
			sent_at = now_ms or 0
		sender_name = record.get("senderName")
		raw_seen = record.get("seenBy")
		seen_by: Dict[str, int] = {}
		if isinstance(raw_seen, Mapping):
			for user_key, stamp in raw_seen.items():
				millis = _as_millis(stamp)
				if millis is not None:
					seen_by[str(user_key)] = millis
		return cls(
			id=message_id,
			conversation_id=conversation_id,
			sender_id=sender_id,
			text=text,
			sent_at=sent_at,
			sender_name=sender_name if isinstance(sender_name, str) and sender_name else None,
			seen_by=seen_by,
		)
