"""Builders for the atomic multi-path batches that mutate conversations.

Every write that touches the registry, the per-user directories, the private
pair index or a message log is assembled here and applied by the session as a
single ``RealtimeStore.update`` call.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Sequence

from portal_messaging.realtime.paths import SERVER_TIMESTAMP, join_path

from . import wire
from .models import DIRECT_MESSAGE_TITLE, GROUP, PRIVATE, ChatUser, Conversation, PairKey


def unique_members(members: Iterable[int]) -> tuple[int, ...]:
	seen: list[int] = []
	for member in members:
		member_id = int(member)
		if member_id not in seen:
			seen.append(member_id)
	return tuple(seen)


def new_private_conversation(conversation_id: str, creator_id: int, other_user_id: int, now_ms: int) -> Conversation:
	return Conversation(
		id=conversation_id,
		type=PRIVATE,
		title=DIRECT_MESSAGE_TITLE,
		members=(int(creator_id), int(other_user_id)),
		created_at=now_ms,
		updated_at=now_ms,
	)


def new_group_conversation(
	conversation_id: str,
	creator_id: int,
	member_ids: Iterable[int],
	title: str,
	now_ms: int,
) -> Conversation:
	return Conversation(
		id=conversation_id,
		type=GROUP,
		title=title,
		members=unique_members([creator_id, *member_ids]),
		created_at=now_ms,
		updated_at=now_ms,
	)


def private_conversation_batch(
	conversation: Conversation,
	*,
	creator: ChatUser,
	counterpart_title: str,
	pair: PairKey,
) -> Dict[str, Any]:
	"""Registry record, both directory entries and the pair index in one batch.

	Each directory copy is titled with the other member's name.
	"""
	record = conversation.to_record()
	updates: Dict[str, Any] = {wire.conversation(conversation.id): record}
	for member in conversation.members:
		title = counterpart_title if member == creator.id else creator.display_name
		updates[wire.user_conversation(member, conversation.id)] = {**record, "title": title}
	updates[wire.private_pair(pair)] = {"id": conversation.id}
	return updates


def group_conversation_batch(conversation: Conversation) -> Dict[str, Any]:
	record = conversation.to_record()
	updates: Dict[str, Any] = {wire.conversation(conversation.id): record}
	for member in conversation.members:
		updates[wire.user_conversation(member, conversation.id)] = dict(record)
	return updates


def message_batch(
	conversation_id: str,
	message_id: str,
	payload: Dict[str, Any],
	members: Sequence[int],
) -> Dict[str, Any]:
	"""Message node plus the registry and directory bumps that accompany it."""
	updates: Dict[str, Any] = {
		wire.message(conversation_id, message_id): payload,
		join_path(wire.conversation(conversation_id), "updatedAt"): SERVER_TIMESTAMP,
	}
	for member in unique_members(members):
		entry = wire.user_conversation(member, conversation_id)
		updates[join_path(entry, "updatedAt")] = SERVER_TIMESTAMP
		updates[join_path(entry, "lastMessage")] = payload["text"]
	return updates


def seen_batch(conversation_id: str, message_ids: Iterable[str], user_id: int, now_ms: int) -> Dict[str, Any]:
	return {wire.seen_receipt(conversation_id, message_id, user_id): now_ms for message_id in message_ids}
