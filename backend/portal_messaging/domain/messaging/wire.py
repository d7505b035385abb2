"""Realtime store layout of the messaging core."""

from __future__ import annotations

from portal_messaging.realtime.paths import join_path

from .models import PairKey

USER_CONVERSATIONS = "userConversations"
CONVERSATIONS = "conversations"
PRIVATE_PAIRS = "privatePairs"
MESSAGES = "messages"


def user_conversations(user_id: int) -> str:
	return join_path(USER_CONVERSATIONS, user_id)


def user_conversation(user_id: int, conversation_id: str) -> str:
	return join_path(USER_CONVERSATIONS, user_id, conversation_id)


def conversation(conversation_id: str) -> str:
	return join_path(CONVERSATIONS, conversation_id)


def private_pair(pair: PairKey) -> str:
	return join_path(PRIVATE_PAIRS, pair.key)


def messages(conversation_id: str) -> str:
	return join_path(MESSAGES, conversation_id)


def message(conversation_id: str, message_id: str) -> str:
	return join_path(MESSAGES, conversation_id, message_id)


def seen_receipt(conversation_id: str, message_id: str, user_id: int) -> str:
	return join_path(MESSAGES, conversation_id, message_id, "seenBy", user_id)
