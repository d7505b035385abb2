"""Display-name cache backed by the user directory search collaborator."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from portal_messaging.infra.user_directory import UserDirectoryClient
from portal_messaging.realtime.store import invoke

logger = logging.getLogger(__name__)

LOADING_PLACEHOLDER = "Loading…"

ResolvedCallback = Callable[[int, str], Optional[Awaitable[None]]]


def fallback_name(user_id: int) -> str:
	return f"User {user_id}"


class DisplayNameCache:
	"""Names of counterparts that the local directory does not carry.

	``name_for`` never blocks: unknown ids render as ``Loading…`` while a lookup
	runs in the background, and ``on_resolved`` fires once the name is known.
	"""

	def __init__(self, directory: UserDirectoryClient | None = None, *, on_resolved: ResolvedCallback | None = None) -> None:
		self._directory = directory
		self.on_resolved = on_resolved
		self._names: Dict[int, str] = {}
		self._pending: Dict[int, asyncio.Task] = {}

	def remember(self, user_id: int, name: Optional[str]) -> None:
		if name:
			self._names[int(user_id)] = name

	def cached(self, user_id: int) -> Optional[str]:
		return self._names.get(int(user_id))

	def name_for(self, user_id: int) -> str:
		user_id = int(user_id)
		known = self._names.get(user_id)
		if known is not None:
			return known
		self._schedule(user_id)
		return LOADING_PLACEHOLDER

	async def resolve(self, user_id: int) -> str:
		user_id = int(user_id)
		known = self._names.get(user_id)
		if known is not None:
			return known
		if self._directory is not None:
			# Default listing first, then the id itself as a query.
			for query in ("", str(user_id)):
				for candidate in await self._directory.search(query):
					self.remember(candidate.id, candidate.name)
				if user_id in self._names:
					break
		name = self._names.setdefault(user_id, fallback_name(user_id))
		if self.on_resolved is not None:
			await invoke(self.on_resolved, user_id, name)
		return name

	async def wait_pending(self) -> None:
		if self._pending:
			await asyncio.gather(*self._pending.values(), return_exceptions=True)

	async def cancel_pending(self) -> None:
		pending, self._pending = list(self._pending.values()), {}
		for task in pending:
			task.cancel()
		if pending:
			await asyncio.gather(*pending, return_exceptions=True)

	def _schedule(self, user_id: int) -> None:
		if user_id in self._pending:
			return
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			return
		task = loop.create_task(self.resolve(user_id), name=f"display-name:{user_id}")
		self._pending[user_id] = task
		task.add_done_callback(lambda done, uid=user_id: self._forget(uid, done))

	def _forget(self, user_id: int, task: asyncio.Task) -> None:
		if self._pending.get(user_id) is task:
			del self._pending[user_id]
		if not task.cancelled() and task.exception() is not None:
			logger.warning(
				"display name lookup failed",
				extra={"user_id": user_id},
				exc_info=task.exception(),
			)
