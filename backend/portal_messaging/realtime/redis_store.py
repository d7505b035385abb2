"""Redis-backed realtime store shared by every process of the deployment.

Layout under the namespace prefix ``{ns}``:

- ``{ns}:leaves``  hash of leaf path -> JSON scalar
- ``{ns}:index``   sorted set of leaf paths (score 0) for lexicographic prefix reads
- ``{ns}:events``  pub/sub channel carrying ``{"origin", "paths"}`` per commit

A multi-path update runs as one WATCH/MULTI/EXEC transaction over both keys,
so other clients observe either the whole batch or none of it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from redis.exceptions import RedisError, WatchError

from portal_messaging.infra.redis import RedisProxy, redis_client
from portal_messaging.settings import settings

from .errors import PreconditionFailed, StoreUnavailable, WriteRejected
from .keys import generate_key
from .paths import flatten, normalize_path, unflatten
from .store import RealtimeStore

logger = logging.getLogger(__name__)


def _ancestors(path: str) -> List[str]:
	segments = path.split("/")
	return ["/".join(segments[:depth]) for depth in range(1, len(segments))]


class RedisRealtimeStore(RealtimeStore):
	backend = "redis"

	def __init__(
		self,
		client: RedisProxy | None = None,
		*,
		namespace: str | None = None,
		max_retries: int | None = None,
	) -> None:
		super().__init__()
		self._redis = client or redis_client
		prefix = namespace or settings.realtime_namespace
		self._leaves_key = f"{prefix}:leaves"
		self._index_key = f"{prefix}:index"
		self._channel = f"{prefix}:events"
		self._max_retries = max(1, max_retries or settings.realtime_write_retries)
		self._origin = generate_key()
		self._pubsub = None
		self._listener: Optional[asyncio.Task] = None

	# --- reads ---------------------------------------------------------
	async def get(self, path: str) -> Any:
		normalized = normalize_path(path)
		try:
			if normalized:
				exact = await self._redis.hget(self._leaves_key, normalized)
				if exact is not None:
					return json.loads(exact)
			names = await self._leaf_paths(self._redis, normalized)
			if not names:
				return None
			values = await self._redis.hmget(self._leaves_key, names)
		except RedisError as exc:
			raise StoreUnavailable(str(exc)) from exc
		leaves = {name: raw for name, raw in zip(names, values) if raw is not None}
		return unflatten(normalized, leaves)

	async def _leaf_paths(self, conn, path: str, *, limit: int | None = None) -> List[str]:
		if not path:
			return list(await conn.zrange(self._index_key, 0, -1))
		# "0" sorts right after "/", which bounds every "path/..." member
		kwargs: Dict[str, int] = {"start": 0, "num": limit} if limit else {}
		return list(await conn.zrangebylex(self._index_key, f"[{path}/", f"({path}0", **kwargs))

	# --- writes --------------------------------------------------------
	async def _server_time_ms(self) -> int:
		try:
			return await self._redis.server_time_ms()
		except RedisError as exc:
			raise WriteRejected(str(exc)) from exc

	async def _commit(self, writes: Dict[str, Any], guards: Tuple[str, ...]) -> None:
		for _ in range(self._max_retries):
			try:
				async with self._redis.pipeline(transaction=True) as pipe:
					await pipe.watch(self._leaves_key, self._index_key)
					await self._check_guards(pipe, guards)
					stale, additions = await self._plan(pipe, writes)
					pipe.multi()
					if stale:
						pipe.hdel(self._leaves_key, *stale)
						pipe.zrem(self._index_key, *stale)
					if additions:
						pipe.hset(self._leaves_key, mapping=additions)
						pipe.zadd(self._index_key, {name: 0 for name in additions})
					pipe.publish(self._channel, json.dumps({"origin": self._origin, "paths": list(writes)}))
					await pipe.execute()
					return
			except WatchError:
				continue
			except RedisError as exc:
				raise WriteRejected(str(exc)) from exc
		raise WriteRejected("write_contention")

	async def _check_guards(self, pipe, guards: Iterable[str]) -> None:
		occupied = []
		for guard in guards:
			if await pipe.hexists(self._leaves_key, guard) or await self._leaf_paths(pipe, guard, limit=1):
				occupied.append(guard)
		if occupied:
			raise PreconditionFailed(tuple(occupied))

	async def _plan(self, pipe, writes: Dict[str, Any]) -> Tuple[Set[str], Dict[str, str]]:
		stale: Set[str] = set()
		additions: Dict[str, str] = {}
		for path, value in writes.items():
			candidates = [path, *_ancestors(path)]
			existing = await pipe.hmget(self._leaves_key, candidates)
			stale.update(name for name, raw in zip(candidates, existing) if raw is not None)
			stale.update(await self._leaf_paths(pipe, path))
			additions.update(flatten(path, value))
		return stale - additions.keys(), additions

	# --- change feed ---------------------------------------------------
	async def _before_subscribe(self) -> None:
		if self._listener is not None:
			return
		try:
			pubsub = self._redis.pubsub()
			await pubsub.subscribe(self._channel)
		except RedisError as exc:
			raise StoreUnavailable(str(exc)) from exc
		self._pubsub = pubsub
		self._listener = asyncio.create_task(self._listen(), name=f"realtime-listener:{self._channel}")

	async def _listen(self) -> None:
		assert self._pubsub is not None
		while not self._closed:
			try:
				message = await self._pubsub.get_message(
					ignore_subscribe_messages=True,
					timeout=settings.realtime_listener_poll_seconds,
				)
			except RedisError:
				logger.warning("realtime listener lost its connection", extra={"channel": self._channel}, exc_info=True)
				await asyncio.sleep(settings.realtime_listener_poll_seconds)
				continue
			if not message:
				continue
			await self._handle_event(message.get("data"))

	async def _handle_event(self, data: Any) -> None:
		try:
			event = json.loads(data)
			origin = event["origin"]
			paths = tuple(str(path) for path in event["paths"])
		except (TypeError, ValueError, KeyError):
			logger.warning("discarding malformed realtime event", extra={"channel": self._channel})
			return
		if origin == self._origin:
			return
		await self._notify(paths)

	async def _shutdown(self) -> None:
		listener, self._listener = self._listener, None
		if listener is not None:
			listener.cancel()
			try:
				await listener
			except asyncio.CancelledError:
				pass
		pubsub, self._pubsub = self._pubsub, None
		if pubsub is not None:
			try:
				await pubsub.unsubscribe(self._channel)
				await pubsub.aclose()
			except RedisError:
				logger.warning("failed to close realtime pubsub", extra={"channel": self._channel}, exc_info=True)
