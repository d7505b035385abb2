"""Realtime store contract and subscription dispatch shared by the backends."""

from __future__ import annotations

import abc
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from portal_messaging.obs import metrics as obs_metrics

from .errors import InvalidPath, PreconditionFailed, StoreError, WriteRejected
from .keys import generate_key
from .paths import children_of, ensure_disjoint, is_related, normalize_path, normalize_value, resolve_server_values

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], Optional[Awaitable[None]]]
ChildCallback = Callable[[str, Any], Optional[Awaitable[None]]]

_UNSET = object()


async def invoke(callback: Callable[..., Any], *args: Any) -> None:
	"""Call a plain or coroutine callback and await its result when needed."""
	result = callback(*args)
	if inspect.isawaitable(result):
		await result


class Subscription:
	"""Handle for one value or child-added stream; ``close()`` detaches it."""

	VALUE = "value"
	CHILD_ADDED = "child_added"

	def __init__(self, store: "RealtimeStore", path: str, kind: str, callback: Callable[..., Any]) -> None:
		self.store = store
		self.path = path
		self.kind = kind
		self._callback = callback
		self.active = True
		self._busy = False
		self._dirty = False
		self._last_value: Any = _UNSET
		self._seen: set[str] = set()

	def close(self) -> None:
		if not self.active:
			return
		self.active = False
		self.store._detach(self)

	def __call__(self) -> None:
		self.close()

	def __repr__(self) -> str:
		state = "active" if self.active else "closed"
		return f"<Subscription {self.kind} {self.path!r} {state}>"


class RealtimeStore(abc.ABC):
	"""Hierarchical realtime datastore with atomic multi-path writes.

	Backends implement ``get``, ``_commit`` and ``_server_time_ms``; fan-out to
	subscribers lives here so every backend delivers events the same way:

	- value streams get the current value on subscribe and the latest value after
	  every related write, identical consecutive values coalesced;
	- child-added streams replay existing children once in key order, then new
	  children as they appear, never delivering a key twice;
	- a closed subscription never sees another callback.
	"""

	backend: str = "abstract"

	def __init__(self) -> None:
		self._subscriptions: List[Subscription] = []
		self._closed = False

	# --- backend hooks -------------------------------------------------
	@abc.abstractmethod
	async def get(self, path: str) -> Any:
		"""Return the value stored at ``path`` or ``None``."""

	@abc.abstractmethod
	async def _commit(self, writes: Dict[str, Any], guards: Tuple[str, ...]) -> None:
		"""Apply ``writes`` all-or-nothing, failing if any guard path holds a value."""

	@abc.abstractmethod
	async def _server_time_ms(self) -> int:
		...

	async def _before_subscribe(self) -> None:
		"""Hook run before the initial read of a new subscription."""

	async def _shutdown(self) -> None:
		"""Hook run by ``close`` after subscriptions are detached."""

	# --- public API ----------------------------------------------------
	def generate_key(self) -> str:
		return generate_key()

	async def update(self, updates: Mapping[str, Any], *, if_absent: Iterable[str] = ()) -> None:
		"""Apply every path/value pair as one atomic merge.

		Raises ``PreconditionFailed`` when a path in ``if_absent`` already holds a
		value and ``WriteRejected`` when the backend refuses the write.
		"""
		if self._closed:
			raise WriteRejected("store_closed")
		if not updates:
			return
		writes: Dict[str, Any] = {}
		for path, value in updates.items():
			normalized = normalize_path(path)
			if not normalized:
				raise InvalidPath("updates must target a child path")
			writes[normalized] = value
		ensure_disjoint(writes)
		guards = tuple(normalize_path(path) for path in if_absent)
		started = time.perf_counter()
		try:
			now_ms = await self._server_time_ms()
			resolved = {path: normalize_value(resolve_server_values(value, now_ms)) for path, value in writes.items()}
			await self._commit(resolved, guards)
		except PreconditionFailed:
			obs_metrics.record_store_write(self.backend, "precondition_failed")
			raise
		except WriteRejected:
			obs_metrics.record_store_write(self.backend, "rejected")
			logger.warning("realtime write rejected", extra={"backend": self.backend, "paths": sorted(writes)})
			raise
		obs_metrics.record_store_write(self.backend, "ok", time.perf_counter() - started)
		await self._notify(tuple(resolved))

	async def on_value(self, path: str, callback: ValueCallback) -> Subscription:
		return await self._subscribe(path, Subscription.VALUE, callback)

	async def on_child_added(self, path: str, callback: ChildCallback) -> Subscription:
		return await self._subscribe(path, Subscription.CHILD_ADDED, callback)

	async def close(self) -> None:
		self._closed = True
		for subscription in list(self._subscriptions):
			subscription.close()
		await self._shutdown()

	@property
	def closed(self) -> bool:
		return self._closed

	# --- dispatch ------------------------------------------------------
	async def _subscribe(self, path: str, kind: str, callback: Callable[..., Any]) -> Subscription:
		if self._closed:
			raise WriteRejected("store_closed")
		subscription = Subscription(self, normalize_path(path), kind, callback)
		await self._before_subscribe()
		self._subscriptions.append(subscription)
		obs_metrics.subscription_opened(kind)
		await self._deliver(subscription)
		return subscription

	def _detach(self, subscription: Subscription) -> None:
		try:
			self._subscriptions.remove(subscription)
		except ValueError:
			return
		obs_metrics.subscription_closed(subscription.kind)

	async def _notify(self, changed_paths: Tuple[str, ...]) -> None:
		for subscription in list(self._subscriptions):
			if not subscription.active:
				continue
			if any(is_related(subscription.path, changed) for changed in changed_paths):
				await self._deliver(subscription)

	async def _deliver(self, subscription: Subscription) -> None:
		# A delivery already running for this subscription (we are inside its
		# callback, or another task is) re-reads once it finishes.
		if subscription._busy:
			subscription._dirty = True
			return
		subscription._busy = True
		try:
			while subscription.active:
				subscription._dirty = False
				try:
					await self._deliver_once(subscription)
				except StoreError:
					logger.warning("realtime read failed", extra={"path": subscription.path}, exc_info=True)
				except Exception:
					logger.exception("realtime callback failed", extra={"path": subscription.path, "kind": subscription.kind})
				if not subscription._dirty:
					break
		finally:
			subscription._busy = False

	async def _deliver_once(self, subscription: Subscription) -> None:
		value = await self.get(subscription.path)
		if not subscription.active:
			return
		if subscription.kind == Subscription.VALUE:
			if subscription._last_value is not _UNSET and value == subscription._last_value:
				return
			subscription._last_value = value
			obs_metrics.store_event(subscription.kind)
			await invoke(subscription._callback, value)
			return
		children = children_of(value)
		for key in sorted(key for key in children if key not in subscription._seen):
			if not subscription.active:
				return
			subscription._seen.add(key)
			obs_metrics.store_event(subscription.kind)
			await invoke(subscription._callback, key, children[key])
