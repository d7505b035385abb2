"""In-process realtime store used by tests and single-process deployments."""

from __future__ import annotations

import asyncio
import copy
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import PreconditionFailed
from .paths import split_path
from .store import RealtimeStore


def _to_tree(value: Any) -> Any:
	if isinstance(value, list):
		return {str(index): _to_tree(nested) for index, nested in enumerate(value)}
	if isinstance(value, dict):
		return {key: _to_tree(nested) for key, nested in value.items()}
	return value


def _from_tree(node: Any) -> Any:
	if not isinstance(node, dict):
		return node
	restored = {key: _from_tree(nested) for key, nested in node.items()}
	if restored and set(restored) == {str(index) for index in range(len(restored))}:
		return [restored[str(index)] for index in range(len(restored))]
	return restored


class MemoryRealtimeStore(RealtimeStore):
	"""Nested-dict tree guarded by an ``asyncio.Lock``."""

	backend = "memory"

	def __init__(self, *, clock: Optional[Callable[[], int]] = None) -> None:
		super().__init__()
		self._lock = asyncio.Lock()
		self._root: Dict[str, Any] = {}
		self._clock = clock or (lambda: int(time.time() * 1000))

	async def _server_time_ms(self) -> int:
		return int(self._clock())

	async def get(self, path: str) -> Any:
		segments = split_path(path)
		async with self._lock:
			node = self._lookup(segments)
			if node is None or node == {}:
				return None
			return _from_tree(copy.deepcopy(node))

	async def _commit(self, writes: Dict[str, Any], guards: Tuple[str, ...]) -> None:
		async with self._lock:
			occupied = tuple(guard for guard in guards if self._lookup(split_path(guard)) is not None)
			if occupied:
				raise PreconditionFailed(occupied)
			# Paths and values were validated up front, so applying cannot fail halfway.
			for path, value in writes.items():
				self._set(split_path(path), value)

	def _lookup(self, segments: Tuple[str, ...]) -> Any:
		node: Any = self._root
		for segment in segments:
			if not isinstance(node, dict):
				return None
			node = node.get(segment)
			if node is None:
				return None
		return node

	def _set(self, segments: Tuple[str, ...], value: Any) -> None:
		node = self._root
		trail: List[Tuple[Dict[str, Any], str]] = []
		for segment in segments[:-1]:
			child = node.get(segment)
			if not isinstance(child, dict):
				child = {}
				node[segment] = child
			trail.append((node, segment))
			node = child
		last = segments[-1]
		if value is None:
			node.pop(last, None)
		else:
			node[last] = _to_tree(copy.deepcopy(value))
		for parent, segment in reversed(trail):
			if parent[segment]:
				break
			del parent[segment]
