"""Path and tree helpers shared by the realtime store backends.

Paths are ``/``-separated segment strings. Tree values are JSON-compatible;
``None`` means "no value" and writing it deletes the node.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .errors import InvalidPath

_FORBIDDEN_CHARS = frozenset(".#$[]")

SERVER_TIMESTAMP: Dict[str, str] = {".sv": "timestamp"}


def split_path(path: str) -> Tuple[str, ...]:
	"""Validate ``path`` and return its segments; the root is ``()``."""
	if not isinstance(path, str):
		raise InvalidPath(f"path must be a string, got {type(path).__name__}")
	stripped = path.strip("/")
	if not stripped:
		return ()
	segments = tuple(stripped.split("/"))
	for segment in segments:
		if not segment:
			raise InvalidPath(f"empty segment in path: {path!r}")
		if any(char in _FORBIDDEN_CHARS for char in segment):
			raise InvalidPath(f"forbidden character in path: {path!r}")
	return segments


def join_path(*segments: object) -> str:
	return "/".join(str(segment) for segment in segments)


def normalize_path(path: str) -> str:
	return "/".join(split_path(path))


def is_related(listener_path: str, changed_path: str) -> bool:
	"""True when a write at ``changed_path`` can change the value at ``listener_path``."""
	if not listener_path or not changed_path:
		return True
	if listener_path == changed_path:
		return True
	return changed_path.startswith(listener_path + "/") or listener_path.startswith(changed_path + "/")


def ensure_disjoint(paths: Iterable[str]) -> None:
	"""Reject batches where one path is an ancestor of another."""
	ordered = sorted(paths)
	for left, right in zip(ordered, ordered[1:]):
		if left == right or right.startswith(left + "/"):
			raise InvalidPath(f"overlapping paths in one update: {left!r} and {right!r}")


def is_server_timestamp(value: Any) -> bool:
	return isinstance(value, dict) and value == SERVER_TIMESTAMP


def resolve_server_values(value: Any, now_ms: int) -> Any:
	if is_server_timestamp(value):
		return now_ms
	if isinstance(value, dict):
		return {str(key): resolve_server_values(nested, now_ms) for key, nested in value.items()}
	if isinstance(value, (list, tuple)):
		return [resolve_server_values(nested, now_ms) for nested in value]
	return value


def _check_key(key: str) -> None:
	if len(split_path(key)) != 1:
		raise InvalidPath(f"invalid child key: {key!r}")


def normalize_value(value: Any) -> Any:
	"""Drop empty containers and ``None`` children the way the store would."""
	if isinstance(value, (list, tuple)):
		value = {str(index): nested for index, nested in enumerate(value)}
	if isinstance(value, dict):
		result: Dict[str, Any] = {}
		for key, nested in value.items():
			_check_key(str(key))
			cleaned = normalize_value(nested)
			if cleaned is not None:
				result[str(key)] = cleaned
		return _as_list_if_sequential(result) if result else None
	if value is None or isinstance(value, (str, bool, int, float)):
		return value
	raise TypeError(f"unsupported value type for realtime store: {type(value).__name__}")


def _as_list_if_sequential(node: Dict[str, Any]) -> Any:
	if node and set(node) == {str(index) for index in range(len(node))}:
		return [node[str(index)] for index in range(len(node))]
	return node


def children_of(value: Any) -> Dict[str, Any]:
	"""Return the child mapping of a node value, lists included."""
	if isinstance(value, dict):
		return value
	if isinstance(value, list):
		return {str(index): nested for index, nested in enumerate(value)}
	return {}


def flatten(path: str, value: Any) -> Dict[str, str]:
	"""Flatten ``value`` stored at ``path`` into ``{leaf_path: json_scalar}``."""
	leaves: Dict[str, str] = {}
	normalized = normalize_value(value)
	if normalized is None:
		return leaves
	stack: List[Tuple[str, Any]] = [(path, normalized)]
	while stack:
		current, node = stack.pop()
		if isinstance(node, (dict, list)):
			for key, nested in children_of(node).items():
				stack.append((join_path(current, key) if current else key, nested))
		else:
			leaves[current] = json.dumps(node)
	return leaves


def unflatten(path: str, leaves: Mapping[str, str]) -> Any:
	"""Rebuild the value at ``path`` from its leaves."""
	exact = leaves.get(path)
	if exact is not None:
		return json.loads(exact)
	prefix = path + "/" if path else ""
	root: Dict[str, Any] = {}
	for leaf_path, raw in leaves.items():
		if not leaf_path.startswith(prefix):
			continue
		segments = leaf_path[len(prefix):].split("/")
		node = root
		for segment in segments[:-1]:
			node = node.setdefault(segment, {})
		node[segments[-1]] = json.loads(raw)
	return _restore_lists(root) if root else None


def _restore_lists(node: Any) -> Any:
	if isinstance(node, dict):
		return _as_list_if_sequential({key: _restore_lists(nested) for key, nested in node.items()})
	return node
