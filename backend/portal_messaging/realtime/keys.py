"""Push-style key generation for realtime children."""

from __future__ import annotations

import threading

import ulid


class KeyGenerator:
	"""Generate ULID keys that sort lexically in creation order.

	Keys minted within the same millisecond are bumped so the sequence stays
	strictly increasing for this process.
	"""

	def __init__(self) -> None:
		self._lock = threading.Lock()
		self._last: ulid.ULID | None = None

	def next(self) -> str:
		with self._lock:
			candidate = ulid.new()
			if self._last is not None and candidate.int <= self._last.int:
				candidate = ulid.from_int(self._last.int + 1)
			self._last = candidate
			return str(candidate)


_GENERATOR = KeyGenerator()


def generate_key() -> str:
	return _GENERATOR.next()
