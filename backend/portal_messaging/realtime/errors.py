"""Realtime store errors."""

from __future__ import annotations


class StoreError(Exception):
	"""Base class for realtime store failures."""

	reason: str = "store_error"

	def __init__(self, message: str | None = None) -> None:
		super().__init__(message or self.reason)


class InvalidPath(StoreError, ValueError):
	reason = "invalid_path"


class WriteRejected(StoreError):
	"""The atomic update was not applied; nothing of it is visible."""

	reason = "write_rejected"


class PreconditionFailed(WriteRejected):
	"""A conditional update found one of its guarded paths already populated."""

	reason = "precondition_failed"

	def __init__(self, paths: tuple[str, ...] = ()) -> None:
		super().__init__(f"{self.reason}: {', '.join(paths)}" if paths else None)
		self.paths = paths


class StoreUnavailable(StoreError):
	"""The backend could not be reached for a read."""

	reason = "store_unavailable"
