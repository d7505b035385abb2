"""HTTP client for the portal's user directory search endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from portal_messaging.obs import metrics as obs_metrics
from portal_messaging.settings import settings

logger = logging.getLogger(__name__)


class UserSummary(BaseModel):
	model_config = ConfigDict(extra="ignore")

	id: int
	name: str = ""
	email: Optional[str] = None
	avatar: Optional[str] = None


_RESULTS = TypeAdapter(List[UserSummary])


@dataclass
class UserDirectoryClient:
	"""Search users by free text; failures degrade to an empty result."""

	http: httpx.AsyncClient
	path: str = "/api/users/search"
	request_timeout: float = 5.0

	async def search(self, query: str = "", *, exclude_user_id: int | None = None) -> List[UserSummary]:
		try:
			response = await self.http.get(
				self.path,
				params={"q": query or ""},
				headers={"X-Requested-With": "XMLHttpRequest", "Accept": "application/json"},
				timeout=self.request_timeout,
			)
			response.raise_for_status()
			users = _RESULTS.validate_python(response.json() or [])
		except httpx.HTTPError:
			obs_metrics.inc_user_search_failure("transport")
			logger.warning("user search failed", extra={"query_len": len(query or "")}, exc_info=True)
			return []
		except (ValueError, ValidationError):
			obs_metrics.inc_user_search_failure("decode")
			logger.warning("user search returned an unexpected payload", extra={"query_len": len(query or "")})
			return []
		if exclude_user_id is None:
			return users
		return [user for user in users if user.id != exclude_user_id]


def build_user_directory_client(http: httpx.AsyncClient | None = None) -> UserDirectoryClient:
	if http is None:
		headers = {}
		if settings.user_search_token:
			headers["Authorization"] = f"Bearer {settings.user_search_token}"
		http = httpx.AsyncClient(base_url=settings.user_search_url, headers=headers)
	return UserDirectoryClient(
		http=http,
		path=settings.user_search_path,
		request_timeout=settings.user_search_timeout_seconds,
	)
