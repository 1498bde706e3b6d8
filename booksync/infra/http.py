"""JSON-over-HTTP collaborator used for resource fetches and mutations."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from booksync.errors import DomainError, TransientFetchError
from booksync.settings import settings

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
	try:
		data = response.json()
	except ValueError:
		data = None
	if isinstance(data, dict) and data.get("message"):
		return str(data["message"])
	text = response.text.strip()
	return text or response.reason_phrase or f"HTTP {response.status_code}"


class ApiClient:
	"""Thin wrapper around ``httpx.AsyncClient`` that maps failures onto the sync error taxonomy."""

	def __init__(
		self,
		base_url: Optional[str] = None,
		*,
		credential: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self._credential = credential
		self._client = httpx.AsyncClient(
			base_url=base_url or settings.api_base_url,
			timeout=timeout if timeout is not None else settings.http_timeout_seconds,
			transport=transport,
		)

	def set_credential(self, credential: Optional[str]) -> None:
		self._credential = credential

	def auth_headers(self) -> dict[str, str]:
		return {"Authorization": f"Bearer {self._credential}"} if self._credential else {}

	async def fetch_resource(self, path: str, headers: Optional[Mapping[str, str]] = None) -> Any:
		merged = {**self.auth_headers(), **(headers or {})}
		return await self._send("GET", path, headers=merged)

	async def submit_mutation(self, method: str, path: str, body: Any = None) -> Any:
		return await self._send(method.upper(), path, headers=self.auth_headers(), json=body if body is not None else {})

	async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
		try:
			response = await self._client.request(method, path, **kwargs)
		except httpx.TimeoutException as exc:
			raise TransientFetchError(f"{method} {path} timed out") from exc
		except (httpx.RequestError, httpx.InvalidURL) as exc:
			raise TransientFetchError(f"{method} {path} failed: {exc}") from exc
		if response.status_code >= 500:
			raise TransientFetchError(_error_message(response), status_code=response.status_code)
		if response.status_code >= 400:
			message = _error_message(response)
			logger.debug("request rejected method=%s path=%s status=%s", method, path, response.status_code)
			raise DomainError(message, status_code=response.status_code)
		if not response.content:
			return None
		try:
			return response.json()
		except ValueError as exc:
			raise TransientFetchError(f"{method} {path} returned invalid JSON") from exc

	async def aclose(self) -> None:
		await self._client.aclose()
