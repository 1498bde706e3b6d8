"""Staff-to-staff internal chats, refreshed by polling and per-user push events."""

from __future__ import annotations

from typing import Callable, Optional, Tuple

from pydantic import ValidationError

from booksync.domain.chat.schemas import InternalChat, Message, message_freshness, parse_internal_chats, parse_messages
from booksync.domain.sync import keys
from booksync.domain.sync.notices import NoticeBoard
from booksync.domain.sync.polling import PollingFetcher
from booksync.errors import DomainError, MutationError, TransientFetchError
from booksync.infra.cache import CacheStore
from booksync.infra.http import ApiClient
from booksync.obs import metrics as obs_metrics
from booksync.settings import settings


class InternalChatDirectory:
	def __init__(
		self,
		*,
		api: ApiClient,
		store: CacheStore,
		notices: NoticeBoard,
		poll_interval: Optional[float] = None,
		clock: Optional[Callable[[], float]] = None,
	) -> None:
		self._api = api
		self._store = store
		self._notices = notices
		self._clock_kwargs = {"clock": clock} if clock is not None else {}
		interval = settings.internal_chats_poll_interval_seconds if poll_interval is None else poll_interval
		self._list_key = keys.internal_chats()
		self._list_fetcher = PollingFetcher(store, self._list_key, self._fetch_list, interval=interval, **self._clock_kwargs)
		self._selected: Optional[str] = None
		self._messages_fetcher: Optional[PollingFetcher] = None

	@property
	def selected(self) -> Optional[str]:
		return self._selected

	def mount(self) -> None:
		self._list_fetcher.mount()

	async def unmount(self) -> None:
		await self.select(None)
		await self._list_fetcher.unmount()

	async def _fetch_list(self) -> Tuple[InternalChat, ...]:
		data = await self._api.fetch_resource(keys.path_for(self._list_key))
		try:
			return parse_internal_chats(data)
		except ValidationError as exc:
			raise TransientFetchError("malformed internal chats payload") from exc

	def chats(self) -> Tuple[InternalChat, ...]:
		return self._store.read(self._list_key, ())

	async def select(self, chat_id: Optional[str]) -> None:
		"""Show one conversation. Its messages refresh only on invalidation (push or own sends)."""
		chat_id = str(chat_id) if chat_id is not None else None
		if chat_id == self._selected:
			return
		if self._messages_fetcher is not None:
			await self._messages_fetcher.unmount()
			self._messages_fetcher = None
		self._selected = chat_id
		if chat_id is None:
			return
		key = keys.internal_messages(chat_id)

		async def _fetch() -> Tuple[Message, ...]:
			data = await self._api.fetch_resource(keys.path_for(key))
			try:
				return parse_messages(data)
			except ValidationError as exc:
				raise TransientFetchError(f"malformed internal messages payload for {chat_id}") from exc

		self._messages_fetcher = PollingFetcher(
			self._store, key, _fetch, interval=None, freshness=message_freshness, **self._clock_kwargs
		)
		self._messages_fetcher.mount()

	def messages(self) -> Tuple[Message, ...]:
		if self._selected is None:
			return ()
		return self._store.read(keys.internal_messages(self._selected), ())

	async def send_message(self, chat_id: str, content: str) -> None:
		chat_id = str(chat_id)
		if not content.strip():
			raise DomainError("Message content is required", code="invalid_message")
		try:
			await self._api.submit_mutation("POST", keys.path_for(keys.internal_messages(chat_id)), {"content": content})
		except (DomainError, TransientFetchError) as exc:
			obs_metrics.mutation("internal_send", "error")
			self._notices.error("Failed to send message", exc.detail)
			raise MutationError("internal_send", exc) from exc
		obs_metrics.mutation("internal_send", "ok")
		self._store.invalidate(keys.internal_messages(chat_id))
		self._store.invalidate(self._list_key)

	async def start_chat(self, participant_id: str) -> Optional[str]:
		"""Open (or reuse) a conversation with another staff member and select it."""
		try:
			data = await self._api.submit_mutation("POST", keys.path_for(self._list_key), {"participantId": str(participant_id)})
		except (DomainError, TransientFetchError) as exc:
			obs_metrics.mutation("internal_start", "error")
			self._notices.error("Failed to start chat", exc.detail)
			raise MutationError("internal_start", exc) from exc
		obs_metrics.mutation("internal_start", "ok")
		self._store.invalidate(self._list_key)
		chat_id = str(data["id"]) if isinstance(data, dict) and data.get("id") is not None else None
		if chat_id is not None:
			await self.select(chat_id)
		return chat_id
