"""Per-view chat synchronisation: push when joined, polling otherwise."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Callable, Optional, Set, Tuple

from pydantic import ValidationError

from booksync.domain.chat.schemas import (
	Chat,
	Message,
	SendMessageRequest,
	message_freshness,
	parse_chat,
	parse_messages,
)
from booksync.domain.sync import keys
from booksync.domain.sync.notices import NoticeBoard
from booksync.domain.sync.polling import PollingFetcher, QueryState
from booksync.domain.sync.push import ConnectionState, PushChannel
from booksync.errors import ChatClosedError, DomainError, MutationError, SyncError, TransientFetchError
from booksync.infra.cache import CacheStore
from booksync.infra.http import ApiClient
from booksync.obs import logging as obs_logging
from booksync.obs import metrics as obs_metrics
from booksync.settings import settings

logger = logging.getLogger(__name__)


def _is_closed_rejection(exc: DomainError) -> bool:
	return exc.status_code == 400 and "closed" in exc.detail.lower()


def _first_validation_message(exc: ValidationError) -> str:
	errors = exc.errors()
	if not errors:
		return "Invalid message"
	first = errors[0]
	location = ".".join(str(part) for part in first.get("loc", ()))
	return f"{location}: {first.get('msg', 'invalid')}" if location else str(first.get("msg", "invalid"))


def _chat_freshness(chat: Chat) -> bool:
	# isOpen only ever flips true -> false
	return not chat.is_open


class ChatSync:
	"""Keeps one chat view's ``chat`` and ``messages`` cache entries converged.

	While the push channel is connected and joined to the chat, message polling
	is suspended and push-driven invalidations are authoritative. Otherwise the
	messages key is polled every ``poll_interval`` seconds. Sending always
	invalidates the messages key on success, whichever mode is active.
	"""

	def __init__(
		self,
		chat_id: str,
		*,
		api: ApiClient,
		store: CacheStore,
		channel: PushChannel,
		notices: NoticeBoard,
		poll_interval: Optional[float] = None,
		clock: Optional[Callable[[], float]] = None,
	) -> None:
		self.chat_id = str(chat_id)
		self._api = api
		self._store = store
		self._channel = channel
		self._notices = notices
		self._fallback_interval = settings.messages_poll_interval_seconds if poll_interval is None else poll_interval
		self._chat_key = keys.chat(self.chat_id)
		self._messages_key = keys.messages(self.chat_id)
		clock_kwargs = {"clock": clock} if clock is not None else {}
		self._chat_fetcher = PollingFetcher(
			store,
			self._chat_key,
			self._fetch_chat,
			interval=None,
			freshness=_chat_freshness,
			**clock_kwargs,
		)
		self._messages_fetcher = PollingFetcher(
			store,
			self._messages_key,
			self._fetch_messages,
			interval=self._fallback_interval,
			freshness=message_freshness,
			**clock_kwargs,
		)
		self._closed_latch = False
		self._mounted = False
		self._remove_listener: Optional[Callable[[], None]] = None
		self._tasks: Set[asyncio.Task] = set()

	@property
	def mounted(self) -> bool:
		return self._mounted

	@property
	def mode(self) -> str:
		return "push" if self._channel.is_joined(self.chat_id) else "poll"

	@property
	def messages_fetcher(self) -> PollingFetcher:
		return self._messages_fetcher

	async def mount(self) -> None:
		if self._mounted:
			return
		self._mounted = True
		tokens = obs_logging.bind_context(chat_id=self.chat_id)
		try:
			self._remove_listener = self._channel.add_state_listener(self._on_push_state)
			if self._channel.state is ConnectionState.CONNECTED:
				await self._channel.join(self.chat_id)
			self._apply_mode()
			self._chat_fetcher.mount()
			self._messages_fetcher.mount()
		finally:
			obs_logging.reset_context(tokens)
		logger.debug("chat view mounted chat=%s mode=%s", self.chat_id, self.mode)

	async def unmount(self) -> None:
		if not self._mounted:
			return
		self._mounted = False
		if self._remove_listener is not None:
			self._remove_listener()
			self._remove_listener = None
		tasks = list(self._tasks)
		self._tasks.clear()
		for task in tasks:
			task.cancel()
		for task in tasks:
			with suppress(asyncio.CancelledError):
				await task
		await self._channel.leave(self.chat_id)
		await self._chat_fetcher.unmount()
		await self._messages_fetcher.unmount()
		logger.debug("chat view unmounted chat=%s", self.chat_id)

	def _apply_mode(self) -> None:
		if self._channel.is_joined(self.chat_id):
			self._messages_fetcher.set_interval(None)
		else:
			self._messages_fetcher.set_interval(self._fallback_interval)

	def _on_push_state(self, state: ConnectionState) -> None:
		if not self._mounted:
			return
		if state is ConnectionState.CONNECTED:
			task = asyncio.create_task(self._rejoin(), name=f"chat-rejoin:{self.chat_id}")
			self._tasks.add(task)
			task.add_done_callback(self._tasks.discard)
		else:
			self._apply_mode()

	async def _rejoin(self) -> None:
		joined = await self._channel.join(self.chat_id)
		if not self._mounted:
			return
		self._apply_mode()
		if joined:
			# Events published while we were polling or offline were not delivered.
			self._store.invalidate(self._messages_key)

	async def _fetch_chat(self) -> Chat:
		data = await self._api.fetch_resource(keys.path_for(self._chat_key))
		try:
			return parse_chat(data)
		except ValidationError as exc:
			raise TransientFetchError(f"malformed chat payload for {self.chat_id}") from exc

	async def _fetch_messages(self) -> Tuple[Message, ...]:
		data = await self._api.fetch_resource(keys.path_for(self._messages_key))
		try:
			return parse_messages(data)
		except ValidationError as exc:
			raise TransientFetchError(f"malformed messages payload for {self.chat_id}") from exc

	def chat(self) -> Optional[Chat]:
		return self._store.read(self._chat_key)

	def messages(self) -> Tuple[Message, ...]:
		return self._store.read(self._messages_key, ())

	def state(self) -> QueryState:
		return self._messages_fetcher.read()

	@property
	def is_open(self) -> bool:
		if not self._closed_latch:
			chat = self.chat()
			if chat is not None and not chat.is_open:
				self._closed_latch = True
		return not self._closed_latch

	async def send_message(
		self,
		content: str,
		*,
		is_private: bool = False,
		is_quotation: bool = False,
		attachment_url: Optional[str] = None,
		attachment_type: Optional[str] = None,
		quotation_amount: Optional[int] = None,
	) -> Optional[str]:
		"""Post a message and return the created message id.

		Text may be blank when the message carries a quotation or an attachment;
		an attachment-only message goes out as "Shared a file". A quotation needs
		a non-zero amount.
		"""
		if not self.is_open:
			obs_metrics.mutation("send_message", "blocked")
			self._notices.error("Chat is closed", "This chat has been closed. No further messages can be sent.", chat_id=self.chat_id)
			raise ChatClosedError(self.chat_id)
		is_quotation = is_quotation or quotation_amount is not None
		if not content.strip() and not is_quotation and not attachment_url:
			raise DomainError("Message content is required", status_code=400, code="invalid_message")
		if is_quotation and not quotation_amount:
			raise DomainError("Quotation amount is required", status_code=400, code="invalid_message")
		if not content and attachment_url:
			content = "Shared a file"
		try:
			request = SendMessageRequest(
				content=content,
				is_private=is_private,
				is_quotation=is_quotation,
				quotation_amount=quotation_amount,
				attachment_url=attachment_url,
				attachment_type=attachment_type,
			)
		except ValidationError as exc:
			raise DomainError(_first_validation_message(exc), status_code=400, code="invalid_message") from exc
		path = keys.path_for(self._messages_key)
		try:
			created = await self._api.submit_mutation("POST", path, request.to_body())
		except DomainError as exc:
			if _is_closed_rejection(exc):
				self._closed_latch = True
				self._store.invalidate(self._chat_key)
				obs_metrics.mutation("send_message", "closed")
				self._notices.error("Chat is closed", exc.detail, chat_id=self.chat_id)
				raise ChatClosedError(self.chat_id, exc.detail) from exc
			raise self._failed("send_message", "Failed to send message", exc) from exc
		except TransientFetchError as exc:
			raise self._failed("send_message", "Failed to send message", exc) from exc
		obs_metrics.mutation("send_message", "ok")
		self._store.invalidate(self._messages_key)
		return _created_id(created)

	async def close_chat(self) -> Optional[Chat]:
		"""Close the chat (staff only). The server pushes ``chat_closed`` to other viewers."""
		try:
			data = await self._api.submit_mutation("POST", f"{keys.path_for(self._chat_key)}/close")
		except (DomainError, TransientFetchError) as exc:
			raise self._failed("close_chat", "Failed to close chat", exc) from exc
		obs_metrics.mutation("close_chat", "ok")
		self._closed_latch = True
		self._store.invalidate(self._chat_key)
		chat: Optional[Chat] = None
		if isinstance(data, dict):
			with suppress(ValidationError):
				chat = parse_chat(data)
		if chat is not None and chat.booking_id:
			self._store.invalidate(keys.booking(chat.booking_id))
		return chat

	def _failed(self, name: str, title: str, exc: SyncError) -> MutationError:
		obs_metrics.mutation(name, "error")
		logger.warning("%s failed chat=%s code=%s", name, self.chat_id, exc.code)
		self._notices.error(title, exc.detail, chat_id=self.chat_id)
		return MutationError(name, exc)


def _created_id(created: Any) -> Optional[str]:
	if isinstance(created, dict) and created.get("id") is not None:
		return str(created["id"])
	return None
