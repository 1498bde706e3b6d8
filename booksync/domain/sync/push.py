"""Live Socket.IO connection that turns inbound events into cache invalidations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from enum import IntEnum
from typing import Any, Callable, List, Optional, Set

import socketio
from socketio import exceptions as socketio_exceptions

from booksync.domain.sync import keys
from booksync.domain.sync.notices import NoticeBoard
from booksync.errors import HandshakeError
from booksync.infra.backoff import Backoff
from booksync.infra.cache import CacheStore
from booksync.obs import metrics as obs_metrics
from booksync.settings import settings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], Any]
StateListener = Callable[["ConnectionState"], None]

EVENT_JOIN = "join_chat"
EVENT_LEAVE = "leave_chat"
EVENT_NEW_MESSAGE = "new_message"
EVENT_CHAT_CLOSED = "chat_closed"
EVENT_INTERNAL_MESSAGE = "internal-message"
EVENT_INTERNAL_CHAT_CREATED = "internal-chat-created"


class ConnectionState(IntEnum):
	DISCONNECTED = 0
	CONNECTING = 1
	CONNECTED = 2


def _default_client() -> socketio.AsyncClient:
	# Reconnects are driven by PushChannel.run so subscriptions are never replayed behind our back.
	return socketio.AsyncClient(reconnection=False)


def _field(payload: Any, *names: str) -> Optional[str]:
	if not isinstance(payload, dict):
		return None
	for name in names:
		value = payload.get(name)
		if value not in (None, ""):
			return str(value)
	return None


class PushChannel:
	"""One live connection per authenticated session.

	Joined chats form the subscription set. It is dropped on transport loss
	and never replayed here; callers re-join from a state listener when the
	channel is ``CONNECTED`` again.
	"""

	def __init__(
		self,
		store: CacheStore,
		notices: NoticeBoard,
		*,
		url: Optional[str] = None,
		path: Optional[str] = None,
		handshake_timeout: Optional[float] = None,
		client_factory: Optional[ClientFactory] = None,
		backoff: Optional[Backoff] = None,
	) -> None:
		self._store = store
		self._notices = notices
		self._url = url or settings.resolved_push_url()
		self._path = (path or settings.push_path).strip("/")
		self._handshake_timeout = (
			handshake_timeout if handshake_timeout is not None else settings.push_handshake_timeout_seconds
		)
		self._client_factory = client_factory or _default_client
		self._backoff = backoff or Backoff()
		self._state = ConnectionState.DISCONNECTED
		self._client: Any = None
		self._subscriptions: Set[str] = set()
		self._listeners: List[StateListener] = []
		self._lost = asyncio.Event()
		self._supervisor: Optional[asyncio.Task] = None
		self._closed = False
		self.last_error: Optional[HandshakeError] = None

	@property
	def state(self) -> ConnectionState:
		return self._state

	@property
	def closed(self) -> bool:
		return self._closed

	@property
	def subscriptions(self) -> frozenset[str]:
		return frozenset(self._subscriptions)

	def is_joined(self, chat_id: str) -> bool:
		return self._state is ConnectionState.CONNECTED and str(chat_id) in self._subscriptions

	def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
		self._listeners.append(listener)

		def _remove() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return _remove

	def _set_state(self, state: ConnectionState) -> None:
		if state is self._state:
			return
		logger.info("push channel %s -> %s", self._state.name, state.name)
		self._state = state
		obs_metrics.push_state(int(state))
		for listener in list(self._listeners):
			listener(state)

	async def connect(self, credential: str) -> bool:
		"""Run one handshake. Returns True when the channel is connected afterwards."""
		if self._closed:
			return False
		if self._state is ConnectionState.CONNECTED:
			return True
		if self._state is ConnectionState.CONNECTING:
			return False
		self._lost.clear()
		self._set_state(ConnectionState.CONNECTING)
		client = self._client_factory()
		self._register(client)
		self._client = client
		try:
			await asyncio.wait_for(
				client.connect(
					self._url,
					auth={"token": credential},
					socketio_path=self._path,
					wait_timeout=self._handshake_timeout,
				),
				timeout=self._handshake_timeout,
			)
		except asyncio.CancelledError:
			self._abandon(client)
			raise
		except (asyncio.TimeoutError, socketio_exceptions.SocketIOError, OSError) as exc:
			obs_metrics.push_handshake("timeout" if isinstance(exc, asyncio.TimeoutError) else "failed")
			logger.warning("push handshake failed url=%s error=%s", self._url, str(exc) or type(exc).__name__)
			self.last_error = HandshakeError(str(exc) or type(exc).__name__)
			self._abandon(client)
			await self._hangup(client)
			return False
		if self._closed or client is not self._client:
			await self._hangup(client)
			return False
		obs_metrics.push_handshake("ok")
		self.last_error = None
		self._set_state(ConnectionState.CONNECTED)
		return True

	def _abandon(self, client: Any) -> None:
		if client is self._client:
			self._client = None
			self._set_state(ConnectionState.DISCONNECTED)

	async def _hangup(self, client: Any) -> None:
		try:
			await client.disconnect()
		except Exception:
			logger.debug("push client disconnect failed", exc_info=True)

	async def join(self, chat_id: str) -> bool:
		chat_id = str(chat_id)
		if self._state is not ConnectionState.CONNECTED or self._client is None:
			return False
		if chat_id in self._subscriptions:
			return True
		self._subscriptions.add(chat_id)
		obs_metrics.push_subscriptions(len(self._subscriptions))
		try:
			await self._client.emit(EVENT_JOIN, chat_id)
		except socketio_exceptions.SocketIOError:
			logger.warning("join_chat emit failed chat=%s", chat_id)
			self._subscriptions.discard(chat_id)
			obs_metrics.push_subscriptions(len(self._subscriptions))
			return False
		return True

	async def leave(self, chat_id: str) -> bool:
		chat_id = str(chat_id)
		if chat_id not in self._subscriptions:
			return False
		self._subscriptions.discard(chat_id)
		obs_metrics.push_subscriptions(len(self._subscriptions))
		client = self._client
		if self._state is ConnectionState.CONNECTED and client is not None:
			try:
				await client.emit(EVENT_LEAVE, chat_id)
			except socketio_exceptions.SocketIOError:
				logger.debug("leave_chat emit failed chat=%s", chat_id)
		return True

	def start(self, credential: str) -> asyncio.Task:
		"""Launch the reconnect supervisor on the running loop."""
		if self._supervisor is None or self._supervisor.done():
			self._supervisor = asyncio.create_task(self.run(credential), name="push-supervisor")
		return self._supervisor

	async def run(self, credential: str) -> None:
		"""Keep the connection up until ``close`` with bounded, jittered backoff between attempts."""
		try:
			while not self._closed:
				if await self.connect(credential):
					self._backoff.reset()
					await self._lost.wait()
				if self._closed:
					return
				delay = self._backoff.next_delay()
				logger.info("push reconnect in %.2fs attempt=%s", delay, self._backoff.attempt)
				await asyncio.sleep(delay)
		except asyncio.CancelledError:
			raise
		except Exception:  # pragma: no cover - defensive logging
			logger.exception("push supervisor failed")

	async def close(self) -> None:
		"""Terminal teardown on logout. No further events are delivered."""
		if self._closed:
			return
		self._closed = True
		supervisor = self._supervisor
		self._supervisor = None
		if supervisor is not None and supervisor is not asyncio.current_task():
			supervisor.cancel()
			with suppress(asyncio.CancelledError):
				await supervisor
		client = self._client
		self._client = None
		self._subscriptions.clear()
		obs_metrics.push_subscriptions(0)
		self._set_state(ConnectionState.DISCONNECTED)
		self._listeners.clear()
		self._lost.set()
		if client is not None:
			await self._hangup(client)

	def _register(self, client: Any) -> None:
		def bind(event: str, handler: Callable[[Any], None]):
			async def _dispatch(payload: Any = None) -> None:
				if client is not self._client or self._closed:
					obs_metrics.push_event(event, "ignored")
					return
				handler(payload)

			return _dispatch

		async def _on_disconnect(reason: Any = None) -> None:
			self._transport_lost(client, reason)

		client.on("disconnect", _on_disconnect)
		client.on(EVENT_NEW_MESSAGE, bind(EVENT_NEW_MESSAGE, self._on_new_message))
		client.on(EVENT_CHAT_CLOSED, bind(EVENT_CHAT_CLOSED, self._on_chat_closed))
		client.on(EVENT_INTERNAL_MESSAGE, bind(EVENT_INTERNAL_MESSAGE, self._on_internal_message))
		client.on(EVENT_INTERNAL_CHAT_CREATED, bind(EVENT_INTERNAL_CHAT_CREATED, self._on_internal_chat_created))

	def _transport_lost(self, client: Any, reason: Any) -> None:
		if client is not self._client:
			return
		self._client = None
		dropped = len(self._subscriptions)
		self._subscriptions.clear()
		obs_metrics.push_subscriptions(0)
		logger.warning("push connection lost reason=%s dropped_subscriptions=%s", reason, dropped)
		self._set_state(ConnectionState.DISCONNECTED)
		self._lost.set()

	def _joined(self, event: str, chat_id: Optional[str]) -> bool:
		if chat_id is None or chat_id not in self._subscriptions:
			obs_metrics.push_event(event, "ignored")
			logger.debug("ignoring %s for unjoined chat=%s", event, chat_id)
			return False
		obs_metrics.push_event(event, "handled")
		return True

	def _on_new_message(self, payload: Any) -> None:
		chat_id = _field(payload, "chatId", "chat_id")
		if not self._joined(EVENT_NEW_MESSAGE, chat_id):
			return
		self._store.invalidate(keys.messages(chat_id))

	def _on_chat_closed(self, payload: Any) -> None:
		chat_id = _field(payload, "id", "chatId")
		if not self._joined(EVENT_CHAT_CLOSED, chat_id):
			return
		self._store.invalidate(keys.chat(chat_id))
		booking_id = _field(payload, "bookingId", "booking_id")
		if booking_id:
			self._store.invalidate(keys.booking(booking_id))
		self._notices.post("Chat closed", "This chat has been closed by an admin.", chat_id=chat_id)

	# Internal staff chats are delivered to the per-user room, not a joined chat room.
	def _on_internal_message(self, payload: Any) -> None:
		obs_metrics.push_event(EVENT_INTERNAL_MESSAGE, "handled")
		self._store.invalidate(keys.internal_chats())
		chat_id = _field(payload, "chatId", "chat_id")
		if chat_id:
			self._store.invalidate(keys.internal_messages(chat_id))

	def _on_internal_chat_created(self, _payload: Any) -> None:
		obs_metrics.push_event(EVENT_INTERNAL_CHAT_CREATED, "handled")
		self._store.invalidate(keys.internal_chats())
