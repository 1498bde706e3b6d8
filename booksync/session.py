"""Process-wide session state.

``start_session`` runs on login: it builds the cache, the HTTP collaborator
and the single live connection for this user. ``end_session`` runs on logout:
it unmounts every view, closes the connection for good and drops the cache.
Views are opened through the active ``Session`` so they share one cache and
one connection.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from booksync import obs
from booksync.domain.chat.internal import InternalChatDirectory
from booksync.domain.chat.sync import ChatSync
from booksync.domain.notifications.feed import NotificationFeed
from booksync.domain.sync.notices import NoticeBoard
from booksync.domain.sync.push import ClientFactory, PushChannel
from booksync.infra.cache import CacheStore
from booksync.infra.http import ApiClient
from booksync.obs import logging as obs_logging

logger = logging.getLogger(__name__)


@dataclass
class Session:
	credential: str
	api: ApiClient
	store: CacheStore
	notices: NoticeBoard
	channel: PushChannel
	user_id: Optional[str] = None
	session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
	_chats: Dict[str, ChatSync] = field(default_factory=dict, init=False)
	_feed: Optional[NotificationFeed] = field(default=None, init=False)
	_internal: Optional[InternalChatDirectory] = field(default=None, init=False)

	async def open_chat(self, chat_id: str) -> ChatSync:
		"""Mount a chat view. Opening the same chat twice returns the mounted view."""
		chat_id = str(chat_id)
		view = self._chats.get(chat_id)
		if view is None or not view.mounted:
			view = ChatSync(chat_id, api=self.api, store=self.store, channel=self.channel, notices=self.notices)
			self._chats[chat_id] = view
			await view.mount()
		return view

	async def close_chat_view(self, chat_id: str) -> None:
		view = self._chats.pop(str(chat_id), None)
		if view is not None:
			await view.unmount()

	def notifications(self) -> NotificationFeed:
		if self._feed is None:
			self._feed = NotificationFeed(api=self.api, store=self.store, notices=self.notices)
			self._feed.mount()
		return self._feed

	def internal_chats(self) -> InternalChatDirectory:
		if self._internal is None:
			self._internal = InternalChatDirectory(api=self.api, store=self.store, notices=self.notices)
			self._internal.mount()
		return self._internal

	async def close(self) -> None:
		views: List[ChatSync] = list(self._chats.values())
		self._chats.clear()
		for view in views:
			await view.unmount()
		if self._feed is not None:
			await self._feed.unmount()
			self._feed = None
		if self._internal is not None:
			await self._internal.unmount()
			self._internal = None
		await self.channel.close()
		self.store.clear()
		self.notices.clear()
		await self.api.aclose()


_session: Optional[Session] = None


async def start_session(
	credential: str,
	*,
	user_id: Optional[str] = None,
	api: Optional[ApiClient] = None,
	client_factory: Optional[ClientFactory] = None,
	connect: bool = True,
) -> Session:
	"""Initialise session state on login. Any previous session is torn down first."""
	global _session
	if _session is not None:
		await end_session()
	obs.init()
	store = CacheStore()
	notices = NoticeBoard()
	if api is None:
		api = ApiClient(credential=credential)
	else:
		api.set_credential(credential)
	channel = PushChannel(store, notices, client_factory=client_factory)
	session = Session(credential=credential, api=api, store=store, notices=notices, channel=channel, user_id=user_id)
	obs_logging.bind_context(session_id=session.session_id, user_id=user_id)
	_session = session
	if connect:
		channel.start(credential)
	logger.info("session started")
	return session


def current_session() -> Session:
	if _session is None:
		raise RuntimeError("no active session; call start_session() after login")
	return _session


async def end_session() -> None:
	"""Tear down session state on logout. Safe to call when no session is active."""
	global _session
	session = _session
	_session = None
	if session is None:
		return
	await session.close()
	obs_logging.clear_context()
	logger.info("session ended session_id=%s", session.session_id)


__all__ = [
	"Session",
	"current_session",
	"end_session",
	"start_session",
]
