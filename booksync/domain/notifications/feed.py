"""Notification list polling and unread aggregation."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from pydantic import ValidationError

from booksync.domain.notifications.schemas import Notification, parse_notifications
from booksync.domain.sync import keys
from booksync.domain.sync.notices import NoticeBoard
from booksync.domain.sync.polling import PollingFetcher, QueryState
from booksync.errors import DomainError, MutationError, SyncError, TransientFetchError
from booksync.infra.cache import CacheStore
from booksync.infra.http import ApiClient
from booksync.obs import metrics as obs_metrics
from booksync.settings import settings

logger = logging.getLogger(__name__)


class NotificationFeed:
	"""Polls the notification list unconditionally and derives unread state from the cache.

	Notifications come from several producers (bookings, tasks, approvals) and
	not all of them publish on the push channel, so the list is polled even
	while a live connection is up. The unread count is never stored; it is
	recomputed from the cached list on every read.
	"""

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
		self._key = keys.notifications()
		interval = settings.notifications_poll_interval_seconds if poll_interval is None else poll_interval
		clock_kwargs = {"clock": clock} if clock is not None else {}
		self._fetcher = PollingFetcher(store, self._key, self._fetch, interval=interval, **clock_kwargs)

	@property
	def fetcher(self) -> PollingFetcher:
		return self._fetcher

	def mount(self) -> None:
		self._fetcher.mount()

	async def unmount(self) -> None:
		await self._fetcher.unmount()

	async def _fetch(self) -> Tuple[Notification, ...]:
		data = await self._api.fetch_resource(keys.path_for(self._key))
		try:
			return parse_notifications(data)
		except ValidationError as exc:
			raise TransientFetchError("malformed notifications payload") from exc

	def items(self) -> Tuple[Notification, ...]:
		return self._store.read(self._key, ())

	def state(self) -> QueryState:
		return self._fetcher.read()

	def unread_count(self) -> int:
		return sum(1 for notification in self.items() if not notification.read)

	def badge_label(self) -> str:
		count = self.unread_count()
		if count <= 0:
			return ""
		return "9+" if count > 9 else str(count)

	def _cached(self, notification_id: str) -> Optional[Notification]:
		for notification in self.items():
			if notification.id == notification_id:
				return notification
		return None

	async def mark_read(self, notification_id: str) -> bool:
		"""Mark one notification read. Returns False when it is already read in the cache."""
		notification_id = str(notification_id)
		cached = self._cached(notification_id)
		if cached is not None and cached.read:
			return False
		try:
			await self._api.submit_mutation("PATCH", f"{keys.path_for(self._key)}/{notification_id}/read")
		except (DomainError, TransientFetchError) as exc:
			raise self._failed("mark_read", exc) from exc
		obs_metrics.mutation("mark_read", "ok")
		self._store.invalidate(self._key)
		return True

	async def mark_all_read(self) -> None:
		try:
			await self._api.submit_mutation("POST", f"{keys.path_for(self._key)}/mark-all-read")
		except (DomainError, TransientFetchError) as exc:
			raise self._failed("mark_all_read", exc) from exc
		obs_metrics.mutation("mark_all_read", "ok")
		self._store.invalidate(self._key)

	def _failed(self, name: str, exc: SyncError) -> MutationError:
		obs_metrics.mutation(name, "error")
		logger.warning("%s failed code=%s", name, exc.code)
		self._notices.error("Failed to update notifications", exc.detail)
		return MutationError(name, exc)
