"""Background polling fetcher for one cached resource."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from booksync.errors import DomainError, SyncError, TransientFetchError
from booksync.infra.cache import CacheStore, ResourceKey
from booksync.obs import metrics as obs_metrics
from booksync.settings import settings

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]
Freshness = Callable[[Any], Any]


@dataclass(slots=True)
class QueryState:
	value: Any
	error: Optional[SyncError]
	is_stale: bool
	is_fetching: bool
	fetched_at: Optional[float]

	@property
	def has_value(self) -> bool:
		return self.fetched_at is not None


class PollingFetcher:
	"""Fetches ``key`` on mount, on every tick and whenever the key is invalidated.

	``interval=None`` suspends ticks; invalidation-driven refetches still run.
	Only one fetch is in flight at a time. A response is written only when it is
	not older (by issue time) and, if ``freshness`` is given, not semantically
	older than the cached value.
	"""

	def __init__(
		self,
		store: CacheStore,
		key: ResourceKey,
		fetch: FetchFn,
		*,
		interval: Optional[float],
		freshness: Optional[Freshness] = None,
		retries: Optional[int] = None,
		retry_delay: Optional[float] = None,
		stale_after: float = 0.0,
		clock: Callable[[], float] = time.time,
	) -> None:
		self.key = key
		self._store = store
		self._fetch = fetch
		self._interval = interval
		self._freshness = freshness
		self._retries = settings.fetch_silent_retries if retries is None else max(0, retries)
		self._retry_delay = settings.fetch_retry_delay_seconds if retry_delay is None else max(0.0, retry_delay)
		self._stale_after = stale_after
		self._clock = clock
		self._wake = asyncio.Event()
		self._refetch_requested = False
		self._fetching = False
		self._mounted = False
		self._task: Optional[asyncio.Task] = None
		self._unwatch: Optional[Callable[[], None]] = None

	@property
	def mounted(self) -> bool:
		return self._mounted

	@property
	def interval(self) -> Optional[float]:
		return self._interval

	def mount(self) -> None:
		if self._mounted:
			return
		self._mounted = True
		self._refetch_requested = False
		self._unwatch = self._store.watch(self.key, self._on_invalidated)
		self._task = asyncio.create_task(self._run(), name=f"poll:{self.key}")

	async def unmount(self) -> None:
		if not self._mounted:
			return
		self._mounted = False
		if self._unwatch is not None:
			self._unwatch()
			self._unwatch = None
		task = self._task
		self._task = None
		if task is None or task is asyncio.current_task():
			return
		task.cancel()
		with suppress(asyncio.CancelledError):
			await task

	def set_interval(self, interval: Optional[float]) -> None:
		if interval == self._interval:
			return
		logger.debug("poll interval key=%s %s -> %s", self.key, self._interval, interval)
		self._interval = interval
		self._wake.set()

	def refetch(self) -> None:
		self._refetch_requested = True
		self._wake.set()

	def read(self) -> QueryState:
		entry = self._store.entry(self.key)
		if entry is None:
			return QueryState(value=None, error=None, is_stale=True, is_fetching=self._fetching, fetched_at=None)
		return QueryState(
			value=entry.value if entry.has_value else None,
			error=entry.error,
			is_stale=entry.is_stale(self._clock()),
			is_fetching=self._fetching,
			fetched_at=entry.fetched_at if entry.has_value else None,
		)

	def _on_invalidated(self, _key: ResourceKey) -> None:
		if self._mounted:
			self.refetch()

	async def _run(self) -> None:
		entry = self._store.entry(self.key)
		if entry is None or entry.is_stale(self._clock()):
			await self._fetch_with_retries()
		while self._mounted:
			due = await self._next_due()
			if not self._mounted:
				return
			if due:
				await self._fetch_with_retries()

	async def _next_due(self) -> bool:
		"""Wait for a tick or a wake-up. Returns False when only the interval changed."""
		if self._refetch_requested:
			self._refetch_requested = False
			return True
		self._wake.clear()
		interval = self._interval
		try:
			if interval is None:
				await self._wake.wait()
			else:
				await asyncio.wait_for(self._wake.wait(), timeout=interval)
		except asyncio.TimeoutError:
			return True
		if self._refetch_requested:
			self._refetch_requested = False
			return True
		return False

	async def _fetch_with_retries(self) -> None:
		attempts = 0
		while self._mounted:
			try:
				await self._fetch_once()
				return
			except TransientFetchError as exc:
				attempts += 1
				if attempts > self._retries:
					logger.warning("fetch failed key=%s attempts=%s error=%s", self.key, attempts, exc.detail)
					self._store.record_error(self.key, exc)
					return
				await asyncio.sleep(self._retry_delay)
			except DomainError as exc:
				logger.info("fetch rejected key=%s status=%s", self.key, exc.status_code)
				self._store.record_error(self.key, exc)
				return
			except Exception:
				# surfaced like a failed fetch; the loop keeps serving ticks and invalidations
				logger.exception("unexpected fetch failure key=%s", self.key)
				self._store.record_error(self.key, SyncError("fetch_failed", message="Failed to refresh data"))
				return

	async def _fetch_once(self) -> None:
		token = self._store.begin_fetch(self.key)
		issued_at = self._clock()
		started = time.perf_counter()
		self._fetching = True
		try:
			value = await self._fetch()
		except Exception:
			obs_metrics.poll_fetch(self.key.kind, "error", time.perf_counter() - started)
			raise
		finally:
			self._fetching = False
		duration = time.perf_counter() - started
		if not self._mounted:
			obs_metrics.poll_fetch(self.key.kind, "cancelled", duration)
			return
		if not self._at_least_as_fresh(value):
			obs_metrics.poll_fetch(self.key.kind, "regressed", duration)
			logger.debug("discarding semantically older result key=%s", self.key)
			return
		applied = self._store.write(self.key, value, issued_at, token=token, stale_after=self._stale_after)
		obs_metrics.poll_fetch(self.key.kind, "ok" if applied else "stale", duration)

	def _at_least_as_fresh(self, value: Any) -> bool:
		if self._freshness is None:
			return True
		entry = self._store.entry(self.key)
		if entry is None or not entry.has_value:
			return True
		return self._freshness(value) >= self._freshness(entry.value)
