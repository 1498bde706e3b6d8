"""Keyed result cache with stale-while-revalidate invalidation.

Invalidation is the only signal components exchange. ``invalidate`` never
drops the last good value; it marks the entry untrusted and wakes every
mounted consumer (``watch``) so it refetches on its own task. Repeated
invalidations coalesce until a consumer calls ``begin_fetch``; an
invalidation that lands while that fetch is in flight wakes consumers again
and keeps the entry marked after the write.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from booksync.errors import SyncError
from booksync.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

Listener = Callable[["ResourceKey"], None]


@dataclass(frozen=True, slots=True)
class ResourceKey:
	"""Resource kind plus the parameters that identify one fetched result."""

	kind: str
	params: Tuple[str, ...] = ()

	@property
	def parts(self) -> Tuple[str, ...]:
		return (self.kind, *self.params)

	def startswith(self, prefix: Iterable[str]) -> bool:
		prefix = tuple(prefix)
		return self.parts[: len(prefix)] == prefix

	def __str__(self) -> str:
		return "/".join(self.parts)


@dataclass(frozen=True, slots=True)
class FetchToken:
	key: ResourceKey
	seq: int


@dataclass(slots=True)
class CacheEntry:
	value: Any = None
	has_value: bool = False
	fetched_at: Optional[float] = None
	stale_after: float = 0.0
	invalidated: bool = False
	invalidated_seq: int = 0
	wake_pending: bool = False
	error: Optional[SyncError] = None

	def is_stale(self, now: Optional[float] = None) -> bool:
		if not self.has_value or self.invalidated or self.fetched_at is None:
			return True
		now = time.time() if now is None else now
		return now >= self.fetched_at + self.stale_after


class CacheStore:
	def __init__(self) -> None:
		self._entries: Dict[ResourceKey, CacheEntry] = {}
		self._watchers: Dict[ResourceKey, List[Listener]] = {}
		self._seq = 0

	def _ensure(self, key: ResourceKey) -> CacheEntry:
		entry = self._entries.get(key)
		if entry is None:
			entry = CacheEntry()
			self._entries[key] = entry
		return entry

	def read(self, key: ResourceKey, default: Any = None) -> Any:
		entry = self._entries.get(key)
		if entry is None or not entry.has_value:
			return default
		return entry.value

	def entry(self, key: ResourceKey) -> Optional[CacheEntry]:
		return self._entries.get(key)

	def write(
		self,
		key: ResourceKey,
		value: Any,
		fetched_at: float,
		*,
		token: Optional[FetchToken] = None,
		stale_after: float = 0.0,
	) -> bool:
		"""Store ``value`` unless a newer fetch already landed. Returns True when applied."""
		entry = self._ensure(key)
		if entry.has_value and entry.fetched_at is not None and fetched_at < entry.fetched_at:
			obs_metrics.cache_write(key.kind, "stale")
			logger.debug("discarding stale write key=%s fetched_at=%s current=%s", key, fetched_at, entry.fetched_at)
			return False
		entry.value = value
		entry.has_value = True
		entry.fetched_at = fetched_at
		entry.stale_after = max(0.0, stale_after)
		entry.error = None
		if token is None or entry.invalidated_seq <= token.seq:
			entry.invalidated = False
		obs_metrics.cache_write(key.kind, "accepted")
		return True

	def begin_fetch(self, key: ResourceKey) -> FetchToken:
		"""Mark the start of a refetch; later invalidations wake consumers again."""
		entry = self._ensure(key)
		entry.wake_pending = False
		return FetchToken(key=key, seq=self._seq)

	def record_error(self, key: ResourceKey, error: SyncError) -> None:
		self._ensure(key).error = error

	def invalidate(self, key: ResourceKey) -> bool:
		"""Mark ``key`` for mandatory refetch. Returns True when consumers were woken."""
		self._seq += 1
		entry = self._ensure(key)
		entry.invalidated = True
		entry.invalidated_seq = self._seq
		if entry.wake_pending:
			obs_metrics.cache_invalidated(key.kind, False)
			return False
		entry.wake_pending = True
		obs_metrics.cache_invalidated(key.kind, True)
		for listener in list(self._watchers.get(key, ())):
			listener(key)
		return True

	def invalidate_prefix(self, *prefix: str) -> int:
		"""Invalidate every known key whose parts start with ``prefix``."""
		candidates = {key for key in (*self._entries, *self._watchers) if key.startswith(prefix)}
		for key in candidates:
			self.invalidate(key)
		return len(candidates)

	def watch(self, key: ResourceKey, listener: Listener) -> Callable[[], None]:
		self._watchers.setdefault(key, []).append(listener)

		def _unwatch() -> None:
			listeners = self._watchers.get(key)
			if not listeners:
				return
			try:
				listeners.remove(listener)
			except ValueError:
				return
			if not listeners:
				self._watchers.pop(key, None)

		return _unwatch

	def watcher_count(self, key: ResourceKey) -> int:
		return len(self._watchers.get(key, ()))

	def clear(self) -> None:
		self._entries.clear()
		self._watchers.clear()
