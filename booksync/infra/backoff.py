"""Bounded exponential backoff with full jitter for reconnect attempts."""

from __future__ import annotations

import random
from typing import Callable, Optional

from booksync.settings import settings


class Backoff:
	def __init__(
		self,
		*,
		base: Optional[float] = None,
		cap: Optional[float] = None,
		rand: Callable[[], float] = random.random,
	) -> None:
		self.base = max(0.0, base if base is not None else settings.push_backoff_base_seconds)
		self.cap = max(self.base, cap if cap is not None else settings.push_backoff_max_seconds)
		self._rand = rand
		self.attempt = 0

	def next_delay(self) -> float:
		"""Return a delay in ``[0, min(cap, base * 2**attempt)]`` and advance."""
		ceiling = min(self.cap, self.base * (2 ** min(self.attempt, 32)))
		self.attempt += 1
		return ceiling * self._rand()

	def reset(self) -> None:
		self.attempt = 0
