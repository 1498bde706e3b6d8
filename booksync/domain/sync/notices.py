"""One-shot user-facing notices (toasts and dismissible errors)."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Callable, Dict, List

NoticeListener = Callable[["Notice"], None]

_ids = itertools.count(1)


@dataclass(frozen=True, slots=True)
class Notice:
	id: int
	title: str
	description: str
	variant: str = "default"
	chat_id: str | None = None

	@property
	def is_error(self) -> bool:
		return self.variant == "destructive"


class NoticeBoard:
	"""Holds notices until the user dismisses them; listeners see each notice once."""

	def __init__(self) -> None:
		self._pending: Dict[int, Notice] = {}
		self._listeners: List[NoticeListener] = []

	def post(self, title: str, description: str, *, variant: str = "default", chat_id: str | None = None) -> Notice:
		notice = Notice(id=next(_ids), title=title, description=description, variant=variant, chat_id=chat_id)
		self._pending[notice.id] = notice
		for listener in list(self._listeners):
			listener(notice)
		return notice

	def error(self, title: str, description: str, *, chat_id: str | None = None) -> Notice:
		return self.post(title, description, variant="destructive", chat_id=chat_id)

	def dismiss(self, notice_id: int) -> None:
		self._pending.pop(notice_id, None)

	def pending(self) -> List[Notice]:
		return list(self._pending.values())

	def subscribe(self, listener: NoticeListener) -> Callable[[], None]:
		self._listeners.append(listener)

		def _unsubscribe() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return _unsubscribe

	def clear(self) -> None:
		self._pending.clear()
