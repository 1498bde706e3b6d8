"""Sync layer exports."""

from . import keys
from .notices import Notice, NoticeBoard
from .polling import PollingFetcher, QueryState
from .push import ConnectionState, PushChannel

__all__ = [
	"ConnectionState",
	"Notice",
	"NoticeBoard",
	"PollingFetcher",
	"PushChannel",
	"QueryState",
	"keys",
]
