import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

# Ensure the package is importable when tests run from the repo root without an install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
	sys.path.insert(0, str(PROJECT_ROOT))

from booksync.domain.sync.notices import NoticeBoard
from booksync.domain.sync.push import PushChannel
from booksync.infra.backoff import Backoff
from booksync.infra.cache import CacheStore
from booksync.infra.http import ApiClient
from booksync.settings import settings


@pytest.fixture(autouse=True)
def fast_settings():
	"""Keep retry and reconnect timing short so background tasks settle quickly."""
	overrides = {
		"fetch_silent_retries": 0,
		"fetch_retry_delay_seconds": 0.0,
		"push_handshake_timeout_seconds": 0.2,
		"push_backoff_base_seconds": 0.01,
		"push_backoff_max_seconds": 0.05,
	}
	originals = {name: getattr(settings, name) for name in overrides}
	for name, value in overrides.items():
		setattr(settings, name, value)
	try:
		yield settings
	finally:
		for name, value in originals.items():
			setattr(settings, name, value)


@pytest.fixture
def store() -> CacheStore:
	return CacheStore()


@pytest.fixture
def notices() -> NoticeBoard:
	return NoticeBoard()


@pytest.fixture
def eventually():
	async def _wait(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
		loop = asyncio.get_running_loop()
		deadline = loop.time() + timeout
		while not predicate():
			if loop.time() > deadline:
				raise AssertionError("condition not met before timeout")
			await asyncio.sleep(0.005)

	return _wait


class FakeApi:
	"""Route table behind ``httpx.MockTransport``; records every request it sees."""

	def __init__(self) -> None:
		self.routes: Dict[Tuple[str, str], Any] = {}
		self.calls: List[Tuple[str, str, Any]] = []

	def on(self, method: str, path: str, response: Any) -> None:
		"""``response`` is ``(status, json)``, a callable returning that pair, or an exception to raise."""
		self.routes[(method.upper(), path)] = response

	def count(self, method: str, path: str) -> int:
		return sum(1 for call in self.calls if call[0] == method.upper() and call[1] == path)

	def last_body(self, method: str, path: str) -> Any:
		for call in reversed(self.calls):
			if call[0] == method.upper() and call[1] == path:
				return call[2]
		raise AssertionError(f"no {method} {path} request recorded")

	def handler(self, request: httpx.Request) -> httpx.Response:
		body = json.loads(request.content) if request.content else None
		self.calls.append((request.method, request.url.path, body))
		route = self.routes.get((request.method, request.url.path))
		if route is None:
			return httpx.Response(404, json={"message": "Not found"})
		if isinstance(route, Exception):
			raise route
		if callable(route):
			route = route(request)
		status, payload = route
		if payload is None:
			return httpx.Response(status)
		return httpx.Response(status, json=payload)


@pytest.fixture
def fake_api() -> FakeApi:
	return FakeApi()


@pytest_asyncio.fixture
async def api(fake_api):
	client = ApiClient(
		"http://booksync.test",
		credential="token-1",
		transport=httpx.MockTransport(fake_api.handler),
	)
	try:
		yield client
	finally:
		await client.aclose()


class FakeSocket:
	"""Stands in for ``socketio.AsyncClient``; handlers are triggered directly by tests."""

	def __init__(self, *, fail: Optional[BaseException] = None, hang: bool = False) -> None:
		self.handlers: Dict[str, Callable[..., Any]] = {}
		self.fail = fail
		self.hang = hang
		self.connect_kwargs: Dict[str, Any] = {}
		self.url: Optional[str] = None
		self.emit = AsyncMock()
		self.disconnect = AsyncMock()

	def on(self, event: str, handler: Callable[..., Any]) -> None:
		self.handlers[event] = handler

	async def connect(self, url: str, **kwargs: Any) -> None:
		self.url = url
		self.connect_kwargs = kwargs
		if self.hang:
			await asyncio.sleep(3600)
		if self.fail is not None:
			raise self.fail

	async def trigger(self, event: str, payload: Any = None) -> None:
		await self.handlers[event](payload)

	async def drop(self, reason: str = "transport close") -> None:
		await self.handlers["disconnect"](reason)

	def emitted(self, event: str) -> List[Any]:
		return [call.args[1] for call in self.emit.await_args_list if call.args[0] == event]


class SocketFactory:
	"""Hands out a fresh ``FakeSocket`` per handshake; ``plan`` queues per-attempt behaviour."""

	def __init__(self) -> None:
		self.created: List[FakeSocket] = []
		self.plan: List[Dict[str, Any]] = []

	def __call__(self) -> FakeSocket:
		options = self.plan.pop(0) if self.plan else {}
		socket = FakeSocket(**options)
		self.created.append(socket)
		return socket

	@property
	def last(self) -> FakeSocket:
		return self.created[-1]


@pytest.fixture
def sockets() -> SocketFactory:
	return SocketFactory()


@pytest_asyncio.fixture
async def channel(store, notices, sockets):
	push = PushChannel(
		store,
		notices,
		url="http://booksync.test",
		client_factory=sockets,
		backoff=Backoff(base=0.01, cap=0.02, rand=lambda: 1.0),
	)
	try:
		yield push
	finally:
		await push.close()
