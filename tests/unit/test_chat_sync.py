import asyncio

import pytest
import pytest_asyncio

from booksync.domain.chat.schemas import message_freshness, parse_messages
from booksync.domain.chat.sync import ChatSync
from booksync.domain.sync import keys
from booksync.errors import ChatClosedError, DomainError, MutationError

CHAT_PATH = "/api/chats/c1"
MESSAGES_PATH = "/api/chats/c1/messages"


def _chat(is_open=True):
	return {"id": "c1", "bookingId": "b1", "isOpen": is_open, "createdAt": "2024-05-01T10:00:00Z"}


def _message(message_id, minute):
	return {
		"id": message_id,
		"chatId": "c1",
		"senderId": "u1",
		"content": f"hello {message_id}",
		"createdAt": f"2024-05-01T10:{minute:02d}:00Z",
	}


@pytest.fixture
def chat_routes(fake_api):
	fake_api.on("GET", CHAT_PATH, (200, _chat()))
	fake_api.on("GET", MESSAGES_PATH, (200, [_message("m1", 1)]))
	return fake_api


@pytest_asyncio.fixture
async def view(api, store, channel, notices, chat_routes):
	chat_view = ChatSync("c1", api=api, store=store, channel=channel, notices=notices, poll_interval=0.02)
	try:
		yield chat_view
	finally:
		await chat_view.unmount()


@pytest.mark.asyncio
async def test_joined_chat_suspends_polling(view, channel, fake_api, sockets, eventually):
	await channel.connect("token-1")
	await view.mount()

	assert view.mode == "push"
	assert view.messages_fetcher.interval is None
	assert sockets.last.emitted("join_chat") == ["c1"]
	await eventually(lambda: len(view.messages()) == 1)
	await asyncio.sleep(0.08)
	assert fake_api.count("GET", MESSAGES_PATH) == 1


@pytest.mark.asyncio
async def test_push_event_triggers_refetch(view, channel, fake_api, sockets, eventually):
	await channel.connect("token-1")
	await view.mount()
	await eventually(lambda: len(view.messages()) == 1)

	fake_api.on("GET", MESSAGES_PATH, (200, [_message("m1", 1), _message("m2", 2)]))
	await sockets.last.trigger("new_message", _message("m2", 2))

	await eventually(lambda: [m.id for m in view.messages()] == ["m1", "m2"])
	assert fake_api.count("GET", MESSAGES_PATH) == 2


@pytest.mark.asyncio
async def test_disconnected_view_polls(view, fake_api, eventually):
	await view.mount()

	assert view.mode == "poll"
	assert view.messages_fetcher.interval == 0.02
	await eventually(lambda: fake_api.count("GET", MESSAGES_PATH) >= 3)


@pytest.mark.asyncio
async def test_transport_loss_resumes_polling(view, channel, fake_api, sockets, eventually):
	await channel.connect("token-1")
	await view.mount()
	await eventually(lambda: fake_api.count("GET", MESSAGES_PATH) == 1)

	await sockets.last.drop()

	assert view.mode == "poll"
	assert view.messages_fetcher.interval == 0.02
	await eventually(lambda: fake_api.count("GET", MESSAGES_PATH) >= 3)


@pytest.mark.asyncio
async def test_reconnect_rejoins_and_catches_up(api, store, channel, notices, chat_routes, sockets, eventually):
	slow_view = ChatSync("c1", api=api, store=store, channel=channel, notices=notices, poll_interval=60)
	await slow_view.mount()
	try:
		await eventually(lambda: chat_routes.count("GET", MESSAGES_PATH) == 1)
		assert slow_view.mode == "poll"

		await channel.connect("token-1")

		await eventually(lambda: slow_view.mode == "push")
		assert sockets.last.emitted("join_chat") == ["c1"]
		assert slow_view.messages_fetcher.interval is None
		await eventually(lambda: chat_routes.count("GET", MESSAGES_PATH) == 2)
	finally:
		await slow_view.unmount()


@pytest.mark.asyncio
async def test_send_invalidates_messages_even_when_joined(view, channel, fake_api, eventually):
	fake_api.on("POST", MESSAGES_PATH, (201, _message("m2", 2)))
	await channel.connect("token-1")
	await view.mount()
	await eventually(lambda: len(view.messages()) == 1)
	fake_api.on("GET", MESSAGES_PATH, (200, [_message("m1", 1), _message("m2", 2)]))

	created = await view.send_message("hello m2")

	assert created == "m2"
	assert fake_api.last_body("POST", MESSAGES_PATH) == {"content": "hello m2", "isPrivate": False, "isQuotation": False}
	await eventually(lambda: len(view.messages()) == 2)


@pytest.mark.asyncio
async def test_send_with_quotation_builds_body(view, fake_api):
	fake_api.on("POST", MESSAGES_PATH, (201, _message("m2", 2)))
	await view.mount()

	await view.send_message("Quote", quotation_amount=12000, is_private=True)

	body = fake_api.last_body("POST", MESSAGES_PATH)
	assert body["isQuotation"] is True
	assert body["quotationAmount"] == 12000
	assert body["isPrivate"] is True


@pytest.mark.asyncio
async def test_closed_chat_blocks_send_without_network_call(view, fake_api, notices, eventually):
	fake_api.on("GET", CHAT_PATH, (200, _chat(is_open=False)))
	await view.mount()
	await eventually(lambda: view.chat() is not None)

	with pytest.raises(ChatClosedError):
		await view.send_message("anyone there?")

	assert fake_api.count("POST", MESSAGES_PATH) == 0
	assert not view.is_open
	assert any(notice.is_error and notice.title == "Chat is closed" for notice in notices.pending())


@pytest.mark.asyncio
async def test_server_side_close_rejection_latches(view, fake_api, store, eventually):
	fake_api.on("POST", MESSAGES_PATH, (400, {"message": "Chat is closed"}))
	await view.mount()
	await eventually(lambda: view.chat() is not None)

	with pytest.raises(ChatClosedError):
		await view.send_message("late reply")

	assert not view.is_open
	with pytest.raises(ChatClosedError):
		await view.send_message("again")
	assert fake_api.count("POST", MESSAGES_PATH) == 1


@pytest.mark.asyncio
async def test_failed_send_surfaces_error_and_leaves_cache(view, channel, fake_api, store, notices, eventually):
	fake_api.on("POST", MESSAGES_PATH, (500, {"message": "Database unavailable"}))
	await channel.connect("token-1")
	await view.mount()
	await eventually(lambda: len(view.messages()) == 1)
	fetched_at = store.entry(keys.messages("c1")).fetched_at

	with pytest.raises(MutationError) as excinfo:
		await view.send_message("hello")

	assert excinfo.value.detail == "Database unavailable"
	assert store.entry(keys.messages("c1")).fetched_at == fetched_at
	assert [notice.title for notice in notices.pending()] == ["Failed to send message"]


@pytest.mark.asyncio
async def test_empty_message_is_rejected_locally(view, fake_api):
	await view.mount()

	with pytest.raises(DomainError) as excinfo:
		await view.send_message("")

	assert excinfo.value.code == "invalid_message"
	assert fake_api.count("POST", MESSAGES_PATH) == 0


@pytest.mark.asyncio
async def test_close_chat_invalidates_chat_and_booking(view, fake_api, store, eventually):
	fake_api.on("POST", f"{CHAT_PATH}/close", (200, _chat(is_open=False)))
	await view.mount()
	await eventually(lambda: view.chat() is not None)

	chat = await view.close_chat()

	assert chat is not None and not chat.is_open
	assert not view.is_open
	assert store.entry(keys.booking("b1")).invalidated


@pytest.mark.asyncio
async def test_unmount_leaves_chat_and_stops_fetching(view, channel, fake_api, sockets, eventually):
	await channel.connect("token-1")
	await view.mount()
	await eventually(lambda: fake_api.count("GET", MESSAGES_PATH) == 1)

	await view.unmount()
	await sockets.last.trigger("new_message", {"chatId": "c1"})
	await asyncio.sleep(0.05)

	assert sockets.last.emitted("leave_chat") == ["c1"]
	assert not channel.is_joined("c1")
	assert fake_api.count("GET", MESSAGES_PATH) == 1


@pytest.mark.asyncio
async def test_quotation_without_text_is_sent(view, fake_api):
	fake_api.on("POST", MESSAGES_PATH, (201, _message("m2", 2)))
	await view.mount()

	await view.send_message("", quotation_amount=500)

	body = fake_api.last_body("POST", MESSAGES_PATH)
	assert body["content"] == ""
	assert body["isQuotation"] is True
	assert body["quotationAmount"] == 500


@pytest.mark.asyncio
async def test_attachment_without_text_gets_default_content(view, fake_api):
	fake_api.on("POST", MESSAGES_PATH, (201, _message("m2", 2)))
	await view.mount()

	await view.send_message("", attachment_url="/uploads/floorplan.pdf", attachment_type="application/pdf")

	body = fake_api.last_body("POST", MESSAGES_PATH)
	assert body["content"] == "Shared a file"
	assert body["attachmentUrl"] == "/uploads/floorplan.pdf"


@pytest.mark.asyncio
async def test_quotation_requires_amount(view, fake_api):
	await view.mount()

	with pytest.raises(DomainError) as excinfo:
		await view.send_message("Quote attached", is_quotation=True)

	assert excinfo.value.detail == "Quotation amount is required"
	assert fake_api.count("POST", MESSAGES_PATH) == 0


def test_messages_are_ordered_by_creation_time_keeping_server_order_for_ties():
	raw = [
		_message("m3", 5),
		_message("m1", 1),
		_message("m2a", 3),
		_message("m2b", 3),
		dict(_message("m0", 0), createdAt="2024-05-01T10:00:00"),
	]

	ordered = parse_messages(raw)

	assert [m.id for m in ordered] == ["m0", "m1", "m2a", "m2b", "m3"]
	assert message_freshness(ordered) == (5, ordered[-1].created_at)


@pytest.mark.asyncio
async def test_view_exposes_messages_in_creation_order(view, fake_api, eventually):
	fake_api.on("GET", MESSAGES_PATH, (200, [_message("m9", 9), _message("m4b", 4), _message("m4a", 4), _message("m1", 1)]))
	await view.mount()

	await eventually(lambda: len(view.messages()) == 4)

	assert [m.id for m in view.messages()] == ["m1", "m4b", "m4a", "m9"]
