"""Resource keys and the REST paths they are fetched from."""

from __future__ import annotations

from booksync.infra.cache import ResourceKey

CHAT = "chat"
MESSAGES = "messages"
BOOKING = "booking"
NOTIFICATIONS = "notifications"
INTERNAL_CHATS = "internal_chats"
INTERNAL_MESSAGES = "internal_messages"


def chat(chat_id: str) -> ResourceKey:
	return ResourceKey(CHAT, (str(chat_id),))


def messages(chat_id: str) -> ResourceKey:
	return ResourceKey(MESSAGES, (str(chat_id),))


def booking(booking_id: str) -> ResourceKey:
	return ResourceKey(BOOKING, (str(booking_id),))


def notifications() -> ResourceKey:
	return ResourceKey(NOTIFICATIONS)


def internal_chats() -> ResourceKey:
	return ResourceKey(INTERNAL_CHATS)


def internal_messages(chat_id: str) -> ResourceKey:
	return ResourceKey(INTERNAL_MESSAGES, (str(chat_id),))


_PATHS = {
	CHAT: "/api/chats/{0}",
	MESSAGES: "/api/chats/{0}/messages",
	BOOKING: "/api/bookings/{0}",
	NOTIFICATIONS: "/api/notifications",
	INTERNAL_CHATS: "/api/internal-chats",
	INTERNAL_MESSAGES: "/api/internal-chats/{0}/messages",
}


def path_for(key: ResourceKey) -> str:
	try:
		template = _PATHS[key.kind]
	except KeyError as exc:
		raise ValueError(f"no endpoint for resource kind {key.kind!r}") from exc
	return template.format(*key.params)
