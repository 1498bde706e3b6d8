"""Error taxonomy for the sync layer.

Transport failures (``TransientFetchError``, ``HandshakeError``) are absorbed
where they happen and degrade freshness. Domain failures (``DomainError`` and
subclasses) carry the server's message and are surfaced to the user verbatim.
"""

from __future__ import annotations


class SyncError(RuntimeError):
	def __init__(self, code: str, *, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.detail = message or code


class TransientFetchError(SyncError):
	"""Network failure, timeout or 5xx response."""

	def __init__(self, message: str, *, status_code: int | None = None) -> None:
		super().__init__("transient", message=message)
		self.status_code = status_code


class HandshakeError(SyncError):
	"""The live connection could not be established."""

	def __init__(self, message: str = "handshake failed") -> None:
		super().__init__("handshake_failed", message=message)


class DomainError(SyncError):
	"""Server rejected the request for a business reason (4xx)."""

	def __init__(self, message: str, *, status_code: int = 400, code: str = "domain") -> None:
		super().__init__(code, message=message)
		self.status_code = status_code


class ChatClosedError(DomainError):
	def __init__(self, chat_id: str, message: str = "Chat is closed") -> None:
		super().__init__(message, status_code=400, code="chat_closed")
		self.chat_id = chat_id


class MutationError(SyncError):
	"""A confirmed-write mutation failed; the cache was left untouched."""

	def __init__(self, name: str, cause: SyncError) -> None:
		super().__init__(f"mutation_failed:{name}", message=cause.detail)
		self.name = name
		self.cause = cause


__all__ = [
	"ChatClosedError",
	"DomainError",
	"HandshakeError",
	"MutationError",
	"SyncError",
	"TransientFetchError",
]
