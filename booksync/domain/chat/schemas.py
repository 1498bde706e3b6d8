"""Pydantic schemas for chat resources."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _Wire(BaseModel):
	model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Chat(_Wire):
	id: str
	booking_id: Optional[str] = Field(default=None, alias="bookingId")
	is_open: bool = Field(default=True, alias="isOpen")
	created_at: Optional[datetime] = Field(default=None, alias="createdAt")
	closed_at: Optional[datetime] = Field(default=None, alias="closedAt")


class Sender(_Wire):
	id: str
	name: Optional[str] = None
	role: Optional[str] = None


class Attachment(_Wire):
	url: str
	media_type: str


class Message(_Wire):
	id: str
	chat_id: str = Field(..., alias="chatId")
	sender_id: str = Field(..., alias="senderId")
	content: str = ""
	is_private: bool = Field(default=False, alias="isPrivate")
	is_quotation: bool = Field(default=False, alias="isQuotation")
	quotation_amount: Optional[int] = Field(default=None, alias="quotationAmount")
	attachment_url: Optional[str] = Field(default=None, alias="attachmentUrl")
	attachment_type: Optional[str] = Field(default=None, alias="attachmentType")
	created_at: datetime = Field(..., alias="createdAt")
	sender: Optional[Sender] = None

	@field_validator("created_at")
	def _assume_utc(cls, value: datetime) -> datetime:  # type: ignore[override]
		return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)

	@property
	def attachment(self) -> Optional[Attachment]:
		if not self.attachment_url:
			return None
		return Attachment(url=self.attachment_url, media_type=self.attachment_type or "application/octet-stream")


class SendMessageRequest(_Wire):
	content: str = Field(default="", max_length=4000)
	is_private: bool = Field(default=False, alias="isPrivate")
	is_quotation: bool = Field(default=False, alias="isQuotation")
	quotation_amount: Optional[int] = Field(default=None, alias="quotationAmount", ge=0)
	attachment_url: Optional[str] = Field(default=None, alias="attachmentUrl")
	attachment_type: Optional[str] = Field(default=None, alias="attachmentType")

	def to_body(self) -> dict[str, Any]:
		return self.model_dump(by_alias=True, exclude_none=True)


class InternalChat(_Wire):
	id: str
	unread_count: int = Field(default=0, alias="unreadCount")
	updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


_MESSAGES = TypeAdapter(List[Message])
_INTERNAL_CHATS = TypeAdapter(List[InternalChat])


def parse_chat(data: Any) -> Chat:
	return Chat.model_validate(data)


def parse_messages(data: Any) -> Tuple[Message, ...]:
	"""Parse a message list and order it by creation time, keeping server order for ties."""
	items = _MESSAGES.validate_python(data or [])
	return tuple(sorted(items, key=lambda message: message.created_at))


def parse_internal_chats(data: Any) -> Tuple[InternalChat, ...]:
	return tuple(_INTERNAL_CHATS.validate_python(data or []))


def message_freshness(messages: Tuple[Message, ...]) -> Tuple[int, Optional[datetime]]:
	"""Messages are append-only, so a newer snapshot never has fewer items or an older tail."""
	if not messages:
		return (0, None)
	return (len(messages), messages[-1].created_at)
