"""Pydantic schemas for the notification resource."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class NotificationType(str, Enum):
	BOOKING = "booking"
	MESSAGE = "message"
	TASK = "task"
	APPROVAL = "approval"
	OTHER = "other"


class Notification(BaseModel):
	model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

	id: str
	type: NotificationType = NotificationType.OTHER
	title: str = ""
	content: str = ""
	read: bool = False
	created_at: datetime = Field(..., alias="createdAt")

	@field_validator("type", mode="before")
	def _unknown_type_is_other(cls, value):  # type: ignore[override]
		try:
			return NotificationType(value)
		except ValueError:
			return NotificationType.OTHER


_NOTIFICATIONS = TypeAdapter(List[Notification])


def parse_notifications(data: Any) -> Tuple[Notification, ...]:
	return tuple(_NOTIFICATIONS.validate_python(data or []))
