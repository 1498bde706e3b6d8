"""Notification domain exports."""

from .feed import NotificationFeed
from .schemas import Notification, NotificationType

__all__ = [
	"Notification",
	"NotificationFeed",
	"NotificationType",
]
