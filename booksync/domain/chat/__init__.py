"""Chat domain exports."""

from .internal import InternalChatDirectory
from .schemas import Chat, InternalChat, Message
from .sync import ChatSync

__all__ = [
	"Chat",
	"ChatSync",
	"InternalChat",
	"InternalChatDirectory",
	"Message",
]
