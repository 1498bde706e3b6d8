"""Structured logging for the sync client."""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from booksync.settings import settings

_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	"session_id": ContextVar("obs_session_id", default=None),
	"user_id": ContextVar("obs_user_id", default=None),
	"chat_id": ContextVar("obs_chat_id", default=None),
}

_LOGGER_NAME = "booksync"

# credentials and message bodies never reach the log stream
_REDACTED_KEYWORDS = ("token", "credential", "secret", "authorization", "password", "content", "body", "payload")

_MAX_STRING_LENGTH = 256

_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def bind_context(
	*,
	session_id: Optional[str] = None,
	user_id: Optional[str] = None,
	chat_id: Optional[str] = None,
) -> Dict[str, Token]:
	"""Bind session/user/chat ids for the current task and return reset tokens."""
	values = {"session_id": session_id, "user_id": user_id, "chat_id": chat_id}
	return {name: _CONTEXT[name].set(value) for name, value in values.items() if value is not None}


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT[name].reset(token)


def clear_context() -> None:
	for var in _CONTEXT.values():
		var.set(None)


def _scrub(key: str, value: Any) -> Any:
	if any(keyword in key.lower() for keyword in _REDACTED_KEYWORDS):
		return "[redacted]"
	if value is None or isinstance(value, (bool, int, float)):
		return value
	text = str(value)
	return text if len(text) <= _MAX_STRING_LENGTH else f"{text[:_MAX_STRING_LENGTH]}…"


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record, tagged with the bound session context."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, object] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for name, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[name] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key not in _RESERVED_ATTRS:
				payload[key] = _scrub(key, value)
		return json.dumps(payload, separators=(",", ":"))


class InfoSamplingFilter(logging.Filter):
	"""Randomly sample info-level logs, keep everything else."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	"""Install the JSON handler on the root logger using the configured level."""
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)
