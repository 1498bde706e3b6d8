import json
import logging

from booksync.obs import logging as obs_logging
from booksync.settings import Settings


def _record(msg="hello", **extra):
	record = logging.LogRecord("booksync.test", logging.INFO, __file__, 1, msg, (), None)
	for key, value in extra.items():
		setattr(record, key, value)
	return record


def test_formatter_includes_bound_context_and_redacts_sensitive_fields():
	tokens = obs_logging.bind_context(session_id="s1", user_id="u1", chat_id="c1")
	try:
		payload = json.loads(obs_logging.JSONLogFormatter().format(_record(token="secret", chat_state="open")))
	finally:
		obs_logging.reset_context(tokens)

	assert payload["msg"] == "hello"
	assert payload["session_id"] == "s1"
	assert payload["user_id"] == "u1"
	assert payload["chat_id"] == "c1"
	assert payload["token"] == "[redacted]"
	assert payload["chat_state"] == "open"


def test_reset_context_restores_previous_values():
	outer = obs_logging.bind_context(session_id="outer")
	inner = obs_logging.bind_context(chat_id="c9")
	obs_logging.reset_context(inner)
	payload = json.loads(obs_logging.JSONLogFormatter().format(_record()))
	obs_logging.reset_context(outer)

	assert payload["session_id"] == "outer"
	assert "chat_id" not in payload


def test_long_values_are_truncated():
	payload = json.loads(obs_logging.JSONLogFormatter().format(_record(reason="x" * 500)))
	assert len(payload["reason"]) <= 257


def test_push_url_defaults_to_api_base():
	configured = Settings(api_base_url="https://api.example.test/", push_url=None)
	assert configured.api_base_url == "https://api.example.test"
	assert configured.resolved_push_url() == "https://api.example.test"
	assert Settings(push_url="wss://push.example.test").resolved_push_url() == "wss://push.example.test"
