"""Secret-safe logging utilities.

Provider URLs carry API keys in their query strings (TMDB, RAWG, Last.fm,
Google Books) and httpx errors echo those URLs. Everything here keeps such
values out of log output:
- Credential query parameter redaction
- Sensitive field redaction in structured data
- A formatter that applies both to every record
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

# Fields that should be redacted in logs
REDACT_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "key",
        "auth",
        "authorization",
        "credential",
        "access_token",
        "client_secret",
    }
)

# Regex patterns for sensitive data
PATTERNS = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"),
    "query_secret": re.compile(
        r"(?P<name>[?&](?:api_key|apikey|key|token|access_token))=(?P<value>[^&\s#\"']+)",
        re.I,
    ),
}


def redact_value(value: str, visible_chars: int = 4) -> str:
    """Redact a sensitive value, showing only first few characters.

    Args:
        value: Value to redact
        visible_chars: Number of characters to show

    Returns:
        Redacted string (e.g., "sk-a***")
    """
    if len(value) <= visible_chars:
        return "***"
    return f"{value[:visible_chars]}***"


def redact_query_secrets(text: str) -> str:
    """Replace credential query parameter values in any URL inside ``text``."""
    return PATTERNS["query_secret"].sub(lambda m: f"{m.group('name')}=***", text)


def redact_dict(
    data: dict[str, Any],
    redact_fields: frozenset[str] | None = None,
) -> dict[str, Any]:
    """Recursively redact sensitive fields in a dictionary.

    Keys match exactly (case-insensitive) or by ``_``-separated suffix, so
    ``lastfm_api_key`` is redacted while ``monkey`` is not.
    """
    if redact_fields is None:
        redact_fields = REDACT_FIELDS

    result: dict[str, Any] = {}
    for key, value in data.items():
        key_lower = key.lower()
        should_redact = key_lower in redact_fields or any(
            key_lower.endswith(f"_{field}") for field in redact_fields
        )

        if should_redact and isinstance(value, str):
            result[key] = redact_value(value)
        elif isinstance(value, dict):
            result[key] = redact_dict(value, redact_fields)
        elif isinstance(value, list):
            result[key] = [
                redact_dict(item, redact_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result


def sanitize_message(message: str) -> str:
    """Remove credentials and e-mail addresses from a log message."""
    result = redact_query_secrets(message)
    result = PATTERNS["email"].sub("[EMAIL]", result)
    return result


class SafeLogFormatter(logging.Formatter):
    """Log formatter that strips secrets from messages and their arguments."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        sanitize_messages: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.sanitize_messages = sanitize_messages

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers still see the original record
        record = logging.makeLogRecord(record.__dict__)

        if self.sanitize_messages:
            record.msg = sanitize_message(str(record.msg))
            if record.args:
                record.args = self._sanitize_args(record.args)

        formatted = super().format(record)
        if self.sanitize_messages and record.exc_info:
            # Tracebacks from httpx embed the request URL
            formatted = sanitize_message(formatted)
        return formatted

    def _sanitize_args(self, args: tuple[Any, ...] | Mapping[str, Any]) -> tuple[Any, ...]:
        if isinstance(args, Mapping):
            return tuple(self._sanitize_value(v) for v in args.values())
        return tuple(self._sanitize_value(arg) for arg in args)

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_message(value)
        if isinstance(value, dict):
            return redact_dict(value)
        return value


def configure_rich_logging(
    level: int = logging.WARNING,
    redact_secrets: bool = True,
    show_time: bool = True,
    show_path: bool = False,
) -> Console:
    """Install a Rich handler on the root logger and return its console.

    Args:
        level: Logging level
        redact_secrets: Whether to scrub credentials from log output
        show_time: Show timestamps in log lines
        show_path: Show source path in log lines

    Returns:
        The Console used for both logging and command output
    """
    console = Console(stderr=False)
    handler = RichHandler(
        console=console,
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=False,
    )
    handler.setFormatter(SafeLogFormatter(fmt="%(message)s", sanitize_messages=redact_secrets))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in list(root_logger.handlers):
        if isinstance(existing, RichHandler):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    return console


## Tests


def test_redact_value():
    assert redact_value("sk-secret-key-12345") == "sk-s***"
    assert redact_value("abc") == "***"


def test_redact_query_secrets():
    url = "https://api.themoviedb.org/3/movie/603?api_key=abcdef123&language=en-US"
    redacted = redact_query_secrets(url)
    assert "abcdef123" not in redacted
    assert "api_key=***" in redacted
    assert "language=en-US" in redacted


def test_redact_query_secrets_rawg_key_param():
    url = "https://api.rawg.io/api/games/3498?key=deadbeef"
    assert redact_query_secrets(url) == "https://api.rawg.io/api/games/3498?key=***"


def test_redact_dict():
    data = {
        "lastfm_api_key": "lf-secret-12345",
        "monkey": "banana",
        "nested": {"token": "abc123456"},
    }
    redacted = redact_dict(data)
    assert redacted["lastfm_api_key"] == "lf-s***"
    assert redacted["monkey"] == "banana"
    assert redacted["nested"]["token"] == "abc1***"


def test_safe_log_formatter_scrubs_args():
    formatter = SafeLogFormatter(fmt="%(message)s")
    record = logging.LogRecord(
        name="test",
        level=logging.WARNING,
        pathname="",
        lineno=0,
        msg="Request failed: %s",
        args=("https://ws.audioscrobbler.com/2.0/?method=album.getinfo&api_key=xyz987",),
        exc_info=None,
    )
    formatted = formatter.format(record)
    assert "xyz987" not in formatted
    assert "method=album.getinfo" in formatted
