"""Keep the inference API key and athlete contact details out of logs.

The gateway sends `Authorization: Bearer <key>` on every request, and
transport errors or echoed response bodies can carry it back into exception
messages. This module redacts, before anything is emitted:

- the configured API key itself, wherever it appears
- Bearer tokens, JWTs and other Authorization header values
- api_key / access_token / secret fields in dumped payloads or query strings
- email addresses

Payload hashes (64 hex chars) are left alone; they are the idempotency keys
that tie queued requests to log lines.

Usage:
    from ride_insights.utils.log_sanitizer import install_log_sanitizer

    install_log_sanitizer(secrets=[settings.api_key])
"""

import logging
import re
from typing import Any, Iterable, List, Optional, Tuple

API_KEY_PLACEHOLDER = "[REDACTED_API_KEY]"

# Applied in order; JWTs before Bearer so the token type is kept in the placeholder
REDACTIONS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\beyJ[\w-]+\.eyJ[\w-]+\.[\w-]+"), "[REDACTED_JWT]"),
    (re.compile(r"Bearer\s+[\w\-.]+", re.IGNORECASE), "Bearer [REDACTED_TOKEN]"),
    (re.compile(r"(Authorization[\"']?\s*[:=]\s*[\"']?)(?!Bearer )[^\"'&\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"((?:api_?key|access_token|secret)[\"']?\s*[:=]\s*[\"']?)[^\"'&\s,}]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"\b[\w.%+-]+@[\w.-]+\.[a-zA-Z]{2,}\b"), "[REDACTED_EMAIL]"),
]


class LogSanitizationFilter(logging.Filter):
    """Logging filter that rewrites a record's message and args in place."""

    def __init__(self, secrets: Optional[Iterable[str]] = None):
        super().__init__()
        self.secrets = [s for s in (secrets or []) if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = self._sanitize(str(record.msg))
        if record.args:
            record.args = self._sanitize_args(record.args)
        return True

    def _sanitize(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, API_KEY_PLACEHOLDER)
        for pattern, replacement in REDACTIONS:
            text = pattern.sub(replacement, text)
        return text

    def _sanitize_args(self, args: Any) -> Any:
        if isinstance(args, str):
            return self._sanitize(args)
        if isinstance(args, (tuple, list)):
            cleaned = [self._sanitize_args(arg) for arg in args]
            return tuple(cleaned) if isinstance(args, tuple) else cleaned
        if isinstance(args, dict):
            return {key: self._sanitize_args(value) for key, value in args.items()}
        # Numbers and other objects keep their type unless something was redacted
        text = str(args)
        redacted = self._sanitize(text)
        return args if redacted == text else redacted


def install_log_sanitizer(logger_name: Optional[str] = None, secrets: Optional[Iterable[str]] = None) -> LogSanitizationFilter:
    """Attach a sanitization filter and return it.

    With a logger name the filter goes on that logger only. Otherwise it goes
    on the root logger and every handler already attached to it, so records
    propagated from library loggers are covered too.
    """
    sanitizer = LogSanitizationFilter(secrets=secrets)
    if logger_name:
        logging.getLogger(logger_name).addFilter(sanitizer)
        return sanitizer

    root = logging.getLogger()
    for target in [root, *root.handlers]:
        target.addFilter(sanitizer)
    return sanitizer


def sanitize_string(text: str, secrets: Optional[Iterable[str]] = None) -> str:
    """Redact a string outside the logging system, e.g. an error message."""
    return LogSanitizationFilter(secrets=secrets)._sanitize(text)
