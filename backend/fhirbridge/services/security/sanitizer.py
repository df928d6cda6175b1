"""PHI-aware error sanitization.

Raw error text from the database, a remote FHIR server or our own code can
carry identifiers, contact details or dates of birth. Everything that crosses
the process boundary goes through ``ErrorSanitizer.sanitize`` first.
"""

import re
from collections.abc import Mapping
from typing import Any

from fhirbridge.schemas.security import SafeError

MAX_MESSAGE_LENGTH = 200
GENERIC_MESSAGE = "An error occurred"
REDACTED = "[REDACTED]"

# Known error codes -> fixed user-facing messages. Checked before redaction.
KNOWN_ERROR_CODES = {
    "23505": "Duplicate record exists",
    "23503": "Referenced record not found",
    "PGRST301": "Authentication required",
    "PGRST116": "Record not found",
    "42501": "Permission denied",
    "ECONNREFUSED": "Service temporarily unavailable",
    "ETIMEDOUT": "Request timed out",
}

# Applied in order; each replaces the match with [REDACTED] (keeping the key label).
_REDACTIONS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"(?<!\d)\d{3}-\d{2}-\d{4}(?!\d)"), REDACTED),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), REDACTED),
    (re.compile(r"(?:\(\d{3}\)\s?|(?<!\d)\d{3}[-.])\d{3}[-.]\d{4}(?!\d)"), REDACTED),
    (
        re.compile(
            r"\b((?:patient|user|member)_?id|(?:patient|user|member)Id)(\"?'?\s*[:=]\s*\"?'?)"
            r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
        ),
        r"\1\2" + REDACTED,
    ),
    (
        re.compile(
            r"\b(DOB|dob|date_of_birth|birth_?date|birthDate)(\s*[:=]\s*)"
            r"(?:\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{2,4})"
        ),
        r"\1\2" + REDACTED,
    ),
)


def _message_and_code(error: Any) -> tuple[str | None, str | None]:
    """Pull a message and optional code out of whatever was raised or returned."""
    if isinstance(error, BaseException):
        return str(error), getattr(error, "code", None)
    if isinstance(error, str):
        return error, None
    if isinstance(error, Mapping):
        message = error.get("message")
        return (message if isinstance(message, str) else None), error.get("code")
    return None, None


class ErrorSanitizer:
    """Turns arbitrary errors into short messages free of PHI."""

    @classmethod
    def sanitize(cls, error: Any) -> str:
        """Return a user-safe message for an exception, string or error mapping.

        Never raises.
        """
        message, code = _message_and_code(error)
        if not message:
            return GENERIC_MESSAGE

        for known_code, friendly in KNOWN_ERROR_CODES.items():
            if (code is not None and str(code) == known_code) or known_code in message:
                return friendly

        # Drop stack traces and anything after the first line
        sanitized = message.strip().splitlines()[0] if message.strip() else ""
        for pattern, replacement in _REDACTIONS:
            sanitized = pattern.sub(replacement, sanitized)

        if len(sanitized) > MAX_MESSAGE_LENGTH:
            sanitized = sanitized[:MAX_MESSAGE_LENGTH] + "..."
        return sanitized or GENERIC_MESSAGE

    @classmethod
    def create_safe_error(cls, error: Any, user_message: str | None = None) -> SafeError:
        """Build a SafeError, preferring an explicit user-facing message."""
        _, code = _message_and_code(error)
        return SafeError(
            message=user_message or cls.sanitize(error),
            code=str(code) if code else "UNKNOWN_ERROR",
        )
