from __future__ import annotations

import os
import re
from typing import Optional


class ConsoleError(Exception):
    """Base for errors that map onto an HTTP status and a JSON error body."""

    status_code = 500

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class AuthError(ConsoleError):
    status_code = 401


class ValidationError(ConsoleError):
    status_code = 400


class ConflictError(ConsoleError):
    status_code = 400


class NotFoundError(ConsoleError):
    status_code = 404


class RateLimitError(ConsoleError):
    status_code = 429

    def __init__(self, message: str, *, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ConfigReadError(ConsoleError):
    status_code = 500


class ConfigWriteError(ConsoleError):
    status_code = 500


class ServiceControlError(ConsoleError):
    status_code = 500


def expose_internal_errors() -> bool:
    return (os.environ.get("EXPOSE_INTERNAL_ERRORS") or "").strip().lower() in (
        "1",
        "true",
        "yes",
        "on",
    )


def clean_text(text: str, *, max_len: int = 200) -> str:
    s = (text or "").replace("\r", " ").replace("\n", " ").strip()
    # Remove other control chars.
    s = "".join(ch if (ch >= " " and ch != "\x7f") else " " for ch in s)
    s = re.sub(r"\s+", " ", s).strip()
    if max_len and len(s) > max_len:
        s = s[: max_len - 1].rstrip() + "…"
    return s


def public_error_message(
    e: Exception,
    *,
    default: str = "Operation failed. Check server logs for details.",
    max_len: int = 200,
) -> str:
    """Return a user-safe error message.

    - ConsoleError messages are written for users and returned as-is (cleaned).
    - Other exceptions are hidden behind `default`.
    - If EXPOSE_INTERNAL_ERRORS is set, returns the exception type + message.
    """
    if isinstance(e, ConsoleError):
        msg = clean_text(e.message, max_len=max_len)
        return msg or default

    if expose_internal_errors():
        detail = clean_text(f"{type(e).__name__}: {e}", max_len=max_len)
        return detail or default

    return default
