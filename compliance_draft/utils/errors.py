"""
User-facing error messages.

Backend messages are shown verbatim when they look like something a user can
act on (validation errors).  Anything that looks like an ORM trace or leaks a
source path is replaced by a generic message.
"""

from __future__ import annotations

import re

DEFAULT_FALLBACK = "Unexpected error"
INTERNAL_ERROR = "Internal server error"
MAX_MESSAGE_LENGTH = 180

_SENSITIVE_PATTERNS = (
    re.compile(r"Invalid `.*` invocation", re.IGNORECASE),
    re.compile(r"^PrismaClient", re.IGNORECASE),
    re.compile(r"\bPrisma\b", re.IGNORECASE),
    re.compile(r"Traceback \(most recent call last\)"),
    re.compile(r"[A-Z]:\\", re.IGNORECASE),
    re.compile(r"/src/|\\src\\", re.IGNORECASE),
)


def compact_single_line(message: str, max_len: int = MAX_MESSAGE_LENGTH) -> str:
    lines = (message or "").splitlines()
    first = lines[0].strip() if lines else ""
    if len(first) <= max_len:
        return first
    return f"{first[:max_len - 1]}…"


def looks_sensitive(message: str) -> bool:
    return any(p.search(message) for p in _SENSITIVE_PATTERNS)


def get_user_error_message(error: object, fallback: str = DEFAULT_FALLBACK) -> str:
    """Turn any exception (or string) into a one-line notification text."""
    if isinstance(error, str):
        return compact_single_line(error) or fallback

    # BuilderApiError carries the backend's structured message when present
    candidate = getattr(error, "server_message", None)
    if not isinstance(candidate, str) or not candidate:
        candidate = str(error) if isinstance(error, BaseException) else ""

    compact = compact_single_line(candidate)
    if not compact:
        return fallback
    if looks_sensitive(compact):
        return INTERNAL_ERROR
    return compact
