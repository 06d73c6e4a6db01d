"""Small text and timestamp helpers shared across modules."""

from __future__ import annotations

from datetime import datetime


def truncate(text: str, max_length: int, omission: str = "...") -> str:
    """
    Shorten text to at most max_length characters.

    The omission marker counts toward max_length, so the result of
    truncating a long string is exactly max_length characters.
    """
    if len(text) <= max_length:
        return text
    return f"{text[:max_length - len(omission)]}{omission}"


def tail(text: str, length: int = 500) -> str:
    """Return the last length characters of text."""
    return text[-length:]


def now_iso() -> str:
    """Current local time as ISO-8601 with the UTC offset, second precision."""
    return datetime.now().astimezone().isoformat(timespec="seconds")
