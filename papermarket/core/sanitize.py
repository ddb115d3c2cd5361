"""Input sanitising helpers used at the server boundary."""

import re
from typing import Optional

_SYMBOL_RE = re.compile(r"^[A-Z0-9.\-^&]{1,20}$")
_QUERY_STRIP_RE = re.compile(r"[^a-zA-Z0-9 .\-&]")

MAX_QUERY_LENGTH = 40


def sanitize_symbol(raw) -> Optional[str]:
    """
    Upper-case and validate a ticker symbol.

    Returns:
        The cleaned symbol, or None if it contains anything besides
        letters, digits, '.', '-', '^' and '&' (max 20 chars)
    """
    if not raw or not isinstance(raw, str):
        return None
    cleaned = raw.strip().upper()
    if not _SYMBOL_RE.match(cleaned):
        return None
    return cleaned


def sanitize_query(raw) -> Optional[str]:
    """Strip a free-text search query down to safe characters."""
    if not raw or not isinstance(raw, str):
        return None
    return _QUERY_STRIP_RE.sub("", raw.strip()[:MAX_QUERY_LENGTH])
