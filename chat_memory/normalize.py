"""Text normalization helpers."""

import re
from datetime import datetime, timezone
from typing import Optional

_SURROGATES = re.compile(r"[\ud800-\udfff]")


def sanitize_text(text: Optional[str]) -> str:
    """Replace lone UTF-16 surrogates so the text can be encoded as UTF-8."""
    if not text:
        return ""
    return _SURROGATES.sub("\ufffd", text)


def format_sender_name(sender) -> Optional[str]:
    """Format a full name from a Telethon user object."""
    if not sender:
        return None

    parts = [
        getattr(sender, "first_name", None),
        getattr(sender, "last_name", None),
    ]
    full_name = " ".join(part for part in parts if isinstance(part, str) and part)
    return sanitize_text(full_name) or None


def display_name(entity, fallback: str = "") -> str:
    """Title for a dialog entity: group title, user full name or @username."""
    title = getattr(entity, "title", None)
    if isinstance(title, str) and title.strip():
        return sanitize_text(title.strip())

    full_name = format_sender_name(entity)
    if full_name:
        return full_name

    username = getattr(entity, "username", None)
    if isinstance(username, str) and username:
        return f"@{username}"

    return fallback


def format_date(epoch_seconds: int) -> str:
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.strftime("%d.%m.%Y")


def format_date_range(start_date: int, end_date: int) -> str:
    """Render a chunk's date span; a single day collapses to one date."""
    start = format_date(start_date)
    end = format_date(end_date)
    if start == end:
        return start
    return f"{start} - {end}"
