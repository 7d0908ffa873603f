"""Shared utility functions for blueprints and services.

parse_date:        returns None on bad input
as_utc:            SQLite hands back naive datetimes; normalise before comparing
clamp_pagination:  1 <= page, page * limit <= sys.maxsize, 1 <= limit <= LIST_MAX_LIMIT;
                   never rejects
"""
import logging
import sys
from datetime import UTC, date, datetime

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 25
MAX_LIMIT = 100


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (depot register format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def as_utc(value):
    """Attach UTC to a naive datetime; pass aware datetimes and None through."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _as_int(value, default):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def clamp_pagination(page, limit) -> tuple[int, int]:
    """Coerce raw page/limit values into the accepted range.

    Out-of-range or non-numeric values are clamped to the nearest valid
    value (or the default), never rejected.
    """
    default_limit = DEFAULT_LIMIT
    max_limit = MAX_LIMIT
    if has_app_context():
        default_limit = current_app.config.get("LIST_DEFAULT_LIMIT", DEFAULT_LIMIT)
        max_limit = current_app.config.get("LIST_MAX_LIMIT", MAX_LIMIT)

    page = max(_as_int(page, 1), 1)
    limit = _as_int(limit, default_limit)
    limit = min(max(limit, 1), max_limit)
    page = min(page, sys.maxsize // limit)
    return page, limit
