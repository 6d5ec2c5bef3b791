"""Utility functions for Flux Notes."""
import datetime
from datetime import timezone


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
        >>> escape_like_pattern("file_name")
        'file\\_name'
    """
    # Use str.translate() for single-pass efficiency
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def clean_search_query(query: str) -> str:
    """Strip quote characters and surrounding whitespace from a search query."""
    if not query:
        return ""
    return query.replace("'", "").replace('"', "").strip()


def _start_of_local_day(day: datetime.date) -> datetime.datetime:
    """Local midnight of ``day`` as a UTC datetime (DST-aware via the host zone)."""
    return datetime.datetime.combine(day, datetime.time.min).astimezone().astimezone(
        timezone.utc
    )


def local_midnight(now: datetime.datetime) -> datetime.datetime:
    """Return the start of the local calendar day containing ``now``, in UTC."""
    return _start_of_local_day(local_date(now))


def local_week_start(now: datetime.datetime) -> datetime.datetime:
    """Return local midnight of the most recent Sunday, in UTC.

    Weeks start on Sunday. ``weekday()`` counts Monday as 0 and Sunday as 6.
    """
    today = local_date(now)
    days_since_sunday = (today.weekday() + 1) % 7
    return _start_of_local_day(today - datetime.timedelta(days=days_since_sunday))


def local_date(value: datetime.datetime) -> datetime.date:
    """Return the local calendar date of an aware datetime."""
    return value.astimezone().date()
