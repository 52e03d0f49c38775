"""Date helpers. All timestamps are UTC; calendar days are UTC days."""
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return utcnow().date()


def calendar_days_between(earlier: date, later: date) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (negative if reversed)."""
    if isinstance(earlier, datetime):
        earlier = earlier.date()
    if isinstance(later, datetime):
        later = later.date()
    return (later - earlier).days
