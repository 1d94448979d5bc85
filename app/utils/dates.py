from datetime import datetime, timedelta, timezone
from typing import Optional

# Invoice exports are dated in US Eastern standard time
EXPORT_TZ = timezone(timedelta(hours=-5))


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date or datetime from a query string; naive UTC out"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_short_date(value: datetime) -> str:
    """Mon, Jan 7"""
    return f"{value:%a}, {value:%b} {value.day}"


def format_export_date(value: datetime) -> str:
    """MM/DD/YYYY in the export timezone; naive values are UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(EXPORT_TZ).strftime("%m/%d/%Y")


def format_file_date(value: datetime) -> str:
    return value.strftime("%m-%d-%Y")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Columns store naive UTC; aware values from request bodies are converted"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
