from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _get_zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise RuntimeError(
            f"Timezone '{timezone_name}' is not available. "
            "Install tzdata in your environment: pip install tzdata"
        ) from exc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def region_time(
    now: datetime,
    *,
    offset_hours: float = 0.0,
    timezone_name: str | None = None,
) -> datetime:
    """Return *now* expressed in the trading region's local time.

    A named timezone (DST aware) wins over the fixed ``offset_hours``.
    Naive datetimes are taken as UTC.
    """
    now_utc = _to_utc(now)
    if timezone_name:
        return now_utc.astimezone(_get_zone(timezone_name))
    return now_utc.astimezone(timezone(timedelta(hours=float(offset_hours))))


def day_key(
    now: datetime,
    *,
    offset_hours: float = 0.0,
    timezone_name: str | None = None,
) -> date:
    return region_time(now, offset_hours=offset_hours, timezone_name=timezone_name).date()


def hour_in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    if start_hour <= end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def is_within_session(
    now: datetime,
    start_hour: int,
    end_hour: int,
    *,
    offset_hours: float = 0.0,
    timezone_name: str | None = None,
) -> bool:
    local = region_time(now, offset_hours=offset_hours, timezone_name=timezone_name)
    return hour_in_window(local.hour, int(start_hour), int(end_hour))


def is_past_weekly_cutoff(
    now: datetime,
    *,
    weekday: int,
    cutoff: time,
    offset_hours: float = 0.0,
    timezone_name: str | None = None,
) -> bool:
    """True from ``cutoff`` on ``weekday`` (0=Monday) until the local day ends."""
    local = region_time(now, offset_hours=offset_hours, timezone_name=timezone_name)
    if local.weekday() != weekday:
        return False
    return local.time().replace(tzinfo=None) >= cutoff


def has_new_bar(previous_last: datetime | None, current_last: datetime | None) -> bool:
    if current_last is None:
        return False
    if previous_last is None:
        return True
    return current_last > previous_last


def timeframe_to_minutes(timeframe: str) -> int:
    normalized = timeframe.strip().upper()
    mapping = {
        "M1": 1,
        "M5": 5,
        "M15": 15,
        "M30": 30,
        "H1": 60,
        "H4": 240,
        "D1": 1440,
    }
    if normalized not in mapping:
        raise ValueError(f"Unsupported timeframe {timeframe}")
    return mapping[normalized]


def parse_hhmm(value: str) -> time:
    parts = str(value).strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Expected HH:MM, got '{value}'")
    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Expected HH:MM, got '{value}'") from exc
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time '{value}'")
    return time(hour=hour, minute=minute)
