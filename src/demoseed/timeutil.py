import datetime
from typing import Iterator, Optional

MS_PER_HOUR = 3_600_000
MS_PER_DAY = 24 * MS_PER_HOUR


def now_utc() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def local_midnight_ms(now: Optional[datetime.datetime] = None) -> int:
    """Epoch milliseconds of today's midnight in local time.

    A naive `now` is treated as local time; an aware one keeps its own zone.
    The offset is resolved at midnight itself, which differs from the one at
    `now` on DST transition days.
    """
    if now is None:
        now = datetime.datetime.now()
    if now.tzinfo is None:
        midnight = datetime.datetime.combine(now.date(), datetime.time()).astimezone()
    else:
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp()) * 1000


def ms_to_utc_datetime(ms: int) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)


def ms_to_iso8601(ms: int) -> str:
    # basic offset form, e.g. 2024-03-01T09:00:00+0000
    return ms_to_utc_datetime(ms).strftime("%Y-%m-%dT%H:%M:%S+0000")


def ms_to_index_date(ms: int) -> str:
    return ms_to_utc_datetime(ms).strftime("%Y-%m-%d")


def index_dates(min_ms: int, max_ms: int) -> Iterator[str]:
    """Yield every YYYY-MM-DD date touched by [min_ms, max_ms], newest first."""
    day = ms_to_utc_datetime(max_ms).date()
    first = ms_to_utc_datetime(min_ms).date()
    while day >= first:
        yield day.isoformat()
        day -= datetime.timedelta(days=1)


def to_utc_iso(value: Optional[datetime.datetime] = None) -> str:
    if value is None:
        value = now_utc()
    elif value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).isoformat()
