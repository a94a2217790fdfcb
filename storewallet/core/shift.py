from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple

from storewallet.core.config import settings


def shift_timezone() -> tzinfo:
    return timezone(timedelta(hours=settings.SHIFT_UTC_OFFSET_HOURS))


def shift_window(
    at: datetime,
    start_hour: Optional[int] = None,
    tz: Optional[tzinfo] = None,
) -> Tuple[datetime, datetime]:
    """
    Returns the [start, end) bounds of the 24-hour shift containing `at`.

    A shift opens at `start_hour` local time, so 08:59 still belongs to the
    previous day's shift. Naive datetimes are taken to be UTC. Bounds are
    returned in the shift's local timezone.
    """
    if start_hour is None:
        start_hour = settings.SHIFT_START_HOUR
    if tz is None:
        tz = shift_timezone()
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)

    local = at.astimezone(tz)
    start = local.replace(hour=start_hour, minute=0, second=0, microsecond=0)
    if local < start:
        start -= timedelta(days=1)
    return start, start + timedelta(hours=24)
