"""
Local Calendar Helpers

All report arithmetic happens on naive datetimes in local time. Aware
timestamps (as stored by remote backends) are converted to the
configured timezone, or to the system's local time when none is set,
and then stripped of their tzinfo.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shop_ledger.log import get_logger
from shop_ledger.models.ledger import Period


logger = get_logger(__name__)

WEEKDAY_LABELS = ("lun", "mar", "mié", "jue", "vie", "sáb", "dom")


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Look up an IANA zone; None means system local time."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("unknown_timezone", timezone=name, fallback="system_local")
        return None


def to_local(moment: datetime, tz: Optional[tzinfo] = None) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(tz).replace(tzinfo=None)


def local_now(tz: Optional[tzinfo] = None) -> datetime:
    return datetime.now(tz).replace(tzinfo=None) if tz else datetime.now()


def period_contains(period: Period, local_moment: datetime) -> bool:
    """
    Whether a local moment falls on one of the period's days.

    Equivalent to 00:00 of the first day <= moment < 00:00 of the day
    after the last, so every instant of the last day counts whatever its
    sub-second precision.
    """
    return period.start <= local_moment.date() <= period.end


def start_of_week(moment: datetime) -> datetime:
    """
    Monday 00:00 of the week containing `moment`.

    Sunday belongs to the week that started six days earlier.
    """
    monday = moment.date() - timedelta(days=moment.weekday())
    return datetime.combine(monday, time.min)


def trailing_days(today: date, count: int) -> list[date]:
    """`count` consecutive days ending with `today`, oldest first."""
    return [today - timedelta(days=offset) for offset in range(count - 1, -1, -1)]


def day_label(day: date) -> str:
    return day.strftime("%d/%m")


def weekday_label(day: date) -> str:
    return WEEKDAY_LABELS[day.weekday()]
