from datetime import date, datetime, timedelta, timezone
from typing import Union

from dateutil import parser as date_parser

Instant = Union[date, datetime, str]

ONE_DAY = timedelta(days=1)


def utc_now() -> datetime:
    """当前 UTC 时间，仅在调用方边界使用"""
    return datetime.now(timezone.utc)


def to_utc(value: Instant) -> datetime:
    """统一转换为带时区的 UTC datetime；无时区的值视为 UTC"""
    if isinstance(value, str):
        value = date_parser.isoparse(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def add_days(d: Union[date, datetime], days: int) -> Union[date, datetime]:
    """日期加 N 天，保持输入类型"""
    return d + timedelta(days=days)


def whole_days_between(start: Instant, end: Instant) -> int:
    """两个时刻之间经过的整天数（向下取整，可为负）"""
    return (to_utc(end) - to_utc(start)) // ONE_DAY


def to_iso(value: Instant) -> str:
    return to_utc(value).isoformat()
