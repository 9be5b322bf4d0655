from config.settings import AMOUNT_UNIT
from utils.date_utils import Instant, to_utc
from utils.money import to_decimal


def fmt_amount(value, unit: str = AMOUNT_UNIT) -> str:
    """格式化金额：1234567.891 -> 1,234,567.89 元"""
    return f"{to_decimal(value):,.2f} {unit}"


def fmt_rate(value) -> str:
    """格式化月利率：3.5 -> 3.50%"""
    return f"{to_decimal(value):.2f}%"


def fmt_date(value: Instant) -> str:
    """格式化日期：2024-01-31"""
    return to_utc(value).strftime("%Y-%m-%d")


def fmt_datetime(value: Instant) -> str:
    """格式化时间（UTC）：2024-01-31 14:05"""
    return to_utc(value).strftime("%Y-%m-%d %H:%M")


def fmt_days(days: int) -> str:
    """格式化逾期天数"""
    if days <= 0:
        return "未逾期"
    return f"逾期{days}天"
