from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from config.settings import MAX_MONTHLY_RATE_PCT, PAYMENT_TOLERANCE
from utils.date_utils import to_utc
from utils.formatters import fmt_amount
from utils.money import round_money, to_decimal


def _as_decimal(value) -> Optional[Decimal]:
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not number.is_finite():
        return None
    return number


def validate_loan(
    borrower: str,
    principal,
    monthly_rate_pct,
    cycle_days: int,
    max_monthly_rate=MAX_MONTHLY_RATE_PCT,
) -> Tuple[bool, str]:
    """校验新借款输入，返回 (是否合法, 错误信息)"""
    if not borrower or not borrower.strip():
        return False, "借款人不能为空"

    principal = _as_decimal(principal)
    if principal is None or principal <= 0:
        return False, "借款本金必须大于0"

    rate = _as_decimal(monthly_rate_pct)
    if rate is None or rate <= 0:
        return False, "月利率必须大于0"
    if rate > to_decimal(max_monthly_rate):
        return False, f"月利率不能超过{max_monthly_rate}%"

    if not isinstance(cycle_days, int) or cycle_days < 1:
        return False, "计息周期必须至少为1天"

    return True, ""


def validate_payment(
    amount,
    max_payable: Decimal,
    paid_at: datetime,
    now: datetime,
) -> Tuple[bool, str]:
    """校验还款输入，还款类型由调用方先行转换"""
    amount = _as_decimal(amount)
    if amount is None or amount <= 0:
        return False, "还款金额必须大于0"
    if amount != round_money(amount):
        return False, "还款金额最多保留两位小数"

    if amount > max_payable + PAYMENT_TOLERANCE:
        return False, f"还款金额超过最高可还金额 {fmt_amount(max_payable)}"

    if to_utc(paid_at) > to_utc(now):
        return False, "还款时间不能晚于当前时间"

    return True, ""

