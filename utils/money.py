from decimal import Decimal, ROUND_HALF_UP

from config.settings import AMOUNT_PRECISION

ZERO = Decimal("0")
_CENT = Decimal(1).scaleb(-AMOUNT_PRECISION)


def to_decimal(value) -> Decimal:
    """金额转换为 Decimal，浮点数经 str 转换避免二进制误差"""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return ZERO
    return Decimal(str(value))


def round_money(value) -> Decimal:
    """四舍五入到分"""
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Decimal) -> Decimal:
    return max(ZERO, value)
