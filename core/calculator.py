"""核心计算：周期利息、逾期罚金、到期日、还款分配"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Union

from config.constants import PaymentType
from config.settings import DEFAULT_CYCLE_DAYS, LATE_FEE_DAY_BASIS
from utils.date_utils import Instant, add_days, whole_days_between
from utils.money import ZERO, clamp_non_negative, to_decimal


@dataclass(frozen=True)
class PaymentBreakdown:
    late_fee_paid: Decimal
    cycle_interest_paid: Decimal
    principal_paid: Decimal
    remaining: Decimal

    @property
    def allocated(self) -> Decimal:
        return self.late_fee_paid + self.cycle_interest_paid + self.principal_paid


def compute_cycle_interest(principal_open, monthly_rate_pct) -> Decimal:
    """周期利息 = 未还本金 × 月利率%，利率上限由调用方校验"""
    return to_decimal(principal_open) * (to_decimal(monthly_rate_pct) / 100)


def compute_late_days(due_at: Instant, now: Instant) -> int:
    """逾期天数：只计完整经过的天数，未到期为 0"""
    return max(0, whole_days_between(due_at, now))


def compute_late_fee(cycle_interest, late_days: int) -> Decimal:
    """逾期罚金 = 周期利息 / 30 × 逾期天数"""
    if late_days <= 0:
        return ZERO
    # 先乘后除，减少一次舍入
    return to_decimal(cycle_interest) * late_days / LATE_FEE_DAY_BASIS


def compute_due_date(
    transfer_at: Union[date, datetime],
    cycle_days: int = DEFAULT_CYCLE_DAYS,
) -> Union[date, datetime]:
    """到期日 = 放款时间 + 周期天数"""
    return add_days(transfer_at, cycle_days)


def allocate_payment(
    amount,
    late_fee,
    cycle_interest,
    principal_open,
    payment_type: Union[PaymentType, str],
) -> PaymentBreakdown:
    """
    按优先级分配还款：
    1. 逾期罚金
    2. 周期利息
    3. 本金（仅 interest_plus_principal / full_settlement）
    剩余部分作为找零返回，不自动冲抵。
    """
    payment_type = PaymentType(payment_type)
    remaining = to_decimal(amount)

    late_fee_paid = min(remaining, to_decimal(late_fee))
    remaining -= late_fee_paid

    cycle_interest_paid = min(remaining, to_decimal(cycle_interest))
    remaining -= cycle_interest_paid

    principal_paid = ZERO
    if payment_type.touches_principal:
        principal_paid = min(remaining, clamp_non_negative(to_decimal(principal_open)))
        remaining -= principal_paid

    return PaymentBreakdown(
        late_fee_paid=late_fee_paid,
        cycle_interest_paid=cycle_interest_paid,
        principal_paid=principal_paid,
        remaining=remaining,
    )
