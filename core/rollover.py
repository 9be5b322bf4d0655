"""周期滚动：未付利息和罚金并入本金，重算下一周期利息与到期日"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from config.constants import LoanStatus, PaymentType
from config.settings import SETTLEMENT_EPSILON
from core.calculator import PaymentBreakdown, compute_cycle_interest, compute_due_date
from utils.money import clamp_non_negative, to_decimal


@dataclass(frozen=True)
class LoanUpdate:
    """还款后需要写回借款的字段；结清时不含利息和到期日"""
    principal_open: Decimal
    status: LoanStatus
    cycle_interest_amount: Optional[Decimal] = None
    due_at: Optional[Union[date, datetime]] = None

    @property
    def closed(self) -> bool:
        return self.status == LoanStatus.CLOSED

    def as_dict(self) -> Dict[str, Any]:
        updates: Dict[str, Any] = {"principal_open": self.principal_open}
        if self.closed:
            updates["status"] = self.status
        else:
            updates["cycle_interest_amount"] = self.cycle_interest_amount
            updates["due_at"] = self.due_at
        return updates


def carried_principal(
    principal_open,
    cycle_interest,
    late_fee,
    breakdown: PaymentBreakdown,
) -> Decimal:
    """新本金 = 原本金 - 已还本金 + 未付利息 + 未付罚金（未截断）"""
    unpaid_interest = to_decimal(cycle_interest) - breakdown.cycle_interest_paid
    unpaid_late_fee = to_decimal(late_fee) - breakdown.late_fee_paid
    return to_decimal(principal_open) - breakdown.principal_paid + unpaid_interest + unpaid_late_fee


def roll_over(
    principal_open,
    cycle_interest,
    late_fee,
    breakdown: PaymentBreakdown,
    monthly_rate_pct,
    cycle_days: int,
    payment_type: Union[PaymentType, str],
    rolled_at: Union[date, datetime],
) -> LoanUpdate:
    """
    计算还款后的借款状态。
    全额结清且剩余本金 <= 0.01 时关闭借款，不重算利息和到期日；
    否则从处理时刻 rolled_at 起算新周期。
    """
    new_principal = carried_principal(principal_open, cycle_interest, late_fee, breakdown)
    principal = clamp_non_negative(new_principal)

    if PaymentType(payment_type) == PaymentType.FULL_SETTLEMENT and new_principal <= SETTLEMENT_EPSILON:
        return LoanUpdate(principal_open=principal, status=LoanStatus.CLOSED)

    return LoanUpdate(
        principal_open=principal,
        status=LoanStatus.ACTIVE,
        cycle_interest_amount=compute_cycle_interest(principal, monthly_rate_pct),
        due_at=compute_due_date(rolled_at, cycle_days),
    )
