"""借款实时状态：逾期天数、罚金、应还与总欠款"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Union

import pandas as pd

from config.constants import AGENDA_COLUMNS, PaymentType
from core.calculator import compute_late_days, compute_late_fee
from data_manager.schema import Loan
from utils.date_utils import Instant
from utils.money import clamp_non_negative, round_money, to_decimal


@dataclass(frozen=True)
class LoanSnapshot:
    late_days: int
    late_fee: Decimal
    cycle_interest: Decimal
    principal_open: Decimal

    @property
    def is_late(self) -> bool:
        return self.late_days > 0

    @property
    def total_due(self) -> Decimal:
        """本期应还：利息 + 罚金"""
        return self.cycle_interest + self.late_fee

    @property
    def total_debt(self) -> Decimal:
        return self.principal_open + self.cycle_interest + self.late_fee


def take_snapshot(loan: Loan, now: Instant) -> LoanSnapshot:
    """
    已结清的借款不再计算逾期。
    各项金额取整到分，还款分配后的每一笔都是整分，入账金额可以对平。
    """
    late_days = compute_late_days(loan.due_at, now) if loan.is_active else 0
    cycle_interest = round_money(loan.cycle_interest_amount)
    return LoanSnapshot(
        late_days=late_days,
        late_fee=round_money(compute_late_fee(cycle_interest, late_days)),
        cycle_interest=cycle_interest,
        principal_open=round_money(clamp_non_negative(to_decimal(loan.principal_open))),
    )


def max_payable(snapshot: LoanSnapshot, payment_type: Union[PaymentType, str]) -> Decimal:
    """最高可还金额：仅付利息时为本期应还，否则为总欠款"""
    if PaymentType(payment_type) == PaymentType.INTEREST_ONLY:
        return snapshot.total_due
    return snapshot.total_debt


def build_agenda(loans: Iterable[Loan], now: Instant) -> pd.DataFrame:
    """还款日程：进行中的借款按到期日排序"""
    rows = []
    for loan in loans:
        if not loan.is_active:
            continue
        snap = take_snapshot(loan, now)
        rows.append({
            "loan_id": loan.loan_id,
            "borrower": loan.borrower,
            "due_at": loan.due_at,
            "late_days": snap.late_days,
            "cycle_interest": snap.cycle_interest,
            "late_fee": snap.late_fee,
            "total_due": snap.total_due,
            "principal_open": snap.principal_open,
        })

    agenda = pd.DataFrame(rows, columns=AGENDA_COLUMNS)
    if agenda.empty:
        return agenda
    return agenda.sort_values("due_at", kind="stable").reset_index(drop=True)
