from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

import pandas as pd

from config.constants import LoanStatus, PaymentType
from utils.date_utils import to_iso, to_utc
from utils.money import round_money, to_decimal


def _clean(value) -> Any:
    """Excel 空单元格读出为 NaN，统一为 None"""
    if value is None:
        return None
    if not isinstance(value, str) and pd.isna(value):
        return None
    return value


def _text(value) -> str:
    value = _clean(value)
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Loan:
    loan_id: str
    borrower: str
    principal_initial: Decimal
    principal_open: Decimal
    monthly_rate_pct: Decimal
    cycle_days: int
    cycle_interest_amount: Decimal
    transfer_at: datetime
    due_at: datetime
    status: LoanStatus = LoanStatus.ACTIVE
    notes: str = ""
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    def with_updates(self, updates: Dict[str, Any]) -> "Loan":
        return replace(self, **updates)

    def to_row(self) -> Dict[str, Any]:
        return {
            "loan_id": self.loan_id,
            "borrower": self.borrower,
            "principal_initial": str(round_money(self.principal_initial)),
            "principal_open": str(round_money(self.principal_open)),
            "monthly_rate_pct": str(self.monthly_rate_pct),
            "cycle_days": str(self.cycle_days),
            "cycle_interest_amount": str(round_money(self.cycle_interest_amount)),
            "transfer_at": to_iso(self.transfer_at),
            "due_at": to_iso(self.due_at),
            "status": LoanStatus(self.status).value,
            "notes": self.notes,
            "version": str(self.version),
        }

    @classmethod
    def from_row(cls, row) -> "Loan":
        return cls(
            loan_id=_text(row["loan_id"]),
            borrower=_text(row["borrower"]),
            principal_initial=to_decimal(_clean(row["principal_initial"])),
            principal_open=to_decimal(_clean(row["principal_open"])),
            monthly_rate_pct=to_decimal(_clean(row["monthly_rate_pct"])),
            cycle_days=int(float(row["cycle_days"])),
            cycle_interest_amount=to_decimal(_clean(row["cycle_interest_amount"])),
            transfer_at=to_utc(_text(row["transfer_at"])),
            due_at=to_utc(_text(row["due_at"])),
            status=LoanStatus(_text(row["status"]) or LoanStatus.ACTIVE.value),
            notes=_text(row.get("notes")),
            version=int(float(_clean(row.get("version")) or 1)),
        )


@dataclass(frozen=True)
class Payment:
    payment_id: str
    loan_id: str
    amount: Decimal
    type: PaymentType
    late_fee_paid: Decimal
    cycle_interest_paid: Decimal
    principal_paid: Decimal
    change: Decimal
    paid_at: datetime
    processed_at: datetime
    note: str = ""

    def to_row(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "loan_id": self.loan_id,
            "amount": str(round_money(self.amount)),
            "type": PaymentType(self.type).value,
            "late_fee_paid": str(round_money(self.late_fee_paid)),
            "cycle_interest_paid": str(round_money(self.cycle_interest_paid)),
            "principal_paid": str(round_money(self.principal_paid)),
            "change": str(round_money(self.change)),
            "paid_at": to_iso(self.paid_at),
            "processed_at": to_iso(self.processed_at),
            "note": self.note,
        }

    @classmethod
    def from_row(cls, row) -> "Payment":
        return cls(
            payment_id=_text(row["payment_id"]),
            loan_id=_text(row["loan_id"]),
            amount=to_decimal(_clean(row["amount"])),
            type=PaymentType(_text(row["type"])),
            late_fee_paid=to_decimal(_clean(row["late_fee_paid"])),
            cycle_interest_paid=to_decimal(_clean(row["cycle_interest_paid"])),
            principal_paid=to_decimal(_clean(row["principal_paid"])),
            change=to_decimal(_clean(row.get("change"))),
            paid_at=to_utc(_text(row["paid_at"])),
            processed_at=to_utc(_text(row["processed_at"])),
            note=_text(row.get("note")),
        )

