from enum import Enum


class PaymentType(str, Enum):
    INTEREST_ONLY = "interest_only"  # 仅付利息
    INTEREST_PLUS_PRINCIPAL = "interest_plus_principal"  # 利息+本金
    FULL_SETTLEMENT = "full_settlement"  # 全额结清

    @property
    def label(self) -> str:
        return {
            "interest_only": "仅付利息",
            "interest_plus_principal": "利息+本金",
            "full_settlement": "全额结清",
        }[self.value]

    @property
    def touches_principal(self) -> bool:
        return self is not PaymentType.INTEREST_ONLY


class LoanStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"

    @property
    def label(self) -> str:
        return {
            "active": "还款中",
            "closed": "已结清",
        }[self.value]


# Sheet 名称
SHEET_LOANS = "借款"
SHEET_PAYMENTS = "还款记录"
SHEET_CONFIG = "系统配置"

# 列定义
LOANS_COLUMNS = [
    "loan_id", "borrower", "principal_initial", "principal_open",
    "monthly_rate_pct", "cycle_days", "cycle_interest_amount",
    "transfer_at", "due_at", "status", "notes", "version",
]

PAYMENTS_COLUMNS = [
    "payment_id", "loan_id", "amount", "type",
    "late_fee_paid", "cycle_interest_paid", "principal_paid", "change",
    "paid_at", "processed_at", "note",
]

CONFIG_COLUMNS = ["key", "value", "description", "updated_at"]

AGENDA_COLUMNS = [
    "loan_id", "borrower", "due_at", "late_days",
    "cycle_interest", "late_fee", "total_due", "principal_open",
]
