"""
借款台账服务

放款、登记还款的完整流程：校验输入 → 调用计算核心 → 写回存储。
纯计算部分（new_loan / settle）不做 I/O，便于测试；
open_loan / register_payment 负责读写 Excel 并按版本号更新借款。
"""
from datetime import datetime
from decimal import InvalidOperation
from pathlib import Path
from typing import Optional, Tuple, Union

from config.constants import PaymentType
from config.settings import DEFAULT_CYCLE_DAYS, EXCEL_FILE, MAX_MONTHLY_RATE_PCT
from core.calculator import allocate_payment, compute_cycle_interest, compute_due_date
from core.exceptions import LoanClosedError, LoanNotFoundError, ValidationError
from core.loan_snapshot import max_payable, take_snapshot
from core.rollover import LoanUpdate, roll_over
from data_manager.data_validator import validate_loan, validate_payment
from data_manager.excel_handler import (
    get_config,
    get_loan_by_id,
    insert_loan,
    insert_payment,
    restore_loan,
    update_loan,
    write_lock,
)
from data_manager.schema import Loan, Payment
from utils.date_utils import Instant, to_utc, utc_now
from utils.id_generator import generate_loan_id, generate_payment_id
from utils.logging_config import get_logger
from utils.money import to_decimal

logger = get_logger(__name__)


def new_loan(
    borrower: str,
    principal,
    monthly_rate_pct,
    transfer_at: Instant,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
    loan_id: Optional[str] = None,
    notes: str = "",
    max_monthly_rate=MAX_MONTHLY_RATE_PCT,
) -> Loan:
    """构造新借款：未还本金 = 放款本金，首个到期日 = 放款时间 + 周期"""
    ok, msg = validate_loan(borrower, principal, monthly_rate_pct, cycle_days, max_monthly_rate)
    if not ok:
        raise ValidationError(msg)

    principal = to_decimal(principal)
    rate = to_decimal(monthly_rate_pct)
    transfer_at = to_utc(transfer_at)
    return Loan(
        loan_id=loan_id or generate_loan_id(),
        borrower=borrower.strip(),
        principal_initial=principal,
        principal_open=principal,
        monthly_rate_pct=rate,
        cycle_days=cycle_days,
        cycle_interest_amount=compute_cycle_interest(principal, rate),
        transfer_at=transfer_at,
        due_at=compute_due_date(transfer_at, cycle_days),
        notes=notes,
    )


def settle(
    loan: Loan,
    amount,
    payment_type: Union[PaymentType, str],
    now: datetime,
    paid_at: Optional[Instant] = None,
    note: str = "",
    payment_id: Optional[str] = None,
) -> Tuple[Payment, LoanUpdate]:
    """
    计算一笔还款：按处理时刻 now 评估逾期罚金，分配金额后滚动周期。
    paid_at 可以补录过去的时间，但罚金仍以处理时刻为准。
    """
    if not loan.is_active:
        raise LoanClosedError(f"借款 {loan.loan_id} 已结清")

    try:
        payment_type = PaymentType(payment_type)
    except ValueError:
        raise ValidationError(f"无效的还款类型: {payment_type}")

    now = to_utc(now)
    paid_at = to_utc(paid_at) if paid_at is not None else now

    snapshot = take_snapshot(loan, now)
    ok, msg = validate_payment(amount, max_payable(snapshot, payment_type), paid_at, now)
    if not ok:
        raise ValidationError(msg)

    amount = to_decimal(amount)
    breakdown = allocate_payment(
        amount,
        snapshot.late_fee,
        snapshot.cycle_interest,
        snapshot.principal_open,
        payment_type,
    )
    update = roll_over(
        snapshot.principal_open,
        snapshot.cycle_interest,
        snapshot.late_fee,
        breakdown,
        loan.monthly_rate_pct,
        loan.cycle_days,
        payment_type,
        rolled_at=now,
    )

    payment = Payment(
        payment_id=payment_id or generate_payment_id(),
        loan_id=loan.loan_id,
        amount=amount,
        type=payment_type,
        late_fee_paid=breakdown.late_fee_paid,
        cycle_interest_paid=breakdown.cycle_interest_paid,
        principal_paid=breakdown.principal_paid,
        change=breakdown.remaining,
        paid_at=paid_at,
        processed_at=now,
        note=note,
    )
    return payment, update


def _configured_cycle_days(filepath: Path) -> int:
    value = get_config("default_cycle_days", filepath)
    if value is None:
        return DEFAULT_CYCLE_DAYS
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"系统配置 default_cycle_days 无效: {value}")


def _configured_max_rate(filepath: Path):
    value = get_config("max_monthly_rate", filepath)
    if value is None:
        return MAX_MONTHLY_RATE_PCT
    try:
        rate = to_decimal(value)
    except InvalidOperation:
        raise ValidationError(f"系统配置 max_monthly_rate 无效: {value}")
    if not rate.is_finite():
        raise ValidationError(f"系统配置 max_monthly_rate 无效: {value}")
    return rate


def open_loan(
    borrower: str,
    principal,
    monthly_rate_pct,
    cycle_days: Optional[int] = None,
    transfer_at: Optional[Instant] = None,
    notes: str = "",
    filepath: Path = EXCEL_FILE,
) -> Loan:
    """放款并写入台账；未指定周期时使用系统配置"""
    if cycle_days is None:
        cycle_days = _configured_cycle_days(filepath)
    loan = new_loan(
        borrower,
        principal,
        monthly_rate_pct,
        transfer_at if transfer_at is not None else utc_now(),
        cycle_days=cycle_days,
        notes=notes,
        max_monthly_rate=_configured_max_rate(filepath),
    )
    insert_loan(loan, filepath)
    logger.info(
        "Opened loan %s for %s: principal=%s rate=%s%% due=%s",
        loan.loan_id, loan.borrower, loan.principal_initial,
        loan.monthly_rate_pct, loan.due_at.isoformat(),
        extra={"loan_id": loan.loan_id},
    )
    return loan


def register_payment(
    loan_id: str,
    amount,
    payment_type: Union[PaymentType, str],
    paid_at: Optional[Instant] = None,
    note: str = "",
    now: Optional[datetime] = None,
    filepath: Path = EXCEL_FILE,
) -> Tuple[Payment, Loan]:
    """
    登记还款：读取借款 → 计算 → 按读取时的版本号写回借款，再写入还款记录。
    并发登记同一借款时，后写入者得到 StaleLoanError。
    还款记录写入失败时借款恢复为登记前的状态。
    """
    loan = get_loan_by_id(loan_id, filepath)
    if loan is None:
        raise LoanNotFoundError(f"借款 {loan_id} 不存在")

    payment, update = settle(
        loan,
        amount,
        payment_type,
        now=now if now is not None else utc_now(),
        paid_at=paid_at,
        note=note,
    )
    with write_lock:
        updated = update_loan(loan_id, update.as_dict(), loan.version, filepath)
        try:
            insert_payment(payment, filepath)
        except Exception:
            logger.exception(
                "Failed to record payment %s, restoring loan", payment.payment_id,
                extra={"loan_id": loan_id},
            )
            restore_loan(loan, filepath)
            raise

    logger.info(
        "Payment %s on loan %s: amount=%s late_fee=%s interest=%s principal=%s change=%s",
        payment.payment_id, loan_id, payment.amount, payment.late_fee_paid,
        payment.cycle_interest_paid, payment.principal_paid, payment.change,
        extra={"loan_id": loan_id},
    )
    if update.closed:
        logger.info("Loan %s closed", loan_id, extra={"loan_id": loan_id})
    return payment, updated

