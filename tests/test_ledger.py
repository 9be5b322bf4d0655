"""放款与还款流程测试"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import logging
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import utc
from config.constants import LoanStatus, PaymentType
from core.exceptions import LoanClosedError, LoanNotFoundError, StaleLoanError, ValidationError
from core.ledger import new_loan, open_loan, register_payment, settle
from data_manager.excel_handler import (
    get_loan_by_id,
    get_payments,
    load_payments,
    set_config,
    update_loan,
)

NOW = utc(2024, 2, 10)  # 2024-01-31 到期后第 10 天


class TestNewLoan:

    def test_initial_fields(self):
        loan = new_loan("李四", "1000", "9", utc(2024, 1, 1), cycle_days=30)
        assert loan.principal_initial == Decimal("1000")
        assert loan.principal_open == loan.principal_initial
        assert loan.cycle_interest_amount == Decimal("90")
        assert loan.due_at == utc(2024, 1, 31)
        assert loan.status == LoanStatus.ACTIVE
        assert loan.loan_id.startswith("LN-")

    def test_borrower_trimmed(self):
        loan = new_loan("  李四 ", 500, 5, utc(2024, 1, 1))
        assert loan.borrower == "李四"

    @pytest.mark.parametrize("borrower, principal, rate, cycle_days", [
        ("", 1000, 5, 30),
        ("李四", 0, 5, 30),
        ("李四", 1000, 0, 30),
        ("李四", 1000, 25, 30),
        ("李四", 1000, 5, 0),
    ])
    def test_invalid_input(self, borrower, principal, rate, cycle_days):
        with pytest.raises(ValidationError):
            new_loan(borrower, principal, rate, utc(2024, 1, 1), cycle_days=cycle_days)

    def test_custom_rate_cap(self):
        with pytest.raises(ValidationError):
            new_loan("李四", 1000, 6, utc(2024, 1, 1), max_monthly_rate=5)


class TestSettle:

    def test_late_interest_only(self, make_loan):
        payment, update = settle(make_loan(), 120, PaymentType.INTEREST_ONLY, now=NOW)
        assert payment.late_fee_paid == Decimal("30")
        assert payment.cycle_interest_paid == Decimal("90")
        assert payment.principal_paid == 0
        assert payment.change == 0
        assert update.principal_open == Decimal("1000")
        assert update.cycle_interest_amount == Decimal("90")
        assert update.due_at == NOW + timedelta(days=30)

    def test_partial_payment_rolls_unpaid_into_principal(self, make_loan):
        payment, update = settle(make_loan(), 50, PaymentType.INTEREST_ONLY, now=NOW)
        assert payment.late_fee_paid == Decimal("30")
        assert payment.cycle_interest_paid == Decimal("20")
        assert update.principal_open == Decimal("1070")
        assert update.cycle_interest_amount == Decimal("96.3")

    def test_over_cap_rejected(self, make_loan):
        with pytest.raises(ValidationError):
            settle(make_loan(), 200, PaymentType.INTEREST_ONLY, now=NOW)

    def test_tolerance_returns_change(self, make_loan):
        payment, _ = settle(make_loan(), "120.01", PaymentType.INTEREST_ONLY, now=NOW)
        assert payment.change == Decimal("0.01")

    def test_zero_amount_rejected(self, make_loan):
        with pytest.raises(ValidationError):
            settle(make_loan(), 0, PaymentType.INTEREST_ONLY, now=NOW)

    def test_future_paid_at_rejected(self, make_loan):
        with pytest.raises(ValidationError):
            settle(make_loan(), 120, PaymentType.INTEREST_ONLY, now=NOW, paid_at=NOW + timedelta(hours=1))

    def test_backdated_payment_uses_processing_time_for_late_fee(self, make_loan):
        paid_at = utc(2024, 2, 1)
        payment, _ = settle(make_loan(), 120, PaymentType.INTEREST_ONLY, now=NOW, paid_at=paid_at)
        assert payment.late_fee_paid == Decimal("30")
        assert payment.paid_at == paid_at
        assert payment.processed_at == NOW

    def test_full_settlement_closes(self, make_loan):
        payment, update = settle(make_loan(), 1120, PaymentType.FULL_SETTLEMENT, now=NOW)
        assert payment.principal_paid == Decimal("1000")
        assert update.closed
        assert update.due_at is None

    def test_recorded_buckets_add_up_in_cents(self, make_loan):
        """罚金 4.35 / 30 = 0.145，分配前取整到分，入账后各项之和等于实收"""
        loan = make_loan(principal_open=Decimal("100"), cycle_interest_amount=Decimal("4.35"))
        payment, update = settle(loan, "10", PaymentType.INTEREST_PLUS_PRINCIPAL, now=utc(2024, 2, 1))
        row = payment.to_row()
        buckets = sum(Decimal(row[k]) for k in ("late_fee_paid", "cycle_interest_paid", "principal_paid"))
        assert buckets + Decimal(row["change"]) == Decimal(row["amount"])
        assert payment.late_fee_paid == Decimal("0.15")
        assert payment.principal_paid == Decimal("5.50")
        assert update.principal_open == Decimal("94.50")

    def test_sub_cent_amount_rejected(self, make_loan):
        with pytest.raises(ValidationError):
            settle(make_loan(), "10.005", PaymentType.INTEREST_ONLY, now=NOW)

    def test_unknown_type_rejected(self, make_loan):
        with pytest.raises(ValidationError):
            settle(make_loan(), 10, "weekly", now=NOW)

    def test_closed_loan_rejected(self, make_loan):
        loan = make_loan(status=LoanStatus.CLOSED)
        with pytest.raises(LoanClosedError):
            settle(loan, 10, PaymentType.INTEREST_ONLY, now=NOW)

    def test_deterministic(self, make_loan):
        loan = make_loan()
        first = settle(loan, 300, PaymentType.INTEREST_PLUS_PRINCIPAL, now=NOW, payment_id="PM-1")
        second = settle(loan, 300, PaymentType.INTEREST_PLUS_PRINCIPAL, now=NOW, payment_id="PM-1")
        assert first == second


class TestPersistedFlow:

    def test_open_loan_persisted(self, temp_excel):
        loan = open_loan("王五", "1000", "9", cycle_days=30, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        stored = get_loan_by_id(loan.loan_id, temp_excel)
        assert stored == loan

    def test_open_loan_uses_configured_cycle(self, temp_excel):
        set_config("default_cycle_days", "15", filepath=temp_excel)
        loan = open_loan("王五", 1000, 9, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        assert loan.cycle_days == 15
        assert loan.due_at == utc(2024, 1, 16)

    def test_open_loan_uses_configured_rate_cap(self, temp_excel):
        set_config("max_monthly_rate", "5", filepath=temp_excel)
        with pytest.raises(ValidationError):
            open_loan("王五", 1000, 6, filepath=temp_excel)

    def test_register_payment(self, temp_excel):
        loan = open_loan("王五", 1000, 9, cycle_days=30, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        payment, updated = register_payment(
            loan.loan_id, 50, PaymentType.INTEREST_ONLY, now=NOW, filepath=temp_excel,
        )
        assert updated.version == 2
        assert updated.principal_open == Decimal("1070")
        assert updated.due_at == NOW + timedelta(days=30)

        stored = get_loan_by_id(loan.loan_id, temp_excel)
        assert stored.principal_open == Decimal("1070")
        assert stored.cycle_interest_amount == Decimal("96.30")
        assert stored.principal_initial == Decimal("1000")

        payments = load_payments(loan.loan_id, temp_excel)
        assert len(payments) == 1
        assert payments[0].payment_id == payment.payment_id
        assert payments[0].late_fee_paid == Decimal("30")

    def test_full_settlement_closes_stored_loan(self, temp_excel):
        loan = open_loan("王五", 1000, 9, cycle_days=30, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        _, updated = register_payment(
            loan.loan_id, 1120, PaymentType.FULL_SETTLEMENT, now=NOW, filepath=temp_excel,
        )
        stored = get_loan_by_id(loan.loan_id, temp_excel)
        assert stored.status == LoanStatus.CLOSED
        assert stored.due_at == loan.due_at
        assert stored.cycle_interest_amount == loan.cycle_interest_amount

        with pytest.raises(LoanClosedError):
            register_payment(loan.loan_id, 10, PaymentType.INTEREST_ONLY, now=NOW, filepath=temp_excel)

    def test_stale_version_rejected(self, temp_excel):
        loan = open_loan("王五", 1000, 9, cycle_days=30, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        register_payment(loan.loan_id, 120, PaymentType.INTEREST_ONLY, now=NOW, filepath=temp_excel)
        with pytest.raises(StaleLoanError):
            update_loan(loan.loan_id, {"principal_open": Decimal("0")}, loan.version, temp_excel)

    def test_unknown_loan(self, temp_excel):
        with pytest.raises(LoanNotFoundError):
            register_payment("LN-missing", 10, PaymentType.INTEREST_ONLY, now=NOW, filepath=temp_excel)

    def test_stored_payment_reconciles_with_principal(self, temp_excel):
        loan = open_loan("王五", "48.33", "9", cycle_days=30, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        register_payment(
            loan.loan_id, "10", PaymentType.INTEREST_PLUS_PRINCIPAL, now=utc(2024, 2, 1), filepath=temp_excel,
        )
        stored = get_loan_by_id(loan.loan_id, temp_excel)
        row = get_payments(loan.loan_id, temp_excel).iloc[0]
        paid = sum(Decimal(row[k]) for k in ("late_fee_paid", "cycle_interest_paid", "principal_paid"))
        assert paid + Decimal(row["change"]) == Decimal(row["amount"])
        assert stored.principal_open == stored.principal_initial - Decimal(row["principal_paid"])

    def test_failed_payment_write_restores_loan(self, temp_excel, monkeypatch):
        loan = open_loan("王五", 1000, 9, cycle_days=30, transfer_at=utc(2024, 1, 1), filepath=temp_excel)

        def locked(payment, filepath):
            raise OSError("workbook is locked")

        monkeypatch.setattr("core.ledger.insert_payment", locked)
        with pytest.raises(OSError):
            register_payment(loan.loan_id, 50, PaymentType.INTEREST_ONLY, now=NOW, filepath=temp_excel)

        assert get_loan_by_id(loan.loan_id, temp_excel) == loan
        assert load_payments(loan.loan_id, temp_excel) == []

    def test_empty_config_falls_back_to_default(self, temp_excel):
        set_config("default_cycle_days", "", filepath=temp_excel)
        set_config("max_monthly_rate", "", filepath=temp_excel)
        loan = open_loan("王五", 1000, 9, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        assert loan.cycle_days == 30

    @pytest.mark.parametrize("key, value", [
        ("default_cycle_days", "abc"),
        ("max_monthly_rate", "abc"),
    ])
    def test_malformed_config_rejected(self, temp_excel, key, value):
        set_config(key, value, filepath=temp_excel)
        with pytest.raises(ValidationError):
            open_loan("王五", 1000, 9, filepath=temp_excel)

    def test_logs_carry_loan_id(self, temp_excel, caplog):
        loan = open_loan("王五", 1000, 9, cycle_days=30, transfer_at=utc(2024, 1, 1), filepath=temp_excel)
        with caplog.at_level(logging.INFO, logger="core.ledger"):
            caplog.clear()
            register_payment(loan.loan_id, 1120, PaymentType.FULL_SETTLEMENT, now=NOW, filepath=temp_excel)
        records = [r for r in caplog.records if r.name == "core.ledger"]
        assert len(records) == 2
        assert all(r.loan_id == loan.loan_id for r in records)
