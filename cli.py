from decimal import InvalidOperation
from pathlib import Path

import click
import pandas as pd

from config.constants import PaymentType, LoanStatus
from config.settings import DEFAULT_CYCLE_DAYS, EXCEL_FILE, LOG_FORMAT, LOG_LEVEL
from core.calculator import (
    allocate_payment,
    compute_cycle_interest,
    compute_due_date,
    compute_late_days,
    compute_late_fee,
)
from core.exceptions import LedgerError
from core.ledger import open_loan, register_payment
from core.loan_snapshot import build_agenda, max_payable, take_snapshot
from data_manager.excel_handler import (
    get_all_config,
    get_all_loans,
    get_config,
    get_loan_by_id,
    get_payments,
    init_excel,
    load_loans,
    set_config,
)
from utils.date_utils import to_utc, utc_now
from utils.formatters import fmt_amount, fmt_date, fmt_datetime, fmt_days, fmt_rate
from utils.logging_config import setup_logging
from utils.money import to_decimal

PAYMENT_TYPES = [t.value for t in PaymentType]


def _as_money(ctx, param, value):
    try:
        return to_decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"Invalid amount '{value}'")


def _parse_instant(value):
    if value is None:
        return None
    try:
        return to_utc(value)
    except ValueError as e:
        raise click.BadParameter(f"Invalid timestamp '{value}': {e}")


@click.group()
@click.option('--data-file', type=click.Path(dir_okay=False, path_type=Path), default=EXCEL_FILE,
              show_default=True, help='Ledger workbook')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              default=LOG_LEVEL, help='Log level')
@click.option('--log-format', type=click.Choice(['standard', 'json']), default=LOG_FORMAT, help='Log format')
@click.pass_context
def cli(ctx, data_file, log_level, log_format):
    """A CLI for the micro-loan ledger."""
    setup_logging(log_level, log_format)
    ctx.ensure_object(dict)
    ctx.obj['data_file'] = data_file


@cli.command('cycle-interest')
@click.option('--principal', type=str, required=True, callback=_as_money, help='Open principal')
@click.option('--rate', type=str, required=True, callback=_as_money, help='Monthly rate in percent')
def cycle_interest_command(principal, rate):
    """Calculates the interest due for one cycle."""
    click.echo(f"Cycle interest: {fmt_amount(compute_cycle_interest(principal, rate))}")


@cli.command('late-fee')
@click.option('--cycle-interest', type=str, required=True, callback=_as_money, help='Interest due for the current cycle')
@click.option('--due-at', type=str, required=True, help='Due timestamp (ISO 8601)')
@click.option('--now', type=str, default=None, help='Evaluation timestamp, defaults to the current time')
def late_fee_command(cycle_interest, due_at, now):
    """Calculates late days and the late fee accrued since the due date."""
    now = _parse_instant(now) or utc_now()
    late_days = compute_late_days(_parse_instant(due_at), now)
    click.echo(f"Late days: {late_days}")
    click.echo(f"Late fee: {fmt_amount(compute_late_fee(cycle_interest, late_days))}")


@cli.command('due-date')
@click.option('--transfer-at', type=str, required=True, help='Transfer timestamp (ISO 8601)')
@click.option('--cycle-days', type=click.IntRange(min=1), default=DEFAULT_CYCLE_DAYS, help='Cycle length in days')
def due_date_command(transfer_at, cycle_days):
    """Calculates the due date of the first cycle."""
    click.echo(f"Due date: {fmt_date(compute_due_date(_parse_instant(transfer_at), cycle_days))}")


@cli.command('allocate')
@click.option('--amount', type=str, required=True, callback=_as_money, help='Amount received')
@click.option('--late-fee', type=str, default='0', callback=_as_money, help='Late fee outstanding')
@click.option('--cycle-interest', type=str, required=True, callback=_as_money, help='Cycle interest outstanding')
@click.option('--principal', type=str, required=True, callback=_as_money, help='Open principal')
@click.option('--type', 'payment_type', type=click.Choice(PAYMENT_TYPES), required=True, help='Payment type')
def allocate_command(amount, late_fee, cycle_interest, principal, payment_type):
    """Shows how a payment is split across late fee, interest and principal."""
    b = allocate_payment(amount, late_fee, cycle_interest, principal, payment_type)
    click.echo(f"Late fee paid: {fmt_amount(b.late_fee_paid)}")
    click.echo(f"Cycle interest paid: {fmt_amount(b.cycle_interest_paid)}")
    click.echo(f"Principal paid: {fmt_amount(b.principal_paid)}")
    click.echo(f"Change: {fmt_amount(b.remaining)}")


@cli.command('init')
@click.pass_context
def init_command(ctx):
    """Creates the ledger workbook if it does not exist."""
    init_excel(ctx.obj['data_file'])
    click.echo(f"Ledger ready at {ctx.obj['data_file']}")


@cli.command('open-loan')
@click.option('--borrower', type=str, required=True, help='Borrower name')
@click.option('--principal', type=str, required=True, help='Amount disbursed')
@click.option('--rate', type=str, required=True, help='Monthly rate in percent')
@click.option('--cycle-days', type=int, default=None, help='Cycle length in days, defaults to the configured value')
@click.option('--transfer-at', type=str, default=None, help='Transfer timestamp, defaults to now')
@click.option('--notes', type=str, default='', help='Notes')
@click.pass_context
def open_loan_command(ctx, borrower, principal, rate, cycle_days, transfer_at, notes):
    """Registers a new loan."""
    try:
        loan = open_loan(
            borrower, principal, rate,
            cycle_days=cycle_days,
            transfer_at=_parse_instant(transfer_at),
            notes=notes,
            filepath=ctx.obj['data_file'],
        )
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Loan '{loan.loan_id}' opened.")
    click.echo(f"Cycle interest: {fmt_amount(loan.cycle_interest_amount)}")
    click.echo(f"Due date: {fmt_date(loan.due_at)}")


@cli.command('list-loans')
@click.option('--status', type=click.Choice([s.value for s in LoanStatus]), default=None, help='Filter by status')
@click.pass_context
def list_loans(ctx, status):
    """Lists all loans."""
    loans = get_all_loans(ctx.obj['data_file'])
    if status:
        loans = loans[loans["status"] == status]
    click.echo(loans.to_string(index=False))


@cli.command('show-loan')
@click.option('--loan-id', type=str, required=True, help='Loan ID')
@click.option('--now', type=str, default=None, help='Evaluation timestamp, defaults to the current time')
@click.pass_context
def show_loan(ctx, loan_id, now):
    """Shows a loan with its live late fee and debt totals."""
    loan = get_loan_by_id(loan_id, ctx.obj['data_file'])
    if loan is None:
        click.echo(f"Loan with ID '{loan_id}' not found.")
        return

    snap = take_snapshot(loan, _parse_instant(now) or utc_now())
    click.echo(f"Borrower: {loan.borrower}")
    click.echo(f"Status: {LoanStatus(loan.status).label}")
    click.echo(f"Principal: {fmt_amount(loan.principal_initial)}  Open: {fmt_amount(snap.principal_open)}")
    click.echo(f"Monthly rate: {fmt_rate(loan.monthly_rate_pct)}  Cycle: {loan.cycle_days} days")
    click.echo(f"Transferred: {fmt_datetime(loan.transfer_at)}  Due: {fmt_date(loan.due_at)}  ({fmt_days(snap.late_days)})")
    click.echo(f"Cycle interest: {fmt_amount(snap.cycle_interest)}  Late fee: {fmt_amount(snap.late_fee)}")
    click.echo(f"Total due: {fmt_amount(snap.total_due)}  Total debt: {fmt_amount(snap.total_debt)}")
    if loan.is_active:
        click.echo(f"Max payable (interest only): {fmt_amount(max_payable(snap, PaymentType.INTEREST_ONLY))}")


@cli.command('pay')
@click.option('--loan-id', type=str, required=True, help='Loan ID')
@click.option('--amount', type=str, required=True, help='Amount received')
@click.option('--type', 'payment_type', type=click.Choice(PAYMENT_TYPES), required=True, help='Payment type')
@click.option('--paid-at', type=str, default=None, help='When the money was received, defaults to now')
@click.option('--note', type=str, default='', help='Note')
@click.pass_context
def pay(ctx, loan_id, amount, payment_type, paid_at, note):
    """Registers a payment and rolls the loan into its next cycle."""
    try:
        payment, loan = register_payment(
            loan_id, amount, payment_type,
            paid_at=_parse_instant(paid_at),
            note=note,
            filepath=ctx.obj['data_file'],
        )
    except LedgerError as e:
        raise click.ClickException(str(e))

    click.echo(f"Payment '{payment.payment_id}' registered.")
    click.echo(f"Late fee paid: {fmt_amount(payment.late_fee_paid)}")
    click.echo(f"Cycle interest paid: {fmt_amount(payment.cycle_interest_paid)}")
    click.echo(f"Principal paid: {fmt_amount(payment.principal_paid)}")
    if payment.change > 0:
        click.echo(f"Change: {fmt_amount(payment.change)}")
    if loan.is_active:
        click.echo(f"Open principal: {fmt_amount(loan.principal_open)}  Next due: {fmt_date(loan.due_at)}")
    else:
        click.echo("Loan closed.")


@cli.command('list-payments')
@click.option('--loan-id', type=str, required=True, help='Loan ID')
@click.pass_context
def list_payments(ctx, loan_id):
    """Lists all payments for a loan."""
    payments = get_payments(loan_id, ctx.obj['data_file'])
    click.echo(payments.to_string(index=False))


@cli.command('agenda')
@click.option('--now', type=str, default=None, help='Evaluation timestamp, defaults to the current time')
@click.option('--late-only', is_flag=True, help='Only show loans past their due date')
@click.pass_context
def agenda(ctx, now, late_only):
    """Lists active loans ordered by due date."""
    table = build_agenda(load_loans(ctx.obj['data_file']), _parse_instant(now) or utc_now())
    if late_only:
        table = table[table["late_days"] > 0]
    if table.empty:
        click.echo("No loans due.")
        return

    display = pd.DataFrame({
        "loan_id": table["loan_id"],
        "borrower": table["borrower"],
        "due": table["due_at"].map(fmt_date),
        "late": table["late_days"].map(fmt_days),
        "total_due": table["total_due"].map(fmt_amount),
    })
    click.echo(display.to_string(index=False))


@cli.command('list-configs')
@click.pass_context
def list_configs(ctx):
    """Lists all system configurations."""
    click.echo(get_all_config(ctx.obj['data_file']).to_string(index=False))


@cli.command('get-config')
@click.option('--key', type=str, required=True, help='Config key')
@click.pass_context
def get_config_command(ctx, key):
    """Gets a system configuration by its key."""
    value = get_config(key, ctx.obj['data_file'])
    if value is not None:
        click.echo(value)
    else:
        click.echo(f"Config with key '{key}' not found.")


@cli.command('set-config')
@click.option('--key', type=str, required=True, help='Config key')
@click.option('--value', type=str, required=True, help='Config value')
@click.option('--description', type=str, default='', help='Description')
@click.pass_context
def set_config_command(ctx, key, value, description):
    """Sets a system configuration."""
    set_config(key, value, description, ctx.obj['data_file'])
    click.echo(f"Config with key '{key}' set successfully.")


if __name__ == "__main__":
    cli()
