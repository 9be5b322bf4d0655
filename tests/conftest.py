import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from config.constants import LoanStatus  # noqa: E402
from data_manager.excel_handler import init_excel  # noqa: E402
from data_manager.schema import Loan  # noqa: E402


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def temp_excel(tmp_path):
    """创建临时 Excel 文件"""
    filepath = tmp_path / "ledger_test.xlsx"
    init_excel(filepath)
    return filepath


@pytest.fixture
def make_loan():
    """借款工厂：本金 1000，月利率 9%，30 天周期，2024-01-31 到期"""
    def _make(**overrides) -> Loan:
        fields = dict(
            loan_id="LN-TEST-0001",
            borrower="张三",
            principal_initial=Decimal("1000"),
            principal_open=Decimal("1000"),
            monthly_rate_pct=Decimal("9"),
            cycle_days=30,
            cycle_interest_amount=Decimal("90"),
            transfer_at=utc(2024, 1, 1),
            due_at=utc(2024, 1, 31),
            status=LoanStatus.ACTIVE,
        )
        fields.update(overrides)
        return Loan(**fields)
    return _make
