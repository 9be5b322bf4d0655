import os
from decimal import Decimal
from pathlib import Path

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 数据文件路径
DATA_DIR = Path(os.getenv("LEDGER_DATA_DIR", PROJECT_ROOT / "data"))
EXCEL_FILE = DATA_DIR / "ledger_data.xlsx"
BACKUP_KEEP = 5

# 默认计息周期 (天)
DEFAULT_CYCLE_DAYS = 30

# 月利率上限 (%)
MAX_MONTHLY_RATE_PCT = Decimal("20")

# 逾期罚金按 30 天折算日费率，与借款自身周期长度无关
LATE_FEE_DAY_BASIS = 30

# 全额结清时剩余本金的容差
SETTLEMENT_EPSILON = Decimal("0.01")

# 还款金额超出最高可还金额的容差
PAYMENT_TOLERANCE = Decimal("0.01")

# 金额精度
AMOUNT_PRECISION = 2
AMOUNT_UNIT = "元"

# 日志
LOG_LEVEL = os.getenv("LEDGER_LOG_LEVEL", "INFO")
LOG_FORMAT = "standard"
