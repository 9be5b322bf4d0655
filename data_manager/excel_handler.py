import logging
import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from config.constants import (
    SHEET_LOANS, SHEET_PAYMENTS, SHEET_CONFIG,
    LOANS_COLUMNS, PAYMENTS_COLUMNS, CONFIG_COLUMNS,
)
from config.settings import (
    EXCEL_FILE, BACKUP_KEEP,
    DEFAULT_CYCLE_DAYS, MAX_MONTHLY_RATE_PCT,
)
from core.exceptions import LoanNotFoundError, StaleLoanError
from data_manager.schema import Loan, Payment, _clean

logger = logging.getLogger(__name__)

# 同一进程内的读-改-写串行执行
write_lock = threading.RLock()


def _ensure_data_dir(filepath: Path):
    filepath.parent.mkdir(parents=True, exist_ok=True)


def _default_config_rows() -> List[dict]:
    now = datetime.now().isoformat()
    return [
        {"key": "default_cycle_days", "value": str(DEFAULT_CYCLE_DAYS), "description": "默认计息周期(天)", "updated_at": now},
        {"key": "max_monthly_rate", "value": str(MAX_MONTHLY_RATE_PCT), "description": "月利率上限(%)", "updated_at": now},
    ]


def init_excel(filepath: Path = EXCEL_FILE):
    """初始化 Excel 文件，创建所有 Sheet 和表头"""
    _ensure_data_dir(filepath)
    if filepath.exists():
        return

    with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
        pd.DataFrame(columns=LOANS_COLUMNS).to_excel(
            writer, sheet_name=SHEET_LOANS, index=False)
        pd.DataFrame(columns=PAYMENTS_COLUMNS).to_excel(
            writer, sheet_name=SHEET_PAYMENTS, index=False)
        config_df = pd.DataFrame(_default_config_rows(), columns=CONFIG_COLUMNS)
        config_df.to_excel(writer, sheet_name=SHEET_CONFIG, index=False)
    logger.info("Initialized ledger workbook at %s", filepath)


def backup_excel(filepath: Path = EXCEL_FILE):
    """写入前自动备份"""
    if filepath.exists():
        ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        backup_path = filepath.with_suffix(f".xlsx.bak_{ts}")
        shutil.copy2(filepath, backup_path)
        # 只保留最近几个备份
        backups = sorted(filepath.parent.glob(f"{filepath.stem}.xlsx.bak_*"))
        for old in backups[:-BACKUP_KEEP]:
            old.unlink()


def read_sheet(sheet_name: str, filepath: Path = EXCEL_FILE) -> pd.DataFrame:
    """读取指定 Sheet，所有单元格按文本读取以保留金额精度"""
    init_excel(filepath)
    try:
        df = pd.read_excel(filepath, sheet_name=sheet_name, engine="openpyxl", dtype=str)
    except ValueError:
        df = pd.DataFrame()
    return df


def write_sheet(df: pd.DataFrame, sheet_name: str, filepath: Path = EXCEL_FILE):
    """写入指定 Sheet（覆盖该 Sheet，保留其他 Sheet）"""
    init_excel(filepath)
    backup_excel(filepath)

    with pd.ExcelWriter(filepath, engine="openpyxl", mode="a", if_sheet_exists="replace") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)


# ---- 借款 ----

def get_all_loans(filepath: Path = EXCEL_FILE) -> pd.DataFrame:
    return read_sheet(SHEET_LOANS, filepath)


def load_loans(filepath: Path = EXCEL_FILE) -> List[Loan]:
    df = get_all_loans(filepath)
    return [Loan.from_row(row) for _, row in df.iterrows()]


def get_loan_by_id(loan_id: str, filepath: Path = EXCEL_FILE) -> Optional[Loan]:
    df = get_all_loans(filepath)
    match = df[df["loan_id"] == loan_id]
    if match.empty:
        return None
    return Loan.from_row(match.iloc[0])


def insert_loan(loan: Loan, filepath: Path = EXCEL_FILE) -> Loan:
    with write_lock:
        df = get_all_loans(filepath)
        new_row = pd.DataFrame([loan.to_row()], columns=LOANS_COLUMNS)
        df = pd.concat([df, new_row], ignore_index=True)
        write_sheet(df, SHEET_LOANS, filepath)
    logger.info("Inserted loan %s", loan.loan_id)
    return loan


def update_loan(
    loan_id: str,
    updates: Dict[str, Any],
    expected_version: int,
    filepath: Path = EXCEL_FILE,
) -> Loan:
    """
    按版本号更新借款（乐观锁）。
    读取后若版本号已变化则抛出 StaleLoanError，成功时版本号 +1。
    """
    with write_lock:
        df = get_all_loans(filepath)
        mask = df["loan_id"] == loan_id
        if not mask.any():
            raise LoanNotFoundError(f"借款 {loan_id} 不存在")

        current = Loan.from_row(df[mask].iloc[0])
        if current.version != expected_version:
            raise StaleLoanError(
                f"借款 {loan_id} 已被修改（当前版本 {current.version}，期望 {expected_version}）"
            )

        updated = current.with_updates({**updates, "version": current.version + 1})
        for col, value in updated.to_row().items():
            df.loc[mask, col] = value
        write_sheet(df, SHEET_LOANS, filepath)

    logger.debug("Updated loan %s to version %d", loan_id, updated.version)
    return updated


def restore_loan(loan: Loan, filepath: Path = EXCEL_FILE) -> Loan:
    """将借款整行写回为给定状态（不检查版本号），用于撤销未完成的登记"""
    with write_lock:
        df = get_all_loans(filepath)
        mask = df["loan_id"] == loan.loan_id
        if not mask.any():
            raise LoanNotFoundError(f"借款 {loan.loan_id} 不存在")
        for col, value in loan.to_row().items():
            df.loc[mask, col] = value
        write_sheet(df, SHEET_LOANS, filepath)
    logger.warning("Restored loan %s to version %d", loan.loan_id, loan.version)
    return loan


# ---- 还款记录 ----

def get_payments(loan_id: str, filepath: Path = EXCEL_FILE) -> pd.DataFrame:
    df = read_sheet(SHEET_PAYMENTS, filepath)
    return df[df["loan_id"] == loan_id].reset_index(drop=True)


def load_payments(loan_id: str, filepath: Path = EXCEL_FILE) -> List[Payment]:
    df = get_payments(loan_id, filepath)
    return [Payment.from_row(row) for _, row in df.iterrows()]


def insert_payment(payment: Payment, filepath: Path = EXCEL_FILE) -> Payment:
    with write_lock:
        df = read_sheet(SHEET_PAYMENTS, filepath)
        new_row = pd.DataFrame([payment.to_row()], columns=PAYMENTS_COLUMNS)
        df = pd.concat([df, new_row], ignore_index=True)
        write_sheet(df, SHEET_PAYMENTS, filepath)
    logger.info("Inserted payment %s for loan %s", payment.payment_id, payment.loan_id)
    return payment


# ---- 系统配置 ----

def get_config(key: str, filepath: Path = EXCEL_FILE) -> Optional[str]:
    df = read_sheet(SHEET_CONFIG, filepath)
    match = df[df["key"] == key]
    if match.empty:
        return None
    value = _clean(match.iloc[0]["value"])
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def get_all_config(filepath: Path = EXCEL_FILE) -> pd.DataFrame:
    """获取所有系统配置"""
    return read_sheet(SHEET_CONFIG, filepath)


def set_config(key: str, value: str, description: str = "", filepath: Path = EXCEL_FILE):
    with write_lock:
        df = read_sheet(SHEET_CONFIG, filepath)
        now = datetime.now().isoformat()
        if key in df["key"].values:
            df.loc[df["key"] == key, "value"] = value
            df.loc[df["key"] == key, "updated_at"] = now
            if description:
                df.loc[df["key"] == key, "description"] = description
        else:
            new_row = pd.DataFrame([{
                "key": key, "value": value,
                "description": description, "updated_at": now,
            }])
            df = pd.concat([df, new_row], ignore_index=True)
        write_sheet(df, SHEET_CONFIG, filepath)
    logger.info("Config %s set to %s", key, value)
