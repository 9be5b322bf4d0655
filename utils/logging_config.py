"""日志配置"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from config.settings import LOG_FORMAT, LOG_LEVEL


def setup_logging(
    level: str = LOG_LEVEL,
    format_type: str = LOG_FORMAT,
) -> None:
    """配置根日志。

    Parameters
    ----------
    level : str
        日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)。
    format_type : str
        "standard" 或 "json"。
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # openpyxl 的样式告警没有参考价值
    logging.getLogger("openpyxl").setLevel(logging.WARNING)


class JsonFormatter(logging.Formatter):
    """JSON 结构化日志"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "loan_id"):
            log_data["loan_id"] = record.loan_id

        return json.dumps(log_data, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
