"""借款台账异常"""


class LedgerError(Exception):
    """台账操作异常的基类"""


class ValidationError(LedgerError):
    """输入未通过校验"""


class LoanNotFoundError(LedgerError):
    """借款不存在"""


class LoanClosedError(LedgerError):
    """借款已结清，不能再登记还款"""


class StaleLoanError(LedgerError):
    """借款在读取后已被其他操作修改（版本号不一致）"""
