"""统一异常层级。

- 同步层（数据源）：DataSourceError，仅在内部传播，不向调用方抛出；
- 执行层：ValidationError（资金/持仓不足，携带失败的 OrderResult）与 BackendError；
- 指标层：CalculationError 系列；
- 取消：SyncCancelledError。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shared.models.models import OrderResult


class TradingCoreError(Exception):
    """所有业务异常的基类。"""


class DataSourceError(TradingCoreError):
    """存储或远程行情源 I/O 失败。"""


class ValidationError(TradingCoreError, ValueError):
    """下单前的本地账本校验失败。"""

    def __init__(self, message: str, result: "OrderResult | None" = None):
        super().__init__(message)
        self.result = result


class InsufficientCashError(ValidationError):
    pass


class InsufficientPositionError(ValidationError):
    pass


class CalculationError(TradingCoreError, ValueError):
    """指标计算失败。"""


class InsufficientDataError(CalculationError):
    pass


class InvalidPeriodError(CalculationError):
    pass


class InvalidMultiplierError(CalculationError):
    pass


class ZeroMiddleBandError(CalculationError):
    pass


class BackendError(TradingCoreError):
    """订单后端失败（网络/交易所拒单等）。"""

    def __init__(self, message: str, result: "OrderResult | None" = None):
        super().__init__(message)
        self.result = result


class SyncCancelledError(TradingCoreError):
    """调用被取消或超过截止时间。"""
