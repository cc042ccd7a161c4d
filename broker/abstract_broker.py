"""订单后端抽象接口与运行模式定义。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from shared.models.models import OrderIntent, OrderResult, Portfolio


class BrokerMode(Enum):
    """运行模式枚举。"""

    BACKTEST = "backtest"
    PAPER = "paper"
    LIVE = "live"


class OrderBackend(ABC):
    """订单执行抽象层。

    只负责“把单子下出去”并返回 OrderResult；现金/持仓账本由 ExecutionEngine 维护。
    """

    mode: BrokerMode

    @abstractmethod
    def execute_buy(self, intent: OrderIntent) -> OrderResult:
        """执行买入；失败时抛 BackendError。"""

    @abstractmethod
    def execute_sell(self, intent: OrderIntent) -> OrderResult:
        """执行卖出；失败时抛 BackendError。"""

    @abstractmethod
    def get_real_portfolio(self) -> Portfolio | None:
        """后端视角的真实账户；模拟后端没有真实账户，返回 None。"""
