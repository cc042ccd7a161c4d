"""模拟订单后端（backtest / paper）。

- 不触网，按请求价格全部成交；
- 不维护账本（账本在 ExecutionEngine），因此没有“真实账户”可查。
"""

from __future__ import annotations

import itertools

from broker.abstract_broker import BrokerMode, OrderBackend
from shared.errors import BackendError
from shared.models.models import OrderIntent, OrderResult, OrderSide, Portfolio
from shared.utils.logging import setup_logger


class SimulatedBackend(OrderBackend):
    """模拟后端：按 intent.price 成交。"""

    def __init__(self, *, mode: BrokerMode = BrokerMode.BACKTEST):
        self.mode = mode
        self.logger = setup_logger("broker-sim")
        self._ids = itertools.count(1)

    def _fill(self, side: OrderSide, intent: OrderIntent) -> OrderResult:
        if intent.quantity <= 0 or intent.price <= 0:
            raise BackendError(f"invalid order: qty={intent.quantity} price={intent.price}")
        order_id = f"{self.mode.value}-{next(self._ids)}"
        self.logger.debug(
            "Simulated %s %s qty=%s price=%s", side.value, intent.trading_pair.symbol, intent.quantity, intent.price
        )
        return OrderResult(
            order_id=order_id,
            trading_pair=intent.trading_pair,
            side=side,
            quantity=intent.quantity,
            price=intent.price,
            timestamp=intent.timestamp,
        )

    def execute_buy(self, intent: OrderIntent) -> OrderResult:
        return self._fill(OrderSide.BUY, intent)

    def execute_sell(self, intent: OrderIntent) -> OrderResult:
        return self._fill(OrderSide.SELL, intent)

    def get_real_portfolio(self) -> Portfolio | None:
        return None
