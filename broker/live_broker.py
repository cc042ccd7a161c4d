"""实盘订单后端（Binance 现货）。

说明：
- 仅在 allow_live=True 时才会真实下单，否则直接拒绝；
- 行情/网络失败（DataSourceError）与交易所拒单统一转换为 BackendError；
- 账本仍由 ExecutionEngine 维护，`get_real_portfolio` 仅用于对账。
"""

from __future__ import annotations

from broker.abstract_broker import BrokerMode, OrderBackend
from market.client import BinanceClient
from shared.errors import BackendError, DataSourceError
from shared.models.models import OrderIntent, OrderResult, OrderSide, Portfolio, TradingPair
from shared.utils.logging import setup_logger
from shared.utils.precision import floor_to_step


class LiveBackend(OrderBackend):
    """把订单转发给交易所的后端。"""

    def __init__(
        self,
        client: BinanceClient,
        trading_pair: TradingPair,
        *,
        allow_live: bool = False,
        order_type: str = "MARKET",
        qty_step: float | None = None,
    ):
        self.mode = BrokerMode.LIVE
        self.client = client
        self.trading_pair = trading_pair
        self.allow_live = allow_live
        self.order_type = order_type
        self.qty_step = qty_step
        self.logger = setup_logger("broker-live")

    def _place(self, side: OrderSide, intent: OrderIntent) -> OrderResult:
        if not self.allow_live:
            raise BackendError("live trading disabled (exchange.allow_live=false)")
        qty = floor_to_step(intent.quantity, self.qty_step)
        if qty <= 0:
            raise BackendError(f"quantity {intent.quantity} rounds to zero with step {self.qty_step}")
        price = intent.price if self.order_type.upper() == "LIMIT" else None
        try:
            result = self.client.place_order(intent.trading_pair, side, self.order_type, qty, price)
        except DataSourceError as exc:
            self.logger.error("Live %s failed: %s", side.value, exc)
            raise BackendError(f"live {side.value} failed: {exc}") from exc
        if not result.success:
            raise BackendError(result.error or "order rejected", result=result)
        if not result.timestamp:
            result.timestamp = intent.timestamp
        self.logger.info(
            "Live %s filled: %s qty=%s price=%s", side.value, result.order_id, result.quantity, result.price
        )
        return result

    def execute_buy(self, intent: OrderIntent) -> OrderResult:
        return self._place(OrderSide.BUY, intent)

    def execute_sell(self, intent: OrderIntent) -> OrderResult:
        return self._place(OrderSide.SELL, intent)

    def get_real_portfolio(self) -> Portfolio | None:
        """按余额构造账户：计价币 free 为现金，基础币 free+locked 为持仓。"""
        try:
            balances = {b.asset: b for b in self.client.get_balances()}
            cash = balances[self.trading_pair.quote].free if self.trading_pair.quote in balances else 0.0
            base = balances.get(self.trading_pair.base)
            position = base.total if base else 0.0
            price = self.client.get_last_price(self.trading_pair.symbol) if position else 0.0
        except DataSourceError as exc:
            raise BackendError(f"portfolio query failed: {exc}") from exc
        return Portfolio(cash=cash, position=position, equity=cash + position * price)
