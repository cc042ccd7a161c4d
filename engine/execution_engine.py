"""执行引擎：本地现金/持仓账本 + 可插拔订单后端。

约定：
- 下单前先按本地账本校验（资金/持仓不足时不触达后端），被拒订单仍生成失败的 OrderResult 便于审计；
- 后端异常原样上抛，账本只在后端成功返回后才提交；
- 手续费由本引擎按 commission_rate 计算并回填到 OrderResult；
- total_trades 按“买入-卖出”完整回合计数（在卖出时 +1）。
"""

from __future__ import annotations

import uuid
from typing import Any

from broker.abstract_broker import OrderBackend
from shared.errors import BackendError, InsufficientCashError, InsufficientPositionError
from shared.models.models import OrderIntent, OrderResult, OrderSide, Portfolio, TradeStatistics
from shared.utils.logging import setup_logger
from utils.trade_logger import TradeLogger, TradeRecord

_EPS = 1e-12


class ExecutionEngine:
    """单策略账本。

    Parameters
    ----------
    backend:
        订单后端（模拟/实盘）。
    initial_capital:
        初始现金。
    commission_rate:
        手续费率（按成交额）。
    trade_logger:
        可选的订单 CSV 审计。
    """

    def __init__(
        self,
        backend: OrderBackend,
        *,
        initial_capital: float,
        commission_rate: float = 0.001,
        trade_logger: TradeLogger | None = None,
    ):
        if initial_capital < 0:
            raise ValueError("initial_capital must be >= 0")
        if not 0 <= commission_rate < 1:
            raise ValueError("commission_rate must be in [0, 1)")
        self.backend = backend
        self.initial_capital = float(initial_capital)
        self.commission_rate = float(commission_rate)
        self.trade_logger = trade_logger
        self.logger = setup_logger("execution")

        self._portfolio = Portfolio(cash=self.initial_capital, position=0.0, equity=self.initial_capital)
        self._stats = TradeStatistics()
        self._orders: list[OrderResult] = []
        self._rejections: list[OrderResult] = []

    # ---- 查询 ----

    def get_portfolio(self) -> Portfolio:
        """本地账本快照（不查询后端）。"""
        return self._portfolio.copy()

    @property
    def orders(self) -> list[OrderResult]:
        return list(self._orders)

    @property
    def rejections(self) -> list[OrderResult]:
        return list(self._rejections)

    def get_statistics(self) -> dict[str, Any]:
        equity = self._portfolio.equity
        total_return = (
            (equity - self.initial_capital) / self.initial_capital if self.initial_capital else 0.0
        )
        return {
            "initial_capital": self.initial_capital,
            "cash": self._portfolio.cash,
            "position": self._portfolio.position,
            "equity": equity,
            "total_return": total_return,
            "total_trades": self._stats.total_trades,
            "winning_trades": self._stats.winning_trades,
            "losing_trades": self._stats.losing_trades,
            "win_rate": self._stats.win_rate,
            "total_commission": self._stats.total_commission,
        }

    @property
    def statistics(self) -> TradeStatistics:
        return TradeStatistics(**vars(self._stats))

    # ---- 下单 ----

    def buy(self, intent: OrderIntent) -> OrderResult:
        notional = intent.quantity * intent.price
        commission = notional * self.commission_rate
        total_cost = notional + commission

        if self._portfolio.cash + _EPS < total_cost:
            rejected = self._reject(OrderSide.BUY, intent, "insufficient cash")
            raise InsufficientCashError(
                f"insufficient cash: need {total_cost:.8f}, have {self._portfolio.cash:.8f}", rejected
            )

        result = self.backend.execute_buy(intent)
        self._ensure_success(result)

        # 按校验时的 total_cost 记账（不随回报价变化）
        self._portfolio.cash = max(0.0, self._portfolio.cash - total_cost)
        self._portfolio.position += intent.quantity
        self._portfolio.equity = self._portfolio.cash + self._portfolio.position * result.price
        self._portfolio.timestamp = result.timestamp or intent.timestamp

        result.commission = commission
        self._record(result)
        self.logger.info(
            "BUY %s qty=%.8f price=%.8f commission=%.8f cash=%.4f reason=%s",
            result.trading_pair.symbol, result.quantity, result.price, commission, self._portfolio.cash, intent.reason,
        )
        return result

    def sell(self, intent: OrderIntent) -> OrderResult:
        if self._portfolio.position + _EPS < intent.quantity:
            rejected = self._reject(OrderSide.SELL, intent, "insufficient position")
            raise InsufficientPositionError(
                f"insufficient position: need {intent.quantity:.8f}, have {self._portfolio.position:.8f}", rejected
            )

        result = self.backend.execute_sell(intent)
        self._ensure_success(result)

        exec_price = result.price
        notional = result.quantity * exec_price
        commission = notional * self.commission_rate
        self._portfolio.cash += notional - commission
        self._portfolio.position = max(0.0, self._portfolio.position - result.quantity)

        buy_price = self._last_buy_price()
        if buy_price is not None:
            pnl = result.quantity * (exec_price - buy_price)
            if pnl > 0:
                self._stats.winning_trades += 1
            else:
                self._stats.losing_trades += 1
            self._stats.total_trades += 1
        else:
            pnl = 0.0

        self._portfolio.equity = self._portfolio.cash + self._portfolio.position * exec_price
        self._portfolio.timestamp = result.timestamp or intent.timestamp
        result.commission = commission
        self._record(result)
        self.logger.info(
            "SELL %s qty=%.8f price=%.8f pnl=%.4f commission=%.8f cash=%.4f reason=%s",
            result.trading_pair.symbol, result.quantity, exec_price, pnl, commission, self._portfolio.cash, intent.reason,
        )
        return result

    def mark_to_market(self, price: float, timestamp: int = 0) -> Portfolio:
        """按最新价格重估权益（权益曲线使用）。"""
        self._portfolio.equity = self._portfolio.cash + self._portfolio.position * price
        if timestamp:
            self._portfolio.timestamp = timestamp
        return self.get_portfolio()

    def reconcile(self) -> dict[str, float] | None:
        """与后端真实账户比对，只记录偏差、不修改账本；模拟后端返回 None。"""
        real = self.backend.get_real_portfolio()
        if real is None:
            return None
        drift = {
            "cash": real.cash - self._portfolio.cash,
            "position": real.position - self._portfolio.position,
        }
        if abs(drift["cash"]) > 1e-6 or abs(drift["position"]) > 1e-9:
            self.logger.warning(
                "Ledger drift vs backend: cash=%.8f position=%.8f", drift["cash"], drift["position"]
            )
        return drift

    # ---- 内部 ----

    def _ensure_success(self, result: OrderResult) -> None:
        if not result.success:
            raise BackendError(result.error or "order failed", result=result)

    def _last_buy_price(self) -> float | None:
        for order in reversed(self._orders):
            if order.side == OrderSide.BUY:
                return order.price
        return None

    def _reject(self, side: OrderSide, intent: OrderIntent, reason: str) -> OrderResult:
        result = OrderResult(
            order_id=f"rejected-{uuid.uuid4().hex[:12]}",
            trading_pair=intent.trading_pair,
            side=side,
            quantity=intent.quantity,
            price=intent.price,
            timestamp=intent.timestamp,
            success=False,
            error=reason,
        )
        self._rejections.append(result)
        self.logger.warning(
            "%s rejected: %s qty=%.8f price=%.8f", side.value.upper(), reason, intent.quantity, intent.price
        )
        self._audit(result)
        return result

    def _record(self, result: OrderResult) -> None:
        self._orders.append(result)
        self._stats.total_commission += result.commission
        self._audit(result)

    def _audit(self, result: OrderResult) -> None:
        if self.trade_logger is None:
            return
        self.trade_logger.log(
            TradeRecord(
                result=result,
                mode=self.backend.mode.value,
                cash_after=self._portfolio.cash,
                position_after=self._portfolio.position,
            )
        )
