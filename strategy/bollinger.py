from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque

from factors.bollinger import BandResult, compute_bands
from shared.models.models import Candle, OrderSide, Portfolio, Signal
from shared.utils.logging import setup_logger
from strategy.base import Strategy
from strategy.exit_policies import ExitPolicy, TradeInfo

_DAY_MS = 86_400_000


@dataclass
class StrategyState:
    """信号引擎的逐 bar 状态；last_trade_bar = -1 表示尚未交易。"""
    price_history: Deque[float]
    current_bar: int = 0
    last_trade_bar: int = -1
    last_trade_price: float = 0.0
    highest_price_since_entry: float = 0.0
    has_open_position: bool = False
    entry_time: int = 0
    last_bands: BandResult | None = field(default=None, repr=False)

    def close_trade(self) -> None:
        self.last_trade_price = 0.0
        self.highest_price_since_entry = 0.0
        self.has_open_position = False
        self.entry_time = 0


class BollingerSignalEngine(Strategy):
    """布林带下轨买入 + 止损/止盈退出。

    - 预热：历史价格不足 period 时不出信号；
    - 止损/止盈等退出条件不受冷却期限制；
    - 冷却期内（current_bar - last_trade_bar < cooldown_bars）不开新仓；
    - 配置了 exit_policy 时由其决定止盈，否则使用固定 take_profit_percent。
    """

    def __init__(
        self,
        period: int = 20,
        multiplier: float = 2.0,
        stop_loss_percent: float = 1.0,  # 比例，1.0 即 100%（相当于不止损）
        take_profit_percent: float = 0.2,
        cooldown_bars: int = 1,
        exit_policy: ExitPolicy | None = None,
    ):
        if period <= 0:
            raise ValueError("period must be > 0")
        if multiplier <= 0:
            raise ValueError("multiplier must be > 0")
        if cooldown_bars < 0:
            raise ValueError("cooldown_bars must be >= 0")
        self.period = period
        self.multiplier = multiplier
        self.stop_loss_percent = stop_loss_percent
        self.take_profit_percent = take_profit_percent
        self.cooldown_bars = cooldown_bars
        self.exit_policy = exit_policy
        self.logger = setup_logger("signal-bollinger")
        self.state = self._new_state()

    def _new_state(self) -> StrategyState:
        return StrategyState(price_history=deque(maxlen=self.period + 10))

    @property
    def params(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "multiplier": self.multiplier,
            "stop_loss_percent": self.stop_loss_percent,
            "take_profit_percent": self.take_profit_percent,
            "cooldown_bars": self.cooldown_bars,
            "exit_policy": self.exit_policy.name if self.exit_policy else None,
        }

    def current_bands(self) -> BandResult | None:
        return self.state.last_bands

    def reset(self) -> None:
        self.state = self._new_state()
        if self.exit_policy:
            self.exit_policy.reset()

    def in_cooldown(self) -> bool:
        s = self.state
        return s.last_trade_bar >= 0 and s.current_bar - s.last_trade_bar < self.cooldown_bars

    def on_candle(self, candle: Candle, portfolio: Portfolio) -> list[Signal]:
        s = self.state
        s.current_bar += 1
        s.price_history.append(candle.close)
        if len(s.price_history) < self.period:
            return []

        bands = compute_bands(s.price_history, self.period, self.multiplier, timestamp=candle.open_time)
        s.last_bands = bands
        price = bands.price
        holding = portfolio.position > 0

        if s.has_open_position and not holding:
            # 买单被拒或仓位在外部被平掉
            self.logger.warning("Trade state open but portfolio is flat at bar %s, clearing state", s.current_bar)
            s.close_trade()
            if self.exit_policy:
                self.exit_policy.reset()

        if holding:
            s.highest_price_since_entry = max(s.highest_price_since_entry, price)
            exits = self._check_exits(candle, price)
            if exits:
                return exits

        if self.in_cooldown():
            return []

        if bands.is_lower_breakout() and not holding:
            s.last_trade_bar = s.current_bar
            s.last_trade_price = price
            s.has_open_position = True
            s.highest_price_since_entry = price
            s.entry_time = candle.open_time
            reason = f"lower band breakout: price={price:.4f} lower={bands.lower:.4f}"
            self.logger.info("BUY signal at bar %s: %s", s.current_bar, reason)
            return [Signal(side=OrderSide.BUY, reason=reason, price=price, timestamp=candle.open_time)]
        return []

    def _check_exits(self, candle: Candle, price: float) -> list[Signal]:
        s = self.state
        entry = s.last_trade_price
        if entry <= 0:
            return []
        pnl = (price - entry) / entry

        if pnl <= -self.stop_loss_percent:
            return [self._exit(candle, price, f"stop loss: {pnl * 100:.2f}%", 1.0)]

        if self.exit_policy is not None:
            info = TradeInfo(
                entry_price=entry,
                current_price=price,
                highest_price=s.highest_price_since_entry,
                current_pnl=pnl,
                entry_time=s.entry_time,
                holding_days=max(0, (candle.open_time - s.entry_time) // _DAY_MS) if s.entry_time else 0,
            )
            decision = self.exit_policy.should_sell(candle, info)
            if decision.should_sell:
                return [self._exit(candle, price, decision.reason, decision.strength)]
            return []

        if pnl >= self.take_profit_percent:
            return [self._exit(candle, price, f"take profit: {pnl * 100:.2f}%", 1.0)]
        return []

    def _exit(self, candle: Candle, price: float, reason: str, strength: float) -> Signal:
        s = self.state
        s.last_trade_bar = s.current_bar
        if strength >= 1.0 or strength <= 0:
            s.close_trade()
            if self.exit_policy:
                self.exit_policy.reset()
        self.logger.info("SELL signal at bar %s: %s (strength=%.2f)", s.current_bar, reason, strength)
        return Signal(side=OrderSide.SELL, reason=reason, price=price, timestamp=candle.open_time, strength=strength)
