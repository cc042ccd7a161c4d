"""卖出（止盈）策略。

信号引擎在持仓期间每根 bar 调用 `should_sell(candle, trade_info)`；
平仓后调用 `reset()` 清理内部状态（仅分批止盈有状态）。

预设：
- conservative / moderate / aggressive：固定止盈 15% / 20% / 30%
- trailing_5 / trailing_10：盈利 15% / 20% 后启用，回撤 5% / 10% 卖出
- combo_smart：最长持仓 180 天 + 移动止盈（8% 回撤，18% 启用）+ 固定止盈 25%×1.5 兜底
- partial_pyramid：20% 卖 30%，40% 再卖 40%，60% 清仓
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Sequence

from shared.models.models import Candle


@dataclass(frozen=True)
class TradeInfo:
    """持仓信息快照。pnl 为比例（0.1 表示 10%）。"""
    entry_price: float
    current_price: float
    highest_price: float
    current_pnl: float
    entry_time: int = 0
    holding_days: int = 0


@dataclass(frozen=True)
class ExitDecision:
    should_sell: bool
    reason: str = ""
    strength: float = 1.0


NO_EXIT = ExitDecision(should_sell=False)


class ExitPolicy(ABC):
    """卖出策略接口。"""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def should_sell(self, candle: Candle, trade_info: TradeInfo) -> ExitDecision: ...

    def reset(self) -> None:
        """平仓后重置内部状态；无状态策略无需覆盖。"""


class FixedTakeProfit(ExitPolicy):
    def __init__(self, take_profit: float = 0.20):
        if take_profit <= 0:
            raise ValueError("take_profit must be > 0")
        self.take_profit = take_profit

    @property
    def name(self) -> str:
        return f"Fixed({self.take_profit * 100:.1f}%)"

    def should_sell(self, candle: Candle, trade_info: TradeInfo) -> ExitDecision:
        if trade_info.current_pnl >= self.take_profit:
            return ExitDecision(True, f"fixed take profit: {trade_info.current_pnl * 100:.2f}%")
        return NO_EXIT


class TrailingStop(ExitPolicy):
    """盈利达到 min_profit 后，自最高价回撤 trailing_percent 即卖出。"""

    def __init__(self, trailing_percent: float = 0.05, min_profit: float = 0.15):
        if trailing_percent <= 0:
            raise ValueError("trailing_percent must be > 0")
        self.trailing_percent = trailing_percent
        self.min_profit = min_profit

    @property
    def name(self) -> str:
        return f"Trailing({self.trailing_percent * 100:.1f}% after {self.min_profit * 100:.1f}%)"

    def should_sell(self, candle: Candle, trade_info: TradeInfo) -> ExitDecision:
        if trade_info.current_pnl < self.min_profit or trade_info.highest_price <= 0:
            return NO_EXIT
        drawdown = (trade_info.highest_price - trade_info.current_price) / trade_info.highest_price
        if drawdown >= self.trailing_percent:
            peak_pnl = (trade_info.highest_price - trade_info.entry_price) / trade_info.entry_price
            return ExitDecision(
                True,
                f"trailing stop: {trade_info.current_pnl * 100:.2f}% (peak: {peak_pnl * 100:.2f}%)",
            )
        return NO_EXIT


class TechnicalExit(ExitPolicy):
    """简化的技术止盈：盈利先过 min_profit，达到 threshold 即卖出。"""

    def __init__(self, min_profit: float = 0.10, threshold: float = 0.15):
        self.min_profit = min_profit
        self.threshold = threshold

    @property
    def name(self) -> str:
        return "Technical"

    def should_sell(self, candle: Candle, trade_info: TradeInfo) -> ExitDecision:
        if trade_info.current_pnl < self.min_profit:
            return NO_EXIT
        if trade_info.current_pnl >= self.threshold:
            return ExitDecision(
                True, f"technical sell: {trade_info.current_pnl * 100:.2f}% profit reached technical threshold"
            )
        return NO_EXIT


class ComboExit(ExitPolicy):
    """最长持仓 → 移动止盈 → 固定止盈（阈值放大 1.5 倍，给移动止盈留空间）。"""

    def __init__(self, fixed: FixedTakeProfit, trailing: TrailingStop, max_holding_days: int = 0):
        self.fixed = fixed
        self.trailing = trailing
        self.max_holding_days = max_holding_days
        self._enhanced = FixedTakeProfit(fixed.take_profit * 1.5)

    @property
    def name(self) -> str:
        return f"Combo({self.trailing.name} + {self.fixed.name})"

    def should_sell(self, candle: Candle, trade_info: TradeInfo) -> ExitDecision:
        if self.max_holding_days > 0 and trade_info.holding_days >= self.max_holding_days:
            return ExitDecision(True, f"max holding time: {self.max_holding_days} days")
        decision = self.trailing.should_sell(candle, trade_info)
        if decision.should_sell:
            return decision
        decision = self._enhanced.should_sell(candle, trade_info)
        if decision.should_sell:
            return ExitDecision(True, f"enhanced {decision.reason}", decision.strength)
        return NO_EXIT

    def reset(self) -> None:
        self.fixed.reset()
        self.trailing.reset()


@dataclass(frozen=True)
class PartialLevel:
    profit_percent: float
    sell_percent: float


class PartialTakeProfit(ExitPolicy):
    """分批止盈：逐级触发，strength 为本次卖出的持仓比例。"""

    def __init__(self, levels: Sequence[PartialLevel]):
        if not levels:
            raise ValueError("partial take profit requires at least one level")
        self.levels = sorted(levels, key=lambda lv: lv.profit_percent)
        self.executed_level = -1

    @property
    def name(self) -> str:
        return f"Partial({len(self.levels)} levels)"

    def should_sell(self, candle: Candle, trade_info: TradeInfo) -> ExitDecision:
        nxt = self.executed_level + 1
        if nxt >= len(self.levels):
            return NO_EXIT
        level = self.levels[nxt]
        if trade_info.current_pnl >= level.profit_percent:
            self.executed_level = nxt
            return ExitDecision(
                True,
                f"partial sell level {nxt + 1}: {trade_info.current_pnl * 100:.2f}% "
                f"(sell {level.sell_percent * 100:.0f}%)",
                level.sell_percent,
            )
        return NO_EXIT

    def reset(self) -> None:
        self.executed_level = -1


_PYRAMID = (PartialLevel(0.20, 0.30), PartialLevel(0.40, 0.40), PartialLevel(0.60, 1.00))

PRESETS: dict[str, dict] = {
    "conservative": {"type": "fixed", "take_profit": 0.15},
    "moderate": {"type": "fixed", "take_profit": 0.20},
    "aggressive": {"type": "fixed", "take_profit": 0.30},
    "trailing_5": {"type": "trailing", "trailing_percent": 0.05, "min_profit": 0.15},
    "trailing_10": {"type": "trailing", "trailing_percent": 0.10, "min_profit": 0.20},
    "combo_smart": {
        "type": "combo",
        "take_profit": 0.25,
        "trailing_percent": 0.08,
        "min_profit": 0.18,
        "max_holding_days": 180,
    },
    "partial_pyramid": {"type": "partial"},
}

# 直接按类型构建时的默认参数
_TYPE_DEFAULTS: dict[str, dict] = {
    "fixed": {"take_profit": 0.20},
    "trailing": {"trailing_percent": 0.05, "min_profit": 0.15},
    "technical": {},
    "combo": {"take_profit": 0.25, "trailing_percent": 0.08, "min_profit": 0.18, "max_holding_days": 180},
    "partial": {},
}

_ALLOWED_PARAMS = {"take_profit", "trailing_percent", "min_profit", "max_holding_days"}


def parse_exit_params(text: str | None) -> dict[str, float]:
    """解析 `key1=value1,key2=value2` 形式的参数串。"""
    params: dict[str, float] = {}
    if not text:
        return params
    for pair in text.split(","):
        pair = pair.strip()
        if not pair:
            continue
        parts = pair.split("=")
        if len(parts) != 2:
            raise ValueError(f"invalid parameter format: {pair} (expected key=value)")
        key, raw = parts[0].strip(), parts[1].strip()
        try:
            params[key] = float(raw)
        except ValueError as exc:
            raise ValueError(f"invalid parameter value for {key}: {raw}") from exc
    return params


def build_exit_policy(name: str, overrides: Mapping[str, float] | None = None) -> ExitPolicy:
    """按预设名或类型名构建卖出策略；overrides 覆盖同名参数。"""
    overrides = dict(overrides or {})
    unknown = set(overrides) - _ALLOWED_PARAMS
    if unknown:
        raise ValueError(f"unknown exit policy params: {', '.join(sorted(unknown))}")

    key = name.strip().lower()
    if key in PRESETS:
        cfg = dict(PRESETS[key])
    elif key in _TYPE_DEFAULTS:
        cfg = {"type": key, **_TYPE_DEFAULTS[key]}
    else:
        raise ValueError(f"unknown exit policy: {name}")
    cfg.update(overrides)

    kind = cfg["type"]
    if kind == "fixed":
        return FixedTakeProfit(cfg["take_profit"])
    if kind == "trailing":
        return TrailingStop(cfg["trailing_percent"], cfg["min_profit"])
    if kind == "technical":
        return TechnicalExit(min_profit=cfg.get("min_profit", 0.10))
    if kind == "combo":
        return ComboExit(
            FixedTakeProfit(cfg["take_profit"]),
            TrailingStop(cfg["trailing_percent"], cfg["min_profit"]),
            int(cfg["max_holding_days"]),
        )
    # partial 的分级较复杂，暂只支持默认金字塔
    return PartialTakeProfit(_PYRAMID)
