"""核心数据结构：Candle/TimeRange/Portfolio/OrderIntent/OrderResult/TradeStatistics。

时间统一使用毫秒级 Unix 时间戳（int），与交易所 K 线接口保持一致。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class OrderSide(str, Enum):
    """订单方向。"""

    BUY = "buy"
    SELL = "sell"


@dataclass
class Candle:
    """K 线数据，唯一键为 (symbol, timeframe, open_time)。"""
    symbol: str
    timeframe: str
    open_time: int
    close_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    quote_volume: float = 0.0
    taker_buy_volume: float = 0.0
    taker_buy_quote_volume: float = 0.0

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.symbol, self.timeframe, self.open_time)


@dataclass(frozen=True)
class TimeRange:
    """缺失区间（闭区间，毫秒）。"""
    start: int
    end: int


@dataclass(frozen=True)
class TradingPair:
    """交易对，如 BTC/USDT。"""
    base: str
    quote: str

    @property
    def symbol(self) -> str:
        return f"{self.base}{self.quote}"

    @classmethod
    def parse(cls, text: str) -> "TradingPair":
        """解析 `BTC/USDT`、`BTC-USDT` 或 `BTCUSDT`（后者按常见计价币拆分）。"""
        raw = text.strip().upper()
        for sep in ("/", "-", "_"):
            if sep in raw:
                base, quote = raw.split(sep, 1)
                return cls(base=base, quote=quote)
        for quote in ("USDT", "USDC", "FDUSD", "BUSD", "BTC", "ETH", "BNB"):
            if raw.endswith(quote) and len(raw) > len(quote):
                return cls(base=raw[: -len(quote)], quote=quote)
        raise ValueError(f"Cannot parse trading pair: {text}")


@dataclass
class Portfolio:
    """账户快照：现金、持仓与权益。"""
    cash: float
    position: float = 0.0
    equity: float = 0.0
    timestamp: int = 0

    def copy(self) -> "Portfolio":
        return replace(self)


@dataclass
class OrderIntent:
    """下单意图（由交易引擎根据信号构造）。"""
    trading_pair: TradingPair
    quantity: float
    price: float
    reason: str = ""
    timestamp: int = 0


@dataclass
class OrderResult:
    """订单结果；commission 由执行引擎计算后回填。"""
    order_id: str
    trading_pair: TradingPair
    side: OrderSide
    quantity: float
    price: float
    commission: float = 0.0
    timestamp: int = 0
    success: bool = True
    error: str | None = None


@dataclass
class TradeStatistics:
    """交易统计，仅由执行引擎修改。"""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_commission: float = 0.0

    @property
    def win_rate(self) -> float:
        closed = self.winning_trades + self.losing_trades
        return self.winning_trades / closed if closed else 0.0


@dataclass
class AccountBalance:
    """交易所资产余额。"""
    asset: str
    free: float
    locked: float = 0.0

    @property
    def total(self) -> float:
        return self.free + self.locked


@dataclass
class Signal:
    """策略信号。strength 用于部分止盈时表示卖出比例（0~1）。"""
    side: OrderSide
    reason: str
    price: float
    timestamp: int
    strength: float = 1.0
    meta: dict[str, float] = field(default_factory=dict)
