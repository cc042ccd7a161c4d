"""布林带（Bollinger Bands）因子。

两种入口：
- `compute_bands(prices, period, multiplier)`：逐 bar 的纯函数，供信号引擎使用；
- `BollingerFactor`：pandas 版本，遵循 `factors/base.py` 的 `compute(df) -> df` 协议。

偏差统一采用总体标准差（除以 period）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
import pandas as pd

from shared.errors import (
    InsufficientDataError,
    InvalidMultiplierError,
    InvalidPeriodError,
    ZeroMiddleBandError,
)


@dataclass(frozen=True)
class BandResult:
    """单根 bar 的布林带结果（不可变）。"""

    middle: float
    upper: float
    lower: float
    price: float
    timestamp: int = 0

    def is_upper_breakout(self) -> bool:
        return self.price >= self.upper

    def is_lower_breakout(self) -> bool:
        return self.price <= self.lower

    def band_width(self) -> float:
        """(upper - lower) / middle；middle 为 0 时无意义，抛出 ZeroMiddleBandError。"""
        if self.middle == 0:
            raise ZeroMiddleBandError("band width undefined: middle band is zero")
        return (self.upper - self.lower) / self.middle

    def percent_b(self) -> float:
        width = self.upper - self.lower
        if width == 0:
            return 0.0
        return (self.price - self.lower) / width


def compute_bands(
    prices: Sequence[float],
    period: int = 20,
    multiplier: float = 2.0,
    timestamp: int = 0,
) -> BandResult:
    """按最近 `period` 个价格计算布林带。

    Raises
    ------
    InvalidPeriodError
        period <= 0。
    InvalidMultiplierError
        multiplier <= 0。
    InsufficientDataError
        价格数量不足 period。
    """
    if period <= 0:
        raise InvalidPeriodError(f"period must be > 0, got {period}")
    if multiplier <= 0:
        raise InvalidMultiplierError(f"multiplier must be > 0, got {multiplier}")
    if len(prices) < period:
        raise InsufficientDataError(f"need {period} prices, got {len(prices)}")

    window = np.asarray(list(prices)[-period:], dtype=float)
    middle = float(window.mean())
    deviation = float(window.std(ddof=0))
    return BandResult(
        middle=middle,
        upper=middle + multiplier * deviation,
        lower=middle - multiplier * deviation,
        price=float(window[-1]),
        timestamp=timestamp,
    )


class BollingerBands:
    """带参数的计算器，便于在策略中注入。"""

    def __init__(self, period: int = 20, multiplier: float = 2.0):
        if period <= 0:
            raise InvalidPeriodError(f"period must be > 0, got {period}")
        if multiplier <= 0:
            raise InvalidMultiplierError(f"multiplier must be > 0, got {multiplier}")
        self.period = period
        self.multiplier = multiplier

    def compute(self, prices: Sequence[float], timestamp: int = 0) -> BandResult:
        return compute_bands(prices, self.period, self.multiplier, timestamp=timestamp)


@dataclass(frozen=True)
class BollingerFactor:
    """布林带因子：添加 `bb_middle/bb_upper/bb_lower`（前缀可配）。"""

    period: int = 20
    multiplier: float = 2.0
    price_col: str = "close"
    prefix: str = "bb"
    name: str = "bollinger"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise InvalidPeriodError("Bollinger period must be > 0")
        if self.multiplier <= 0:
            raise InvalidMultiplierError("Bollinger multiplier must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "period": self.period,
                "multiplier": self.multiplier,
                "price_col": self.price_col,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"BollingerFactor requires column: {self.price_col}")
        rolling = df[self.price_col].rolling(self.period, min_periods=self.period)
        middle = rolling.mean()
        std = rolling.std(ddof=0)
        df[f"{self.prefix}_middle"] = middle
        df[f"{self.prefix}_upper"] = middle + self.multiplier * std
        df[f"{self.prefix}_lower"] = middle - self.multiplier * std
        return df
