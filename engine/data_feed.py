"""K 线数据源：回测（固定序列）与实时（轮询同步器）。"""

from __future__ import annotations

import time
from typing import Iterable, Iterator

from market_data.synchronizer import CandleSynchronizer
from market_data.timeframes import align_open_time, interval_ms
from shared.models.models import Candle
from shared.utils.cancellation import CancelToken
from shared.utils.logging import setup_logger


class BacktestDataFeed:
    """按 open_time 升序逐根回放给定 K 线。"""

    def __init__(self, candles: Iterable[Candle]):
        self.candles = sorted(candles, key=lambda c: c.open_time)

    def __len__(self) -> int:
        return len(self.candles)

    def stream(self, token: CancelToken | None = None) -> Iterator[Candle]:
        for candle in self.candles:
            if token is not None and token.cancelled:
                return
            yield candle


class LiveDataFeed:
    """轮询同步器获取最新已收盘 K 线，只产出比上一根更新的数据，直到被取消。

    Parameters
    ----------
    warmup_bars:
        启动时先回放的历史根数（给指标预热）。
    """

    def __init__(
        self,
        synchronizer: CandleSynchronizer,
        symbol: str,
        timeframe: str,
        *,
        poll_secs: float = 5.0,
        warmup_bars: int = 0,
        clock=None,
    ):
        self.synchronizer = synchronizer
        self.symbol = symbol
        self.timeframe = timeframe
        self.poll_secs = poll_secs
        self.warmup_bars = warmup_bars
        self.step = interval_ms(timeframe) or 1
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._last_open_time: int | None = None
        self.logger = setup_logger("live-feed")

    def _closed(self, candles: list[Candle]) -> list[Candle]:
        now = self._clock()
        return [c for c in candles if c.close_time < now]

    def _fetch_closed(self, start: int, token: CancelToken) -> list[Candle]:
        # 只请求已收盘的 K 线，避免把未收盘的 bar 写进存储
        end = self._clock() - self.step
        if start > end:
            return []
        candles = self.synchronizer.fetch_range(self.symbol, self.timeframe, start, end, token=token)
        return self._closed(candles)

    def stream(self, token: CancelToken | None = None) -> Iterator[Candle]:
        token = token or CancelToken()
        if self._last_open_time is None:
            self._last_open_time = align_open_time(self._clock(), self.timeframe) - (self.warmup_bars + 1) * self.step

        while not token.cancelled:
            for candle in self._fetch_closed(self._last_open_time + self.step, token):
                if candle.open_time > self._last_open_time:
                    self._last_open_time = candle.open_time
                    yield candle
            if token.wait(self.poll_secs):
                break
        self.logger.info("Live feed stopped for %s %s", self.symbol, self.timeframe)
