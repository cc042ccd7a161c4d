"""K 线同步器：本地存储 + 远程行情的缺口补齐与合并。

两种取数方式，输出均按 open_time 升序且去重：
- `fetch_range`：按时间区间取数，自动检测缺口并逐段从远程补齐后写回存储；
- `fetch_latest`：取最近 N 根，本地不足时向远程多取一倍再合并。

失败策略：
- 存储读失败 → 退化为纯远程；存储写失败 → 记录日志，已拉取的数据仍参与合并；
- 远程某段失败 → 跳过该段，继续下一段；
- 同步调用本身不向调用方抛 DataSourceError，尽量返回能拿到的数据；
- CancelToken 取消后不再发起新的 I/O，直接返回已有数据。
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence

from database.candle_store import CandleStore
from market_data.timeframes import interval_ms
from shared.errors import DataSourceError, SyncCancelledError
from shared.models.models import Candle, TimeRange
from shared.utils.cancellation import CancelToken
from shared.utils.logging import setup_logger


class RemoteFeed(Protocol):
    """同步器所需的远程行情能力（`market.client.BinanceClient` 满足该协议）。"""

    page_limit: int

    def get_candles(
        self,
        symbol: str,
        timeframe: str,
        start: int | None = None,
        end: int | None = None,
        limit: int = 500,
        token: CancelToken | None = None,
    ) -> list[Candle]: ...


def find_missing_ranges(
    candles: Sequence[Candle],
    start: int,
    end: int,
    interval: int | None,
) -> list[TimeRange]:
    """计算 [start, end] 内缺失的 open_time 区间（闭区间）。

    - 无数据：整段缺失；
    - 未知周期（interval 为空）：无法判断缺口，返回空；
    - 首根之前、相邻两根之间、末根之后分别检测；长度为负的区间丢弃
      （首/末根已覆盖边界时会出现）。
    """
    if not candles:
        return [TimeRange(start=start, end=end)]
    if not interval:
        return []

    ordered = sorted(candles, key=lambda c: c.open_time)
    ranges: list[TimeRange] = []

    first = ordered[0].open_time
    if first > start:
        ranges.append(TimeRange(start=start, end=first - interval))

    for prev, nxt in zip(ordered, ordered[1:]):
        expected = prev.open_time + interval
        if nxt.open_time > expected:
            ranges.append(TimeRange(start=expected, end=nxt.open_time - interval))

    last = ordered[-1].open_time
    if last < end:
        ranges.append(TimeRange(start=last + interval, end=end))

    return [r for r in ranges if r.start <= r.end]


def merge_candles(
    store_candles: Iterable[Candle],
    network_candles: Iterable[Candle],
    threshold: int | None = None,
) -> list[Candle]:
    """按 open_time 合并：先放存储数据，网络数据仅在 open_time > threshold 时写入。

    threshold 为 None/0 时网络数据总是覆盖；阈值及之前的网络数据整体丢弃，
    避免过期响应污染已对齐的历史。
    """
    merged: dict[int, Candle] = {}
    for c in store_candles:
        merged[c.open_time] = c
    for c in network_candles:
        if not threshold or c.open_time > threshold:
            merged[c.open_time] = c
    return sorted(merged.values(), key=lambda c: c.open_time)


class CandleSynchronizer:
    """K 线同步器。

    Parameters
    ----------
    store:
        K 线存储（Postgres / parquet）。
    feed:
        远程行情源。
    """

    def __init__(self, store: CandleStore, feed: RemoteFeed, *, page_limit: int | None = None):
        self.store = store
        self.feed = feed
        self.page_limit = page_limit or getattr(feed, "page_limit", 1000)
        self.logger = setup_logger("candle-sync")

    # ---- 区间模式 ----

    def fetch_range(
        self,
        symbol: str,
        timeframe: str,
        start: int,
        end: int,
        token: CancelToken | None = None,
    ) -> list[Candle]:
        if start > end:
            raise ValueError(f"start must be <= end, got {start} > {end}")

        stored: list[Candle] = []
        if not self._cancelled(token):
            try:
                stored = self.store.get_range(symbol, timeframe, start, end)
            except DataSourceError as exc:
                self.logger.warning("Store read failed for %s %s, fallback to remote: %s", symbol, timeframe, exc)

        interval = interval_ms(timeframe)
        missing = find_missing_ranges(stored, start, end, interval)
        if not missing:
            return merge_candles(stored, [])

        self.logger.info("%s %s: %s missing range(s) in [%s, %s]", symbol, timeframe, len(missing), start, end)
        fetched: list[Candle] = []
        persisted_any = False
        for rng in missing:
            if self._cancelled(token):
                self.logger.warning("Sync cancelled for %s %s, returning partial data", symbol, timeframe)
                return merge_candles(stored, fetched)
            batch = self._fetch_remote_range(symbol, timeframe, rng, interval, token)
            if not batch:
                continue
            fetched.extend(batch)
            if self._persist(symbol, timeframe, batch, token):
                persisted_any = True

        if self._cancelled(token):
            return merge_candles(stored, fetched)
        if persisted_any:
            try:
                return merge_candles(self.store.get_range(symbol, timeframe, start, end), [])
            except DataSourceError as exc:
                self.logger.warning("Store re-read failed for %s %s, merging locally: %s", symbol, timeframe, exc)
        return merge_candles(stored, fetched)

    def _fetch_remote_range(
        self,
        symbol: str,
        timeframe: str,
        rng: TimeRange,
        interval: int | None,
        token: CancelToken | None,
    ) -> list[Candle]:
        """分页拉取一个缺失区间；中途失败则保留已拉到的页。"""
        out: list[Candle] = []
        cursor = rng.start
        while cursor <= rng.end:
            if self._cancelled(token):
                break
            try:
                page = self.feed.get_candles(
                    symbol, timeframe, start=cursor, end=rng.end, limit=self.page_limit, token=token
                )
            except SyncCancelledError:
                break
            except DataSourceError as exc:
                self.logger.error(
                    "Remote fetch failed for %s %s [%s, %s], skipping: %s", symbol, timeframe, cursor, rng.end, exc
                )
                break
            page = [c for c in page if rng.start <= c.open_time <= rng.end]
            if not page:
                break
            out.extend(page)
            last_open = max(c.open_time for c in page)
            next_cursor = last_open + (interval or 1)
            if len(page) < self.page_limit or next_cursor <= cursor:
                break
            cursor = next_cursor
        return out

    def _persist(self, symbol: str, timeframe: str, candles: list[Candle], token: CancelToken | None) -> bool:
        if self._cancelled(token):
            return False
        try:
            self.store.upsert_many(symbol, timeframe, candles)
        except DataSourceError as exc:
            self.logger.error("Store write failed for %s %s: %s", symbol, timeframe, exc)
            return False
        update_status = getattr(self.store, "update_sync_status", None)
        if update_status is not None:
            try:
                update_status(symbol, timeframe, max(c.open_time for c in candles))
            except DataSourceError as exc:
                self.logger.warning("Sync status update failed for %s %s: %s", symbol, timeframe, exc)
        return True

    # ---- 最近 N 根 ----

    def fetch_latest(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
        token: CancelToken | None = None,
    ) -> list[Candle]:
        if limit <= 0:
            raise ValueError(f"limit must be > 0, got {limit}")

        stored: list[Candle] = []
        if not self._cancelled(token):
            try:
                stored = merge_candles(self.store.get_range(symbol, timeframe, limit=limit), [])
            except DataSourceError as exc:
                self.logger.warning("Store read failed for %s %s, fallback to remote: %s", symbol, timeframe, exc)

        if len(stored) >= limit:
            return stored[-limit:]
        if self._cancelled(token):
            return stored

        try:
            network = self.feed.get_candles(symbol, timeframe, limit=2 * limit, token=token)
        except (DataSourceError, SyncCancelledError) as exc:
            self.logger.error("Remote fetch failed for %s %s: %s", symbol, timeframe, exc)
            return stored[-limit:]

        threshold = stored[-1].open_time if stored else None
        merged = merge_candles(stored, network, threshold)
        fresh = [c for c in network if threshold is None or c.open_time > threshold]
        if fresh:
            self._persist(symbol, timeframe, fresh, token)
        return merged[-limit:]

    @staticmethod
    def _cancelled(token: CancelToken | None) -> bool:
        return token is not None and token.cancelled
