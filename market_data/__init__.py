"""行情数据模块（market_data）。

该包聚合：
- K 线周期定义（见 `market_data/timeframes.py`）
- K 线同步器：本地存储 + 远程行情的缺口补齐与合并（见 `market_data/synchronizer.py`）
"""

from market_data.synchronizer import CandleSynchronizer, find_missing_ranges, merge_candles
from market_data.timeframes import TIMEFRAME_MS, interval_ms

__all__ = [
    "CandleSynchronizer",
    "find_missing_ranges",
    "merge_candles",
    "TIMEFRAME_MS",
    "interval_ms",
]
