"""K 线周期与毫秒间隔映射。"""

from __future__ import annotations

from typing import Any

import pandas as pd

_SECOND = 1000
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR

# 1M 按 30 天近似，仅用于缺口检测
TIMEFRAME_MS: dict[str, int] = {
    "1s": _SECOND,
    "1m": _MINUTE,
    "3m": 3 * _MINUTE,
    "5m": 5 * _MINUTE,
    "15m": 15 * _MINUTE,
    "30m": 30 * _MINUTE,
    "1h": _HOUR,
    "2h": 2 * _HOUR,
    "4h": 4 * _HOUR,
    "6h": 6 * _HOUR,
    "8h": 8 * _HOUR,
    "12h": 12 * _HOUR,
    "1d": _DAY,
    "3d": 3 * _DAY,
    "1w": 7 * _DAY,
    "1M": 30 * _DAY,
}


def interval_ms(timeframe: str) -> int | None:
    """返回周期对应的毫秒数；未知周期返回 None（调用方据此关闭缺口检测）。"""
    return TIMEFRAME_MS.get(timeframe)


def align_open_time(ts_ms: int, timeframe: str) -> int:
    """把时间戳向下对齐到周期起点；未知周期原样返回。"""
    step = interval_ms(timeframe)
    if not step:
        return ts_ms
    return ts_ms - (ts_ms % step)


def to_millis(value: Any) -> int:
    """把 int(ms) / ISO 字符串 / datetime / date 转成 UTC 毫秒时间戳；无时区按 UTC 处理。"""
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.timestamp() * 1000)
