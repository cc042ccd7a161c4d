"""本地 parquet K 线存储（ParquetCandleStore）。

实现与 `PostgresCandleStore` 相同的存储协议，便于离线回测与测试：
每个 (symbol, timeframe) 一个 parquet 文件，写入时按 open_time 去重（后写覆盖）。
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from shared.errors import DataSourceError
from shared.models.models import Candle
from shared.utils.logging import setup_logger

CANDLE_COLUMNS = [
    "symbol",
    "timeframe",
    "open_time",
    "close_time",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "quote_volume",
    "taker_buy_volume",
    "taker_buy_quote_volume",
]


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """K 线列表 -> DataFrame（列顺序固定，open_time 为 int64）。"""
    if not candles:
        return pd.DataFrame(columns=CANDLE_COLUMNS)
    df = pd.DataFrame([{col: getattr(c, col) for col in CANDLE_COLUMNS} for c in candles])
    df["open_time"] = df["open_time"].astype("int64")
    df["close_time"] = df["close_time"].astype("int64")
    return df


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    candles: list[Candle] = []
    for row in df.itertuples(index=False):
        candles.append(
            Candle(
                symbol=str(row.symbol),
                timeframe=str(row.timeframe),
                open_time=int(row.open_time),
                close_time=int(row.close_time),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
                quote_volume=float(row.quote_volume),
                taker_buy_volume=float(row.taker_buy_volume),
                taker_buy_quote_volume=float(row.taker_buy_quote_volume),
            )
        )
    return candles


def _format_ms(val: Any) -> str | None:
    if val is None or pd.isna(val):
        return None
    return datetime.fromtimestamp(int(val) / 1000, tz=timezone.utc).isoformat()


class ParquetCandleStore:
    """parquet 文件存储。"""

    def __init__(self, data_dir: str | Path = "dataset/candles"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logger = setup_logger("candle-store")

    def parquet_path(self, symbol: str, timeframe: str) -> Path:
        return self.data_dir / f"{symbol}_{timeframe}.parquet"

    def meta_path(self, symbol: str, timeframe: str) -> Path:
        return self.data_dir / f"{symbol}_{timeframe}.meta.json"

    def _read_frame(self, symbol: str, timeframe: str) -> pd.DataFrame:
        path = self.parquet_path(symbol, timeframe)
        if not path.exists():
            return pd.DataFrame(columns=CANDLE_COLUMNS)
        try:
            return pd.read_parquet(path, engine="pyarrow")
        except (OSError, ValueError) as exc:
            raise DataSourceError(f"read {path} failed: {exc}") from exc

    def load_frame(self, symbol: str, timeframe: str) -> pd.DataFrame:
        """整表读取（按 open_time 升序）。"""
        df = self._read_frame(symbol, timeframe)
        if df.empty:
            return df
        return df.sort_values("open_time").reset_index(drop=True)

    def get_range(
        self,
        symbol: str,
        timeframe: str,
        start: int | None = None,
        end: int | None = None,
        limit: int | None = None,
    ) -> list[Candle]:
        df = self.load_frame(symbol, timeframe)
        if df.empty:
            return []
        if start is not None:
            df = df[df["open_time"] >= int(start)]
        if end is not None:
            df = df[df["open_time"] <= int(end)]
        if limit:
            # 无起点时取最近 N 根
            df = df.head(int(limit)) if start is not None else df.tail(int(limit))
        return frame_to_candles(df)

    def upsert_many(self, symbol: str, timeframe: str, candles: Sequence[Candle]) -> int:
        if not candles:
            return 0
        existing = self._read_frame(symbol, timeframe)
        incoming = candles_to_frame(candles)
        frames = [f for f in (existing, incoming) if not f.empty]
        merged = pd.concat(frames, ignore_index=True)
        merged = merged.drop_duplicates(subset=["open_time"], keep="last")
        merged = merged.sort_values("open_time").reset_index(drop=True)

        path = self.parquet_path(symbol, timeframe)
        try:
            merged.to_parquet(path, engine="pyarrow", compression="snappy", index=False)
        except (OSError, ValueError) as exc:
            raise DataSourceError(f"write {path} failed: {exc}") from exc
        self._write_meta(symbol, timeframe, merged)
        self.logger.info("Upserted %s candles for %s %s", len(candles), symbol, timeframe)
        return len(candles)

    def get_latest_open_time(self, symbol: str, timeframe: str) -> int | None:
        df = self._read_frame(symbol, timeframe)
        if df.empty:
            return None
        return int(df["open_time"].max())

    def _write_meta(self, symbol: str, timeframe: str, df: pd.DataFrame) -> None:
        meta = {
            "symbol": symbol,
            "timeframe": timeframe,
            "row_count": int(len(df)),
            "start_time": _format_ms(df["open_time"].min()) if not df.empty else None,
            "end_time": _format_ms(df["open_time"].max()) if not df.empty else None,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        self.meta_path(symbol, timeframe).write_text(
            json.dumps(meta, ensure_ascii=False, indent=2), encoding="utf-8"
        )

    def export_csv(self, symbol: str, timeframe: str, out_path: str | Path) -> Path:
        out = Path(out_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        self.load_frame(symbol, timeframe).to_csv(out, index=False)
        return out
