"""订单结果持久化（CSV 日切），成功与被拒订单都会记录。"""

import csv
import _csv
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

from shared.models.models import OrderResult

_HEADER = [
    "ts",
    "order_id",
    "symbol",
    "side",
    "qty",
    "price",
    "commission",
    "success",
    "error",
    "mode",
    "cash_after",
    "position_after",
]


@dataclass
class TradeRecord:
    """单笔订单记录（订单结果 + 成交后的账本状态）。"""
    result: OrderResult
    mode: str
    cash_after: float
    position_after: float


class TradeLogger:
    """按日切 CSV 记录订单。

    Parameters
    ----------
    base_dir:
        输出目录。
    """

    def __init__(self, base_dir: str | Path = "data/trades"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.current_date: date | None = None
        self.file: Optional[TextIO] = None
        self.writer: Optional[_csv._writer] = None

    def _ensure_file(self):
        today = datetime.now(timezone.utc).date()
        if self.current_date == today and self.file:
            return

        if self.file:
            self.file.close()

        self.current_date = today
        file_path = self.base_dir / f"trades_{today}.csv"
        new_file = not file_path.exists()
        self.file = file_path.open("a", newline="", encoding="utf-8")
        self.writer = csv.writer(self.file)
        if new_file:
            self.writer.writerow(_HEADER)

    def log(self, record: TradeRecord):
        """写入一条订单记录。"""
        self._ensure_file()
        if self.writer is None or self.file is None:
            raise RuntimeError("TradeLogger not initialized")

        res = record.result
        ts_val = (
            datetime.fromtimestamp(res.timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            if res.timestamp
            else ""
        )
        self.writer.writerow(
            [
                ts_val,
                res.order_id,
                res.trading_pair.symbol,
                res.side.value,
                f"{res.quantity:.8f}",
                f"{res.price:.8f}",
                f"{res.commission:.8f}",
                int(res.success),
                res.error or "",
                record.mode,
                f"{record.cash_after:.4f}",
                f"{record.position_after:.8f}",
            ]
        )
        self.file.flush()

    def close(self):
        """关闭当前文件句柄。"""
        if self.file:
            self.file.close()
            self.file = None
            self.writer = None
