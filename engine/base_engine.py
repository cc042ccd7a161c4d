"""引擎基类。

回测与纸面/实盘共用同一个逐 bar 循环（`TradingEngine`），差别只在数据源与订单后端；
这里只约定统一的运行出口。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    """引擎运行结果：summary 为统计与指标，artifacts 存放权益曲线等大对象。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    @abstractmethod
    def run(self) -> EngineResult:
        raise NotImplementedError

    def stop(self) -> None:
        """请求停止；默认无操作，长循环引擎需覆盖。"""
