from abc import ABC, abstractmethod

from shared.models.models import Candle, Portfolio, Signal


class Strategy(ABC):
    @abstractmethod
    def on_candle(self, candle: Candle, portfolio: Portfolio) -> list[Signal]:
        """
        输入一根已收盘 K 线与当前账户快照，输出 0~N 个信号。
        """
        ...

    def reset(self) -> None:
        """清空全部内部状态（重新回测前调用）。"""
