"""取消令牌：基于 threading.Event，可选截止时间（monotonic）。

同步器、数据源与交易循环在每个 I/O 步骤前检查令牌；HTTP 客户端据剩余时间收紧超时。
"""

from __future__ import annotations

import threading
import time

from shared.errors import SyncCancelledError


class CancelToken:
    def __init__(self, timeout_secs: float | None = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout_secs if timeout_secs is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """距截止时间的秒数；无截止时间返回 None。"""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SyncCancelledError("operation cancelled")

    def wait(self, secs: float) -> bool:
        """可中断的 sleep；被取消时提前返回 True。"""
        remaining = self.remaining()
        if remaining is not None:
            secs = min(secs, remaining)
        self._event.wait(secs)
        return self.cancelled


def effective_timeout(default: float, token: CancelToken | None) -> float:
    if token is None:
        return default
    remaining = token.remaining()
    if remaining is None:
        return default
    return max(0.001, min(default, remaining))
