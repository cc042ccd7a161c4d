"""回测绩效指标计算。

权益曲线为 `[(open_time_ms, equity), ...]`。
"""

from __future__ import annotations

import math
from statistics import mean, median, pstdev


def _annualization_factor(equity_curve: list[tuple[int, float]]) -> float:
    """根据 equity_curve 的时间间隔估计 Sharpe 年化因子（加密货币按 365 天）。"""
    if len(equity_curve) < 2:
        return math.sqrt(365)
    deltas = []
    for i in range(1, len(equity_curve)):
        dt = (equity_curve[i][0] - equity_curve[i - 1][0]) / 1000
        if dt > 0:
            deltas.append(dt)
    if not deltas:
        return math.sqrt(365)
    med = median(deltas)
    periods_per_day = 86400 / med if med > 0 else 1
    return math.sqrt(365 * periods_per_day)


def compute_equity_metrics(equity_curve: list[tuple[int, float]]) -> dict:
    """计算权益曲线指标（总收益、最大回撤、Sharpe）。"""
    if not equity_curve:
        return {"total_return": 0.0, "max_drawdown": 0.0, "sharpe": 0.0}

    equity_curve = sorted(equity_curve, key=lambda x: x[0])
    initial_equity = equity_curve[0][1]
    final_equity = equity_curve[-1][1]
    total_return = (final_equity / initial_equity - 1) if initial_equity else 0.0

    # 最大回撤
    peak = equity_curve[0][1]
    max_dd = 0.0
    for _, eq in equity_curve:
        peak = max(peak, eq)
        dd = (eq - peak) / peak if peak else 0.0
        max_dd = min(max_dd, dd)

    returns = []
    for i in range(1, len(equity_curve)):
        prev = equity_curve[i - 1][1]
        curr = equity_curve[i][1]
        if prev > 0:
            returns.append((curr / prev) - 1)
    sharpe = 0.0
    if returns:
        mu = mean(returns)
        sigma = pstdev(returns) if len(returns) > 1 else 0.0
        factor = _annualization_factor(equity_curve)
        sharpe = (mu / sigma) * factor if sigma else 0.0

    return {"total_return": total_return, "max_drawdown": abs(max_dd), "sharpe": sharpe}
