"""精度与步进工具（下单数量按交易所 stepSize 裁剪）。"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation


def decimals_from_step(step: float) -> int:
    """根据 step（通常是 10 的负次幂）推导小数位数。"""
    try:
        d = Decimal(str(step))
    except InvalidOperation:
        return 0
    if d == 0:
        return 0
    return max(0, -int(d.normalize().as_tuple().exponent))


def floor_to_step(value: float, step: float | None) -> float:
    """把 value 向下裁剪到 step 的整数倍（避免 float 精度噪声）；step 为空或非正时原样返回。"""
    if step is None or float(step) <= 0:
        return float(value)
    sd = Decimal(str(step))
    n = (Decimal(str(value)) / sd).to_integral_value(rounding=ROUND_FLOOR)
    decs = decimals_from_step(float(step))
    out = (n * sd).quantize(Decimal(1).scaleb(-decs))
    return float(out)
