"""因子注册表：字符串 -> 因子实现。"""

from __future__ import annotations

from typing import Any

import pandas as pd

from factors.base import Factor
from factors.bollinger import BollingerFactor

_REGISTRY: dict[str, type] = {}


def register_factor(name: str, cls: type) -> None:
    _REGISTRY[name] = cls


def get_factor_cls(name: str) -> type:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown factor: {name}")
    return _REGISTRY[name]


def build_factors(items: Any) -> list[Factor]:
    """从 `[{name: "bollinger", params: {...}}, ...]` 构建因子列表。"""
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("factors config must be a list")

    factors: list[Factor] = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("factor item must be a dict")
        name = str(item.get("name") or "")
        params = item.get("params") or {}
        if not name:
            raise ValueError("factor item missing name")
        cls = get_factor_cls(name)
        factors.append(cls(**params))
    return factors


def apply_factors(df: pd.DataFrame, factors: list[Factor]) -> pd.DataFrame:
    for f in factors:
        df = f.compute(df)
    return df


register_factor("bollinger", BollingerFactor)
