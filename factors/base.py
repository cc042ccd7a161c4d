"""因子协议。

因子只做纯计算：输入 K 线 DataFrame（列见 `database.dataset_store.CANDLE_COLUMNS`），
在原 DataFrame 上追加因子列后返回；导出 CSV 时按注册表依次应用。
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

import pandas as pd


class Factor(Protocol):
    name: str
    params: Mapping[str, Any]

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """追加因子列并返回 df；缺少所需列时抛 ValueError。"""
