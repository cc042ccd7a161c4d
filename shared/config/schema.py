"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在实盘或长回测中“隐蔽爆炸”。
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from market_data.timeframes import interval_ms


class ExchangeConfig(BaseModel):
    """交易所配置。"""
    name: str = "binance"
    base_url: str = "https://api.binance.com"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    allow_live: bool = False
    recv_window: int = 5000
    timeout_secs: float = 5.0
    page_limit: int = Field(default=1000, gt=0, le=1000)

    model_config = ConfigDict(extra="forbid")


class DatabaseConfig(BaseModel):
    """K 线存储配置：postgres 或本地 parquet。"""
    backend: Literal["postgres", "parquet"] = "parquet"
    dsn: Optional[str] = None
    data_dir: str = "dataset/candles"
    batch_size: int = Field(default=100, gt=0)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_dsn(self) -> "DatabaseConfig":
        if self.backend == "postgres" and not self.dsn:
            raise ValueError("database.dsn is required when backend=postgres")
        return self


class ExitPolicyConfig(BaseModel):
    """卖出策略：预设名或类型 + 覆盖参数。"""
    name: str = "moderate"
    params: Dict[str, float] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class StrategyConfig(BaseModel):
    """布林带策略参数。"""
    period: int = Field(default=20, gt=0)
    multiplier: float = Field(default=2.0, gt=0)
    stop_loss_percent: float = Field(default=1.0, gt=0)
    take_profit_percent: float = Field(default=0.2, gt=0)
    cooldown_bars: int = Field(default=1, ge=0)
    exit_policy: Optional[ExitPolicyConfig] = None

    model_config = ConfigDict(extra="forbid")


class ExecutionConfig(BaseModel):
    """执行/账本参数。"""
    initial_capital: float = Field(default=10000.0, ge=0)
    commission_rate: float = Field(default=0.001, ge=0, lt=1)
    position_size_percent: float = Field(default=0.95, gt=0, le=1)
    min_trade_amount: float = Field(default=10.0, ge=0)
    trade_log_dir: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class BacktestConfig(BaseModel):
    """回测区间（ISO 日期/时间或毫秒时间戳）。"""
    start: Any = None
    end: Any = None

    model_config = ConfigDict(extra="forbid")


class LiveConfig(BaseModel):
    poll_secs: float = Field(default=5.0, gt=0)
    warmup_bars: int = Field(default=100, ge=0)

    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    symbol: str
    timeframe: str
    mode: Literal["backtest", "paper", "live"] = "backtest"
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    live: LiveConfig = Field(default_factory=LiveConfig)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _normalize_mode(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("mode"), str):
            data = {**data, "mode": data["mode"].strip().lower().replace("-", "_")}
        return data

    @model_validator(mode="after")
    def _check_live(self) -> "MainConfig":
        if interval_ms(self.timeframe) is None:
            raise ValueError(f"Unsupported timeframe: {self.timeframe}")
        if self.mode == "live" and not (self.exchange.api_key and self.exchange.api_secret):
            raise ValueError("exchange.api_key/api_secret are required when mode=live")
        return self
