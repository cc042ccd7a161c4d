"""交易引擎（TradingEngine）：回测 / 纸面 / 实盘共用的逐 bar 循环。

目标是“一眼能看懂”：数据源 → 信号引擎 → 执行引擎 → 权益曲线 → 总结。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from broker.abstract_broker import BrokerMode, OrderBackend
from broker.live_broker import LiveBackend
from broker.paper_broker import SimulatedBackend
from database.candle_store import CandleStore, PostgresCandleStore
from database.dataset_store import ParquetCandleStore
from engine.base_engine import BaseEngine, EngineResult
from engine.data_feed import BacktestDataFeed, LiveDataFeed
from engine.execution_engine import ExecutionEngine
from market.client import BinanceClient
from market_data.synchronizer import CandleSynchronizer
from shared.config.schema import DatabaseConfig, ExchangeConfig, MainConfig, StrategyConfig
from shared.errors import BackendError, SyncCancelledError, ValidationError
from shared.models.models import Candle, OrderIntent, OrderSide, Signal, TradingPair
from shared.utils.cancellation import CancelToken
from shared.utils.logging import setup_logger
from strategy.bollinger import BollingerSignalEngine
from strategy.exit_policies import build_exit_policy
from utils.metrics import compute_equity_metrics
from utils.trade_logger import TradeLogger


class TradingEngine(BaseEngine):
    """逐 bar 驱动：快照账户 → 生成信号 → 按仓位规则下单 → 按收盘价重估权益。

    Parameters
    ----------
    feed:
        `BacktestDataFeed` 或 `LiveDataFeed`。
    position_size_percent:
        买入时动用现金的比例。
    min_trade_amount:
        买入金额低于该值时跳过。
    max_bars:
        最多处理的 bar 数（实盘调试用）。
    """

    def __init__(
        self,
        *,
        feed: BacktestDataFeed | LiveDataFeed,
        signal_engine: BollingerSignalEngine,
        execution_engine: ExecutionEngine,
        trading_pair: TradingPair,
        position_size_percent: float = 0.95,
        min_trade_amount: float = 10.0,
        max_bars: int | None = None,
        token: CancelToken | None = None,
    ):
        if not 0 < position_size_percent <= 1:
            raise ValueError("position_size_percent must be in (0, 1]")
        self.feed = feed
        self.signal_engine = signal_engine
        self.execution = execution_engine
        self.trading_pair = trading_pair
        self.position_size_percent = position_size_percent
        self.min_trade_amount = min_trade_amount
        self.max_bars = max_bars
        self.token = token or CancelToken()
        self.logger = setup_logger("engine")
        self.equity_curve: list[tuple[int, float]] = []
        self.signals: list[Signal] = []
        self.bars_processed = 0
        self.startup_drift: dict[str, float] | None = None

    def stop(self) -> None:
        self.token.cancel()

    def run(self) -> EngineResult:
        self.logger.info(
            "Engine start: %s mode=%s params=%s",
            self.trading_pair.symbol, self.execution.backend.mode.value, self.signal_engine.params,
        )
        self._maybe_startup_reconcile()
        try:
            for candle in self.feed.stream(self.token):
                self.on_bar(candle)
                if self.max_bars is not None and self.bars_processed >= self.max_bars:
                    break
        except SyncCancelledError:
            self.logger.warning("Engine cancelled after %s bars", self.bars_processed)
        return EngineResult(summary=self._build_summary(), artifacts={"equity_curve": list(self.equity_curve)})

    def _maybe_startup_reconcile(self) -> None:
        """实盘启动时与交易所账户对账一次（只记录偏差，不修改账本）。"""
        if self.execution.backend.mode != BrokerMode.LIVE:
            return
        self.startup_drift = self.execution.reconcile()
        self.logger.info("Startup reconcile drift: %s", self.startup_drift)

    def on_bar(self, candle: Candle) -> None:
        self.token.raise_if_cancelled()
        portfolio = self.execution.get_portfolio()
        for signal in self.signal_engine.on_candle(candle, portfolio):
            self.signals.append(signal)
            self._handle_signal(signal, candle)
        after = self.execution.mark_to_market(candle.close, candle.open_time)
        self.equity_curve.append((candle.open_time, after.equity))
        self.bars_processed += 1

    def _handle_signal(self, signal: Signal, candle: Candle) -> None:
        portfolio = self.execution.get_portfolio()
        price = candle.close
        if signal.side == OrderSide.BUY:
            amount = portfolio.cash * self.position_size_percent
            if amount < self.min_trade_amount:
                self.logger.info("Skip BUY: amount %.4f below min_trade_amount %.4f", amount, self.min_trade_amount)
                return
            quantity = amount / price
        else:
            if 0 < signal.strength <= 1:
                quantity = portfolio.position * signal.strength
            else:
                quantity = portfolio.position
            if quantity <= 0:
                return

        intent = OrderIntent(
            trading_pair=self.trading_pair,
            quantity=quantity,
            price=price,
            reason=signal.reason,
            timestamp=candle.open_time,
        )
        try:
            if signal.side == OrderSide.BUY:
                self.execution.buy(intent)
            else:
                self.execution.sell(intent)
        except ValidationError as exc:
            self.logger.warning("Order rejected: %s", exc)
        except BackendError as exc:
            self.logger.error("Order backend failed: %s", exc)

    def _build_summary(self) -> dict[str, Any]:
        stats = self.execution.get_statistics()
        metrics = compute_equity_metrics(self.equity_curve)
        return {
            "symbol": self.trading_pair.symbol,
            "mode": self.execution.backend.mode.value,
            "bars": self.bars_processed,
            "signals": len(self.signals),
            **stats,
            "max_drawdown": metrics["max_drawdown"],
            "sharpe": metrics["sharpe"],
        }


# ---- 组装 ----


def build_store(cfg: DatabaseConfig) -> CandleStore:
    if cfg.backend == "postgres":
        store = PostgresCandleStore(cfg.dsn, batch_size=cfg.batch_size)
        store.ensure_schema()
        return store
    return ParquetCandleStore(cfg.data_dir)


def build_client(cfg: ExchangeConfig) -> BinanceClient:
    return BinanceClient(
        base_url=cfg.base_url,
        api_key=cfg.api_key,
        api_secret=cfg.api_secret,
        recv_window=cfg.recv_window,
        timeout_secs=cfg.timeout_secs,
        page_limit=cfg.page_limit,
    )


def build_backend(cfg: MainConfig, client: BinanceClient, trading_pair: TradingPair) -> OrderBackend:
    mode_map = {
        "backtest": BrokerMode.BACKTEST,
        "paper": BrokerMode.PAPER,
        "live": BrokerMode.LIVE,
    }
    mode = mode_map[cfg.mode]
    if mode == BrokerMode.LIVE:
        return LiveBackend(client, trading_pair, allow_live=cfg.exchange.allow_live)
    return SimulatedBackend(mode=mode)


def build_signal_engine(cfg: StrategyConfig) -> BollingerSignalEngine:
    exit_policy = None
    if cfg.exit_policy is not None:
        exit_policy = build_exit_policy(cfg.exit_policy.name, cfg.exit_policy.params)
    return BollingerSignalEngine(
        period=cfg.period,
        multiplier=cfg.multiplier,
        stop_loss_percent=cfg.stop_loss_percent,
        take_profit_percent=cfg.take_profit_percent,
        cooldown_bars=cfg.cooldown_bars,
        exit_policy=exit_policy,
    )


def build_trading_engine(
    cfg: MainConfig,
    *,
    candles: Iterable[Candle] | None = None,
    synchronizer: CandleSynchronizer | None = None,
    client: BinanceClient | None = None,
    max_bars: int | None = None,
    token: CancelToken | None = None,
) -> TradingEngine:
    """根据配置组装交易引擎。

    回测模式需传入 candles；纸面/实盘模式使用 synchronizer 轮询最新 K 线。
    """
    client = client or build_client(cfg.exchange)
    trading_pair = TradingPair.parse(cfg.symbol)
    backend = build_backend(cfg, client, trading_pair)
    trade_logger = TradeLogger(Path(cfg.execution.trade_log_dir)) if cfg.execution.trade_log_dir else None
    execution = ExecutionEngine(
        backend,
        initial_capital=cfg.execution.initial_capital,
        commission_rate=cfg.execution.commission_rate,
        trade_logger=trade_logger,
    )

    if cfg.mode == "backtest":
        if candles is None:
            raise ValueError("backtest mode requires candles")
        feed: BacktestDataFeed | LiveDataFeed = BacktestDataFeed(candles)
    else:
        if synchronizer is None:
            synchronizer = CandleSynchronizer(build_store(cfg.database), client)
        feed = LiveDataFeed(
            synchronizer,
            cfg.symbol,
            cfg.timeframe,
            poll_secs=cfg.live.poll_secs,
            warmup_bars=cfg.live.warmup_bars,
        )

    return TradingEngine(
        feed=feed,
        signal_engine=build_signal_engine(cfg.strategy),
        execution_engine=execution,
        trading_pair=trading_pair,
        position_size_percent=cfg.execution.position_size_percent,
        min_trade_amount=cfg.execution.min_trade_amount,
        max_bars=max_bars,
        token=token,
    )
