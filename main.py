"""命令行入口。

子命令：

- `sync`：同步 K 线到本地存储（区间模式或最近 N 根），可导出带布林带列的 CSV。
- `backtest`：同步回测区间的 K 线后逐 bar 回测。
- `live`：纸面/实盘主循环（由配置 mode 决定，mode=backtest 时按 paper 运行）。
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from database.dataset_store import candles_to_frame
from engine.trading_engine import build_client, build_store, build_trading_engine
from factors.registry import apply_factors, build_factors
from market_data.synchronizer import CandleSynchronizer
from market_data.timeframes import to_millis
from shared.config.config_loader import load_config
from shared.config.schema import ExitPolicyConfig, MainConfig
from shared.errors import TradingCoreError
from shared.utils.cancellation import CancelToken
from shared.utils.logging import setup_logger
from strategy.exit_policies import parse_exit_params


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 子命令 (sync/backtest/live)
    """
    config: str
    task: str
    start: str | None = None
    end: str | None = None
    limit: int | None = None
    output: str | None = None
    exit_policy: str | None = None
    exit_params: str | None = None
    max_bars: int | None = None  # 仅用于调试：处理多少根 bar 后退出
    timeout: float | None = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bollinger-core", description="布林带现货策略核心")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument("--config", default=default, help="配置文件路径 (默认: config/config.yml)")

    def _add_exit_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--exit-policy", default=None, help="卖出策略预设或类型，如 trailing_5 / combo")
        p.add_argument("--exit-params", default=None, help="卖出策略参数，如 take_profit=0.3,min_profit=0.1")

    _add_config_arg(parser, default="config/config.yml")
    sub = parser.add_subparsers(dest="task")

    p_sync = sub.add_parser("sync", help="同步 K 线")
    _add_config_arg(p_sync, default=argparse.SUPPRESS)
    p_sync.add_argument("--start", default=None, help="起始时间（ISO 或毫秒）")
    p_sync.add_argument("--end", default=None, help="结束时间（ISO 或毫秒）")
    p_sync.add_argument("--limit", type=int, default=None, help="最近 N 根（与 --start/--end 互斥）")
    p_sync.add_argument("--output", default=None, help="导出 CSV 路径（附带布林带列）")
    p_sync.add_argument("--timeout", type=float, default=None, help="同步截止时间（秒）")

    p_bt = sub.add_parser("backtest", help="单次回测")
    _add_config_arg(p_bt, default=argparse.SUPPRESS)
    p_bt.add_argument("--start", default=None)
    p_bt.add_argument("--end", default=None)
    _add_exit_args(p_bt)

    p_live = sub.add_parser("live", help="纸面/实盘主循环")
    _add_config_arg(p_live, default=argparse.SUPPRESS)
    p_live.add_argument("--max-bars", type=int, default=None)
    _add_exit_args(p_live)

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "backtest",
        start=getattr(ns, "start", None),
        end=getattr(ns, "end", None),
        limit=getattr(ns, "limit", None),
        output=getattr(ns, "output", None),
        exit_policy=getattr(ns, "exit_policy", None),
        exit_params=getattr(ns, "exit_params", None),
        max_bars=getattr(ns, "max_bars", None),
        timeout=getattr(ns, "timeout", None),
    )


def _apply_exit_override(cfg: MainConfig, args: CliArgs) -> MainConfig:
    if not args.exit_policy and not args.exit_params:
        return cfg
    current = cfg.strategy.exit_policy or ExitPolicyConfig()
    policy = ExitPolicyConfig(
        name=args.exit_policy or current.name,
        params={**current.params, **parse_exit_params(args.exit_params)},
    )
    strategy = cfg.strategy.model_copy(update={"exit_policy": policy})
    return cfg.model_copy(update={"strategy": strategy})


def _resolve_range(cfg: MainConfig, args: CliArgs) -> tuple[int, int]:
    start = args.start or cfg.backtest.start
    end = args.end or cfg.backtest.end
    if start is None or end is None:
        raise ValueError("start/end required (CLI --start/--end or backtest.start/end)")
    return to_millis(start), to_millis(end)


def run_sync(cfg: MainConfig, args: CliArgs) -> dict[str, Any]:
    logger = setup_logger("cli")
    sync = CandleSynchronizer(build_store(cfg.database), build_client(cfg.exchange))
    token = CancelToken(args.timeout)
    if args.limit:
        candles = sync.fetch_latest(cfg.symbol, cfg.timeframe, args.limit, token=token)
    else:
        start, end = _resolve_range(cfg, args)
        candles = sync.fetch_range(cfg.symbol, cfg.timeframe, start, end, token=token)

    summary: dict[str, Any] = {
        "symbol": cfg.symbol,
        "timeframe": cfg.timeframe,
        "count": len(candles),
        "first_open_time": candles[0].open_time if candles else None,
        "last_open_time": candles[-1].open_time if candles else None,
    }
    if args.output:
        factors = build_factors(
            [{"name": "bollinger", "params": {"period": cfg.strategy.period, "multiplier": cfg.strategy.multiplier}}]
        )
        df = apply_factors(candles_to_frame(candles), factors)
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(out, index=False)
        summary["output"] = str(out)
        logger.info("Exported %s rows to %s", len(df), out)
    return summary


def run_backtest(cfg: MainConfig, args: CliArgs) -> dict[str, Any]:
    cfg = _apply_exit_override(cfg, args).model_copy(update={"mode": "backtest"})
    start, end = _resolve_range(cfg, args)
    client = build_client(cfg.exchange)
    sync = CandleSynchronizer(build_store(cfg.database), client)
    candles = sync.fetch_range(cfg.symbol, cfg.timeframe, start, end)
    engine = build_trading_engine(cfg, candles=candles, client=client)
    return engine.run().summary


def run_live(cfg: MainConfig, args: CliArgs) -> dict[str, Any]:
    cfg = _apply_exit_override(cfg, args)
    if cfg.mode == "backtest":
        cfg = cfg.model_copy(update={"mode": "paper"})
    engine = build_trading_engine(cfg, max_bars=args.max_bars)
    try:
        return engine.run().summary
    except KeyboardInterrupt:
        engine.stop()
        return {"stopped": True, "bars": engine.bars_processed, **engine.execution.get_statistics()}


def main(argv: list[str] | None = None) -> Any:
    args = parse_args(argv)
    cfg = load_config(args.config)

    if args.task == "sync":
        return run_sync(cfg, args)
    if args.task == "backtest":
        return run_backtest(cfg, args)
    if args.task == "live":
        return run_live(cfg, args)
    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    try:
        result = main()
    except (TradingCoreError, ValueError, FileNotFoundError) as exc:
        setup_logger("cli").error("%s", exc)
        sys.exit(1)
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
