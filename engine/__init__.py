"""引擎层：数据源、执行账本与逐 bar 交易循环。

`TradingEngine.run() -> EngineResult` 是唯一对外入口，由 `build_trading_engine` 按配置组装；
命令行入口在仓库根目录 `main.py`。
"""
