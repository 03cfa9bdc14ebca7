from trader.backtest.engine import (
    EXIT_END_OF_DATA,
    ReplayReport,
    export_trade_log,
    run_replay,
    run_replay_from_csv,
)

__all__ = [
    "EXIT_END_OF_DATA",
    "ReplayReport",
    "export_trade_log",
    "run_replay",
    "run_replay_from_csv",
]
