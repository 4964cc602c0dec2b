# src/bus_sequencer/app.py
"""
コマンドラインのエントリポイント。
スクリプトをロードし、構成ファイルに従って接続したバスに対して実行します。
"""
import argparse
import logging
import sys
from typing import List, Optional

import yaml

from bus_sequencer.config.loader import ConfigLoader
from bus_sequencer.config.models import SystemConfig
from bus_sequencer.config.builder import SystemBuilder
from bus_sequencer.core.state import RunState
from bus_sequencer.debugger.debugger import Debugger, WatchdogTimeoutError
from bus_sequencer.loader.loader import LoadError

EXIT_DONE = 0
EXIT_ERROR = 1
EXIT_LOAD_FAILED = 2
EXIT_WATCHDOG = 3

# CLIはデバッガの履歴を参照しないため、直近のみ保持する
HISTORY_LIMIT = 64


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bus-sequencer",
        description="Replay a bus-transaction script against a configured peer.",
    )
    parser.add_argument("script", help="sequencer script file")
    parser.add_argument("-c", "--config", help="YAML system configuration")
    parser.add_argument("--max-ticks", type=int, default=None,
                        help="watchdog limit (overrides sequencer.max_ticks)")
    parser.add_argument("--strict", action="store_true", help="fail on the first load diagnostic")
    parser.add_argument("--trace", action="store_true", help="print every tick")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    return parser


# @intent:responsibility アプリケーションを起動し、実行結果を終了コードとして返します。
def main(argv: Optional[List[str]] = None) -> int:
    """
    DONE なら 0、ERROR なら 1、ロードまたは構成の失敗なら 2、ウォッチドッグなら 3 を返します。
    """
    args = build_parser().parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    builder = SystemBuilder()
    try:
        config = ConfigLoader().load_from_file(args.config) if args.config else SystemConfig()
        if args.strict:
            config.sequencer.strict_load = True
        loaded = builder.build_loader(config).load_file(args.script)
        engine, bus = builder.build_system(config, loaded)
    except (LoadError, OSError, yaml.YAMLError, ValueError) as e:
        print(f"Load failed: {e}")
        return EXIT_LOAD_FAILED

    max_ticks = args.max_ticks if args.max_ticks is not None else config.sequencer.max_ticks
    debugger = Debugger(engine, history_limit=HISTORY_LIMIT)

    try:
        if args.trace:
            for _ in range(max_ticks):
                if engine.is_halted:
                    break
                snapshot = debugger.step_tick()
                print(f"{snapshot.tick:6d} {snapshot.state.phase.value:<7} pc={snapshot.state.pc:<4d} {snapshot.symbol_info}")
            if not engine.is_halted:
                raise WatchdogTimeoutError(max_ticks, debugger.get_last_snapshot())
        else:
            debugger.run(max_ticks=max_ticks)
    except WatchdogTimeoutError as e:
        print(f"Watchdog: {e}")
        return EXIT_WATCHDOG

    for access in bus.get_history():
        suffix = " SLVERR" if access.slave_error else ""
        print(f"{access.access_type.value:<5} {access.address:#06x} {access.data:#010x} wait={access.wait_states}{suffix}")
    print(f"Status: {engine.status} after {engine.tick_count} tick(s)")

    return EXIT_DONE if engine.status.state is RunState.DONE else EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
