# bus_sequencer/debugger/debugger.py
"""
デバッガモジュール。

ExecutionEngineをティック単位で駆動するハーネスとして、
ユーザーが指定した条件（ブレークポイント）やウォッチドッグで実行を中断させる責務を負います。
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from bus_sequencer.core.engine import ExecutionEngine
from bus_sequencer.core.snapshot import TickSnapshot
from bus_sequencer.core.state import RunStatus, TransactionState
from bus_sequencer.transport.bus import BusAccessType

# @intent:responsibility ブレークポイントの条件タイプを定義します。
class BreakpointConditionType(Enum):
    PC_MATCH = "PC_MATCH"               # Idle状態でプログラムカウンタが特定のスロットに一致
    BUS_READ = "BUS_READ"               # 特定のアドレスからの読み出しが完了した
    BUS_WRITE = "BUS_WRITE"             # 特定のアドレスへの書き込みが完了した
    STATE_ENTER = "STATE_ENTER"         # 特定のハンドシェイクフェーズに遷移した
    READ_VALUE = "READ_VALUE"           # last_read_value が特定の値になった

# @intent:responsibility ブレークポイントをトリガーする条件を定義します。
@dataclass(frozen=True)
class BreakpointCondition:
    """
    ブレークポイントがヒットするための条件を定義するデータクラス。
    """
    condition_type: BreakpointConditionType
    value: Optional[int] = None                  # PC_MATCH, READ_VALUEで使用
    address: Optional[int] = None                # BUS_READ, BUS_WRITEで使用
    phase: Optional[TransactionState] = None     # STATE_ENTERで使用
    enabled: bool = True

# @intent:responsibility ウォッチドッグの上限ティック数を超えた際に送出します。
class WatchdogTimeoutError(RuntimeError):
    def __init__(self, ticks: int, snapshot: Optional[TickSnapshot]):
        super().__init__(f"Run did not halt within {ticks} tick(s).")
        self.ticks = ticks
        self.snapshot = snapshot

# @intent:responsibility ExecutionEngineの実行制御とブレークポイント管理を行います。
class Debugger:
    """
    エンジンの tick() を呼び出すハーネス。
    エンジン自体はタイムアウトを持たないため、max_ticks によるウォッチドッグはここで行います。
    """
    def __init__(self, engine: ExecutionEngine, history_limit: Optional[int] = None):
        self._engine = engine
        self._breakpoints: List[BreakpointCondition] = []
        self._running: bool = False
        self._history: List[TickSnapshot] = []
        self._history_limit = history_limit
        self._last_snapshot: Optional[TickSnapshot] = None

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    def add_breakpoint(self, condition: BreakpointCondition) -> None:
        if condition not in self._breakpoints:
            self._breakpoints.append(condition)

    def update_breakpoint(self, old_condition: BreakpointCondition, new_condition: BreakpointCondition) -> None:
        if old_condition in self._breakpoints:
            idx = self._breakpoints.index(old_condition)
            self._breakpoints[idx] = new_condition

    def remove_breakpoint(self, condition: BreakpointCondition) -> None:
        if condition in self._breakpoints:
            self._breakpoints.remove(condition)

    def get_breakpoints(self) -> List[BreakpointCondition]:
        return list(self._breakpoints)

    def get_history(self) -> List[TickSnapshot]:
        """
        これまでに実行したティックのスナップショットを古い順に返します。
        """
        return list(self._history)

    def get_last_snapshot(self) -> Optional[TickSnapshot]:
        return self._last_snapshot

    def _pc_breakpoint_hit(self) -> bool:
        state = self._engine.state
        if state.phase is not TransactionState.IDLE:
            return False
        for bp in self._breakpoints:
            if bp.enabled and bp.condition_type == BreakpointConditionType.PC_MATCH and bp.value == state.pc:
                return True
        return False

    def _check_other_breakpoints(self, snapshot: TickSnapshot, previous_phase: TransactionState) -> bool:
        """
        Snapshotに基づいてPC_MATCH以外のブレークポイントをチェックします。
        """
        retired = snapshot.retired
        state = snapshot.state

        for bp in self._breakpoints:
            if not bp.enabled:
                continue

            if bp.condition_type == BreakpointConditionType.BUS_READ:
                if retired and retired.access_type == BusAccessType.READ and retired.address == bp.address:
                    return True
            elif bp.condition_type == BreakpointConditionType.BUS_WRITE:
                if retired and retired.access_type == BusAccessType.WRITE and retired.address == bp.address:
                    return True
            elif bp.condition_type == BreakpointConditionType.STATE_ENTER:
                if state.phase is bp.phase and previous_phase is not bp.phase:
                    return True
            elif bp.condition_type == BreakpointConditionType.READ_VALUE:
                if retired and retired.access_type == BusAccessType.READ and state.last_read_value == bp.value:
                    return True
        return False

    def step_tick(self) -> TickSnapshot:
        """
        エンジンを1ティック進め、その結果のSnapshotを返します。
        """
        snapshot = self._engine.tick()
        self._last_snapshot = snapshot
        self._history.append(snapshot)
        if self._history_limit is not None and len(self._history) > self._history_limit:
            del self._history[0]
        return snapshot

    # @intent:responsibility 停止、ブレークポイント、またはウォッチドッグまで実行を継続します。
    def run(self, max_ticks: Optional[int] = None) -> RunStatus:
        """
        エンジンが停止するかブレークポイントにヒットするまでティックを進めます。
        max_ticks を超えても停止しない場合は WatchdogTimeoutError を送出します。
        """
        self._running = True
        ticks = 0

        # 現在位置のPCブレークポイントからは1ティック進めて再開する
        if not self._engine.is_halted and self._pc_breakpoint_hit():
            self._step_checked()
            ticks += 1

        while self._running and not self._engine.is_halted:
            if max_ticks is not None and ticks >= max_ticks:
                self._running = False
                raise WatchdogTimeoutError(ticks, self._last_snapshot)

            if self._pc_breakpoint_hit():
                self._running = False
                print(f"Breakpoint hit at PC: {self._engine.pc}")
                break

            self._step_checked()
            ticks += 1

        self._running = False
        return self._engine.status

    def _step_checked(self) -> None:
        previous_phase = self._engine.phase
        snapshot = self.step_tick()
        if self._check_other_breakpoints(snapshot, previous_phase):
            self._running = False
            print(f"Breakpoint hit at tick {snapshot.tick}: {snapshot.symbol_info}")

    def stop(self) -> None:
        self._running = False
