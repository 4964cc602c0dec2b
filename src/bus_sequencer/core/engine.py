# bus_sequencer/core/engine.py
"""
Core Layer (実行エンジン)

このモジュールは、ロード済みプログラムを1ティックずつ解釈し、
バスハンドシェイク（Idle → Setup → Access → Idle）を駆動する同期ステートマシンを提供します。

プログラムカウンタは「完了時に進める」方式です。
Idleからの制御転送、またはAccessでのトランザクション完了時にのみ変化します。
"""
from dataclasses import replace
from enum import Enum
from typing import NamedTuple, Optional, Sequence
import logging

from bus_sequencer.common.types import Program, SymbolTable
from bus_sequencer.core.instruction import Instruction, Write, Read, Branch, Goto, Invalid
from bus_sequencer.core.snapshot import TickSnapshot
from bus_sequencer.core.state import (
    EngineState, TransactionState, RunStatus, PendingTransaction,
    UnresolvedLabel, SlaveError, InvalidInstruction,
)
from bus_sequencer.core.supervisor import HaltSupervisor
from bus_sequencer.transport.bus import BusAccess, BusAccessType
from bus_sequencer.transport.protocol import BusRequest, BusResponse, Responder, IDLE_REQUEST

logger = logging.getLogger(__name__)


# @intent:responsibility Branch命令の条件判定方式を定義します。
class BranchMode(Enum):
    EQUAL = "equal"      # last_read_value == compare_value
    NONZERO = "nonzero"  # last_read_value != 0 (比較値は無視)


# @intent:responsibility Invalid命令を実行時にどう扱うかを定義します。
class InvalidPolicy(Enum):
    SKIP = "skip"
    HALT = "halt"


# @intent:responsibility tick()の再入呼び出しを検出した際に送出します。
class ReentrantTickError(RuntimeError):
    pass


class _Step(NamedTuple):
    state: EngineState
    instruction: Optional[Instruction] = None
    response: Optional[BusResponse] = None
    retired: Optional[BusAccess] = None


# @intent:responsibility プログラムを解釈し、バスプロトコルを駆動するステートマシン。
class ExecutionEngine:
    """
    外部クロックから1エッジにつき1回 tick() を呼び出して駆動します。
    各ティックは現在の状態のスナップショットから次の状態を計算し、最後に一括で確定します。

    Program と SymbolTable は実行中に変更されないため、モニタなどと参照を共有して構いません。
    """
    def __init__(self, program: Sequence[Instruction], symbols: SymbolTable, responder: Responder,
                 branch_mode: BranchMode = BranchMode.EQUAL,
                 invalid_policy: InvalidPolicy = InvalidPolicy.SKIP):
        if not isinstance(responder, Responder):
            raise TypeError("Responder must be an instance of a class derived from Responder.")
        self._program: Program = tuple(program)
        self._symbols: SymbolTable = dict(symbols)
        self._responder = responder
        self._branch_mode = branch_mode
        self._invalid_policy = invalid_policy
        self._state = EngineState()
        self._supervisor = HaltSupervisor()
        self._tick_count = 0
        self._in_tick = False

    # @intent:responsibility LoadedProgramからエンジンを生成する簡易コンストラクタ。
    @classmethod
    def from_loaded(cls, loaded, responder: Responder, **options) -> "ExecutionEngine":
        return cls(loaded.program, loaded.symbols, responder, **options)

    @property
    def program(self) -> Program:
        return self._program

    @property
    def symbols(self) -> SymbolTable:
        return self._symbols

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def pc(self) -> int:
        return self._state.pc

    @property
    def last_read_value(self) -> int:
        return self._state.last_read_value

    @property
    def phase(self) -> TransactionState:
        return self._state.phase

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def supervisor(self) -> HaltSupervisor:
        return self._supervisor

    # @intent:responsibility ハーネス向けのステータス参照。何度呼んでも副作用はありません。
    @property
    def status(self) -> RunStatus:
        return self._supervisor.status

    @property
    def is_halted(self) -> bool:
        return self._supervisor.is_halted

    # @intent:responsibility 現在確定している状態が駆動している送信側信号を返します。
    @property
    def bus_request(self) -> BusRequest:
        return self._request_for(self._state)

    @staticmethod
    def _request_for(state: EngineState) -> BusRequest:
        pending = state.pending
        if pending is None:
            return IDLE_REQUEST
        request = BusRequest.setup(pending.address, pending.write, pending.write_data)
        return request.access() if pending.enable else request

    # @intent:responsibility エンジンを1ステップ進め、その結果のスナップショットを返します。
    # @intent:rationale 状態の確定はティックの最後の1箇所のみで行い、同一ティック内で書いた値を読むことはありません。
    def tick(self) -> TickSnapshot:
        """
        停止後の呼び出しは状態を変更しません。
        tick() の中から tick() を呼び出すと ReentrantTickError を送出します。
        """
        if self._in_tick:
            raise ReentrantTickError("tick() must not be called re-entrantly.")
        self._in_tick = True
        try:
            current = self._state
            if current.phase is TransactionState.HALTED or current.status.is_terminal:
                step = _Step(current)
            elif current.phase is TransactionState.IDLE:
                step = self._tick_idle(current)
            elif current.phase is TransactionState.SETUP:
                step = self._tick_setup(current)
            else:
                step = self._tick_access(current)

            # Commit
            self._state = step.state
            self._supervisor.commit(step.state.status)
            self._tick_count += 1
        finally:
            self._in_tick = False

        symbol_info = ""
        if step.instruction is not None:
            symbol_info = f"[{current.pc}] {step.instruction.describe()}"
        return TickSnapshot(
            tick=self._tick_count,
            state=step.state,
            instruction=step.instruction,
            request=self._request_for(step.state),
            response=step.response,
            retired=step.retired,
            symbol_info=symbol_info,
        )

    def _halt(self, state: EngineState, status: RunStatus) -> EngineState:
        return state.replace(phase=TransactionState.HALTED, status=status, pending=None, wait_ticks=0)

    # @intent:responsibility Idle: 命令をフェッチしてディスパッチします。
    def _tick_idle(self, s: EngineState) -> _Step:
        if s.pc >= len(self._program):
            return _Step(self._halt(s, RunStatus.done()))

        instruction = self._program[s.pc]

        if isinstance(instruction, Write):
            pending = PendingTransaction(instruction.address, write=True, write_data=instruction.value)
            return _Step(s.replace(phase=TransactionState.SETUP, pending=pending), instruction)

        if isinstance(instruction, Read):
            pending = PendingTransaction(instruction.address, write=False)
            return _Step(s.replace(phase=TransactionState.SETUP, pending=pending), instruction)

        if isinstance(instruction, Goto):
            return _Step(self._jump(s, instruction.target_label), instruction)

        if isinstance(instruction, Branch):
            if self._branch_taken(s.last_read_value, instruction.compare_value):
                return _Step(self._jump(s, instruction.target_label), instruction)
            return _Step(s.replace(pc=s.pc + 1), instruction)

        if isinstance(instruction, Invalid) and self._invalid_policy is InvalidPolicy.HALT:
            return _Step(self._halt(s, RunStatus.error(InvalidInstruction(instruction.raw_text))), instruction)

        # Label / Invalid: fetch-through
        return _Step(s.replace(pc=s.pc + 1), instruction)

    def _branch_taken(self, last_read_value: int, compare_value: int) -> bool:
        if self._branch_mode is BranchMode.NONZERO:
            return last_read_value != 0
        return last_read_value == compare_value

    # @intent:responsibility ラベルを解決してPCを移動します。未定義なら致命的エラーで停止します。
    def _jump(self, s: EngineState, label: str) -> EngineState:
        target = self._symbols.get(label)
        if target is None:
            return self._halt(s, RunStatus.error(UnresolvedLabel(label)))
        return s.replace(pc=target)

    # @intent:responsibility Setup: アドレスフェーズを完了させ、無条件でAccessへ遷移します。
    def _tick_setup(self, s: EngineState) -> _Step:
        pending = replace(s.pending, enable=True)
        return _Step(s.replace(phase=TransactionState.ACCESS, pending=pending, wait_ticks=0),
                     self._program[s.pc])

    # @intent:responsibility Access: ピアの ready を待ち、トランザクションを完了させます。
    # @intent:rationale タイムアウトは持ちません。ウォッチドッグはハーネスの責務です。
    def _tick_access(self, s: EngineState) -> _Step:
        instruction = self._program[s.pc]
        request = self._request_for(s)
        response = self._responder.access(request)

        if not response.ready:
            return _Step(s.replace(wait_ticks=s.wait_ticks + 1), instruction, response)

        access_type = BusAccessType.WRITE if request.write else BusAccessType.READ
        if response.slave_error:
            retired = BusAccess(request.address, 0, access_type, s.wait_ticks, slave_error=True)
            return _Step(self._halt(s, RunStatus.error(SlaveError(request.address))),
                         instruction, response, retired)

        if request.write:
            data = request.write_data
            last_read_value = s.last_read_value
        else:
            data = response.read_data
            last_read_value = response.read_data
            if isinstance(instruction, Read) and instruction.expected is not None \
                    and instruction.expected != data:
                logger.debug("Read %#06x returned %#x (script expects %#x)",
                             request.address, data, instruction.expected)

        logger.debug("Retired %s %#06x data=%#x after %d wait state(s)",
                     access_type.value, request.address, data, s.wait_ticks)
        retired = BusAccess(request.address, data, access_type, s.wait_ticks)
        next_state = s.replace(
            pc=s.pc + 1,
            last_read_value=last_read_value,
            phase=TransactionState.IDLE,
            pending=None,
            wait_ticks=0,
        )
        return _Step(next_state, instruction, response, retired)
