# tests/core/test_engine.py
"""
bus_sequencer.core.engineモジュールの単体テスト。
ハンドシェイクの状態遷移、制御転送、バックプレッシャーとエラー停止を検証します。
"""
import pytest
from typing import List

from bus_sequencer.core.engine import ExecutionEngine, BranchMode, InvalidPolicy, ReentrantTickError
from bus_sequencer.core.instruction import Write, Read, Goto, Label, Invalid
from bus_sequencer.core.state import (
    TransactionState, RunState, RunStatus, UnresolvedLabel, SlaveError, InvalidInstruction,
)
from bus_sequencer.loader.loader import ProgramLoader
from bus_sequencer.transport.bus import Bus, RAM, ScriptedDevice, ErrorDevice, BusAccessType
from bus_sequencer.transport.protocol import BusRequest, BusResponse, Responder

# @intent:test_suite 実行エンジンのティック単位の振る舞いを検証します。


class StallingResponder(Responder):
    """
    各トランザクションで stall_ticks 回だけ ready を下げた後に応答するテスト用ピア。
    """
    def __init__(self, stall_ticks: int = 0, read_data: int = 0, slave_error: bool = False):
        self.stall_ticks = stall_ticks
        self.read_data = read_data
        self.slave_error = slave_error
        self.requests: List[BusRequest] = []
        self._remaining = stall_ticks

    def access(self, request: BusRequest) -> BusResponse:
        self.requests.append(request)
        if self._remaining > 0:
            self._remaining -= 1
            return BusResponse(ready=False)
        self._remaining = self.stall_ticks
        return BusResponse(ready=True, read_data=self.read_data, slave_error=self.slave_error)


def load(*lines: str):
    return ProgramLoader().load_lines(lines)


def run_to_halt(engine: ExecutionEngine, limit: int = 1000) -> int:
    ticks = 0
    while not engine.is_halted:
        engine.tick()
        ticks += 1
        assert ticks < limit, "engine did not halt"
    return ticks


@pytest.fixture
def ram_bus():
    bus = Bus()
    ram = RAM(0x100)
    bus.register_device(0x00, 0xFF, ram)
    return bus, ram


class TestScenarios:
    # @intent:test_case_scenario_a 単一のwriteが1トランザクションを発行し、DONEで終了することを検証します。
    def test_single_write_then_done(self, ram_bus):
        bus, ram = ram_bus
        engine = ExecutionEngine.from_loaded(load("write 10 AA"), bus)

        ticks = run_to_halt(engine)

        assert ticks == 4  # Idle, Setup, Access, Idle(終端)
        assert engine.status == RunStatus.done()
        assert ram.read(0x10) == 0xAA
        history = bus.get_history()
        assert len(history) == 1
        assert history[0].address == 0x10
        assert history[0].data == 0xAA
        assert history[0].access_type == BusAccessType.WRITE

    # @intent:test_case_scenario_b ポーリングループが2回分岐し、3回目の読み出しで抜けることを検証します。
    def test_polling_loop_falls_through_on_third_read(self):
        bus = Bus()
        status_reg = ScriptedDevice([0x00, 0x00, 0x01])
        ram = RAM(1)
        bus.register_device(0x04, 0x04, status_reg)
        bus.register_device(0x08, 0x08, ram)
        loaded = load("loop: read 04 00", "branch loop 00", "write 08 01")
        engine = ExecutionEngine.from_loaded(loaded, bus)

        run_to_halt(engine)

        assert engine.status.state is RunState.DONE
        assert status_reg.read_count == 3
        assert ram.read(0) == 0x01
        kinds = [(a.access_type, a.address) for a in bus.get_history()]
        assert kinds == [
            (BusAccessType.READ, 0x04),
            (BusAccessType.READ, 0x04),
            (BusAccessType.READ, 0x04),
            (BusAccessType.WRITE, 0x08),
        ]
        assert engine.last_read_value == 0x01

    # @intent:test_case_scenario_c 未定義ラベルへのgotoが最初のIdleティックで停止することを検証します。
    def test_goto_missing_label_halts_without_bus_traffic(self):
        peer = StallingResponder()
        engine = ExecutionEngine.from_loaded(load("goto missing"), peer)

        snapshot = engine.tick()

        assert engine.status == RunStatus.error(UnresolvedLabel("missing"))
        assert snapshot.state.phase is TransactionState.HALTED
        assert engine.tick_count == 1
        assert peer.requests == []

    # @intent:test_case_scenario_d スレーブエラーで停止し、後続命令が実行されないことを検証します。
    def test_slave_error_halts_run(self):
        bus = Bus()
        ram = RAM(0x10)
        bus.register_device(0x00, 0x0F, ram)
        bus.register_device(0x20, 0x20, ErrorDevice())
        engine = ExecutionEngine.from_loaded(load("write 20 01", "write 05 02"), bus)

        run_to_halt(engine)

        assert engine.status == RunStatus.error(SlaveError(0x20))
        assert engine.pc == 0
        assert ram.read(0x05) == 0
        assert len(bus.get_history()) == 1
        assert bus.get_history()[0].slave_error

    # @intent:test_case_scenario_e readyがN ティック下がっている間、AccessにN+1ティック留まりPCが変化しないことを検証します。
    @pytest.mark.parametrize("stall", [0, 1, 3, 7])
    def test_backpressure_holds_access(self, stall):
        peer = StallingResponder(stall_ticks=stall, read_data=0x5A)
        engine = ExecutionEngine.from_loaded(load("read 10"), peer)

        engine.tick()  # Idle -> Setup
        engine.tick()  # Setup -> Access
        access_ticks = 0
        while engine.phase is TransactionState.ACCESS:
            if access_ticks < stall:
                assert engine.pc == 0
            engine.tick()
            access_ticks += 1

        assert access_ticks == stall + 1
        assert engine.pc == 1
        assert engine.last_read_value == 0x5A
        assert len(peer.requests) == stall + 1
        assert all(r == peer.requests[0] for r in peer.requests)


class TestHandshake:
    # @intent:test_case_signals 各フェーズで駆動される select/enable 信号を検証します。
    def test_request_signals_per_phase(self):
        peer = StallingResponder()
        engine = ExecutionEngine.from_loaded(load("write 30 12"), peer)
        assert engine.bus_request.select is False

        setup = engine.tick()
        assert setup.state.phase is TransactionState.SETUP
        assert setup.request.select and not setup.request.enable
        assert setup.request.write and setup.request.address == 0x30 and setup.request.write_data == 0x12

        access = engine.tick()
        assert access.state.phase is TransactionState.ACCESS
        assert access.request.select and access.request.enable

        retired = engine.tick()
        assert retired.state.phase is TransactionState.IDLE
        assert retired.request.select is False
        assert retired.response.ready
        assert retired.retired.address == 0x30
        assert peer.requests[0].enable

    # @intent:test_case_write_keeps_last_read 書き込みの完了で last_read_value が変化しないことを検証します。
    def test_write_does_not_touch_last_read_value(self):
        peer = StallingResponder(read_data=0x77)
        engine = ExecutionEngine.from_loaded(load("read 00", "write 00 01"), peer)
        run_to_halt(engine)
        assert engine.last_read_value == 0x77

    # @intent:test_case_initial_state 初期状態のレジスタ値を検証します。
    def test_initial_state(self):
        engine = ExecutionEngine.from_loaded(load("read 00"), StallingResponder())
        assert engine.pc == 0
        assert engine.last_read_value == 0
        assert engine.phase is TransactionState.IDLE
        assert engine.status.state is RunState.RUNNING

    def test_empty_program_is_done_on_first_tick(self):
        engine = ExecutionEngine([], {}, StallingResponder())
        engine.tick()
        assert engine.status == RunStatus.done()

    def test_requires_responder(self):
        with pytest.raises(TypeError):
            ExecutionEngine([], {}, object())


class TestControlFlow:
    # @intent:test_case_goto_no_bus_cycle gotoとラベルがバスサイクルを消費しないことを検証します。
    def test_goto_and_label_consume_no_bus_cycle(self):
        peer = StallingResponder()
        engine = ExecutionEngine.from_loaded(load("goto end", "write 01 01", "end:"), peer)

        run_to_halt(engine)

        assert engine.status.state is RunState.DONE
        assert peer.requests == []
        assert engine.tick_count == 3  # goto, label, 終端

    # @intent:test_case_order_independence 前方参照と後方参照のラベル解決が同じ結果になることを検証します。
    def test_label_resolution_is_order_independent(self):
        forward_bus, backward_bus = Bus(), Bus()
        forward_bus.register_device(0, 0xFF, RAM(0x100))
        backward_bus.register_device(0, 0xFF, RAM(0x100))

        forward = ExecutionEngine.from_loaded(
            load("goto target", "write 01 FF", "target:", "write 02 AA"), forward_bus)
        backward = ExecutionEngine.from_loaded(
            load("goto skip", "target:", "write 02 AA", "goto end", "skip:", "goto target", "end:"), backward_bus)

        run_to_halt(forward)
        run_to_halt(backward)

        assert forward.status == backward.status == RunStatus.done()
        assert forward_bus.get_history() == backward_bus.get_history()
        assert [(a.address, a.data) for a in forward_bus.get_history()] == [(0x02, 0xAA)]

    def test_branch_not_taken_advances(self):
        peer = StallingResponder(read_data=0x03)
        engine = ExecutionEngine.from_loaded(load("read 00", "branch nowhere 04"), peer)
        run_to_halt(engine)
        assert engine.status == RunStatus.done()

    def test_taken_branch_to_missing_label_faults(self):
        peer = StallingResponder(read_data=0x04)
        engine = ExecutionEngine.from_loaded(load("read 00", "branch nowhere 04"), peer)
        run_to_halt(engine)
        assert engine.status == RunStatus.error(UnresolvedLabel("nowhere"))
        assert engine.pc == 1

    # @intent:test_case_branch_nonzero NONZEROモードでは比較値を無視して非ゼロで分岐することを検証します。
    def test_nonzero_branch_mode(self):
        peer = StallingResponder(read_data=0x01)
        engine = ExecutionEngine.from_loaded(
            load("read 00", "branch out 00", "write 00 01", "out:"), peer,
            branch_mode=BranchMode.NONZERO)
        run_to_halt(engine)
        assert engine.status == RunStatus.done()
        assert all(not r.write for r in peer.requests)

    def test_equal_branch_mode_ignores_nonzero(self):
        peer = StallingResponder(read_data=0x01)
        engine = ExecutionEngine.from_loaded(
            load("read 00", "branch out 00", "write 00 01", "out:"), peer)
        run_to_halt(engine)
        assert any(r.write for r in peer.requests)


class TestInvalidPolicy:
    def test_invalid_is_skipped_by_default(self):
        peer = StallingResponder()
        engine = ExecutionEngine([Invalid("bogus"), Write(1, 2)], {}, peer)
        run_to_halt(engine)
        assert engine.status == RunStatus.done()
        assert len(peer.requests) == 1

    def test_invalid_halts_with_halt_policy(self):
        peer = StallingResponder()
        engine = ExecutionEngine([Invalid("bogus"), Write(1, 2)], {}, peer,
                                 invalid_policy=InvalidPolicy.HALT)
        run_to_halt(engine)
        assert engine.status == RunStatus.error(InvalidInstruction("bogus"))
        assert peer.requests == []


class TestHaltBehaviour:
    # @intent:test_case_idempotent 停止後のティックが状態とステータスを変えないことを検証します。
    @pytest.mark.parametrize("lines", [("write 10 AA",), ("goto missing",)])
    def test_ticks_after_halt_are_noops(self, lines):
        peer = StallingResponder()
        engine = ExecutionEngine.from_loaded(load(*lines), peer)
        run_to_halt(engine)
        state = engine.state
        status = engine.status
        request_count = len(peer.requests)

        for _ in range(5):
            snapshot = engine.tick()
            assert snapshot.instruction is None

        assert engine.state == state
        assert engine.status == status == engine.status
        assert len(peer.requests) == request_count

    # @intent:test_case_atomic_commit 過去のスナップショットが後続ティックで変化しないことを検証します。
    def test_snapshots_are_immutable(self):
        engine = ExecutionEngine.from_loaded(load("write 01 01", "write 02 02"), StallingResponder())
        first = engine.tick()
        run_to_halt(engine)
        assert first.state.pc == 0
        assert first.state.phase is TransactionState.SETUP
        assert engine.state.pc == 2

    def test_reentrant_tick_is_rejected(self):
        class ReentrantResponder(Responder):
            engine = None

            def access(self, request):
                self.engine.tick()
                return BusResponse()

        peer = ReentrantResponder()
        engine = ExecutionEngine([Read(0)], {}, peer)
        peer.engine = engine
        engine.tick()
        engine.tick()
        with pytest.raises(ReentrantTickError):
            engine.tick()
        assert engine.phase is TransactionState.ACCESS

    def test_program_is_shared_read_only(self):
        loaded = load("a:", "goto a")
        engine = ExecutionEngine.from_loaded(loaded, StallingResponder())
        assert engine.program == loaded.program
        assert isinstance(engine.program, tuple)
        assert engine.program[0] == Label("a")
        assert engine.program[1] == Goto("a")
