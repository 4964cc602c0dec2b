# tests/core/test_snapshot.py
"""
bus_sequencer.core.snapshotモジュールの単体テスト。
"""
import pytest
from bus_sequencer.core.state import EngineState
from bus_sequencer.core.instruction import Write
from bus_sequencer.core.snapshot import TickSnapshot
from bus_sequencer.transport.bus import BusAccessType, BusAccess
from bus_sequencer.transport.protocol import IDLE_REQUEST, BusRequest, BusResponse

# @intent:test_suite エンジンとバスの状態を記録する不変スナップショットデータ構造の検証。

class TestBusAccess:
    """
    BusAccessデータクラスの単体テスト。
    """
    # @intent:test_case_init BusAccessが正しく初期化されることを検証します。
    def test_bus_access_init(self):
        access = BusAccess(address=0x1000, data=0xAA, access_type=BusAccessType.READ)
        assert access.address == 0x1000
        assert access.data == 0xAA
        assert access.access_type == BusAccessType.READ
        assert access.wait_states == 0
        assert access.slave_error is False

    # @intent:test_case_immutability BusAccessが不変であることを検証します。
    def test_bus_access_immutability(self):
        access = BusAccess(address=0x1000, data=0xAA, access_type=BusAccessType.READ)
        with pytest.raises(AttributeError):
            access.address = 0x2000

class TestTickSnapshot:
    """
    TickSnapshotデータクラスの単体テスト。
    """
    # @intent:test_case_defaults 省略可能なフィールドの既定値を検証します。
    def test_snapshot_defaults(self):
        snapshot = TickSnapshot(tick=1, state=EngineState(), instruction=None, request=IDLE_REQUEST)
        assert snapshot.response is None
        assert snapshot.retired is None
        assert snapshot.symbol_info == ""

    def test_snapshot_full(self):
        request = BusRequest.setup(0x10, write=True, write_data=0xAA).access()
        retired = BusAccess(0x10, 0xAA, BusAccessType.WRITE)
        snapshot = TickSnapshot(
            tick=3,
            state=EngineState(pc=1),
            instruction=Write(0x10, 0xAA),
            request=request,
            response=BusResponse(),
            retired=retired,
            symbol_info="[0] WRITE $10, $AA",
        )
        assert snapshot.state.pc == 1
        assert snapshot.retired == retired
        assert snapshot.request.enable

    # @intent:test_case_immutability Snapshotが不変であることを検証します。
    def test_snapshot_immutability(self):
        snapshot = TickSnapshot(tick=1, state=EngineState(), instruction=None, request=IDLE_REQUEST)
        with pytest.raises(AttributeError):
            snapshot.tick = 2
