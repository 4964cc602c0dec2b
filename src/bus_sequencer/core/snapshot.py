# bus_sequencer/core/snapshot.py
"""
ティック実行結果の不変スナップショット

1ティック実行後のエンジン状態と、そのティックでバス上に現れた信号を記録します。
デバッガとトレース表示への情報提供に用います。
"""
from dataclasses import dataclass
from typing import Optional

from bus_sequencer.core.state import EngineState
from bus_sequencer.core.instruction import Instruction
from bus_sequencer.transport.protocol import BusRequest, BusResponse
from bus_sequencer.transport.bus import BusAccess


# @intent:responsibility ある1ティック終了時点のエンジンとバスの状態を不変に記録します。
@dataclass(frozen=True)
class TickSnapshot:
    """
    - tick: 1始まりの累計ティック番号
    - state: ティック終了時点で確定した状態
    - instruction: このティックで処理対象だった命令（停止後のティックではNone）
    - request: 確定後の状態が駆動している送信側信号
    - response: Accessフェーズでピアから受け取った応答（それ以外はNone）
    - retired: このティックで完了したトランザクション
    """
    tick: int
    state: EngineState
    instruction: Optional[Instruction]
    request: BusRequest
    response: Optional[BusResponse] = None
    retired: Optional[BusAccess] = None
    symbol_info: str = ""
