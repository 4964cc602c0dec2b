# bus_sequencer/core/state.py
"""
Core Layer (実行状態)

このモジュールは、ExecutionEngineの1ティックごとの状態を保持するデータ構造を定義します。
状態は不変であり、各ティックは現在の状態から次の状態を計算し、
ティックの最後にまとめて置き換えます（同期レジスタと同じ意味論）。
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


# @intent:responsibility バスハンドシェイクのフェーズを定義します。
class TransactionState(Enum):
    IDLE = "IDLE"
    SETUP = "SETUP"
    ACCESS = "ACCESS"
    HALTED = "HALTED"


# @intent:responsibility 実行の終了状態フラグを定義します。DONEとERRORは吸収状態です。
class RunState(Enum):
    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"


# @intent:responsibility 実行を停止させた致命的エラーの理由の基底クラス。
@dataclass(frozen=True)
class RunError:
    def describe(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class UnresolvedLabel(RunError):
    name: str

    def describe(self) -> str:
        return f"UnresolvedLabel({self.name!r})"


@dataclass(frozen=True)
class SlaveError(RunError):
    address: int

    def describe(self) -> str:
        return f"SlaveError({self.address:#06x})"


# @intent:responsibility invalid_policy=halt の場合にのみ使用されるエラー理由。
@dataclass(frozen=True)
class InvalidInstruction(RunError):
    raw_text: str

    def describe(self) -> str:
        return f"InvalidInstruction({self.raw_text!r})"


# @intent:responsibility ハーネスに公開される実行ステータスを保持します。
@dataclass(frozen=True)
class RunStatus:
    """
    state が ERROR の場合のみ reason が設定されます。
    """
    state: RunState = RunState.RUNNING
    reason: Optional[RunError] = None

    @classmethod
    def running(cls) -> "RunStatus":
        return cls(RunState.RUNNING)

    @classmethod
    def done(cls) -> "RunStatus":
        return cls(RunState.DONE)

    @classmethod
    def error(cls, reason: RunError) -> "RunStatus":
        return cls(RunState.ERROR, reason)

    @property
    def is_terminal(self) -> bool:
        return self.state is not RunState.RUNNING

    def __str__(self) -> str:
        if self.reason is not None:
            return f"{self.state.value}: {self.reason.describe()}"
        return self.state.value


# @intent:responsibility 実行中のバストランザクションをラッチします。
@dataclass(frozen=True)
class PendingTransaction:
    address: int
    write: bool
    write_data: int = 0
    enable: bool = False  # アドレスフェーズ完了（Setupを通過済み）


# @intent:responsibility ExecutionEngineの全レジスタを1つの不変値として保持します。
@dataclass(frozen=True)
class EngineState:
    """
    pc は [0, len(program)] の範囲を取り、len(program) は「終端を越えた」ことを示します。
    last_read_value は最後に完了したReadのデータで、Read実行前は0です。
    """
    pc: int = 0
    last_read_value: int = 0
    phase: TransactionState = TransactionState.IDLE
    pending: Optional[PendingTransaction] = None
    status: RunStatus = RunStatus()
    wait_ticks: int = 0  # 現在のAccessフェーズで ready を待ったティック数

    # @intent:responsibility 一部のフィールドを変更した新しい状態を返します。
    def replace(self, **changes) -> "EngineState":
        return replace(self, **changes)
