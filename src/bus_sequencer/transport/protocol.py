# bus_sequencer/transport/protocol.py
"""
Transport Layer (バストランザクションプロトコル)

イニシエータ（ExecutionEngine）とレスポンダ（周辺デバイス側のピア）の間で交わされる
2フェーズのリクエスト/アクノリッジ・ハンドシェイクの信号を定義します。

- 送信側: select, address, write, write_data, enable
- 受信側: ready, read_data, slave_error

同時に実行中のトランザクションは常に1つだけです。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass


# @intent:responsibility イニシエータからピアへ向かう信号群を保持します。
# @intent:rationale 1ティック分の信号値を表すため不変とします。
@dataclass(frozen=True)
class BusRequest:
    """
    select はSetupからトランザクション完了までTrue、enable はAccess中のみTrueです。
    write_data は書き込みトランザクションでのみ意味を持ちます。
    """
    select: bool = False
    address: int = 0
    write: bool = False
    write_data: int = 0
    enable: bool = False

    # @intent:responsibility アドレスフェーズ（Setup）の信号を生成します。
    @classmethod
    def setup(cls, address: int, write: bool, write_data: int = 0) -> "BusRequest":
        return cls(select=True, address=address, write=write, write_data=write_data, enable=False)

    # @intent:responsibility 同じトランザクションのAccessフェーズ版を返します。
    def access(self) -> "BusRequest":
        return BusRequest(
            select=True,
            address=self.address,
            write=self.write,
            write_data=self.write_data,
            enable=True,
        )


# @intent:data_structure バスが何も駆動していない状態。
IDLE_REQUEST = BusRequest()


# @intent:responsibility ピアからイニシエータへ返される信号群を保持します。
@dataclass(frozen=True)
class BusResponse:
    """
    read_data と slave_error は ready がTrueのティックでのみ有効です。
    """
    ready: bool = True
    read_data: int = 0
    slave_error: bool = False


# @intent:data_structure ウェイトステート中の応答。
WAIT_RESPONSE = BusResponse(ready=False)


# @intent:responsibility バス要求に応答するピアのインターフェースを定義します。
class Responder(ABC):
    """
    バスの応答側の抽象基底クラス。
    ExecutionEngine は Access フェーズの各ティックで access() を1回だけ呼び出します。
    """
    # @intent:responsibility 1ティック分の要求を受け取り、応答信号を返します。
    # @intent:pre-condition request.select と request.enable はTrueです。
    @abstractmethod
    def access(self, request: BusRequest) -> BusResponse:
        """
        ready をFalseで返すとウェイトステートとなり、次のティックで同じ要求が再送されます。
        """
        pass
