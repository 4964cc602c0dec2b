# bus_sequencer/transport/bus.py
"""
Transport Layer (デモ用ピア: アドレスマップ付きバス)

このモジュールは、シーケンサの要求に応答するアドレスマップ付きバスと、
そこに接続されるデバイス群を提供します。
バスはアドレスに応じてアクセスを適切なデバイスに委譲し、
ウェイトステートの挿入とスレーブエラーへの変換を担当します。
"""
from abc import ABC, abstractmethod
from typing import List, Tuple, Optional, Sequence
from dataclasses import dataclass
from enum import Enum
import logging

from bus_sequencer.transport.protocol import BusRequest, BusResponse, Responder, WAIT_RESPONSE

logger = logging.getLogger(__name__)

# @intent:data_structure デバイス内部の障害として扱う例外型。Busはこれらをslave_errorに変換します。
DEVICE_FAULTS = (IndexError, ValueError, OSError)


# @intent:responsibility バスアクセスを記録するためのタイプを定義します。
class BusAccessType(Enum):
    READ = "READ"
    WRITE = "WRITE"


# @intent:responsibility 完了した個々のバストランザクションを記録します。
@dataclass(frozen=True)
class BusAccess:
    """
    バス上で完了した単一のトランザクションを記録するデータクラス。
    slave_error がTrueの場合、data は意味を持ちません。
    """
    address: int
    data: int
    access_type: BusAccessType
    wait_states: int = 0
    slave_error: bool = False


# @intent:responsibility バスの抽象デバイスインターフェースを定義します。
class Device(ABC):
    """
    バスに接続されるデバイスの抽象基底クラス。
    全てのデバイスはreadとwriteのインターフェースを実装する必要があります。
    アドレスはデバイス内でのオフセットとして扱われます。
    """
    @abstractmethod
    def read(self, address: int) -> int:
        pass

    @abstractmethod
    def write(self, address: int, data: int) -> None:
        pass

    # @intent:responsibility 指定オフセットへのアクセスで挿入するウェイトステート数を返します。
    def wait_states(self, address: int, write: bool) -> int:
        return 0


# @intent:responsibility 基本的なレジスタファイル（RAM）デバイスの機能を提供します。
class RAM(Device):
    """
    1アドレス1ワードのRAMデバイス。ワード幅は data_width ビットです。
    """
    # @intent:pre-condition sizeは正の整数、wait_statesは0以上である必要があります。
    def __init__(self, size: int, data_width: int = 32, wait_states: int = 0):
        if not isinstance(size, int) or size <= 0:
            raise ValueError("RAM size must be a positive integer.")
        if data_width <= 0:
            raise ValueError("Data width must be a positive integer.")
        if wait_states < 0:
            raise ValueError("Wait states must be non-negative.")
        self._memory: List[int] = [0] * size
        self._size = size
        self._data_width = data_width
        self._wait_states = wait_states

    def read(self, address: int) -> int:
        if not 0 <= address < self._size:
            raise IndexError(f"Address {address} out of bounds for {type(self).__name__} of size {self._size}.")
        return self._memory[address]

    def write(self, address: int, data: int) -> None:
        if not 0 <= address < self._size:
            raise IndexError(f"Address {address} out of bounds for {type(self).__name__} of size {self._size}.")
        self._store(address, data)

    # @intent:responsibility 範囲とデータ幅を検証した上でメモリへ格納します。
    def _store(self, address: int, data: int) -> None:
        if not 0 <= data < (1 << self._data_width):
            raise ValueError(f"Data {data:#x} is not a {self._data_width}-bit value.")
        self._memory[address] = data

    def wait_states(self, address: int, write: bool) -> int:
        return self._wait_states

    def get_size(self) -> int:
        return self._size


# @intent:responsibility 読み込み専用のレジスタ領域（ROM）を提供します。
# @intent:rationale 読み込み専用領域への書き込みは、実機のペリフェラルと同様にスレーブエラーとして通知します。
class ROM(RAM):
    """
    読み込み専用デバイス。通常の write は PermissionError となります。
    初期化には load_data を使用します。
    """
    def write(self, address: int, data: int) -> None:
        if not 0 <= address < self._size:
            raise IndexError(f"Address {address} out of bounds for ROM of size {self._size}.")
        raise PermissionError(f"Write to read-only offset {address:#x}.")

    # @intent:responsibility ROMの内容を初期化するためのバックドアメソッドです。
    def load_data(self, address: int, data: int) -> None:
        if not 0 <= address < self._size:
            raise IndexError(f"Address {address} out of bounds for ROM of size {self._size}.")
        self._store(address, data)


# @intent:responsibility 読み出しごとに決められた値の列を順に返すデバイスです。
# @intent:rationale ステータスレジスタのポーリングなど、時間とともに変化する応答を再現するために使用します。
class ScriptedDevice(Device):
    """
    読み出しのたびに values を先頭から順に返し、最後の値以降はその値を返し続けます。
    書き込まれた値は writes に (offset, data) として記録されます。
    """
    def __init__(self, values: Sequence[int], wait_states: int = 0):
        if wait_states < 0:
            raise ValueError("Wait states must be non-negative.")
        self._values = list(values)
        self._index = 0
        self._wait_states = wait_states
        self.writes: List[Tuple[int, int]] = []

    def read(self, address: int) -> int:
        if not self._values:
            return 0
        value = self._values[min(self._index, len(self._values) - 1)]
        self._index += 1
        return value

    def write(self, address: int, data: int) -> None:
        self.writes.append((address, data))

    def wait_states(self, address: int, write: bool) -> int:
        return self._wait_states

    # @intent:responsibility これまでに行われた読み出し回数を返します。
    @property
    def read_count(self) -> int:
        return self._index


# @intent:responsibility 全てのアクセスでエラーを返すデバイスです。故障注入に使用します。
class ErrorDevice(Device):
    def read(self, address: int) -> int:
        raise OSError(f"Device fault on read at offset {address:#x}.")

    def write(self, address: int, data: int) -> None:
        raise OSError(f"Device fault on write at offset {address:#x}.")


# @intent:responsibility アドレス空間を管理し、シーケンサからの要求をデバイスへディスパッチするピア。
# @intent:rationale 完了した全てのトランザクションを記録し、テストとトレース表示の観測点とします。
class Bus(Responder):
    """
    メモリマップを管理し、Accessフェーズの要求をデバイスへディスパッチするバス。
    デバイスのウェイトステートを数え、障害や未マップアドレスはslave_errorとして返します。
    """
    def __init__(self):
        # メモリマップ: (start_address, end_address, device, label) のタプルリスト
        self._memory_map: List[Tuple[int, int, Device, str]] = []
        self._bus_activity_log: List[BusAccess] = []
        self._history: List[BusAccess] = []
        # 実行中トランザクションと残りウェイト数
        self._pending: Optional[BusRequest] = None
        self._wait_remaining: int = 0
        self._wait_total: int = 0

    def _log_access(self, access: BusAccess) -> None:
        self._bus_activity_log.append(access)
        self._history.append(access)

    # @intent:responsibility 記録されたバスアクティビティログを取得し、クリアします。
    def get_and_clear_activity_log(self) -> List[BusAccess]:
        log = self._bus_activity_log
        self._bus_activity_log = []
        return log

    # @intent:responsibility 起動以降に完了した全トランザクションを返します。
    def get_history(self) -> List[BusAccess]:
        return list(self._history)

    # @intent:responsibility 指定されたアドレス範囲にデバイスを登録します。
    # @intent:rationale アドレス範囲の重複チェックは行いません。先に登録されたデバイスが優先されます。
    def register_device(self, start_address: int, end_address: int, device: Device, label: str = "") -> None:
        """
        指定されたアドレス範囲にデバイスを登録します。
        アドレス範囲の重複チェックは行いません。呼び出し元が責任を持ちます。
        """
        if not (0 <= start_address <= end_address):
            raise ValueError("Invalid address range: start_address must be <= end_address and non-negative.")
        if not isinstance(device, Device):
            raise TypeError("Device must be an instance of a class derived from Device.")

        if isinstance(device, RAM):
            expected_size = end_address - start_address + 1
            if device.get_size() != expected_size:
                raise ValueError(
                    f"Registered {type(device).__name__} device size ({device.get_size()} words) does not match "
                    f"the specified address range size ({expected_size} words)."
                )

        self._memory_map.append((start_address, end_address, device, label))

    def _find_device(self, address: int) -> Tuple[Device, int]:
        for start, end, device, _ in self._memory_map:
            if start <= address <= end:
                return device, address - start
        raise IndexError(f"Address {address:#06x} not mapped to any device.")

    # @intent:responsibility アドレスを含むリージョンのラベルを返します。未マップまたはラベルなしの場合は空文字列です。
    def region_name(self, address: int) -> str:
        for start, end, _, label in self._memory_map:
            if start <= address <= end:
                return label
        return ""

    # @intent:responsibility Accessフェーズの要求1ティック分に応答します。
    # @intent:pre-condition 同一トランザクションの間、requestは毎ティック同じ値で再送されます。
    def access(self, request: BusRequest) -> BusResponse:
        if request != self._pending:
            self._begin(request)

        if self._wait_remaining > 0:
            self._wait_remaining -= 1
            return WAIT_RESPONSE

        self._pending = None
        return self._complete(request)

    def _begin(self, request: BusRequest) -> None:
        self._pending = request
        try:
            device, offset = self._find_device(request.address)
        except IndexError:
            self._wait_remaining = 0
        else:
            self._wait_remaining = device.wait_states(offset, request.write)
        self._wait_total = self._wait_remaining

    def _complete(self, request: BusRequest) -> BusResponse:
        access_type = BusAccessType.WRITE if request.write else BusAccessType.READ
        try:
            device, offset = self._find_device(request.address)
            if request.write:
                device.write(offset, request.write_data)
                data = request.write_data
            else:
                data = device.read(offset)
        except DEVICE_FAULTS as e:
            label = self.region_name(request.address)
            where = f" in {label}" if label else ""
            logger.warning("Slave error at %#06x%s: %s", request.address, where, e)
            self._log_access(BusAccess(request.address, 0, access_type, self._wait_total, slave_error=True))
            return BusResponse(ready=True, read_data=0, slave_error=True)

        self._log_access(BusAccess(request.address, data, access_type, self._wait_total))
        return BusResponse(ready=True, read_data=0 if request.write else data)

    # @intent:responsibility ログを記録せずに指定されたアドレスからデータを読み出します。
    def peek(self, address: int) -> int:
        """
        指定されたアドレスのデータを読み出します（ログ記録なし、ウェイトなし）。
        ScriptedDeviceの場合は読み出しが進むため、検査用途では注意してください。
        """
        device, offset = self._find_device(address)
        return device.read(offset)

    # @intent:responsibility 初期値設定用に、プロトコルを経由せずデバイスへ直接書き込みます。
    def load(self, address: int, data: int) -> None:
        device, offset = self._find_device(address)
        if isinstance(device, ROM):
            device.load_data(offset, data)
        else:
            device.write(offset, data)
