# bus_sequencer/core/instruction.py
"""
Core Layer (命令モデル)

このモジュールは、シーケンサプログラムの1スロットを表す命令データを定義します。
命令は閉じたバリアント（Write, Read, Branch, Goto, Label, Invalid）であり、
全てのクラスは不変のデータクラスです。
"""
from dataclasses import dataclass, field
from typing import List, Optional


# @intent:responsibility 全ての命令に共通する基底データを定義します。
# @intent:rationale lineは診断表示専用であり、比較（==）には含めません。
@dataclass(frozen=True)
class Instruction:
    """
    プログラム中の1スロットを占める命令の基底クラス。
    """
    line: int = field(default=0, compare=False, kw_only=True)  # 1始まりのソース行番号 (0 = 不明)

    @property
    def mnemonic(self) -> str:
        return type(self).__name__.upper()

    def operands(self) -> List[str]:
        return []

    # @intent:responsibility トレース表示用の1行テキストを返します。
    def describe(self) -> str:
        ops = self.operands()
        if ops:
            return f"{self.mnemonic} " + ", ".join(ops)
        return self.mnemonic


@dataclass(frozen=True)
class Write(Instruction):
    address: int
    value: int

    def operands(self) -> List[str]:
        return [f"${self.address:X}", f"${self.value:X}"]


# @intent:responsibility バス読み出し命令。
# @intent:rationale expectedはスクリプト上の参考値であり、制御フローには使用しません。
@dataclass(frozen=True)
class Read(Instruction):
    address: int
    expected: Optional[int] = None

    def operands(self) -> List[str]:
        ops = [f"${self.address:X}"]
        if self.expected is not None:
            ops.append(f"${self.expected:X}")
        return ops


@dataclass(frozen=True)
class Branch(Instruction):
    target_label: str
    compare_value: int

    def operands(self) -> List[str]:
        return [self.target_label, f"${self.compare_value:X}"]


@dataclass(frozen=True)
class Goto(Instruction):
    target_label: str

    def operands(self) -> List[str]:
        return [self.target_label]


# @intent:responsibility ジャンプ先を示すマーカー。スロットを占有しますが実行はされません。
@dataclass(frozen=True)
class Label(Instruction):
    name: str

    def describe(self) -> str:
        return f"{self.name}:"


# @intent:responsibility 解析できなかった行を診断用に保持します。
@dataclass(frozen=True)
class Invalid(Instruction):
    raw_text: str

    def describe(self) -> str:
        return f"INVALID {self.raw_text!r}"
