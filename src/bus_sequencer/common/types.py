"""
共通の型定義を提供するモジュール。
Loader, Engine, Debuggerなど複数のレイヤーで共通して使用される型エイリアスを定義します。
"""
from typing import Dict, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from bus_sequencer.core.instruction import Instruction

# @intent:data_structure ラベル名とプログラムスロット番号をマッピングする辞書の型エイリアス。
# ラベル名は大文字小文字を区別します。
SymbolTable = Dict[str, int]

# @intent:data_structure ロード完了後のプログラム。不変のタプルとして扱います。
Program = Tuple["Instruction", ...]
