# bus_sequencer/loader/loader.py
"""
プログラムローダーモジュール。

シーケンサスクリプトの論理行を解析し、命令列（Program）とシンボルテーブルを生成します。
解析は2パスで行います。

1. トークン化パス: 各行を命令に変換します。解析できない行は Invalid となり、診断が記録されます。
2. 解決パス: Label 命令を走査し、ラベル名からスロット番号へのテーブルを構築します。

ジャンプ先ラベルの参照はロード時には解決せず、実行時に遅延解決します。
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
import logging
import re

from bus_sequencer.common.types import Program, SymbolTable
from bus_sequencer.core.instruction import Instruction, Write, Read, Branch, Goto, Label, Invalid

logger = logging.getLogger(__name__)

COMMENT_MARKERS = (";", "#", "//")
LABEL_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


# @intent:responsibility ロード時の診断の基底例外。通常は送出されず LoadedProgram.errors に収集されます。
class LoadError(ValueError):
    def __init__(self, message: str, line: int = 0):
        if line:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class UnparseableLineError(LoadError):
    def __init__(self, line_text: str, detail: str, line: int = 0):
        super().__init__(f"{detail}: {line_text!r}", line)
        self.line_text = line_text


# @intent:rationale 重複したラベルは最初の宣言を採用し、2つ目以降は診断のみとします。
class DuplicateLabelError(LoadError):
    def __init__(self, name: str, first_index: int, line: int = 0):
        super().__init__(f"Label {name!r} already declared at slot {first_index}", line)
        self.name = name
        self.first_index = first_index


# @intent:responsibility ロード結果（プログラム、シンボルテーブル、診断）を保持します。
@dataclass(frozen=True)
class LoadedProgram:
    program: Program
    symbols: SymbolTable
    errors: Tuple[LoadError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors

    def __len__(self) -> int:
        return len(self.program)


# @intent:responsibility シーケンサスクリプトを解析し、LoadedProgramを生成するローダー。
class ProgramLoader:
    """
    文法: [label ':'] opcode operand*
      write addr data / read addr [data] / branch label data / goto label
    opcode は大文字小文字を区別しません。数値は default_radix で解釈され、
    0x / $ 接頭辞と h 接尾辞は常に16進数です。
    """
    def __init__(self, default_radix: int = 16, strict: bool = False):
        if default_radix not in (10, 16):
            raise ValueError(f"Unsupported default radix: {default_radix}")
        self._default_radix = default_radix
        self._strict = strict

    # @intent:responsibility ファイルを読み込み、論理行としてロードします。
    def load_file(self, file_path: str) -> LoadedProgram:
        with open(file_path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
        logger.debug("Loading %d line(s) from %s", len(lines), file_path)
        return self.load_lines(lines)

    # @intent:responsibility 論理行の列からプログラムとシンボルテーブルを構築します。
    # @intent:post-condition strict=False の場合、例外を送出せず全ての行を処理します。
    def load_lines(self, lines: Iterable[str]) -> LoadedProgram:
        errors: List[LoadError] = []

        # First pass: tokenize
        program: List[Instruction] = []
        for line_num, text in enumerate(lines, 1):
            program.extend(self._tokenize_best_effort(text, line_num, errors))

        # Second pass: resolve labels
        symbols: SymbolTable = {}
        for index, instruction in enumerate(program):
            if not isinstance(instruction, Label):
                continue
            if instruction.name in symbols:
                errors.append(DuplicateLabelError(instruction.name, symbols[instruction.name], instruction.line))
                continue
            symbols[instruction.name] = index

        errors.sort(key=lambda e: e.line)
        for error in errors:
            logger.warning("%s", error)
        if self._strict and errors:
            raise errors[0]

        return LoadedProgram(program=tuple(program), symbols=symbols, errors=tuple(errors))

    def _tokenize_best_effort(self, text: str, line_num: int, errors: List[LoadError]) -> List[Instruction]:
        label, body = self._split_label(self._strip_comment(text))
        result: List[Instruction] = []
        if label is not None:
            result.append(Label(label, line=line_num))
        if not body:
            return result
        try:
            result.append(self._parse_instruction(body, line_num))
        except UnparseableLineError as e:
            errors.append(e)
            result.append(Invalid(body, line=line_num))
        return result

    # @intent:responsibility 1行を命令のリストに変換します（ラベル付きの行は2命令になります）。
    # @intent:post-condition 解析できない場合は UnparseableLineError を送出します。
    def tokenize_line(self, text: str, line: int = 0) -> List[Instruction]:
        label, body = self._split_label(self._strip_comment(text))
        result: List[Instruction] = []
        if label is not None:
            result.append(Label(label, line=line))
        if body:
            result.append(self._parse_instruction(body, line))
        return result

    @staticmethod
    def _strip_comment(text: str) -> str:
        stripped = text.strip()
        if not stripped or stripped.startswith(COMMENT_MARKERS):
            return ""
        for marker in COMMENT_MARKERS:
            pos = stripped.find(marker)
            if pos != -1:
                stripped = stripped[:pos]
        return stripped.strip()

    @staticmethod
    def _split_label(text: str) -> Tuple[Optional[str], str]:
        if not text:
            return None, ""
        parts = text.split(None, 1)
        head = parts[0]
        if head.endswith(":") and LABEL_PATTERN.match(head[:-1]):
            rest = parts[1].strip() if len(parts) > 1 else ""
            return head[:-1], rest
        return None, text

    def _parse_instruction(self, text: str, line: int) -> Instruction:
        tokens = text.split()
        opcode = tokens[0].lower()
        operands = tokens[1:]

        if opcode == "write":
            self._expect_count(text, operands, 2, 2, line)
            return Write(self._parse_int(operands[0], text, line), self._parse_int(operands[1], text, line), line=line)
        if opcode == "read":
            self._expect_count(text, operands, 1, 2, line)
            expected = self._parse_int(operands[1], text, line) if len(operands) > 1 else None
            return Read(self._parse_int(operands[0], text, line), expected, line=line)
        if opcode == "branch":
            self._expect_count(text, operands, 2, 2, line)
            return Branch(self._parse_label(operands[0], text, line), self._parse_int(operands[1], text, line), line=line)
        if opcode == "goto":
            self._expect_count(text, operands, 1, 1, line)
            return Goto(self._parse_label(operands[0], text, line), line=line)

        raise UnparseableLineError(text, f"Unknown opcode {tokens[0]!r}", line)

    @staticmethod
    def _expect_count(text: str, operands: List[str], low: int, high: int, line: int) -> None:
        if not low <= len(operands) <= high:
            expected = str(low) if low == high else f"{low}-{high}"
            raise UnparseableLineError(text, f"Expected {expected} operand(s), got {len(operands)}", line)

    @staticmethod
    def _parse_label(token: str, text: str, line: int) -> str:
        if not LABEL_PATTERN.match(token):
            raise UnparseableLineError(text, f"Invalid label reference {token!r}", line)
        return token

    # @intent:utility_function 多様な数値表現（$, 0x, h）を非負整数に変換します。
    def _parse_int(self, token: str, text: str, line: int) -> int:
        try:
            if token.startswith("$"):
                value = int(token[1:], 16)
            elif token.lower().startswith("0x"):
                value = int(token, 16)
            elif len(token) > 1 and token[-1] in "hH":
                value = int(token[:-1], 16)
            else:
                value = int(token, self._default_radix)
        except ValueError:
            raise UnparseableLineError(text, f"Invalid integer {token!r}", line) from None
        if value < 0:
            raise UnparseableLineError(text, f"Negative value {token!r}", line)
        return value
