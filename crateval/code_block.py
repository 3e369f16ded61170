"""Blocks of code made of segments that remember where each piece came from.

All offsets named ``*_byte`` or ``*offset`` are UTF-8 byte offsets, matching
the offsets reported by the compiler. Columns are counted in characters.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Union

from crateval.exceptions import EvalError

_COMMAND_RE = re.compile(r" *(:[^ ]*)( +(.*))?")


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _num_lines(code: str) -> int:
    return code.count("\n")


def count_columns(code: str) -> int:
    """Number of columns ``code`` occupies, counted in characters."""
    return len(code)


def _lines_with_offsets(text: str) -> list[tuple[str, int]]:
    """Split ``text`` into lines, each paired with the byte offset it starts at.

    A trailing newline does not produce an empty final line and a ``\\r``
    before a newline is not part of the line.
    """
    result = []
    offset = 0
    pieces = text.split("\n")
    if pieces and pieces[-1] == "":
        pieces.pop()
    for piece in pieces:
        line = piece[:-1] if piece.endswith("\r") else piece
        result.append((line, offset))
        offset += _byte_len(piece) + 1
    return result


@dataclass(frozen=True)
class UserCodeMetadata:
    """Where a piece of original user code came from."""

    start_byte: int
    node_index: int
    start_line: int
    column_offset: int


@dataclass(frozen=True)
class CommandCall:
    """A ``:command`` line written by the user."""

    command: str
    args: str | None
    start_byte: int
    line_number: int


@dataclass(frozen=True)
class OriginalUserCode:
    """Code supplied by the user; errors in it are reported to the user."""

    metadata: UserCodeMetadata


@dataclass(frozen=True)
class OtherUserCode:
    """User code for which offsets are not tracked."""


@dataclass(frozen=True)
class PackVariable:
    """Code that packs a variable into the variable store."""

    variable_name: str


@dataclass(frozen=True)
class WithFallback:
    """Code with a fallback block to use if it fails to compile."""

    fallback: CodeBlock


@dataclass(frozen=True)
class OtherGeneratedCode:
    """Generated code from which no errors are expected."""


@dataclass(frozen=True)
class Command:
    """A command line supplied by the user."""

    call: CommandCall


@dataclass(frozen=True)
class Unknown:
    """Code whose origin could not be determined."""


CodeKind = Union[
    OriginalUserCode,
    OtherUserCode,
    PackVariable,
    WithFallback,
    OtherGeneratedCode,
    Command,
    Unknown,
]


def is_user_supplied(kind: CodeKind) -> bool:
    """Whether code of this kind was written by the user."""
    return isinstance(kind, (OriginalUserCode, OtherUserCode, Command))


@dataclass(frozen=True)
class Statement:
    """One top-level statement found by a statement splitter.

    ``start_byte`` is relative to the text given to the splitter.
    """

    code: str
    start_byte: int
    node: Any = None


StatementSplitter = Callable[[str], Iterable[Statement]]


def _single_statement(code: str) -> Iterator[Statement]:
    """Treat all of ``code`` as one statement."""
    if code:
        yield Statement(code=code, start_byte=0, node=None)


@dataclass
class Segment:
    """A run of code of one kind, always ending in a newline."""

    kind: CodeKind
    code: str
    num_lines: int
    sequence: int | None = None

    @classmethod
    def create(cls, kind: CodeKind, code: str) -> Segment:
        if not code.endswith("\n"):
            code += "\n"
        return cls(kind=kind, code=code, num_lines=_num_lines(code))


@dataclass
class UserCodeInfo:
    """Syntax nodes and original lines of the code the user supplied."""

    nodes: list[Any]
    original_lines: list[str]


@dataclass
class CodeBlock:
    """An ordered list of segments that together make up a unit of code."""

    segments: list[Segment] = field(default_factory=list)

    def commit_old_user_code(self) -> None:
        for segment in self.segments:
            if isinstance(segment.kind, OriginalUserCode):
                segment.kind = OtherUserCode()

    def is_empty(self) -> bool:
        return not self.segments

    def segment_with_index(self, index: int) -> Segment | None:
        return next((s for s in self.segments if s.sequence == index), None)

    def with_segment(self, segment: Segment) -> CodeBlock:
        self.segments.append(segment)
        return self

    def with_code(self, kind: CodeKind, code: str) -> CodeBlock:
        self.segments.append(Segment.create(kind, code))
        return self

    def code_with_fallback(self, code: str, fallback: CodeBlock) -> CodeBlock:
        return self.with_code(WithFallback(fallback), code)

    def generated(self, code: str) -> CodeBlock:
        return self.with_code(OtherGeneratedCode(), code)

    def other_user_code(self, user_code: str) -> CodeBlock:
        return self.with_code(OtherUserCode(), user_code)

    @classmethod
    def from_original_user_code(
        cls,
        user_code: str,
        split_statements: StatementSplitter | None = None,
    ) -> tuple[CodeBlock, UserCodeInfo]:
        """Split user input into leading commands followed by statements.

        Commands are only recognised before the first line of code; blank
        lines and ``//`` comment lines between commands are skipped.
        """
        splitter = split_statements or _single_statement
        block = cls()
        nodes: list[Any] = []
        lines = _lines_with_offsets(user_code)
        encoded = user_code.encode("utf-8")

        for line_index, (line, line_start) in enumerate(lines):
            match = _COMMAND_RE.fullmatch(line)
            if match is not None:
                block.with_code(
                    Command(
                        CommandCall(
                            command=match.group(1),
                            args=match.group(3),
                            start_byte=line_start,
                            line_number=line_index + 1,
                        )
                    ),
                    line,
                )
            elif line.startswith("//") or not line.strip():
                continue
            else:
                block._add_statements(
                    splitter(encoded[line_start:].decode("utf-8")),
                    line_start,
                    lines,
                    nodes,
                )
                break

        for index, segment in enumerate(block.segments):
            segment.sequence = index
        return block, UserCodeInfo(
            nodes=nodes, original_lines=[line for line, _ in lines]
        )

    def _add_statements(
        self,
        statements: Iterable[Statement],
        base_byte: int,
        lines: list[tuple[str, int]],
        nodes: list[Any],
    ) -> None:
        current = 0
        current_line, current_start = lines[0]
        for statement in statements:
            code_start = base_byte + statement.start_byte
            while code_start >= current_start + _byte_len(current_line):
                current += 1
                current_line, current_start = lines[current]
            prefix = current_line.encode("utf-8")[: code_start - current_start]
            column_offset = count_columns(prefix.decode("utf-8"))
            self.with_code(
                OriginalUserCode(
                    UserCodeMetadata(
                        start_byte=code_start,
                        node_index=len(nodes),
                        start_line=current + 1,
                        column_offset=column_offset,
                    )
                ),
                statement.code,
            )
            nodes.append(statement.node)

    def command_containing_user_offset(
        self, user_code_offset: int
    ) -> tuple[Segment, int] | None:
        for segment in self.segments:
            if isinstance(segment.kind, Command):
                start = segment.kind.call.start_byte
                if start <= user_code_offset <= start + _byte_len(segment.code):
                    return segment, user_code_offset - start
        return None

    def user_offset_to_output_offset(self, user_code_offset: int) -> int:
        bytes_seen = 0
        for segment in self.segments:
            length = _byte_len(segment.code)
            if isinstance(segment.kind, OriginalUserCode):
                start = segment.kind.metadata.start_byte
                if start <= user_code_offset <= start + length:
                    return bytes_seen + user_code_offset - start
            bytes_seen += length
        raise EvalError(f"Offset {user_code_offset} doesn't refer to user code")

    def output_offset_to_user_offset(self, output_offset: int) -> int:
        bytes_seen = 0
        for segment in self.segments:
            length = _byte_len(segment.code)
            if isinstance(segment.kind, OriginalUserCode):
                if bytes_seen <= output_offset <= bytes_seen + length:
                    return segment.kind.metadata.start_byte + output_offset - bytes_seen
            bytes_seen += length
        raise EvalError(f"Output offset {output_offset} doesn't refer to user code")

    def load_variable(self, code: str) -> None:
        self.segments.append(Segment.create(OtherGeneratedCode(), code))

    def pack_variable(self, variable_name: str, code: str) -> None:
        self.segments.append(Segment.create(PackVariable(variable_name), code))

    def add_all(self, other: CodeBlock) -> CodeBlock:
        self.segments.extend(other.segments)
        return self

    def code_string(self) -> str:
        return "".join(segment.code for segment in self.segments)

    def origin_for_line(self, line_number: int) -> tuple[CodeKind, int]:
        """Kind of the segment holding 1-based ``line_number`` and the line within it."""
        if line_number == 0:
            return Unknown(), 0
        current = 1
        for segment in self.segments:
            if current + segment.num_lines > line_number:
                return segment.kind, line_number - current
            current += segment.num_lines
        return Unknown(), 0

    def apply_fallback(self, fallback: CodeBlock) -> None:
        """Replace segments whose fallback equals ``fallback`` with its segments."""
        replaced: list[Segment] = []
        for segment in self.segments:
            if isinstance(segment.kind, WithFallback) and segment.kind.fallback == fallback:
                replaced.extend(dataclasses.replace(s) for s in fallback.segments)
            else:
                replaced.append(segment)
        self.segments = replaced