"""Compilation errors reported by the compiler, mapped back onto user code.

Compiler diagnostics arrive as parsed JSON (dicts, lists, strings, numbers).
Missing or mistyped fields are treated as absent rather than raising.
"""

from __future__ import annotations

import enum
import itertools
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from crateval.code_block import (
    CodeBlock,
    CodeKind,
    CommandCall,
    OriginalUserCode,
    OtherGeneratedCode,
    Segment,
    UserCodeInfo,
    count_columns,
    is_user_supplied,
)

_SKIPPED_MESSAGE_PREFIXES = (
    "aborting due to",
    "For more information about",
    "Some errors occurred",
)

_EXTRA_NOTES = {
    "E0384": "You can change an existing variable to mutable like: `let mut x = x;`",
    "E0596": "You can change an existing variable to mutable like: `let mut x = x;`",
}

_EXTRA_HINTS = {
    "E0597": "Values assigned to variables in Evcxr cannot contain references "
    "(unless they're static)",
}

# Indices into the 256-colour terminal palette used for report labels.
_PALETTE = (33, 208, 40, 199, 141, 220, 51, 167, 75, 113)


def _field(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, dict) else None


def _item(value: Any, index: int) -> Any:
    if isinstance(value, list) and 0 <= index < len(value):
        return value[index]
    return None


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_usize(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


def _as_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _as_list(value: Any) -> list[Any] | None:
    return value if isinstance(value, list) else None


def _json_is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float)):
        return value == 0
    return len(value) == 0


def _lines(text: str) -> list[str]:
    """Split into lines; a trailing newline adds no empty line, ``\\r\\n`` counts as one."""
    pieces = text.split("\n")
    if pieces[-1] == "":
        pieces.pop()
    return [piece[:-1] if piece.endswith("\r") else piece for piece in pieces]


class Theme(enum.Enum):
    """Terminal background the report colours are chosen for."""

    LIGHT = "light"
    DARK = "dark"


@dataclass(frozen=True)
class Span:
    """A region of the original user code.

    Lines and columns are 1-based; ``end_column`` is exclusive.
    """

    start_line: int
    start_column: int
    end_line: int
    end_column: int

    @classmethod
    def from_command(
        cls, command: CommandCall, start_column: int, end_column: int
    ) -> Span:
        return cls(command.line_number, start_column, command.line_number, end_column)

    @classmethod
    def from_segment(cls, segment: Segment, start: int, end: int) -> Span | None:
        """Span of byte range ``start..end`` within ``segment``, if it is user code."""
        if not isinstance(segment.kind, OriginalUserCode):
            return None
        meta = segment.kind.metadata
        start_line, start_column = line_and_column(
            segment.code, start, meta.column_offset, meta.start_line
        )
        end_line, end_column = line_and_column(
            segment.code, end, meta.column_offset, meta.start_line
        )
        return cls(start_line, start_column, end_line, end_column)


def line_and_column(
    text: str, position: int, first_line_column_offset: int, start_line: int
) -> tuple[int, int]:
    """1-based line and column of byte ``position`` within ``text``."""
    prefix = text.encode("utf-8")[:position].decode("utf-8")
    lines = _lines(prefix)
    line = len(lines)
    column = (count_columns(lines[-1]) if lines else 0) + 1
    if line == 1:
        column += first_line_column_offset
    return start_line + line - 1, column


def span_to_byte_range(source: str, span: Span) -> tuple[int, int]:
    """Byte range in ``source`` covered by ``span``, as ``(start, end)``."""

    def offset(line_number: int, column: int) -> int:
        before = sum(
            len(line.encode("utf-8")) for line in _lines(source)[: line_number - 1]
        )
        return before + column + line_number - 2

    return (
        offset(span.start_line, span.start_column),
        offset(span.end_line, span.end_column),
    )


def sanitize_message(message: str) -> str:
    """Replace references to the internal variable store with ``<end of input>``."""
    return message.replace("`evcxr_variable_store`", "<end of input>")


def _spans_in_local_source(span: Any) -> Any:
    file_name = _as_str(_field(span, "file_name"))
    if file_name is not None and file_name.endswith("lib.rs"):
        return span
    expansion = _field(span, "expansion")
    if isinstance(expansion, dict):
        return _spans_in_local_source(_field(expansion, "span"))
    return None


def _code_origins_for_span(
    span: Any, code_block: CodeBlock
) -> list[tuple[CodeKind, int]]:
    local = _spans_in_local_source(span)
    if local is None:
        return []
    line_start = _as_usize(_field(local, "line_start"))
    line_end = _as_usize(_field(local, "line_end"))
    if line_start is None or line_end is None:
        return []
    return [code_block.origin_for_line(line) for line in range(line_start, line_end + 1)]


def _code_origins(json_value: Any, code_block: CodeBlock) -> list[CodeKind]:
    return [
        origin
        for span in _as_list(_field(json_value, "spans")) or []
        for origin, _ in _code_origins_for_span(span, code_block)
    ]


@dataclass
class SpannedMessage:
    """A message attached to an optional span of user code."""

    span: Span | None
    lines: list[str] = field(default_factory=list)
    label: str = ""
    is_primary: bool = False

    @classmethod
    def from_json(
        cls, span_json: Any, code_block: CodeBlock, fallback_label: str | None
    ) -> SpannedMessage:
        span = cls._user_span(span_json, code_block)
        if span is None:
            expansion_span = _field(_field(span_json, "expansion"), "span")
            if not _json_is_empty(expansion_span):
                message = cls.from_json(expansion_span, code_block, None)
                if message.span is not None:
                    outer_label = _as_str(_field(span_json, "label"))
                    if outer_label is not None:
                        message.label = outer_label
                    if _as_bool(_field(span_json, "is_primary")):
                        message.is_primary = True
                    return message
        label = _as_str(_field(span_json, "label"))
        if label is None:
            label = fallback_label or ""
        replacement = _as_str(_field(span_json, "suggested_replacement"))
        if replacement is not None:
            label += f": `{replacement}`"
        return cls(
            span=span,
            lines=[],
            label=label,
            is_primary=bool(_as_bool(_field(span_json, "is_primary"))),
        )

    @staticmethod
    def _user_span(span_json: Any, code_block: CodeBlock) -> Span | None:
        file_name = _as_str(_field(span_json, "file_name"))
        start_column = _as_usize(_field(span_json, "column_start"))
        end_column = _as_usize(_field(span_json, "column_end"))
        if file_name is None or start_column is None or end_column is None:
            return None
        if not file_name.endswith("lib.rs"):
            return None
        origins = _code_origins_for_span(span_json, code_block)
        if not origins:
            return None
        (start_kind, start_offset), (end_kind, end_offset) = origins[0], origins[-1]
        if not (
            isinstance(start_kind, OriginalUserCode)
            and isinstance(end_kind, OriginalUserCode)
        ):
            # Spans in generated code mean nothing to the user.
            return None
        start, end = start_kind.metadata, end_kind.metadata
        return Span(
            start_line=start.start_line + start_offset,
            start_column=start_column + (start.column_offset if start_offset == 0 else 0),
            end_line=end.start_line + end_offset,
            end_column=end_column + (end.column_offset if end_offset == 0 else 0),
        )

    @classmethod
    def from_segment_span(cls, segment: Segment, span: Span) -> SpannedMessage:
        return cls(
            span=span,
            lines=_lines(segment.code),
            label="",
            is_primary=True,
        )


def _build_spanned_messages(json_value: Any, code_block: CodeBlock) -> list[SpannedMessage]:
    only_one_span = False
    level_label = None
    level = _as_str(_field(json_value, "level"))
    if level is not None:
        if level != "error":
            # Helps and notes with several spans are not handled.
            only_one_span = True
        message = _as_str(_field(json_value, "message"))
        if message is not None:
            level_label = f"{level}: {message}"
    output: list[SpannedMessage] = []
    spans = _as_list(_field(json_value, "spans"))
    if spans is not None and (not only_one_span or len(spans) == 1):
        output = [
            SpannedMessage.from_json(span, code_block, level_label) for span in spans
        ]
    if any(message.span is not None for message in output):
        output = [message for message in output if message.span is not None]
    return output


@dataclass(frozen=True)
class ReportLabel:
    """A labelled byte range within a report's source."""

    file_name: str
    span: tuple[int, int]
    message: str
    color: int
    order: int = 10


@dataclass
class Report:
    """A diagnostic report ready to be rendered against its source."""

    file_name: str
    message: str
    code: str | None = None
    labels: list[ReportLabel] = field(default_factory=list)
    note: str | None = None
    kind: str = "error"
    offset: int = 0


def _colors(theme: Theme) -> Iterator[int]:
    for color in itertools.cycle(_PALETTE):
        yield 255 - color if theme is Theme.LIGHT else color


@dataclass
class CompilationError:
    """A single diagnostic, with spans translated into user-code coordinates."""

    message: str
    json: Any
    code_origins: list[CodeKind]
    spanned_messages: list[SpannedMessage]
    spanned_helps: list[SpannedMessage]
    level: str

    @classmethod
    def from_json(cls, json_value: Any, code_block: CodeBlock) -> CompilationError | None:
        """Build an error from a compiler message, or None if it is not a real error."""
        if isinstance(_field(json_value, "message"), dict):
            json_value = json_value["message"]
        code_origins = _code_origins(json_value, code_block)
        user_child = None
        for child in _as_list(_field(json_value, "children")) or []:
            child_origins = _code_origins(child, code_block)
            if not any(is_user_supplied(k) for k in code_origins) and any(
                is_user_supplied(k) for k in child_origins
            ):
                user_child = child
                code_origins = child_origins
                break
            code_origins.extend(child_origins)
        if user_child is not None:
            json_value = user_child

        message = _as_str(_field(json_value, "message"))
        if message is None or message.startswith(_SKIPPED_MESSAGE_PREFIXES):
            return None

        children = _as_list(_field(json_value, "children")) or []
        return cls(
            message=sanitize_message(message),
            json=json_value,
            code_origins=list(code_origins),
            spanned_messages=_build_spanned_messages(json_value, code_block),
            spanned_helps=[
                help_message
                for child in children
                for help_message in _build_spanned_messages(child, code_block)
            ],
            level=_as_str(_field(json_value, "level")) or "",
        )

    @classmethod
    def from_segment_span(
        cls, segment: Segment, spanned_message: SpannedMessage, message: str
    ) -> CompilationError:
        """A synthesised error covering part of ``segment``."""
        return cls(
            message=message,
            json=None,
            code_origins=[segment.kind],
            spanned_messages=[spanned_message],
            spanned_helps=[],
            level="error",
        )

    def fill_lines(self, code_info: UserCodeInfo) -> None:
        for spanned_message in self.spanned_messages:
            span = spanned_message.span
            if span is not None:
                spanned_message.lines.extend(
                    code_info.original_lines[span.start_line - 1 : span.end_line]
                )

    def is_from_user_code(self) -> bool:
        return any(is_user_supplied(kind) for kind in self.code_origins)

    def is_from_generated_code(self) -> bool:
        return OtherGeneratedCode() in self.code_origins

    def code(self) -> str | None:
        return _as_str(_field(_field(self.json, "code"), "code"))

    def explanation(self) -> str | None:
        return _as_str(_field(_field(self.json, "code"), "explanation"))

    def evcxr_extra_hint(self) -> str | None:
        code = self.code()
        return _EXTRA_HINTS.get(code) if code is not None else None

    def primary_spanned_message(self) -> SpannedMessage | None:
        """The primary message, else the first one, else None."""
        primary = next((m for m in self.spanned_messages if m.is_primary), None)
        if primary is not None:
            return primary
        return self.spanned_messages[0] if self.spanned_messages else None

    def help(self) -> list[str]:
        result = []
        for child in _as_list(_field(self.json, "children")) or []:
            if _as_str(_field(child, "level")) != "help":
                continue
            message = _as_str(_field(child, "message"))
            if message is None:
                continue
            replacement = _as_str(
                _field(_item(_field(child, "spans"), 0), "suggested_replacement")
            )
            if replacement is not None:
                message += "\n\n" + replacement.rstrip()
            result.append(message)
        return result

    def rendered(self) -> str:
        return _as_str(_field(self.json, "rendered")) or ""

    def build_report(self, file_name: str, source: str, theme: Theme) -> Report | None:
        """A report against ``source``; None if the source is not ASCII."""
        if not source.isascii():
            return None
        colors = _colors(theme)
        report = Report(file_name=file_name, message=self.message, code=self.code())
        notes = ""
        for spanned_message in [*self.spanned_messages, *self.spanned_helps]:
            if spanned_message.span is not None:
                if not spanned_message.label:
                    continue
                report.labels.append(
                    ReportLabel(
                        file_name=file_name,
                        span=span_to_byte_range(source, spanned_message.span),
                        message=spanned_message.label,
                        color=next(colors),
                    )
                )
            else:
                notes += spanned_message.label
        code = self.code()
        extra_note = _EXTRA_NOTES.get(code) if code is not None else None
        if extra_note is not None:
            report.note = extra_note
        elif notes:
            report.note = notes
        return report