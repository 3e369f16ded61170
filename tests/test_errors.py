import pytest

from crateval.code_block import CodeBlock, CommandCall, Command, Segment
from crateval.errors import (
    CompilationError,
    Span,
    SpannedMessage,
    Theme,
    line_and_column,
    sanitize_message,
    span_to_byte_range,
)
from crateval.exceptions import CompilationErrors

USER_CODE = "let x = 1;\nlet y = 2;"


def _block():
    user_block, info = CodeBlock.from_original_user_code(USER_CODE)
    block = CodeBlock().generated("g1").add_all(user_block)
    return block, info


def _span(line_start, line_end, col_start, col_end, file_name="src/lib.rs", **extra):
    span = {
        "file_name": file_name,
        "line_start": line_start,
        "line_end": line_end,
        "column_start": col_start,
        "column_end": col_end,
        "is_primary": True,
    }
    span.update(extra)
    return span


def _error_json(spans, **extra):
    value = {"message": "mismatched types", "level": "error", "spans": spans, "children": []}
    value.update(extra)
    return value


def test_sanitize_message_replaces_variable_store():
    assert (
        sanitize_message("expected `;`, found `evcxr_variable_store`")
        == "expected `;`, found <end of input>"
    )
    assert sanitize_message("plain") == "plain"


def test_line_and_column_first_line_adds_offset():
    assert line_and_column("abc", 2, 3, 5) == (5, 6)


def test_line_and_column_later_line():
    assert line_and_column("ab\ncd", 4, 3, 10) == (11, 2)


def test_span_to_byte_range_selects_text():
    source = "abc\ndef\n"
    start, end = span_to_byte_range(source, Span(2, 1, 2, 4))
    assert source[start:end] == "def"


def test_span_from_command():
    call = CommandCall(command=":dep", args="x", start_byte=0, line_number=3)
    assert Span.from_command(call, 6, 10) == Span(3, 6, 3, 10)


def test_span_from_segment_only_for_user_code():
    user_block, _ = CodeBlock.from_original_user_code("abc")
    segment = user_block.segments[0]
    assert Span.from_segment(segment, 1, 2) == Span(1, 2, 1, 3)
    generated = CodeBlock().generated("abc").segments[0]
    assert Span.from_segment(generated, 1, 2) is None


def test_from_json_maps_user_span():
    block, _ = _block()
    error = CompilationError.from_json(
        _error_json([_span(2, 3, 5, 6, label="here")]), block
    )
    assert error.spanned_messages[0].span == Span(1, 5, 2, 6)
    assert error.spanned_messages[0].label == "here"
    assert error.is_from_user_code()
    assert not error.is_from_generated_code()
    assert error.level == "error"


def test_from_json_unwraps_cargo_message_and_reads_code():
    block, _ = _block()
    inner = _error_json(
        [_span(2, 2, 5, 6)],
        code={"code": "E0308", "explanation": "Types differ."},
        rendered="rendered text",
    )
    inner["message"] = "found `evcxr_variable_store`"
    error = CompilationError.from_json({"reason": "compiler-message", "message": inner}, block)
    assert error.message == "found <end of input>"
    assert error.code() == "E0308"
    assert error.explanation() == "Types differ."
    assert error.rendered() == "rendered text"


@pytest.mark.parametrize(
    "message",
    ["aborting due to previous error", "For more information about this error", "Some errors occurred"],
)
def test_from_json_skips_summary_messages(message):
    block, _ = _block()
    assert CompilationError.from_json(_error_json([], message=message), block) is None


def test_from_json_without_message_is_none():
    block, _ = _block()
    assert CompilationError.from_json({"level": "error"}, block) is None


def test_span_in_generated_code_is_suppressed():
    block, _ = _block()
    error = CompilationError.from_json(_error_json([_span(1, 1, 1, 2, label="gen")]), block)
    assert error.spanned_messages[0].span is None
    assert error.is_from_generated_code()
    assert not error.is_from_user_code()


def test_child_in_user_code_replaces_top_level():
    block, _ = _block()
    child = {"message": "child msg", "level": "note", "spans": [_span(2, 2, 1, 2)], "children": []}
    error = CompilationError.from_json(
        _error_json([_span(1, 1, 1, 2)], children=[child]), block
    )
    assert error.message == "child msg"
    assert error.level == "note"
    assert error.is_from_user_code()


def test_expansion_span_used_with_outer_label():
    block, _ = _block()
    outer = {
        "file_name": "<format macros>",
        "label": "outer label",
        "is_primary": True,
        "column_start": 1,
        "column_end": 2,
        "expansion": {"span": _span(2, 2, 3, 4, is_primary=False, label="inner")},
    }
    message = SpannedMessage.from_json(outer, block, None)
    assert message.span == Span(1, 3, 1, 4)
    assert message.label == "outer label"
    assert message.is_primary


def test_fallback_label_and_suggested_replacement():
    block, _ = _block()
    span = _span(2, 2, 1, 2, suggested_replacement="mut x")
    message = SpannedMessage.from_json(span, block, "error: oops")
    assert message.label == "error: oops: `mut x`"


def test_help_includes_replacement():
    block, _ = _block()
    child = {
        "message": "try this",
        "level": "help",
        "spans": [_span(2, 2, 1, 2, suggested_replacement="let mut x  \n")],
        "children": [],
    }
    note = {"message": "a note", "level": "note", "spans": [], "children": []}
    error = CompilationError.from_json(_error_json([_span(2, 2, 1, 2)], children=[child, note]), block)
    assert error.help() == ["try this\n\nlet mut x"]


def test_fill_lines_uses_original_lines():
    block, info = _block()
    error = CompilationError.from_json(_error_json([_span(2, 3, 1, 2)]), block)
    error.fill_lines(info)
    assert error.spanned_messages[0].lines == ["let x = 1;", "let y = 2;"]


def test_from_segment_span():
    user_block, _ = CodeBlock.from_original_user_code(":dep foo\n1")
    segment = user_block.segments[0]
    call = segment.kind.call
    spanned = SpannedMessage.from_segment_span(segment, Span.from_command(call, 1, 5))
    assert spanned.lines == [":dep foo"]
    error = CompilationError.from_segment_span(segment, spanned, "Bad command")
    assert error.level == "error"
    assert error.code() is None
    assert error.is_from_user_code()
    assert isinstance(error.code_origins[0], Command)
    assert error.primary_spanned_message() is spanned


def test_primary_spanned_message_falls_back_to_first():
    block, _ = _block()
    error = CompilationError.from_json(
        _error_json([_span(2, 2, 1, 2, is_primary=False, label="a"), _span(3, 3, 1, 2, is_primary=False, label="b")]),
        block,
    )
    assert error.primary_spanned_message().label == "a"


def test_extra_hint():
    block, _ = _block()
    error = CompilationError.from_json(_error_json([], code={"code": "E0597"}), block)
    assert error.evcxr_extra_hint().startswith("Values assigned to variables in Evcxr")
    other = CompilationError.from_json(_error_json([], code={"code": "E0001"}), block)
    assert other.evcxr_extra_hint() is None


def test_build_report_non_ascii_is_none():
    block, _ = _block()
    error = CompilationError.from_json(_error_json([_span(2, 2, 5, 6, label="x")]), block)
    assert error.build_report("f.rs", "let s = \"さび\";", Theme.DARK) is None


def test_build_report_labels_and_mutability_note():
    block, _ = _block()
    error = CompilationError.from_json(
        _error_json([_span(2, 2, 5, 6, label="here")], code={"code": "E0384"}), block
    )
    report = error.build_report("f.rs", USER_CODE, Theme.DARK)
    assert report.code == "E0384"
    assert report.message == error.message
    start, end = report.labels[0].span
    assert USER_CODE[start:end] == "x"
    assert report.note == "You can change an existing variable to mutable like: `let mut x = x;`"


def test_build_report_collects_unspanned_labels_as_notes():
    block, _ = _block()
    error = CompilationError.from_json(_error_json([_span(1, 1, 1, 2, label="gen note")]), block)
    report = error.build_report("f.rs", USER_CODE, Theme.DARK)
    assert report.labels == []
    assert report.note == "gen note"


def test_light_theme_inverts_colors():
    block, _ = _block()
    error = CompilationError.from_json(
        _error_json([_span(2, 2, 1, 2, label="a"), _span(3, 3, 1, 2, label="b")]), block
    )
    dark = error.build_report("f.rs", USER_CODE, Theme.DARK)
    light = error.build_report("f.rs", USER_CODE, Theme.LIGHT)
    assert [255 - label.color for label in dark.labels] == [label.color for label in light.labels]
    assert len(dark.labels) == 2


def test_compilation_errors_exception_joins_messages():
    block, _ = _block()
    first = CompilationError.from_json(_error_json([], message="one"), block)
    second = CompilationError.from_json(_error_json([], message="two"), block)
    assert str(CompilationErrors([first, second])) == "onetwo"