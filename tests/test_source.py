import pytest

from source import BlockMarker, ExecutionCursor, ScriptSource

IF_MARKER = BlockMarker("IF")


def nested_ifs(depth):
    lines = ["DEF main"]
    lines += [f"IF c{level}" for level in range(depth + 1)]
    lines.append("NOP")
    lines += ["ENDIF"] * (depth + 1)
    lines.append("ENDDEF")
    return ScriptSource("\n".join(lines))


def test_lines_are_one_based():
    source = ScriptSource("a\nb\nc")
    assert source.line_count == 3
    assert source.line(1) == "a"
    assert source.line(3) == "c"
    assert source.line(0) is None
    assert source.line(4) is None


def test_entry_points_first_definition_wins():
    source = ScriptSource("DEF main\nENDDEF\nDEF other\nENDDEF\nDEF main\nENDDEF")
    assert source.entry_points() == {"main": 1, "other": 3}
    assert source.entry_point_line("missing") is None


def test_statements_skip_comments_blanks_and_directives():
    source = ScriptSource("[mode extended]\nDEF main\n; note\n\nFOR 3\nFOR body 3\nENDF")
    statements = source.statements()
    assert [s.number for s in statements] == [2, 5, 6, 7]
    assert [s.argc for s in statements] == [1, 1, 2, 0]


def test_cursor_reads_forward_and_restarts():
    cursor = ExecutionCursor(ScriptSource("one\ntwo\nthree"))
    assert cursor.read() == "one"
    cursor.advance_to(3)
    assert cursor.line_number == 3
    assert cursor.text == "three"
    assert cursor.read() is None
    with pytest.raises(ValueError):
        cursor.advance_to(1)
    cursor.restart()
    assert cursor.read() == "one"


@pytest.mark.parametrize("depth", range(6))
def test_matching_endif_is_found_at_any_depth(depth):
    source = nested_ifs(depth)
    assert source.jumps.resolve(2, IF_MARKER, "ENDIF", ("ELSE",)) == 4 + 2 * depth


@pytest.mark.parametrize("depth", range(6))
def test_innermost_if_matches_first_endif(depth):
    source = nested_ifs(depth)
    innermost = 2 + depth
    assert source.jumps.resolve(innermost, IF_MARKER, "ENDIF") == innermost + 2


def test_else_only_matches_at_depth_zero():
    source = ScriptSource("\n".join(["DEF main", "IF a", "IF b", "ELSE", "ENDIF", "ELSE", "ENDIF", "ENDDEF"]))
    assert source.jumps.resolve(2, IF_MARKER, "ENDIF", ("ELSE",)) == 6
    assert source.jumps.resolve(6, IF_MARKER, "ENDIF") == 7


def test_external_loop_headers_do_not_open_blocks():
    source = ScriptSource("\n".join(["DEF main", "FOR 2", "FOR body 3", "FOR 4", "ENDF", "ENDF", "ENDDEF"]))
    marker = BlockMarker("FOR", 1)
    assert source.jumps.resolve(2, marker, "ENDF") == 6
    assert source.jumps.resolve(4, marker, "ENDF") == 5


def test_missing_closer_resolves_to_none_and_is_cached():
    source = ScriptSource("DEF main\nIF x\nENDDEF")
    assert source.jumps is source.jumps
    assert source.jumps.resolve(2, IF_MARKER, "ENDIF") is None
    assert source.jumps.resolve(2, IF_MARKER, "ENDIF") is None
