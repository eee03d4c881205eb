import pytest

from lexer import ArgumentExtractor, Line, MRTParseError, is_directive, is_skippable, tokenize_line


def extract(text, resolve=None, raw=False, max_args=64):
    return ArgumentExtractor(max_args).extract(tokenize_line(text), resolve, raw=raw)


def test_tokenize_splits_on_single_spaces():
    assert tokenize_line("  ADD x  3 ") == ["ADD", "x", "", "3"]
    assert tokenize_line("   ") == []


def test_line_keyword_is_uppercased():
    line = Line(number=4, text="  print hi", tokens=tokenize_line("print hi"))
    assert line.keyword == "PRINT"
    assert line.statement == "print hi"


def test_skippable_and_directive_lines():
    assert is_skippable("")
    assert is_skippable("   ; a comment")
    assert not is_skippable("PRINT x")
    assert is_directive(" [mode extended]")
    assert not is_directive("PRINT [x]")


def test_no_arguments_gives_none():
    assert extract("PRINT") is None
    assert extract("PRINT    ") is None


def test_plain_arguments_skip_empty_tokens():
    assert extract("ADD x  3") == ["x", "3"]


def test_quotes_group_text_and_keep_inner_spaces():
    assert extract('PRINT "hello  world" tail') == ["hello  world", "tail"]


def test_empty_quoted_argument():
    assert extract('SET x ""') == ["x", ""]


def test_escaped_quote_inside_quotes():
    assert extract('PRINT "say \\"hi\\""') == ['say "hi"']


def test_escaped_quote_outside_quotes():
    assert extract('OUT a\\"b') == ['a"b']


def test_quote_inside_word_is_literal():
    assert extract('OUT ab"c') == ['ab"c']


def test_quote_right_after_a_closing_quote_is_literal():
    assert extract('OUT "a""b"') == ["a", '"b"']
    assert extract('OUT "a" "b"') == ["a", "b"]


def test_unterminated_quote_keeps_text():
    assert extract('PRINT "abc def') == ["abc def"]


def test_only_unquoted_arguments_are_resolved():
    assert extract('PRINT "$x" $x', resolve=str.upper) == ["$x", "$X"]


def test_raw_mode_rewraps_quotes_and_skips_resolution():
    raw = extract('CALL f "a b" $x "q\\"t"', resolve=str.upper, raw=True)
    assert raw == ["f", '"a b"', "$x", '"q\\"t"']
    again = ArgumentExtractor().extract(["CALL"] + raw)
    assert again == ["f", "a b", "$x", 'q"t']


def test_reextracting_unquoted_arguments_is_idempotent():
    first = extract("X a b $c 12")
    assert ArgumentExtractor().extract(["X"] + first) == first


def test_capacity_exceeded_raises():
    with pytest.raises(MRTParseError):
        extract("X a b c", max_args=2)
    assert extract("X a b", max_args=2) == ["a", "b"]


def test_count_reports_overflow_as_minus_one():
    extractor = ArgumentExtractor(max_args=2)
    assert extractor.count(tokenize_line("FOR 3")) == 1
    assert extractor.count(tokenize_line('WHILE L "a b" 3')) == -1
    assert extractor.count(tokenize_line("ENDF")) == 0
