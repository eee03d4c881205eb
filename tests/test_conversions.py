from decimal import Decimal

import pytest

from conversions import (
    format_bool,
    format_decimal,
    format_float,
    from_binary,
    hex_to_rgb,
    is_truthy,
    parse_decimal,
    parse_float,
    parse_int,
    rgb_to_hex,
    to_binary,
)


@pytest.mark.parametrize("text,expected", [("42", 42), (" -7 ", -7), ("4.2", None), ("1_000", None), ("", None), ("x", None)])
def test_parse_int(text, expected):
    assert parse_int(text) == expected


def test_parse_decimal_rejects_non_finite_values():
    assert parse_decimal("2.50") == Decimal("2.50")
    assert parse_decimal("nan") is None
    assert parse_decimal("Infinity") is None
    assert parse_decimal("abc") is None


def test_parse_float():
    assert parse_float("1e3") == 1000.0
    assert parse_float(" 0.5") == 0.5
    assert parse_float("half") is None


@pytest.mark.parametrize("text", ["true", "TRUE", "1", "1.0", " True "])
def test_truthy_words(text):
    assert is_truthy(text)


@pytest.mark.parametrize("text", ["false", "0", "yes", "", "2"])
def test_falsy_words(text):
    assert not is_truthy(text)


def test_format_bool():
    assert format_bool(True) == "true"
    assert format_bool(False) == "false"


def test_format_decimal_drops_trailing_zeros_without_exponents():
    assert format_decimal(Decimal("2.50")) == "2.5"
    assert format_decimal(Decimal("100")) == "100"
    assert format_decimal(Decimal("-0.0")) == "0"
    assert format_decimal(Decimal("0.001")) == "0.001"


def test_format_float():
    assert format_float(0.49999999999999994) == "0.5"
    assert format_float(2.0) == "2"
    assert format_float(-0.0) == "0"
    assert format_float(float("nan")) == "NaN"
    assert format_float(float("-inf")) == "-Infinity"
    assert format_float(1e20) == "1E+20"


def test_rgb_to_hex():
    assert rgb_to_hex(255, 0, 128) == "FF0080"
    assert rgb_to_hex(1, 2, 3) == "010203"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("FF0080", (255, 0, 128)),
        ("#ff0080", (255, 0, 128)),
        ("0x00ff00", (0, 255, 0)),
        ("fff", (255, 255, 255)),
        ("GGGGGG", None),
        ("+12345", None),
        ("12345", None),
    ],
)
def test_hex_to_rgb(text, expected):
    assert hex_to_rgb(text) == expected


@pytest.mark.parametrize("rgb", [(0, 0, 0), (255, 0, 128), (17, 34, 51), (255, 255, 255)])
def test_hex_color_round_trip(rgb):
    assert hex_to_rgb(rgb_to_hex(*rgb)) == rgb


def test_binary_conversions():
    assert to_binary(5) == "101"
    assert to_binary(0) == "0"
    assert to_binary(-1) == "1" * 32
    assert from_binary("101") == 5
    assert from_binary("1" * 32) == -1
    assert from_binary("102") is None
    assert from_binary("") is None
    assert from_binary("1" * 33) is None
