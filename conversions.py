"""Explicit text-to-value parsers and value-to-text formatting.

Every value in a script is a string; these helpers turn the text into the
number or flag an instruction needs and back. Parsers return ``None`` on bad
input and leave reporting to the caller.
"""

from __future__ import annotations
import math
import string
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple


TRUE_WORDS = frozenset({"true", "1", "1.0"})
HEX_DIGITS = frozenset(string.hexdigits)


def _clean(text: str) -> Optional[str]:
    stripped = text.strip()
    # Python accepts digit separators that script text never uses.
    if not stripped or "_" in stripped:
        return None
    return stripped


def parse_int(text: str) -> Optional[int]:
    cleaned = _clean(text)
    if cleaned is None:
        return None
    try:
        return int(cleaned)
    except ValueError:
        return None


def parse_decimal(text: str) -> Optional[Decimal]:
    cleaned = _clean(text)
    if cleaned is None:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def parse_float(text: str) -> Optional[float]:
    cleaned = _clean(text)
    if cleaned is None:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def is_truthy(text: str) -> bool:
    return text.strip().lower() in TRUE_WORDS


def format_bool(value: bool) -> str:
    return "true" if value else "false"


def format_decimal(value: Decimal) -> str:
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    # 15 significant digits hides binary noise such as sin(30) == 0.49999999999999994.
    return format(value, ".15g").replace("e", "E")


def rgb_to_hex(red: int, green: int, blue: int) -> str:
    return f"{red:02X}{green:02X}{blue:02X}"


def hex_to_rgb(text: str) -> Optional[Tuple[int, int, int]]:
    digits = text.strip()
    if digits.lower().startswith("0x"):
        digits = digits[2:]
    if digits.startswith("#"):
        digits = digits[1:]
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    if len(digits) != 6 or set(digits) - HEX_DIGITS:
        return None
    value = int(digits, 16)
    return (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF


def to_binary(value: int) -> str:
    # Negative numbers use their 32-bit two's complement form.
    if value < 0:
        value &= 0xFFFFFFFF
    return format(value, "b")


def from_binary(text: str) -> Optional[int]:
    digits = text.strip()
    if not digits or len(digits) > 32 or set(digits) - {"0", "1"}:
        return None
    value = int(digits, 2)
    if len(digits) == 32 and value >= 1 << 31:
        value -= 1 << 32
    return value
