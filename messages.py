from __future__ import annotations
import sys
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Deque, List, Optional


class Level(IntEnum):
    INF = 0
    WRN = 1
    ERR = 2


SILENT = 3
DEFAULT_HISTORY = 1000


class Code(IntEnum):
    OK = 0
    MISSING_ARGUMENTS = 10
    MALFORMED_VALUE = 11
    UNKNOWN_VARIABLE = 12
    PREDEFINED_NAME = 13
    VARIABLE_EXISTS = 14
    INDEX_OUT_OF_RANGE = 15
    EMPTY_CONTAINER = 16
    DIVISION_BY_ZERO = 17
    MATH_DOMAIN = 18
    INVALID_PATTERN = 19
    JUMP_NOT_FOUND = 20
    ENTRY_POINT_NOT_FOUND = 21
    UNRECOGNIZED_INSTRUCTION = 22
    UNEXPECTED_END_OF_DEFINITION = 23
    ARGUMENT_CAPACITY = 24
    UNKNOWN_DIRECTIVE = 25
    INTERRUPTED = 26
    DEPTH_EXCEEDED = 30
    HALT = 31
    EXTENSION = 32
    INTERNAL = 33
    LOOP = 40


@dataclass(frozen=True)
class Message:
    level: Level
    line: int
    text: str
    code: int

    def format(self) -> str:
        suffix = f" (code {self.code})" if self.code else ""
        return f"MRT {self.level.name} line {self.line}: {self.text}{suffix}"


def _stderr_writer(text: str) -> None:
    print(text, file=sys.stderr)


class MessageSink:
    """Leveled diagnostics channel.

    The most recent ``history`` messages are kept in ``entries``; only those at
    or above ``min_level`` reach the writer. A ``min_level`` of ``SILENT``
    writes nothing.
    """

    def __init__(
        self,
        min_level: int = Level.WRN,
        writer: Optional[Callable[[str], None]] = None,
        history: int = DEFAULT_HISTORY,
    ) -> None:
        self.min_level = int(min_level)
        self.writer = writer or _stderr_writer
        self.entries: Deque[Message] = deque(maxlen=history)

    def emit(self, level: Level, line: int, text: str, code: int = Code.OK) -> Message:
        message = Message(level=Level(level), line=line, text=text, code=int(code))
        self.entries.append(message)
        if message.level >= self.min_level:
            self.writer(message.format())
        return message

    def with_level(self, level: Level) -> List[Message]:
        return [m for m in self.entries if m.level == level]

    @property
    def errors(self) -> List[Message]:
        return self.with_level(Level.ERR)

    @property
    def codes(self) -> List[int]:
        return [m.code for m in self.entries if m.code]


class ConsoleInput:
    """Reads answers from the terminal (or any ``input``-like callable)."""

    def __init__(self, reader: Optional[Callable[[str], str]] = None) -> None:
        self.reader = reader or input

    def read_line(self, prompt: str = "") -> str:
        try:
            return self.reader(prompt)
        except EOFError:
            return ""

    def confirm(self, prompt: str) -> bool:
        answer = self.read_line(f"{prompt} [y/n] ").strip().lower()
        return answer in ("y", "yes")
