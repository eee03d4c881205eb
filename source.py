from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from lexer import ArgumentExtractor, is_directive, is_skippable, tokenize_line


DEFINITION_KEYWORD = "DEF"


@dataclass(frozen=True)
class Statement:
    number: int
    keyword: str
    argc: int


@dataclass(frozen=True)
class BlockMarker:
    """A block-opening keyword, optionally restricted to a raw argument count.

    Loop headers only open a block in their inline form (``FOR 3`` does, ``FOR body 3``
    does not), so their markers pin ``argc``.
    """

    keyword: str
    argc: Optional[int] = None

    def matches(self, statement: Statement) -> bool:
        if statement.keyword != self.keyword:
            return False
        return self.argc is None or statement.argc == self.argc


class ScriptSource:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename if filename == "<string>" else os.path.abspath(filename)
        self._lines: List[str] = text.splitlines()
        self._statements: Optional[List[Statement]] = None
        self._entry_points: Optional[Dict[str, int]] = None
        self._jumps: Optional[JumpResolver] = None

    @classmethod
    def from_file(cls, path: str) -> "ScriptSource":
        with open(path, "r", encoding="utf-8") as handle:
            return cls(handle.read(), path)

    @property
    def line_count(self) -> int:
        return len(self._lines)

    def line(self, number: int) -> Optional[str]:
        if 1 <= number <= len(self._lines):
            return self._lines[number - 1]
        return None

    def statements(self) -> List[Statement]:
        """Instruction lines (comments, blanks and directives excluded), built once."""
        if self._statements is None:
            counter = ArgumentExtractor(max_args=len(self.text) + 1)
            out: List[Statement] = []
            for number, text in enumerate(self._lines, start=1):
                if is_skippable(text) or is_directive(text):
                    continue
                tokens = tokenize_line(text)
                out.append(Statement(number=number, keyword=tokens[0].upper(), argc=counter.count(tokens)))
            self._statements = out
        return self._statements

    def entry_points(self) -> Dict[str, int]:
        if self._entry_points is None:
            found: Dict[str, int] = {}
            for number, text in enumerate(self._lines, start=1):
                tokens = tokenize_line(text)
                if len(tokens) >= 2 and tokens[0].upper() == DEFINITION_KEYWORD:
                    found.setdefault(tokens[1], number)
            self._entry_points = found
        return self._entry_points

    def entry_point_line(self, name: str) -> Optional[int]:
        return self.entry_points().get(name)

    @property
    def jumps(self) -> "JumpResolver":
        if self._jumps is None:
            self._jumps = JumpResolver(self)
        return self._jumps


class ExecutionCursor:
    """Forward-only reader over a script; ``line_number`` is the last line consumed."""

    def __init__(self, source: ScriptSource) -> None:
        self.source = source
        self.line_number = 0
        self.text: Optional[str] = None

    def read(self) -> Optional[str]:
        if self.line_number >= self.source.line_count:
            self.text = None
            return None
        self.line_number += 1
        self.text = self.source.line(self.line_number)
        return self.text

    def advance_to(self, target: int) -> None:
        if target < self.line_number:
            raise ValueError(f"Cursor at line {self.line_number} cannot move back to line {target}")
        while self.line_number < target:
            if self.read() is None:
                break

    def restart(self) -> None:
        self.line_number = 0
        self.text = None


class JumpResolver:
    def __init__(self, source: ScriptSource) -> None:
        self.source = source
        self._cache: Dict[Tuple[int, BlockMarker, str, Tuple[str, ...]], Optional[int]] = {}

    def resolve(
        self,
        from_line: int,
        opener: BlockMarker,
        closer: str,
        alternates: Sequence[str] = (),
    ) -> Optional[int]:
        """Find the line closing the block that contains ``from_line``.

        Lines after ``from_line`` are scanned with a nesting depth that goes up on
        ``opener`` and down on ``closer``; the first ``closer`` (or alternate) seen at
        depth zero wins. Results are cached for the lifetime of the source.
        """
        key = (from_line, opener, closer, tuple(alternates))
        if key in self._cache:
            return self._cache[key]
        target: Optional[int] = None
        depth = 0
        for statement in self.source.statements():
            if statement.number <= from_line:
                continue
            keyword = statement.keyword
            if depth == 0 and (keyword == closer or keyword in alternates):
                target = statement.number
                break
            if opener.matches(statement):
                depth += 1
            elif keyword == closer:
                depth -= 1
        self._cache[key] = target
        return target
