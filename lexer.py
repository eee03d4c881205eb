from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple


class MRTError(Exception):
    """Base class for interpreter errors."""


class MRTParseError(MRTError):
    """Raised when a line cannot be split into arguments."""


DEFAULT_MAX_ARGS = 64

COMMENT_PREFIX = ";"
DIRECTIVE_PREFIX = "["

Resolver = Callable[[str], str]


@dataclass
class Line:
    number: int
    text: str
    tokens: List[str] = field(default_factory=list)

    @property
    def keyword(self) -> str:
        return self.tokens[0].upper() if self.tokens else ""

    @property
    def statement(self) -> str:
        return self.text.strip()


def is_skippable(text: str) -> bool:
    stripped = text.strip()
    return not stripped or stripped.startswith(COMMENT_PREFIX)


def is_directive(text: str) -> bool:
    return text.strip().startswith(DIRECTIVE_PREFIX)


def tokenize_line(text: str) -> List[str]:
    # Split on single spaces so runs of spaces survive inside quoted arguments
    # once the tokens are joined back together by the extractor.
    stripped = text.strip()
    if not stripped:
        return []
    return stripped.split(" ")


class ArgumentExtractor:
    def __init__(self, max_args: int = DEFAULT_MAX_ARGS) -> None:
        self.max_args = max_args

    def extract(
        self,
        tokens: List[str],
        resolve: Optional[Resolver] = None,
        *,
        raw: bool = False,
    ) -> Optional[List[str]]:
        """Turn the tokens of one line into its argument list.

        The first token (the instruction name) is dropped. Double quotes group
        text containing spaces into a single argument and ``\\"`` stands for a
        literal quote. Unquoted arguments go through ``resolve`` unless ``raw``
        is set, in which case quoted arguments are wrapped in quotes again so
        the result can be fed back through the extractor unchanged.

        Returns ``None`` when the line carries no arguments.
        """
        combined = " ".join(tokens[1:])
        if not combined:
            return None

        pieces: List[Tuple[str, bool]] = []
        current: List[str] = []
        in_quotes = False
        prev = ""
        for index, ch in enumerate(combined):
            if ch == '"':
                if prev == "\\":
                    current[-1] = '"'
                    prev = ""
                    continue
                if in_quotes:
                    in_quotes = False
                    self._append(pieces, "".join(current), True)
                    current = []
                    prev = ch
                    continue
                # Quotes open only at the start of an argument.
                if index == 0 or combined[index - 1] == " ":
                    in_quotes = True
                    prev = ch
                    continue
            if in_quotes:
                current.append(ch)
            elif ch == " ":
                if current:
                    self._append(pieces, "".join(current), False)
                    current = []
            else:
                current.append(ch)
            prev = ch
        if current or in_quotes:
            # An unterminated quote keeps whatever text followed it.
            self._append(pieces, "".join(current), in_quotes)

        if not pieces:
            return None

        out: List[str] = []
        for text, quoted in pieces:
            if raw:
                out.append('"' + text.replace('"', '\\"') + '"' if quoted else text)
            elif quoted or resolve is None:
                out.append(text)
            else:
                out.append(resolve(text))
        return out

    def _append(self, pieces: List[Tuple[str, bool]], text: str, quoted: bool) -> None:
        if len(pieces) >= self.max_args:
            raise MRTParseError(f"Too many arguments (at most {self.max_args} are allowed)")
        pieces.append((text, quoted))

    def count(self, tokens: List[str]) -> int:
        """Number of arguments on a line without resolving any of them; -1 when over capacity."""
        try:
            args = self.extract(tokens, raw=True)
        except MRTParseError:
            return -1
        return len(args) if args else 0
