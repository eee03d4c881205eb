from __future__ import annotations
import json
import math
import operator
import random
import re
import shutil
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal, DecimalException
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from conversions import (
    format_bool,
    format_decimal,
    format_float,
    hex_to_rgb,
    is_truthy,
    parse_decimal,
    parse_float,
    parse_int,
    rgb_to_hex,
)
from extensions import InstructionSet, InstructionSpec, InstructionTable, MRTExtensionError, RuntimeServices
from lexer import DEFAULT_MAX_ARGS, ArgumentExtractor, Line, MRTError, MRTParseError, is_directive, is_skippable, tokenize_line
from messages import Code, ConsoleInput, Level, MessageSink
from source import BlockMarker, ExecutionCursor, ScriptSource
from storage import Memory, Queue, Stack


NULL = "NULL"
VERSION = "1.3"
GUEST_USER = "*guest"
DEFAULT_MAX_DEPTH = 100

# Value returned by a bare RET; the CLI reports it as an explicit close.
RET_CLOSE = "5"
HALT_CODE = "2"
ABNORMAL_CODE = "-1"

BUILTIN_ORIGINS = frozenset({"core", "extended", "graphics"})

IF_MARKER = BlockMarker("IF")

ARITHMETIC = {"+": operator.add, "-": operator.sub, "*": operator.mul, "/": operator.truediv}


class MRTRuntimeError(MRTError):
    """Raised for structural faults that end the current instance."""

    def __init__(
        self,
        message: str,
        *,
        code: int = Code.INTERNAL,
        line: Optional[int] = None,
        entry_point: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = int(code)
        self.line = line
        self.entry_point = entry_point


class JumpNotFoundError(MRTRuntimeError):
    pass


class EntryPointError(MRTRuntimeError):
    pass


class UnrecognizedInstructionError(MRTRuntimeError):
    pass


class HaltSignal(Exception):
    def __init__(self, code: str = HALT_CODE) -> None:
        super().__init__(code)
        self.code = code


# ---- Loop signals ----


class LoopSignal:
    """Outcome of one pass of an interpreter instance."""

    value: str


@dataclass(frozen=True)
class Returned(LoopSignal):
    value: str = NULL


@dataclass(frozen=True)
class Break(LoopSignal):
    value: str = NULL


@dataclass(frozen=True)
class Continue(LoopSignal):
    value: str = NULL


@dataclass(frozen=True)
class Resume(LoopSignal):
    next_line: int
    value: str = NULL


# ---- Predefined variables ----

Evaluator = Callable[["Runtime"], str]


class PredefinedRegistry:
    """Layered ``$_name`` table; later layers shadow earlier ones."""

    def __init__(self, base: Dict[str, Evaluator]) -> None:
        self._layers: List[Tuple[str, Dict[str, Evaluator]]] = [("base", dict(base))]

    def push_layer(self, name: str, variables: Dict[str, Evaluator]) -> None:
        self.drop_layer(name)
        self._layers.append((name, dict(variables)))

    def drop_layer(self, name: str) -> None:
        self._layers = [(layer_name, layer) for layer_name, layer in self._layers if layer_name != name]

    def has_layer(self, name: str) -> bool:
        return any(layer_name == name for layer_name, _ in self._layers)

    def lookup(self, name: str) -> Optional[Evaluator]:
        for _, layer in reversed(self._layers):
            if name in layer:
                return layer[name]
        return None

    def names(self) -> set[str]:
        out: set[str] = set()
        for _, layer in self._layers:
            out.update(layer.keys())
        return out

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name) is not None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _base_variables() -> Dict[str, Evaluator]:
    return {
        "ww": lambda rt: str(shutil.get_terminal_size().columns),
        "wh": lambda rt: str(shutil.get_terminal_size().lines),
        "cmpr": lambda rt: format_bool(rt.compare_flag),
        "projtime": lambda rt: format_float(time.monotonic() - rt.start_time),
        "projid": lambda rt: "0",
        "user": lambda rt: GUEST_USER,
        "ver": lambda rt: VERSION,
        "ask": lambda rt: rt.input_provider.read_line(""),
        "graphics": lambda rt: "false",
        "thour": lambda rt: str(_utc_now().hour),
        "tminute": lambda rt: str(_utc_now().minute),
        "tsecond": lambda rt: str(_utc_now().second),
        "tyear": lambda rt: str(_utc_now().year),
        "tmonth": lambda rt: str(_utc_now().month),
        "tdate": lambda rt: str(_utc_now().day),
        # Sunday is day 0.
        "tdow": lambda rt: str((_utc_now().weekday() + 1) % 7),
        "ret": lambda rt: rt.returned_value,
    }


# ---- Runtime ----


class Runtime:
    """State shared by every interpreter instance of one run."""

    def __init__(
        self,
        *,
        messages: Optional[MessageSink] = None,
        input_provider: Optional[Any] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        display: Optional[Any] = None,
        services: Optional[RuntimeServices] = None,
        extended: bool = False,
        graphics: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_args: int = DEFAULT_MAX_ARGS,
        seed: Optional[int] = None,
        verbose: bool = False,
    ) -> None:
        # Instruction sets import this module, so they are loaded here.
        from extended import build_extended_set
        from graphics import FrameBuffer, build_graphics_set

        self.messages = messages or MessageSink()
        self.input_provider = input_provider or ConsoleInput()
        self.output_sink = output_sink or (lambda text: print(text, end="", flush=True))
        self.display = display if display is not None else FrameBuffer()
        self.services = services or RuntimeServices()
        self.max_depth = max_depth
        self.verbose = verbose

        self.memory = Memory()
        self.stack = Stack()
        self.queue = Queue()
        self.extractor = ArgumentExtractor(max_args)
        self.random = random.Random(seed)
        self.compare_flag = False
        self.returned_value = NULL
        self.start_time = time.monotonic()
        self.call_stack: List[Engine] = []
        self._wake = threading.Event()

        self.core: InstructionTable = CoreInstructions().table
        self.extended_set: InstructionSet = build_extended_set()
        self.graphics_set: InstructionSet = build_graphics_set()
        self.predefined = PredefinedRegistry(_base_variables())
        self._attach_extensions()

        self.extended = False
        self.graphics = False
        self.set_extended(extended)
        self.set_graphics(graphics)

    def _attach_extensions(self) -> None:
        reserved = self.core.names() | self.extended_set.instructions.names() | self.graphics_set.instructions.names()
        for name in self.services.extensions.instructions.names():
            if name in reserved:
                raise MRTExtensionError(f"Cannot override built-in instruction '{name}'")
        variables = self.services.extensions.variables
        taken = self.predefined.names() | set(self.extended_set.variables) | set(self.graphics_set.variables)
        for name in variables:
            if name in taken:
                raise MRTExtensionError(f"Cannot override predefined variable '{name}'")
        if variables:
            self.predefined.push_layer("extensions", variables)

    # ---- modes ----
    def set_extended(self, enabled: bool) -> None:
        if enabled:
            self.predefined.push_layer("extended", self.extended_set.variables)
        else:
            self.predefined.drop_layer("extended")
        self.extended = enabled

    def set_graphics(self, enabled: bool) -> None:
        if enabled:
            self.predefined.push_layer("graphics", self.graphics_set.variables)
        else:
            self.predefined.drop_layer("graphics")
        self.graphics = enabled

    def lookup_instruction(self, keyword: str) -> Optional[InstructionSpec]:
        spec = self.core.get(keyword)
        if spec is None and self.extended:
            spec = self.extended_set.instructions.get(keyword)
        if spec is None and self.graphics:
            spec = self.graphics_set.instructions.get(keyword)
        if spec is None:
            spec = self.services.extensions.instructions.get(keyword)
        return spec

    def memory_index(self, address: int) -> int:
        # Compat mode numbers memory from 1, extended mode from 0.
        return address if self.extended else address - 1

    # ---- collaborators ----
    @property
    def current_line(self) -> int:
        if self.call_stack:
            return self.call_stack[-1].cursor.line_number
        return 0

    def report(self, level: Level, text: str, code: int = Code.OK) -> None:
        self.messages.emit(level, self.current_line, text, code)

    def sleep(self, milliseconds: int) -> bool:
        """Block for ``milliseconds``; returns True when woken early."""
        self._wake.clear()
        return self._wake.wait(max(milliseconds, 0) / 1000.0)

    def wake(self) -> None:
        self._wake.set()

    def emit_event(self, event: str, *args: Any) -> None:
        try:
            self.services.hook_registry.emit(event, *args)
        except (MRTRuntimeError, HaltSignal):
            raise
        except Exception as exc:
            raise MRTRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                code=Code.EXTENSION,
                line=self.current_line,
            )


# ---- Variable resolution ----


class VariableResolver:
    def __init__(self, engine: "Engine") -> None:
        self.engine = engine
        self.runtime = engine.runtime

    def __call__(self, token: str) -> str:
        return self.resolve(token)

    def resolve(self, token: str) -> str:
        if not token:
            return token
        head = token[0]
        if head == "$":
            if token.startswith("$_"):
                evaluator = self.runtime.predefined.lookup(token[2:])
                # Unknown predefined names stay literal.
                if evaluator is None:
                    return token
                return evaluator(self.runtime)
            return self.engine.get_variable(token[1:])
        if not self.runtime.extended:
            return token
        if head == "#":
            return self._memory_cell(token[1:])
        if head == "%":
            return self._character(token[1:])
        if head == "!":
            return format_bool(not is_truthy(self.resolve(token[1:])))
        if head == "@":
            return self._call_argument(token[1:])
        return token

    def _index(self, text: str) -> Optional[int]:
        resolved = self.resolve(text)
        index = parse_int(resolved)
        if index is None:
            self.engine.report(Level.ERR, f"Malformed index '{resolved}'.", Code.MALFORMED_VALUE)
        return index

    def _memory_cell(self, text: str) -> str:
        index = self._index(text)
        if index is None:
            return NULL
        memory = self.runtime.memory
        if not memory.exists(index):
            self.engine.report(Level.ERR, f"Memory address {index} does not exist.", Code.INDEX_OUT_OF_RANGE)
            return NULL
        return memory.get(index)

    def _character(self, text: str) -> str:
        position, sep, target = text.partition(".")
        if not sep:
            self.engine.report(Level.ERR, f"Malformed character reference '%{text}'.", Code.MALFORMED_VALUE)
            return NULL
        index = self._index(position)
        value = self.resolve(target)
        if index is None:
            return NULL
        if not 0 <= index < len(value):
            self.engine.report(Level.ERR, f"Index {index} is out of bounds.", Code.INDEX_OUT_OF_RANGE)
            return NULL
        return value[index]

    def _call_argument(self, text: str) -> str:
        index = self._index(text)
        if index is None:
            return NULL
        call_args = self.engine.call_args
        if not 0 <= index < len(call_args):
            self.engine.report(Level.ERR, f"Argument {index} was not passed.", Code.INDEX_OUT_OF_RANGE)
            return NULL
        return call_args[index]


# ---- Engine ----


class EngineState(Enum):
    SEARCHING = "searching"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class Engine:
    """One interpreter instance: a cursor and a variable table over a script."""

    def __init__(
        self,
        runtime: Runtime,
        source: ScriptSource,
        entry_point: str = "main",
        *,
        call_args: Optional[Sequence[str]] = None,
        local_vars: Optional[Dict[str, str]] = None,
        parent: Optional["Engine"] = None,
        loop_body: bool = False,
    ) -> None:
        self.runtime = runtime
        self.source = source
        self.entry_point = entry_point
        self.call_args: List[str] = list(call_args or [])
        self.local_vars: Dict[str, str] = local_vars if local_vars is not None else {}
        self.parent = parent
        self.loop_body = loop_body
        self.cursor = ExecutionCursor(source)
        self.resolver = VariableResolver(self)
        self.state = EngineState.SEARCHING
        self.definition_line: Optional[int] = None
        self.child: Optional[Engine] = None
        self.line: Optional[Line] = None

    # ---- lifecycle ----
    def open(self) -> "Engine":
        target = self.source.entry_point_line(self.entry_point)
        if target is None:
            self.state = EngineState.TERMINATED
            raise self.structural_error(
                EntryPointError,
                f"Entry point '{self.entry_point}' was not found.",
                Code.ENTRY_POINT_NOT_FOUND,
            )
        if self.parent is None:
            self._apply_header_directives(target)
        self.cursor.advance_to(target)
        self.definition_line = target
        self.state = EngineState.RUNNING
        return self

    def run(self, start_line: Optional[int] = None) -> LoopSignal:
        if self.state is EngineState.SEARCHING:
            self.open()
        runtime = self.runtime
        if len(runtime.call_stack) >= runtime.max_depth:
            runtime.report(
                Level.ERR,
                f"Maximum nesting depth of {runtime.max_depth} exceeded.",
                Code.DEPTH_EXCEEDED,
            )
            raise HaltSignal(ABNORMAL_CODE)
        if start_line is not None:
            self._reposition(start_line)
        runtime.call_stack.append(self)
        self.state = EngineState.RUNNING
        signal = self._execute()
        # Frames stay on the stack when an error escapes so tracebacks can show them.
        runtime.call_stack.pop()
        self.state = EngineState.SUSPENDED if isinstance(signal, Resume) else EngineState.TERMINATED
        return signal

    def _reposition(self, start_line: int) -> None:
        target = start_line - 1
        if target < self.cursor.line_number:
            self.cursor.restart()
        self.cursor.advance_to(target)

    def _execute(self) -> LoopSignal:
        runtime = self.runtime
        cursor = self.cursor
        watch_lines = runtime.services.hook_registry.has_handlers("before_line")
        while True:
            text = cursor.read()
            if text is None:
                return Returned(NULL)
            if is_skippable(text):
                continue
            if is_directive(text):
                self.apply_directive(text)
                continue
            line = Line(number=cursor.line_number, text=text, tokens=tokenize_line(text))
            self.line = line
            if watch_lines:
                runtime.emit_event("before_line", self, line)
            signal = self.execute_line(line)
            if signal is not None:
                return signal

    def execute_line(self, line: Line) -> Optional[LoopSignal]:
        try:
            args = self.extract(line)
        except MRTParseError as exc:
            self.report(Level.ERR, str(exc), Code.ARGUMENT_CAPACITY)
            return None
        spec = self.runtime.lookup_instruction(line.keyword)
        if spec is None:
            raise self.structural_error(
                UnrecognizedInstructionError,
                f"Instruction {line.tokens[0]} is not recognized.",
                Code.UNRECOGNIZED_INSTRUCTION,
            )
        problem = spec.arity_problem(len(args))
        if problem is not None:
            self.report(Level.ERR, problem, Code.MISSING_ARGUMENTS)
            return None
        try:
            return spec.impl(self, args, line)
        except (MRTRuntimeError, HaltSignal):
            raise
        except MRTParseError as exc:
            self.report(Level.ERR, str(exc), Code.ARGUMENT_CAPACITY)
            return None
        except Exception as exc:
            code = Code.INTERNAL if spec.origin in BUILTIN_ORIGINS else Code.EXTENSION
            raise self.structural_error(MRTRuntimeError, f"{spec.name} failed: {exc}", code)

    def extract(self, line: Line) -> List[str]:
        return self.runtime.extractor.extract(line.tokens, self.resolver) or []

    # ---- directives ----
    def _apply_header_directives(self, definition_line: int) -> None:
        for number in range(1, definition_line):
            text = self.source.line(number)
            if text is not None and is_directive(text):
                self.apply_directive(text, number)

    def apply_directive(self, text: str, number: Optional[int] = None) -> None:
        line_number = self.cursor.line_number if number is None else number
        parts = text.strip().strip("[]").split()
        option = parts[0].lower() if parts else ""
        value = parts[1].lower() if len(parts) > 1 else ""
        messages = self.runtime.messages
        if option == "mode" and value in ("extended", "mrt"):
            self.runtime.set_extended(True)
            messages.emit(Level.INF, line_number, "Using extended mode")
        elif option == "mode" and value == "vsb":
            self.runtime.set_extended(False)
            messages.emit(Level.INF, line_number, "Using compat mode")
        elif option == "graphics" and value in ("enable", "disable"):
            self.runtime.set_graphics(value == "enable")
            messages.emit(Level.INF, line_number, f"Graphics {value}d")
        else:
            messages.emit(Level.WRN, line_number, f"Unrecognized directive {text.strip()}", Code.UNKNOWN_DIRECTIVE)

    # ---- helpers for instructions ----
    def report(self, level: Level, text: str, code: int = Code.OK) -> None:
        self.runtime.messages.emit(level, self.cursor.line_number, text, code)

    def structural_error(self, cls: type, message: str, code: int) -> MRTRuntimeError:
        self.report(Level.ERR, message, code)
        return cls(message, code=code, line=self.cursor.line_number, entry_point=self.entry_point)

    def get_variable(self, name: str) -> str:
        if name in self.local_vars:
            return self.local_vars[name]
        self.report(Level.ERR, f"The variable {name} does not exist.", Code.UNKNOWN_VARIABLE)
        return NULL

    def set_variable(self, name: str, value: str) -> bool:
        if name not in self.local_vars:
            self.report(Level.ERR, f"The variable {name} does not exist.", Code.UNKNOWN_VARIABLE)
            return False
        self.local_vars[name] = value
        return True

    def operands(self, args: List[str], count: int) -> List[str]:
        """Inputs of a ``dest [inputs...]`` instruction.

        When one input is missing, the destination's current value stands in
        for the first one.
        """
        rest = args[1:]
        if len(rest) >= count:
            return rest[:count]
        return [self.get_variable(args[0])] + rest[: count - 1]

    def decimal(self, text: str) -> Decimal:
        value = parse_decimal(text)
        if value is None:
            self.report(Level.ERR, f"Malformed number found: '{text}'.", Code.MALFORMED_VALUE)
            return Decimal(0)
        return value

    def integer(self, text: str) -> int:
        value = parse_int(text)
        if value is None:
            self.report(Level.ERR, f"Malformed number found: '{text}'.", Code.MALFORMED_VALUE)
            return 0
        return value

    def floating(self, text: str) -> float:
        value = parse_float(text)
        if value is None:
            self.report(Level.ERR, f"Malformed number found: '{text}'.", Code.MALFORMED_VALUE)
            return 0.0
        return value

    def jump_to(self, line_number: int) -> None:
        self.cursor.advance_to(line_number)

    def jump_out(self, opener: BlockMarker, closer: str, alternates: Sequence[str] = ()) -> int:
        target = self.source.jumps.resolve(self.cursor.line_number, opener, closer, alternates)
        if target is None:
            raise self.structural_error(
                JumpNotFoundError,
                f"Could not find {closer} to jump to.",
                Code.JUMP_NOT_FOUND,
            )
        self.cursor.advance_to(target)
        return target

    def spawn(self, entry_point: str, call_args: Optional[Sequence[str]] = None) -> "Engine":
        return Engine(self.runtime, self.source, entry_point, call_args=call_args, parent=self).open()

    def snapshot(self) -> Dict[str, str]:
        return dict(self.local_vars)


# ---- Core instruction set ----


def compare_values(operator: str, left: str, right: str) -> Optional[bool]:
    op = operator.upper()
    if op in ("EQL", "E"):
        return left == right
    if op in ("NEQL", "NE"):
        return left != right
    if op in _NUMERIC_COMPARISONS:
        a = parse_float(left)
        b = parse_float(right)
        return _NUMERIC_COMPARISONS[op](0.0 if a is None else a, 0.0 if b is None else b)
    if op in _BOOLEAN_COMPARISONS:
        return _BOOLEAN_COMPARISONS[op](is_truthy(left), is_truthy(right))
    return None


_NUMERIC_COMPARISONS: Dict[str, Callable[[float, float], bool]] = {
    "G": lambda a, b: a > b,
    "NG": lambda a, b: not a > b,
    "GE": lambda a, b: a >= b,
    "NGE": lambda a, b: not a >= b,
    "L": lambda a, b: a < b,
    "NL": lambda a, b: not a < b,
    "LE": lambda a, b: a <= b,
    "NLE": lambda a, b: not a <= b,
}

_BOOLEAN_COMPARISONS: Dict[str, Callable[[bool, bool], bool]] = {
    "OR": lambda a, b: a or b,
    "AND": lambda a, b: a and b,
    "XOR": lambda a, b: a != b,
    "XNOR": lambda a, b: a == b,
    "NOR": lambda a, b: not (a or b),
    "NAND": lambda a, b: not (a and b),
}

# Trigonometry works in degrees.
MATH_FUNCTIONS: Dict[str, Callable[[float], float]] = {
    "SIN": lambda x: math.sin(math.radians(x)),
    "COS": lambda x: math.cos(math.radians(x)),
    "TAN": lambda x: math.tan(math.radians(x)),
    "ASIN": lambda x: math.degrees(math.asin(x)),
    "ACOS": lambda x: math.degrees(math.acos(x)),
    "ATAN": lambda x: math.degrees(math.atan(x)),
    "LOG": math.log10,
    "MATH_LN": math.log,
    "EPOW": math.exp,
    "TENPOW": lambda x: math.pow(10.0, x),
    "TORAD": math.radians,
    "TODEG": math.degrees,
    "FLR": lambda x: float(math.floor(x)),
    "CEIL": lambda x: float(math.ceil(x)),
    "SQRT": math.sqrt,
}

InstructionImpl = Callable[[Engine, List[str], Line], Optional[LoopSignal]]


class CoreInstructions:
    def __init__(self) -> None:
        self.table = InstructionTable()
        self._register("PRINT", 0, None, self._print)
        self._register("OUT", 0, None, self._out)
        self._register("NEW", 1, None, self._new)
        self._register("SET", 2, 2, self._set)
        self._register("DEL", 1, None, self._delete)
        self._register("ADD", 2, 3, self._arithmetic("+"))
        self._register("SUB", 2, 3, self._arithmetic("-"))
        self._register("MUL", 2, 3, self._arithmetic("*"))
        self._register("DIV", 2, 3, self._arithmetic("/"))
        self._register("CMPR", 3, 3, self._cmpr)
        self._register("IF", 0, 2, self._if)
        self._register("ELSE", 0, None, self._else)
        self._register("ENDIF", 0, None, self._endif)
        self._register("RET", 0, 1, self._ret)
        self._register("ENDDEF", 0, 1, self._enddef)
        self._register("EDEF", 0, 1, self._enddef)
        self._register("DEF", 1, None, self._def)
        self._register("SUBSTR", 3, 4, self._substr)
        self._register("CHARAT", 2, 3, self._charat)
        self._register("TRIM", 1, 2, self._trim)
        self._register("RPLC", 3, 4, self._rplc)
        self._register("COUNT", 2, 3, self._count)
        self._register("FIND", 2, 3, self._find)
        self._register("CON", 2, 3, self._con)
        self._register("SIZE", 1, 2, self._size)
        self._register("ROUND", 2, 3, self._round)
        self._register("ABS", 1, 2, self._abs)
        self._register("MIN", 2, 3, self._extremum(min))
        self._register("MAX", 2, 3, self._extremum(max))
        self._register("RAND", 3, 3, self._rand)
        for name in MATH_FUNCTIONS:
            self._register(name, 1, 2, self._math(name))
        self._register("RGBTOHEX", 4, 4, self._rgbtohex)
        self._register("COLRGBTOHEX", 4, 4, self._rgbtohex)
        self._register("HEXTORGB", 4, 4, self._hextorgb)
        self._register("ALOC", 1, 1, self._aloc)
        self._register("FREE", 1, 1, self._free)
        self._register("SETM", 2, 2, self._setm)
        self._register("GETM", 2, 2, self._getm)
        self._register("PUSH", 1, 1, self._push)
        self._register("POP", 1, 1, self._pop)
        self._register("QPUSH", 1, 1, self._qpush)
        self._register("QPOP", 1, 1, self._qpop)
        self._register("CALL", 1, None, self._call)
        self._register("DO", 1, None, self._call)
        self._register("HLT", 0, None, self._hlt)

    def _register(self, name: str, min_args: int, max_args: Optional[int], impl: InstructionImpl) -> None:
        self.table.register(InstructionSpec(name=name, min_args=min_args, max_args=max_args, impl=impl, origin="core"))

    # ---- I/O ----
    def _print(self, engine: Engine, args: List[str], line: Line) -> None:
        if not args:
            engine.report(Level.WRN, "No arguments given to PRINT.", Code.MISSING_ARGUMENTS)
            return None
        engine.runtime.output_sink("".join(args) + "\n")
        return None

    def _out(self, engine: Engine, args: List[str], line: Line) -> None:
        if not args:
            engine.report(Level.WRN, "No arguments given to OUT. OUT does nothing without an argument.", Code.MISSING_ARGUMENTS)
            return None
        engine.runtime.output_sink("".join(args))
        return None

    # ---- variables ----
    def _new(self, engine: Engine, args: List[str], line: Line) -> None:
        predefined = engine.runtime.predefined
        for arg in args:
            name, sep, value = arg.partition(",")
            if not name:
                engine.report(Level.ERR, f"Malformed declaration '{arg}'.", Code.MALFORMED_VALUE)
                continue
            bare = name[2:] if name.startswith("$_") else name.lstrip("_")
            if name in predefined or bare in predefined:
                engine.report(
                    Level.ERR,
                    f"Variable {name} is a predefined variable and cannot be declared.",
                    Code.PREDEFINED_NAME,
                )
                continue
            if name in engine.local_vars:
                engine.report(Level.WRN, f"Variable {name} already exists.", Code.VARIABLE_EXISTS)
            engine.local_vars[name] = engine.resolver.resolve(value) if sep else "0"
        return None

    def _set(self, engine: Engine, args: List[str], line: Line) -> None:
        engine.set_variable(args[0], args[1])
        return None

    def _delete(self, engine: Engine, args: List[str], line: Line) -> None:
        for name in args:
            if engine.local_vars.pop(name, None) is None:
                engine.report(Level.WRN, f"Tried removing a non-existing variable called {name}.", Code.UNKNOWN_VARIABLE)
        return None

    # ---- arithmetic and comparison ----
    def _store_decimal(self, engine: Engine, name: str, compute: Callable[[], Decimal], what: str) -> None:
        try:
            text = format_decimal(compute())
        except DecimalException as exc:
            engine.report(Level.ERR, f"{what} is out of range ({type(exc).__name__}).", Code.MATH_DOMAIN)
            text = NULL
        engine.set_variable(name, text)

    def _arithmetic(self, symbol: str) -> InstructionImpl:
        def impl(engine: Engine, args: List[str], line: Line) -> None:
            left_text, right_text = engine.operands(args, 2)
            left = engine.decimal(left_text)
            right = engine.decimal(right_text)
            if symbol == "/" and right == 0:
                engine.report(Level.ERR, "Division by zero.", Code.DIVISION_BY_ZERO)
                engine.set_variable(args[0], NULL)
                return None
            operation = ARITHMETIC[symbol]
            self._store_decimal(engine, args[0], lambda: operation(left, right), line.keyword)
            return None

        return impl

    def _cmpr(self, engine: Engine, args: List[str], line: Line) -> None:
        result = compare_values(args[0], args[1], args[2])
        if result is None:
            engine.report(Level.ERR, f"Unrecognized CMPR option {args[0].upper()}.", Code.MALFORMED_VALUE)
            result = False
        engine.runtime.compare_flag = result
        return None

    # ---- control flow ----
    def _if(self, engine: Engine, args: List[str], line: Line) -> None:
        # A lone NOT is a condition of its own.
        invert = len(args) > 1 and args[0].upper() == "NOT"
        condition_args = args[1:] if invert else args
        if not condition_args:
            result = engine.runtime.compare_flag
        else:
            condition = condition_args[0]
            result = condition == "1" or condition.upper() == "TRUE" or condition in engine.local_vars
        if invert:
            result = not result
        if not result:
            engine.jump_out(IF_MARKER, "ENDIF", ("ELSE",))
        return None

    def _else(self, engine: Engine, args: List[str], line: Line) -> None:
        # Reached only by falling through the true branch.
        engine.jump_out(IF_MARKER, "ENDIF")
        return None

    def _endif(self, engine: Engine, args: List[str], line: Line) -> None:
        return None

    def _ret(self, engine: Engine, args: List[str], line: Line) -> LoopSignal:
        return Returned(args[0] if args else RET_CLOSE)

    def _enddef(self, engine: Engine, args: List[str], line: Line) -> Optional[LoopSignal]:
        if not args or args[0] == engine.entry_point:
            engine.report(Level.INF, "End of definition")
            return Returned(NULL)
        engine.report(
            Level.ERR,
            f"Unexpected end of definition {args[0]} inside {engine.entry_point}.",
            Code.UNEXPECTED_END_OF_DEFINITION,
        )
        return None

    def _def(self, engine: Engine, args: List[str], line: Line) -> None:
        engine.report(
            Level.ERR,
            f"Definition {args[0]} starts before {engine.entry_point} has ended.",
            Code.UNEXPECTED_END_OF_DEFINITION,
        )
        return None

    # ---- strings ----
    def _substr(self, engine: Engine, args: List[str], line: Line) -> None:
        text, start_text, length_text = engine.operands(args, 3)
        start = engine.integer(start_text)
        length = engine.integer(length_text)
        if start < 0 or length < 0 or start + length > len(text):
            engine.report(Level.ERR, f"Substring {start}+{length} is out of bounds.", Code.INDEX_OUT_OF_RANGE)
            engine.set_variable(args[0], NULL)
            return None
        engine.set_variable(args[0], text[start : start + length])
        return None

    def _charat(self, engine: Engine, args: List[str], line: Line) -> None:
        text, index_text = engine.operands(args, 2)
        index = parse_int(index_text)
        if index is None:
            engine.report(Level.ERR, f"Malformed number found: '{index_text}'.", Code.MALFORMED_VALUE)
            index = -1
        if not 0 <= index < len(text):
            engine.report(Level.ERR, f"Index {index} is out of bounds.", Code.INDEX_OUT_OF_RANGE)
            engine.set_variable(args[0], NULL)
            return None
        engine.set_variable(args[0], text[index])
        return None

    def _trim(self, engine: Engine, args: List[str], line: Line) -> None:
        (text,) = engine.operands(args, 1)
        engine.set_variable(args[0], re.sub(r"\s+", " ", text.strip()))
        return None

    def _rplc(self, engine: Engine, args: List[str], line: Line) -> None:
        text, old, new = engine.operands(args, 3)
        if not old:
            engine.report(Level.ERR, "RPLC needs a non-empty text to replace.", Code.MALFORMED_VALUE)
            engine.set_variable(args[0], text)
            return None
        engine.set_variable(args[0], text.replace(old, new))
        return None

    def _count(self, engine: Engine, args: List[str], line: Line) -> None:
        text, pattern = engine.operands(args, 2)
        try:
            found = sum(1 for _ in re.finditer(pattern, text))
        except re.error as exc:
            engine.report(Level.ERR, f"Invalid pattern '{pattern}': {exc}.", Code.INVALID_PATTERN)
            engine.set_variable(args[0], NULL)
            return None
        engine.set_variable(args[0], str(found))
        return None

    def _find(self, engine: Engine, args: List[str], line: Line) -> None:
        text, value = engine.operands(args, 2)
        engine.set_variable(args[0], str(text.find(value)))
        return None

    def _con(self, engine: Engine, args: List[str], line: Line) -> None:
        left, right = engine.operands(args, 2)
        engine.set_variable(args[0], left + right)
        return None

    def _size(self, engine: Engine, args: List[str], line: Line) -> None:
        (text,) = engine.operands(args, 1)
        engine.set_variable(args[0], str(len(text)))
        return None

    # ---- numbers ----
    def _round(self, engine: Engine, args: List[str], line: Line) -> None:
        value_text, places_text = engine.operands(args, 2)
        value = engine.decimal(value_text)
        places = engine.integer(places_text)
        if places < 0:
            engine.report(Level.ERR, f"Cannot round to {places} decimal places.", Code.MALFORMED_VALUE)
            places = 0
        self._store_decimal(
            engine,
            args[0],
            lambda: value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN),
            f"Rounding {value_text} to {places} decimal places",
        )
        return None

    def _abs(self, engine: Engine, args: List[str], line: Line) -> None:
        (value_text,) = engine.operands(args, 1)
        value = engine.decimal(value_text)
        self._store_decimal(engine, args[0], lambda: abs(value), "ABS")
        return None

    def _extremum(self, pick: Callable[[Decimal, Decimal], Decimal]) -> InstructionImpl:
        def impl(engine: Engine, args: List[str], line: Line) -> None:
            left_text, right_text = engine.operands(args, 2)
            left = engine.decimal(left_text)
            right = engine.decimal(right_text)
            self._store_decimal(engine, args[0], lambda: pick(left, right), line.keyword)
            return None

        return impl

    def _rand(self, engine: Engine, args: List[str], line: Line) -> None:
        low = engine.integer(args[1])
        high = engine.integer(args[2])
        if low > high:
            engine.report(Level.ERR, f"RAND lower limit {low} is above upper limit {high}.", Code.MALFORMED_VALUE)
            engine.set_variable(args[0], NULL)
            return None
        engine.set_variable(args[0], str(engine.runtime.random.randint(low, high)))
        return None

    def _math(self, name: str) -> InstructionImpl:
        function = MATH_FUNCTIONS[name]

        def impl(engine: Engine, args: List[str], line: Line) -> None:
            (value_text,) = engine.operands(args, 1)
            value = engine.floating(value_text)
            try:
                result = function(value)
            except (ValueError, OverflowError) as exc:
                engine.report(Level.ERR, f"{name} is undefined for {value_text}: {exc}.", Code.MATH_DOMAIN)
                engine.set_variable(args[0], NULL)
                return None
            engine.set_variable(args[0], format_float(result))
            return None

        return impl

    # ---- colors ----
    def _rgbtohex(self, engine: Engine, args: List[str], line: Line) -> None:
        components: List[int] = []
        for text in args[1:4]:
            value = engine.integer(text)
            if not 0 <= value <= 255:
                engine.report(Level.ERR, f"Color component {value} is outside 0-255.", Code.MALFORMED_VALUE)
                value = min(max(value, 0), 255)
            components.append(value)
        engine.set_variable(args[0], rgb_to_hex(*components))
        return None

    def _hextorgb(self, engine: Engine, args: List[str], line: Line) -> None:
        rgb = hex_to_rgb(args[3])
        if rgb is None:
            engine.report(Level.ERR, f"Malformed color '{args[3]}'.", Code.MALFORMED_VALUE)
            rgb = (0, 0, 0)
        for name, component in zip(args[:3], rgb):
            engine.set_variable(name, str(component))
        return None

    # ---- memory ----
    def _aloc(self, engine: Engine, args: List[str], line: Line) -> None:
        amount = engine.integer(args[0])
        if amount < 0:
            engine.report(Level.ERR, f"Cannot allocate {amount} cells.", Code.MALFORMED_VALUE)
            return None
        engine.runtime.memory.allocate(amount)
        return None

    def _free(self, engine: Engine, args: List[str], line: Line) -> None:
        amount = engine.integer(args[0])
        removed = engine.runtime.memory.free(max(amount, 0))
        for _ in range(amount - removed):
            engine.report(Level.WRN, "Tried freeing memory that doesn't exist.", Code.INDEX_OUT_OF_RANGE)
        return None

    def _address(self, engine: Engine, text: str) -> Optional[int]:
        address = parse_int(text)
        if address is None:
            engine.report(Level.ERR, f"Malformed number found: '{text}'.", Code.MALFORMED_VALUE)
            return None
        index = engine.runtime.memory_index(address)
        if not engine.runtime.memory.exists(index):
            engine.report(Level.ERR, f"Memory address {address} does not exist.", Code.INDEX_OUT_OF_RANGE)
            return None
        return index

    def _setm(self, engine: Engine, args: List[str], line: Line) -> None:
        index = self._address(engine, args[0])
        if index is not None:
            engine.runtime.memory.set(index, args[1])
        return None

    def _getm(self, engine: Engine, args: List[str], line: Line) -> None:
        index = self._address(engine, args[1])
        engine.set_variable(args[0], NULL if index is None else engine.runtime.memory.get(index))
        return None

    # ---- stack and queue ----
    def _push(self, engine: Engine, args: List[str], line: Line) -> None:
        engine.runtime.stack.push(args[0])
        return None

    def _pop(self, engine: Engine, args: List[str], line: Line) -> None:
        value = engine.runtime.stack.pop()
        if value is None:
            engine.report(Level.ERR, "Stack was empty and could not be popped from.", Code.EMPTY_CONTAINER)
            value = NULL
        engine.set_variable(args[0], value)
        return None

    def _qpush(self, engine: Engine, args: List[str], line: Line) -> None:
        engine.runtime.queue.push(args[0])
        return None

    def _qpop(self, engine: Engine, args: List[str], line: Line) -> None:
        value = engine.runtime.queue.pop()
        if value is None:
            engine.report(Level.ERR, "Queue was empty and could not be dequeued from.", Code.EMPTY_CONTAINER)
            value = NULL
        engine.set_variable(args[0], value)
        return None

    # ---- calls ----
    def _call(self, engine: Engine, args: List[str], line: Line) -> None:
        runtime = engine.runtime
        try:
            child = engine.spawn(args[0], args[1:])
        except EntryPointError:
            runtime.returned_value = NULL
            return None
        engine.child = child
        signal = child.run()
        engine.child = None
        runtime.returned_value = signal.value
        return None

    def _hlt(self, engine: Engine, args: List[str], line: Line) -> None:
        engine.report(Level.INF, "HLT", Code.HALT)
        raise HaltSignal(HALT_CODE)


def run_program(runtime: Runtime, source: ScriptSource, entry_point: str = "main") -> LoopSignal:
    runtime.call_stack.clear()
    engine = Engine(runtime, source, entry_point)
    engine.open()
    runtime.emit_event("program_start", runtime, engine)
    try:
        signal = engine.run()
    except MRTRuntimeError as error:
        runtime.emit_event("on_error", runtime, error)
        raise
    except HaltSignal as halt:
        runtime.emit_event("program_end", runtime, halt.code)
        raise
    runtime.emit_event("program_end", runtime, signal.value)
    return signal


# ---- Tracebacks ----


@dataclass
class TracebackFrame:
    name: str
    file: str
    line: int
    statement: Optional[str]
    locals: Optional[Dict[str, str]]


class TracebackFormatter:
    def __init__(self, runtime: Runtime) -> None:
        self.runtime = runtime

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for engine in self.runtime.call_stack:
            name = engine.entry_point + (" <loop body>" if engine.loop_body else "")
            number = engine.cursor.line_number
            text = engine.source.line(number)
            frames.append(
                TracebackFrame(
                    name=name,
                    file=engine.source.filename,
                    line=number,
                    statement=text.strip() if text else None,
                    locals=engine.snapshot() if self.runtime.verbose else None,
                )
            )
        return frames

    def format_text(self, error: MRTRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            lines.append(f"  File \"{frame.file}\", line {frame.line}, in {frame.name}")
            if frame.statement:
                lines.append(f"    {frame.statement}")
            if verbose and frame.locals is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in frame.locals.items())
                lines.append(f"    Locals: {snapshot}")
        lines.append(f"{error.__class__.__name__}: {error.message} (code {error.code})")
        return "\n".join(lines)

    def to_json(self, error: MRTRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {
                "frame_index": index,
                "name": frame.name,
                "source_location": {"file": frame.file, "line": frame.line, "statement": frame.statement},
            }
            if frame.locals is not None:
                entry["locals"] = frame.locals
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "code": error.code,
                "line": error.line,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
