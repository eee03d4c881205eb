"""Extended instruction set, active after ``[mode extended]``.

Adds loops (``FOR``/``WHILE``/``DOWHILE`` in inline and external-body form),
``BREAK``/``CONTINUE``, ``SLEEP``, case and binary conversions, and the
``pask``/``pconfirm``/``maartanic`` predefined variables.

Inline loops run their body in one persistent child engine that shares the
caller's variables. Each pass restarts the child just below the header and runs
it until the end marker hands back a ``Resume``; ``Break``, ``Continue`` and
``Returned`` coming out of the body steer the loop instead.
"""

from __future__ import annotations
from typing import List, Optional

from conversions import format_bool, from_binary, to_binary
from extensions import ExtensionAPI, InstructionSet, build_instruction_set
from interpreter import (
    NULL,
    VERSION,
    Break,
    Continue,
    Engine,
    EntryPointError,
    LoopSignal,
    Resume,
    Returned,
    compare_values,
)
from lexer import Line
from messages import Code, Level
from source import BlockMarker


# Only the inline forms open a block; ``FOR body 3`` has no end marker.
FOR_MARKER = BlockMarker("FOR", 1)
WHILE_MARKER = BlockMarker("WHILE", 3)
DOWHILE_MARKER = BlockMarker("DOWHILE", 3)


class InlineLoop:
    def __init__(self, engine: Engine, line: Line, marker: BlockMarker, closer: str) -> None:
        self.engine = engine
        self.line = line
        self.marker = marker
        self.closer = closer
        self.resume_line: Optional[int] = None
        self.body = Engine(
            engine.runtime,
            engine.source,
            engine.entry_point,
            call_args=engine.call_args,
            local_vars=engine.local_vars,
            parent=engine,
            loop_body=True,
        ).open()
        engine.child = self.body

    def iterate(self) -> Optional[LoopSignal]:
        """Run the body once; returns the signal that ends the loop early, if any."""
        runtime = self.engine.runtime
        signal = self.body.run(start_line=self.line.number + 1)
        if isinstance(signal, Resume):
            self.resume_line = signal.next_line
            runtime.returned_value = signal.value
            return None
        if isinstance(signal, Continue):
            self.engine.report(Level.INF, "Continue statement", Code.LOOP)
            runtime.returned_value = signal.value
            return None
        return signal

    def finish(self, signal: Optional[LoopSignal] = None) -> Optional[LoopSignal]:
        engine = self.engine
        engine.child = None
        if isinstance(signal, Returned):
            engine.report(Level.INF, "Return statement", Code.LOOP)
            return signal
        if isinstance(signal, Break):
            engine.report(Level.INF, "Break statement", Code.LOOP)
            engine.runtime.returned_value = signal.value
            engine.jump_out(self.marker, self.closer)
            return None
        if self.resume_line is not None:
            engine.jump_to(self.resume_line)
        else:
            engine.jump_out(self.marker, self.closer)
        return None


def _condition(engine: Engine, line: Line, external: bool) -> bool:
    # Operands are extracted again on every check so variables are re-read.
    args = engine.extract(line)
    operands = args[1:] if external else args
    if len(operands) < 3:
        engine.report(Level.ERR, f"{line.keyword} needs a comparison and two values.", Code.MISSING_ARGUMENTS)
        return False
    result = compare_values(operands[0], operands[1], operands[2])
    if result is None:
        engine.report(Level.ERR, f"Unrecognized CMPR option {operands[0].upper()}.", Code.MALFORMED_VALUE)
        result = False
    engine.runtime.compare_flag = result
    return result


def _external_pass(engine: Engine, entry_point: str, label: str) -> Optional[LoopSignal]:
    """Run one external body; returns a ``Break`` when the loop has to stop."""
    runtime = engine.runtime
    try:
        body = engine.spawn(entry_point)
    except EntryPointError:
        engine.report(Level.ERR, f"{label} statement failed to execute.", Code.LOOP)
        return Break(runtime.returned_value)
    engine.child = body
    signal = body.run()
    engine.child = None
    runtime.returned_value = signal.value
    if isinstance(signal, Break):
        engine.report(Level.INF, "Break statement", Code.LOOP)
        return signal
    if isinstance(signal, Continue):
        engine.report(Level.INF, "Continue statement", Code.LOOP)
    return None


# ---- loops ----


def _for(engine: Engine, args: List[str], line: Line) -> Optional[LoopSignal]:
    if len(args) > 1:
        amount = engine.integer(args[1])
        for _ in range(amount):
            if _external_pass(engine, args[0], "FOR") is not None:
                break
        return None
    amount = engine.integer(args[0])
    loop = InlineLoop(engine, line, FOR_MARKER, "ENDF")
    for _ in range(amount):
        signal = loop.iterate()
        if signal is not None:
            return loop.finish(signal)
    return loop.finish()


def _while(engine: Engine, args: List[str], line: Line) -> Optional[LoopSignal]:
    if len(args) > 3:
        while _condition(engine, line, True):
            if _external_pass(engine, args[0], "WHILE") is not None:
                break
        return None
    loop = InlineLoop(engine, line, WHILE_MARKER, "ENDW")
    while _condition(engine, line, False):
        signal = loop.iterate()
        if signal is not None:
            return loop.finish(signal)
    return loop.finish()


def _dowhile(engine: Engine, args: List[str], line: Line) -> Optional[LoopSignal]:
    if len(args) > 3:
        while True:
            if _external_pass(engine, args[0], "DOWHILE") is not None:
                break
            if not _condition(engine, line, True):
                break
        return None
    loop = InlineLoop(engine, line, DOWHILE_MARKER, "ENDDW")
    while True:
        signal = loop.iterate()
        if signal is not None:
            return loop.finish(signal)
        if not _condition(engine, line, False):
            break
    return loop.finish()


def _end_loop(engine: Engine, args: List[str], line: Line) -> Optional[LoopSignal]:
    if engine.loop_body:
        return Resume(line.number, engine.runtime.returned_value)
    engine.report(Level.ERR, f"{line.keyword} found outside of a loop body.", Code.LOOP)
    return None


def _break(engine: Engine, args: List[str], line: Line) -> LoopSignal:
    return Break(engine.runtime.returned_value)


def _continue(engine: Engine, args: List[str], line: Line) -> LoopSignal:
    return Continue(engine.runtime.returned_value)


# ---- misc ----


def _sleep(engine: Engine, args: List[str], line: Line) -> None:
    if engine.runtime.sleep(engine.integer(args[0])):
        engine.report(Level.WRN, "SLEEP interrupted by an internal thread.", Code.INTERRUPTED)
    return None


def _caseu(engine: Engine, args: List[str], line: Line) -> None:
    (text,) = engine.operands(args, 1)
    engine.set_variable(args[0], text.upper())
    return None


def _casel(engine: Engine, args: List[str], line: Line) -> None:
    (text,) = engine.operands(args, 1)
    engine.set_variable(args[0], text.lower())
    return None


def _nop(engine: Engine, args: List[str], line: Line) -> None:
    return None


def _tobin(engine: Engine, args: List[str], line: Line) -> None:
    (text,) = engine.operands(args, 1)
    engine.set_variable(args[0], to_binary(engine.integer(text)))
    return None


def _bintoint(engine: Engine, args: List[str], line: Line) -> None:
    (text,) = engine.operands(args, 1)
    value = from_binary(text)
    if value is None:
        engine.report(Level.ERR, f"Malformed binary number '{text}'.", Code.MALFORMED_VALUE)
        engine.set_variable(args[0], NULL)
        return None
    engine.set_variable(args[0], str(value))
    return None


def register(ext: ExtensionAPI) -> None:
    ext.metadata(name="extended", version=VERSION)

    ext.register_instruction("FOR", 1, 2, _for, doc="FOR amount ... ENDF | FOR entry amount")
    ext.register_instruction("WHILE", 3, 4, _while, doc="WHILE cmp a b ... ENDW | WHILE entry cmp a b")
    ext.register_instruction("DOWHILE", 3, 4, _dowhile, doc="DOWHILE cmp a b ... ENDDW | DOWHILE entry cmp a b")
    for closer in ("ENDF", "ENDW", "ENDDW"):
        ext.register_instruction(closer, 0, None, _end_loop)
    ext.register_instruction("BREAK", 0, None, _break)
    ext.register_instruction("CONTINUE", 0, None, _continue)
    ext.register_instruction("SLEEP", 1, 1, _sleep, doc="SLEEP milliseconds")
    ext.register_instruction("CASEU", 1, 2, _caseu)
    ext.register_instruction("CASEL", 1, 2, _casel)
    ext.register_instruction("NOP", 0, None, _nop)
    ext.register_instruction("TOBIN", 1, 2, _tobin)
    ext.register_instruction("BINTOINT", 1, 2, _bintoint)

    ext.register_variable("pask", lambda rt: rt.input_provider.read_line("> "))
    ext.register_variable("pconfirm", lambda rt: format_bool(rt.input_provider.confirm("Continue?")))
    ext.register_variable("maartanic", lambda rt: "true")


def build_extended_set() -> InstructionSet:
    return build_instruction_set("extended", register)
