"""Maartanic entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from extensions import MRTExtensionError, load_runtime_services
from interpreter import (
    ABNORMAL_CODE,
    DEFAULT_MAX_DEPTH,
    HALT_CODE,
    RET_CLOSE,
    Break,
    Continue,
    HaltSignal,
    LoopSignal,
    MRTRuntimeError,
    Runtime,
    TracebackFormatter,
    run_program,
)
from lexer import DEFAULT_MAX_ARGS
from messages import SILENT, ConsoleInput, Level, MessageSink
from source import ScriptSource


EXIT_MESSAGES = {
    "-1": "Process closed incorrectly.",
    "0": "Process successfully closed.",
    "1": "Process closed due to an internal thread.",
    "2": "Process was manually halted.",
    "3": "Process was closed due to a break statement.",
    "4": "Process was closed due to a continue statement.",
    "5": "Process successfully closed. (RET)",
}

# Python frames one nesting level of calls or loops can take, and the frames
# kept free for the command line and test runners below the first engine.
FRAMES_PER_LEVEL = 6
RESERVED_FRAMES = 150


def depth_limit(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid depth: {text!r}") from None
    ceiling = (sys.getrecursionlimit() - RESERVED_FRAMES) // FRAMES_PER_LEVEL
    if not 1 <= value <= ceiling:
        raise argparse.ArgumentTypeError(f"depth must be between 1 and {ceiling}")
    return value


def describe_exit(value: str) -> str:
    message = EXIT_MESSAGES.get(value)
    if message is None:
        return f"Process closed with value {value}."
    return f"{message} (code {value})"


def exit_value(signal: LoopSignal) -> str:
    if isinstance(signal, Break):
        return "3"
    if isinstance(signal, Continue):
        return "4"
    return signal.value


def run_cli(argv: Optional[List[str]] = None, input_provider: Optional[ConsoleInput] = None) -> int:
    parser = argparse.ArgumentParser(description="Maartanic VSB script interpreter")
    parser.add_argument("program", nargs="?", help="Script file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("--entry", default="main", help="Entry point to start from (default: main)")
    parser.add_argument(
        "--log-level",
        type=int,
        choices=[int(Level.INF), int(Level.WRN), int(Level.ERR), SILENT],
        default=int(Level.WRN),
        help="Minimum message level: 0 info, 1 warning, 2 error, 3 silent",
    )
    parser.add_argument("--mode", choices=["vsb", "extended"], default="vsb", help="Start in compat or extended mode")
    parser.add_argument("--graphics", action="store_true", help="Start with graphics instructions enabled")
    parser.add_argument("--max-depth", type=depth_limit, default=DEFAULT_MAX_DEPTH, help="Maximum nesting of calls and loops")
    parser.add_argument("--max-args", type=int, default=DEFAULT_MAX_ARGS, help="Maximum arguments per instruction")
    parser.add_argument("--seed", type=int, default=None, help="Seed for RAND")
    parser.add_argument("--ext", action="append", default=[], help="Extension module or .mrtx pointer file (repeatable)")
    parser.add_argument("--loop-main", action="store_true", help="Re-run main until RET while extended mode is off")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit local variables in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    console = input_provider or ConsoleInput()

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        answer = console.read_line("Script file: ").strip()
        if not answer:
            print("Canceled.")
            return 0
        args.program = answer

    if args.source_mode:
        source = ScriptSource(args.program)
    else:
        try:
            source = ScriptSource.from_file(args.program)
        except OSError as exc:
            print(f"Failed to read {args.program}: {exc}", file=sys.stderr)
            return 1

    try:
        services = load_runtime_services(args.ext)
        runtime = Runtime(
            messages=MessageSink(min_level=args.log_level),
            input_provider=console,
            services=services,
            extended=args.mode == "extended",
            graphics=args.graphics,
            max_depth=args.max_depth,
            max_args=args.max_args,
            seed=args.seed,
            verbose=args.verbose,
        )
    except MRTExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    try:
        while True:
            signal = run_program(runtime, source, args.entry)
            value = exit_value(signal)
            # Compat scripts are frame loops: main runs again until it RETs.
            if not args.loop_main or runtime.extended or isinstance(signal, Break) or value == RET_CLOSE:
                break
    except HaltSignal as sig:
        value = sig.code
    except KeyboardInterrupt:
        value = HALT_CODE
    except MRTRuntimeError as error:
        formatter = TracebackFormatter(runtime)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        value = ABNORMAL_CODE

    print()
    print(describe_exit(value))
    return 1 if value == ABNORMAL_CODE else 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
