"""Headless display surface and the graphics instruction set.

The surface is an RGB framebuffer held in a numpy array. It can be written out
as a binary PPM with ``SAVEIMG``; nothing here opens a window.
"""

from __future__ import annotations
import os
import threading
from typing import List, Optional, Tuple

import numpy as np

from conversions import format_bool, hex_to_rgb
from extensions import ExtensionAPI, InstructionSet, build_instruction_set
from lexer import Line
from messages import Code, Level


DEFAULT_WIDTH = 480
DEFAULT_HEIGHT = 360
# Simple safety limit to avoid exhausting memory on huge window sizes.
MAX_PIXELS = 16_000_000

Color = Tuple[int, int, int]


class FrameBuffer:
    def __init__(self, width: int = DEFAULT_WIDTH, height: int = DEFAULT_HEIGHT) -> None:
        self.pixels = np.zeros((height, width, 3), dtype=np.uint8)
        self.pen: Color = (255, 255, 255)
        # The pointer may be updated from a host thread.
        self._lock = threading.Lock()
        self._pointer: Tuple[int, int, bool] = (0, 0, False)

    def size(self) -> Tuple[int, int]:
        height, width = self.pixels.shape[:2]
        return width, height

    def resize(self, width: int, height: int) -> None:
        resized = np.zeros((height, width, 3), dtype=np.uint8)
        old_height, old_width = self.pixels.shape[:2]
        keep_h = min(height, old_height)
        keep_w = min(width, old_width)
        resized[:keep_h, :keep_w] = self.pixels[:keep_h, :keep_w]
        self.pixels = resized

    def fill(self, color: Optional[Color] = None) -> None:
        self.pixels[:, :] = self.pen if color is None else color

    def draw_line(self, x: int, y: int, x1: int, y1: int, color: Optional[Color] = None) -> None:
        steps = max(abs(x1 - x), abs(y1 - y)) + 1
        xs = np.rint(np.linspace(x, x1, steps)).astype(np.int64)
        ys = np.rint(np.linspace(y, y1, steps)).astype(np.int64)
        width, height = self.size()
        inside = (xs >= 0) & (xs < width) & (ys >= 0) & (ys < height)
        self.pixels[ys[inside], xs[inside]] = self.pen if color is None else color

    def draw_rect(self, x: int, y: int, width: int, height: int, color: Optional[Color] = None) -> None:
        if width <= 0 or height <= 0:
            return
        right = x + width - 1
        bottom = y + height - 1
        self.draw_line(x, y, right, y, color)
        self.draw_line(x, bottom, right, bottom, color)
        self.draw_line(x, y, x, bottom, color)
        self.draw_line(right, y, right, bottom, color)

    def pointer(self) -> Tuple[int, int, bool]:
        with self._lock:
            return self._pointer

    def move_pointer(self, x: int, y: int, down: bool = False) -> None:
        with self._lock:
            self._pointer = (x, y, down)

    def to_ppm(self) -> bytes:
        width, height = self.size()
        header = f"P6\n{width} {height}\n255\n".encode("ascii")
        return header + np.ascontiguousarray(self.pixels).tobytes()

    def save(self, path: str) -> None:
        with open(path, "wb") as handle:
            handle.write(self.to_ppm())


def _color(engine, text: str) -> Optional[Color]:
    rgb = hex_to_rgb(text)
    if rgb is None:
        engine.report(Level.ERR, f"Malformed color '{text}'.", Code.MALFORMED_VALUE)
    return rgb


def _op_color(engine, args: List[str], line: Line) -> None:
    rgb = _color(engine, args[0])
    if rgb is not None:
        engine.runtime.display.pen = rgb
    return None


def _op_fill(engine, args: List[str], line: Line) -> None:
    rgb = _color(engine, args[0])
    if rgb is not None:
        engine.runtime.display.fill(rgb)
    return None


def _op_line(engine, args: List[str], line: Line) -> None:
    x, y, x1, y1 = (engine.integer(a) for a in args)
    engine.runtime.display.draw_line(x, y, x1, y1)
    return None


def _op_rect(engine, args: List[str], line: Line) -> None:
    x, y, width, height = (engine.integer(a) for a in args)
    engine.runtime.display.draw_rect(x, y, width, height)
    return None


def _op_winsize(engine, args: List[str], line: Line) -> None:
    width = engine.integer(args[0])
    height = engine.integer(args[1])
    if width <= 0 or height <= 0 or width * height > MAX_PIXELS:
        engine.report(Level.ERR, f"Invalid window size {width}x{height}.", Code.MALFORMED_VALUE)
        return None
    engine.runtime.display.resize(width, height)
    return None


def _op_saveimg(engine, args: List[str], line: Line) -> None:
    path = args[0]
    if not path:
        engine.report(Level.ERR, "SAVEIMG needs a path.", Code.MISSING_ARGUMENTS)
        return None
    try:
        engine.runtime.display.save(os.path.abspath(path))
    except OSError as exc:
        engine.report(Level.ERR, f"Could not save image to {path}: {exc}", Code.MALFORMED_VALUE)
    return None


def register(ext: ExtensionAPI) -> None:
    ext.metadata(name="graphics", version="1.0.0")
    ext.register_instruction("COLOR", 1, 1, _op_color, doc="COLOR hex ; pen color")
    ext.register_instruction("FILL", 1, 1, _op_fill, doc="FILL hex")
    ext.register_instruction("LINE", 4, 4, _op_line, doc="LINE x y x1 y1")
    ext.register_instruction("RECT", 4, 4, _op_rect, doc="RECT x y width height")
    ext.register_instruction("WINSIZE", 2, 2, _op_winsize, doc="WINSIZE width height")
    ext.register_instruction("SAVEIMG", 1, 1, _op_saveimg, doc="SAVEIMG path ; binary PPM")

    ext.register_variable("graphics", lambda rt: "true")
    ext.register_variable("ww", lambda rt: str(rt.display.size()[0]))
    ext.register_variable("wh", lambda rt: str(rt.display.size()[1]))
    ext.register_variable("mx", lambda rt: str(rt.display.pointer()[0]))
    ext.register_variable("my", lambda rt: str(rt.display.pointer()[1]))
    ext.register_variable("md", lambda rt: format_bool(rt.display.pointer()[2]))


def build_graphics_set() -> InstructionSet:
    return build_instruction_set("graphics", register)
