import numpy as np
import pytest

from graphics import FrameBuffer
from interpreter import UnrecognizedInstructionError
from messages import Code


@pytest.fixture
def gfx(make_harness):
    return make_harness(graphics=True)


def test_framebuffer_starts_black():
    fb = FrameBuffer(4, 3)
    assert fb.size() == (4, 3)
    assert fb.pixels.shape == (3, 4, 3)
    assert not fb.pixels.any()


def test_fill_uses_pen_or_given_color():
    fb = FrameBuffer(2, 2)
    fb.fill((1, 2, 3))
    assert (fb.pixels == [1, 2, 3]).all()
    fb.pen = (9, 9, 9)
    fb.fill()
    assert (fb.pixels == 9).all()


def test_draw_line_is_clipped():
    fb = FrameBuffer(4, 3)
    fb.draw_line(-2, 0, 10, 0, (255, 0, 0))
    assert (fb.pixels[0] == [255, 0, 0]).all()
    assert not fb.pixels[1:].any()


def test_diagonal_line():
    fb = FrameBuffer(3, 3)
    fb.draw_line(0, 0, 2, 2, (1, 1, 1))
    assert np.array_equal(fb.pixels[:, :, 0], np.eye(3, dtype=np.uint8))


def test_draw_rect_outlines_only():
    fb = FrameBuffer(4, 4)
    fb.draw_rect(0, 0, 4, 4, (7, 7, 7))
    assert (fb.pixels[0] == 7).all()
    assert (fb.pixels[:, 3] == 7).all()
    assert not fb.pixels[1:3, 1:3].any()
    fb.draw_rect(0, 0, 0, 5, (1, 1, 1))
    assert not fb.pixels[1:3, 1:3].any()


def test_resize_keeps_the_overlap():
    fb = FrameBuffer(2, 2)
    fb.fill((5, 5, 5))
    fb.resize(3, 1)
    assert fb.size() == (3, 1)
    assert fb.pixels[0, :2].tolist() == [[5, 5, 5], [5, 5, 5]]
    assert fb.pixels[0, 2].tolist() == [0, 0, 0]


def test_pointer():
    fb = FrameBuffer()
    assert fb.pointer() == (0, 0, False)
    fb.move_pointer(3, 4, True)
    assert fb.pointer() == (3, 4, True)


def test_ppm_encoding():
    fb = FrameBuffer(2, 1)
    fb.fill((255, 0, 16))
    data = fb.to_ppm()
    assert data == b"P6\n2 1\n255\n" + bytes([255, 0, 16, 255, 0, 16])


def test_graphics_instructions(gfx):
    gfx.run(
        "DEF main",
        "WINSIZE 10 5",
        "FILL 00FF00",
        "COLOR FF0000",
        "LINE 0 0 9 0",
        "RECT 2 2 3 3",
        "PRINT $_ww x $_wh $_graphics",
        "ENDDEF",
    )
    pixels = gfx.runtime.display.pixels
    assert gfx.text == "10x5true\n"
    assert pixels.shape == (5, 10, 3)
    assert pixels[0, 9].tolist() == [255, 0, 0]
    assert pixels[2, 2].tolist() == [255, 0, 0]
    assert pixels[3, 3].tolist() == [0, 255, 0]


def test_invalid_graphics_arguments(gfx):
    gfx.run("DEF main", "WINSIZE 0 5", "COLOR nope", "ENDDEF")
    assert gfx.runtime.display.size() == (480, 360)
    assert gfx.codes == [Code.MALFORMED_VALUE, Code.MALFORMED_VALUE]


def test_pointer_variables(gfx):
    gfx.runtime.display.move_pointer(3, 4, True)
    gfx.run("DEF main", "PRINT $_mx , $_my , $_md", "ENDDEF")
    assert gfx.text == "3,4,true\n"


def test_saveimg_writes_ppm(gfx, tmp_path):
    target = tmp_path / "frame.ppm"
    gfx.run("DEF main", "WINSIZE 2 2", f'SAVEIMG "{target}"', "ENDDEF")
    assert target.read_bytes().startswith(b"P6\n2 2\n255\n")


def test_saveimg_failure_is_reported(gfx, tmp_path):
    gfx.run("DEF main", f'SAVEIMG "{tmp_path / "missing" / "frame.ppm"}"', "ENDDEF")
    assert gfx.codes == [Code.MALFORMED_VALUE]


def test_graphics_can_be_toggled_by_directive(vsb):
    vsb.run("DEF main", "PRINT $_graphics", "[graphics enable]", "PRINT $_graphics", "[graphics disable]", "PRINT $_graphics", "ENDDEF")
    assert vsb.text == "false\ntrue\nfalse\n"


def test_graphics_instructions_need_graphics_mode(vsb):
    with pytest.raises(UnrecognizedInstructionError):
        vsb.run("DEF main", "LINE 0 0 1 1", "ENDDEF")
