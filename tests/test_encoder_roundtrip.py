"""
Diff round-trip: for any two frames, the output that takes the screen
from the first to the second leaves exactly the second on screen, in
every render mode and with name tags stamped over the pixels.
"""

import numpy as np
import pytest

hypothesis = pytest.importorskip("hypothesis", reason="hypothesis is a test optional dependency")
from hypothesis import given, settings, strategies as st  # noqa: E402

from abyss_encoder import TerminalEncoder, build_cells  # noqa: E402
from abyss_pixels import PixelGrid  # noqa: E402
from abyss_types import TextOverlay  # noqa: E402
from config import ColorMode, RenderMode  # noqa: E402

from conftest import TerminalModel  # noqa: E402

PALETTE = [(0, 0, 0), (255, 0, 0), (0, 128, 255), (250, 250, 250)]
WIDTH, HEIGHT = 4, 8
TAG_TEXT = ['a', 'Bob', 'Zo\u00eb', '\u4f60\u597d', 'e\u0301x', 'x\u4f60']

pixels = st.lists(st.integers(0, len(PALETTE) - 1), min_size=WIDTH * HEIGHT, max_size=WIDTH * HEIGHT)
tags = st.lists(
    st.tuples(st.sampled_from(TAG_TEXT), st.integers(0, WIDTH - 1), st.integers(0, HEIGHT - 1),
              st.sampled_from(PALETTE), st.sampled_from(PALETTE)),
    max_size=3,
)


def frame(indices, overlays, mode):
    rgb = np.array([PALETTE[i] for i in indices], dtype=np.uint8).reshape(HEIGHT, WIDTH, 3)
    cells = build_cells(PixelGrid(rgb), mode)
    return cells.stamp_overlays([TextOverlay(text, x, y, fg, bg) for text, x, y, fg, bg in overlays])


@pytest.mark.parametrize("mode", list(RenderMode))
@settings(max_examples=40, deadline=None)
@given(a=pixels, a_tags=tags, b=pixels, b_tags=tags)
def test_diff_reproduces_target(mode, a, a_tags, b, b_tags):
    encoder = TerminalEncoder(ColorMode.TRUECOLOR, origin_row=1)
    first, second = frame(a, a_tags, mode), frame(b, b_tags, mode)
    model = TerminalModel()

    model.feed(encoder.encode(first).output)
    assert model.matches(first, origin_row=1)
    model.feed(encoder.encode(second).output)
    assert model.matches(second, origin_row=1)


@pytest.mark.parametrize("mode", list(RenderMode))
@settings(max_examples=25, deadline=None)
@given(a=pixels, a_tags=tags, b=pixels, b_tags=tags)
def test_stored_diff_matches_full_redraw(mode, a, a_tags, b, b_tags):
    encoder = TerminalEncoder(ColorMode.TRUECOLOR)
    first, second = frame(a, a_tags, mode), frame(b, b_tags, mode)

    diffed = TerminalModel()
    diffed.feed(encoder.encode(first).output)
    diffed.feed(encoder.encode_diff(first, second).output)

    redrawn = TerminalModel()
    redrawn.feed(TerminalEncoder(ColorMode.TRUECOLOR).encode(second).output)

    cols = second.cols * second.cell_cols
    assert diffed.looks_like(redrawn, second.rows, cols)
