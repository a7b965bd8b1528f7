"""
Cell packing, the ANSI writer and the diffing encoder.

Encoder output is replayed on the terminal model from conftest and
compared with the frame it was meant to produce.
"""

import numpy as np

from abyss_encoder import (ANSI, UPPER_HALF, AnsiWriter, TerminalEncoder,
                           build_cells, changed_mask, sanitize_terminal_input)
from abyss_pixels import PixelGrid
from abyss_types import TextOverlay
from config import ColorMode, RenderMode

from conftest import TerminalModel

RED = (255, 0, 0)
BLUE = (0, 0, 255)
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)
PALETTE = [(0, 0, 0), (255, 0, 0), (0, 128, 255), (250, 250, 250)]


def halfblock(indices, width=3, height=4):
    rgb = np.array([PALETTE[i] for i in indices], dtype=np.uint8).reshape(height, width, 3)
    return build_cells(PixelGrid(rgb), RenderMode.HALFBLOCK)


class TestBuildCells:
    def test_halfblock(self):
        grid = PixelGrid.from_rows([[RED, RED], [BLUE, RED]])
        cells = build_cells(grid, RenderMode.HALFBLOCK)
        assert cells.shape == (1, 2)
        assert cells.chars[0, 0] == UPPER_HALF
        assert tuple(cells.fg[0, 0]) == RED
        assert tuple(cells.bg[0, 0]) == BLUE
        assert cells.chars[0, 1] == ' '
        assert tuple(cells.bg[0, 1]) == RED

    def test_halfblock_pads_odd_height(self):
        cells = build_cells(PixelGrid.solid(2, 3, RED), RenderMode.HALFBLOCK, background=BLUE)
        assert cells.shape == (2, 2)
        assert tuple(cells.bg[1, 0]) == BLUE
        assert tuple(cells.fg[1, 0]) == RED

    def test_normal_mode_uses_two_columns(self):
        cells = build_cells(PixelGrid.solid(3, 2, RED), RenderMode.NORMAL)
        assert cells.shape == (2, 3)
        assert cells.cell_cols == 2
        assert cells.terminal_columns == 6
        assert cells.chars[0, 0] == '  '
        assert tuple(cells.bg[1, 2]) == RED

    def test_braille_pattern(self):
        rows = [[WHITE, BLACK] for _ in range(4)]
        cells = build_cells(PixelGrid.from_rows(rows), RenderMode.BRAILLE)
        assert cells.shape == (1, 1)
        assert cells.chars[0, 0] == chr(0x2800 + 0x01 + 0x02 + 0x04 + 0x40)
        assert tuple(cells.fg[0, 0]) == WHITE
        assert tuple(cells.bg[0, 0]) == BLACK

    def test_braille_uniform_block_is_blank(self):
        cells = build_cells(PixelGrid.solid(2, 4, RED), RenderMode.BRAILLE)
        assert cells.chars[0, 0] == ' '
        assert tuple(cells.bg[0, 0]) == RED

    def test_transparent_pixels_take_background(self):
        grid = PixelGrid.from_rows([[None], [RED]])
        cells = build_cells(grid, RenderMode.HALFBLOCK, background=BLUE)
        assert tuple(cells.fg[0, 0]) == BLUE


class TestOverlays:
    def test_name_tag_centered_on_cell(self):
        cells = build_cells(PixelGrid.solid(10, 4, BLACK), RenderMode.HALFBLOCK)
        cells.stamp_overlays([TextOverlay('abc', 5, 2, WHITE, BLUE)])
        assert ''.join(cells.chars[1, 4:7]) == 'abc'
        assert tuple(cells.bg[1, 5]) == BLUE

    def test_overlay_cropped_at_edges(self):
        cells = build_cells(PixelGrid.solid(4, 2, BLACK), RenderMode.HALFBLOCK)
        cells.stamp_overlays([TextOverlay('abcdef', 0, 0, WHITE, BLUE),
                              TextOverlay('zz', 1, -6, WHITE, BLUE)])
        assert ''.join(cells.chars[0]) == 'def '

    def test_wide_characters_use_continuation_cells(self):
        cells = build_cells(PixelGrid.solid(6, 2, BLACK), RenderMode.HALFBLOCK)
        cells.stamp_overlays([TextOverlay('你', 2, 0, WHITE, BLUE)])
        row = list(cells.chars[0])
        start = row.index('你')
        assert row[start + 1] == ''

    def test_control_characters_stripped(self):
        assert sanitize_terminal_input('a\x1b[2Jb\x07') == 'a[2Jb'


class TestAnsiWriter:
    def test_prefers_cursor_forward_on_same_row(self):
        writer = AnsiWriter()
        writer.move_to(0, 0)
        writer.write('a')
        writer.move_to(0, 5)
        out = writer.finish()
        assert out == '\x1b[1;1Ha\x1b[4C' + ANSI.RESET

    def test_colors_only_when_changed(self):
        writer = AnsiWriter()
        writer.set_colors(RED, BLUE)
        writer.set_colors(RED, BLUE)
        writer.set_colors(RED, WHITE)
        out = writer.finish()
        assert out == '\x1b[38;2;255;0;0;48;2;0;0;255m\x1b[48;2;255;255;255m' + ANSI.RESET

    def test_indexed_mode(self):
        writer = AnsiWriter(ColorMode.INDEXED)
        writer.set_colors(RED, BLACK)
        assert writer.finish().startswith('\x1b[38;5;196;48;5;16m')

    def test_empty_chunk(self):
        assert AnsiWriter().finish() == ''


class TestTerminalEncoder:
    def test_first_frame_is_full_redraw(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        result = encoder.encode(halfblock([0] * 12))
        assert result.full_redraw
        assert result.changed_cells == 6
        assert result.output.endswith(ANSI.RESET)
        assert ANSI.CLEAR_SCREEN not in result.output

    def test_identical_frames_emit_nothing(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        encoder.encode(halfblock([1] * 12))
        result = encoder.encode(halfblock([1] * 12))
        assert result.output == ''
        assert result.changed_cells == 0
        assert result.byte_size == 0

    def test_single_change(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR, origin_row=1)
        before = [0] * 12
        after = list(before)
        after[2] = 1        # pixel (x=2, y=0) -> cell (0, 2)
        encoder.encode(halfblock(before))
        result = encoder.encode(halfblock(after))
        assert result.changed_cells == 1
        assert result.output.startswith('\x1b[2;3H')

    def test_shape_change_clears_screen(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        encoder.encode(halfblock([0] * 12))
        result = encoder.encode(halfblock([0] * 6, width=3, height=2))
        assert result.full_redraw
        assert result.output.startswith(ANSI.CLEAR_SCREEN)

    def test_invalidate_forces_full_redraw(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        encoder.encode(halfblock([0] * 12))
        serial = encoder.baseline_serial
        encoder.invalidate()
        assert encoder.baseline_serial == serial + 1
        assert encoder.encode(halfblock([0] * 12)).changed_cells == 6

    def test_encode_diff_is_pure(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        a = halfblock([0] * 12)
        encoder.encode(a)
        serial = encoder.baseline_serial
        encoder.encode_diff(a, halfblock([2] * 12))
        assert encoder.previous is a
        assert encoder.baseline_serial == serial

    def test_accept_replaces_baseline(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        b = halfblock([3] * 12)
        encoder.accept(b)
        assert encoder.encode(halfblock([3] * 12)).output == ''

    def test_changed_continuation_cell_redraws_leader(self):
        base = build_cells(PixelGrid.solid(4, 2, BLACK), RenderMode.HALFBLOCK)
        wide = base.copy().stamp_overlays([TextOverlay('你', 1, 0, WHITE, BLUE)])
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        model = TerminalModel()
        model.feed(encoder.encode(base).output)
        model.feed(encoder.encode(wide).output)
        chars = [model.screen[(0, c)][0] for c in range(4) if (0, c) in model.screen]
        assert '你' in chars

    def test_stats(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        encoder.encode(halfblock([0] * 12))
        encoder.encode(halfblock([0] * 12))
        stats = encoder.get_stats()
        assert stats['frames'] == 2
        assert stats['full_redraws'] == 1
        assert stats['empty_frames'] == 1


class TestDiffReplay:
    def test_single_change_reproduces_target(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR, origin_row=1)
        first, second = halfblock([0] * 12), halfblock([0] * 5 + [2] + [0] * 6)
        model = TerminalModel()
        model.feed(encoder.encode(first).output)
        assert model.matches(first, origin_row=1)
        model.feed(encoder.encode(second).output)
        assert model.matches(second, origin_row=1)

    def test_all_cells_different(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        first, second = halfblock([0] * 12), halfblock([3] * 12)
        model = TerminalModel()
        model.feed(encoder.encode(first).output)
        result = encoder.encode(second)
        model.feed(result.output)
        assert result.changed_cells == 6
        assert model.matches(second)

    def test_normal_mode_skips_with_cursor_forward(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        first = build_cells(PixelGrid.solid(6, 1, BLACK), RenderMode.NORMAL)
        rgb = np.zeros((1, 6, 3), dtype=np.uint8)
        rgb[0, 0] = RED
        rgb[0, 5] = RED
        second = build_cells(PixelGrid(rgb), RenderMode.NORMAL)

        model = TerminalModel()
        model.feed(encoder.encode(first).output)
        result = encoder.encode(second)
        model.feed(result.output)
        assert '\x1b[8C' in result.output
        assert model.matches(second)
        assert model.row_text(0, 12) == ' ' * 12

    def test_name_tag_in_normal_mode(self):
        encoder = TerminalEncoder(ColorMode.TRUECOLOR)
        base = build_cells(PixelGrid.solid(5, 2, BLACK), RenderMode.NORMAL)
        tagged = base.copy().stamp_overlays([TextOverlay('a你b', 2, 1, WHITE, BLUE)])

        model = TerminalModel()
        model.feed(encoder.encode(base).output)
        model.feed(encoder.encode(tagged).output)
        assert model.matches(tagged)
        assert model.row_text(1, 10).strip() == 'a 你b'

        model.feed(encoder.encode(base).output)
        assert model.matches(base)

    def test_changed_mask(self):
        first, second = halfblock([0] * 12), halfblock([0] * 11 + [1])
        mask = changed_mask(first, second)
        assert mask.sum() == 1
        assert mask[1, 2]
