#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Terminal Pixel Encoder
===================================================
Copyright (c) 2025 Abyss-Tec LLC

Pixel Buffers to Minimal Terminal Output
========================================
Turns a composited pixel buffer into a grid of terminal cells, stamps
text overlays into it, and emits only what changed since the previous
frame.

Render Modes
============
    mode        pixels/cell   columns/cell   glyph
    normal      1 x 1         2              two spaces on the pixel color
    halfblock   1 x 2         1              '▀' fg=top bg=bottom
    braille     2 x 4         1              dots lit above mean luminance

Diff Emission
=============
- Cells are compared on text, foreground and background
- Foreground of blank cells is normalized to the background so it never
  causes a spurious difference
- Cursor moves use CUP, or CUF when the target is further along the
  current row and the sequence is shorter
- SGR is emitted only when the tracked colors change
- Every non-empty chunk ends with a reset
- No baseline, a size change or an explicit invalidate gives a full redraw

Module Interface
================
- CellGrid: chars, fg and bg arrays for one frame
- build_cells(): pixel buffer to CellGrid in a render mode
- AnsiWriter: cursor and color tracking escape sequence builder
- TerminalEncoder: stateful diffing encoder
"""

import re
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from abyss_pixels import PixelGrid
from abyss_types import TextOverlay
from abyss_width import WidthCalculator, get_calculator
from config import ColorMode, RenderMode, RGBColors, get_rendering_config

# Configure logging
logger = logging.getLogger('abyss_encoder')

RGB = Tuple[int, int, int]

UPPER_HALF = '▀'
BRAILLE_BASE = 0x2800

# Braille dot bits indexed [dy][dx]
BRAILLE_BITS = np.array([[0x01, 0x08],
                         [0x02, 0x10],
                         [0x04, 0x20],
                         [0x40, 0x80]], dtype=np.int64)

# (pixel width, pixel height, terminal columns) per cell
MODE_GEOMETRY = {
    RenderMode.NORMAL: (1, 1, 2),
    RenderMode.HALFBLOCK: (1, 2, 1),
    RenderMode.BRAILLE: (2, 4, 1),
}

LUMA = np.array([0.299, 0.587, 0.114])


class ANSI:
    RESET = "\033[0m"
    CLEAR_SCREEN = "\033[2J"
    HIDE_CURSOR = "\033[?25l"
    SHOW_CURSOR = "\033[?25h"


def sanitize_terminal_input(text: str) -> str:
    """Remove escape sequences and control characters from user supplied text."""
    if not isinstance(text, str):
        text = str(text)

    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')
    text = ansi_escape.sub('', text)

    return ''.join(ch for ch in text if ord(ch) >= 32 and ch != '\x7f')


def cells_per_terminal(mode: RenderMode) -> Tuple[int, int, int]:
    """Pixel width, pixel height and terminal columns of one cell"""
    return MODE_GEOMETRY[mode]


# ============================================================================
# CELL GRID
# ============================================================================

@dataclass
class CellGrid:
    """
    One frame of terminal cells.

    ``chars`` holds the text of each cell (exactly ``cell_cols`` columns
    wide, or '' for the right half of a wide character). ``fg`` and
    ``bg`` are (rows, cols, 3) uint8 arrays.
    """
    chars: np.ndarray
    fg: np.ndarray
    bg: np.ndarray
    cell_cols: int = 1
    mode: RenderMode = RenderMode.HALFBLOCK

    @property
    def rows(self) -> int:
        return self.chars.shape[0]

    @property
    def cols(self) -> int:
        return self.chars.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.chars.shape

    @property
    def terminal_columns(self) -> int:
        return self.cols * self.cell_cols

    def copy(self) -> 'CellGrid':
        return CellGrid(self.chars.copy(), self.fg.copy(), self.bg.copy(),
                        self.cell_cols, self.mode)

    def crop(self, rows: int, cols: int) -> 'CellGrid':
        """Top-left rows x cols cells, as a new grid"""
        cropped = CellGrid(self.chars[:rows, :cols].copy(), self.fg[:rows, :cols].copy(),
                           self.bg[:rows, :cols].copy(), self.cell_cols, self.mode)
        # A wide character cut at the right edge loses its right half
        if cropped.cols and cropped.cols < self.cols:
            spilled = self.chars[:rows, cropped.cols] == ''
            cropped.chars[:, -1][spilled] = ' ' * self.cell_cols
            cropped.fg[:, -1][spilled] = cropped.bg[:, -1][spilled]
        return cropped

    def same_layout(self, other: Optional['CellGrid']) -> bool:
        return (other is not None and other.shape == self.shape
                and other.cell_cols == self.cell_cols)

    def stamp_overlays(self, overlays: Iterable[TextOverlay],
                       calculator: Optional[WidthCalculator] = None) -> 'CellGrid':
        """
        Draw text overlays in place.

        Overlay coordinates are buffer pixels; the text is centred on the
        cell holding (x, y). Text outside the grid is cropped.
        """
        calculator = calculator or get_calculator()
        px_w, px_h, _ = MODE_GEOMETRY[self.mode]
        touched_rows = set()

        for overlay in overlays:
            if overlay.y < 0:
                continue
            row = overlay.y // px_h
            if row >= self.rows:
                continue
            text = sanitize_terminal_input(overlay.text)
            cells = calculator.layout(text, self.cell_cols)
            if not cells:
                continue

            start = overlay.x // px_w - len(cells) // 2
            for i, cell_text in enumerate(cells):
                col = start + i
                if 0 <= col < self.cols:
                    self.chars[row, col] = cell_text
                    self.fg[row, col] = overlay.fg
                    self.bg[row, col] = overlay.bg
            touched_rows.add(row)

        for row in touched_rows:
            self._repair_wide(row, calculator)
        return self

    def _repair_wide(self, row: int, calculator: WidthCalculator):
        """Blank out wide characters that lost their continuation cell"""
        chars = self.chars[row]
        for col in range(self.cols):
            text = chars[col]
            if text == '':
                leader = chars[col - 1] if col > 0 else None
                if not leader or calculator.get_width(leader) <= self.cell_cols:
                    chars[col] = ' ' * self.cell_cols
            elif calculator.get_width(text) > self.cell_cols:
                if col + 1 >= self.cols or chars[col + 1] != '':
                    chars[col] = ' ' * self.cell_cols
        self.fg[row] = np.where(
            np.array([c.strip() == '' for c in chars])[:, None], self.bg[row], self.fg[row]
        )


def _to_opaque_rgb(grid: PixelGrid, background: RGB) -> np.ndarray:
    rgb = grid.rgb.astype(np.uint8).copy()
    rgb[~grid.opaque] = background
    return rgb


def _pad(rgb: np.ndarray, multiple_h: int, multiple_w: int, background: RGB) -> np.ndarray:
    h, w = rgb.shape[:2]
    pad_h = (-h) % multiple_h
    pad_w = (-w) % multiple_w
    if not pad_h and not pad_w:
        return rgb
    out = np.empty((h + pad_h, w + pad_w, 3), dtype=np.uint8)
    out[:, :] = background
    out[:h, :w] = rgb
    return out


def build_cells(grid: PixelGrid, mode: RenderMode, background: RGB = (0, 0, 0)) -> CellGrid:
    """
    Pack a pixel buffer into terminal cells.

    Transparent pixels take the background color. Buffers whose size is
    not a multiple of the cell geometry are padded with background.
    """
    px_w, px_h, cell_cols = MODE_GEOMETRY[mode]
    rgb = _pad(_to_opaque_rgb(grid, background), px_h, px_w, background)
    h, w = rgb.shape[:2]

    if mode == RenderMode.NORMAL:
        chars = np.full((h, w), '  ', dtype=object)
        cells = CellGrid(chars, rgb.copy(), rgb.copy(), cell_cols, mode)
        return cells

    if mode == RenderMode.HALFBLOCK:
        top = rgb[0::2]
        bottom = rgb[1::2]
        differs = np.any(top != bottom, axis=2)
        chars = np.where(differs, UPPER_HALF, ' ').astype(object)
        fg = np.where(differs[:, :, None], top, bottom).astype(np.uint8)
        return CellGrid(chars, fg, bottom.copy(), cell_cols, mode)

    # Braille: blocks of 4 rows x 2 columns
    rows, cols = h // 4, w // 2
    blocks = rgb.reshape(rows, 4, cols, 2, 3).transpose(0, 2, 1, 3, 4).astype(np.float64)
    luma = blocks @ LUMA
    mean = luma.mean(axis=(2, 3), keepdims=True)
    lit = luma > mean + 1e-9

    codes = (lit * BRAILLE_BITS).sum(axis=(2, 3))
    lit_count = lit.sum(axis=(2, 3))
    unlit_count = 8 - lit_count

    lit_sum = (blocks * lit[..., None]).sum(axis=(2, 3))
    unlit_sum = (blocks * (~lit)[..., None]).sum(axis=(2, 3))
    fg = np.floor(lit_sum / np.maximum(lit_count, 1)[..., None] + 0.5)
    bg = np.floor(unlit_sum / np.maximum(unlit_count, 1)[..., None] + 0.5)
    fg = np.clip(fg, 0, 255).astype(np.uint8)
    bg = np.clip(bg, 0, 255).astype(np.uint8)

    flat = [chr(BRAILLE_BASE + int(c)) if c else ' ' for c in codes.ravel()]
    chars = np.array(flat, dtype=object).reshape(rows, cols)
    blank = codes == 0
    fg[blank] = bg[blank]
    return CellGrid(chars, fg, bg, cell_cols, mode)


# ============================================================================
# ANSI WRITER
# ============================================================================

@lru_cache(maxsize=4096)
def _indexed(rgb: RGB) -> int:
    return RGBColors.rgb_to_256(rgb)


class AnsiWriter:
    """
    Builds an escape sequence chunk while tracking cursor and colors.

    Positions are zero-based (row, column) in terminal coordinates.
    The cursor and colors start unknown, so the first write of a chunk
    always positions absolutely and sets colors.
    """

    def __init__(self, color_mode: ColorMode = ColorMode.TRUECOLOR,
                 calculator: Optional[WidthCalculator] = None):
        self.color_mode = color_mode
        self._calculator = calculator or get_calculator()
        self._parts: List[str] = []
        self._row: Optional[int] = None
        self._col: Optional[int] = None
        self._fg: Optional[RGB] = None
        self._bg: Optional[RGB] = None

    def move_to(self, row: int, col: int):
        if self._row == row and self._col == col:
            return
        cup = f"\033[{row + 1};{col + 1}H"
        if self._row == row and self._col is not None and col > self._col:
            cuf = f"\033[{col - self._col}C"
            if len(cuf) < len(cup):
                self._parts.append(cuf)
                self._col = col
                return
        self._parts.append(cup)
        self._row, self._col = row, col

    def _fg_code(self, rgb: RGB) -> str:
        if self.color_mode == ColorMode.INDEXED:
            return f"38;5;{_indexed(rgb)}"
        return f"38;2;{rgb[0]};{rgb[1]};{rgb[2]}"

    def _bg_code(self, rgb: RGB) -> str:
        if self.color_mode == ColorMode.INDEXED:
            return f"48;5;{_indexed(rgb)}"
        return f"48;2;{rgb[0]};{rgb[1]};{rgb[2]}"

    def set_colors(self, fg: Optional[RGB], bg: RGB):
        """Emit one SGR for whichever of fg and bg changed. fg None leaves it alone."""
        codes = []
        if fg is not None and fg != self._fg:
            codes.append(self._fg_code(fg))
            self._fg = fg
        if bg != self._bg:
            codes.append(self._bg_code(bg))
            self._bg = bg
        if codes:
            self._parts.append(f"\033[{';'.join(codes)}m")

    def write(self, text: str, width: Optional[int] = None):
        if width is None:
            width = self._calculator.get_width(text)
        self._parts.append(text)
        if self._col is not None:
            self._col += width

    def write_cell(self, row: int, col: int, text: str, fg: RGB, bg: RGB, width: int):
        """Position, color and write one cell"""
        self.move_to(row, col)
        self.set_colors(None if text.strip() == '' else fg, bg)
        self.write(text, width)

    def raw(self, sequence: str):
        """Append a sequence that does not move the cursor"""
        self._parts.append(sequence)

    @property
    def empty(self) -> bool:
        return not self._parts

    def finish(self) -> str:
        """Chunk text, terminated by a reset when anything was written"""
        if not self._parts:
            return ''
        self._parts.append(ANSI.RESET)
        out = ''.join(self._parts)
        self._parts = []
        self._row = self._col = None
        self._fg = self._bg = None
        return out


# ============================================================================
# DIFFING ENCODER
# ============================================================================

@dataclass
class EncodeResult:
    output: str
    byte_size: int
    changed_cells: int
    full_redraw: bool


def changed_mask(previous: CellGrid, current: CellGrid) -> np.ndarray:
    """Cells whose text or colors differ between two same-layout grids"""
    return ((previous.chars != current.chars)
            | np.any(previous.fg != current.fg, axis=2)
            | np.any(previous.bg != current.bg, axis=2))


class TerminalEncoder:
    """
    Stateful diff encoder for one session's viewport.

    Holds the last emitted frame as the baseline. ``baseline_serial``
    increases every time the baseline changes so precomputed diffs can
    check they were made against the frame the terminal shows.
    """

    def __init__(self,
                 color_mode: Optional[ColorMode] = None,
                 origin_row: int = 0,
                 origin_col: int = 0,
                 calculator: Optional[WidthCalculator] = None):
        self.color_mode = color_mode or get_rendering_config().color_mode
        self.origin_row = origin_row
        self.origin_col = origin_col
        self._calculator = calculator or get_calculator()
        self.previous: Optional[CellGrid] = None
        self.baseline_serial = 0

        self.stats = {
            'frames': 0,
            'full_redraws': 0,
            'empty_frames': 0,
            'cells_emitted': 0,
            'bytes_emitted': 0,
        }

    def invalidate(self):
        """Force a full redraw on the next encode"""
        self.previous = None
        self.baseline_serial += 1

    def accept(self, cells: CellGrid):
        """Adopt cells as the baseline (output was produced elsewhere)"""
        self.previous = cells
        self.baseline_serial += 1

    def encode(self, cells: CellGrid, force: bool = False) -> EncodeResult:
        """
        Output bringing the terminal from the baseline to cells, then
        adopt cells as the new baseline.
        """
        result = self.encode_diff(None if force else self.previous, cells)
        self.previous = cells
        self.baseline_serial += 1

        self.stats['frames'] += 1
        self.stats['cells_emitted'] += result.changed_cells
        self.stats['bytes_emitted'] += result.byte_size
        if result.full_redraw:
            self.stats['full_redraws'] += 1
        if not result.output:
            self.stats['empty_frames'] += 1
        return result

    def encode_diff(self, previous: Optional[CellGrid], cells: CellGrid) -> EncodeResult:
        """
        Pure diff from previous to cells, with no state change.

        A missing or differently shaped previous gives a full redraw; a
        shape change also clears the screen first.
        """
        writer = AnsiWriter(self.color_mode, self._calculator)
        full = not cells.same_layout(previous)

        if full:
            mask = np.ones(cells.shape, dtype=bool)
            if previous is not None:
                writer.raw(ANSI.CLEAR_SCREEN)
        else:
            mask = changed_mask(previous, cells)

        changed = self._emit(writer, cells, mask)
        output = writer.finish()
        return EncodeResult(output, len(output.encode('utf-8')), changed, full)

    def _emit(self, writer: AnsiWriter, cells: CellGrid, mask: np.ndarray) -> int:
        cell_cols = cells.cell_cols
        emitted = 0
        for row in np.flatnonzero(mask.any(axis=1)):
            cols = set(int(c) for c in np.flatnonzero(mask[row]))
            # A changed continuation cell is redrawn through its leader
            for col in list(cols):
                if cells.chars[row, col] == '' and col > 0:
                    cols.add(col - 1)

            for col in sorted(cols):
                text = cells.chars[row, col]
                if text == '':
                    continue
                fg = tuple(int(v) for v in cells.fg[row, col])
                bg = tuple(int(v) for v in cells.bg[row, col])
                width = cell_cols if len(text) == cell_cols and text.isascii() \
                    else self._calculator.get_width(text)
                writer.write_cell(self.origin_row + int(row),
                                  self.origin_col + col * cell_cols,
                                  text, fg, bg, width)
                emitted += 1
        return emitted

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        frames = stats['frames']
        stats['avg_bytes_per_frame'] = stats['bytes_emitted'] / frames if frames else 0.0
        return stats
