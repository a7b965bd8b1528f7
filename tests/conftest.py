"""
Shared fixtures: small resolution ladders, flat tile sets, a terminal
screen model and fakes for the clock, the output stream and the
game-state service.
"""

import re
import asyncio

import numpy as np
import pytest
from wcwidth import wcwidth

from abyss_encoder import ANSI
from abyss_pixels import PixelGrid, scale_all
from abyss_types import Tile
from config import AbyssConfig, RenderingConfig, WorldConfig, reload_config

SMALL_SIZES = (4, 8, 16)

TERRAIN_COLORS = {
    'grass': (0, 200, 0),
    'dirt': (120, 80, 40),
    'sand': (220, 200, 140),
    'water': (0, 0, 200),
    'stone': (128, 128, 128),
    'void': (0, 0, 0),
}


def solid_tile(tile_id, color, walkable=True, sizes=SMALL_SIZES):
    pixels = PixelGrid.solid(16, 16, color)
    return Tile(tile_id, tile_id.title(), walkable, pixels, scale_all(pixels, sizes))


def marked_tile(tile_id, walkable=True, sizes=SMALL_SIZES):
    """4x4 tile with a red top-left pixel so rotations are visible"""
    rgb = np.zeros((4, 4, 3), dtype=np.uint8)
    rgb[:, :] = (0, 120, 0)
    rgb[0, 0] = (255, 0, 0)
    pixels = PixelGrid(rgb)
    return Tile(tile_id, tile_id.title(), walkable, pixels, scale_all(pixels, sizes))


def flat_tileset(walkable=True):
    return {tile_id: solid_tile(tile_id, color, walkable)
            for tile_id, color in TERRAIN_COLORS.items()}


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingOutput:
    def __init__(self):
        self.chunks = []

    def write(self, data):
        self.chunks.append(data)

    @property
    def text(self):
        return ''.join(self.chunks)


class FakeGameState:
    def __init__(self, visible=None, everyone=None, delay=0.0):
        self.visible = list(visible or [])
        self.everyone = everyone
        self.delay = delay
        self.visible_queries = []
        self.moves = []

    async def get_visible_players(self, x, y, cols, rows, exclude_id):
        self.visible_queries.append((x, y, cols, rows, exclude_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.visible)

    async def get_all_players(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.everyone if self.everyone is not None else self.visible)

    def queue_move(self, player_id, x, y, direction):
        self.moves.append((player_id, x, y, direction))


_TOKEN = re.compile(r'\x1b\[(\d+);(\d+)H|\x1b\[(\d+)C|\x1b\[([\d;]*)m|\x1b\[2J|\x1b\[\?25[lh]|(.)',
                    re.DOTALL)


def _clusters(text):
    """(characters, columns) per terminal cell, combining marks attached"""
    clusters = []
    for ch in text:
        width = wcwidth(ch)
        if width == 0 and clusters:
            clusters[-1] = (clusters[-1][0] + ch, clusters[-1][1])
        elif width > 0:
            clusters.append((ch, width))
    return clusters


class TerminalModel:
    """
    Screen of (text, fg, bg) per terminal column, driven by CUP, CUF,
    SGR, clear and printable output. Wide characters leave an empty
    continuation column; combining marks join the character before.
    """

    def __init__(self):
        self.screen = {}
        self.row = self.col = 0
        self.fg = self.bg = None
        self._last = None

    def feed(self, data):
        for m in _TOKEN.finditer(data):
            cup_row, cup_col, cuf, sgr, text = m.groups()
            if cup_row is not None:
                self.row, self.col = int(cup_row) - 1, int(cup_col) - 1
            elif cuf is not None:
                self.col += int(cuf)
            elif sgr is not None:
                self._sgr(sgr)
            elif m.group(0) == ANSI.CLEAR_SCREEN:
                self.screen.clear()
            elif text is not None:
                self._put(text)

    def _put(self, ch):
        width = wcwidth(ch)
        if width == 0:
            if self._last in self.screen:
                old, fg, bg = self.screen[self._last]
                self.screen[self._last] = (old + ch, fg, bg)
            return
        if width < 0:
            return
        self._last = (self.row, self.col)
        self.screen[self._last] = (ch, self.fg, self.bg)
        if width == 2:
            self.screen[(self.row, self.col + 1)] = ('', self.fg, self.bg)
        self.col += width

    def _sgr(self, params):
        codes = [int(p) for p in params.split(';') if p]
        i = 0
        while i < len(codes):
            if codes[i] == 0:
                self.fg = self.bg = None
                i += 1
            elif codes[i] in (38, 48) and codes[i + 1] == 2:
                self._set(codes[i], tuple(codes[i + 2:i + 5]))
                i += 5
            elif codes[i] in (38, 48) and codes[i + 1] == 5:
                self._set(codes[i], ('indexed', codes[i + 2]))
                i += 3
            else:
                i += 1

    def _set(self, code, color):
        if code == 38:
            self.fg = color
        else:
            self.bg = color

    def row_text(self, row, cols):
        return ''.join(self.screen.get((row, c), (' ',))[0] for c in range(cols))

    def matches(self, cells, origin_row=0):
        """Every cell of the grid is on screen with its text and colors"""
        for r in range(cells.rows):
            for c in range(cells.cols):
                bg = tuple(int(v) for v in cells.bg[r, c])
                fg = tuple(int(v) for v in cells.fg[r, c])
                col = c * cells.cell_cols
                for cluster, width in _clusters(cells.chars[r, c]):
                    got = self.screen.get((origin_row + r, col))
                    if got is None or got[0] != cluster or got[2] != bg:
                        return False
                    if cluster.strip() and got[1] != fg:
                        return False
                    col += width
        return True

    def looks_like(self, other, rows, cols):
        """Same text and background everywhere, fg wherever text is visible"""
        for row in range(rows):
            for col in range(cols):
                mine = self.screen.get((row, col))
                theirs = other.screen.get((row, col))
                if mine is None or theirs is None:
                    if mine is not theirs:
                        return False
                    continue
                if mine[0] != theirs[0] or mine[2] != theirs[2]:
                    return False
                if mine[0].strip() and mine[1] != theirs[1]:
                    return False
        return True


@pytest.fixture(scope="session", autouse=True)
def np_seed() -> None:
    np.random.seed(12345)


@pytest.fixture(autouse=True)
def reset_global_config():
    yield
    reload_config(AbyssConfig())


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def output():
    return RecordingOutput()


@pytest.fixture()
def small_rendering():
    return RenderingConfig(resolutions=SMALL_SIZES, full_zoom_tile_size=16)


@pytest.fixture()
def small_world_config():
    return WorldConfig(chunk_size=8, chunk_cache_size=4)


@pytest.fixture()
def session_config(small_rendering, small_world_config):
    config = AbyssConfig()
    config.rendering = small_rendering
    config.world = small_world_config
    return config
