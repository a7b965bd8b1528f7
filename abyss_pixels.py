#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Pixel Grid Module
==============================================
Copyright (c) 2025 Abyss-Tec LLC

Immutable Pixel Grids
=====================
Every visual in the renderer (tile art, sprite frames, the composited
viewport) is a ``PixelGrid``: a rectangular grid where each pixel is an
RGB triple or the ``TRANSPARENT`` sentinel.

Storage:
- ``rgb``: read-only ``(height, width, 3)`` uint8 numpy array
- ``opaque``: read-only ``(height, width)`` bool mask

Transparent pixels always carry zero RGB so two grids with the same
visible content compare equal through ``equals()``.

Module Interface:
- PixelGrid: the grid type (rows, Pillow image and numpy constructors)
- TRANSPARENT: sentinel for see-through pixels
- scale_grid(): nearest-neighbour resize
- rotate_grid(): clockwise quarter turns
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

# Configure logging
logger = logging.getLogger('abyss_pixels')

RGB = Tuple[int, int, int]

# Distinct from any color, including (0, 0, 0)
TRANSPARENT = None

# Alpha at or above this counts as opaque when importing images
ALPHA_THRESHOLD = 128


class PixelGrid:
    """
    Immutable rectangular grid of RGB pixels with a transparency mask.
    """

    __slots__ = ('rgb', 'opaque')

    def __init__(self, rgb: np.ndarray, opaque: Optional[np.ndarray] = None):
        rgb = np.asarray(rgb)
        if rgb.ndim != 3 or rgb.shape[2] != 3:
            raise ValueError(f"PixelGrid needs an (H, W, 3) array, got {rgb.shape}")

        if opaque is None:
            opaque = np.ones(rgb.shape[:2], dtype=bool)
        else:
            opaque = np.asarray(opaque, dtype=bool)
            if opaque.shape != rgb.shape[:2]:
                raise ValueError("Opacity mask does not match pixel dimensions")

        rgb = np.clip(rgb, 0, 255).astype(np.uint8)
        rgb[~opaque] = 0
        opaque = opaque.copy()

        rgb.setflags(write=False)
        opaque.setflags(write=False)
        object.__setattr__(self, 'rgb', rgb)
        object.__setattr__(self, 'opaque', opaque)

    def __setattr__(self, name, value):
        raise AttributeError("PixelGrid is immutable")

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[Optional[RGB]]]) -> 'PixelGrid':
        """Build from a list of rows of RGB tuples or TRANSPARENT"""
        height = len(rows)
        width = len(rows[0]) if height else 0
        if any(len(row) != width for row in rows):
            raise ValueError("All rows of a PixelGrid must have equal length")

        rgb = np.zeros((height, width, 3), dtype=np.uint8)
        opaque = np.zeros((height, width), dtype=bool)
        for y, row in enumerate(rows):
            for x, pixel in enumerate(row):
                if pixel is not TRANSPARENT:
                    rgb[y, x] = pixel
                    opaque[y, x] = True
        return cls(rgb, opaque)

    @classmethod
    def solid(cls, width: int, height: int, color: RGB) -> 'PixelGrid':
        """Fully opaque grid of a single color"""
        rgb = np.empty((height, width, 3), dtype=np.uint8)
        rgb[:, :] = color
        return cls(rgb)

    @classmethod
    def blank(cls, width: int, height: int) -> 'PixelGrid':
        """Fully transparent grid"""
        return cls(np.zeros((height, width, 3), dtype=np.uint8),
                   np.zeros((height, width), dtype=bool))

    @classmethod
    def from_image(cls, image: Image.Image) -> 'PixelGrid':
        """
        Build from a Pillow image.

        Pixels with alpha below ALPHA_THRESHOLD become transparent.
        """
        rgba = np.asarray(image.convert('RGBA'))
        return cls(rgba[:, :, :3], rgba[:, :, 3] >= ALPHA_THRESHOLD)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return self.rgb.shape[1]

    @property
    def height(self) -> int:
        return self.rgb.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def pixel(self, x: int, y: int) -> Optional[RGB]:
        """Color at (x, y), or TRANSPARENT"""
        if not self.opaque[y, x]:
            return TRANSPARENT
        r, g, b = self.rgb[y, x]
        return int(r), int(g), int(b)

    def to_rows(self) -> List[List[Optional[RGB]]]:
        return [[self.pixel(x, y) for x in range(self.width)]
                for y in range(self.height)]

    def to_image(self) -> Image.Image:
        """Pillow RGBA image, transparent pixels get zero alpha"""
        rgba = np.zeros((self.height, self.width, 4), dtype=np.uint8)
        rgba[:, :, :3] = self.rgb
        rgba[:, :, 3] = np.where(self.opaque, 255, 0)
        return Image.fromarray(rgba, mode='RGBA')

    def equals(self, other: 'PixelGrid') -> bool:
        """Same dimensions and same visible content"""
        return (self.rgb.shape == other.rgb.shape
                and np.array_equal(self.opaque, other.opaque)
                and np.array_equal(self.rgb, other.rgb))

    def __repr__(self) -> str:
        return f"PixelGrid({self.width}x{self.height})"


# ============================================================================
# GRID TRANSFORMS
# ============================================================================

def scale_grid(grid: PixelGrid, width: int, height: int) -> PixelGrid:
    """
    Nearest-neighbour resize.

    Destination pixel (x, y) samples source pixel
    (floor(x * src_w / width), floor(y * src_h / height)). Returns the
    input object unchanged when the size already matches.
    """
    if grid.width == width and grid.height == height:
        return grid
    if width <= 0 or height <= 0:
        raise ValueError(f"Cannot scale to {width}x{height}")

    src_y = (np.arange(height) * grid.height) // height
    src_x = (np.arange(width) * grid.width) // width
    rgb = grid.rgb[src_y][:, src_x]
    opaque = grid.opaque[src_y][:, src_x]
    return PixelGrid(rgb, opaque)


def rotate_grid(grid: PixelGrid, quarter_turns: int) -> PixelGrid:
    """Rotate clockwise by quarter_turns * 90 degrees"""
    k = quarter_turns % 4
    if k == 0:
        return grid
    return PixelGrid(np.rot90(grid.rgb, k=-k, axes=(0, 1)),
                     np.rot90(grid.opaque, k=-k, axes=(0, 1)))


def scale_all(grid: PixelGrid, sizes: Iterable[int]) -> dict:
    """Square copies of a grid at each size"""
    return {size: scale_grid(grid, size, size) for size in sizes}
