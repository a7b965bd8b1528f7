#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Tile Set
=====================================
Copyright (c) 2025 Abyss-Tec LLC

Built-in Tiles and Placeholder Art
==================================
Provides the terrain tiles the world generator refers to by id
(grass, dirt, sand, water, stone, void), tiles loaded from PNG files,
and the placeholder sprite drawn for players whose sprite has not
arrived yet.

Built-in tile art is procedural: a base color with a seeded speckle
pattern at BASE_SIZE, scaled to every configured resolution up front.
Water is animated with four frames of drifting wave bands.

Module Interface:
- default_tileset(): id -> Tile mapping (cached)
- tile_from_image(): Tile from a Pillow-readable file
- load_tileset_dir(): all PNG tiles in a directory
- create_placeholder_sprite(): 16x16 figure design at all resolutions
- player_color(): stable color for a player id
"""

import logging
import zlib
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from abyss_pixels import PixelGrid, scale_all, scale_grid
from abyss_types import Direction, Sprite, Tile
from config import BASE_SIZE, RESOLUTIONS

# Configure logging
logger = logging.getLogger('abyss_tiles')

RGB = Tuple[int, int, int]

# (name, walkable, base color, speckle color)
TERRAIN_STYLES = {
    'grass': ('Grass', True, (60, 140, 60), (80, 170, 70)),
    'dirt': ('Dirt', True, (120, 90, 60), (100, 72, 48)),
    'sand': ('Sand', True, (220, 200, 140), (200, 180, 120)),
    'water': ('Water', False, (40, 90, 180), (90, 150, 220)),
    'stone': ('Stone', True, (120, 120, 130), (95, 95, 105)),
    'void': ('Void', False, (10, 10, 20), (10, 10, 20)),
}

WATER_FRAMES = 4

# Placeholder figure colors
HAIR_COLOR: RGB = (60, 40, 30)
SKIN_COLOR: RGB = (255, 220, 180)
DEFAULT_BODY_COLOR: RGB = (100, 150, 255)


def _stable_seed(text: str) -> int:
    return zlib.crc32(text.encode('utf-8'))


def _speckled(size: int, base: RGB, speckle: RGB, seed: int, density: float = 0.15) -> np.ndarray:
    rng = np.random.default_rng(seed)
    rgb = np.empty((size, size, 3), dtype=np.uint8)
    rgb[:, :] = base
    # Speckles are drawn on a 16x16 design grid then blown up
    design = rng.random((16, 16)) < density
    block = size // 16
    mask = np.kron(design, np.ones((block, block), dtype=bool))
    rgb[:mask.shape[0], :mask.shape[1]][mask] = speckle
    return rgb


def _water_frame(size: int, base: RGB, crest: RGB, phase: int) -> np.ndarray:
    rgb = np.empty((size, size, 3), dtype=np.uint8)
    rgb[:, :] = base
    band = max(1, size // 8)
    rows = (np.arange(size) // band + phase) % 4 == 0
    cols = (np.arange(size) // band) % 2 == 0
    rgb[rows[:, None] & cols[None, :]] = crest
    return rgb


def _build_tile(tile_id: str, sizes: Tuple[int, ...]) -> Tile:
    name, walkable, base, speckle = TERRAIN_STYLES[tile_id]

    if tile_id == 'water':
        frames = tuple(PixelGrid(_water_frame(BASE_SIZE, base, speckle, phase))
                       for phase in range(WATER_FRAMES))
        return Tile(
            id=tile_id,
            name=name,
            walkable=walkable,
            pixels=frames[0],
            resolutions=scale_all(frames[0], sizes),
            animation_frames=frames,
            animation_resolutions={
                size: tuple(scale_grid(frame, size, size) for frame in frames)
                for size in sizes
            },
        )

    pixels = PixelGrid(_speckled(BASE_SIZE, base, speckle, _stable_seed(tile_id)))
    return Tile(
        id=tile_id,
        name=name,
        walkable=walkable,
        pixels=pixels,
        resolutions=scale_all(pixels, sizes),
    )


@lru_cache(maxsize=8)
def default_tileset(sizes: Tuple[int, ...] = RESOLUTIONS) -> Dict[str, Tile]:
    """
    Built-in terrain tiles keyed by id, with every resolution prepared.

    Tiles are immutable so the mapping is shared across sessions.
    """
    tiles = {tile_id: _build_tile(tile_id, tuple(sizes)) for tile_id in TERRAIN_STYLES}
    logger.info(f"Built default tileset: {len(tiles)} tiles x {len(sizes)} resolutions")
    return tiles


def tile_from_image(path, tile_id: str, name: Optional[str] = None,
                    walkable: bool = True,
                    sizes: Tuple[int, ...] = RESOLUTIONS) -> Tile:
    """
    Load a square tile from an image file.

    Raises:
        OSError: file missing or unreadable
        ValueError: image is not square
    """
    with Image.open(path) as image:
        pixels = PixelGrid.from_image(image)
    if pixels.width != pixels.height:
        raise ValueError(f"Tile image {path} is {pixels.width}x{pixels.height}, expected square")
    return Tile(
        id=tile_id,
        name=name or tile_id.title(),
        walkable=walkable,
        pixels=pixels,
        resolutions=scale_all(pixels, sizes),
    )


def load_tileset_dir(directory, walkable: Optional[Dict[str, bool]] = None,
                     sizes: Tuple[int, ...] = RESOLUTIONS) -> Dict[str, Tile]:
    """
    Load every ``<id>.png`` in a directory.

    Files that fail to load are logged and skipped.
    """
    walkable = walkable or {}
    tiles = {}
    for path in sorted(Path(directory).glob('*.png')):
        tile_id = path.stem
        try:
            tiles[tile_id] = tile_from_image(
                path, tile_id, walkable=walkable.get(tile_id, True), sizes=sizes
            )
        except (OSError, ValueError, UnidentifiedImageError) as e:
            logger.error(f"Failed to load tile {path}: {e}")
    logger.info(f"Loaded {len(tiles)} tiles from {directory}")
    return tiles


# ============================================================================
# PLACEHOLDER SPRITES
# ============================================================================

def player_color(player_id: str) -> RGB:
    """
    Stable color for a player id.

    32-bit string hash (h = h * 31 + code point) with the low three
    bytes taken as red, green and blue.
    """
    h = 0
    for ch in player_id:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    return (h >> 16) & 255, (h >> 8) & 255, h & 255


def _placeholder_design(body: RGB) -> list:
    dark = tuple(int(c * 0.6) for c in body)
    rows = []
    for y in range(16):
        row = []
        for x in range(16):
            pixel = None
            if y < 2 and 5 <= x <= 10:
                pixel = HAIR_COLOR
            elif 1 <= y < 5 and 5 <= x <= 10:
                pixel = SKIN_COLOR
            elif 5 <= y < 10 and 4 <= x <= 11:
                pixel = body
            elif 10 <= y < 15 and (5 <= x < 7 or 9 <= x < 11):
                pixel = dark
            row.append(pixel)
        rows.append(row)
    return rows


def create_placeholder_sprite(body: RGB = DEFAULT_BODY_COLOR,
                              sizes: Tuple[int, ...] = RESOLUTIONS) -> Sprite:
    """
    Simple standing figure, the same frame in every direction.

    The 16x16 design is blown up to BASE_SIZE and then reduced to every
    resolution.
    """
    design = PixelGrid.from_rows(_placeholder_design(tuple(body)))
    frame = scale_grid(design, BASE_SIZE, BASE_SIZE)
    frames = {direction: [frame] * 4 for direction in Direction}

    resolutions = {}
    for size in sizes:
        scaled = scale_grid(frame, size, size)
        resolutions[size] = {direction: [scaled] * 4 for direction in Direction}

    return Sprite(width=BASE_SIZE, height=BASE_SIZE, frames=frames, resolutions=resolutions)
