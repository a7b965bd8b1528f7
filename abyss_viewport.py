#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Viewport Compositor
================================================
Copyright (c) 2025 Abyss-Tec LLC

World to Pixel Buffer
=====================
Composes the tiles around the camera and the players standing on them
into one pixel buffer, plus a list of text overlays (name tags) for the
encoder to stamp over the encoded cells.

Render Order:
1. Tiles, row by row, at the current tile render size
2. Players sorted by world Y ascending so lower players overlap higher ones
3. Name tags for every player except the local one

Resolution Handling:
- Data resolution is the smallest prepared resolution >= render size
- The chosen grid is nearest-neighbour scaled to the exact render size
- Animated tiles advance one frame every 15 ticks

Every write into the buffer is clipped, so sprites partly outside the
viewport are drawn partially and never raise.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from abyss_brightness import BrightnessVariantCache
from abyss_pixels import PixelGrid
from abyss_scale import GridScaler, select_resolution
from abyss_tiles import player_color
from abyss_types import PlayerVisualState, TextOverlay, Tile, WorldDataProvider
from config import NAME_TAG_BG, NAME_TAG_FG, RenderingConfig, get_rendering_config

# Configure logging
logger = logging.getLogger('abyss_viewport')


@dataclass
class ViewportConfig:
    """Viewport size in tiles and optional fixed sizes"""
    width_tiles: int
    height_tiles: int
    tile_render_size: Optional[int] = None   # defaults to the full-zoom tile size
    data_resolution: Optional[int] = None    # defaults to auto-selection

    def validate(self) -> bool:
        if self.width_tiles <= 0 or self.height_tiles <= 0:
            raise ValueError("Viewport must be at least one tile in each direction")
        if self.tile_render_size is not None and self.tile_render_size <= 0:
            raise ValueError("Tile render size must be positive")
        return True


@dataclass
class ViewportFrame:
    """One composited frame"""
    buffer: PixelGrid
    overlays: List[TextOverlay] = field(default_factory=list)
    camera: Tuple[int, int] = (0, 0)
    tile_size: int = 0


def _blit(buffer: np.ndarray, grid: PixelGrid, x: int, y: int):
    """Copy opaque pixels of grid into buffer at (x, y), clipped"""
    height, width = buffer.shape[:2]
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + grid.width, width), min(y + grid.height, height)
    if x0 >= x1 or y0 >= y1:
        return

    sx0, sy0 = x0 - x, y0 - y
    src_rgb = grid.rgb[sy0:sy0 + (y1 - y0), sx0:sx0 + (x1 - x0)]
    src_mask = grid.opaque[sy0:sy0 + (y1 - y0), sx0:sx0 + (x1 - x0)]
    target = buffer[y0:y1, x0:x1]
    target[src_mask] = src_rgb[src_mask]


def _fill(buffer: np.ndarray, x: int, y: int, size: int, color):
    height, width = buffer.shape[:2]
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + size, width), min(y + size, height)
    if x0 < x1 and y0 < y1:
        buffer[y0:y1, x0:x1] = color


class ViewportCompositor:
    """
    Composites world tiles and players into a pixel buffer.

    Holds the camera, tile render size and data resolution for one
    session. Scaled grids and brightness variants come from per-session
    caches passed in (or created here).
    """

    def __init__(self,
                 config: ViewportConfig,
                 rendering: Optional[RenderingConfig] = None,
                 scaler: Optional[GridScaler] = None,
                 brightness_cache: Optional[BrightnessVariantCache] = None):
        config.validate()
        self.config = config
        self.rendering = rendering or get_rendering_config()
        self.scaler = scaler or GridScaler()
        self.brightness_cache = brightness_cache or BrightnessVariantCache()

        self._tile_size = config.tile_render_size or self.rendering.full_zoom_tile_size
        self._data_resolution = (config.data_resolution
                                 or select_resolution(self._tile_size, self.rendering.resolutions))
        self._brightness = 1.0
        self.camera_x = 0
        self.camera_y = 0

        self.stats = {
            'frames': 0,
            'tiles_drawn': 0,
            'missing_tiles': 0,
            'players_drawn': 0,
            'placeholders': 0,
        }

        logger.info(f"ViewportCompositor initialized: {config.width_tiles}x{config.height_tiles} tiles, "
                    f"tile_size={self._tile_size}, resolution={self._data_resolution}")

    # ------------------------------------------------------------------
    # Camera and sizing
    # ------------------------------------------------------------------

    @property
    def tile_render_size(self) -> int:
        return self._tile_size

    @property
    def data_resolution(self) -> int:
        return self._data_resolution

    @property
    def pixel_size(self) -> Tuple[int, int]:
        return (self.config.width_tiles * self._tile_size,
                self.config.height_tiles * self._tile_size)

    def set_tile_render_size(self, size: int):
        """Change the on-screen tile size and re-select the data resolution"""
        if size <= 0:
            raise ValueError("Tile render size must be positive")
        self._tile_size = size
        self._data_resolution = select_resolution(size, self.rendering.resolutions)
        logger.debug(f"Tile size {size}, data resolution {self._data_resolution}")

    def set_camera(self, tile_x: int, tile_y: int):
        """Center the camera on a tile"""
        self.camera_x = tile_x - self.config.width_tiles // 2
        self.camera_y = tile_y - self.config.height_tiles // 2

    def set_brightness(self, level: float):
        self._brightness = level

    def resize(self, width_tiles: int, height_tiles: int):
        self.config.width_tiles = width_tiles
        self.config.height_tiles = height_tiles
        self.config.validate()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, world: WorldDataProvider, tick: int) -> ViewportFrame:
        """
        Composite the current view.

        Args:
            world: Tile and player source
            tick: Session tick counter, drives tile animation

        Returns:
            ViewportFrame with a fully opaque buffer and name tag overlays
        """
        width, height = self.pixel_size
        buffer = np.empty((height, width, 3), dtype=np.uint8)
        buffer[:, :] = self.rendering.background

        self._render_tiles(buffer, world, tick)
        overlays = self._render_players(buffer, world)

        self.stats['frames'] += 1
        return ViewportFrame(
            buffer=PixelGrid(buffer),
            overlays=overlays,
            camera=(self.camera_x, self.camera_y),
            tile_size=self._tile_size,
        )

    def _tile_pixels(self, tile: Tile, tick: int) -> Tuple[PixelGrid, str]:
        """Grid at the data resolution and a stable id for it"""
        res = self._data_resolution
        if tile.animated:
            count = len(tile.animation_frames)
            index = (tick // self.rendering.animation_ticks_per_frame) % count
            frames = tile.animation_resolutions.get(res)
            if frames:
                return frames[index], f"{tile.id}@{res}#{index}"
            return tile.animation_frames[index], f"{tile.id}#{index}"

        grid = tile.resolutions.get(res)
        if grid is not None:
            return grid, f"{tile.id}@{res}r{tile.rotation}"
        return tile.pixels, f"{tile.id}r{tile.rotation}"

    def _render_tiles(self, buffer: np.ndarray, world: WorldDataProvider, tick: int):
        size = self._tile_size
        for ty in range(self.config.height_tiles):
            for tx in range(self.config.width_tiles):
                tile = world.get_tile(self.camera_x + tx, self.camera_y + ty)
                if tile is None:
                    self.stats['missing_tiles'] += 1
                    continue

                pixels, source_id = self._tile_pixels(tile, tick)
                pixels = self.scaler.scale(pixels, size, size)
                if self._brightness != 1.0:
                    pixels = self.brightness_cache.get(f"{source_id}:{size}", pixels, self._brightness)

                _blit(buffer, pixels, tx * size, ty * size)
                self.stats['tiles_drawn'] += 1

    def _render_players(self, buffer: np.ndarray, world: WorldDataProvider) -> List[TextOverlay]:
        overlays = []
        size = self._tile_size
        local_id = world.get_local_player_id()

        # Stable sort keeps arrival order among players on the same row
        for player in sorted(world.get_players(), key=lambda p: p.y):
            buffer_x = (player.x - self.camera_x) * size
            buffer_y = (player.y - self.camera_y) * size

            if not self._draw_sprite(buffer, world, player, buffer_x, buffer_y):
                _fill(buffer, buffer_x, buffer_y, size, player_color(player.player_id))
                self.stats['placeholders'] += 1
            self.stats['players_drawn'] += 1

            if player.player_id != local_id:
                overlays.append(TextOverlay(
                    text=player.username,
                    x=buffer_x + size // 2,
                    y=buffer_y - max(6, size // 10),
                    fg=NAME_TAG_FG,
                    bg=NAME_TAG_BG,
                ))
        return overlays

    def _draw_sprite(self, buffer: np.ndarray, world: WorldDataProvider,
                     player: PlayerVisualState, x: int, y: int) -> bool:
        sprite = world.get_player_sprite(player.player_id)
        if sprite is None:
            return False

        frames = sprite.frames_for(player.direction, self._data_resolution)
        if not frames:
            logger.debug(f"Sprite for {player.player_id} has no {player.direction.value} frames")
            return False

        frame = frames[player.animation_frame % len(frames)]
        _blit(buffer, self.scaler.scale(frame, self._tile_size, self._tile_size), x, y)
        return True

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        stats['tile_size'] = self._tile_size
        stats['data_resolution'] = self._data_resolution
        stats['scaler'] = self.scaler.get_statistics()
        stats['brightness'] = self.brightness_cache.get_stats()
        return stats
