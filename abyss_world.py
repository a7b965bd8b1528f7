#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - World Data Provider
================================================
Copyright (c) 2025 Abyss-Tec LLC

Chunked World Access
====================
Answers "which tile is at (x, y)" for the viewport compositor and keeps
the session's view of nearby players and their sprites.

Core Features:
- Lazy chunk generation from the world seed
- LRU chunk cache bounded by ``WorldConfig.chunk_cache_size``
- Position-hashed tile rotation with memoized rotated copies
- Player state and sprite bookkeeping for the local session

Chunk coordinates use floor division so negative world coordinates map
to negative chunks (tile -1 lives in chunk -1 at local index 31).
"""

import time
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from abyss_noise import TerrainGenerator, rotation_for
from abyss_tiles import default_tileset
from abyss_types import PlayerVisualState, Sprite, Tile
from config import WorldConfig, get_rendering_config, get_world_config

# Configure logging
logger = logging.getLogger('abyss_world')

FALLBACK_TILE_ID = 'void'


@dataclass
class Chunk:
    """Generated tile ids for one chunk plus its last access time"""
    chunk_x: int
    chunk_y: int
    tiles: np.ndarray
    accessed_at: float


class WorldProvider:
    """
    Per-session world data provider.

    Implements the WorldDataProvider protocol read by the compositor.
    Chunks are generated on first touch and evicted least recently
    accessed first once the cache holds more than ``chunk_cache_size``.
    """

    def __init__(self,
                 seed: Optional[int] = None,
                 config: Optional[WorldConfig] = None,
                 tiles: Optional[Dict[str, Tile]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the provider.

        Args:
            seed: World seed (uses config if None)
            config: World configuration (uses global config if None)
            tiles: Tile set keyed by id (built-in tiles if None)
            clock: Time source for chunk access stamps
        """
        self.config = config or get_world_config()
        self.config.validate()
        self.generator = TerrainGenerator(seed, self.config)
        self.seed = self.generator.seed
        self._clock = clock

        if tiles is None:
            tiles = default_tileset(tuple(get_rendering_config().resolutions))
        self._tiles = dict(tiles)
        self._rotated: Dict[Tuple[str, int], Tile] = {}

        self._chunks: "OrderedDict[Tuple[int, int], Chunk]" = OrderedDict()
        self._max_chunks = self.config.chunk_cache_size

        self._players: Dict[str, PlayerVisualState] = {}
        self._sprites: Dict[str, Sprite] = {}
        self._local_player_id = ''

        # Statistics
        self.stats = {
            'chunk_hits': 0,
            'chunk_misses': 0,
            'chunk_evictions': 0,
            'tile_lookups': 0,
            'fallback_tiles': 0,
        }

        logger.info(f"WorldProvider initialized: seed={self.seed}, "
                    f"chunk_cache={self._max_chunks}, tiles={len(self._tiles)}")

    # ------------------------------------------------------------------
    # Tiles
    # ------------------------------------------------------------------

    def register_tile(self, tile: Tile):
        """Add or replace a tile definition"""
        self._tiles[tile.id] = tile
        self._rotated = {k: v for k, v in self._rotated.items() if k[0] != tile.id}

    def register_tiles(self, tiles: Dict[str, Tile], keep_walkability: bool = True):
        """
        Add or replace several tiles, e.g. art loaded from a directory.

        A tile replacing an existing id keeps the walkability of the one
        it replaces unless keep_walkability is False.
        """
        for tile in tiles.values():
            current = self.get_tile_definition(tile.id)
            if keep_walkability and current is not None and current.walkable != tile.walkable:
                tile = replace(tile, walkable=current.walkable)
            self.register_tile(tile)
        logger.info(f"Registered {len(tiles)} tiles, {len(self._tiles)} total")

    def get_tile_definition(self, tile_id: str) -> Optional[Tile]:
        return self._tiles.get(tile_id)

    def get_tile(self, x: int, y: int) -> Optional[Tile]:
        """
        Tile at world coordinates.

        Unknown tile ids resolve to the void tile, or None when no void
        tile is registered.
        """
        self.stats['tile_lookups'] += 1
        size = self.config.chunk_size
        chunk = self._get_chunk(x // size, y // size)
        tile_id = chunk.tiles[y % size, x % size]

        base = self._tiles.get(tile_id)
        if base is None:
            self.stats['fallback_tiles'] += 1
            logger.debug(f"Unknown tile id {tile_id!r} at ({x}, {y})")
            return self._tiles.get(FALLBACK_TILE_ID)

        rotation = rotation_for(x, y, self.config)
        if rotation == 0 or base.animated:
            return base

        key = (base.id, rotation)
        tile = self._rotated.get(key)
        if tile is None:
            tile = base.rotated(rotation)
            self._rotated[key] = tile
        return tile

    def is_walkable(self, x: int, y: int) -> bool:
        tile = self.get_tile(x, y)
        return tile is not None and tile.walkable

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def _get_chunk(self, chunk_x: int, chunk_y: int) -> Chunk:
        """Cached chunk, generating and evicting as needed"""
        key = (chunk_x, chunk_y)
        now = self._clock()

        chunk = self._chunks.get(key)
        if chunk is not None:
            chunk.accessed_at = now
            self._chunks.move_to_end(key)
            self.stats['chunk_hits'] += 1
            return chunk

        self.stats['chunk_misses'] += 1
        chunk = Chunk(chunk_x, chunk_y, self.generator.generate_chunk(chunk_x, chunk_y), now)
        self._chunks[key] = chunk
        self._evict_chunks()
        return chunk

    def _evict_chunks(self):
        """Drop least recently accessed chunks until within capacity"""
        while len(self._chunks) > self._max_chunks:
            key, _ = self._chunks.popitem(last=False)
            self.stats['chunk_evictions'] += 1
            logger.debug(f"Evicted chunk {key}")

    def cached_chunks(self) -> List[Tuple[int, int]]:
        """Resident chunk keys, least recently accessed first"""
        return list(self._chunks.keys())

    def clear_cache(self):
        """Drop every cached chunk and rotated tile"""
        self._chunks.clear()
        self._rotated.clear()
        logger.info("World chunk cache cleared")

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    def set_local_player_id(self, player_id: str):
        self._local_player_id = player_id

    def get_local_player_id(self) -> str:
        return self._local_player_id

    def update_player(self, state: PlayerVisualState):
        self._players[state.player_id] = state

    def remove_player(self, player_id: str):
        self._players.pop(player_id, None)
        self._sprites.pop(player_id, None)

    def get_player(self, player_id: str) -> Optional[PlayerVisualState]:
        return self._players.get(player_id)

    def get_players(self) -> List[PlayerVisualState]:
        return list(self._players.values())

    def set_player_sprite(self, player_id: str, sprite: Sprite):
        self._sprites[player_id] = sprite

    def get_player_sprite(self, player_id: str) -> Optional[Sprite]:
        return self._sprites.get(player_id)

    def has_player_sprite(self, player_id: str) -> bool:
        return player_id in self._sprites

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        total = stats['chunk_hits'] + stats['chunk_misses']
        stats['chunk_hit_rate'] = stats['chunk_hits'] / total if total else 0.0
        stats['cached_chunks'] = len(self._chunks)
        stats['players'] = len(self._players)
        stats['sprites'] = len(self._sprites)
        return stats
