#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Terrain Noise
==========================================
Copyright (c) 2025 Abyss-Tec LLC

Procedural Terrain Generation
=============================
Chunks are a pure function of (world seed, chunk x, chunk y). Two
independent value-noise fields are sampled per tile:

- elevation: sample(x * 0.05, y * 0.05)
- moisture:  sample(x * 0.03 + 1000, y * 0.03 + 1000)

Both fields lie in [0, 1). Classification:

    elevation < 0.30          water
    elevation < 0.35          sand
    elevation > 0.75          stone
    moisture  < 0.35          dirt
    otherwise                 grass

Tile rotation comes from a 32-bit integer hash of the world position so
that repeated terrain does not tile visibly.
"""

import logging
from typing import Optional

import numpy as np

from config import WorldConfig, get_world_config

# Configure logging
logger = logging.getLogger('abyss_noise')

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF

# Terrain thresholds
WATER_LEVEL = 0.30
SAND_LEVEL = 0.35
STONE_LEVEL = 0.75
DRY_LEVEL = 0.35


class ValueNoise:
    """
    Seeded 2D value noise.

    A lattice of random values in [0, 1) is addressed through a
    permutation table; samples between lattice points use smoothstep
    weighted bilinear interpolation. Octaves are summed with halving
    amplitude and normalized so results stay in [0, 1).
    """

    TABLE_SIZE = 256

    def __init__(self, seed: int, octaves: int = 3, persistence: float = 0.5):
        if octaves <= 0:
            raise ValueError("Noise needs at least one octave")
        rng = np.random.default_rng(seed & _MASK64)
        self.seed = seed
        self.octaves = octaves
        self.persistence = persistence

        perm = rng.permutation(self.TABLE_SIZE)
        self._perm = np.concatenate([perm, perm]).astype(np.int64)
        self._values = rng.random(self.TABLE_SIZE)

    def _lattice(self, ix: np.ndarray, iy: np.ndarray) -> np.ndarray:
        mask = self.TABLE_SIZE - 1
        return self._values[self._perm[(self._perm[ix & mask] + iy) & mask]]

    def _single(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        x0 = np.floor(x)
        y0 = np.floor(y)
        fx = x - x0
        fy = y - y0
        ix = x0.astype(np.int64)
        iy = y0.astype(np.int64)

        # Smoothstep fade
        u = fx * fx * (3.0 - 2.0 * fx)
        v = fy * fy * (3.0 - 2.0 * fy)

        v00 = self._lattice(ix, iy)
        v10 = self._lattice(ix + 1, iy)
        v01 = self._lattice(ix, iy + 1)
        v11 = self._lattice(ix + 1, iy + 1)

        top = v00 + (v10 - v00) * u
        bottom = v01 + (v11 - v01) * u
        return top + (bottom - top) * v

    def sample_array(self, x, y) -> np.ndarray:
        """Vectorized sample over broadcastable coordinate arrays"""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        total = np.zeros(np.broadcast(x, y).shape)
        amplitude = 1.0
        frequency = 1.0
        norm = 0.0
        for _ in range(self.octaves):
            total = total + self._single(x * frequency, y * frequency) * amplitude
            norm += amplitude
            amplitude *= self.persistence
            frequency *= 2.0
        return np.minimum(total / norm, np.nextafter(1.0, 0.0))

    def sample(self, x: float, y: float) -> float:
        return float(self.sample_array(x, y))


def classify_terrain(elevation: float, moisture: float) -> str:
    """Tile id for a single elevation/moisture pair"""
    if elevation < WATER_LEVEL:
        return 'water'
    if elevation < SAND_LEVEL:
        return 'sand'
    if elevation > STONE_LEVEL:
        return 'stone'
    if moisture < DRY_LEVEL:
        return 'dirt'
    return 'grass'


def classify_terrain_array(elevation: np.ndarray, moisture: np.ndarray) -> np.ndarray:
    """Vectorized classify_terrain"""
    ids = np.full(np.shape(elevation), 'grass', dtype=object)
    # Lowest priority first so later rules overwrite
    ids[moisture < DRY_LEVEL] = 'dirt'
    ids[elevation > STONE_LEVEL] = 'stone'
    ids[elevation < SAND_LEVEL] = 'sand'
    ids[elevation < WATER_LEVEL] = 'water'
    return ids


class TerrainGenerator:
    """Generates chunk tile ids from a world seed"""

    def __init__(self, seed: Optional[int] = None, config: Optional[WorldConfig] = None):
        self.config = config or get_world_config()
        self.seed = self.config.seed if seed is None else seed
        self.noise = ValueNoise(self.seed)
        logger.info(f"TerrainGenerator initialized: seed={self.seed}, "
                    f"chunk_size={self.config.chunk_size}")

    def elevation(self, x, y):
        scale = self.config.elevation_scale
        return self.noise.sample_array(np.asarray(x) * scale, np.asarray(y) * scale)

    def moisture(self, x, y):
        scale = self.config.moisture_scale
        offset = self.config.moisture_offset
        return self.noise.sample_array(np.asarray(x) * scale + offset,
                                       np.asarray(y) * scale + offset)

    def tile_id_at(self, x: int, y: int) -> str:
        return classify_terrain(float(self.elevation(x, y)), float(self.moisture(x, y)))

    def generate_chunk(self, chunk_x: int, chunk_y: int) -> np.ndarray:
        """
        Tile ids for one chunk, indexed [local_y, local_x].

        Args:
            chunk_x: Chunk column (world x // chunk_size)
            chunk_y: Chunk row (world y // chunk_size)

        Returns:
            (chunk_size, chunk_size) object array of tile id strings
        """
        size = self.config.chunk_size
        xs = np.arange(size) + chunk_x * size
        ys = np.arange(size) + chunk_y * size
        wx, wy = np.meshgrid(xs, ys)
        return classify_terrain_array(self.elevation(wx, wy), self.moisture(wx, wy))


def rotation_for(x: int, y: int, config: Optional[WorldConfig] = None) -> int:
    """
    Quarter turns (0-3) for the tile at world (x, y).

    h = (x * A + y * B) mod 2^32
    h = ((h ^ (h >> S)) * C) mod 2^32
    rotation = h mod 4
    """
    config = config or get_world_config()
    h = (x * config.rotation_mul_x + y * config.rotation_mul_y) & _MASK32
    h = ((h ^ (h >> config.rotation_shift)) * config.rotation_mix) & _MASK32
    return h % 4
