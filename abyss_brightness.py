#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Brightness Variants
================================================
Copyright (c) 2025 Abyss-Tec LLC

Brightness is quantized to five levels so that each grid has at most
four derived variants (level 1.0 is the grid itself). Variants are held
in an LRU cache keyed by (source id, level).
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import numpy as np

from abyss_pixels import PixelGrid
from config import get_cache_config

# Configure logging
logger = logging.getLogger('abyss_brightness')

BRIGHTNESS_LEVELS = (0.7, 0.85, 1.0, 1.15, 1.3)


def quantize_brightness(value: float) -> float:
    """Nearest level, the lower level wins ties"""
    closest = BRIGHTNESS_LEVELS[0]
    best = abs(value - closest)
    for level in BRIGHTNESS_LEVELS:
        distance = abs(value - level)
        if distance < best:
            best = distance
            closest = level
    return closest


def apply_brightness(grid: PixelGrid, level: float) -> PixelGrid:
    """Scale every opaque channel by level, rounding half up, clamped to 0..255"""
    if level == 1.0:
        return grid
    scaled = np.floor(grid.rgb.astype(np.float64) * level + 0.5)
    return PixelGrid(np.clip(scaled, 0, 255), grid.opaque)


class BrightnessVariantCache:
    """
    LRU cache of brightness-adjusted grids.

    Callers supply a stable id for each source grid (tile id, sprite
    frame name). The id, not the grid, is the cache identity.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or get_cache_config().brightness_cache_size
        if self.max_size <= 0:
            raise ValueError("Brightness cache size must be positive")
        self._cache: "OrderedDict[Tuple[str, float], PixelGrid]" = OrderedDict()

        # Statistics
        self.stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
            'generated': 0,
        }

    def get(self, source_id: str, grid: PixelGrid, brightness: float) -> PixelGrid:
        """Variant of grid at the level nearest to brightness"""
        level = quantize_brightness(brightness)
        if level == 1.0:
            return grid

        key = (source_id, level)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            self.stats['hits'] += 1
            return cached

        self.stats['misses'] += 1
        variant = self._store(key, grid)
        return variant

    def pregenerate(self, source_id: str, grid: PixelGrid):
        """Build every non-identity variant of grid ahead of use"""
        for level in BRIGHTNESS_LEVELS:
            if level != 1.0 and (source_id, level) not in self._cache:
                self._store((source_id, level), grid)

    def _store(self, key: Tuple[str, float], grid: PixelGrid) -> PixelGrid:
        variant = apply_brightness(grid, key[1])
        self.stats['generated'] += 1
        self._cache[key] = variant
        while len(self._cache) > self.max_size:
            evicted, _ = self._cache.popitem(last=False)
            self.stats['evictions'] += 1
            logger.debug(f"Evicted brightness variant {evicted}")
        return variant

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key) -> bool:
        return key in self._cache

    def clear(self):
        self._cache.clear()
        logger.debug("Brightness cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        total = stats['hits'] + stats['misses']
        stats['hit_rate'] = stats['hits'] / total if total else 0.0
        stats['entries'] = len(self._cache)
        stats['max_size'] = self.max_size
        return stats
