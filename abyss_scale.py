#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Grid Scaling Module
================================================
Copyright (c) 2025 Abyss-Tec LLC

Tile Resolution Selection and Scaled Grid Cache
===============================================
Tiles and sprites ship with pre-scaled copies at a fixed ladder of
resolutions. For an arbitrary on-screen tile size the compositor picks
the smallest prepared resolution that is at least as large, then
nearest-neighbour scales it down to the exact size.

Core Features:
- Resolution ladder lookup (smallest >= target, else largest)
- LRU cache of scaled grids keyed by source identity and target size
- Identity shortcut when no scaling is needed
- Hit/miss/eviction statistics

Module Interface:
- select_resolution(): pick a prepared resolution
- GridScaler: cached nearest-neighbour scaler
"""

import threading
import logging
from bisect import bisect_left
from collections import OrderedDict
from typing import Any, Dict, Optional, Sequence, Tuple

from abyss_pixels import PixelGrid, scale_grid
from config import get_cache_config, get_rendering_config

# Configure logging
logger = logging.getLogger('abyss_scale')


def select_resolution(target: int, resolutions: Optional[Sequence[int]] = None) -> int:
    """
    Smallest resolution >= target, or the largest when none is.

    Args:
        target: Desired on-screen tile size in pixels
        resolutions: Ascending resolution ladder (uses config if None)
    """
    resolutions = resolutions or get_rendering_config().resolutions
    index = bisect_left(resolutions, target)
    if index >= len(resolutions):
        return resolutions[-1]
    return resolutions[index]


class GridScaler:
    """
    Nearest-neighbour scaler with an LRU result cache.

    Keys are (id(source), width, height). Each entry keeps a reference
    to its source grid so the id cannot be recycled while cached, and
    lookups confirm the stored source is the same object.
    """

    def __init__(self, cache_size: Optional[int] = None):
        """
        Initialize grid scaler.

        Args:
            cache_size: Maximum cached grids (uses config if None)
        """
        cache_config = get_cache_config()
        self._cache_size = cache_size or cache_config.scale_cache_size
        self._enabled = cache_config.enable_caching

        self._cache: "OrderedDict[Tuple[int, int, int], Tuple[PixelGrid, PixelGrid]]" = OrderedDict()
        self._cache_lock = threading.RLock()

        # Statistics
        self.stats = {
            'cache_hits': 0,
            'cache_misses': 0,
            'cache_evictions': 0,
            'scale_operations': 0,
            'passthrough': 0,
        }

        logger.info(f"GridScaler initialized: cache_size={self._cache_size}")

    def scale(self, grid: PixelGrid, width: int, height: int) -> PixelGrid:
        """
        Scaled copy of grid, served from cache when possible.

        Returns grid itself when the size already matches.
        """
        if grid.width == width and grid.height == height:
            self.stats['passthrough'] += 1
            return grid

        key = (id(grid), width, height)
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is not None and entry[0] is grid:
                self._cache.move_to_end(key)
                self.stats['cache_hits'] += 1
                return entry[1]

        self.stats['cache_misses'] += 1
        scaled = scale_grid(grid, width, height)
        self.stats['scale_operations'] += 1

        if self._enabled:
            with self._cache_lock:
                self._cache[key] = (grid, scaled)
                self._cache.move_to_end(key)
                self._enforce_cache_limits()
        return scaled

    def _enforce_cache_limits(self):
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
            self.stats['cache_evictions'] += 1

    def clear_cache(self):
        """Clear all cached entries"""
        with self._cache_lock:
            self._cache.clear()
        logger.info("Scale cache cleared")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get scaler statistics.

        Returns:
            Dictionary of statistics and metrics
        """
        stats = self.stats.copy()

        total_requests = stats['cache_hits'] + stats['cache_misses']
        if total_requests > 0:
            stats['cache_hit_rate'] = stats['cache_hits'] / total_requests
        else:
            stats['cache_hit_rate'] = 0.0

        with self._cache_lock:
            stats['cache_entries'] = len(self._cache)

        return stats

