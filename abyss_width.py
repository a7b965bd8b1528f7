#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Width Calculation Module
=====================================================
Copyright (c) 2025 Abyss-Tec LLC

Visual Width Calculation System
===============================
Terminal column widths for text drawn over the pixel view: player name
tags, modal titles, list rows.

Core Features
=============
- wcwidth based measurement (CJK, emoji, combining marks)
- Control characters count as zero columns
- LRU cache of measured strings
- Layout of text into fixed-width terminal cells
- Truncation and centering helpers for component text

Module Interface
================
- WidthCalculator: measuring class with cache and statistics
- get_width(): measure with the default calculator
- truncate() / center(): fit text into a column budget
"""

import threading
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Union

from wcwidth import wcswidth, wcwidth

from config import get_cache_config

# Configure logging
logger = logging.getLogger('abyss_width')


class WidthCalculator:
    """
    Text width calculator with caching.

    Attributes:
        stats: Dictionary containing calculation statistics
    """

    def __init__(self, cache_size: Optional[int] = None, enable_cache: bool = True):
        """
        Initialize width calculator.

        Args:
            cache_size: Maximum number of cached strings (uses config if None)
            enable_cache: Whether to enable string caching
        """
        if cache_size is None:
            cache_size = get_cache_config().width_cache_size

        self._string_cache: "OrderedDict[str, int]" = OrderedDict()
        self._cache_size = cache_size
        self._cache_enabled = enable_cache
        self._lock = threading.Lock()

        # Statistics
        self.stats = {
            'cache_hits': 0,
            'cache_misses': 0,
            'calculations': 0,
            'control_chars_handled': 0,
            'cache_evictions': 0,
        }

        logger.debug(f"WidthCalculator initialized with cache_size={cache_size}")

    def get_width(self, text: str) -> int:
        """
        Visual width of text in terminal columns.

        Returns 0 for empty or control-only text.
        """
        if not text:
            return 0

        if self._cache_enabled:
            with self._lock:
                cached = self._string_cache.get(text)
                if cached is not None:
                    self._string_cache.move_to_end(text)
                    self.stats['cache_hits'] += 1
                    return cached
            self.stats['cache_misses'] += 1

        width = self._calculate_width(text)
        self.stats['calculations'] += 1

        if self._cache_enabled:
            with self._lock:
                self._string_cache[text] = width
                while len(self._string_cache) > self._cache_size:
                    self._string_cache.popitem(last=False)
                    self.stats['cache_evictions'] += 1
        return width

    def _calculate_width(self, text: str) -> int:
        width = wcswidth(text)
        if width >= 0:
            return width

        # Contains control characters, count the printable ones
        self.stats['control_chars_handled'] += 1
        return sum(max(0, self.char_width(ch)) for ch in text)

    @staticmethod
    def char_width(char: str) -> int:
        """Columns for a single character, -1 for control characters"""
        return wcwidth(char)

    def layout(self, text: str, cell_cols: int) -> List[str]:
        """
        Split text into cell strings for a grid whose cells are
        ``cell_cols`` terminal columns wide.

        Each returned string fills its cell exactly. A character wider
        than a cell spills into the following cells, which are returned
        as empty strings. Zero-width characters attach to the previous
        cell and control characters are dropped.
        """
        cells: List[str] = []
        current = ''
        used = 0
        for ch in text:
            w = self.char_width(ch)
            if w < 0:
                continue
            if w == 0:
                if current:
                    current += ch
                elif cells:
                    cells[-1] += ch
                continue

            if used + w > cell_cols and used > 0:
                cells.append(current + ' ' * (cell_cols - used))
                current, used = '', 0

            current += ch
            used += w
            if used >= cell_cols:
                spill = (used + cell_cols - 1) // cell_cols - 1
                cells.append(current)
                cells.extend([''] * spill)
                current, used = '', 0

        if current:
            cells.append(current + ' ' * (cell_cols - used))
        return cells

    def truncate(self, text: str, max_cols: int, ellipsis: str = '…') -> str:
        """Cut text so it occupies at most max_cols columns"""
        if self.get_width(text) <= max_cols:
            return text
        budget = max_cols - self.get_width(ellipsis)
        if budget < 0:
            return ''
        out = ''
        used = 0
        for ch in text:
            w = max(0, self.char_width(ch))
            if used + w > budget:
                break
            out += ch
            used += w
        return out + ellipsis

    def center(self, text: str, cols: int) -> str:
        """Pad text with spaces to cols columns, centred"""
        text = self.truncate(text, cols)
        gap = cols - self.get_width(text)
        left = gap // 2
        return ' ' * left + text + ' ' * (gap - left)

    def pad(self, text: str, cols: int) -> str:
        """Left aligned, padded or truncated to cols columns"""
        text = self.truncate(text, cols)
        return text + ' ' * (cols - self.get_width(text))

    def clear_cache(self):
        """Clear all cached widths."""
        with self._lock:
            self._string_cache.clear()

    def get_stats(self) -> Dict[str, Union[int, float]]:
        stats = self.stats.copy()

        total_requests = stats['cache_hits'] + stats['cache_misses']
        if total_requests > 0:
            stats['cache_hit_rate'] = stats['cache_hits'] / total_requests
        else:
            stats['cache_hit_rate'] = 0.0

        with self._lock:
            stats['cache_entries'] = len(self._string_cache)
            stats['cache_enabled'] = self._cache_enabled

        return stats


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_default_calculator = None
_calculator_lock = threading.Lock()

def get_calculator() -> WidthCalculator:
    """Get or create the default calculator"""
    global _default_calculator

    if _default_calculator is None:
        with _calculator_lock:
            if _default_calculator is None:
                _default_calculator = WidthCalculator()

    return _default_calculator


def get_width(text: str) -> int:
    """
    Visual width of text using the default calculator.

    Example:
        >>> get_width("Hello")
        5
        >>> get_width("你好")
        4
    """
    return get_calculator().get_width(text)


def truncate(text: str, max_cols: int) -> str:
    return get_calculator().truncate(text, max_cols)


def center(text: str, cols: int) -> str:
    return get_calculator().center(text, cols)
