#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Configuration Module
=================================================
Copyright (c) 2025 Abyss-Tec LLC

Centralized Configuration System
=================================
Complete configuration for the per-session terminal renderer including:
- World generation constants (seed, chunk size, rotation hash)
- Tile resolution ladder and zoom levels
- Render modes (normal, halfblock, braille) and color modes
- Cache sizing for chunks, scaled grids and brightness variants
- Speculative pre-render (prediction) tuning
- Session tick timing and collaborator timeouts
- UI palette and RGB/ANSI color utilities

Configuration Overview
======================
Every module takes its configuration through its constructor, falling
back to the process-wide ``ConfigurationManager`` when none is given.
The manager applies ``ABYSS_*`` environment overrides on start and on
``reload_config()``, and notifies registered callbacks of changes.

Environment Overrides
=====================
- ABYSS_WORLD_SEED        world seed (int)
- ABYSS_CHUNK_CACHE       chunk cache capacity
- ABYSS_BRIGHTNESS_CACHE  brightness variant cache capacity
- ABYSS_SCALE_CACHE       scaled grid cache capacity
- ABYSS_RENDER_MODE       normal | halfblock | braille
- ABYSS_COLOR_MODE        truecolor | indexed
- ABYSS_PREDICTION        enable speculative pre-rendering (true/false)
- ABYSS_QUERY_TIMEOUT     game-state query timeout in seconds
- ABYSS_DEBUG             debug mode
"""

import threading
import logging
import os
from typing import Tuple, Dict, Optional, Callable
from dataclasses import dataclass, field
from enum import Enum

# Configure logging
logger = logging.getLogger('abyss_config')

# Type alias for RGB colors
RGBColor = Tuple[int, int, int]

# ============================================================================
# WORLD AND TILE CONSTANTS
# ============================================================================

BASE_SIZE = 256                 # Pixel size of authored tile art
CHUNK_SIZE_TILES = 32           # Tiles per chunk edge

# Pre-scaled tile sizes, ascending
RESOLUTIONS = (26, 51, 77, 102, 128, 154, 179, 205, 230, 256)

# Zoom percentages offered to the player
ZOOM_LEVELS = (10, 20, 30, 40, 50, 60, 70, 80, 90, 100)

# Ticks per animated tile frame
ANIMATION_TICKS_PER_FRAME = 15

# Name tag colors
NAME_TAG_FG: RGBColor = (255, 255, 255)
NAME_TAG_BG: RGBColor = (40, 40, 60)

# ============================================================================
# CONFIGURATION ENUMS
# ============================================================================

class RenderMode(Enum):
    """Pixel-to-cell packing modes"""
    NORMAL = "normal"
    HALFBLOCK = "halfblock"
    BRAILLE = "braille"


class ColorMode(Enum):
    """SGR color encodings"""
    TRUECOLOR = "truecolor"
    INDEXED = "indexed"


# ============================================================================
# WORLD CONFIGURATION
# ============================================================================

@dataclass
class WorldConfig:
    """
    World generation parameters.

    Attributes:
        seed: World seed shared by every session
        chunk_size: Tiles per chunk edge
        chunk_cache_size: Maximum resident chunks per provider
        elevation_scale: Noise frequency for elevation
        moisture_scale: Noise frequency for moisture
        moisture_offset: Coordinate offset decorrelating moisture from elevation
        rotation_mul_x: Rotation hash multiplier for x
        rotation_mul_y: Rotation hash multiplier for y
        rotation_mix: Rotation hash final multiplier
        rotation_shift: Rotation hash xor-shift
    """

    seed: int = 12345
    chunk_size: int = CHUNK_SIZE_TILES
    chunk_cache_size: int = 64

    # Terrain noise
    elevation_scale: float = 0.05
    moisture_scale: float = 0.03
    moisture_offset: float = 1000.0

    # Rotation hash
    rotation_mul_x: int = 374761393
    rotation_mul_y: int = 668265263
    rotation_mix: int = 1274126177
    rotation_shift: int = 13

    def validate(self) -> bool:
        """Validate world configuration"""
        if self.chunk_size <= 0:
            raise ValueError("Chunk size must be positive")
        if self.chunk_cache_size <= 0:
            raise ValueError("Chunk cache size must be positive")
        if self.elevation_scale <= 0 or self.moisture_scale <= 0:
            raise ValueError("Noise scales must be positive")
        return True


# ============================================================================
# CACHE CONFIGURATION
# ============================================================================

@dataclass
class CacheConfig:
    """
    Cache sizing parameters.

    Attributes:
        brightness_cache_size: Maximum brightness variants held
        scale_cache_size: Maximum scaled grids held
        width_cache_size: Maximum measured strings held
        enable_caching: Master switch for the scaled grid cache
    """

    brightness_cache_size: int = 2000
    scale_cache_size: int = 512
    width_cache_size: int = 1000
    enable_caching: bool = True

    def validate(self) -> bool:
        """Validate cache configuration"""
        if self.brightness_cache_size <= 0:
            raise ValueError("Brightness cache size must be positive")
        if self.scale_cache_size <= 0:
            raise ValueError("Scale cache size must be positive")
        if self.width_cache_size <= 0:
            raise ValueError("Width cache size must be positive")
        return True


# ============================================================================
# RENDERING CONFIGURATION
# ============================================================================

@dataclass
class RenderingConfig:
    """Rendering and display configuration"""

    resolutions: Tuple[int, ...] = RESOLUTIONS
    base_size: int = BASE_SIZE

    # Zoom
    zoom_levels: Tuple[int, ...] = ZOOM_LEVELS
    default_zoom_index: int = 2
    full_zoom_tile_size: int = 64

    # Terminal output
    render_mode: RenderMode = RenderMode.HALFBLOCK
    color_mode: ColorMode = ColorMode.TRUECOLOR
    header_rows: int = 1

    # Shown where the world has no tile
    background: RGBColor = (0, 0, 0)

    animation_ticks_per_frame: int = ANIMATION_TICKS_PER_FRAME

    def tile_size_for_zoom(self, zoom: int) -> int:
        """Pixel size of one tile at a zoom percentage"""
        return max(1, (self.full_zoom_tile_size * zoom) // 100)

    def validate(self) -> bool:
        """Validate rendering configuration"""
        if not self.resolutions:
            raise ValueError("At least one resolution is required")
        if list(self.resolutions) != sorted(self.resolutions):
            raise ValueError("Resolutions must be ascending")
        if any(r <= 0 for r in self.resolutions):
            raise ValueError("Resolutions must be positive")
        if not self.zoom_levels:
            raise ValueError("At least one zoom level is required")
        if not 0 <= self.default_zoom_index < len(self.zoom_levels):
            raise ValueError("Default zoom index out of range")
        if self.full_zoom_tile_size <= 0:
            raise ValueError("Full zoom tile size must be positive")
        if self.animation_ticks_per_frame <= 0:
            raise ValueError("Animation ticks per frame must be positive")
        return True


# ============================================================================
# PREDICTION CONFIGURATION
# ============================================================================

@dataclass
class PredictionConfig:
    """Speculative pre-render tuning"""

    enabled: bool = True
    max_history: int = 10
    min_history: int = 3
    learning_rate: float = 0.3
    freshness_ms: float = 500.0

    # Prior weights, must sum to one
    continue_prior: float = 0.45
    stop_prior: float = 0.30
    turn_prior: float = 0.25

    def validate(self) -> bool:
        """Validate prediction configuration"""
        if self.max_history < 2:
            raise ValueError("Prediction history must hold at least two moves")
        if not 0.0 <= self.learning_rate <= 1.0:
            raise ValueError("Learning rate must be within [0, 1]")
        if self.freshness_ms <= 0:
            raise ValueError("Prediction freshness must be positive")
        total = self.continue_prior + self.stop_prior + self.turn_prior
        if abs(total - 1.0) > 1e-6:
            raise ValueError("Prediction priors must sum to 1")
        return True


# ============================================================================
# SESSION CONFIGURATION
# ============================================================================

@dataclass
class SessionConfig:
    """Per-session tick timing and collaborator limits"""

    # Adaptive tick interval (ms) by zoom percentage
    tick_fast_ms: float = 67.0
    tick_medium_ms: float = 100.0
    tick_slow_ms: float = 150.0
    fast_zoom_max: int = 30
    medium_zoom_max: int = 60

    # Visible player refresh policy
    refresh_distance_tiles: int = 2
    refresh_interval_ticks: int = 45
    query_timeout_seconds: float = 0.5

    # Walk animation
    walk_frames: int = 4
    moving_reset_ms: float = 200.0

    def interval_for_zoom(self, zoom: int) -> float:
        """Tick interval in milliseconds for a zoom percentage"""
        if zoom <= self.fast_zoom_max:
            return self.tick_fast_ms
        if zoom <= self.medium_zoom_max:
            return self.tick_medium_ms
        return self.tick_slow_ms

    def validate(self) -> bool:
        """Validate session configuration"""
        if min(self.tick_fast_ms, self.tick_medium_ms, self.tick_slow_ms) <= 0:
            raise ValueError("Tick intervals must be positive")
        if self.query_timeout_seconds <= 0:
            raise ValueError("Query timeout must be positive")
        if self.walk_frames <= 0:
            raise ValueError("Walk frames must be positive")
        return True


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================

@dataclass
class AbyssConfig:
    """Complete system configuration"""

    # Sub-configurations
    world: WorldConfig = field(default_factory=WorldConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rendering: RenderingConfig = field(default_factory=RenderingConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    session: SessionConfig = field(default_factory=SessionConfig)

    # System-wide settings
    debug_mode: bool = False
    log_level: str = "INFO"

    def validate(self) -> bool:
        """Validate entire configuration"""
        self.world.validate()
        self.cache.validate()
        self.rendering.validate()
        self.prediction.validate()
        self.session.validate()
        return True


# ============================================================================
# CONFIGURATION MANAGER (SINGLETON)
# ============================================================================

def _env_flag(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes')


class ConfigurationManager:
    """
    Singleton configuration manager with runtime reloading.
    Thread-safe management of global configuration with change notifications.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = AbyssConfig()
        self._callbacks = []
        self._config_lock = threading.RLock()
        self._load_environment_overrides()

        self._initialized = True
        logger.info("Configuration manager initialized")

    def _load_environment_overrides(self):
        """Load configuration overrides from environment variables"""
        env = os.environ

        # World settings
        if 'ABYSS_WORLD_SEED' in env:
            self._config.world.seed = int(env['ABYSS_WORLD_SEED'])
        if 'ABYSS_CHUNK_CACHE' in env:
            self._config.world.chunk_cache_size = int(env['ABYSS_CHUNK_CACHE'])

        # Cache settings
        if 'ABYSS_BRIGHTNESS_CACHE' in env:
            self._config.cache.brightness_cache_size = int(env['ABYSS_BRIGHTNESS_CACHE'])
        if 'ABYSS_SCALE_CACHE' in env:
            self._config.cache.scale_cache_size = int(env['ABYSS_SCALE_CACHE'])

        # Rendering settings
        if 'ABYSS_RENDER_MODE' in env:
            self._config.rendering.render_mode = RenderMode(env['ABYSS_RENDER_MODE'].lower())
        if 'ABYSS_COLOR_MODE' in env:
            self._config.rendering.color_mode = ColorMode(env['ABYSS_COLOR_MODE'].lower())

        # Prediction and session settings
        if 'ABYSS_PREDICTION' in env:
            self._config.prediction.enabled = _env_flag(env['ABYSS_PREDICTION'])
        if 'ABYSS_QUERY_TIMEOUT' in env:
            self._config.session.query_timeout_seconds = float(env['ABYSS_QUERY_TIMEOUT'])

        # Debug mode
        if 'ABYSS_DEBUG' in env:
            self._config.debug_mode = _env_flag(env['ABYSS_DEBUG'])

    @property
    def config(self) -> AbyssConfig:
        """Get current configuration"""
        with self._config_lock:
            return self._config

    def reload(self, new_config: Optional[AbyssConfig] = None) -> bool:
        """
        Reload configuration and notify callbacks.

        Args:
            new_config: New configuration to apply (reloads from env if None)

        Returns:
            True if reload successful
        """
        with self._config_lock:
            old_config = self._config

            try:
                if new_config:
                    new_config.validate()
                    self._config = new_config
                else:
                    self._load_environment_overrides()
                    self._config.validate()

                self._notify_callbacks(old_config, self._config)

                logger.info("Configuration reloaded successfully")
                return True

            except ValueError as e:
                logger.error(f"Configuration reload failed: {e}")
                self._config = old_config
                return False

    def register_callback(self, callback: Callable[[AbyssConfig, AbyssConfig], None]):
        """
        Register callback for configuration changes.

        Args:
            callback: Function called with (old_config, new_config)
        """
        self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable):
        """Remove a registered callback"""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, old_config: AbyssConfig, new_config: AbyssConfig):
        """Notify all registered callbacks of configuration change"""
        for callback in self._callbacks:
            try:
                callback(old_config, new_config)
            except Exception as e:
                logger.error(f"Callback notification failed: {e}")


# ============================================================================
# PUBLIC API FUNCTIONS
# ============================================================================

_manager = ConfigurationManager()

def get_config() -> AbyssConfig:
    """Get current system configuration"""
    return _manager.config

def reload_config(new_config: Optional[AbyssConfig] = None) -> bool:
    """Reload system configuration"""
    return _manager.reload(new_config)

def register_config_callback(callback: Callable[[AbyssConfig, AbyssConfig], None]):
    """Register for configuration change notifications"""
    _manager.register_callback(callback)

def unregister_config_callback(callback: Callable):
    """Unregister a configuration change callback"""
    _manager.unregister_callback(callback)

def get_world_config() -> WorldConfig:
    """Get world configuration"""
    return _manager.config.world

def get_cache_config() -> CacheConfig:
    """Get cache configuration"""
    return _manager.config.cache

def get_rendering_config() -> RenderingConfig:
    """Get rendering configuration"""
    return _manager.config.rendering

def get_prediction_config() -> PredictionConfig:
    """Get prediction configuration"""
    return _manager.config.prediction

def get_session_config() -> SessionConfig:
    """Get session configuration"""
    return _manager.config.session

# ============================================================================
# UI PALETTE
# ============================================================================

ABYSS_UI_COLORS: Dict[str, RGBColor] = {
    'panel_bg': (20, 20, 35),
    'panel_border': (90, 110, 170),
    'title': (255, 220, 120),
    'text': (220, 220, 230),
    'muted': (140, 140, 160),
    'highlight': (120, 220, 255),
    'self': (120, 255, 140),
    'warning': (255, 200, 50),
}

# ============================================================================
# RGB COLOR UTILITIES
# ============================================================================

# xterm 6x6x6 cube channel levels
_CUBE_LEVELS = (0, 95, 135, 175, 215, 255)


def _nearest_cube_index(value: int) -> int:
    best = 0
    for i, level in enumerate(_CUBE_LEVELS):
        if abs(level - value) < abs(_CUBE_LEVELS[best] - value):
            best = i
    return best


class RGBColors:
    """
    RGB color values and SGR helpers.

    Truecolor helpers emit 38;2 / 48;2 sequences. ``rgb_to_256`` maps a
    color onto the xterm 256-color table (cube or grayscale ramp,
    whichever is closer) for terminals without 24-bit support.
    """

    BLACK = (0, 0, 0)
    WHITE = (255, 255, 255)
    UI_BACKGROUND = ABYSS_UI_COLORS['panel_bg']
    UI_FOREGROUND = ABYSS_UI_COLORS['text']
    UI_WARNING = ABYSS_UI_COLORS['warning']

    @staticmethod
    def rgb_to_ansi(rgb: RGBColor) -> str:
        """Convert RGB tuple to ANSI foreground code"""
        r, g, b = rgb
        return f"\033[38;2;{r};{g};{b}m"

    @staticmethod
    def rgb_to_ansi_bg(rgb: RGBColor) -> str:
        """Convert RGB tuple to ANSI background code"""
        r, g, b = rgb
        return f"\033[48;2;{r};{g};{b}m"

    @staticmethod
    def rgb_to_256(rgb: RGBColor) -> int:
        """Closest xterm 256-color index"""
        r, g, b = (int(c) for c in rgb)
        ri, gi, bi = (_nearest_cube_index(c) for c in (r, g, b))
        cube = (_CUBE_LEVELS[ri], _CUBE_LEVELS[gi], _CUBE_LEVELS[bi])
        cube_index = 16 + 36 * ri + 6 * gi + bi

        gray_avg = (r + g + b) // 3
        gray_step = min(23, max(0, (gray_avg - 8 + 5) // 10))
        gray_value = 8 + 10 * gray_step
        gray_index = 232 + gray_step

        def dist(c):
            return (c[0] - r) ** 2 + (c[1] - g) ** 2 + (c[2] - b) ** 2

        if dist((gray_value,) * 3) < dist(cube):
            return gray_index
        return cube_index

    @staticmethod
    def brighten(color: RGBColor, factor: float = 1.3) -> RGBColor:
        """Scale a color up, clamped to 255"""
        if factor <= 1.0:
            return color
        return tuple(min(255, int(round(c * factor))) for c in color)

    @staticmethod
    def dim(color: RGBColor, factor: float = 0.7) -> RGBColor:
        """Scale a color down"""
        return tuple(max(0, int(round(c * factor))) for c in color)

    @staticmethod
    def blend(color1: RGBColor, color2: RGBColor, ratio: float = 0.5) -> RGBColor:
        """Linear mix of two colors"""
        ratio = max(0.0, min(1.0, ratio))
        return tuple(int(round(a + (b - a) * ratio)) for a, b in zip(color1, color2))
