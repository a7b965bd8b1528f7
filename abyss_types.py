#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Core Types
=======================================
Copyright (c) 2025 Abyss-Tec LLC

Shared value types for the render pipeline:
- Direction: facing and movement direction
- Tile: terrain tile with pre-scaled resolutions and optional animation
- Sprite: per-direction animation frames for a player
- PlayerVisualState: what the renderer needs to draw one player
- TextOverlay: text stamped over the encoded frame (name tags)
- WorldDataProvider / GameStateClient: collaborator interfaces
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from abyss_pixels import PixelGrid, rotate_grid

RGB = Tuple[int, int, int]


class Direction(Enum):
    """Facing direction, values match the wire names"""
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

    @property
    def delta(self) -> Tuple[int, int]:
        return _DELTAS[self]

    def turn_left(self) -> 'Direction':
        return _LEFT_TURNS[self]

    def turn_right(self) -> 'Direction':
        return _RIGHT_TURNS[self]


_DELTAS = {
    Direction.UP: (0, -1),
    Direction.DOWN: (0, 1),
    Direction.LEFT: (-1, 0),
    Direction.RIGHT: (1, 0),
}

_LEFT_TURNS = {
    Direction.UP: Direction.LEFT,
    Direction.LEFT: Direction.DOWN,
    Direction.DOWN: Direction.RIGHT,
    Direction.RIGHT: Direction.UP,
}

_RIGHT_TURNS = {v: k for k, v in _LEFT_TURNS.items()}


@dataclass(frozen=True)
class Tile:
    """
    Terrain tile.

    ``resolutions`` maps a pixel size to a square pre-scaled copy of
    ``pixels``. Animated tiles carry ``animation_frames`` (looped by the
    compositor) and optionally ``animation_resolutions`` mapping a size
    to the pre-scaled frame list. ``rotation`` is set only on derived
    copies returned by ``rotated()``.
    """
    id: str
    name: str
    walkable: bool
    pixels: PixelGrid
    resolutions: Dict[int, PixelGrid] = field(default_factory=dict)
    animation_frames: Tuple[PixelGrid, ...] = ()
    animation_resolutions: Dict[int, Tuple[PixelGrid, ...]] = field(default_factory=dict)
    rotation: int = 0

    @property
    def animated(self) -> bool:
        return len(self.animation_frames) > 0

    def rotated(self, quarter_turns: int) -> 'Tile':
        """
        Derived copy rotated clockwise, with every resolution rotated
        the same way. Animated tiles and zero turns return self.
        """
        k = quarter_turns % 4
        if k == 0 or self.animated:
            return self
        return replace(
            self,
            pixels=rotate_grid(self.pixels, k),
            resolutions={size: rotate_grid(grid, k) for size, grid in self.resolutions.items()},
            rotation=(self.rotation + k) % 4,
        )


@dataclass(frozen=True)
class Sprite:
    """Player sprite, frames per direction plus optional pre-scaled sets"""
    width: int
    height: int
    frames: Dict[Direction, List[PixelGrid]]
    resolutions: Dict[int, Dict[Direction, List[PixelGrid]]] = field(default_factory=dict)

    def frames_for(self, direction: Direction, size: Optional[int] = None) -> Sequence[PixelGrid]:
        """Frames for a direction, preferring the pre-scaled set for size"""
        if size is not None and size in self.resolutions:
            scaled = self.resolutions[size].get(direction)
            if scaled:
                return scaled
        return self.frames.get(direction, [])


@dataclass
class PlayerVisualState:
    player_id: str
    username: str
    x: int
    y: int
    direction: Direction = Direction.DOWN
    animation_frame: int = 0
    is_moving: bool = False


@dataclass(frozen=True)
class TextOverlay:
    """Text centred on a buffer pixel column, drawn over the encoded frame"""
    text: str
    x: int
    y: int
    fg: RGB = (255, 255, 255)
    bg: RGB = (40, 40, 60)


class WorldDataProvider(Protocol):
    """What the viewport compositor reads from the world"""

    def get_tile(self, x: int, y: int) -> Optional[Tile]: ...

    def get_players(self) -> List[PlayerVisualState]: ...

    def get_player_sprite(self, player_id: str) -> Optional[Sprite]: ...

    def get_local_player_id(self) -> str: ...


class GameStateClient(Protocol):
    """Authoritative game-state service, implemented outside this project"""

    async def get_visible_players(self, x: int, y: int, cols: int, rows: int,
                                  exclude_id: str) -> List[PlayerVisualState]: ...

    async def get_all_players(self) -> List[PlayerVisualState]: ...

    def queue_move(self, player_id: str, x: int, y: int, direction: Direction) -> None: ...
