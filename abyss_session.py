#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Render Session
===========================================
Copyright (c) 2025 Abyss-Tec LLC

Per-Session Render Loop
=======================
One RenderSession drives one connected terminal. It owns every cache the
pipeline uses (chunks, scaled grids, brightness variants, predictions),
so sessions never share mutable state.

Tick (asyncio periodic task):
1. Show or hide the reload banner, advance component animations
2. Advance or reset the local walk animation
3. Refresh visible players when the player moved more than two tiles or
   every 45 ticks (bounded by a timeout, last result kept on failure)
4. Composite, encode against the last frame and write the difference
5. Pre-render likely next frames when prediction is enabled

Moves are applied immediately: a prediction hit writes the stored diff,
a miss renders on the spot. Zoom, render mode, color mode and resize
changes force a full redraw.

The tick interval adapts to zoom: 67 ms up to 30%, 100 ms up to 60%,
150 ms above.
"""

import asyncio
import math
import time
import logging
from typing import Any, Callable, Dict, List, Optional

from abyss_brightness import BRIGHTNESS_LEVELS, BrightnessVariantCache
from abyss_components import ComponentManager, help_modal, player_list, reload_banner, set_players
from abyss_encoder import (ANSI, AnsiWriter, CellGrid, TerminalEncoder, build_cells,
                           cells_per_terminal)
from abyss_predict import PredictionCache
from abyss_scale import GridScaler
from abyss_tiles import create_placeholder_sprite, default_tileset, player_color
from abyss_types import Direction, GameStateClient, PlayerVisualState, Sprite
from abyss_viewport import ViewportCompositor, ViewportConfig
from abyss_width import get_calculator
from config import AbyssConfig, ABYSS_UI_COLORS, ColorMode, RenderMode, get_config
from abyss_world import WorldProvider

# Configure logging
logger = logging.getLogger('abyss_session')

MOVE_KEYS = {
    'up': Direction.UP, 'w': Direction.UP,
    'down': Direction.DOWN, 's': Direction.DOWN,
    'left': Direction.LEFT, 'a': Direction.LEFT,
    'right': Direction.RIGHT, 'd': Direction.RIGHT,
}

RENDER_MODE_CYCLE = (RenderMode.NORMAL, RenderMode.HALFBLOCK, RenderMode.BRAILLE)


class RenderSession:
    """
    Rendering and input handling for one terminal session.

    Args:
        player_id: Local player id
        username: Local player name
        client: Game-state service
        output: Anything with write(str)
        cols, rows: Terminal size
        x, y: Starting tile
        config: System configuration (uses global config if None)
        world: World provider (a fresh one if None)
        sprite: Local player sprite (placeholder if None)
        clock: Time source in seconds
    """

    def __init__(self,
                 player_id: str,
                 username: str,
                 client: GameStateClient,
                 output,
                 cols: int,
                 rows: int,
                 x: int = 0,
                 y: int = 0,
                 config: Optional[AbyssConfig] = None,
                 world: Optional[WorldProvider] = None,
                 sprite: Optional[Sprite] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or get_config()
        self.player_id = player_id
        self.username = username
        self.client = client
        self._output = output
        self._clock = clock
        self.cols = cols
        self.rows = rows

        rendering = self.config.rendering
        self.render_mode = rendering.render_mode
        self.color_mode = rendering.color_mode
        self.header_rows = rendering.header_rows
        self.zoom_index = rendering.default_zoom_index
        self.brightness_index = BRIGHTNESS_LEVELS.index(1.0)

        # Local player
        self.x = x
        self.y = y
        self.direction = Direction.DOWN
        self.animation_frame = 0
        self.is_moving = False
        self._last_move_at = 0.0

        # Per-session caches and pipeline
        self.world = world or WorldProvider(config=self.config.world,
                                            tiles=default_tileset(tuple(rendering.resolutions)))
        self.world.set_local_player_id(player_id)
        self.world.set_player_sprite(
            player_id, sprite or create_placeholder_sprite(player_color(player_id), rendering.resolutions)
        )
        self.scaler = GridScaler(self.config.cache.scale_cache_size)
        self.brightness_cache = BrightnessVariantCache(self.config.cache.brightness_cache_size)
        self.compositor = ViewportCompositor(
            ViewportConfig(1, 1, rendering.tile_size_for_zoom(self.zoom)),
            rendering, self.scaler, self.brightness_cache,
        )
        self.encoder = TerminalEncoder(self.color_mode, origin_row=self.header_rows)
        self.prediction = PredictionCache(self.config.prediction, clock=clock)
        if self.config.prediction.enabled:
            self.prediction.enable()
        self.components = ComponentManager(cols, rows, self.color_mode)
        self.reload_overlay = reload_banner(cols, rows)
        self.help = help_modal(cols, rows)
        self.player_list = player_list(cols, rows)
        for component in (self.reload_overlay, self.help, self.player_list):
            self.components.add_component(component)

        # Visible player refresh
        self.tick_count = 0
        self._last_query = None
        self._visible: List[PlayerVisualState] = []
        self.reloading = False

        self._header = None
        self._force_redraw = True
        self._destroyed = False
        self._task: Optional[asyncio.Task] = None

        self.stats = {
            'ticks': 0,
            'frames_written': 0,
            'bytes_written': 0,
            'moves': 0,
            'blocked_moves': 0,
            'query_timeouts': 0,
            'query_errors': 0,
        }

        self._update_local_player()
        self._layout_viewport()
        logger.info(f"RenderSession started for {player_id} at ({x}, {y}), "
                    f"{cols}x{rows}, mode={self.render_mode.value}")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def zoom(self) -> int:
        return self.config.rendering.zoom_levels[self.zoom_index]

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def tick_interval_ms(self) -> float:
        return self.config.session.interval_for_zoom(self.zoom)

    @property
    def view_rows(self) -> int:
        return max(1, self.rows - self.header_rows)

    @property
    def view_cell_cols(self) -> int:
        _, _, cell_cols = cells_per_terminal(self.render_mode)
        return max(1, self.cols // cell_cols)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _layout_viewport(self):
        """Size the viewport in tiles to cover the terminal"""
        px_w, px_h, _ = cells_per_terminal(self.render_mode)
        tile = self.config.rendering.tile_size_for_zoom(self.zoom)
        self.compositor.set_tile_render_size(tile)
        width_tiles = max(1, math.ceil(self.view_cell_cols * px_w / tile))
        height_tiles = max(1, math.ceil(self.view_rows * px_h / tile))
        self.compositor.resize(width_tiles, height_tiles)
        self._full_redraw()

    def _full_redraw(self):
        self._force_redraw = True
        self._header = None
        self.encoder.invalidate()
        self.prediction.clear()
        self.components.invalidate()

    # ------------------------------------------------------------------
    # Frame production
    # ------------------------------------------------------------------

    def _update_local_player(self):
        self.world.update_player(PlayerVisualState(
            player_id=self.player_id,
            username=self.username,
            x=self.x,
            y=self.y,
            direction=self.direction,
            animation_frame=self.animation_frame,
            is_moving=self.is_moving,
        ))

    def render_cells(self, x: int, y: int, direction: Direction) -> CellGrid:
        """Cells for the view with the local player at (x, y) facing direction"""
        actual = self.world.get_player(self.player_id)
        self.world.update_player(PlayerVisualState(
            self.player_id, self.username, x, y, direction,
            self.animation_frame, self.is_moving,
        ))
        try:
            self.compositor.set_camera(x, y)
            frame = self.compositor.render(self.world, self.tick_count)
        finally:
            if actual is not None:
                self.world.update_player(actual)

        cells = build_cells(frame.buffer, self.render_mode, self.config.rendering.background)
        cells = cells.crop(self.view_rows, self.view_cell_cols)
        return cells.stamp_overlays(frame.overlays)

    def _header_text(self) -> str:
        text = (f" ({self.x}, {self.y})  zoom {self.zoom}%  {self.render_mode.value}"
                f"  players {len(self._visible) + 1}  ? help")
        return get_calculator().pad(text, self.cols)

    def _render_header(self) -> str:
        if self.header_rows <= 0:
            return ''
        text = self._header_text()
        if text == self._header:
            return ''
        self._header = text
        writer = AnsiWriter(self.color_mode)
        writer.move_to(0, 0)
        writer.set_colors(ABYSS_UI_COLORS['text'], ABYSS_UI_COLORS['panel_bg'])
        writer.write(text)
        return writer.finish()

    def _render_margin(self) -> str:
        """Blank the columns right of the last whole cell"""
        _, _, cell_cols = cells_per_terminal(self.render_mode)
        start = self.view_cell_cols * cell_cols
        if start >= self.cols:
            return ''
        writer = AnsiWriter(self.color_mode)
        for row in range(self.header_rows, self.rows):
            writer.move_to(row, start)
            writer.set_colors(None, self.config.rendering.background)
            writer.write(' ' * (self.cols - start))
        return writer.finish()

    def _write(self, data: str):
        if self._destroyed or not data:
            return
        self._output.write(data)
        self.stats['frames_written'] += 1
        self.stats['bytes_written'] += len(data.encode('utf-8'))

    def draw(self) -> str:
        """
        Render the current state and write what changed.

        Returns the text written.
        """
        if self._destroyed:
            return ''

        uncovered = self.components.take_uncovered()
        force = self._force_redraw or uncovered
        prefix = ''
        if self._force_redraw:
            prefix = ANSI.HIDE_CURSOR + ANSI.CLEAR_SCREEN
        if force:
            # Panels may have covered the header and the right margin
            self._header = None
            prefix += self._render_margin()
        self._force_redraw = False

        cells = self.render_cells(self.x, self.y, self.direction)
        result = self.encoder.encode(cells, force=force)
        if result.output:
            # The frame may have drawn over open panels
            self.components.invalidate()

        data = prefix + self._render_header() + result.output + self.components.render_to_string()
        self._write(data)

        if self.prediction.is_enabled() and not self.components.has_modal_focus():
            self.prediction.pre_render(self.x, self.y, self.direction, cells,
                                       self.render_cells, self.encoder)
        return data

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self):
        """One periodic update"""
        if self._destroyed:
            return
        self.tick_count += 1
        self.stats['ticks'] += 1
        delta_ms = self.tick_interval_ms()

        self._sync_reload_overlay()
        self.components.update(delta_ms)

        now = self._clock()
        if self.is_moving:
            if (now - self._last_move_at) * 1000.0 >= self.config.session.moving_reset_ms:
                self.is_moving = False
                self.animation_frame = 0
            else:
                self.animation_frame = (self.animation_frame + 1) % self.config.session.walk_frames
            self._update_local_player()

        if self._needs_player_refresh():
            await self.refresh_visible_players()

        self.draw()

    def _needs_player_refresh(self) -> bool:
        if self._last_query is None:
            return True
        qx, qy = self._last_query
        limit = self.config.session.refresh_distance_tiles
        if abs(self.x - qx) > limit or abs(self.y - qy) > limit:
            return True
        return self.tick_count % self.config.session.refresh_interval_ticks == 0

    async def refresh_visible_players(self):
        """Fetch nearby players, keeping the previous list on timeout or error"""
        timeout = self.config.session.query_timeout_seconds
        self._last_query = (self.x, self.y)
        try:
            players = await asyncio.wait_for(
                self.client.get_visible_players(
                    self.x, self.y,
                    self.compositor.config.width_tiles,
                    self.compositor.config.height_tiles,
                    self.player_id,
                ),
                timeout,
            )
        except asyncio.TimeoutError:
            self.stats['query_timeouts'] += 1
            logger.warning(f"Visible player query timed out after {timeout}s, using last result")
            return
        except (ConnectionError, OSError) as e:
            self.stats['query_errors'] += 1
            logger.warning(f"Visible player query failed ({e}), using last result")
            return

        self._apply_visible_players(players)

    def _apply_visible_players(self, players: List[PlayerVisualState]):
        seen = {self.player_id}
        for player in players:
            if player.player_id == self.player_id:
                continue
            seen.add(player.player_id)
            self.world.update_player(player)
            if not self.world.has_player_sprite(player.player_id):
                self.world.set_player_sprite(
                    player.player_id,
                    create_placeholder_sprite(player_color(player.player_id),
                                              self.config.rendering.resolutions),
                )
        for player in self.world.get_players():
            if player.player_id not in seen:
                self.world.remove_player(player.player_id)
        self._visible = [p for p in players if p.player_id != self.player_id]
        if self.components.is_open(self.player_list.id):
            set_players(self.player_list, [self.world.get_player(self.player_id)] + self._visible,
                        self.player_id)

    def _sync_reload_overlay(self):
        open_ = self.components.is_open(self.reload_overlay.id)
        if self.reloading and not open_:
            self.components.push_focus(self.reload_overlay)
        elif not self.reloading and open_:
            self.components.remove_focus(self.reload_overlay)

    def set_reloading(self, reloading: bool):
        self.reloading = reloading
        self._sync_reload_overlay()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def move(self, direction: Direction) -> bool:
        """
        Step one tile, or turn in place when the target is not walkable.

        Returns True when a pre-rendered frame was served.
        """
        if self._destroyed:
            return False

        dx, dy = direction.delta
        tx, ty = self.x + dx, self.y + dy
        if self.world.is_walkable(tx, ty):
            self.x, self.y = tx, ty
            self.is_moving = True
            self._last_move_at = self._clock()
            self.stats['moves'] += 1
            self.client.queue_move(self.player_id, tx, ty, direction)
        else:
            self.stats['blocked_moves'] += 1
        self.direction = direction
        self._update_local_player()
        self.prediction.record_movement(self.x, self.y, self.direction)

        hit = self.prediction.check(self.x, self.y, self.direction, self.encoder.baseline_serial)
        if hit is None:
            self.draw()
            return False

        self.encoder.accept(hit.cells)
        if hit.output:
            self.components.invalidate()
        self._write(self._render_header() + hit.output + self.components.render_to_string())
        return True

    async def handle_key(self, key: str) -> bool:
        """
        Route one key press. Returns False once the session has ended.
        """
        if self._destroyed:
            return False

        if self.components.handle_input(key):
            self.draw()
            return True

        lowered = key.lower()
        if key in MOVE_KEYS or lowered in MOVE_KEYS:
            self.move(MOVE_KEYS.get(key) or MOVE_KEYS[lowered])
        elif key in ('+', '='):
            self.zoom_in()
        elif key in ('-', '_'):
            self.zoom_out()
        elif lowered == 'v':
            self.cycle_render_mode()
        elif lowered == 'c':
            self.toggle_color_mode()
        elif lowered == 'p':
            self.toggle_prediction()
        elif key == '[':
            self.set_brightness_index(self.brightness_index - 1)
        elif key == ']':
            self.set_brightness_index(self.brightness_index + 1)
        elif lowered == 'h' or key == 'Home':
            self._full_redraw()
            self.draw()
        elif key == '?':
            self.components.push_focus(self.help)
            self.draw()
        elif key == 'Tab':
            await self.show_player_list()
        elif lowered == 'q':
            await self.close()
            return False
        return True

    async def show_player_list(self):
        try:
            players = await asyncio.wait_for(self.client.get_all_players(),
                                             self.config.session.query_timeout_seconds)
        except (asyncio.TimeoutError, ConnectionError, OSError) as e:
            logger.warning(f"Player list query failed ({e!r}), showing nearby players")
            players = [self.world.get_player(self.player_id)] + self._visible
        set_players(self.player_list, players, self.player_id)
        self.components.push_focus(self.player_list)
        self.draw()

    def zoom_in(self):
        if self.zoom_index < len(self.config.rendering.zoom_levels) - 1:
            self.zoom_index += 1
            self._layout_viewport()
            self.draw()

    def zoom_out(self):
        if self.zoom_index > 0:
            self.zoom_index -= 1
            self._layout_viewport()
            self.draw()

    def set_render_mode(self, mode: RenderMode):
        self.render_mode = mode
        self._layout_viewport()
        self.draw()

    def cycle_render_mode(self):
        index = RENDER_MODE_CYCLE.index(self.render_mode)
        self.set_render_mode(RENDER_MODE_CYCLE[(index + 1) % len(RENDER_MODE_CYCLE)])

    def toggle_color_mode(self):
        self.color_mode = (ColorMode.INDEXED if self.color_mode == ColorMode.TRUECOLOR
                           else ColorMode.TRUECOLOR)
        self.encoder.color_mode = self.color_mode
        self.components.color_mode = self.color_mode
        self._full_redraw()
        self.draw()

    def toggle_prediction(self):
        if self.prediction.is_enabled():
            self.prediction.disable()
        else:
            self.prediction.enable()

    def set_brightness_index(self, index: int):
        index = max(0, min(len(BRIGHTNESS_LEVELS) - 1, index))
        if index != self.brightness_index:
            self.brightness_index = index
            self.compositor.set_brightness(BRIGHTNESS_LEVELS[index])
            self.prediction.clear()
            self.draw()

    def resize(self, cols: int, rows: int):
        self.cols = cols
        self.rows = rows
        self.components.resize(cols, rows)
        self._layout_viewport()
        self.draw()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self):
        """Tick until destroyed, sleeping out the rest of each interval"""
        while not self._destroyed:
            started = self._clock()
            await self.tick()
            elapsed_ms = (self._clock() - started) * 1000.0
            await asyncio.sleep(max(0.0, self.tick_interval_ms() - elapsed_ms) / 1000.0)

    def start(self) -> asyncio.Task:
        """Schedule the tick loop on the running event loop"""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def destroy(self):
        """Stop ticking, drop every cache and never write again"""
        if self._destroyed:
            return
        self._destroyed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

        self.prediction.disable()
        self.components.destroy()
        self.world.clear_cache()
        self.scaler.clear_cache()
        self.brightness_cache.clear()
        self.encoder.invalidate()
        logger.info(f"RenderSession for {self.player_id} destroyed")

    async def close(self):
        """destroy() and wait for the tick task to finish"""
        task = self._task
        self.destroy()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def get_stats(self) -> Dict[str, Any]:
        return {
            'session': self.stats.copy(),
            'world': self.world.get_stats(),
            'viewport': self.compositor.get_stats(),
            'encoder': self.encoder.get_stats(),
            'prediction': self.prediction.get_stats(),
            'tick_interval_ms': self.tick_interval_ms(),
        }
