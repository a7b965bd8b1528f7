#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Overlay Components
===============================================
Copyright (c) 2025 Abyss-Tec LLC

Modal and Overlay Layer
=======================
Panels drawn over the pixel view: the keyboard help, the online player
list and the server reload banner.

Components are a closed set of kinds sharing one record type. Rendering,
input handling and per-tick updates are looked up by kind in dispatch
tables, so adding a kind means adding a row to each table.

    kind     render                         input                update
    MODAL    bordered two-column list       close keys, else block  none
    LIST     bordered player table          close keys, else block  none
    BANNER   bordered message with spinner  block everything     spinner

Lifecycle: UNMOUNTED -> MOUNTED -> FOCUSED -> DESTROYED. Showing,
hiding, focusing and blurring all mark the component for redraw.

The ComponentManager keeps a focus stack. A modal on top receives every
key exclusively; otherwise keys walk the stack from the top until one is
handled. Output is written for stack members only, from the lowest
dirty member upwards, since anything above a redrawn panel may have been
overdrawn by it.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from abyss_encoder import AnsiWriter, sanitize_terminal_input
from abyss_types import PlayerVisualState
from abyss_width import WidthCalculator, get_calculator
from config import ABYSS_UI_COLORS, ColorMode, get_rendering_config

# Configure logging
logger = logging.getLogger('abyss_components')

RGB = Tuple[int, int, int]

ESCAPE = 'Escape'
TAB = 'Tab'


class ComponentKind(Enum):
    MODAL = "modal"
    LIST = "list"
    BANNER = "banner"


class Lifecycle(Enum):
    UNMOUNTED = "unmounted"
    MOUNTED = "mounted"
    FOCUSED = "focused"
    DESTROYED = "destroyed"


class InputMode(Enum):
    GAME = "game"
    DIALOG = "dialog"


@dataclass(frozen=True)
class InputResult:
    handled: bool
    stop_propagation: bool = False


HANDLED = InputResult(True, True)
IGNORED = InputResult(False, False)


@dataclass
class Rect:
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def centered(cls, width: int, height: int, screen_cols: int, screen_rows: int) -> 'Rect':
        return cls(max(0, (screen_cols - width) // 2),
                   max(0, (screen_rows - height) // 2),
                   width, height)


class Panel:
    """Character buffer for one component, in terminal cells"""

    def __init__(self, width: int, height: int, fg: RGB, bg: RGB,
                 calculator: Optional[WidthCalculator] = None):
        self.width = width
        self.height = height
        self._calculator = calculator or get_calculator()
        self.chars = [[' '] * width for _ in range(height)]
        self.fg = [[fg] * width for _ in range(height)]
        self.bg = [[bg] * width for _ in range(height)]

    def fill(self, char: str, fg: RGB, bg: RGB):
        for y in range(self.height):
            for x in range(self.width):
                self.set_cell(x, y, char, fg, bg)

    def set_cell(self, x: int, y: int, char: str, fg: RGB, bg: RGB):
        if 0 <= x < self.width and 0 <= y < self.height:
            self.chars[y][x] = char
            self.fg[y][x] = fg
            self.bg[y][x] = bg

    def write_text(self, x: int, y: int, text: str, fg: RGB, bg: RGB, max_x: Optional[int] = None):
        """Write text from (x, y), wide characters taking two cells"""
        limit = self.width if max_x is None else min(max_x, self.width)
        cells = self._calculator.layout(text, 1)
        for i, cell in enumerate(cells):
            col = x + i
            if col >= limit:
                break
            # Wide character without room for its right half
            if cell and cell != ' ' and self._calculator.get_width(cell) > 1 and col + 1 >= limit:
                cell = ' '
            self.set_cell(col, y, cell, fg, bg)

    def write_centered(self, y: int, text: str, fg: RGB, bg: RGB):
        inner = self.width - 2
        text = self._calculator.truncate(text, inner)
        x = (self.width - self._calculator.get_width(text)) // 2
        self.write_text(max(1, x), y, text, fg, bg, max_x=self.width - 1)

    def draw_border(self, fg: RGB, bg: RGB, title: str = ''):
        w, h = self.width, self.height
        for x in range(1, w - 1):
            self.set_cell(x, 0, '─', fg, bg)
            self.set_cell(x, h - 1, '─', fg, bg)
        for y in range(1, h - 1):
            self.set_cell(0, y, '│', fg, bg)
            self.set_cell(w - 1, y, '│', fg, bg)
        self.set_cell(0, 0, '┌', fg, bg)
        self.set_cell(w - 1, 0, '┐', fg, bg)
        self.set_cell(0, h - 1, '└', fg, bg)
        self.set_cell(w - 1, h - 1, '┘', fg, bg)

    def draw_divider(self, y: int, fg: RGB, bg: RGB):
        self.set_cell(0, y, '├', fg, bg)
        for x in range(1, self.width - 1):
            self.set_cell(x, y, '─', fg, bg)
        self.set_cell(self.width - 1, y, '┤', fg, bg)


@dataclass
class Component:
    """
    One overlay panel.

    ``state`` carries the kind specific payload (help entries, players,
    spinner position) read by the kind's render and input handlers.
    """
    id: str
    kind: ComponentKind
    bounds: Rect
    z_index: int = 0
    modal: bool = True
    title: str = ''
    border_color: RGB = ABYSS_UI_COLORS['panel_border']
    background: RGB = ABYSS_UI_COLORS['panel_bg']
    state: Dict[str, Any] = field(default_factory=dict)
    lifecycle: Lifecycle = Lifecycle.UNMOUNTED
    visible: bool = False
    dirty: bool = True
    on_close: Optional[Callable[[], None]] = None
    panel: Optional[Panel] = None

    # -- lifecycle ------------------------------------------------------

    def init(self):
        if self.lifecycle == Lifecycle.UNMOUNTED:
            self.lifecycle = Lifecycle.MOUNTED
            self.dirty = True

    def show(self):
        self.visible = True
        self.dirty = True

    def hide(self):
        self.visible = False
        self.dirty = True

    def focus(self):
        if self.lifecycle != Lifecycle.DESTROYED:
            self.lifecycle = Lifecycle.FOCUSED
        self.dirty = True

    def blur(self):
        if self.lifecycle == Lifecycle.FOCUSED:
            self.lifecycle = Lifecycle.MOUNTED
        self.dirty = True

    def destroy(self):
        self.lifecycle = Lifecycle.DESTROYED
        self.visible = False
        self.panel = None

    def mark_dirty(self):
        self.dirty = True

    def request_close(self):
        if self.on_close is not None:
            self.on_close()

    # -- dispatch -------------------------------------------------------

    def render(self) -> Panel:
        """Redraw the panel through the kind's renderer"""
        panel = Panel(self.bounds.width, self.bounds.height,
                      ABYSS_UI_COLORS['text'], self.background)
        panel.fill(' ', ABYSS_UI_COLORS['text'], self.background)
        panel.draw_border(self.border_color, self.background)
        if self.title:
            panel.write_centered(0, self.title, ABYSS_UI_COLORS['title'], self.background)
        _RENDERERS[self.kind](self, panel)
        self.panel = panel
        self.dirty = False
        return panel

    def handle_input(self, key: str) -> InputResult:
        return _INPUT_HANDLERS[self.kind](self, key)

    def update(self, delta_ms: float):
        updater = _UPDATERS.get(self.kind)
        if updater is not None:
            updater(self, delta_ms)

    def recenter(self, screen_cols: int, screen_rows: int):
        self.bounds = Rect.centered(self.bounds.width, self.bounds.height, screen_cols, screen_rows)
        self.dirty = True


# ============================================================================
# KIND HANDLERS
# ============================================================================

def _close_or_block(component: Component, key: str) -> InputResult:
    if key in component.state.get('close_keys', (ESCAPE,)):
        component.request_close()
    # Modal panels swallow everything else
    return HANDLED


def _block_all(component: Component, key: str) -> InputResult:
    return HANDLED


def _render_modal(component: Component, panel: Panel):
    bg = component.background
    key_col = component.state.get('key_width', 18)
    for i, (key, desc) in enumerate(component.state.get('entries', ())):
        y = 2 + i
        if y >= panel.height - 2:
            break
        panel.write_text(2, y, key, ABYSS_UI_COLORS['highlight'], bg, max_x=2 + key_col)
        panel.write_text(2 + key_col, y, desc, ABYSS_UI_COLORS['text'], bg, max_x=panel.width - 1)

    hint = component.state.get('hint')
    if hint:
        panel.write_centered(panel.height - 2, hint, ABYSS_UI_COLORS['muted'], bg)


def _render_list(component: Component, panel: Panel):
    bg = component.background
    calc = get_calculator()
    players: Sequence[PlayerVisualState] = component.state.get('players', ())
    self_id = component.state.get('self_id')
    header = ABYSS_UI_COLORS['title']

    panel.write_centered(0, f" PLAYERS ONLINE ({len(players)}) ", header, bg)
    panel.write_text(2, 2, calc.pad('Name', 20), header, bg)
    panel.write_text(22, 2, calc.pad('Position', 16), header, bg, max_x=panel.width - 1)
    panel.draw_divider(3, component.border_color, bg)

    capacity = max(0, panel.height - 7)
    for i, player in enumerate(players[:capacity]):
        is_self = player.player_id == self_id
        color = ABYSS_UI_COLORS['self'] if is_self else ABYSS_UI_COLORS['text']
        prefix = '► ' if is_self else '  '
        name = calc.pad(sanitize_terminal_input(player.username), 16)
        panel.write_text(1, 4 + i, prefix + name, color, bg)
        panel.write_text(21, 4 + i, f"({player.x}, {player.y})", color, bg, max_x=panel.width - 1)

    hint = component.state.get('hint')
    if hint:
        panel.write_centered(panel.height - 2, hint, ABYSS_UI_COLORS['muted'], bg)


def _render_banner(component: Component, panel: Panel):
    bg = component.background
    frames = component.state['spinner_frames']
    spinner = frames[component.state['spinner_index']]
    panel.write_centered(2, f"{spinner} {component.state['message']}", ABYSS_UI_COLORS['warning'], bg)
    panel.write_centered(4, component.state['sub_message'], ABYSS_UI_COLORS['muted'], bg)


def _update_banner(component: Component, delta_ms: float):
    state = component.state
    state['elapsed_ms'] += delta_ms
    if state['elapsed_ms'] >= state['interval_ms']:
        state['spinner_index'] = (state['spinner_index'] + 1) % len(state['spinner_frames'])
        state['elapsed_ms'] = 0.0
        component.mark_dirty()


_RENDERERS: Dict[ComponentKind, Callable[[Component, Panel], None]] = {
    ComponentKind.MODAL: _render_modal,
    ComponentKind.LIST: _render_list,
    ComponentKind.BANNER: _render_banner,
}

_INPUT_HANDLERS: Dict[ComponentKind, Callable[[Component, str], InputResult]] = {
    ComponentKind.MODAL: _close_or_block,
    ComponentKind.LIST: _close_or_block,
    ComponentKind.BANNER: _block_all,
}

_UPDATERS: Dict[ComponentKind, Callable[[Component, float], None]] = {
    ComponentKind.BANNER: _update_banner,
}


# ============================================================================
# BUILT-IN COMPONENTS
# ============================================================================

HELP_ENTRIES = (
    ('← ↑ → ↓ / WASD', 'Move your character'),
    ('+ / -', 'Zoom in / out'),
    ('[ / ]', 'Brightness down / up'),
    ('V', 'Cycle render mode'),
    ('C', 'Toggle color mode'),
    ('P', 'Toggle prediction'),
    ('H / Home', 'Redraw screen'),
    ('Tab', 'Show player list'),
    ('Q', 'Quit game'),
    ('?', 'Show this help'),
)


def help_modal(screen_cols: int, screen_rows: int) -> Component:
    """Keyboard help, closed by ESC or ?"""
    return Component(
        id='help-modal',
        kind=ComponentKind.MODAL,
        bounds=Rect.centered(56, 18, screen_cols, screen_rows),
        z_index=1000,
        title=' KEYBOARD CONTROLS ',
        state={
            'entries': HELP_ENTRIES,
            'key_width': 18,
            'hint': 'Press ESC or ? to close',
            'close_keys': (ESCAPE, '?'),
        },
    )


def player_list(screen_cols: int, screen_rows: int) -> Component:
    """Online players, closed by Tab or ESC"""
    return Component(
        id='player-list',
        kind=ComponentKind.LIST,
        bounds=Rect.centered(50, 20, screen_cols, screen_rows),
        z_index=1000,
        title=' PLAYERS ONLINE ',
        state={
            'players': [],
            'self_id': None,
            'hint': 'Press TAB or ESC to close',
            'close_keys': (TAB, ESCAPE),
        },
    )


def set_players(component: Component, players: Sequence[PlayerVisualState],
                self_id: Optional[str]):
    component.state['players'] = list(players)
    component.state['self_id'] = self_id
    component.mark_dirty()


def reload_banner(screen_cols: int, screen_rows: int) -> Component:
    """Server update notice, cannot be dismissed"""
    return Component(
        id='reload-overlay',
        kind=ComponentKind.BANNER,
        bounds=Rect.centered(40, 7, screen_cols, screen_rows),
        z_index=2000,
        state={
            'spinner_frames': ('◐', '◓', '◑', '◒'),
            'spinner_index': 0,
            'elapsed_ms': 0.0,
            'interval_ms': 200.0,
            'message': 'Updating Server...',
            'sub_message': 'Please wait...',
        },
    )


# ============================================================================
# COMPONENT MANAGER
# ============================================================================

class ComponentManager:
    """
    Focus stack, input routing and output for overlay components.
    """

    def __init__(self, cols: int, rows: int, color_mode: Optional[ColorMode] = None):
        self.cols = cols
        self.rows = rows
        self.color_mode = color_mode or get_rendering_config().color_mode
        self._components: List[Component] = []
        self._focus_stack: List[Component] = []
        self._mode_callback: Optional[Callable[[InputMode], None]] = None
        self._uncovered = False

    # -- tree -------------------------------------------------------------

    def add_component(self, component: Component):
        self._components.append(component)
        component.init()

    def remove_component(self, component: Component):
        if component in self._components:
            self._components.remove(component)
            self.remove_focus(component)
            component.destroy()

    def get_component(self, component_id: str) -> Optional[Component]:
        for component in self._components:
            if component.id == component_id:
                return component
        return None

    # -- focus stack ------------------------------------------------------

    def push_focus(self, component: Component):
        """Show component on top of the stack and give it input focus"""
        current = self.get_focused_component()
        if current is not None:
            current.blur()

        if component.lifecycle == Lifecycle.UNMOUNTED:
            component.init()
        if component.on_close is None:
            component.on_close = lambda: self.remove_focus(component)

        self._focus_stack.append(component)
        component.show()
        component.focus()
        self._notify_mode_change()

    def pop_focus(self) -> Optional[Component]:
        if not self._focus_stack:
            return None
        component = self._focus_stack.pop()
        self._hidden(component)
        return component

    def remove_focus(self, component: Component):
        if component in self._focus_stack:
            self._focus_stack.remove(component)
            self._hidden(component)

    def _hidden(self, component: Component):
        component.blur()
        component.hide()
        self._uncovered = True
        top = self.get_focused_component()
        if top is not None:
            top.focus()
        # Panels left on screen were partly overdrawn
        for remaining in self._focus_stack:
            remaining.mark_dirty()
        self._notify_mode_change()

    def get_focused_component(self) -> Optional[Component]:
        return self._focus_stack[-1] if self._focus_stack else None

    def get_focus_stack(self) -> List[Component]:
        return list(self._focus_stack)

    def is_open(self, component_id: str) -> bool:
        return any(c.id == component_id for c in self._focus_stack)

    def has_modal_focus(self) -> bool:
        return any(c.modal for c in self._focus_stack)

    def take_uncovered(self) -> bool:
        """True once after a panel was hidden and the view beneath needs redrawing"""
        uncovered = self._uncovered
        self._uncovered = False
        return uncovered

    # -- input ------------------------------------------------------------

    def get_input_mode(self) -> InputMode:
        focused = self.get_focused_component()
        if focused is not None and focused.modal:
            return InputMode.DIALOG
        return InputMode.GAME

    def on_input_mode_change(self, callback: Callable[[InputMode], None]):
        self._mode_callback = callback

    def _notify_mode_change(self):
        if self._mode_callback is not None:
            self._mode_callback(self.get_input_mode())

    def handle_input(self, key: str) -> bool:
        """Route a key, True when some component handled it"""
        focused = self.get_focused_component()
        if focused is not None and focused.modal:
            return focused.handle_input(key).handled

        for component in reversed(list(self._focus_stack)):
            result = component.handle_input(key)
            if result.handled:
                return True
        return False

    # -- update and render ------------------------------------------------

    def update(self, delta_ms: float):
        seen = set()
        for component in self._components + self._focus_stack:
            if component.visible and id(component) not in seen:
                seen.add(id(component))
                component.update(delta_ms)

    def invalidate(self):
        """Redraw every open panel on the next render"""
        for component in self._focus_stack:
            component.mark_dirty()

    def _draw_order(self) -> List[Component]:
        return sorted((c for c in self._focus_stack if c.visible), key=lambda c: c.z_index)

    def render_to_string(self) -> str:
        """
        Escape sequences for the open panels that need drawing.

        Returns '' when nothing is dirty.
        """
        order = self._draw_order()
        first_dirty = next((i for i, c in enumerate(order) if c.dirty), None)
        if first_dirty is None:
            return ''

        writer = AnsiWriter(self.color_mode)
        for component in order[first_dirty:]:
            self._emit(writer, component, component.render())
        return writer.finish()

    def _emit(self, writer: AnsiWriter, component: Component, panel: Panel):
        bounds = component.bounds
        for y in range(panel.height):
            row = bounds.y + y
            if row >= self.rows:
                break
            writer.move_to(row, bounds.x)
            for x in range(panel.width):
                if bounds.x + x >= self.cols:
                    break
                char = panel.chars[y][x]
                if char == '':
                    continue
                writer.move_to(row, bounds.x + x)
                writer.set_colors(panel.fg[y][x], panel.bg[y][x])
                writer.write(char)

    def has_visible_components(self) -> bool:
        return any(c.visible for c in self._focus_stack)

    def resize(self, cols: int, rows: int):
        self.cols = cols
        self.rows = rows
        for component in self._components + self._focus_stack:
            component.recenter(cols, rows)

    def destroy(self):
        for component in self._components:
            component.destroy()
        for component in self._focus_stack:
            component.destroy()
        self._components = []
        self._focus_stack = []
        logger.debug("Component manager destroyed")
