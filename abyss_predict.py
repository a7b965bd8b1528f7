#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - Speculative Pre-Rendering
======================================================
Copyright (c) 2025 Abyss-Tec LLC

Prediction Cache
================
After each frame the session renders the frames the player is most
likely to want next and encodes their diffs against the frame now on
screen. When the matching input arrives the stored diff is written
straight away instead of rendering.

Hypotheses (one of each per tick):
- continue:   one tile ahead, same direction
- stop:       same tile and direction, empty diff
- turn_left:  same tile, facing rotated counter-clockwise
- turn_right: same tile, facing rotated clockwise

Probabilities start at 0.45 / 0.30 / 0.25 (turn split evenly between
left and right). Once three moves are recorded, consecutive moves are
classified and the empirical rates are blended with the priors:

    continue = lr * empirical + (1 - lr) * 0.45
    stop     = lr * empirical + (1 - lr) * 0.30
    turn     = 1 - continue - stop

A stored prediction is only served while younger than 500 ms and, when
the caller passes one, only against the baseline it was diffed from.
"""

import time
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from abyss_encoder import CellGrid, TerminalEncoder
from abyss_types import Direction
from config import PredictionConfig, get_prediction_config

# Configure logging
logger = logging.getLogger('abyss_predict')


class PredictionKind(Enum):
    CONTINUE = "continue"
    STOP = "stop"
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"


# Lookup order on check
LOOKUP_ORDER = (PredictionKind.CONTINUE, PredictionKind.STOP,
                PredictionKind.TURN_LEFT, PredictionKind.TURN_RIGHT)

PredictionKey = Tuple[PredictionKind, int, int, Direction]

RenderFrame = Callable[[int, int, Direction], CellGrid]


@dataclass
class MovementEntry:
    x: int
    y: int
    direction: Direction
    timestamp: float


@dataclass
class PreRenderedPrediction:
    """One speculative frame and the diff that shows it"""
    kind: PredictionKind
    probability: float
    x: int
    y: int
    direction: Direction
    cells: CellGrid
    output: str
    byte_size: int
    timestamp: float
    baseline_serial: int


def next_position(x: int, y: int, direction: Direction) -> Tuple[int, int]:
    dx, dy = direction.delta
    return x + dx, y + dy


class PredictionCache:
    """
    Per-session speculative frame cache.

    Disabled caches ignore recorded movement, pre-render nothing and
    always miss.
    """

    def __init__(self, config: Optional[PredictionConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or get_prediction_config()
        self.config.validate()
        self._clock = clock
        self._enabled = False
        self._predictions: Dict[PredictionKey, PreRenderedPrediction] = {}
        self._history: "deque[MovementEntry]" = deque(maxlen=self.config.max_history)

        self._continue = self.config.continue_prior
        self._stop = self.config.stop_prior
        self._turn = self.config.turn_prior

        self.stats = {
            'hits': 0,
            'misses': 0,
            'stale': 0,
            'baseline_mismatches': 0,
            'frames_prerendered': 0,
        }

    # ------------------------------------------------------------------
    # Switching
    # ------------------------------------------------------------------

    def enable(self):
        self._enabled = True
        logger.info("Speculative pre-rendering enabled")

    def disable(self):
        """Turn off and forget predictions and movement history"""
        self._enabled = False
        self.clear()
        self._history.clear()
        self._reset_probabilities()
        logger.info("Speculative pre-rendering disabled")

    def is_enabled(self) -> bool:
        return self._enabled

    def _reset_probabilities(self):
        self._continue = self.config.continue_prior
        self._stop = self.config.stop_prior
        self._turn = self.config.turn_prior

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def record_movement(self, x: int, y: int, direction: Direction):
        """Add a player state to the history and refresh probabilities"""
        if not self._enabled:
            return
        self._history.append(MovementEntry(x, y, direction, self._clock()))
        self._update_probabilities()

    def _update_probabilities(self):
        if len(self._history) < self.config.min_history:
            return

        continues = stops = turns = 0
        history = list(self._history)
        for prev, curr in zip(history, history[1:]):
            if ((curr.x, curr.y) == next_position(prev.x, prev.y, prev.direction)
                    and curr.direction == prev.direction):
                continues += 1
            elif (curr.x, curr.y) == (prev.x, prev.y):
                stops += 1
            else:
                turns += 1

        total = continues + stops + turns
        lr = self.config.learning_rate
        self._continue = lr * (continues / total) + (1 - lr) * self.config.continue_prior
        self._stop = lr * (stops / total) + (1 - lr) * self.config.stop_prior
        self._turn = 1.0 - self._continue - self._stop

    def get_probabilities(self) -> Dict[str, float]:
        return {
            'continue': self._continue,
            'stop': self._stop,
            'turn': self._turn,
        }

    # ------------------------------------------------------------------
    # Pre-rendering
    # ------------------------------------------------------------------

    def pre_render(self, x: int, y: int, direction: Direction,
                   baseline: CellGrid, render_frame: RenderFrame,
                   encoder: TerminalEncoder) -> List[PreRenderedPrediction]:
        """
        Replace the stored predictions with fresh ones for this state.

        Args:
            x, y, direction: Player state currently on screen
            baseline: Cells currently on screen
            render_frame: Renders the cells for a hypothetical state
            encoder: Supplies the diff encoding and baseline serial

        Returns:
            The new predictions
        """
        if not self._enabled:
            return []

        now = self._clock()
        serial = encoder.baseline_serial
        self._predictions.clear()

        def build(kind, px, py, pdir, probability, cells):
            if cells is baseline:
                output = ''
            else:
                output = encoder.encode_diff(baseline, cells).output
            prediction = PreRenderedPrediction(
                kind=kind,
                probability=probability,
                x=px,
                y=py,
                direction=pdir,
                cells=cells,
                output=output,
                byte_size=len(output.encode('utf-8')),
                timestamp=now,
                baseline_serial=serial,
            )
            self._predictions[(kind, px, py, pdir)] = prediction
            return prediction

        cx, cy = next_position(x, y, direction)
        left = direction.turn_left()
        right = direction.turn_right()
        half_turn = self._turn / 2

        built = [
            build(PredictionKind.CONTINUE, cx, cy, direction, self._continue,
                  render_frame(cx, cy, direction)),
            build(PredictionKind.STOP, x, y, direction, self._stop, baseline),
            build(PredictionKind.TURN_LEFT, x, y, left, half_turn,
                  render_frame(x, y, left)),
            build(PredictionKind.TURN_RIGHT, x, y, right, half_turn,
                  render_frame(x, y, right)),
        ]
        self.stats['frames_prerendered'] += 3
        logger.debug(f"Pre-rendered predictions around ({x}, {y}) facing {direction.value}")
        return built

    def check(self, x: int, y: int, direction: Direction,
              baseline_serial: Optional[int] = None) -> Optional[PreRenderedPrediction]:
        """
        Stored prediction for this state, or None on a miss.

        Entries at least ``freshness_ms`` old, or diffed against another
        baseline than ``baseline_serial``, do not count.
        """
        if not self._enabled:
            return None

        now = self._clock()
        for kind in LOOKUP_ORDER:
            prediction = self._predictions.get((kind, x, y, direction))
            if prediction is None:
                continue
            if (now - prediction.timestamp) * 1000.0 >= self.config.freshness_ms:
                self.stats['stale'] += 1
                continue
            if baseline_serial is not None and prediction.baseline_serial != baseline_serial:
                self.stats['baseline_mismatches'] += 1
                continue
            self.stats['hits'] += 1
            logger.debug(f"Prediction hit: {kind.value} at ({x}, {y})")
            return prediction

        self.stats['misses'] += 1
        logger.debug(f"Prediction miss at ({x}, {y}) facing {direction.value}")
        return None

    def clear(self):
        self._predictions.clear()

    def __len__(self) -> int:
        return len(self._predictions)

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        lookups = stats['hits'] + stats['misses']
        stats['hit_rate'] = stats['hits'] / lookups if lookups else 0.0
        stats['cached'] = len(self._predictions)
        stats['history'] = len(self._history)
        stats['enabled'] = self._enabled
        stats['probabilities'] = self.get_probabilities()
        return stats
