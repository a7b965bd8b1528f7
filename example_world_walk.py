#!/usr/bin/env python3
"""
🌊 Abyss Terminal Renderer - World Walk Example
===============================================
Copyright (c) 2025 Abyss-Tec LLC
"""

import sys
import asyncio
import argparse
import logging
from typing import Dict, List

from abyss_encoder import ANSI
from abyss_session import RenderSession
from abyss_tiles import load_tileset_dir
from abyss_types import Direction, PlayerVisualState
from config import AbyssConfig, RenderMode

WALK_PATTERN = (
    [Direction.RIGHT] * 6 + [Direction.DOWN] * 4 +
    [Direction.LEFT] * 6 + [Direction.UP] * 4
)


class OfflineGameState:
    """In-process stand-in for the game server, with a few wandering NPCs"""

    def __init__(self, npc_count: int = 3):
        self.positions: Dict[str, PlayerVisualState] = {}
        for i in range(npc_count):
            npc_id = f"npc-{i}"
            self.positions[npc_id] = PlayerVisualState(npc_id, f"Wanderer {i + 1}", 2 + i * 3, -1 + i * 2)
        self.moves: List[tuple] = []

    def step_npcs(self, frame: int):
        for i, npc in enumerate(self.positions.values()):
            if npc.player_id.startswith('npc-'):
                direction = WALK_PATTERN[(frame + i * 5) % len(WALK_PATTERN)]
                dx, dy = direction.delta
                npc.x += dx
                npc.y += dy
                npc.direction = direction

    async def get_visible_players(self, x, y, cols, rows, exclude_id):
        return [p for p in self.positions.values()
                if p.player_id != exclude_id
                and abs(p.x - x) <= cols // 2 + 1 and abs(p.y - y) <= rows // 2 + 1]

    async def get_all_players(self):
        return list(self.positions.values())

    def queue_move(self, player_id, x, y, direction):
        self.moves.append((player_id, x, y, direction))


async def walk(args) -> RenderSession:
    config = AbyssConfig()
    config.world.seed = args.seed
    config.rendering.render_mode = RenderMode(args.mode)
    config.rendering.default_zoom_index = args.zoom_index
    config.prediction.enabled = not args.no_prediction
    config.validate()

    client = OfflineGameState()
    output = sys.stdout if args.stdout else _NullOutput()
    session = RenderSession('walker', 'Walker', client, output, args.cols, args.rows,
                            config=config)
    if args.tiles:
        session.world.register_tiles(
            load_tileset_dir(args.tiles, sizes=tuple(config.rendering.resolutions))
        )

    frames = []
    await session.tick()
    for frame in range(args.steps):
        client.step_npcs(frame)
        session.move(WALK_PATTERN[frame % len(WALK_PATTERN)])
        await session.tick()
        if args.gif:
            frames.append(session.compositor.render(session.world, session.tick_count).buffer.to_image())
        if args.stdout:
            sys.stdout.flush()
            await asyncio.sleep(session.tick_interval_ms() / 1000.0)

    if args.png:
        session.compositor.set_camera(session.x, session.y)
        image = session.compositor.render(session.world, session.tick_count).buffer.to_image()
        image.save(args.png)
        print(f"✓ Saved {args.png}", file=sys.stderr)

    if frames:
        frames[0].save(
            args.gif,
            format='GIF',
            save_all=True,
            append_images=frames[1:],
            duration=int(session.tick_interval_ms()),
            loop=0,
        )
        print(f"✓ Saved {args.gif}", file=sys.stderr)

    return session


class _NullOutput:
    def write(self, data: str):
        return len(data)


def main():
    parser = argparse.ArgumentParser(description='Abyss World Walk')
    parser.add_argument('--seed', type=int, default=12345)
    parser.add_argument('--steps', type=int, default=40)
    parser.add_argument('--cols', type=int, default=80)
    parser.add_argument('--rows', type=int, default=24)
    parser.add_argument('--mode', choices=[m.value for m in RenderMode], default=RenderMode.HALFBLOCK.value)
    parser.add_argument('--zoom-index', type=int, default=2)
    parser.add_argument('--no-prediction', action='store_true')
    parser.add_argument('--stdout', action='store_true', help='Write terminal frames to stdout')
    parser.add_argument('--png', help='Save the final viewport as PNG')
    parser.add_argument('--gif', help='Save every step as an animated GIF')
    parser.add_argument('--tiles', help='Directory of <id>.png tiles replacing the built-in art')
    parser.add_argument('--debug', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)

    session = asyncio.run(walk(args))
    stats = session.get_stats()
    session.destroy()
    if args.stdout:
        sys.stdout.write(ANSI.RESET + ANSI.SHOW_CURSOR + '\n')

    print("🌊 Abyss World Walk", file=sys.stderr)
    print("=" * 60, file=sys.stderr)
    print(f"Seed: {args.seed}  Steps: {args.steps}  Mode: {args.mode}", file=sys.stderr)
    print(f"Bytes written: {stats['session']['bytes_written']}", file=sys.stderr)
    print(f"Prediction hit rate: {stats['prediction']['hit_rate']:.0%}", file=sys.stderr)
    print(f"Chunks cached: {stats['world'].get('cached_chunks', 0)}", file=sys.stderr)


if __name__ == "__main__":
    main()
