"""
Viewport compositing: camera, resolution choice, tile animation,
player draw order, placeholders and name tags.
"""

import pytest

from abyss_pixels import TRANSPARENT, PixelGrid, scale_all
from abyss_tiles import player_color
from abyss_types import Direction, PlayerVisualState, Sprite, Tile
from abyss_viewport import ViewportCompositor, ViewportConfig
from config import NAME_TAG_BG, NAME_TAG_FG

from conftest import SMALL_SIZES, solid_tile

GREEN = (0, 200, 0)
RED = (200, 0, 0)


class GridWorld:
    """WorldDataProvider over a dict of positioned tiles"""

    def __init__(self, default=None, tiles=None, local_id='me'):
        self.default = default
        self.tiles = tiles or {}
        self.players = []
        self.sprites = {}
        self.local_id = local_id

    def get_tile(self, x, y):
        return self.tiles.get((x, y), self.default)

    def get_players(self):
        return list(self.players)

    def get_player_sprite(self, player_id):
        return self.sprites.get(player_id)

    def get_local_player_id(self):
        return self.local_id


def make_compositor(small_rendering, width=3, height=3, tile=4):
    return ViewportCompositor(ViewportConfig(width, height, tile), small_rendering)


def block(frame, tx, ty, size=4):
    return frame.buffer.rgb[ty * size:(ty + 1) * size, tx * size:(tx + 1) * size]


class TestSizing:
    def test_camera_centers_on_tile(self, small_rendering):
        compositor = make_compositor(small_rendering, 5, 3)
        compositor.set_camera(10, 20)
        assert (compositor.camera_x, compositor.camera_y) == (8, 19)

    @pytest.mark.parametrize("tile,resolution", [(3, 4), (4, 4), (5, 8), (12, 16), (40, 16)])
    def test_data_resolution(self, small_rendering, tile, resolution):
        compositor = make_compositor(small_rendering, tile=tile)
        assert compositor.data_resolution == resolution

    def test_set_tile_render_size_reselects(self, small_rendering):
        compositor = make_compositor(small_rendering, tile=4)
        compositor.set_tile_render_size(9)
        assert compositor.tile_render_size == 9
        assert compositor.data_resolution == 16
        assert compositor.pixel_size == (27, 27)

    def test_invalid_config(self, small_rendering):
        with pytest.raises(ValueError):
            make_compositor(small_rendering, width=0)


class TestTiles:
    def test_tiles_land_on_their_cells(self, small_rendering):
        world = GridWorld(solid_tile('grass', GREEN), {(1, 1): solid_tile('lava', RED)})
        compositor = make_compositor(small_rendering)
        compositor.set_camera(1, 1)
        frame = compositor.render(world, 0)

        assert frame.buffer.size == (12, 12)
        assert frame.camera == (0, 0)
        assert (block(frame, 1, 1) == RED).all()
        assert (block(frame, 0, 0) == GREEN).all()

    def test_missing_tiles_show_background(self, small_rendering):
        compositor = make_compositor(small_rendering)
        frame = compositor.render(GridWorld(), 0)
        assert (frame.buffer.rgb == small_rendering.background).all()
        assert frame.buffer.opaque.all()
        assert compositor.get_stats()['missing_tiles'] == 9

    def test_transparent_tile_pixels_keep_background(self, small_rendering):
        rows = [[TRANSPARENT] * 4 for _ in range(4)]
        pixels = PixelGrid.from_rows(rows)
        hollow = Tile('hollow', 'Hollow', True, pixels, scale_all(pixels, SMALL_SIZES))
        frame = make_compositor(small_rendering).render(GridWorld(hollow), 0)
        assert (frame.buffer.rgb == 0).all()

    def test_animation_advances_every_15_ticks(self, small_rendering):
        colors = [(10, 10, 10), (20, 20, 20), (30, 30, 30)]
        frames = tuple(PixelGrid.solid(4, 4, c) for c in colors)
        water = Tile('water', 'Water', False, frames[0], {},
                     animation_frames=frames,
                     animation_resolutions={4: frames})
        compositor = make_compositor(small_rendering, 1, 1)
        world = GridWorld(water)

        def color_at(tick):
            return tuple(int(v) for v in compositor.render(world, tick).buffer.rgb[0, 0])

        assert color_at(0) == colors[0]
        assert color_at(14) == colors[0]
        assert color_at(15) == colors[1]
        assert color_at(30) == colors[2]
        assert color_at(45) == colors[0]

    def test_brightness(self, small_rendering):
        world = GridWorld(solid_tile('grey', (100, 100, 100)))
        compositor = make_compositor(small_rendering, 1, 1)
        compositor.set_brightness(0.7)
        frame = compositor.render(world, 0)
        assert tuple(int(v) for v in frame.buffer.rgb[0, 0]) == (70, 70, 70)


class TestPlayers:
    def test_placeholder_fill_for_missing_sprite(self, small_rendering):
        world = GridWorld(solid_tile('grass', GREEN))
        world.players.append(PlayerVisualState('ghost', 'Ghost', 1, 1))
        compositor = make_compositor(small_rendering)
        compositor.set_camera(1, 1)
        frame = compositor.render(world, 0)

        assert (block(frame, 1, 1) == player_color('ghost')).all()
        assert compositor.get_stats()['placeholders'] == 1

    def test_sprite_transparency_shows_tile(self, small_rendering):
        rows = [[RED, TRANSPARENT], [TRANSPARENT, RED]]
        grid = PixelGrid.from_rows(rows)
        sprite = Sprite(2, 2, {d: [grid] for d in Direction})
        world = GridWorld(solid_tile('grass', GREEN), local_id='me')
        world.players.append(PlayerVisualState('me', 'Me', 0, 0))
        world.sprites['me'] = sprite

        frame = make_compositor(small_rendering, 1, 1).render(world, 0)
        rgb = frame.buffer.rgb
        assert tuple(rgb[0, 0]) == RED
        assert tuple(rgb[0, 3]) == GREEN
        assert tuple(rgb[3, 3]) == RED
        assert frame.overlays == []

    def test_animation_frame_wraps(self, small_rendering):
        frames = [PixelGrid.solid(4, 4, (i * 10, 0, 0)) for i in range(1, 3)]
        sprite = Sprite(4, 4, {Direction.LEFT: frames})
        world = GridWorld(solid_tile('grass', GREEN))
        world.players.append(PlayerVisualState('me', 'Me', 0, 0, Direction.LEFT, animation_frame=3))
        world.sprites['me'] = sprite

        frame = make_compositor(small_rendering, 1, 1).render(world, 0)
        assert tuple(frame.buffer.rgb[0, 0]) == (20, 0, 0)

    def test_name_tags_for_remote_players_only(self, small_rendering):
        world = GridWorld(solid_tile('grass', GREEN))
        world.players.extend([
            PlayerVisualState('me', 'Me', 1, 1),
            PlayerVisualState('other', 'Other', 2, 1),
        ])
        compositor = make_compositor(small_rendering)
        compositor.set_camera(1, 1)
        frame = compositor.render(world, 0)

        assert len(frame.overlays) == 1
        tag = frame.overlays[0]
        assert tag.text == 'Other'
        assert (tag.x, tag.y) == (2 * 4 + 2, 4 - 6)
        assert (tag.fg, tag.bg) == (NAME_TAG_FG, NAME_TAG_BG)

    def test_players_drawn_in_y_order(self, small_rendering):
        world = GridWorld(solid_tile('grass', GREEN), local_id='nobody')
        world.players.extend([
            PlayerVisualState('c', 'C', 0, 2),
            PlayerVisualState('a', 'A', 0, 0),
            PlayerVisualState('b', 'B', 1, 1),
        ])
        compositor = make_compositor(small_rendering)
        compositor.set_camera(1, 1)
        frame = compositor.render(world, 0)
        assert [o.text for o in frame.overlays] == ['A', 'B', 'C']

    def test_same_row_keeps_arrival_order(self, small_rendering):
        yellow = PixelGrid.solid(1, 1, (255, 255, 0))
        upper = Sprite(1, 1, {Direction.DOWN: [yellow]})
        world = GridWorld(solid_tile('grass', GREEN), local_id='nobody')
        world.players.extend([
            PlayerVisualState('low', 'Low', 0, 0),
            PlayerVisualState('high', 'High', 0, 0),
        ])
        world.sprites['high'] = upper
        frame = make_compositor(small_rendering, 1, 1).render(world, 0)
        assert tuple(frame.buffer.rgb[0, 0]) == (255, 255, 0)

    def test_offscreen_players_are_clipped(self, small_rendering):
        world = GridWorld(solid_tile('grass', GREEN))
        world.players.extend([
            PlayerVisualState('far', 'Far', 100, -100),
            PlayerVisualState('edge', 'Edge', -1, 0),
        ])
        compositor = make_compositor(small_rendering)
        compositor.set_camera(1, 1)
        frame = compositor.render(world, 0)
        assert (frame.buffer.rgb == GREEN).all()
        assert len(frame.overlays) == 2
