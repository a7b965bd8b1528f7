"""
Pixel grids, nearest-neighbour scaling, resolution selection and
brightness variants.
"""

import pytest
from PIL import Image

from abyss_brightness import (BRIGHTNESS_LEVELS, BrightnessVariantCache,
                              apply_brightness, quantize_brightness)
from abyss_pixels import TRANSPARENT, PixelGrid, rotate_grid, scale_grid
from abyss_scale import GridScaler, select_resolution

R = (255, 0, 0)
G = (0, 255, 0)
B = (0, 0, 255)


@pytest.fixture()
def checker():
    return PixelGrid.from_rows([[R, G], [B, TRANSPARENT]])


class TestPixelGrid:
    def test_from_rows(self, checker):
        assert checker.size == (2, 2)
        assert checker.pixel(0, 0) == R
        assert checker.pixel(1, 1) is TRANSPARENT

    def test_transparent_differs_from_black(self):
        grid = PixelGrid.from_rows([[(0, 0, 0), TRANSPARENT]])
        assert grid.pixel(0, 0) == (0, 0, 0)
        assert grid.pixel(1, 0) is TRANSPARENT

    def test_ragged_rows_rejected(self):
        with pytest.raises(ValueError):
            PixelGrid.from_rows([[R, G], [B]])

    def test_immutable(self, checker):
        with pytest.raises(AttributeError):
            checker.rgb = None
        with pytest.raises(ValueError):
            checker.rgb[0, 0] = (1, 2, 3)

    def test_image_round_trip_keeps_transparency(self, checker):
        image = checker.to_image()
        assert image.mode == 'RGBA'
        assert PixelGrid.from_image(image).equals(checker)

    def test_from_image_alpha_threshold(self):
        image = Image.new('RGBA', (2, 1))
        image.putpixel((0, 0), (10, 20, 30, 127))
        image.putpixel((1, 0), (10, 20, 30, 128))
        grid = PixelGrid.from_image(image)
        assert grid.pixel(0, 0) is TRANSPARENT
        assert grid.pixel(1, 0) == (10, 20, 30)


class TestScaleGrid:
    def test_upscale_blocks(self, checker):
        scaled = scale_grid(checker, 4, 4)
        assert scaled.to_rows() == [
            [R, R, G, G],
            [R, R, G, G],
            [B, B, None, None],
            [B, B, None, None],
        ]

    def test_downscale_samples_floor(self):
        rows = [[(x * 10, y * 10, 0) for x in range(4)] for y in range(4)]
        scaled = scale_grid(PixelGrid.from_rows(rows), 2, 2)
        assert scaled.to_rows() == [[(0, 0, 0), (20, 0, 0)], [(0, 20, 0), (20, 20, 0)]]

    def test_same_size_returns_input(self, checker):
        assert scale_grid(checker, 2, 2) is checker

    def test_idempotent(self, checker):
        once = scale_grid(checker, 7, 5)
        assert scale_grid(once, 7, 5) is once
        assert scale_grid(checker, 7, 5).equals(once)

    def test_non_positive_rejected(self, checker):
        with pytest.raises(ValueError):
            scale_grid(checker, 0, 3)


class TestRotateGrid:
    def test_clockwise_quarter(self, checker):
        assert rotate_grid(checker, 1).to_rows() == [[B, R], [None, G]]

    def test_full_turn_is_identity(self, checker):
        assert rotate_grid(checker, 4) is checker
        assert rotate_grid(rotate_grid(checker, 3), 1).equals(checker)


class TestSelectResolution:
    @pytest.mark.parametrize("target,expected", [
        (1, 26), (26, 26), (27, 51), (64, 77), (256, 256), (400, 256),
    ])
    def test_default_ladder(self, target, expected):
        assert select_resolution(target) == expected

    def test_custom_ladder(self):
        assert select_resolution(5, (4, 8, 16)) == 8


class TestGridScaler:
    def test_cache_hit(self, checker):
        scaler = GridScaler(cache_size=8)
        first = scaler.scale(checker, 6, 6)
        second = scaler.scale(checker, 6, 6)
        assert first is second
        stats = scaler.get_statistics()
        assert stats['cache_hits'] == 1
        assert stats['cache_misses'] == 1
        assert stats['cache_hit_rate'] == pytest.approx(0.5)

    def test_passthrough(self, checker):
        scaler = GridScaler(cache_size=8)
        assert scaler.scale(checker, 2, 2) is checker
        assert scaler.get_statistics()['passthrough'] == 1

    def test_eviction(self, checker):
        scaler = GridScaler(cache_size=1)
        scaler.scale(checker, 3, 3)
        scaler.scale(checker, 5, 5)
        stats = scaler.get_statistics()
        assert stats['cache_entries'] == 1
        assert stats['cache_evictions'] == 1


class TestBrightness:
    def test_quantize(self):
        assert quantize_brightness(0.92) == 0.85
        assert quantize_brightness(1.0) == 1.0
        assert quantize_brightness(5.0) == 1.3
        assert quantize_brightness(0.0) == 0.7

    def test_apply_rounds_and_clamps(self):
        grid = PixelGrid.from_rows([[(100, 200, 20), TRANSPARENT]])
        bright = apply_brightness(grid, 1.3)
        assert bright.pixel(0, 0) == (130, 255, 26)
        assert bright.pixel(1, 0) is TRANSPARENT
        dark = apply_brightness(grid, 0.85)
        assert dark.pixel(0, 0) == (85, 170, 17)

    def test_identity_level_returns_source(self, checker):
        cache = BrightnessVariantCache(max_size=4)
        assert cache.get('checker', checker, 1.02) is checker
        assert len(cache) == 0

    def test_variants_cached_by_id_and_level(self, checker):
        cache = BrightnessVariantCache(max_size=4)
        a = cache.get('checker', checker, 0.9)
        b = cache.get('checker', checker, 0.84)
        assert a is b
        assert ('checker', 0.85) in cache
        assert cache.get_stats()['hits'] == 1

    def test_lru_eviction(self, checker):
        cache = BrightnessVariantCache(max_size=2)
        cache.get('a', checker, 0.7)
        cache.get('b', checker, 0.7)
        cache.get('a', checker, 0.7)
        cache.get('c', checker, 0.7)
        assert ('a', 0.7) in cache
        assert ('b', 0.7) not in cache
        assert cache.get_stats()['evictions'] == 1

    def test_pregenerate(self, checker):
        cache = BrightnessVariantCache(max_size=10)
        cache.pregenerate('checker', checker)
        assert len(cache) == len(BRIGHTNESS_LEVELS) - 1

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            BrightnessVariantCache(max_size=-1)
