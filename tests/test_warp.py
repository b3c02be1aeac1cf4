"""
Pytest for the inverse-mapped perspective rasterizer.
"""
from __future__ import annotations

import numpy as np
import pytest

from screenfit.core.contracts import FitMode, PixelBuffer
from screenfit.render.composite import source_quad_for_fit
from screenfit.render.warp import (
    WarpLayer,
    bilinear_sample,
    blit_over,
    point_in_quad,
    warp_into,
    warp_perspective,
)

_RED = (255, 0, 0, 255)
_GREEN = (0, 255, 0, 255)
_BLUE = (0, 0, 255, 255)
_YELLOW = (255, 255, 0, 255)

# ---------- Utilities ---------- #

def _quadrant_image(w: int = 100, h: int = 80) -> PixelBuffer:
    """Four solid quadrants: red TL, green TR, blue BR, yellow BL."""
    data = np.zeros((h, w, 4), np.uint8)
    data[:h // 2, :w // 2] = _RED
    data[:h // 2, w // 2:] = _GREEN
    data[h // 2:, w // 2:] = _BLUE
    data[h // 2:, :w // 2] = _YELLOW
    return PixelBuffer(data)

def _solid(w: int, h: int, rgba) -> PixelBuffer:
    return PixelBuffer.blank(w, h, rgba)

def _layer_pixel(layer: WarpLayer, x: int, y: int):
    ox, oy = layer.origin
    return tuple(int(v) for v in layer.buffer.data[y - oy, x - ox])

# ---------- Tests ---------- #

def test_corner_pixels_keep_source_corner_colors():
    src = _quadrant_image()
    src_quad = [(0, 0), (99, 0), (99, 79), (0, 79)]
    dst_quad = [(20, 10), (180, 30), (170, 190), (10, 160)]
    layer = warp_perspective(src, src_quad, dst_quad, target_size=(200, 200))

    for (x, y), expected in zip(dst_quad, (_RED, _GREEN, _BLUE, _YELLOW)):
        got = _layer_pixel(layer, x, y)
        assert np.abs(np.array(got) - np.array(expected)).max() <= 1

def test_outside_quad_is_transparent_inside_is_opaque():
    src = _quadrant_image()
    dst_quad = [(20, 10), (180, 30), (170, 190), (10, 160)]
    layer = warp_perspective(src, [(0, 0), (99, 0), (99, 79), (0, 79)], dst_quad)
    assert layer.origin == (10, 10)
    assert _layer_pixel(layer, 10, 10)[3] == 0        # bbox corner, outside the quad
    assert _layer_pixel(layer, 100, 100)[3] == 255
    alpha = layer.buffer.data[..., 3]
    assert set(np.unique(alpha)) <= {0, 255}

def test_contain_letterbox_stays_black():
    src = _solid(200, 100, _RED)
    dst_quad = np.array([(0, 0), (99, 0), (99, 99), (0, 99)], float)
    src_quad = source_quad_for_fit(src.size, dst_quad, FitMode.CONTAIN)
    layer = warp_perspective(src, src_quad, dst_quad)
    assert _layer_pixel(layer, 50, 50) == _RED
    assert _layer_pixel(layer, 50, 5) == (0, 0, 0, 255)
    assert _layer_pixel(layer, 50, 95) == (0, 0, 0, 255)

def test_supersampling_keeps_flat_color():
    src = _solid(64, 64, (10, 200, 30, 255))
    dst_quad = [(5, 5), (120, 15), (110, 100), (8, 90)]
    layer = warp_perspective(src, [(0, 0), (63, 0), (63, 63), (0, 63)], dst_quad, supersample=3)
    assert _layer_pixel(layer, 60, 50) == (10, 200, 30, 255)

def test_warp_into_only_touches_the_quad():
    rng = np.random.default_rng(1)
    target = PixelBuffer(rng.integers(0, 256, size=(120, 160, 4), dtype=np.uint8))
    before = target.copy()
    dst_quad = np.array([(30, 20), (130, 25), (125, 100), (35, 95)], float)
    warp_into(target, _solid(40, 40, _BLUE), [(0, 0), (39, 0), (39, 39), (0, 39)], dst_quad)

    ys, xs = np.mgrid[0:120, 0:160]
    inside = point_in_quad(dst_quad, xs, ys)
    assert np.array_equal(target.data[~inside], before.data[~inside])
    assert (target.data[inside] == _BLUE).all()

def test_quad_clipped_to_target():
    target = PixelBuffer.blank(50, 50, (255, 255, 255, 255))
    warp_into(target, _solid(10, 10, _RED), [(0, 0), (9, 0), (9, 9), (0, 9)],
              [(-20, -20), (30, -20), (30, 30), (-20, 30)])
    assert target.get_pixel(0, 0) == _RED
    assert target.get_pixel(30, 30) == _RED
    assert target.get_pixel(40, 40) == (255, 255, 255, 255)

def test_point_in_quad_counts_edges_and_vertices():
    quad = [(0, 0), (10, 0), (10, 10), (0, 10)]
    xs = np.array([0, 10, 5, 5, 11, -1])
    ys = np.array([0, 10, 0, 5, 5, 5])
    assert point_in_quad(quad, xs, ys).tolist() == [True, True, True, True, False, False]
    # counter-clockwise winding works too
    assert point_in_quad(quad[::-1], xs, ys).tolist() == [True, True, True, True, False, False]

def test_bilinear_sample_interpolates_and_clamps():
    data = np.zeros((1, 2, 1), np.uint8)
    data[0, 1, 0] = 100
    got = bilinear_sample(data, np.array([0.5, 0.25, 5.0]), np.array([0.0, 0.0, 0.0]))
    assert got[:, 0].tolist() == pytest.approx([50.0, 25.0, 100.0])

def test_blit_over_blends_translucent_and_skips_transparent():
    target = PixelBuffer.blank(2, 1, (0, 0, 255, 255))
    layer_data = np.zeros((1, 2, 4), np.uint8)
    layer_data[0, 0] = (255, 0, 0, 0)
    layer_data[0, 1] = (255, 0, 0, 128)
    blit_over(target, WarpLayer(PixelBuffer(layer_data), (0, 0)))
    assert target.get_pixel(0, 0) == (0, 0, 255, 255)
    r, g, b, a = target.get_pixel(1, 0)
    assert a == 255 and abs(r - 128) <= 1 and abs(b - 127) <= 1
