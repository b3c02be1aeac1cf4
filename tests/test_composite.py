"""
Pytest for compositing user images into detected screens.
"""
from __future__ import annotations

import numpy as np
import pytest

from screenfit.core.config import CompositeConfig
from screenfit.core.contracts import FitMode, PixelBuffer, Rect
from screenfit.geometry.contour import extract_corners
from screenfit.geometry.detect import detect_regions
from screenfit.render.composite import (
    DEVICE_FILL_COLORS,
    Placement,
    Quality,
    compose,
    expand_quad,
    fill_regions,
    quads_mask,
    source_quad_for_fit,
)

_RED = (255, 0, 0, 255)

# ---------- Utilities ---------- #

def _phone_frame() -> PixelBuffer:
    """1000x800 black frame with one white 400x600 screen at (100, 100)."""
    data = np.zeros((800, 1000, 4), np.uint8)
    data[..., 3] = 255
    data[100:700, 100:500, :3] = 255
    return PixelBuffer(data)

def _screen_quad() -> np.ndarray:
    return Rect(100, 100, 400, 600).corners()

# ---------- Tests ---------- #

def test_no_placements_returns_exact_copy():
    frame = _phone_frame()
    out = compose(frame, [])
    assert out is not frame
    assert np.array_equal(out.data, frame.data)

def test_detected_screen_gets_user_image():
    frame = _phone_frame()
    before = frame.data.copy()
    r = detect_regions(frame)[0]
    fit = extract_corners(r.mask, r.bounds, frame.size)

    out = compose(frame, [Placement(fit.corners, PixelBuffer.blank(300, 300, _RED))])

    assert out.get_pixel(300, 400) == _RED
    assert out.get_pixel(50, 50) == (0, 0, 0, 255)
    outside = ~quads_mask(frame.size, [fit.corners])
    assert np.array_equal(out.data[outside], before[outside])
    assert np.array_equal(frame.data, before)       # input untouched

def test_dark_notch_inside_screen_is_kept():
    data = _phone_frame().data
    data[110:125, 260:340, :3] = 20                   # camera notch
    frame = PixelBuffer(data)
    out = compose(frame, [Placement(_screen_quad(), PixelBuffer.blank(50, 50, _RED))])
    assert out.get_pixel(300, 115) == (20, 20, 20, 255)
    assert out.get_pixel(300, 140) == _RED

def test_export_quality_fills_screen_and_skips_overlay():
    frame = _phone_frame()
    placements = [Placement(_screen_quad(), PixelBuffer.blank(120, 200, _RED), FitMode.CONTAIN)]
    with_overlay = CompositeConfig(debug_overlay=True)

    exported = compose(frame, placements, with_overlay, Quality.EXPORT)
    plain = compose(frame, placements, CompositeConfig(), Quality.EXPORT)
    assert np.array_equal(exported.data, plain.data)
    assert exported.get_pixel(300, 400) == _RED

    preview = compose(frame, placements, with_overlay, Quality.PREVIEW)
    assert not np.array_equal(preview.data, compose(frame, placements).data)

def test_cover_crops_centre_of_wide_image():
    quad = np.array([(0, 0), (99, 0), (99, 99), (0, 99)], float)
    src = source_quad_for_fit((400, 100), quad, FitMode.COVER)
    assert np.allclose(src, [[150, 0], [249, 0], [249, 99], [150, 99]])

def test_contain_extends_past_narrow_image():
    quad = np.array([(0, 0), (200, 0), (200, 100), (0, 100)], float)
    src = source_quad_for_fit((100, 100), quad, FitMode.CONTAIN)
    # aspect 2:1 around a square image -> 50 px of letterbox on each side
    assert src[0, 0] == pytest.approx(-50.0)
    assert src[1, 0] == pytest.approx(149.0)
    assert src[0, 1] == 0 and src[2, 1] == 99

def test_expand_quad_moves_corners_outward():
    quad = np.array([(0, 0), (10, 0), (10, 10), (0, 10)], float)
    assert np.array_equal(expand_quad(quad, 0), quad)
    grown = expand_quad(quad, 2 ** 0.5)
    assert np.allclose(grown, [(-1, -1), (11, -1), (11, 11), (-1, 11)])

def test_fill_regions_paints_masks_only():
    frame = _phone_frame()
    regions = detect_regions(frame)
    out = fill_regions(frame, regions)
    assert out.get_pixel(300, 400) == (*DEVICE_FILL_COLORS[0], 255)
    assert out.get_pixel(50, 50) == (0, 0, 0, 255)
    assert out.get_pixel(300, 50) == (0, 0, 0, 255)
