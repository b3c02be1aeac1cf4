"""
Pytest for screen region detection.
These tests generate synthetic frames on the fly, so no test assets are required.
"""
from __future__ import annotations
import json

import numpy as np
import cv2
import pytest

from screenfit.core.config import DetectionConfig
from screenfit.core.contracts import PixelBuffer, Rect
from screenfit.geometry.contour import extract_corners
from screenfit.geometry.detect import (
    AREA_TOO_SMALL,
    BELOW_TOP_N,
    INSUFFICIENT_BEZEL_EDGES,
    LOW_BEZEL_SCORE,
    LOW_RECTANGULARITY,
    REGION_TOO_SMALL,
    detect_region_at,
    detect_regions,
    detect_regions_with_log,
    find_nearest_white,
    flood_component,
    format_detection_log,
    label_components,
    white_mask,
)

# ---------- Utilities to build synthetic scenes ---------- #

def _make_frame(w: int = 1000, h: int = 800, gray: int = 0) -> np.ndarray:
    """Opaque RGBA frame of a single gray level (0 = black bezel everywhere)."""
    frame = np.full((h, w, 4), gray, np.uint8)
    frame[..., 3] = 255
    return frame

def _white_rect(frame: np.ndarray, x0: int, y0: int, x1: int, y1: int, level: int = 255) -> None:
    """Paint an inclusive box white (or ``level``) in place."""
    frame[y0:y1 + 1, x0:x1 + 1, :3] = level

def _single_screen_frame() -> PixelBuffer:
    frame = _make_frame()
    _white_rect(frame, 100, 100, 499, 699)
    return PixelBuffer(frame)

# ---------- Tests ---------- #

def test_single_axis_aligned_screen():
    image = _single_screen_frame()
    regions = detect_regions(image)
    assert len(regions) == 1
    r = regions[0]
    assert r.bounds == Rect(100, 100, 400, 600)
    assert r.pixel_count == 400 * 600
    assert r.rectangularity == pytest.approx(1.0)
    assert r.bezel_score == pytest.approx(1.0)
    assert r.area_ratio == pytest.approx(400 * 600 / (1000 * 800))

    fit = extract_corners(r.mask, r.bounds, image.size)
    expected = np.array([[100, 100], [499, 100], [499, 699], [100, 699]], dtype=np.float64)
    assert not fit.is_partial
    assert fit.rotation == pytest.approx(0.0, abs=1e-9)
    assert np.allclose(fit.corners, expected, atol=1.0)

def test_white_mask_needs_opacity_and_luminance():
    frame = _make_frame(50, 40)
    _white_rect(frame, 0, 0, 9, 9)
    _white_rect(frame, 10, 0, 19, 9, level=200)      # luma 0.78
    _white_rect(frame, 20, 0, 29, 9)
    frame[0:10, 20:30, 3] = 150                      # too transparent
    mask = white_mask(PixelBuffer(frame), 0.90, 200)
    assert mask[:10, :10].all()
    assert not mask[:10, 10:20].any()
    assert not mask[:10, 20:30].any()
    assert mask.sum() == 100

def test_all_white_frame_has_no_bezel():
    image = PixelBuffer(_make_frame(gray=255))
    regions, log = detect_regions_with_log(image)
    assert regions == []
    assert log.manual_mode
    assert log.white_pixel_ratio == pytest.approx(1.0)
    assert [f.reason for f in log.filtered_out] == [LOW_BEZEL_SCORE]

def test_small_and_hollow_components_are_filtered():
    frame = _make_frame()
    _white_rect(frame, 20, 20, 29, 29)               # 10x10
    _white_rect(frame, 60, 20, 84, 44)               # 25x25, tiny area ratio
    # 300x300 hollow outline, 5px thick
    _white_rect(frame, 400, 100, 699, 399)
    frame[105:395, 405:695, :3] = 0
    regions, log = detect_regions_with_log(PixelBuffer(frame))

    assert regions == []
    reasons = sorted(f.reason for f in log.filtered_out)
    assert reasons == sorted([REGION_TOO_SMALL, AREA_TOO_SMALL, LOW_RECTANGULARITY])
    assert len(log.raw_regions) == 3
    assert log.after_size_filter == 2
    assert log.after_area_filter == 1
    assert log.after_rectangularity_filter == 0

def test_keeps_top_three_by_score():
    frame = _make_frame()
    _white_rect(frame, 50, 100, 199, 349)    # 150x250
    _white_rect(frame, 300, 100, 439, 339)   # 140x240
    _white_rect(frame, 550, 100, 679, 329)   # 130x230
    _white_rect(frame, 800, 100, 899, 299)   # 100x200
    regions, log = detect_regions_with_log(PixelBuffer(frame))

    assert [r.bounds.width for r in regions] == [150, 140, 130]
    scores = [r.overall_score for r in regions]
    assert scores == sorted(scores, reverse=True)
    dropped = [f for f in log.filtered_out if f.reason == BELOW_TOP_N]
    assert len(dropped) == 1 and dropped[0].bounds == (800, 100, 100, 200)

def test_gray_surround_fails_bezel_edges():
    frame = _make_frame(gray=128)
    _white_rect(frame, 100, 100, 499, 699)
    cfg = DetectionConfig(min_bezel_score=0.0, min_bezel_edges=1)
    regions, log = detect_regions_with_log(PixelBuffer(frame), cfg)
    assert regions == []
    assert log.filtered_out[0].reason == INSUFFICIENT_BEZEL_EDGES
    assert log.filtered_out[0].details["edges_with_bezel"] == 0

def test_bezel_on_one_side_is_enough():
    frame = _make_frame(gray=128)
    _white_rect(frame, 100, 100, 499, 699)
    frame[85:100, 100:500, :3] = 0           # dark band above the screen only
    cfg = DetectionConfig(min_bezel_score=0.2)
    regions = detect_regions(PixelBuffer(frame), cfg)
    assert len(regions) == 1
    e = regions[0].bezel_edges
    assert e.top == pytest.approx(1.0)
    assert e.bottom == e.left == e.right == 0.0
    assert regions[0].bezel_score == pytest.approx(0.25)

def test_notch_split_screen_merges_when_enabled():
    frame = _make_frame()
    _white_rect(frame, 100, 100, 399, 599)
    # 3px dark outline inside the screen splits it into a ring and a core
    frame[160:540, 160:340, :3] = 0
    frame[163:537, 163:337, :3] = 255

    merged = detect_regions(PixelBuffer(frame), DetectionConfig(merge_nearby=True))
    assert len(merged) == 1
    assert merged[0].bounds == Rect(100, 100, 300, 500)
    assert merged[0].pixel_count == 300 * 500 - (180 * 380 - 174 * 374)

    split = label_components(white_mask(PixelBuffer(frame)))
    assert len(split) == 2

def test_auto_relax_walks_down_thresholds():
    frame = _make_frame()
    _white_rect(frame, 100, 100, 499, 699, level=238)   # luma ~0.933
    image = PixelBuffer(frame)

    assert detect_regions(image, DetectionConfig(luminance_threshold=0.95)) == []

    cfg = DetectionConfig(auto_relax=True, relax_luminance=(0.99, 0.97, 0.95, 0.90))
    regions, log = detect_regions_with_log(image, cfg)
    assert len(regions) == 1
    assert log.luminance_threshold == pytest.approx(0.90)

def test_flood_component_matches_cv2_labels():
    mask = np.zeros((120, 160), bool)
    mask[10:40, 10:60] = True
    mask[25:28, 60:100] = True       # bridge
    mask[20:90, 100:130] = True
    mask[100:110, 10:20] = True      # separate blob
    flooded = flood_component(mask, (15, 15))
    labelled = [c for c in label_components(mask) if c.bounds.contains(15, 15)][0]
    assert flooded.bounds == labelled.bounds
    assert flooded.pixel_count == labelled.pixel_count
    assert np.array_equal(flooded.mask, labelled.mask)
    assert flood_component(mask, (0, 0)) is None

def test_find_nearest_white_searches_a_diamond():
    mask = np.zeros((50, 50), bool)
    mask[20, 30] = True
    assert find_nearest_white(mask, (30, 20)) == (30, 20)
    assert find_nearest_white(mask, (26, 20), max_radius=4) == (30, 20)
    assert find_nearest_white(mask, (26, 17), max_radius=7) == (30, 20)
    assert find_nearest_white(mask, (26, 17), max_radius=6) is None

def test_detect_region_at_snaps_to_nearby_white():
    frame = _make_frame(gray=128)
    _white_rect(frame, 100, 100, 499, 699)
    image = PixelBuffer(frame)
    assert detect_regions(image) == []

    r = detect_region_at(image, (95, 300))
    assert r is not None
    assert r.bounds == Rect(100, 100, 400, 600)
    assert r.pixel_count == 400 * 600

    assert detect_region_at(image, (50, 50)) is None

def test_detect_region_at_rejects_duplicates_and_tiny_regions():
    frame = _make_frame()
    _white_rect(frame, 100, 100, 499, 699)
    _white_rect(frame, 700, 100, 709, 109)
    image = PixelBuffer(frame)
    assert detect_region_at(image, (300, 300), existing=[Rect(100, 100, 400, 600)]) is None
    assert detect_region_at(image, (300, 300), existing=[Rect(100, 100, 100, 100)]) is not None
    assert detect_region_at(image, (705, 105)) is None

def test_detection_log_formats_and_serializes():
    frame = _make_frame()
    _white_rect(frame, 100, 100, 499, 699)
    _white_rect(frame, 700, 100, 709, 109)
    regions, log = detect_regions_with_log(PixelBuffer(frame))
    assert len(regions) == 1 and log.success

    text = format_detection_log(log)
    assert "regions: 1" in text
    assert REGION_TOO_SMALL in text
    assert "400x600 at (100,100)" in text

    data = json.loads(json.dumps(log.to_dict()))
    assert data["final_regions"][0]["bounds"] == [100, 100, 400, 600]
    assert data["config"]["bezel_width"] == 15

def test_detects_rotated_screen_drawn_with_opencv():
    frame = _make_frame()
    rect = ((500.0, 400.0), (220.0, 380.0), 12.0)
    pts = cv2.boxPoints(rect).astype(np.int32)
    cv2.fillConvexPoly(frame, pts, (255, 255, 255, 255))
    regions = detect_regions(PixelBuffer(frame))
    assert len(regions) == 1
    assert regions[0].rectangularity < 1.0
    assert regions[0].pixel_count == pytest.approx(220 * 380, rel=0.03)

def test_auto_relax_switches_only_for_a_clearly_better_score():
    relax = DetectionConfig(auto_relax=True)

    frame = _make_frame()
    _white_rect(frame, 100, 100, 199, 299, level=246)   # luma ~0.965, found from 0.95
    _white_rect(frame, 400, 100, 699, 599, level=235)   # luma ~0.92, found only at 0.90
    regions, log = detect_regions_with_log(PixelBuffer(frame), relax)
    assert log.luminance_threshold == pytest.approx(0.90)
    assert [r.bounds.width for r in regions] == [300, 100]

    frame = _make_frame()
    _white_rect(frame, 100, 100, 399, 599, level=246)
    _white_rect(frame, 600, 100, 699, 299, level=235)   # adds a region but not a better best
    regions, log = detect_regions_with_log(PixelBuffer(frame), relax)
    assert log.luminance_threshold == pytest.approx(0.95)
    assert [r.bounds.width for r in regions] == [300]

def test_auto_relax_stops_at_pure_white():
    frame = _make_frame()
    _white_rect(frame, 100, 100, 199, 299)               # pure white, small
    _white_rect(frame, 400, 100, 699, 599, level=235)    # bigger, only at 0.90
    regions, log = detect_regions_with_log(PixelBuffer(frame), DetectionConfig(auto_relax=True))
    assert log.luminance_threshold == pytest.approx(0.99)
    assert len(regions) == 1 and regions[0].bounds == Rect(100, 100, 100, 200)

def test_auto_relax_reports_loosest_attempt_when_nothing_found():
    frame = _make_frame()
    _white_rect(frame, 100, 100, 499, 699, level=200)    # luma ~0.78, never white enough
    regions, log = detect_regions_with_log(PixelBuffer(frame), DetectionConfig(auto_relax=True))
    assert regions == [] and log.manual_mode
    assert log.luminance_threshold == pytest.approx(0.90)
