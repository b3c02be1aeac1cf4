# screenfit/session/edit.py
"""
Interactive region editing for one frame.

Regions live in an arena keyed by stable integer ids. Values are immutable
ScreenRegions; every edit swaps in a new value. The hosting UI turns pointer
events into the commands below and calls ``composite()`` to redraw.

    IDLE --detect/add--> REGIONS_DETECTED --select--> SELECTING
         --begin_corner_edit--> CORNER_EDITING --confirm/cancel--> REGIONS_DETECTED
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional
import math
import numpy as np

from screenfit.core.config import CompositeConfig, DetectionConfig
from screenfit.core.contracts import DetectedRegion, FitMode, PixelBuffer, Point, Rect, ScreenRegion
from screenfit.geometry.contour import extract_corners, order_corners, polygon_mask, rotation_from_corners
from screenfit.geometry.detect import DetectionLog, detect_region_at, detect_regions_with_log
from screenfit.geometry.device import TemplateHints, infer_device_type, parse_template_hints
from screenfit.geometry.homography import SingularMatrixError, invert_homography, solve_homography
from screenfit.render.composite import Placement, Quality, compose, fill_regions
from screenfit.render.warp import point_in_quad

_UNIT_SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])


class SessionState(str, Enum):
    IDLE = "idle"
    REGIONS_DETECTED = "regions_detected"
    SELECTING = "selecting"
    CORNER_EDITING = "corner_editing"


class SessionStateError(RuntimeError):
    """A command was issued in a state that does not accept it."""


@dataclass
class _UserImage:
    image: PixelBuffer
    fit_mode: FitMode = FitMode.COVER


def check_quad(corners: np.ndarray) -> None:
    """
    Raise SingularMatrixError if no invertible homography maps a rectangle onto
    ``corners`` (repeated or collinear corners). The quad is scaled into the
    unit box first so the tolerances do not depend on image size.
    Self-intersecting quads pass.
    """
    c = np.asarray(corners, np.float64).reshape(4, 2)
    lo = c.min(axis=0)
    extent = float((c.max(axis=0) - lo).max())
    if extent < 1e-9:
        raise SingularMatrixError("all corners coincide")
    invert_homography(solve_homography(_UNIT_SQUARE, (c - lo) / extent))


class RegionEditSession:
    def __init__(self, frame: PixelBuffer, detection: Optional[DetectionConfig] = None,
                 composite: Optional[CompositeConfig] = None, template_name: str = ""):
        self.frame = frame.copy()
        self.detection_cfg = detection or DetectionConfig()
        self.composite_cfg = composite or CompositeConfig()
        self.hints = parse_template_hints(template_name) if template_name else TemplateHints(smartphone=True)

        self.state = SessionState.IDLE
        self.manual_mode = False
        self.last_log: Optional[DetectionLog] = None

        self.selected_region_id: Optional[int] = None
        self.editing_corners: Optional[np.ndarray] = None
        self.dragging_corner_index: Optional[int] = None

        self._regions: Dict[int, ScreenRegion] = {}
        self._images: Dict[int, _UserImage] = {}
        self._next_id = 1
        self._cache: Dict[Quality, PixelBuffer] = {}

    # ------------------------------------------------------------------ #
    # Queries                                                            #
    # ------------------------------------------------------------------ #

    @property
    def regions(self) -> Dict[int, ScreenRegion]:
        return dict(self._regions)

    def region(self, region_id: int) -> ScreenRegion:
        try:
            return self._regions[region_id]
        except KeyError:
            raise KeyError(f"Unknown region id: {region_id}") from None

    def region_at(self, point: Point) -> Optional[int]:
        """Id of the first region whose quad contains ``point``."""
        for rid, r in self._regions.items():
            if bool(point_in_quad(r.corners, np.array([point[0]]), np.array([point[1]]))[0]):
                return rid
        return None

    def user_image(self, region_id: int) -> Optional[PixelBuffer]:
        entry = self._images.get(region_id)
        return entry.image if entry else None

    # ------------------------------------------------------------------ #
    # Detection                                                          #
    # ------------------------------------------------------------------ #

    def _require(self, op: str, *states: SessionState) -> None:
        if self.state not in states:
            raise SessionStateError(f"{op}() not allowed in state {self.state.value}")

    def _to_screen_region(self, det: DetectedRegion, all_bounds: List[Rect]) -> ScreenRegion:
        fit = extract_corners(det.mask, det.bounds, self.frame.size, self.detection_cfg)
        device, landscape = infer_device_type(det.bounds, all_bounds, self.hints)
        return ScreenRegion.from_detected(det, fit.corners, fit.rotation, fit.is_partial,
                                          device_type=device, is_landscape=landscape)

    def _invalidate(self) -> None:
        self._cache.clear()

    def detect(self) -> DetectionLog:
        """Run auto detection, replacing every region and user image."""
        self._require("detect", SessionState.IDLE, SessionState.REGIONS_DETECTED, SessionState.SELECTING)
        found, log = detect_regions_with_log(self.frame, self.detection_cfg)
        self.last_log = log

        self._regions.clear()
        self._images.clear()
        self.selected_region_id = None
        all_bounds = [d.bounds for d in found]
        for det in found:
            self._regions[self._next_id] = self._to_screen_region(det, all_bounds)
            self._next_id += 1

        self.manual_mode = not found
        self.state = SessionState.REGIONS_DETECTED if found else SessionState.IDLE
        self._invalidate()
        if self.detection_cfg.debug:
            print(f"[session] detect → {len(found)} region(s), manual_mode={self.manual_mode}")
        return log

    def add_region_at(self, point: Point) -> Optional[int]:
        """Seed a region from a click; None if nothing usable is there."""
        self._require("add_region_at", SessionState.IDLE, SessionState.REGIONS_DETECTED, SessionState.SELECTING)
        existing = [r.bounds for r in self._regions.values()]
        det = detect_region_at(self.frame, point, self.detection_cfg, existing=existing)
        if det is None:
            return None
        rid = self._next_id
        self._next_id += 1
        self._regions[rid] = self._to_screen_region(det, existing + [det.bounds])
        if self.state is SessionState.IDLE:
            self.state = SessionState.REGIONS_DETECTED
        self._invalidate()
        return rid

    def remove_region(self, region_id: int) -> None:
        self._require("remove_region", SessionState.REGIONS_DETECTED, SessionState.SELECTING)
        self.region(region_id)
        del self._regions[region_id]
        self._images.pop(region_id, None)
        if self.selected_region_id == region_id:
            self.selected_region_id = None
            self.state = SessionState.REGIONS_DETECTED
        if not self._regions:
            self.state = SessionState.IDLE
        self._invalidate()

    # ------------------------------------------------------------------ #
    # Selection and corner editing                                       #
    # ------------------------------------------------------------------ #

    def select_region(self, region_id: int) -> None:
        self._require("select_region", SessionState.REGIONS_DETECTED, SessionState.SELECTING)
        self.region(region_id)
        self.selected_region_id = region_id
        self.state = SessionState.SELECTING

    def deselect(self) -> None:
        self._require("deselect", SessionState.SELECTING)
        self.selected_region_id = None
        self.state = SessionState.REGIONS_DETECTED

    def begin_corner_edit(self) -> np.ndarray:
        self._require("begin_corner_edit", SessionState.SELECTING)
        self.editing_corners = np.array(self.region(self.selected_region_id).corners, dtype=np.float64)
        self.dragging_corner_index = None
        self.state = SessionState.CORNER_EDITING
        return self.editing_corners.copy()

    def find_near_corner(self, point: Point, radius: float = 20.0) -> Optional[int]:
        self._require("find_near_corner", SessionState.CORNER_EDITING)
        d = np.hypot(self.editing_corners[:, 0] - point[0], self.editing_corners[:, 1] - point[1])
        i = int(np.argmin(d))
        return i if d[i] <= radius else None

    def grab_corner(self, point: Point, radius: float = 20.0) -> Optional[int]:
        self.dragging_corner_index = self.find_near_corner(point, radius)
        return self.dragging_corner_index

    def drag_corner(self, index: int, point: Point) -> None:
        """Live update of one working corner; nothing else is recomputed until confirm."""
        self._require("drag_corner", SessionState.CORNER_EDITING)
        if not 0 <= index < 4:
            raise IndexError(f"corner index must be 0..3, got {index}")
        self.editing_corners[index] = (float(point[0]), float(point[1]))
        self.dragging_corner_index = index

    def release_corner(self) -> None:
        self.dragging_corner_index = None

    def _finish_edit(self) -> None:
        self.editing_corners = None
        self.dragging_corner_index = None
        self.selected_region_id = None
        self.state = SessionState.REGIONS_DETECTED

    def confirm_corner_edit(self) -> ScreenRegion:
        """
        Commit the working corners: new bounds, mask (over the bounds only) and rotation.

        Raises SingularMatrixError for degenerate corners and stays in
        CORNER_EDITING so the caller can keep dragging or cancel.
        """
        self._require("confirm_corner_edit", SessionState.CORNER_EDITING)
        corners = self.editing_corners.copy()
        check_quad(corners)

        rotation = rotation_from_corners(corners)
        ordered = order_corners(corners, rotation)

        W, H = self.frame.size
        x0 = max(0, int(math.floor(corners[:, 0].min())))
        y0 = max(0, int(math.floor(corners[:, 1].min())))
        x1 = min(W - 1, int(math.ceil(corners[:, 0].max())))
        y1 = min(H - 1, int(math.ceil(corners[:, 1].max())))
        if x1 < x0 or y1 < y0:
            raise ValueError("edited quad lies entirely outside the frame")
        bounds = Rect(x0, y0, x1 - x0 + 1, y1 - y0 + 1)
        mask = polygon_mask(ordered, bounds)

        rid = self.selected_region_id
        updated = self._regions[rid].with_corners(ordered, bounds, mask, rotation)
        self._regions[rid] = updated
        self._finish_edit()
        self._invalidate()
        if self.detection_cfg.debug:
            print(f"[session] region {rid} corners → {np.round(ordered, 1).tolist()} "
                  f"rotation={math.degrees(rotation):.2f}")
        return updated

    def cancel_corner_edit(self) -> None:
        self._require("cancel_corner_edit", SessionState.CORNER_EDITING)
        self._finish_edit()

    def reset_corners(self, region_id: int) -> ScreenRegion:
        """Back to the geometry the region was detected with."""
        self._require("reset_corners", SessionState.REGIONS_DETECTED, SessionState.SELECTING)
        region = self.region(region_id)
        if region.has_edits:
            region = region.reset()
            self._regions[region_id] = region
            self._invalidate()
        return region

    # ------------------------------------------------------------------ #
    # User images and output                                             #
    # ------------------------------------------------------------------ #

    def set_user_image(self, region_id: int, image: PixelBuffer,
                       fit_mode: FitMode = FitMode.COVER) -> None:
        self.region(region_id)
        self._images[region_id] = _UserImage(image.copy(), FitMode(fit_mode))
        self._invalidate()

    def set_fit_mode(self, region_id: int, fit_mode: FitMode) -> None:
        if region_id not in self._images:
            raise KeyError(f"No user image for region {region_id}")
        self._images[region_id].fit_mode = FitMode(fit_mode)
        self._invalidate()

    def clear_user_image(self, region_id: int) -> None:
        if self._images.pop(region_id, None) is not None:
            self._invalidate()

    def _restore_cfg(self) -> CompositeConfig:
        """
        Composite settings with the bezel-restore cut lowered to the loosest
        luminance any region was found at, so screen pixels are never restored.
        """
        found_at = self.detection_cfg.luminance_threshold
        if self.last_log is not None and self.last_log.success:
            found_at = min(found_at, self.last_log.luminance_threshold)
        if found_at >= self.composite_cfg.restore_luminance:
            return self.composite_cfg
        return replace(self.composite_cfg, restore_luminance=found_at)

    def composite(self, quality: Quality = Quality.PREVIEW) -> PixelBuffer:
        """
        Frame with every user image warped into its region. Cached until a
        region's corners or user image change.
        """
        cached = self._cache.get(quality)
        if cached is None:
            placements = [Placement(self._regions[rid].corners, entry.image, entry.fit_mode)
                          for rid, entry in sorted(self._images.items()) if rid in self._regions]
            cached = compose(self.frame, placements, self._restore_cfg(), quality)
            self._cache[quality] = cached
        return cached.copy()

    def fill_preview(self) -> PixelBuffer:
        """Detected masks painted in per-device colours."""
        return fill_regions(self.frame, [self._regions[rid] for rid in sorted(self._regions)])
