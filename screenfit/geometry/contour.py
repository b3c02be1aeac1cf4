# screenfit/geometry/contour.py
"""
Screen quadrilateral from a region mask.

Pipeline: boundary pixels -> subsample -> Graham-scan hull -> rotating-calipers
minimum-area rectangle -> upright rotation -> corners picked from the hull ->
clockwise TL, TR, BR, BL order in the upright frame.

Rotation convention: ``rotation`` is the clockwise angle (radians, image
coordinates with y down) of the screen's "up" direction away from image up.
A point offset (dx, dy) from the screen center sits at
    x' =  cos(r) * dx + sin(r) * dy
    y' = -sin(r) * dx + cos(r) * dy
in the upright frame.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple
import math
import numpy as np

from screenfit.core.config import DetectionConfig
from screenfit.core.contracts import Rect


@dataclass
class CornerFit:
    corners: np.ndarray   # (4, 2) float64, TL, TR, BR, BL
    rotation: float
    is_partial: bool


@dataclass
class MinAreaRect:
    corners: np.ndarray   # (4, 2), clockwise on screen
    angle: float          # edge direction folded into [0, pi/2)
    area: float
    width: float          # extent along the chosen hull edge
    height: float         # extent along its perpendicular


# ----------------------------------------------------------------------------- #
# Boundary points                                                               #
# ----------------------------------------------------------------------------- #

def is_partial_region(bounds: Rect, image_size: Tuple[int, int], margin: int = 3) -> bool:
    """True when the box comes within ``margin`` px of any image edge."""
    W, H = image_size
    return (bounds.x <= margin or bounds.y <= margin
            or bounds.max_x >= W - margin or bounds.max_y >= H - margin)


def edge_points(mask: np.ndarray, bounds: Rect) -> np.ndarray:
    """
    Mask pixels with at least one 4-neighbour outside the mask, in image coordinates.
    Pixels on the bounding-box border always qualify.
    """
    m = np.asarray(mask, bool)
    p = np.pad(m, 1, constant_values=False)
    interior = p[:-2, 1:-1] & p[2:, 1:-1] & p[1:-1, :-2] & p[1:-1, 2:]
    ys, xs = np.nonzero(m & ~interior)
    return np.column_stack([xs + bounds.x, ys + bounds.y]).astype(np.float64)


def subsample_points(pts: np.ndarray, max_points: int = 500) -> np.ndarray:
    """
    Keep at most ``max_points`` points by striding, always including the extremes
    along x, y, x+y and x-y so that hull corners survive.
    """
    pts = np.asarray(pts, np.float64).reshape(-1, 2)
    if len(pts) <= max_points:
        return pts
    x, y = pts[:, 0], pts[:, 1]
    s, d = x + y, x - y
    extremes = pts[[x.argmin(), x.argmax(), y.argmin(), y.argmax(),
                    s.argmin(), s.argmax(), d.argmin(), d.argmax()]]
    budget = max(1, max_points - len(extremes))
    stride = int(math.ceil(len(pts) / budget))
    return np.unique(np.vstack([pts[::stride], extremes]), axis=0)


# ----------------------------------------------------------------------------- #
# Hull and rectangle                                                            #
# ----------------------------------------------------------------------------- #

def _cross(o: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    return float((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]))


def convex_hull(points: np.ndarray) -> np.ndarray:
    """
    Graham scan. Pivot is the lowest point on screen (largest y, then smallest x);
    the rest are sorted by polar angle around it, nearer first on ties.
    Returns hull vertices clockwise on screen, collinear points dropped.
    """
    pts = np.unique(np.asarray(points, np.float64).reshape(-1, 2), axis=0)
    if len(pts) < 3:
        return pts
    p0 = int(np.lexsort((pts[:, 0], -pts[:, 1]))[0])
    pivot = pts[p0]
    rest = np.delete(pts, p0, axis=0)
    d = rest - pivot
    angles = np.arctan2(d[:, 1], d[:, 0])
    dist = np.hypot(d[:, 0], d[:, 1])
    rest = rest[np.lexsort((dist, angles))]

    stack = [pivot]
    for p in rest:
        while len(stack) >= 2 and _cross(stack[-2], stack[-1], p) <= 0:
            stack.pop()
        stack.append(p)
    return np.array(stack)


def min_area_rect(hull: np.ndarray) -> MinAreaRect:
    """Rotating calipers: try every hull edge as a rectangle side, keep the smallest."""
    pts = np.asarray(hull, np.float64).reshape(-1, 2)
    n = len(pts)
    best = None
    for i in range(n):
        e = pts[(i + 1) % n] - pts[i]
        length = math.hypot(e[0], e[1])
        if length < 1e-12:
            continue
        u = e / length
        v = np.array([-u[1], u[0]])
        pu = pts @ u
        pv = pts @ v
        area = (pu.max() - pu.min()) * (pv.max() - pv.min())
        if best is None or area < best[0] - 1e-9:
            best = (area, u, v, pu.min(), pu.max(), pv.min(), pv.max())

    if best is None:
        c = pts[0] if n else np.zeros(2)
        return MinAreaRect(np.tile(c, (4, 1)), 0.0, 0.0, 0.0, 0.0)

    area, u, v, u0, u1, v0, v1 = best
    corners = np.array([u * a + v * b for a, b in ((u0, v0), (u1, v0), (u1, v1), (u0, v1))])
    angle = math.atan2(u[1], u[0]) % (math.pi / 2)
    if angle >= math.pi / 2 - 1e-12:
        angle = 0.0
    return MinAreaRect(corners, angle, float(area), float(u1 - u0), float(v1 - v0))


# ----------------------------------------------------------------------------- #
# Orientation                                                                   #
# ----------------------------------------------------------------------------- #

def _normalize_angle(a: float) -> float:
    a = math.fmod(a, 2 * math.pi)
    if a <= -math.pi:
        a += 2 * math.pi
    elif a > math.pi:
        a -= 2 * math.pi
    return a


def _rotation_from_axes(axis_a: np.ndarray, axis_b: np.ndarray, center: np.ndarray,
                        top_point: np.ndarray) -> float:
    la = math.hypot(axis_a[0], axis_a[1])
    lb = math.hypot(axis_b[0], axis_b[1])
    if max(la, lb) < 1e-12:
        return 0.0
    long_ax, short_ax = (axis_a, axis_b) if la >= lb else (axis_b, axis_a)
    long_len = max(la, lb)
    # portrait when the long side runs closer to image vertical
    portrait = abs(long_ax[1]) >= abs(long_ax[0])
    up = long_ax if portrait else short_ax
    n = math.hypot(up[0], up[1])
    if n < 1e-12:
        up = np.array([-long_ax[1], long_ax[0]]) / long_len
    else:
        up = up / n

    rotation = math.atan2(up[0], -up[1])
    t = np.asarray(top_point, np.float64) - center
    if float(t @ up) <= 0:
        rotation += math.pi
    return _normalize_angle(rotation)


def upright_rotation(rect_corners: np.ndarray, top_point: np.ndarray) -> float:
    """
    Rotation that makes the rectangle upright.

    The long side decides portrait vs landscape; the "up" axis is whichever
    rectangle axis runs closer to image vertical. A 180 degree flip is applied
    when ``top_point`` (the hull point with the smallest y) does not fall in
    the upper half of the rotated frame.
    """
    c = np.asarray(rect_corners, np.float64).reshape(4, 2)
    return _rotation_from_axes(c[1] - c[0], c[3] - c[0], c.mean(axis=0), top_point)


def rotation_from_corners(corners: np.ndarray) -> float:
    """Same long-edge heuristic, applied to four ordered corners (after a manual edit)."""
    c = np.asarray(corners, np.float64).reshape(4, 2)
    horiz = ((c[1] - c[0]) + (c[2] - c[3])) / 2.0
    vert = ((c[3] - c[0]) + (c[2] - c[1])) / 2.0
    top = c[int(np.argmin(c[:, 1]))]
    return _rotation_from_axes(horiz, vert, c.mean(axis=0), top)


def to_upright(points: np.ndarray, center: np.ndarray, rotation: float) -> np.ndarray:
    d = np.asarray(points, np.float64).reshape(-1, 2) - center
    cr, sr = math.cos(rotation), math.sin(rotation)
    return np.column_stack([cr * d[:, 0] + sr * d[:, 1], -sr * d[:, 0] + cr * d[:, 1]])


def order_corners(points: np.ndarray, rotation: float = 0.0) -> np.ndarray:
    """
    TL, TR, BR, BL (clockwise) in the upright frame given by ``rotation``.
    Quadrant classification first; when two points share a quadrant fall
    back to an angular sort starting at the smallest x'+y'.
    """
    p = np.asarray(points, np.float64).reshape(4, 2)
    r = to_upright(p, p.mean(axis=0), rotation)

    slots = {}
    for i, (xr, yr) in enumerate(r):
        slots.setdefault((yr >= 0, xr >= 0), []).append(i)
    order = [(False, False), (False, True), (True, True), (True, False)]
    if all(len(slots.get(k, [])) == 1 for k in order):
        return p[[slots[k][0] for k in order]]

    idx = np.argsort(np.arctan2(r[:, 1], r[:, 0]), kind="stable")
    start = int(np.argmin((r[:, 0] + r[:, 1])[idx]))
    return p[np.roll(idx, -start)]


def polygon_mask(points: np.ndarray, bounds: Rect) -> np.ndarray:
    """
    Bool mask of shape (bounds.height, bounds.width) for pixels inside the polygon.
    Even-odd ray casting, plus the polygon's own edges so a mask regenerated from
    a box's pixel-center corners covers the whole box.
    """
    p = np.asarray(points, np.float64).reshape(-1, 2)
    ys, xs = np.mgrid[bounds.y:bounds.y + bounds.height, bounds.x:bounds.x + bounds.width]
    xs = xs.astype(np.float64)
    ys = ys.astype(np.float64)
    inside = np.zeros(xs.shape, bool)
    on_edge = np.zeros(xs.shape, bool)
    n = len(p)
    for i in range(n):
        xi, yi = p[i]
        xj, yj = p[i - 1]
        # distance-to-segment test for the boundary
        dx, dy = xj - xi, yj - yi
        seg2 = dx * dx + dy * dy
        if seg2 > 0:
            t = np.clip(((xs - xi) * dx + (ys - yi) * dy) / seg2, 0.0, 1.0)
            on_edge |= np.hypot(xs - (xi + t * dx), ys - (yi + t * dy)) <= 1e-6
        if yi == yj:
            continue
        crosses = (yi > ys) != (yj > ys)
        x_at = (xj - xi) * (ys - yi) / (yj - yi) + xi
        inside ^= crosses & (xs < x_at)
    return inside | on_edge


# ----------------------------------------------------------------------------- #
# Corner selection                                                              #
# ----------------------------------------------------------------------------- #

def _match_hull_corners(rect_corners: np.ndarray, hull: np.ndarray, max_dist: float) -> Optional[np.ndarray]:
    used = set()
    picked = []
    for c in rect_corners:
        d = np.hypot(hull[:, 0] - c[0], hull[:, 1] - c[1])
        for j in np.argsort(d):
            if int(j) not in used:
                break
        else:
            return None
        if d[j] > max_dist:
            return None
        used.add(int(j))
        picked.append(hull[j])
    return np.array(picked)


def _quadrant_corners(hull: np.ndarray, rotation: float) -> Optional[np.ndarray]:
    r = to_upright(hull, hull.mean(axis=0), rotation)
    picked = []
    for left, top in ((True, True), (False, True), (False, False), (True, False)):
        sel = ((r[:, 0] < 0) == left) & ((r[:, 1] < 0) == top)
        if not sel.any():
            return None
        cand = np.flatnonzero(sel)
        reach = np.abs(r[cand, 0]) + np.abs(r[cand, 1])
        picked.append(hull[cand[int(np.argmax(reach))]])
    return np.array(picked)


def extract_corners(mask: np.ndarray, bounds: Rect, image_size: Tuple[int, int],
                    cfg: Optional[DetectionConfig] = None) -> CornerFit:
    """
    Corners, upright rotation and partial flag for one region.

    Args:
        mask: local bool mask of shape (bounds.height, bounds.width).
        bounds: region box in image coordinates.
        image_size: (width, height) of the frame.

    Returns:
        CornerFit; partial regions and degenerate hulls get the axis-aligned box
        with rotation 0.
    """
    cfg = cfg or DetectionConfig()
    box = bounds.corners()
    if is_partial_region(bounds, image_size, cfg.edge_margin):
        if cfg.debug:
            print(f"[corners] partial region {bounds.as_tuple()} → axis-aligned box")
        return CornerFit(box, 0.0, True)

    pts = subsample_points(edge_points(mask, bounds), cfg.max_hull_points)
    hull = convex_hull(pts)
    if len(hull) < 4:
        if cfg.debug:
            print(f"[corners] hull has {len(hull)} points → axis-aligned box")
        return CornerFit(box, 0.0, False)

    rect = min_area_rect(hull)
    top = hull[int(np.argmin(hull[:, 1]))]
    rotation = upright_rotation(rect.corners, top)

    max_dist = cfg.max_match_distance_ratio * min(rect.width, rect.height)
    selected = _match_hull_corners(rect.corners, hull, max_dist)
    if selected is None:
        if cfg.debug:
            print("[corners] hull matching failed → quadrant selection")
        selected = _quadrant_corners(hull, rotation)
    if selected is None:
        selected = rect.corners

    corners = order_corners(selected, rotation)
    if cfg.debug:
        print(f"[corners] hull={len(hull)} angle={math.degrees(rect.angle):.2f} "
              f"rotation={math.degrees(rotation):.2f} corners={np.round(corners, 1).tolist()}")
    return CornerFit(corners, rotation, False)
