# screenfit/render/composite.py
"""
Put user images into a frame's screen quads while keeping every bezel and
background pixel of the frame byte-for-byte.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple
import math
import cv2
import numpy as np

from screenfit.core.config import CompositeConfig
from screenfit.core.contracts import DetectedRegion, FitMode, PixelBuffer
from screenfit.render.warp import point_in_quad, warp_into

# preview fill per device slot (RGB)
DEVICE_FILL_COLORS: Tuple[Tuple[int, int, int], ...] = (
    (255, 107, 107),
    (78, 205, 196),
    (255, 209, 102),
)

# TL, TR, BR, BL marker colours (RGBA)
_CORNER_COLORS = ((255, 0, 0, 255), (0, 255, 0, 255), (0, 0, 255, 255), (255, 255, 0, 255))
_CORNER_LABELS = ("TL", "TR", "BR", "BL")


class Quality(str, Enum):
    PREVIEW = "preview"   # single sample per pixel, debug overlay allowed
    EXPORT = "export"     # supersampled, never any debug drawing


@dataclass
class Placement:
    corners: np.ndarray   # destination quad, TL, TR, BR, BL
    image: PixelBuffer
    fit_mode: FitMode = FitMode.COVER


# ----------------------------------------------------------------------------- #
# Geometry helpers                                                              #
# ----------------------------------------------------------------------------- #

def source_quad_for_fit(image_size: Tuple[int, int], dst_corners, fit_mode: FitMode) -> np.ndarray:
    """
    Source rectangle (TL, TR, BR, BL, pixel centers) to map onto the quad.

    The quad aspect is top edge length / left edge length. ``cover`` crops the
    image to that aspect around its center; ``contain`` grows the rectangle past
    the image on the short axis, which renders as black letterbox bars.
    """
    W, H = image_size
    c = np.asarray(dst_corners, np.float64).reshape(4, 2)
    top = math.hypot(*(c[1] - c[0]))
    left = math.hypot(*(c[3] - c[0]))
    x, y, w, h = 0.0, 0.0, float(W), float(H)

    if top > 1e-9 and left > 1e-9:
        target = top / left
        image_aspect = W / float(H)
        if FitMode(fit_mode) is FitMode.COVER:
            if image_aspect > target:
                w = H * target
                x = (W - w) / 2.0
            else:
                h = W / target
                y = (H - h) / 2.0
        else:
            if image_aspect > target:
                h = W / target
                y = (H - h) / 2.0
            else:
                w = H * target
                x = (W - w) / 2.0

    return np.array([[x, y], [x + w - 1, y], [x + w - 1, y + h - 1], [x, y + h - 1]])


def expand_quad(corners, px: float) -> np.ndarray:
    """Push each corner ``px`` pixels further from the quad centroid."""
    c = np.asarray(corners, np.float64).reshape(4, 2)
    if px == 0:
        return c.copy()
    d = c - c.mean(axis=0)
    n = np.hypot(d[:, 0], d[:, 1])[:, None]
    return c + np.where(n > 0, d / np.where(n > 0, n, 1.0), 0.0) * px


def quads_mask(size: Tuple[int, int], quads: Sequence[np.ndarray]) -> np.ndarray:
    """Bool (H, W): union of all quads."""
    W, H = size
    mask = np.zeros((H, W), bool)
    for q in quads:
        q = np.asarray(q, np.float64).reshape(4, 2)
        x0 = max(0, int(math.floor(q[:, 0].min())))
        x1 = min(W - 1, int(math.ceil(q[:, 0].max())))
        y0 = max(0, int(math.floor(q[:, 1].min())))
        y1 = min(H - 1, int(math.ceil(q[:, 1].max())))
        if x1 < x0 or y1 < y0:
            continue
        ys, xs = np.mgrid[y0:y1 + 1, x0:x1 + 1]
        mask[y0:y1 + 1, x0:x1 + 1] |= point_in_quad(q, xs, ys)
    return mask


# ----------------------------------------------------------------------------- #
# Compositing                                                                   #
# ----------------------------------------------------------------------------- #

def restore_bezel(out: PixelBuffer, frame: PixelBuffer, quads: Sequence[np.ndarray],
                  cfg: Optional[CompositeConfig] = None) -> None:
    """
    Copy frame pixels back over ``out`` (in place) wherever the frame is an
    opaque non-white bezel pixel, or the pixel lies outside every quad.
    """
    cfg = cfg or CompositeConfig()
    fdata = frame.data
    bezel = (fdata[..., 3] > cfg.restore_alpha) & (frame.luminance() < cfg.restore_luminance)
    keep = bezel | ~quads_mask(frame.size, quads)
    out.data[keep] = fdata[keep]


def compose(frame: PixelBuffer, placements: Sequence[Placement],
            cfg: Optional[CompositeConfig] = None, quality: Quality = Quality.PREVIEW) -> PixelBuffer:
    """
    Composite user images into their screen quads.

    Returns a new buffer the size of ``frame``; the frame itself is never
    modified. With no placements the result is an exact copy of the frame.
    """
    cfg = cfg or CompositeConfig()
    out = frame.copy()
    if not placements:
        return out

    supersample = cfg.export_supersample if quality is Quality.EXPORT else 1
    quads: List[np.ndarray] = []
    for i, p in enumerate(placements):
        dst = expand_quad(p.corners, cfg.edge_expand_px)
        src = source_quad_for_fit(p.image.size, p.corners, p.fit_mode)
        if cfg.debug:
            print(f"[compose] region {i}: {p.image.width}x{p.image.height} {FitMode(p.fit_mode).value} "
                  f"→ {np.round(dst, 1).tolist()}")
        warp_into(out, p.image, src, dst, supersample=supersample)
        quads.append(dst)

    restore_bezel(out, frame, quads, cfg)

    if quality is Quality.PREVIEW and cfg.debug_overlay:
        draw_debug_overlay(out, [p.corners for p in placements])
    return out


# ----------------------------------------------------------------------------- #
# Previews                                                                      #
# ----------------------------------------------------------------------------- #

def fill_regions(frame: PixelBuffer, regions: Sequence[DetectedRegion],
                 colors: Optional[Sequence[Tuple[int, int, int]]] = None) -> PixelBuffer:
    """Paint each region's mask with a solid colour, cycling through ``colors``."""
    palette = list(colors or DEVICE_FILL_COLORS)
    out = frame.copy()
    for i, r in enumerate(regions):
        b = r.bounds
        view = out.data[b.y:b.y + b.height, b.x:b.x + b.width]
        view[r.mask] = (*palette[i % len(palette)], 255)
    return out


def draw_debug_overlay(buf: PixelBuffer, quads: Sequence[np.ndarray]) -> None:
    """Outline each quad and mark its TL/TR/BR/BL corners (in place)."""
    for q in quads:
        pts = np.rint(np.asarray(q, np.float64).reshape(4, 2)).astype(np.int32)
        cv2.polylines(buf.data, [pts], True, (255, 0, 255, 255), 2, lineType=cv2.LINE_AA)
        for (x, y), color, label in zip(pts, _CORNER_COLORS, _CORNER_LABELS):
            cv2.circle(buf.data, (int(x), int(y)), 6, color, -1, lineType=cv2.LINE_AA)
            cv2.putText(buf.data, label, (int(x) + 8, int(y) - 8),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1, cv2.LINE_AA)
