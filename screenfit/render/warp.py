# screenfit/render/warp.py
"""
Inverse-mapped perspective warp of a source image into a destination quad.

Every destination pixel inside the quad is mapped back through the dst->src
homography and bilinearly sampled. The quad is first filled opaque black so
boundary pixels never end up translucent, and samples that land outside the
source (letterbox space in ``contain`` mode) keep that black. Pixels outside
the quad stay fully transparent in the layer.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple
import math
import numpy as np

from screenfit.core.contracts import PixelBuffer
from screenfit.geometry.homography import solve_homography

_INSIDE_EPS = 1e-9
_OPAQUE_BLACK = np.array([0, 0, 0, 255], np.float64)


@dataclass
class WarpLayer:
    buffer: PixelBuffer          # RGBA, transparent outside the quad
    origin: Tuple[int, int]      # (x, y) of buffer[0, 0] in destination coordinates


def point_in_quad(quad: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """Convex-quad test: all four edge cross products share a sign (edges count as inside)."""
    q = np.asarray(quad, np.float64).reshape(4, 2)
    xs = np.asarray(xs, np.float64)
    ys = np.asarray(ys, np.float64)
    crosses = []
    for i in range(4):
        x0, y0 = q[i]
        x1, y1 = q[(i + 1) % 4]
        crosses.append((x1 - x0) * (ys - y0) - (y1 - y0) * (xs - x0))
    c = np.stack(crosses)
    return np.all(c >= -_INSIDE_EPS, axis=0) | np.all(c <= _INSIDE_EPS, axis=0)


def bilinear_sample(data: np.ndarray, sx: np.ndarray, sy: np.ndarray) -> np.ndarray:
    """Sample (N, C) float values at fractional coordinates; neighbours clamp at the border."""
    H, W = data.shape[:2]
    sx = np.clip(np.asarray(sx, np.float64), 0, W - 1)
    sy = np.clip(np.asarray(sy, np.float64), 0, H - 1)
    x0 = np.floor(sx).astype(np.int64)
    y0 = np.floor(sy).astype(np.int64)
    x1 = np.minimum(x0 + 1, W - 1)
    y1 = np.minimum(y0 + 1, H - 1)
    fx = (sx - x0)[:, None]
    fy = (sy - y0)[:, None]

    src = data.astype(np.float64)
    top = src[y0, x0] * (1 - fx) + src[y0, x1] * fx
    bottom = src[y1, x0] * (1 - fx) + src[y1, x1] * fx
    return top * (1 - fy) + bottom * fy


def _sample(source: PixelBuffer, inv: np.ndarray, px: np.ndarray, py: np.ndarray):
    W, H = source.size
    with np.errstate(divide="ignore", invalid="ignore"):
        w = inv[2, 0] * px + inv[2, 1] * py + inv[2, 2]
        sx = (inv[0, 0] * px + inv[0, 1] * py + inv[0, 2]) / w
        sy = (inv[1, 0] * px + inv[1, 1] * py + inv[1, 2]) / w
    valid = (np.isfinite(sx) & np.isfinite(sy)
             & (sx >= -0.5) & (sx < W - 0.5) & (sy >= -0.5) & (sy < H - 0.5))
    colors = np.zeros((len(px), 4))
    if valid.any():
        colors[valid] = bilinear_sample(source.data, sx[valid], sy[valid])
    return colors, valid


def warp_perspective(source: PixelBuffer, src_quad, dst_quad,
                     target_size: Optional[Tuple[int, int]] = None,
                     supersample: int = 1) -> WarpLayer:
    """
    Render ``source`` (restricted to ``src_quad``) into ``dst_quad``.

    Args:
        source: image to warp.
        src_quad: 4 points in source coordinates, TL, TR, BR, BL. May extend
                  past the image; that area renders black.
        dst_quad: 4 destination points in the same order.
        target_size: (W, H) to clip the layer against, if any.
        supersample: s > 1 averages s x s samples per pixel (export quality).

    Returns:
        WarpLayer covering the quad's bounding box.

    Raises:
        SingularMatrixError if either quad is degenerate.
    """
    dst = np.asarray(dst_quad, np.float64).reshape(4, 2)
    src = np.asarray(src_quad, np.float64).reshape(4, 2)
    inv = solve_homography(dst, src)

    x0 = int(math.floor(dst[:, 0].min()))
    x1 = int(math.ceil(dst[:, 0].max()))
    y0 = int(math.floor(dst[:, 1].min()))
    y1 = int(math.ceil(dst[:, 1].max()))
    if target_size is not None:
        x0, y0 = max(0, x0), max(0, y0)
        x1, y1 = min(target_size[0] - 1, x1), min(target_size[1] - 1, y1)
    if x1 < x0 or y1 < y0:
        return WarpLayer(PixelBuffer(np.zeros((0, 0, 4), np.uint8)), (x0, y0))

    ys, xs = np.mgrid[y0:y1 + 1, x0:x1 + 1]
    inside = point_in_quad(dst, xs, ys)
    layer = np.zeros((y1 - y0 + 1, x1 - x0 + 1, 4), np.uint8)
    px = xs[inside].astype(np.float64)
    py = ys[inside].astype(np.float64)

    # pass 1: opaque black over the whole quad
    out = np.tile(_OPAQUE_BLACK, (len(px), 1))

    # pass 2: sampled paint
    s = max(1, int(supersample))
    if s == 1:
        colors, valid = _sample(source, inv, px, py)
        out[valid] = colors[valid]
    else:
        acc = np.zeros_like(out)
        offsets = (np.arange(s) + 0.5) / s - 0.5
        for oy in offsets:
            for ox in offsets:
                colors, valid = _sample(source, inv, px + ox, py + oy)
                colors[~valid] = _OPAQUE_BLACK
                acc += colors
        out = acc / (s * s)

    layer[inside] = np.clip(np.rint(out), 0, 255).astype(np.uint8)
    return WarpLayer(PixelBuffer(layer), (x0, y0))


def blit_over(target: PixelBuffer, layer: WarpLayer) -> None:
    """Source-over composite ``layer`` onto ``target`` in place; transparent layer pixels leave target bytes untouched."""
    lh, lw = layer.buffer.height, layer.buffer.width
    if lh == 0 or lw == 0:
        return
    ox, oy = layer.origin
    tx0, ty0 = max(0, ox), max(0, oy)
    tx1, ty1 = min(target.width, ox + lw), min(target.height, oy + lh)
    if tx1 <= tx0 or ty1 <= ty0:
        return

    src = layer.buffer.data[ty0 - oy:ty1 - oy, tx0 - ox:tx1 - ox].astype(np.float64)
    view = target.data[ty0:ty1, tx0:tx1]
    touched = src[..., 3] > 0
    if not touched.any():
        return
    dst = view.astype(np.float64)
    sa = src[..., 3:4] / 255.0
    da = dst[..., 3:4] / 255.0
    out_a = sa + da * (1.0 - sa)
    safe = np.where(out_a > 0, out_a, 1.0)
    out_rgb = (src[..., :3] * sa + dst[..., :3] * da * (1.0 - sa)) / safe
    blended = np.concatenate([out_rgb, out_a * 255.0], axis=-1)
    view[touched] = np.clip(np.rint(blended[touched]), 0, 255).astype(np.uint8)


def warp_into(target: PixelBuffer, source: PixelBuffer, src_quad, dst_quad,
              supersample: int = 1) -> WarpLayer:
    """Warp and composite onto ``target`` (mutated). Returns the layer for inspection."""
    layer = warp_perspective(source, src_quad, dst_quad, target_size=target.size,
                             supersample=supersample)
    blit_over(target, layer)
    return layer
