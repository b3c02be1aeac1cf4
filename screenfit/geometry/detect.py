# screenfit/geometry/detect.py
from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
import cv2
import numpy as np

from screenfit.core.config import DetectionConfig
from screenfit.core.contracts import BezelEdges, DetectedRegion, PixelBuffer, Point, Rect

# Reasons a candidate is dropped, as they appear in the detection log
REGION_TOO_SMALL = "REGION_TOO_SMALL"
AREA_TOO_SMALL = "AREA_TOO_SMALL"
LOW_RECTANGULARITY = "LOW_RECTANGULARITY"
LOW_BEZEL_SCORE = "LOW_BEZEL_SCORE"
INSUFFICIENT_BEZEL_EDGES = "INSUFFICIENT_BEZEL_EDGES"
BELOW_TOP_N = "BELOW_TOP_N"

_PURE_WHITE = 0.97    # auto-relax stops at the first hit at or above this luminance
_RELAX_GAIN = 1.2     # a looser threshold must beat the best score by this factor


@dataclass
class _Component:
    bounds: Rect
    mask: np.ndarray      # local bool mask, (h, w)
    pixel_count: int


# ----------------------------------------------------------------------------- #
# Detection log                                                                 #
# ----------------------------------------------------------------------------- #

@dataclass
class FilteredRegion:
    index: int
    reason: str
    bounds: Tuple[int, int, int, int]
    details: Dict[str, float] = field(default_factory=dict)


@dataclass
class DetectionLog:
    timestamp: str
    image_size: Tuple[int, int]
    config: Dict
    luminance_threshold: float
    white_pixel_count: int = 0
    white_pixel_ratio: float = 0.0
    raw_regions: List[Dict] = field(default_factory=list)
    after_size_filter: int = 0
    after_area_filter: int = 0
    after_rectangularity_filter: int = 0
    after_bezel_score_filter: int = 0
    after_bezel_edges_filter: int = 0
    filtered_out: List[FilteredRegion] = field(default_factory=list)
    final_regions: List[Dict] = field(default_factory=list)
    success: bool = False
    message: str = ""

    @property
    def manual_mode(self) -> bool:
        """No region survived; the caller has to seed regions by hand."""
        return not self.success

    def to_dict(self) -> Dict:
        return asdict(self)

    def _drop(self, index: int, reason: str, bounds: Rect, **details: float) -> None:
        self.filtered_out.append(FilteredRegion(index, reason, bounds.as_tuple(), dict(details)))


def format_detection_log(log: DetectionLog, max_rows: int = 10) -> str:
    """Plain-text rendering of a DetectionLog, meant for copy/paste into bug reports."""
    cfg = log.config
    lines = [
        "=== screen detection log ===",
        f"timestamp: {log.timestamp}",
        f"image size: {log.image_size[0]}x{log.image_size[1]}",
        "",
        "--- parameters ---",
        f"luminance threshold: {log.luminance_threshold}",
        f"min area ratio: {cfg.get('min_area_ratio')}",
        f"min rectangularity: {cfg.get('min_rectangularity')}",
        f"min bezel score: {cfg.get('min_bezel_score')}",
        f"bezel width: {cfg.get('bezel_width')}px",
        f"dark threshold: {cfg.get('dark_threshold')}",
        f"min bezel edges: {cfg.get('min_bezel_edges')}",
        "",
        "--- stages ---",
        f"white pixels: {log.white_pixel_count} ({log.white_pixel_ratio * 100:.2f}%)",
        f"raw regions: {len(log.raw_regions)}",
        f"after size filter: {log.after_size_filter}",
        f"after area filter: {log.after_area_filter}",
        f"after rectangularity filter: {log.after_rectangularity_filter}",
        f"after bezel score filter: {log.after_bezel_score_filter}",
        f"after bezel edges filter: {log.after_bezel_edges_filter}",
        "",
    ]

    if log.raw_regions:
        lines.append("--- raw regions ---")
        for r in log.raw_regions[:max_rows]:
            x, y, w, h = r["bounds"]
            lines.append(f"  [{r['index']}] {w}x{h} at ({x},{y}) - {r['pixel_count']}px "
                         f"({r['area_ratio'] * 100:.3f}%)")
        if len(log.raw_regions) > max_rows:
            lines.append(f"  ... {len(log.raw_regions) - max_rows} more")
        lines.append("")

    if log.filtered_out:
        lines.append("--- filtered out ---")
        for f in log.filtered_out[:max_rows]:
            detail = " ".join(f"{k}:{v:.3f}" if isinstance(v, float) else f"{k}:{v}"
                              for k, v in f.details.items())
            lines.append(f"  [{f.index}] {f.reason} - {detail}".rstrip())
        if len(log.filtered_out) > max_rows:
            lines.append(f"  ... {len(log.filtered_out) - max_rows} more")
        lines.append("")

    lines.append("--- result ---")
    if not log.final_regions:
        lines.append("no regions detected")
    for i, r in enumerate(log.final_regions):
        x, y, w, h = r["bounds"]
        e = r["bezel_edges"]
        lines.append(f"  device {i + 1}: {w}x{h} at ({x},{y})")
        lines.append(f"    area: {r['pixel_count']}px, rectangularity: {r['rectangularity']:.3f}")
        lines.append(f"    bezel: {r['bezel_score']:.3f} (top:{e['top']:.2f} bottom:{e['bottom']:.2f} "
                     f"left:{e['left']:.2f} right:{e['right']:.2f})")
        lines.append(f"    score: {r['overall_score']:.4f}")
    lines.append("")
    lines.append("--- summary ---")
    lines.append(f"success: {log.success}")
    lines.append(f"regions: {len(log.final_regions)}")
    lines.append(f"message: {log.message}")
    return "\n".join(lines)


# ----------------------------------------------------------------------------- #
# Segmentation                                                                  #
# ----------------------------------------------------------------------------- #

def white_mask(image: PixelBuffer, luminance_threshold: float = 0.90,
               alpha_threshold: int = 200, lum: Optional[np.ndarray] = None) -> np.ndarray:
    """Bool (H, W): opaque pixels whose BT.601 luma reaches the threshold."""
    if lum is None:
        lum = image.luminance()
    return (image.data[..., 3] > alpha_threshold) & (lum >= luminance_threshold)


def label_components(mask: np.ndarray) -> List[_Component]:
    """4-connected components of a bool mask, in label (raster) order."""
    n, labels, stats, _ = cv2.connectedComponentsWithStats(mask.astype(np.uint8), connectivity=4)
    comps: List[_Component] = []
    for i in range(1, n):
        x, y, w, h, area = (int(v) for v in stats[i])
        local = labels[y:y + h, x:x + w] == i
        comps.append(_Component(Rect(x, y, w, h), local, area))
    return comps


def flood_component(mask: np.ndarray, seed: Tuple[int, int]) -> Optional[_Component]:
    """
    Breadth-first flood from one seed pixel over a bool mask (4-connectivity).
    Uses an explicit queue so large screens do not blow the call stack.
    """
    H, W = mask.shape
    sx, sy = int(seed[0]), int(seed[1])
    if not (0 <= sx < W and 0 <= sy < H) or not mask[sy, sx]:
        return None

    flat = mask.ravel().tolist()
    seen = bytearray(H * W)
    start = sy * W + sx
    seen[start] = 1
    queue = deque([start])
    members: List[int] = []
    while queue:
        idx = queue.popleft()
        members.append(idx)
        x = idx % W
        if x > 0 and not seen[idx - 1] and flat[idx - 1]:
            seen[idx - 1] = 1
            queue.append(idx - 1)
        if x < W - 1 and not seen[idx + 1] and flat[idx + 1]:
            seen[idx + 1] = 1
            queue.append(idx + 1)
        if idx >= W and not seen[idx - W] and flat[idx - W]:
            seen[idx - W] = 1
            queue.append(idx - W)
        if idx + W < H * W and not seen[idx + W] and flat[idx + W]:
            seen[idx + W] = 1
            queue.append(idx + W)

    pix = np.asarray(members, dtype=np.int64)
    ys, xs = pix // W, pix % W
    x0, y0 = int(xs.min()), int(ys.min())
    bounds = Rect(x0, y0, int(xs.max()) - x0 + 1, int(ys.max()) - y0 + 1)
    local = np.zeros((bounds.height, bounds.width), bool)
    local[ys - y0, xs - x0] = True
    return _Component(bounds, local, len(members))


def find_nearest_white(mask: np.ndarray, point: Point, max_radius: int = 10) -> Optional[Tuple[int, int]]:
    """Search diamond rings of growing radius around ``point`` for a mask pixel."""
    H, W = mask.shape
    x, y = int(round(point[0])), int(round(point[1]))
    if 0 <= x < W and 0 <= y < H and mask[y, x]:
        return x, y
    for r in range(1, max_radius + 1):
        for dy in range(-r, r + 1):
            dx = r - abs(dy)
            for px, py in ((x - dx, y + dy), (x + dx, y + dy)):
                if 0 <= px < W and 0 <= py < H and mask[py, px]:
                    return px, py
    return None


def _merge_pair(a: _Component, b: _Component) -> _Component:
    bounds = a.bounds.union(b.bounds)
    local = np.zeros((bounds.height, bounds.width), bool)
    for c in (a, b):
        ox, oy = c.bounds.x - bounds.x, c.bounds.y - bounds.y
        local[oy:oy + c.bounds.height, ox:ox + c.bounds.width] |= c.mask
    return _Component(bounds, local, a.pixel_count + b.pixel_count)


def _can_merge(a: _Component, b: _Component, gap_ratio: float) -> bool:
    # Same-sized halves of one screen split by a notch: strong overlap on both axes,
    # a small gap, and a merged box that still looks like a screen.
    big, small = max(a.pixel_count, b.pixel_count), max(1, min(a.pixel_count, b.pixel_count))
    if big / small > 2.0:
        return False

    ab, bb = a.bounds, b.bounds
    aw, ah = ab.width - 1, ab.height - 1
    bw, bh = bb.width - 1, bb.height - 1

    y_overlap = max(0, min(ab.max_y, bb.max_y) - max(ab.y, bb.y))
    min_h = min(ah, bh)
    if (y_overlap / min_h if min_h > 0 else 0.0) < 0.8:
        return False

    x_overlap = max(0, min(ab.max_x, bb.max_x) - max(ab.x, bb.x))
    min_w = min(aw, bw)
    if (x_overlap / min_w if min_w > 0 else 0.0) < 0.5:
        return False

    gap_x = (aw + bw) / 2.0 * gap_ratio
    gap_y = (ah + bh) / 2.0 * gap_ratio
    if not (ab.max_x >= bb.x - gap_x and ab.x <= bb.max_x + gap_x):
        return False
    if not (ab.max_y >= bb.y - gap_y and ab.y <= bb.max_y + gap_y):
        return False

    merged = ab.union(bb)
    mw, mh = merged.width - 1, merged.height - 1
    if min(mw, mh) <= 0 or max(mw, mh) / min(mw, mh) > 2.5:
        return False
    return True


def merge_nearby_components(comps: List[_Component], gap_ratio: float = 0.05) -> List[_Component]:
    """Greedy merge, largest component first, until nothing else qualifies."""
    if len(comps) <= 1:
        return list(comps)
    ordered = sorted(comps, key=lambda c: c.pixel_count, reverse=True)
    used = [False] * len(ordered)
    out: List[_Component] = []
    for i, comp in enumerate(ordered):
        if used[i]:
            continue
        used[i] = True
        current = comp
        found = True
        while found:
            found = False
            for j, other in enumerate(ordered):
                if used[j] or not _can_merge(current, other, gap_ratio):
                    continue
                current = _merge_pair(current, other)
                used[j] = True
                found = True
        out.append(current)
    return out


# ----------------------------------------------------------------------------- #
# Scoring                                                                       #
# ----------------------------------------------------------------------------- #

def _dark_fraction(lum: np.ndarray, x0: int, x1: int, y0: int, y1: int, dark: float) -> float:
    H, W = lum.shape
    x0, x1 = max(0, x0), min(W, x1)
    y0, y1 = max(0, y0), min(H, y1)
    if x1 <= x0 or y1 <= y0:
        return 0.0
    band = lum[y0:y1, x0:x1]
    return float(np.count_nonzero(band < dark)) / float(band.size)


def bezel_edges(lum: np.ndarray, bounds: Rect, bezel_width: int, dark_threshold: float) -> BezelEdges:
    """Dark fraction of the ``bezel_width`` band just outside each side of ``bounds``."""
    x, y, w, h = bounds.as_tuple()
    bw = int(bezel_width)
    return BezelEdges(
        top=_dark_fraction(lum, x, x + w, y - bw, y, dark_threshold),
        bottom=_dark_fraction(lum, x, x + w, y + h, y + h + bw, dark_threshold),
        left=_dark_fraction(lum, x - bw, x, y, y + h, dark_threshold),
        right=_dark_fraction(lum, x + w, x + w + bw, y, y + h, dark_threshold),
    )


def _measure(comp: _Component, lum: np.ndarray, cfg: DetectionConfig) -> DetectedRegion:
    total = float(lum.size)
    area_ratio = comp.pixel_count / total
    rectangularity = comp.pixel_count / float(comp.bounds.area)
    edges = bezel_edges(lum, comp.bounds, cfg.bezel_width, cfg.dark_threshold)
    score = edges.mean
    return DetectedRegion(
        bounds=comp.bounds,
        mask=comp.mask,
        pixel_count=comp.pixel_count,
        area_ratio=area_ratio,
        rectangularity=rectangularity,
        bezel_edges=edges,
        bezel_score=score,
        overall_score=score * area_ratio * rectangularity * 1000.0,
    )


def _region_summary(r: DetectedRegion) -> Dict:
    return {
        "bounds": r.bounds.as_tuple(),
        "pixel_count": r.pixel_count,
        "area_ratio": r.area_ratio,
        "rectangularity": r.rectangularity,
        "bezel_edges": asdict(r.bezel_edges),
        "bezel_score": r.bezel_score,
        "overall_score": r.overall_score,
    }


# ----------------------------------------------------------------------------- #
# Public entrypoints                                                            #
# ----------------------------------------------------------------------------- #

def _detect_once(image: PixelBuffer, cfg: DetectionConfig,
                 threshold: float) -> Tuple[List[DetectedRegion], DetectionLog]:
    lum = image.luminance()
    total = float(lum.size)
    mask = white_mask(image, threshold, cfg.alpha_threshold, lum=lum)

    log = DetectionLog(
        timestamp=datetime.now().isoformat(timespec="seconds"),
        image_size=(image.width, image.height),
        config=cfg.to_dict(),
        luminance_threshold=threshold,
    )
    log.white_pixel_count = int(np.count_nonzero(mask))
    log.white_pixel_ratio = log.white_pixel_count / total if total else 0.0

    comps = label_components(mask)
    if cfg.merge_nearby:
        before = len(comps)
        comps = merge_nearby_components(comps, cfg.merge_gap_ratio)
        if cfg.debug and len(comps) != before:
            print(f"[detect] merged {before} components into {len(comps)}")
    log.raw_regions = [
        {"index": i, "bounds": c.bounds.as_tuple(), "pixel_count": c.pixel_count,
         "area_ratio": c.pixel_count / total}
        for i, c in enumerate(comps)
    ]

    # size -> area -> rectangularity are cheap; bezel sampling only for what is left
    stage: List[Tuple[int, _Component]] = []
    for i, c in enumerate(comps):
        if c.bounds.width < cfg.min_region_size or c.bounds.height < cfg.min_region_size:
            log._drop(i, REGION_TOO_SMALL, c.bounds, width=c.bounds.width, height=c.bounds.height)
            continue
        stage.append((i, c))
    log.after_size_filter = len(stage)

    kept = []
    for i, c in stage:
        ratio = c.pixel_count / total
        if ratio < cfg.min_area_ratio:
            log._drop(i, AREA_TOO_SMALL, c.bounds, area_ratio=ratio)
            continue
        kept.append((i, c))
    stage = kept
    log.after_area_filter = len(stage)

    kept = []
    for i, c in stage:
        rect = c.pixel_count / float(c.bounds.area)
        if rect < cfg.min_rectangularity:
            log._drop(i, LOW_RECTANGULARITY, c.bounds, rectangularity=rect)
            continue
        kept.append((i, c))
    stage = kept
    log.after_rectangularity_filter = len(stage)

    measured = [(i, _measure(c, lum, cfg)) for i, c in stage]
    kept_r = []
    for i, r in measured:
        if r.bezel_score < cfg.min_bezel_score:
            log._drop(i, LOW_BEZEL_SCORE, r.bounds, bezel_score=r.bezel_score)
            continue
        kept_r.append((i, r))
    log.after_bezel_score_filter = len(kept_r)

    survivors = []
    for i, r in kept_r:
        n_edges = r.bezel_edges.count_above(cfg.bezel_edge_threshold)
        if n_edges < cfg.min_bezel_edges:
            log._drop(i, INSUFFICIENT_BEZEL_EDGES, r.bounds, edges_with_bezel=n_edges)
            continue
        survivors.append((i, r))
    log.after_bezel_edges_filter = len(survivors)

    survivors.sort(key=lambda t: t[1].overall_score, reverse=True)
    for i, r in survivors[cfg.max_regions:]:
        log._drop(i, BELOW_TOP_N, r.bounds, overall_score=r.overall_score)
    regions = [r for _, r in survivors[:cfg.max_regions]]

    log.final_regions = [_region_summary(r) for r in regions]
    log.success = bool(regions)
    if regions:
        log.message = f"detected {len(regions)} screen region(s) at luminance >= {threshold}"
    else:
        log.message = "no screen region detected; seed regions manually"
    return regions, log


def detect_regions_with_log(image: PixelBuffer,
                            cfg: Optional[DetectionConfig] = None) -> Tuple[List[DetectedRegion], DetectionLog]:
    """
    Find up to ``cfg.max_regions`` white screen areas framed by a dark bezel.

    Returns the regions best-first plus a DetectionLog describing every stage.
    An empty list is not an error: ``log.manual_mode`` tells the caller to fall
    back to click-seeded detection.
    """
    cfg = cfg or DetectionConfig()
    thresholds = cfg.relax_luminance if cfg.auto_relax and cfg.relax_luminance else (cfg.luminance_threshold,)

    if cfg.debug:
        print("[detect] cfg:", {
            "thresholds": thresholds,
            "min_area_ratio": cfg.min_area_ratio,
            "min_rectangularity": cfg.min_rectangularity,
            "min_bezel_score": cfg.min_bezel_score,
            "bezel_width": cfg.bezel_width,
            "merge_nearby": cfg.merge_nearby,
        })

    # A hit at a near-pure-white threshold is final. Below that, a looser
    # threshold only replaces the current best if its top score is clearly higher.
    best, best_log = _detect_once(image, cfg, thresholds[0])
    best_score = max((r.overall_score for r in best), default=0.0)
    if cfg.debug:
        print(f"[detect] luminance>={thresholds[0]}: white={best_log.white_pixel_ratio:.4f} "
              f"raw={len(best_log.raw_regions)} kept={len(best)}")
    if best and thresholds[0] >= _PURE_WHITE:
        return best, best_log

    for t in thresholds[1:]:
        if cfg.debug:
            print(f"[detect] relaxing → luminance>={t}")
        regions, log = _detect_once(image, cfg, t)
        if cfg.debug:
            print(f"[detect] luminance>={t}: white={log.white_pixel_ratio:.4f} "
                  f"raw={len(log.raw_regions)} kept={len(regions)}")
        if not regions:
            if not best:
                best_log = log    # report the loosest attempt when nothing is found
            continue
        score = max(r.overall_score for r in regions)
        if not best or score > best_score * _RELAX_GAIN:
            best, best_log, best_score = regions, log, score
        if t >= _PURE_WHITE:
            break
    return best, best_log


def detect_regions(image: PixelBuffer, cfg: Optional[DetectionConfig] = None) -> List[DetectedRegion]:
    regions, _ = detect_regions_with_log(image, cfg)
    return regions


def detect_region_at(image: PixelBuffer, seed: Point, cfg: Optional[DetectionConfig] = None,
                     existing: Sequence[Rect] = ()) -> Optional[DetectedRegion]:
    """
    Manual fallback: grow one region from a clicked point.

    The click snaps to the nearest white pixel within ``cfg.seed_search_radius``.
    Returns None when nothing white is near, the region is smaller than
    ``cfg.min_region_size``, or it overlaps an ``existing`` box by more than
    ``cfg.duplicate_overlap`` of its own area. No score filters apply.
    """
    cfg = cfg or DetectionConfig()
    lum = image.luminance()
    mask = white_mask(image, cfg.luminance_threshold, cfg.alpha_threshold, lum=lum)

    start = find_nearest_white(mask, seed, cfg.seed_search_radius)
    if start is None:
        if cfg.debug:
            print(f"[seed] no white pixel within {cfg.seed_search_radius}px of {seed}")
        return None

    comp = flood_component(mask, start)
    if comp is None:
        return None
    if comp.bounds.width < cfg.min_region_size or comp.bounds.height < cfg.min_region_size:
        if cfg.debug:
            print(f"[seed] region too small: {comp.bounds}")
        return None
    for other in existing:
        if comp.bounds.overlap_area(other) > cfg.duplicate_overlap * comp.bounds.area:
            if cfg.debug:
                print(f"[seed] duplicate of existing region {other}")
            return None
    return _measure(comp, lum, cfg)
