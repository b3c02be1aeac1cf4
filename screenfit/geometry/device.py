"""
Device-type guesses from template filenames and region shape.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Tuple
import re

from screenfit.core.contracts import DeviceType, Rect

_WIDE_ASPECT = 1.2        # width / height above this reads as landscape
_DOMINANT_AREA = 1.5      # largest region this much bigger than the next => laptop


@dataclass(frozen=True)
class TemplateHints:
    smartphone: bool = False
    laptop: bool = False
    tablet: bool = False
    device_count: int = 1


def parse_template_hints(filename: str) -> TemplateHints:
    """
    Naming patterns used by mockup templates, e.g. "2sp_white.png" (two phones)
    or "SpAndLaptop.png" (phone plus laptop).
    """
    name = filename.lower()
    smartphone = "sp" in name or "smartphone" in name or "phone" in name
    laptop = any(k in name for k in ("laptop", "macbook", "notebook"))
    tablet = "tablet" in name or "ipad" in name

    m = re.search(r"(\d+)sp", name)
    if m:
        count = int(m.group(1))
    elif smartphone and laptop:
        count = 2
    else:
        count = 1
    return TemplateHints(smartphone, laptop, tablet, count)


def infer_device_type(bounds: Rect, all_bounds: Sequence[Rect],
                      hints: TemplateHints) -> Tuple[DeviceType, bool]:
    """Return (device type, is_landscape) for one region among ``all_bounds``."""
    wide = bounds.width / float(max(1, bounds.height)) > _WIDE_ASPECT

    if hints.laptop and wide:
        return DeviceType.LAPTOP, True

    if hints.laptop and len(all_bounds) >= 2:
        areas = sorted((b.area for b in all_bounds), reverse=True)
        if bounds.area == areas[0] and bounds.area > areas[1] * _DOMINANT_AREA:
            return DeviceType.LAPTOP, True

    if hints.tablet and not hints.smartphone:
        return DeviceType.TABLET, wide

    if hints.smartphone or not hints.laptop:
        return DeviceType.SMARTPHONE, False

    return DeviceType.UNKNOWN, wide
