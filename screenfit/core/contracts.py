"""
Core contracts and simple data types shared across stages.

Every value here is owned by exactly one session or request. Pixel data lives
in numpy arrays; anything that mutates pixels works on a ``copy()``.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Optional, Tuple
import numpy as np

Point = Tuple[float, float]


class FitMode(str, Enum):
    """How a user image fills a screen quad."""
    COVER = "cover"      # crop to the quad aspect, no empty space
    CONTAIN = "contain"  # whole image visible, letterboxed in black


class DeviceType(str, Enum):
    SMARTPHONE = "smartphone"
    LAPTOP = "laptop"
    TABLET = "tablet"
    UNKNOWN = "unknown"


def _frozen_array(a, dtype) -> np.ndarray:
    arr = np.array(a, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


# ----------------------------------------------------------------------------- #
# Pixels                                                                        #
# ----------------------------------------------------------------------------- #

@dataclass(eq=False)
class PixelBuffer:
    """
    An RGBA raster.

    data: np.ndarray with shape (H, W, 4), dtype uint8, channel order R, G, B, A
    """
    data: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.data)
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(f"PixelBuffer expects (H, W, 4) data, got shape {arr.shape}")
        if arr.dtype != np.uint8:
            raise ValueError(f"PixelBuffer expects uint8 data, got {arr.dtype}")
        self.data = np.ascontiguousarray(arr)

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height)"""
        return self.width, self.height

    @classmethod
    def blank(cls, width: int, height: int, rgba: Tuple[int, int, int, int] = (0, 0, 0, 0)) -> "PixelBuffer":
        data = np.empty((int(height), int(width), 4), np.uint8)
        data[:] = rgba
        return cls(data)

    @classmethod
    def from_bytes(cls, width: int, height: int, raw: bytes) -> "PixelBuffer":
        expected = int(width) * int(height) * 4
        if len(raw) != expected:
            raise ValueError(f"Expected {expected} bytes for {width}x{height} RGBA, got {len(raw)}")
        data = np.frombuffer(raw, dtype=np.uint8).reshape(int(height), int(width), 4).copy()
        return cls(data)

    def to_bytes(self) -> bytes:
        return self.data.tobytes()

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.data.copy())

    def get_pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        return tuple(int(v) for v in self.data[int(y), int(x)])  # type: ignore[return-value]

    def set_pixel(self, x: int, y: int, rgba: Tuple[int, int, int, int]) -> None:
        self.data[int(y), int(x)] = rgba

    def crop(self, rect: "Rect") -> "PixelBuffer":
        x0 = max(0, rect.x)
        y0 = max(0, rect.y)
        x1 = min(self.width, rect.x + rect.width)
        y1 = min(self.height, rect.y + rect.height)
        if x1 <= x0 or y1 <= y0:
            raise ValueError(f"Crop {rect} lies outside the {self.width}x{self.height} buffer")
        return PixelBuffer(self.data[y0:y1, x0:x1].copy())

    def luminance(self) -> np.ndarray:
        """ITU-R BT.601 luma per pixel, normalized to 0..1, shape (H, W)."""
        rgb = self.data[..., :3].astype(np.float64)
        return (0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]) / 255.0


# ----------------------------------------------------------------------------- #
# Geometry values                                                               #
# ----------------------------------------------------------------------------- #

@dataclass(frozen=True)
class Rect:
    """Integer pixel box; covers columns x .. x+width-1 and rows y .. y+height-1."""
    x: int
    y: int
    width: int
    height: int

    @property
    def max_x(self) -> int:
        return self.x + self.width - 1

    @property
    def max_y(self) -> int:
        return self.y + self.height - 1

    @property
    def area(self) -> int:
        return self.width * self.height

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.width, self.height

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.max_x and self.y <= py <= self.max_y

    def overlap_area(self, other: "Rect") -> int:
        w = min(self.max_x, other.max_x) - max(self.x, other.x) + 1
        h = min(self.max_y, other.max_y) - max(self.y, other.y) + 1
        return max(0, w) * max(0, h)

    def union(self, other: "Rect") -> "Rect":
        x0 = min(self.x, other.x)
        y0 = min(self.y, other.y)
        x1 = max(self.max_x, other.max_x)
        y1 = max(self.max_y, other.max_y)
        return Rect(x0, y0, x1 - x0 + 1, y1 - y0 + 1)

    def corners(self) -> np.ndarray:
        """Axis-aligned TL, TR, BR, BL at pixel centers."""
        return np.array([[self.x, self.y],
                         [self.max_x, self.y],
                         [self.max_x, self.max_y],
                         [self.x, self.max_y]], dtype=np.float64)


@dataclass(frozen=True)
class BezelEdges:
    """Fraction of dark pixels in the band just outside each bounding-box edge."""
    top: float
    bottom: float
    left: float
    right: float

    def values(self) -> Tuple[float, float, float, float]:
        return self.top, self.bottom, self.left, self.right

    @property
    def mean(self) -> float:
        return sum(self.values()) / 4.0

    def count_above(self, threshold: float) -> int:
        return sum(1 for v in self.values() if v > threshold)


# ----------------------------------------------------------------------------- #
# Regions                                                                       #
# ----------------------------------------------------------------------------- #

@dataclass(frozen=True, eq=False)
class DetectedRegion:
    """
    One white screen candidate that survived detection.

    mask: bool array of shape (bounds.height, bounds.width) in local coordinates
    """
    bounds: Rect
    mask: np.ndarray
    pixel_count: int
    area_ratio: float
    rectangularity: float
    bezel_edges: BezelEdges
    bezel_score: float
    overall_score: float

    def __post_init__(self) -> None:
        mask = _frozen_array(self.mask, bool)
        if mask.shape != (self.bounds.height, self.bounds.width):
            raise ValueError(f"mask shape {mask.shape} does not match bounds {self.bounds}")
        object.__setattr__(self, "mask", mask)


@dataclass(frozen=True, eq=False)
class ScreenRegion(DetectedRegion):
    """
    A DetectedRegion plus its screen quadrilateral.

    corners: (4, 2) float64, TL, TR, BR, BL clockwise in the upright (rotated) frame
    rotation: radians; rotating the image by -rotation makes the screen upright
    original_*: baseline captured at construction, used by ``reset()``
    """
    corners: np.ndarray = None  # type: ignore[assignment]
    rotation: float = 0.0
    is_partial: bool = False
    device_type: DeviceType = DeviceType.UNKNOWN
    is_landscape: bool = False
    original_corners: Optional[np.ndarray] = None
    original_mask: Optional[np.ndarray] = None
    original_bounds: Optional[Rect] = None
    original_rotation: Optional[float] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.corners is None:
            raise ValueError("ScreenRegion requires corners")
        corners = _frozen_array(self.corners, np.float64).reshape(4, 2)
        object.__setattr__(self, "corners", corners)
        if self.original_corners is None:
            object.__setattr__(self, "original_corners", corners)
            object.__setattr__(self, "original_mask", self.mask)
            object.__setattr__(self, "original_bounds", self.bounds)
            object.__setattr__(self, "original_rotation", float(self.rotation))
        else:
            object.__setattr__(self, "original_corners",
                               _frozen_array(self.original_corners, np.float64).reshape(4, 2))
            object.__setattr__(self, "original_mask", _frozen_array(self.original_mask, bool))

    @classmethod
    def from_detected(cls, region: DetectedRegion, corners: np.ndarray, rotation: float,
                      is_partial: bool, device_type: DeviceType = DeviceType.UNKNOWN,
                      is_landscape: bool = False) -> "ScreenRegion":
        base = {f.name: getattr(region, f.name) for f in fields(DetectedRegion)}
        return cls(**base, corners=corners, rotation=float(rotation), is_partial=is_partial,
                   device_type=device_type, is_landscape=is_landscape)

    @property
    def has_edits(self) -> bool:
        return not np.allclose(self.corners, self.original_corners)

    def with_corners(self, corners: np.ndarray, bounds: Rect, mask: np.ndarray,
                     rotation: float) -> "ScreenRegion":
        """New value with edited geometry; the baseline travels along unchanged."""
        return replace(self, corners=corners, bounds=bounds, mask=mask, rotation=float(rotation))

    def reset(self) -> "ScreenRegion":
        return replace(self, corners=self.original_corners, bounds=self.original_bounds,
                       mask=self.original_mask, rotation=float(self.original_rotation))
