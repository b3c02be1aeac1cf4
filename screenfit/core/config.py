"""
Tunable parameters for detection and compositing.

Defaults match the values the detector was tuned on (mockup templates with
black or dark-gray bezels). Overrides come from a plain dict or a YAML file:

    detection:
      luminance_threshold: 0.95
      bezel_width: 10
    composite:
      export_supersample: 3
"""

from __future__ import annotations
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import yaml


@dataclass
class DetectionConfig:
    # --- white mask
    luminance_threshold: float = 0.90   # BT.601 luma, 0..1
    alpha_threshold: int = 200          # pixel must be more opaque than this

    # --- candidate filters
    min_region_size: int = 20           # px, both width and height
    min_area_ratio: float = 0.005       # component pixels / image pixels
    min_rectangularity: float = 0.35    # low on purpose: rounded corners, tilted devices

    # --- bezel scoring
    bezel_width: int = 15               # px band sampled outside each bbox edge
    dark_threshold: float = 0.25        # luma below this counts as bezel
    min_bezel_score: float = 0.20       # mean of the 4 edge fractions
    min_bezel_edges: int = 1
    bezel_edge_threshold: float = 0.15  # an edge "has bezel" above this fraction

    max_regions: int = 3

    # --- notch / camera cut-out merging (off unless asked for)
    merge_nearby: bool = False
    merge_gap_ratio: float = 0.05

    # --- retry with progressively looser luminance thresholds
    auto_relax: bool = False
    relax_luminance: Tuple[float, ...] = (0.99, 0.97, 0.95, 0.90)

    # --- corner extraction
    edge_margin: int = 3                # bbox this close to the image edge => partial region
    max_hull_points: int = 500
    max_match_distance_ratio: float = 0.25

    # --- manual seeding
    seed_search_radius: int = 10
    duplicate_overlap: float = 0.5

    debug: bool = False

    def __post_init__(self) -> None:
        for name in ("luminance_threshold", "dark_threshold", "min_area_ratio",
                     "min_rectangularity", "min_bezel_score", "bezel_edge_threshold",
                     "duplicate_overlap"):
            v = float(getattr(self, name))
            if not 0.0 <= v <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {v}")
        if self.bezel_width < 0:
            raise ValueError(f"bezel_width must be >= 0, got {self.bezel_width}")
        if self.max_regions < 1:
            raise ValueError(f"max_regions must be >= 1, got {self.max_regions}")
        if not 0 <= self.min_bezel_edges <= 4:
            raise ValueError(f"min_bezel_edges must be within [0, 4], got {self.min_bezel_edges}")
        if self.max_hull_points < 8:
            raise ValueError(f"max_hull_points must be >= 8, got {self.max_hull_points}")
        self.relax_luminance = tuple(float(t) for t in self.relax_luminance)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "DetectionConfig":
        return _from_dict(cls, data)

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["relax_luminance"] = list(self.relax_luminance)
        return d


@dataclass
class CompositeConfig:
    edge_expand_px: float = 0.0         # grow each destination quad outward
    restore_luminance: float = 0.90     # frame pixels darker than this are bezel
    restore_alpha: int = 200            # ...and only when at least this opaque
    export_supersample: int = 2         # s x s samples per pixel at export quality
    debug_overlay: bool = False         # corner markers, preview quality only
    debug: bool = False

    def __post_init__(self) -> None:
        if self.export_supersample < 1:
            raise ValueError(f"export_supersample must be >= 1, got {self.export_supersample}")
        if not 0.0 <= float(self.restore_luminance) <= 1.0:
            raise ValueError(f"restore_luminance must be within [0, 1], got {self.restore_luminance}")

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "CompositeConfig":
        return _from_dict(cls, data)

    def to_dict(self) -> Dict:
        return asdict(self)


def _from_dict(cls, data: Optional[Dict]):
    if not data:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"{cls.__name__} section must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {unknown}")
    return cls(**data)


def _load_cfg(path: Union[str, Path]) -> Dict:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Union[str, Path]) -> Tuple[DetectionConfig, CompositeConfig]:
    """Read both sections from a YAML file; missing sections keep their defaults."""
    raw = _load_cfg(path)
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    unknown = sorted(set(raw) - {"detection", "composite"})
    if unknown:
        raise ValueError(f"Unknown config sections in {path}: {unknown}")
    return (DetectionConfig.from_dict(raw.get("detection")),
            CompositeConfig.from_dict(raw.get("composite")))
