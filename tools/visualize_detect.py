#!/usr/bin/env python3
from __future__ import annotations
import argparse, json, os, sys

import cv2
import numpy as np

from screenfit.core.config import DetectionConfig, load_config
from screenfit.geometry.contour import extract_corners
from screenfit.geometry.detect import detect_regions_with_log, format_detection_log
from screenfit.io.ingest import load_image, save_image, to_bgr
from screenfit.render.composite import fill_regions


class Tee:
    def __init__(self, *streams):
        self.streams = streams
    def write(self, data):
        for s in self.streams:
            s.write(data)
            s.flush()
    def flush(self):
        for s in self.streams:
            s.flush()


def draw_quad(img, quad, color, thickness=2):
    q = np.rint(quad).astype(np.int32).reshape(4, 2)
    cv2.polylines(img, [q], True, color, thickness, lineType=cv2.LINE_AA)
    for (x, y), label in zip(q, ("TL", "TR", "BR", "BL")):
        cv2.circle(img, (int(x), int(y)), 5, color, -1, lineType=cv2.LINE_AA)
        cv2.putText(img, label, (int(x) + 6, int(y) - 6), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1, cv2.LINE_AA)


def main():
    ap = argparse.ArgumentParser(description="Detect screen regions in a mockup frame and visualize them.")
    ap.add_argument("image", help="Path to the frame image (PNG with alpha supported).")
    ap.add_argument("--config", default=None, help="YAML config with detection/composite sections.")
    ap.add_argument("--out_dir", default="tests/output", help="Directory for outputs.")
    ap.add_argument("--log", default=None, help="Also write console output to this file.")
    ap.add_argument("--json", action="store_true", help="Write the detection log as <base>_detect.json.")
    ap.add_argument("--debug", action="store_true", help="Enable debug prints in detector.")
    ap.add_argument("--luminance", type=float, default=None)
    ap.add_argument("--min_area_ratio", type=float, default=None)
    ap.add_argument("--bezel_width", type=int, default=None)
    ap.add_argument("--merge_nearby", action="store_true", help="Merge screens split by a notch.")
    ap.add_argument("--auto_relax", action="store_true", help="Retry with looser luminance thresholds.")
    args = ap.parse_args()

    if args.log:
        log_f = open(args.log, "w")
        sys.stdout = Tee(sys.stdout, log_f)
        print(f"[logging] Writing debug output to: {args.log}")

    cfg = load_config(args.config)[0] if args.config else DetectionConfig()
    if args.debug:
        cfg.debug = True
    if args.luminance is not None:
        cfg.luminance_threshold = args.luminance
    if args.min_area_ratio is not None:
        cfg.min_area_ratio = args.min_area_ratio
    if args.bezel_width is not None:
        cfg.bezel_width = args.bezel_width
    if args.merge_nearby:
        cfg.merge_nearby = True
    if args.auto_relax:
        cfg.auto_relax = True

    try:
        frame = load_image(args.image)
    except FileNotFoundError as e:
        raise SystemExit(str(e))

    os.makedirs(args.out_dir, exist_ok=True)
    base = os.path.splitext(os.path.basename(args.image))[0]

    regions, log = detect_regions_with_log(frame, cfg)
    print(format_detection_log(log))

    vis = to_bgr(frame, keep_alpha=False)
    if regions:
        for i, r in enumerate(regions):
            fit = extract_corners(r.mask, r.bounds, frame.size, cfg)
            color = (0, 255, 0) if not fit.is_partial else (0, 200, 255)
            draw_quad(vis, fit.corners, color, 2)
            print(f"[dbg] region {i}: bounds={r.bounds.as_tuple()} rotation={np.degrees(fit.rotation):.2f} "
                  f"partial={fit.is_partial} corners={np.round(fit.corners, 1).tolist()}")
        save_image(os.path.join(args.out_dir, f"{base}_fill.png"), fill_regions(frame, regions))
    else:
        cv2.putText(vis, "NO DETECTION - MANUAL MODE", (20, 40),
                    cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 0, 255), 2, cv2.LINE_AA)

    out_viz = os.path.join(args.out_dir, f"{base}_viz.png")
    cv2.imwrite(out_viz, vis)
    print(f"Saved visualization → {out_viz}")

    if args.json:
        out_json = os.path.join(args.out_dir, f"{base}_detect.json")
        with open(out_json, "w") as f:
            json.dump(log.to_dict(), f, indent=2)
        print(f"Saved detection log → {out_json}")


if __name__ == "__main__":
    main()
