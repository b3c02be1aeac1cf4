#!/usr/bin/env python3
from __future__ import annotations
import argparse, json, os

from screenfit.core.config import CompositeConfig, DetectionConfig, load_config
from screenfit.core.contracts import FitMode
from screenfit.io.ingest import load_image, save_image
from screenfit.render.composite import Quality
from screenfit.session.edit import RegionEditSession


def _parse_seed(s: str):
    x, y = s.split(",")
    return float(x), float(y)


def main():
    ap = argparse.ArgumentParser(description="Put screenshots into the screens of a mockup frame.")
    ap.add_argument("frame", help="Mockup frame image.")
    ap.add_argument("images", nargs="+", help="One image per screen, in detection order.")
    ap.add_argument("--out", default=None, help="Output PNG. Default: tests/output/<frame>_mockup.png")
    ap.add_argument("--config", default=None, help="YAML config with detection/composite sections.")
    ap.add_argument("--fit", choices=[m.value for m in FitMode], default=FitMode.COVER.value)
    ap.add_argument("--seed", action="append", default=[],
                    help='Manual seed "x,y" (repeatable). Used when auto detection finds nothing.')
    ap.add_argument("--corners", default=None,
                    help="JSON file {region_index: [[x,y]*4]} overriding detected corners.")
    ap.add_argument("--preview", action="store_true", help="Preview quality (single sample, debug overlay if configured).")
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args()

    det_cfg, comp_cfg = load_config(args.config) if args.config else (DetectionConfig(), CompositeConfig())
    if args.debug:
        det_cfg.debug = True
        comp_cfg.debug = True

    frame = load_image(args.frame)
    session = RegionEditSession(frame, det_cfg, comp_cfg, template_name=os.path.basename(args.frame))
    session.detect()
    if session.manual_mode:
        print("[compose] auto detection found nothing → manual seeds")
        for s in args.seed:
            rid = session.add_region_at(_parse_seed(s))
            print(f"[compose] seed {s} → region {rid}")

    ids = sorted(session.regions)
    if not ids:
        raise SystemExit("No screen regions; pass --seed x,y to mark them by hand.")

    if args.corners:
        with open(args.corners, "r") as f:
            overrides = json.load(f)
        for key, pts in overrides.items():
            rid = ids[int(key)]
            session.select_region(rid)
            session.begin_corner_edit()
            for i, p in enumerate(pts):
                session.drag_corner(i, p)
            session.confirm_corner_edit()

    for rid, path in zip(ids, args.images):
        session.set_user_image(rid, load_image(path), FitMode(args.fit))
    if len(args.images) > len(ids):
        print(f"[compose] {len(args.images) - len(ids)} image(s) left over; only {len(ids)} screen(s) found")

    quality = Quality.PREVIEW if args.preview else Quality.EXPORT
    out = args.out or os.path.join("tests/output",
                                   f"{os.path.splitext(os.path.basename(args.frame))[0]}_mockup.png")
    os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
    save_image(out, session.composite(quality))
    print(f"Saved mockup → {out}")


if __name__ == "__main__":
    main()
