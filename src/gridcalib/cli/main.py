from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from loguru import logger

from gridcalib.api.stage import apply_match_grid, apply_undistort
from gridcalib.config import load_stage
from gridcalib.core.image_io import load_image, save_image


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="gridcalib")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-point matching traces.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    match = sub.add_parser(
        "match-grid",
        help="Match detected rects to a regular grid and calibrate the camera from sub-image views.",
    )
    match.add_argument("model_json", type=Path, help="Pipeline model JSON holding the upstream stage with rects.")
    match.add_argument("--stage-model", required=True, help="Name of the upstream stage with rects.")
    match.add_argument("--width", type=int, required=True, help="Image width (px).")
    match.add_argument("--height", type=int, required=True, help="Image height (px).")
    match.add_argument("--sep-x", type=float, default=5.0, help="Physical grid spacing along x.")
    match.add_argument("--sep-y", type=float, default=5.0, help="Physical grid spacing along y.")
    match.add_argument("--tolerance", type=float, default=0.35, help="Spacing tolerance fraction.")
    match.add_argument("--obj-z", type=float, default=0.0)
    match.add_argument("--sort-quantum", type=float, default=1.0, help="Largest primary-axis gap (px) inside one row or column when sorting.")
    match.add_argument("--timeout", type=float, default=None, help="Solver timeout in seconds.")
    match.add_argument("--poses", action="store_true", help="Also publish per-view rvecs/tvecs.")
    match.add_argument("--out", type=Path, default=Path("match_grid.json"))

    und = sub.add_parser("undistort", help="Undistort an image with a published calibration.")
    und.add_argument("image", type=Path)
    und.add_argument("--calibration", type=Path, required=True, help="JSON written by match-grid.")
    und.add_argument("--out", type=Path, required=True)

    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    if args.cmd == "match-grid":
        stage = {
            "model": args.stage_model,
            "sepX": args.sep_x,
            "sepY": args.sep_y,
            "tolerance": args.tolerance,
            "objZ": args.obj_z,
            "sortQuantum": args.sort_quantum,
            "rvecsTvecs": args.poses,
        }
        if args.timeout is not None:
            stage["timeout"] = args.timeout
        result = apply_match_grid(stage, load_stage(args.model_json), (args.width, args.height))
        out = dict(result.model)
        if not result.ok:
            out["error"] = result.message
            print(f"matchGrid failed: {result.message}", file=sys.stderr)
        args.out.write_text(json.dumps(out, indent=2, sort_keys=True), encoding="utf-8")
        print(f"Wrote {args.out}")
        return 0 if result.ok else 1

    if args.cmd == "undistort":
        calibration = load_stage(args.calibration)
        result = apply_undistort({"model": "calibration"}, {"calibration": calibration}, load_image(args.image))
        if not result.ok or result.image is None:
            print(f"undistort failed: {result.message}", file=sys.stderr)
            return 1
        save_image(args.out, result.image)
        print(f"Wrote {args.out}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
