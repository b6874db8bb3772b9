from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from loguru import logger

from gridcalib.api.calibrate import Solver, calibrate_grid
from gridcalib.config import StageConfigError, parse_match_grid_stage, parse_undistort_stage
from gridcalib.core.correspondence import match_grid_points
from gridcalib.core.grid_store import GridBoundsError
from gridcalib.core.image_io import image_size as _image_size
from gridcalib.core.ordering import as_points


@dataclass
class StageResult:
    """
    Outcome of one pipeline stage.

    `model` is the stage's published JSON object; `errors` are descriptive
    failure strings (empty on success).
    """

    model: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    image: np.ndarray | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        return "; ".join(self.errors)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def rect_points(rects: list[Any]) -> np.ndarray:
    """Centers of rect records that carry numeric x and y."""
    pts = [
        (float(r["x"]), float(r["y"]))
        for r in rects
        if isinstance(r, dict) and _is_number(r.get("x")) and _is_number(r.get("y"))
    ]
    return as_points(pts)


def apply_match_grid(
    stage: dict[str, Any],
    model: dict[str, Any],
    image_size: tuple[int, int],
    solver: Solver | None = None,
) -> StageResult:
    """
    Match detected rects from the upstream stage named by `stage["model"]` to a
    regular grid and calibrate the camera from sub-image views of that grid.
    """
    result = StageResult()
    try:
        cfg = parse_match_grid_stage(stage)
    except StageConfigError as e:
        result.errors.append(str(e))
        return result

    rects_model = model.get(cfg.model)
    if not isinstance(rects_model, dict):
        result.errors.append(f"Named stage is not in model: {cfg.model}")
        return result
    rects = rects_model.get("rects")
    if not isinstance(rects, list):
        result.errors.append("Expected array of rects to match")
        return result
    if len(rects) < 2:
        result.errors.append("Expected array of at least 2 rects to match")
        return result

    try:
        points = rect_points(rects)
        if points.shape[0] < 2:
            raise ValueError("Expected at least 2 rects with numeric x and y")
        match = match_grid_points(
            points,
            image_size=image_size,
            tolerance=cfg.tolerance,
            sep=(cfg.sep_x, cfg.sep_y),
            sort_quantum=cfg.sort_quantum,
        )
    except ValueError as e:
        result.errors.append(str(e))
        return result

    result.model.update(match.diagnostics())
    if not match.ok:
        result.errors.append(str(match.error))
        return result

    store = match.store
    centered = store.object_points_centered(cfg.obj_z)
    result.model["rects"] = [
        {"x": x, "y": y, "objX": float(o[0]), "objY": float(o[1]), "objZ": float(o[2])}
        for (x, y), o in zip(store.image_points, centered, strict=True)
    ]

    try:
        cal = calibrate_grid(
            store,
            image_size,
            policy=cfg.sampling,
            solver=solver,
            timeout_s=cfg.timeout_s,
        )
    except GridBoundsError as e:
        result.errors.append(f"Grid coordinate out of bounds: {e}")
        return result

    result.model["calibrate"] = cal.to_dict(include_poses=cfg.rvecs_tvecs)
    if cal.error:
        result.errors.append(cal.error)
    logger.info(f"matchGrid: {store.size()} points, {cal.images} views, ok={result.ok}")
    return result


def apply_undistort(stage: dict[str, Any], model: dict[str, Any], image: np.ndarray) -> StageResult:
    """
    Undistort `image` with the camera matrix and distortion coefficients published
    by the calibration stage named in `stage["model"]`, or given on the stage itself.
    """
    import cv2  # type: ignore

    result = StageResult()
    w, h = _image_size(image)
    try:
        cfg = parse_undistort_stage(stage)
        if cfg.model and isinstance(model.get(cfg.model), dict):
            calibrate = model[cfg.model].get("calibrate")
            if not isinstance(calibrate, dict):
                raise StageConfigError(f'Expected "calibrate" JSON object in stage "{cfg.model}"')
            cfg = parse_undistort_stage({"model": cfg.model, **calibrate})
    except StageConfigError as e:
        result.errors.append(str(e))
        return result

    cm = cfg.camera_matrix if cfg.camera_matrix is not None else (1.0, 0.0, w / 2.0, 0.0, 1.0, h / 2.0, 0.0, 0.0, 1.0)
    dc = cfg.dist_coeffs if cfg.dist_coeffs is not None else (0.0, 0.0, 0.0, 0.0)
    if len(cm) != 9:
        result.errors.append("expected cameraMatrix: [v11,v12,v13,v21,v22,v23,v31,v32,v33]")
    if len(dc) not in (4, 5, 8):
        result.errors.append("expected distCoeffs of 4, 5, or 8 elements")
    if result.errors:
        return result

    K = np.asarray(cm, dtype=np.float64).reshape(3, 3)
    dist = np.asarray(dc, dtype=np.float64).reshape(-1)
    try:
        result.image = cv2.undistort(image, K, dist)
    except cv2.error as e:
        result.errors.append(f"undistort failed: {e}")
    return result
