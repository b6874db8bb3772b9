from __future__ import annotations

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np
from loguru import logger

from gridcalib.core.grid_store import GridStore, SubImageSubset
from gridcalib.core.sampling import SamplingPolicy, sample_subsets


@dataclass(frozen=True)
class SolverOutput:
    rms_error: float
    camera_matrix: np.ndarray  # (3,3)
    dist_coeffs: np.ndarray  # (4|5|8,)
    rvecs: list[np.ndarray] = field(default_factory=list)
    tvecs: list[np.ndarray] = field(default_factory=list)


Solver = Callable[[list[np.ndarray], list[np.ndarray], tuple[int, int]], SolverOutput]


def opencv_solver(
    object_points: list[np.ndarray],
    image_points: list[np.ndarray],
    image_size: tuple[int, int],
) -> SolverOutput:
    """Single-camera calibration with OpenCV from several planar views."""
    import cv2  # type: ignore

    if len(object_points) == 0:
        raise ValueError("calibrateCamera needs at least one view")
    obj = [np.asarray(o, dtype=np.float32).reshape(-1, 3) for o in object_points]
    img = [np.asarray(i, dtype=np.float32).reshape(-1, 2) for i in image_points]
    w, h = int(image_size[0]), int(image_size[1])
    rms, K, dist, rvecs, tvecs = cv2.calibrateCamera(obj, img, (w, h), None, None)
    return SolverOutput(
        rms_error=float(rms),
        camera_matrix=np.asarray(K, dtype=np.float64).reshape(3, 3),
        dist_coeffs=np.asarray(dist, dtype=np.float64).reshape(-1),
        rvecs=[np.asarray(r, dtype=np.float64).reshape(3) for r in rvecs],
        tvecs=[np.asarray(t, dtype=np.float64).reshape(3) for t in tvecs],
    )


@dataclass(frozen=True)
class CalibrationResult:
    images: int
    camera_matrix: np.ndarray | None = None
    dist_coeffs: np.ndarray | None = None
    rms_error: float | None = None
    rvecs: list[np.ndarray] = field(default_factory=list)
    tvecs: list[np.ndarray] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self, include_poses: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {"images": int(self.images)}
        if self.camera_matrix is not None:
            out["cameraMatrix"] = [float(v) for v in np.asarray(self.camera_matrix).reshape(-1)]
        if self.dist_coeffs is not None:
            out["distCoeffs"] = [float(v) for v in np.asarray(self.dist_coeffs).reshape(-1)]
        if self.rms_error is not None:
            out["rmserror"] = float(self.rms_error)
        if include_poses and self.ok:
            out["rvecs"] = [[float(v) for v in r.reshape(-1)] for r in self.rvecs]
            out["tvecs"] = [[float(v) for v in t.reshape(-1)] for t in self.tvecs]
        if self.error is not None:
            out["error"] = self.error
        return out


def _run_solver(
    solver: Solver,
    subsets: list[SubImageSubset],
    image_size: tuple[int, int],
    timeout_s: float | None,
) -> SolverOutput:
    obj = [s.object_points for s in subsets]
    img = [s.image_points for s in subsets]
    if timeout_s is None:
        return solver(obj, img, image_size)

    # Daemon thread so an abandoned solve does not block interpreter exit.
    future: Future[SolverOutput] = Future()

    def _target() -> None:
        try:
            future.set_result(solver(obj, img, image_size))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=_target, name="gridcalib-solver", daemon=True).start()
    try:
        return future.result(timeout=timeout_s)
    except FuturesTimeout as e:
        raise TimeoutError(f"solver did not finish within {timeout_s:g}s") from e


def calibrate_grid(
    store: GridStore,
    image_size: tuple[int, int],
    policy: SamplingPolicy | None = None,
    solver: Solver | None = None,
    timeout_s: float | None = None,
    z: float = 0.0,
) -> CalibrationResult:
    """
    Sample calibration views from `store` and hand them to `solver`.

    The solver is called even when no window was accepted; its failure (or any
    other solver exception) is reported in `CalibrationResult.error`.
    """
    policy = policy or SamplingPolicy()
    solver = solver or opencv_solver

    subsets = sample_subsets(store, policy, z=z)
    logger.info(f"calibrating with {len(subsets)} sub-image views")
    try:
        out = _run_solver(solver, subsets, image_size, timeout_s)
    except Exception as e:
        msg = str(e).strip() or type(e).__name__
        logger.warning(f"calibration failed: {msg}")
        return CalibrationResult(images=len(subsets), error=f"calibrateImage(FAILED) {msg}")

    logger.info(f"calibrateCamera => rms {out.rms_error:.4f}")
    return CalibrationResult(
        images=len(subsets),
        camera_matrix=np.asarray(out.camera_matrix, dtype=np.float64).reshape(3, 3),
        dist_coeffs=np.asarray(out.dist_coeffs, dtype=np.float64).reshape(-1),
        rms_error=float(out.rms_error),
        rvecs=list(out.rvecs),
        tvecs=list(out.tvecs),
    )
