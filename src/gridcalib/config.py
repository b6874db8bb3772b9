from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gridcalib.core.sampling import SamplingPolicy


class StageConfigError(ValueError):
    pass


@dataclass(frozen=True)
class MatchGridConfig:
    model: str
    sep_x: float = 5.0
    sep_y: float = 5.0
    tolerance: float = 0.35
    obj_z: float = 0.0
    sort_quantum: float = 1.0
    timeout_s: float | None = None
    rvecs_tvecs: bool = False
    sampling: SamplingPolicy = SamplingPolicy()


@dataclass(frozen=True)
class UndistortConfig:
    model: str
    camera_matrix: tuple[float, ...] | None = None
    dist_coeffs: tuple[float, ...] | None = None


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise StageConfigError(msg)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _is_int(v: Any) -> bool:
    return _is_number(v) and float(v).is_integer()


def load_stage(path: Path) -> dict[str, Any]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    _require(isinstance(data, dict), f"{path} must hold a JSON object")
    return data


def _int_field(data: dict[str, Any], key: str, default: int, prefix: str = "") -> int:
    v = data.get(key, default)
    _require(_is_int(v), f"{prefix}{key} must be an integer")
    return int(v)


def _bool_field(data: dict[str, Any], key: str, default: bool, prefix: str = "") -> bool:
    v = data.get(key, default)
    _require(isinstance(v, bool), f"{prefix}{key} must be true or false")
    return v


def parse_sampling_policy(data: dict[str, Any]) -> SamplingPolicy:
    _require(isinstance(data, dict), "sampling must be an object")
    defaults = SamplingPolicy()

    major = _int_field(data, "major", defaults.major, "sampling.")
    minor = _int_field(data, "minor", defaults.minor, "sampling.")
    _require(major >= 1 and minor >= 1, "sampling.major and sampling.minor must be >= 1")

    offsets = data.get("offsets", list(defaults.offsets))
    _require(
        isinstance(offsets, (list, tuple)) and all(_is_int(k) for k in offsets),
        "sampling.offsets must be a list of integers",
    )
    offsets_t = tuple(int(k) for k in offsets)
    _require(all(k > 0 for k in offsets_t), "sampling.offsets must be > 0")

    min_points = _int_field(data, "minPoints", defaults.min_points, "sampling.")
    _require(min_points >= 1, "sampling.minPoints must be >= 1")
    corner_min_points = _int_field(data, "cornerMinPoints", defaults.corner_min_points, "sampling.")
    _require(corner_min_points >= 1, "sampling.cornerMinPoints must be >= 1")

    return SamplingPolicy(
        major=major,
        minor=minor,
        offsets=offsets_t,
        min_points=min_points,
        corners=_bool_field(data, "corners", defaults.corners, "sampling."),
        corner_min_points=corner_min_points,
    )


def parse_match_grid_stage(stage: dict[str, Any]) -> MatchGridConfig:
    model = stage.get("model", "")
    _require(isinstance(model, str) and model != "", "matchGrid model: expected name of stage with rects")

    for key in ("sepX", "sepY", "tolerance", "objZ", "sortQuantum"):
        if key in stage:
            _require(_is_number(stage[key]), f"{key} must be a number")

    sep_x = float(stage.get("sepX", 5.0))
    sep_y = float(stage.get("sepY", 5.0))
    _require(sep_x > 0.0 and sep_y > 0.0, "sepX and sepY must be > 0")

    tolerance = float(stage.get("tolerance", 0.35))
    _require(0.0 < tolerance < 1.0, "tolerance must be in (0, 1)")

    sort_quantum = float(stage.get("sortQuantum", 1.0))
    _require(sort_quantum >= 0.0, "sortQuantum must be >= 0")

    timeout = stage.get("timeout")
    if timeout is not None:
        _require(_is_number(timeout) and float(timeout) > 0.0, "timeout must be a positive number of seconds")
        timeout = float(timeout)

    return MatchGridConfig(
        model=model,
        sep_x=sep_x,
        sep_y=sep_y,
        tolerance=tolerance,
        obj_z=float(stage.get("objZ", 0.0)),
        sort_quantum=sort_quantum,
        timeout_s=timeout,
        rvecs_tvecs=_bool_field(stage, "rvecsTvecs", False),
        sampling=parse_sampling_policy(stage.get("sampling", {})),
    )


def parse_undistort_stage(stage: dict[str, Any]) -> UndistortConfig:
    model = stage.get("model", "")
    _require(isinstance(model, str), "undistort model must be a stage name")

    def _vector(key: str) -> tuple[float, ...] | None:
        raw = stage.get(key)
        if raw is None:
            return None
        _require(isinstance(raw, (list, tuple)) and all(_is_number(v) for v in raw), f"{key} must be a list of numbers")
        return tuple(float(v) for v in raw)

    return UndistortConfig(model=model, camera_matrix=_vector("cameraMatrix"), dist_coeffs=_vector("distCoeffs"))
