from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import numpy as np

from gridcalib.core.ordering import as_points


DeltaAxis = Literal["x", "y"]


@dataclass(frozen=True)
class SpacingWindow:
    """
    Tolerance window around a nominal one-step spacing.

    The nominal spacing may be negative (walk direction against the axis), so the
    (1 - tol, 1 + tol) factors swap to keep lo <= hi.
    """

    nominal: float
    tolerance: float

    def bounds(self, level: int = 1) -> tuple[float, float]:
        d = float(level) * self.nominal
        hi_f = 1.0 - self.tolerance if self.nominal < 0 else 1.0 + self.tolerance
        lo_f = 1.0 + self.tolerance if self.nominal < 0 else 1.0 - self.tolerance
        return d * lo_f, d * hi_f

    def contains(self, delta: float, level: int = 1) -> bool:
        lo, hi = self.bounds(level)
        return lo <= delta <= hi


@dataclass(frozen=True)
class AxisSpacing:
    axis: DeltaAxis
    median: float
    window: SpacingWindow
    total1: tuple[float, float]
    count1: int
    total2: tuple[float, float]
    count2: int
    separation: float
    grid_scale: float | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def avg1(self) -> tuple[float, float] | None:
        if self.count1 == 0:
            return None
        return (self.total1[0] / self.count1, self.total1[1] / self.count1)

    @property
    def avg2(self) -> tuple[float, float] | None:
        """Mean two-step displacement, halved to one grid cell."""
        if self.count2 == 0:
            return None
        return (self.total2[0] / self.count2 / 2.0, self.total2[1] / self.count2 / 2.0)

    @property
    def pixel_spacing(self) -> float | None:
        """Pixels per grid cell along this axis."""
        if self.grid_scale is None:
            return None
        return self.grid_scale * self.separation

    def to_dict(self) -> dict[str, Any]:
        a = f"d{self.axis}"
        out: dict[str, Any] = {
            f"{a}Median": float(self.median),
            f"{a}Count1": int(self.count1),
            f"{a}Count2": int(self.count2),
        }
        if self.avg1 is not None:
            out[f"{a}dxAvg1"], out[f"{a}dyAvg1"] = self.avg1
        if self.avg2 is not None:
            out[f"{a}dxAvg2"], out[f"{a}dyAvg2"] = self.avg2
        if self.grid_scale is not None:
            out["gridX" if self.axis == "x" else "gridY"] = float(self.grid_scale)
        return out


def axis_index(axis: DeltaAxis) -> int:
    if axis not in ("x", "y"):
        raise ValueError(f"unknown delta axis: {axis}")
    return 0 if axis == "x" else 1


def median_delta(sorted_points: np.ndarray, axis: DeltaAxis) -> float:
    """
    Median of consecutive (prev - cur) deltas along `axis`.

    For an even count this is the upper median (sorted[n // 2]), which always
    picks an actual observed delta.
    """
    pts = as_points(sorted_points)
    if pts.shape[0] < 2:
        raise ValueError("need at least 2 points to estimate spacing")
    k = axis_index(axis)
    deltas = np.sort(pts[:-1, k] - pts[1:, k])
    return float(deltas[deltas.size // 2])


def step_mask(sorted_points: np.ndarray, window: SpacingWindow, axis: DeltaAxis, level: int = 1) -> np.ndarray:
    """Mask over pairs `level` apart: True where (prev - cur) is inside the `level`-step window."""
    pts = as_points(sorted_points)
    k = axis_index(axis)
    if pts.shape[0] <= level:
        return np.zeros(0, dtype=bool)
    deltas = pts[:-level, k] - pts[level:, k]
    return np.array([window.contains(float(d), level=level) for d in deltas], dtype=bool)


def estimate_spacing(
    sorted_points: np.ndarray,
    axis: DeltaAxis,
    tolerance: float,
    separation: float,
) -> AxisSpacing:
    """
    Estimate the grid spacing along one axis from points sorted so that grid
    neighbours along `axis` are mostly adjacent.

    Adjacent pairs inside the one-step window and pairs two apart inside the
    two-step window are averaged separately. The two-step average (halved) divided
    by the physical `separation` gives the grid scale (pixels per physical unit).
    """
    if separation <= 0:
        raise ValueError("separation must be > 0")
    pts = as_points(sorted_points)
    median = median_delta(pts, axis)
    window = SpacingWindow(nominal=median, tolerance=float(tolerance))

    d1 = pts[:-1] - pts[1:]
    in1 = step_mask(pts, window, axis, level=1)
    d2 = pts[:-2] - pts[2:]
    in2 = step_mask(pts, window, axis, level=2)

    total1 = d1[in1].sum(axis=0) if in1.any() else np.zeros(2)
    total2 = d2[in2].sum(axis=0) if in2.any() else np.zeros(2)
    count1 = int(in1.sum())
    count2 = int(in2.sum())

    error = None
    grid_scale = None
    if count1 == 0:
        error = f"No grid points matched within tolerance (level 1) d{axis}Count1:0"
    elif count2 == 0:
        error = f"No grid points matched within tolerance (level 2) d{axis}Count2:0"
    else:
        avg2 = total2 / count2 / 2.0
        grid_scale = float(np.hypot(avg2[0], avg2[1])) / float(separation)

    return AxisSpacing(
        axis=axis,
        median=median,
        window=window,
        total1=(float(total1[0]), float(total1[1])),
        count1=count1,
        total2=(float(total2[0]), float(total2[1])),
        count2=count2,
        separation=float(separation),
        grid_scale=grid_scale,
        error=error,
    )
