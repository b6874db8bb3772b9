from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Literal

import numpy as np


Axis = Literal["xy", "yx"]


def as_points(points: Iterable[Iterable[float]] | np.ndarray) -> np.ndarray:
    """Validate and return an (N,2) float64 array of image points."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"expected (N,2) points, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("points must not contain NaN or infinite coordinates")
    return arr


@dataclass(frozen=True)
class PointOrder:
    """
    Order over 2-D points used to walk a detected grid along rows or columns.

    `axis="xy"` compares x first, then y; `axis="yx"` compares y first, then x.
    `key`/`less` give the exact lexicographic order, a strict total order over
    distinct points.

    With `quantum > 0`, `sort` first clusters the primary coordinate: points are
    taken in primary order and a new cluster starts wherever the gap to the
    previous point exceeds `quantum`. Inside a cluster points are ordered by the
    secondary coordinate, then by the raw primary. A jittered column (or row)
    therefore walks in secondary order wherever it sits in the image.
    """

    axis: Axis = "xy"
    quantum: float = 0.0

    def __post_init__(self) -> None:
        if self.axis not in ("xy", "yx"):
            raise ValueError(f"unknown axis: {self.axis}")
        if not (self.quantum >= 0.0):
            raise ValueError("quantum must be >= 0")

    @property
    def primary(self) -> int:
        return 0 if self.axis == "xy" else 1

    @property
    def secondary(self) -> int:
        return 1 - self.primary

    def key(self, p) -> tuple[float, float]:
        a = float(p[self.primary])
        b = float(p[self.secondary])
        if math.isnan(a) or math.isnan(b):
            raise ValueError("cannot order a point with NaN coordinates")
        return (a, b)

    def less(self, lhs, rhs) -> bool:
        return self.key(lhs) < self.key(rhs)

    def clusters(self, points) -> np.ndarray:
        """Primary-axis cluster id of each point, numbered from 0 in primary order."""
        pts = as_points(points)
        n = pts.shape[0]
        if n == 0:
            return np.zeros(0, dtype=np.intp)
        a = pts[:, self.primary]
        by_primary = np.argsort(a, kind="stable")
        breaks = np.diff(a[by_primary]) > self.quantum
        ids = np.empty(n, dtype=np.intp)
        ids[by_primary] = np.concatenate(([0], np.cumsum(breaks)))
        return ids

    def sort(self, points) -> np.ndarray:
        pts = as_points(points)
        if pts.shape[0] == 0:
            return pts.copy()
        # np.lexsort sorts by the last key first.
        order = np.lexsort((pts[:, self.primary], pts[:, self.secondary], self.clusters(pts)))
        return pts[order]


Y_MAJOR = PointOrder("yx")
