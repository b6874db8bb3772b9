from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from loguru import logger

from gridcalib.core.grid_store import GridStore
from gridcalib.core.ordering import PointOrder, as_points
from gridcalib.core.spacing import AxisSpacing, DeltaAxis, SpacingWindow, estimate_spacing, step_mask


def round_half_away(v: float) -> int:
    return int(v + 0.5) if v >= 0 else int(v - 0.5)


def grid_delta(cur, prev, img_sep: tuple[float, float]) -> tuple[int, int, int]:
    """Integer grid step (dcol, drow, 0) between two image points."""
    dcol = (float(cur[0]) - float(prev[0])) / img_sep[0]
    drow = (float(cur[1]) - float(prev[1])) / img_sep[1]
    return (round_half_away(dcol), round_half_away(drow), 0)


def seed_coordinate(point, img_sep: tuple[float, float]) -> tuple[int, int, int]:
    return (round_half_away(float(point[0]) / img_sep[0]), round_half_away(float(point[1]) / img_sep[1]), 0)


class CorrespondenceBuilder:
    """
    Chains neighbouring points into integer grid coordinates.

    The walk state (last chained image point and its grid coordinate) is kept
    across calls to `walk`, so a second pass over a different ordering continues
    from where the first left off instead of re-seeding.

    Points already in the store keep their first coordinate. If a later pass
    derives a different one, the conflict is logged and counted and the running
    coordinate re-syncs to the stored value.
    """

    def __init__(self, store: GridStore, img_sep: tuple[float, float]) -> None:
        self.store = store
        self.img_sep = (float(img_sep[0]), float(img_sep[1]))
        self.anchor: tuple[float, float] | None = None
        self.coord: tuple[int, int, int] | None = None
        self.conflicts = 0

    def _step_to(self, point) -> None:
        p = (float(point[0]), float(point[1]))
        if self.anchor is None or self.coord is None:
            coord = seed_coordinate(p, self.img_sep)
        else:
            d = grid_delta(p, self.anchor, self.img_sep)
            coord = (self.coord[0] + d[0], self.coord[1] + d[1], 0)
        self.anchor = p
        self.coord = self._record(p, coord)

    def _record(self, p: tuple[float, float], coord: tuple[int, int, int]) -> tuple[int, int, int]:
        """Store `coord` for `p`; returns the coordinate the walk continues from."""
        if self.store.add(p, coord):
            logger.debug(f"grid {p} => {coord}")
            return coord
        stored = self.store.object_points[self.store.index_of(p)]
        if stored != coord:
            self.conflicts += 1
            logger.warning(f"grid coordinate conflict at {p}: kept {stored}, derived {coord}")
        return stored

    def walk(self, sorted_points: np.ndarray, axis: DeltaAxis, window: SpacingWindow) -> int:
        """Walk one ordering; returns the number of points newly added to the store."""
        pts = as_points(sorted_points)
        inside = step_mask(pts, window, axis)
        before = self.store.size()
        for i in range(1, pts.shape[0]):
            prev = pts[i - 1]
            cur = pts[i]
            if not inside[i - 1]:
                logger.debug(f"walk d{axis} skip {tuple(prev)} -> {tuple(cur)}")
                continue
            if self.anchor != (float(prev[0]), float(prev[1])):
                self._step_to(prev)
            self._step_to(cur)
        return self.store.size() - before


@dataclass(frozen=True)
class GridMatch:
    columns: AxisSpacing
    rows: AxisSpacing
    store: GridStore | None = None
    img_sep: tuple[float, float] | None = None
    conflicts: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.store is not None

    def diagnostics(self) -> dict[str, object]:
        out: dict[str, object] = {}
        out.update(self.columns.to_dict())
        out.update(self.rows.to_dict())
        out["conflicts"] = int(self.conflicts)
        return out


def match_grid_points(
    points,
    image_size: tuple[int, int],
    tolerance: float = 0.35,
    sep: tuple[float, float] = (5.0, 5.0),
    sort_quantum: float = 1.0,
) -> GridMatch:
    """
    Assign grid coordinates to raw detected points.

    Columns are estimated on the y-major ordering (x deltas), rows on the x-major
    ordering (y deltas). Both orderings are then walked into one store.
    """
    pts = as_points(points)
    if pts.shape[0] < 2:
        raise ValueError("Expected at least 2 points to match")

    order_xy = PointOrder("xy", sort_quantum)
    order_yx = PointOrder("yx", sort_quantum)
    points_xy = order_xy.sort(pts)
    points_yx = order_yx.sort(pts)

    columns = estimate_spacing(points_yx, "x", tolerance, sep[0])
    rows = estimate_spacing(points_xy, "y", tolerance, sep[1])
    errors = [s.error for s in (columns, rows) if s.error]
    if errors:
        return GridMatch(columns=columns, rows=rows, error="; ".join(errors))

    img_sep = (float(columns.pixel_spacing), float(rows.pixel_spacing))
    if not (img_sep[0] > 0 and img_sep[1] > 0):
        return GridMatch(columns=columns, rows=rows, error=f"Degenerate grid spacing imgSep:{img_sep}")
    logger.debug(f"columns median={columns.median} rows median={rows.median} imgSep={img_sep}")

    store = GridStore(image_size, img_sep, sep)
    builder = CorrespondenceBuilder(store, img_sep)
    builder.walk(points_yx, "x", columns.window)
    builder.walk(points_xy, "y", rows.window)
    logger.info(f"matched {store.size()} of {pts.shape[0]} points, {builder.conflicts} conflicts")
    return GridMatch(columns=columns, rows=rows, store=store, img_sep=img_sep, conflicts=builder.conflicts)
