from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from loguru import logger

from gridcalib.core.ordering import PointOrder, Y_MAJOR


EMPTY = -1


class EmptyGridError(ValueError):
    pass


class GridBoundsError(IndexError):
    pass


@dataclass(frozen=True)
class SubImageSubset:
    """
    One calibration view: a window over the lookup grid.

    `object_points` are (N,3) physical coordinates relative to the window center,
    `image_points` are (N,2) pixels, both in the same order.
    """

    name: str
    row: int
    col: int
    rows: int
    cols: int
    object_points: np.ndarray
    image_points: np.ndarray

    def __len__(self) -> int:
        return int(self.image_points.shape[0])


class GridStore:
    """
    Deduplicated (image point, grid coordinate) correspondences plus a dense
    lookup grid from grid coordinate (row, col) to correspondence id.

    `image_size` is (width, height) in pixels, `img_sep` the pixel spacing of one
    grid cell (x, y) and `obj_sep` the physical spacing (x, y).
    """

    def __init__(
        self,
        image_size: tuple[int, int],
        img_sep: tuple[float, float],
        obj_sep: tuple[float, float],
        order: PointOrder = Y_MAJOR,
    ) -> None:
        if img_sep[0] <= 0 or img_sep[1] <= 0:
            raise ValueError(f"img_sep must be > 0, got {img_sep}")
        self.image_size = (int(image_size[0]), int(image_size[1]))
        self.img_sep = (float(img_sep[0]), float(img_sep[1]))
        self.obj_sep = (float(obj_sep[0]), float(obj_sep[1]))
        self._order = order
        self.image_points: list[tuple[float, float]] = []
        self.object_points: list[tuple[int, int, int]] = []
        self._index: dict[tuple[float, float], int] = {}
        self._img_totals = np.zeros(2, dtype=np.float64)
        self._obj_totals = np.zeros(3, dtype=np.float64)
        self._lookup: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self.image_points)

    def size(self) -> int:
        return len(self.image_points)

    def index_of(self, point) -> int | None:
        return self._index.get(self._order.key(point))

    def __contains__(self, point) -> bool:
        return self.index_of(point) is not None

    def add(self, point, grid) -> bool:
        key = self._order.key(point)
        if key in self._index:
            return False
        p = (float(point[0]), float(point[1]))
        g = (int(grid[0]), int(grid[1]), int(grid[2]) if len(grid) > 2 else 0)
        self._index[key] = len(self.image_points)
        self.image_points.append(p)
        self.object_points.append(g)
        self._img_totals += p
        self._obj_totals += g
        self._lookup = None
        return True

    def image_centroid(self) -> tuple[float, float]:
        n = self.size()
        if n == 0:
            raise EmptyGridError("image centroid of an empty grid store")
        return (float(self._img_totals[0] / n), float(self._img_totals[1] / n))

    def object_centroid(self) -> tuple[float, float, float]:
        n = self.size()
        if n == 0:
            raise EmptyGridError("object centroid of an empty grid store")
        c = self._obj_totals / n
        return (float(c[0]), float(c[1]), float(c[2]))

    def object_points_centered(self, obj_z: float = 0.0) -> np.ndarray:
        """Physical (N,3) object coordinates relative to the object centroid."""
        cx, cy, _cz = self.object_centroid()
        obj = np.asarray(self.object_points, dtype=np.float64).reshape(-1, 3)
        out = np.empty_like(obj)
        out[:, 0] = self.obj_sep[0] * (obj[:, 0] - cx)
        out[:, 1] = self.obj_sep[1] * (obj[:, 1] - cy)
        out[:, 2] = float(obj_z)
        return out

    def lookup_shape(self) -> tuple[int, int]:
        w, h = self.image_size
        ny = int(h / self.img_sep[1] + 1.5)
        nx = int(w / self.img_sep[0] + 1.5)
        return ny, nx

    def build_lookup_grid(self) -> np.ndarray:
        ny, nx = self.lookup_shape()
        grid = np.full((ny, nx), EMPTY, dtype=np.int32)
        logger.debug(f"lookup grid rows={ny} cols={nx} points={self.size()}")
        for i, (c, r, _z) in enumerate(self.object_points):
            if not (0 <= r < ny and 0 <= c < nx):
                raise GridBoundsError(
                    f"grid coordinate (row={r}, col={c}) of point {self.image_points[i]} "
                    f"outside lookup grid {ny}x{nx}"
                )
            grid[r, c] = i
        self._lookup = grid
        return grid

    @property
    def lookup_grid(self) -> np.ndarray:
        if self._lookup is None:
            return self.build_lookup_grid()
        return self._lookup

    def extract_subset(
        self,
        row: int,
        col: int,
        rows: int,
        cols: int,
        min_points: int,
        z: float = 0.0,
        name: str = "",
    ) -> SubImageSubset | None:
        grid = self.lookup_grid
        ny, nx = grid.shape
        cy = (rows - 1) / 2.0
        cx = (cols - 1) / 2.0

        obj_pts: list[tuple[float, float, float]] = []
        img_pts: list[tuple[float, float]] = []
        for r in range(rows):
            gr = r + row
            if not 0 <= gr < ny:
                continue
            for c in range(cols):
                gc = c + col
                if not 0 <= gc < nx:
                    continue
                index = int(grid[gr, gc])
                if index == EMPTY:
                    continue
                obj_pts.append((self.obj_sep[0] * (c - cx), self.obj_sep[1] * (r - cy), float(z)))
                img_pts.append(self.image_points[index])

        if len(img_pts) < min_points:
            logger.debug(f"subset {name or ''}({row},{col},{rows}x{cols}) REJECT: {len(img_pts)} < {min_points}")
            return None
        logger.debug(f"subset {name or ''}({row},{col},{rows}x{cols}) ADD: {len(img_pts)}")
        return SubImageSubset(
            name=name,
            row=int(row),
            col=int(col),
            rows=int(rows),
            cols=int(cols),
            object_points=np.asarray(obj_pts, dtype=np.float32).reshape(-1, 3),
            image_points=np.asarray(img_pts, dtype=np.float32).reshape(-1, 2),
        )
