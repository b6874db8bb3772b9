from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from gridcalib.core.grid_store import GridStore, SubImageSubset


@dataclass(frozen=True)
class SubImageWindow:
    name: str
    row: int
    col: int
    rows: int
    cols: int
    min_points: int


@dataclass(frozen=True)
class SamplingPolicy:
    """
    Which lookup-grid windows become calibration views.

    The cross pattern places a horizontal band (`minor` rows x `major` cols) and a
    vertical band (`major` rows x `minor` cols) at the grid center, then repeats
    each band shifted along its long side by every value in `offsets`.

    With `corners=True`, four small corner windows are tried first, each with a
    transposed fallback one cell further in.
    """

    major: int = 6
    minor: int = 3
    offsets: tuple[int, ...] = (1, 2, 3)
    min_points: int = 4
    corners: bool = False
    corner_min_points: int = 10

    def cross_windows(self, n_rows: int, n_cols: int) -> Iterator[SubImageWindow]:
        r_last = max(0, n_rows - self.major)
        c_last = max(0, n_cols - self.major)
        r0 = r_last // 2
        c0 = c_last // 2
        n = self.min_points

        yield SubImageWindow("cross-h", r0, c0, self.minor, self.major, n)
        yield SubImageWindow("cross-v", r0, c0, self.major, self.minor, n)
        for k in self.offsets:
            yield SubImageWindow(f"h-{k}", r0, max(0, c0 - k), self.minor, self.major, n)
            yield SubImageWindow(f"h+{k}", r0, min(c_last, c0 + k), self.minor, self.major, n)
            yield SubImageWindow(f"v-{k}", max(0, r0 - k), c0, self.major, self.minor, n)
            yield SubImageWindow(f"v+{k}", min(r_last, r0 + k), c0, self.major, self.minor, n)

    def corner_windows(self, n_rows: int, n_cols: int) -> Iterator[tuple[SubImageWindow, SubImageWindow]]:
        """(primary, fallback) pairs for the four grid corners."""
        d = self.minor
        r_last = max(0, n_rows - d)
        c_last = max(0, n_cols - d)
        n = self.corner_min_points
        anchors = {
            "corner-tl": ((1, 1), (2, 2)),
            "corner-bl": ((r_last - 1, 1), (r_last - 2, 2)),
            "corner-br": ((r_last - 1, c_last - 1), (r_last - 2, c_last - 2)),
            "corner-tr": ((1, c_last - 1), (2, c_last - 2)),
        }
        for name, ((r1, c1), (r2, c2)) in anchors.items():
            yield (
                SubImageWindow(name, max(0, r1), max(0, c1), d, d + 1, n),
                SubImageWindow(f"{name}-alt", max(0, r2), max(0, c2), d + 1, d, n),
            )


def sample_subsets(store: GridStore, policy: SamplingPolicy, z: float = 0.0) -> list[SubImageSubset]:
    """Extract every accepted window of `policy`; rejected windows are dropped."""
    n_rows, n_cols = store.lookup_grid.shape
    subsets: list[SubImageSubset] = []

    if policy.corners:
        for primary, fallback in policy.corner_windows(n_rows, n_cols):
            for win in (primary, fallback):
                s = store.extract_subset(win.row, win.col, win.rows, win.cols, win.min_points, z=z, name=win.name)
                if s is not None:
                    subsets.append(s)
                    break

    for win in policy.cross_windows(n_rows, n_cols):
        s = store.extract_subset(win.row, win.col, win.rows, win.cols, win.min_points, z=z, name=win.name)
        if s is not None:
            subsets.append(s)
    return subsets
