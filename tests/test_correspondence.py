from __future__ import annotations

import numpy as np
import pytest

from gridcalib.core.correspondence import (
    CorrespondenceBuilder,
    grid_delta,
    match_grid_points,
    round_half_away,
)
from gridcalib.core.grid_store import GridStore
from gridcalib.core.ordering import PointOrder
from gridcalib.core.spacing import SpacingWindow


def _grid(nx: int, ny: int, step: float, origin: tuple[float, float] = (10.0, 10.0)) -> np.ndarray:
    xs = origin[0] + step * np.arange(nx)
    ys = origin[1] + step * np.arange(ny)
    xx, yy = np.meshgrid(xs, ys)
    return np.stack([xx.ravel(), yy.ravel()], axis=1)


def _coords(store: GridStore) -> dict[tuple[float, float], tuple[int, int]]:
    return {p: (g[0], g[1]) for p, g in zip(store.image_points, store.object_points, strict=True)}


def test_round_half_away_from_zero():
    assert round_half_away(0.5) == 1
    assert round_half_away(-0.5) == -1
    assert round_half_away(1.49) == 1
    assert round_half_away(-1.5) == -2
    assert round_half_away(-0.2) == 0


def test_grid_delta_rounds_each_axis():
    assert grid_delta((31.0, 9.0), (10.0, 10.0), (10.0, 10.0)) == (2, 0, 0)
    assert grid_delta((0.0, 36.0), (20.0, 10.0), (10.0, 10.0)) == (-2, 3, 0)


def test_three_by_three_grid_gets_unit_lattice():
    pts = _grid(3, 3, step=10.0)
    match = match_grid_points(pts, image_size=(40, 40), tolerance=0.35, sep=(5.0, 5.0))
    assert match.ok
    assert match.img_sep == pytest.approx((10.0, 10.0))
    store = match.store
    assert store.size() == 9
    coords = np.array([g[:2] for g in store.object_points])
    shifted = {tuple(c) for c in (coords - coords.min(axis=0)).tolist()}
    assert shifted == {(c, r) for c in range(3) for r in range(3)}
    assert match.conflicts == 0


def test_missing_point_keeps_lattice_consistent():
    pts = _grid(4, 4, step=10.0)
    pts = pts[~np.all(pts == [20.0, 20.0], axis=1)]
    match = match_grid_points(pts, image_size=(60, 60))
    assert match.ok
    coords = _coords(match.store)
    assert len(coords) == 15
    for (x, y), g in coords.items():
        assert g == (round(x / 10.0), round(y / 10.0))


def test_jittered_grid_matches_with_sort_quantum():
    rng = np.random.default_rng(3)
    true = _grid(6, 5, step=10.0, origin=(12.0, 12.0))
    pts = true + rng.uniform(-0.5, 0.5, size=true.shape)
    match = match_grid_points(pts, image_size=(80, 70), sort_quantum=5.0)
    assert match.ok
    coords = _coords(match.store)
    assert len(coords) == true.shape[0]
    for (x, y), g in coords.items():
        k = int(np.argmin(np.linalg.norm(pts - [x, y], axis=1)))
        assert g == (round(true[k, 0] / 10.0), round(true[k, 1] / 10.0))


@pytest.mark.parametrize("origin", [(20.0, 20.0), (25.0, 25.0), (22.5, 22.5)])
def test_jittered_grid_matches_with_default_ordering(origin):
    # Columns and rows sitting on whole-pixel and bin-edge coordinates.
    rng = np.random.default_rng(7)
    true = _grid(8, 6, step=30.0, origin=origin)
    pts = true + rng.uniform(-0.3, 0.3, size=true.shape)
    match = match_grid_points(pts, image_size=(300, 240))
    assert match.ok, match.error
    assert match.conflicts == 0
    coords = _coords(match.store)
    assert len(coords) == true.shape[0]
    offsets = set()
    for (x, y), g in coords.items():
        k = int(np.argmin(np.linalg.norm(pts - [x, y], axis=1)))
        col, row = round((true[k, 0] - origin[0]) / 30.0), round((true[k, 1] - origin[1]) / 30.0)
        offsets.add((g[0] - col, g[1] - row))
    assert len(offsets) == 1


def test_second_pass_continues_walk_state():
    store = GridStore((100, 100), (10.0, 10.0), (5.0, 5.0))
    builder = CorrespondenceBuilder(store, (10.0, 10.0))
    row = PointOrder("yx").sort([[10.0, 10.0], [20.0, 10.0], [30.0, 10.0]])
    assert builder.walk(row, "x", SpacingWindow(-10.0, 0.35)) == 3
    assert builder.anchor == (30.0, 10.0)
    column = PointOrder("xy").sort([[50.0, 10.0], [50.0, 20.0]])
    assert builder.walk(column, "y", SpacingWindow(-10.0, 0.35)) == 2
    assert _coords(store)[(50.0, 20.0)] == (5, 2)


def test_conflicting_coordinate_keeps_first_writer():
    store = GridStore((100, 100), (10.0, 10.0), (5.0, 5.0))
    store.add((20.0, 10.0), (7, 7, 0))
    builder = CorrespondenceBuilder(store, (10.0, 10.0))
    pts = PointOrder("yx").sort([[10.0, 10.0], [20.0, 10.0], [30.0, 10.0]])
    builder.walk(pts, "x", SpacingWindow(-10.0, 0.35))
    coords = _coords(store)
    assert builder.conflicts == 1
    assert coords[(20.0, 10.0)] == (7, 7)
    # The running coordinate re-synced to the stored one.
    assert coords[(30.0, 10.0)] == (8, 7)
    assert builder.coord == (8, 7, 0)


def test_out_of_window_pairs_are_skipped():
    store = GridStore((100, 100), (10.0, 10.0), (5.0, 5.0))
    builder = CorrespondenceBuilder(store, (10.0, 10.0))
    pts = PointOrder("yx").sort([[10.0, 10.0], [40.0, 10.0], [50.0, 10.0]])
    builder.walk(pts, "x", SpacingWindow(-10.0, 0.35))
    coords = _coords(store)
    assert (10.0, 10.0) not in coords
    assert coords == {(40.0, 10.0): (4, 1), (50.0, 10.0): (5, 1)}


def test_two_points_report_insufficient_structure():
    match = match_grid_points([[10.0, 10.0], [20.0, 10.0]], image_size=(40, 40))
    assert not match.ok
    assert match.store is None
    assert "level 2" in match.error
    assert "; " in match.error
    assert "dxCount1" in match.diagnostics()


def test_single_point_is_rejected():
    with pytest.raises(ValueError):
        match_grid_points([[10.0, 10.0]], image_size=(40, 40))
