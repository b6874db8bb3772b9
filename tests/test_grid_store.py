from __future__ import annotations

import numpy as np
import pytest

from gridcalib.core.grid_store import EMPTY, EmptyGridError, GridBoundsError, GridStore


def _store(image_size=(60, 60), img_sep=(10.0, 10.0), obj_sep=(5.0, 5.0)) -> GridStore:
    return GridStore(image_size, img_sep, obj_sep)


def _fill(store: GridStore, cols: range, rows: range) -> None:
    for r in rows:
        for c in cols:
            store.add((10.0 * c, 10.0 * r), (c, r, 0))


def test_duplicate_image_point_is_not_inserted():
    store = _store()
    assert store.add((12.5, 30.0), (1, 3, 0))
    assert not store.add((12.5, 30.0), (4, 4, 0))
    assert store.size() == 1
    assert len(store) == 1
    assert store.object_points[0] == (1, 3, 0)
    assert (12.5, 30.0) in store


def test_empty_store_centroids_raise():
    store = _store()
    with pytest.raises(EmptyGridError):
        store.image_centroid()
    with pytest.raises(EmptyGridError):
        store.object_centroid()


def test_centroids_and_centered_object_points():
    store = _store()
    _fill(store, range(1, 4), range(1, 3))
    assert store.image_centroid() == pytest.approx((20.0, 15.0))
    assert store.object_centroid() == pytest.approx((2.0, 1.5, 0.0))
    obj = store.object_points_centered(obj_z=2.0)
    assert obj.shape == (6, 3)
    assert sorted(set(obj[:, 0].tolist())) == pytest.approx([-5.0, 0.0, 5.0])
    assert sorted(set(obj[:, 1].tolist())) == pytest.approx([-2.5, 2.5])
    assert np.all(obj[:, 2] == 2.0)


def test_lookup_grid_indexes_correspondences():
    store = _store()
    _fill(store, range(1, 4), range(1, 4))
    grid = store.build_lookup_grid()
    assert grid.shape == (7, 7)  # int(60 / 10 + 1.5)
    assert int(np.sum(grid != EMPTY)) == 9
    for i, (c, r, _z) in enumerate(store.object_points):
        assert grid[r, c] == i
    assert grid[0, 0] == EMPTY


def test_lookup_grid_rebuilds_after_add():
    store = _store()
    _fill(store, range(1, 3), range(1, 3))
    first = store.lookup_grid
    assert int(np.sum(first != EMPTY)) == 4
    store.add((50.0, 50.0), (5, 5, 0))
    assert store.lookup_grid[5, 5] == 4


@pytest.mark.parametrize("coord", [(-1, 2, 0), (2, 7, 0), (40, 0, 0)])
def test_lookup_grid_bounds_violation(coord):
    store = _store()
    store.add((1.0, 1.0), coord)
    with pytest.raises(GridBoundsError):
        store.build_lookup_grid()


def test_subset_min_points_boundary():
    store = _store()
    _fill(store, range(0, 2), range(0, 2))  # 4 points inside a 3x3 window at (0, 0)
    assert store.extract_subset(0, 0, 3, 3, min_points=5) is None
    subset = store.extract_subset(0, 0, 3, 3, min_points=4, name="w")
    assert subset is not None
    assert len(subset) == 4
    assert subset.name == "w"


def test_subset_object_points_are_relative_to_window_center():
    store = _store()
    _fill(store, range(2, 5), range(2, 5))
    subset = store.extract_subset(2, 2, 3, 3, min_points=9, z=1.5)
    assert subset is not None
    assert subset.object_points.shape == (9, 3)
    assert subset.image_points.shape == (9, 2)
    assert subset.object_points.dtype == np.float32
    assert np.allclose(subset.object_points.mean(axis=0), [0.0, 0.0, 1.5])
    assert set(subset.object_points[:, 0].tolist()) == {-5.0, 0.0, 5.0}
    # Same order in both arrays: center cell maps to image point (30, 30).
    center = np.where((subset.object_points[:, 0] == 0) & (subset.object_points[:, 1] == 0))[0][0]
    assert subset.image_points[center].tolist() == [30.0, 30.0]


def test_subset_window_past_grid_edge_counts_cells_as_empty():
    store = _store()
    _fill(store, range(4, 7), range(4, 7))
    subset = store.extract_subset(4, 4, 6, 6, min_points=9)
    assert subset is not None
    assert len(subset) == 9


def test_store_rejects_non_positive_spacing():
    with pytest.raises(ValueError):
        GridStore((10, 10), (0.0, 1.0), (5.0, 5.0))
