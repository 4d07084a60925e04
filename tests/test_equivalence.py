from __future__ import annotations

import os
import sys

import numpy as np
import pytest
from scipy import ndimage

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from branch_count import branch_count_map, count_branches
from region_label import compact_labels, label_regions
from shell_geometry import build_shell


ORDER = {4: 1, 8: 2, 6: 1, 18: 2, 26: 3}


def _random_mask(shape, density: float = 0.3, seed: int = 42) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.random(shape) < density


def _baseline_count(mask: np.ndarray, center, shell) -> int:
    """Label the foreground shell cells of one voxel with scipy.ndimage."""
    R = int(np.floor(shell.outer_radius))
    dim = mask.ndim
    box = np.zeros((2 * R + 1,) * dim, dtype=bool)
    c = np.asarray(center)
    for o in shell.offsets:
        q = c + o
        if np.all(q >= 0) and np.all(q < np.asarray(mask.shape)) and mask[tuple(q)]:
            box[tuple(o + R)] = True
    structure = ndimage.generate_binary_structure(dim, ORDER[shell.connectivity])
    _, n = ndimage.label(box, structure=structure)
    return int(n)


def _same_partition(a: np.ndarray, b: np.ndarray) -> None:
    fa = a.ravel().astype(np.int64)
    fb = b.ravel().astype(np.int64)
    assert np.array_equal(fa > 0, fb > 0), "foreground differs"
    pairs = np.unique(np.stack([fa[fa > 0], fb[fb > 0]], axis=1), axis=0)
    na = np.unique(fa[fa > 0]).size
    nb = np.unique(fb[fb > 0]).size
    assert pairs.shape[0] == na == nb, "partitions differ"


@pytest.mark.parametrize("shape,conn", [
    ((48, 48), 8), ((48, 48), 4), ((20, 20, 20), 26), ((20, 20, 20), 18), ((20, 20, 20), 6),
])
def test_label_regions_matches_scipy(shape, conn):
    mask = _random_mask(shape, density=0.35, seed=7)
    labels, sizes = label_regions(mask, connectivity=conn)
    structure = ndimage.generate_binary_structure(mask.ndim, ORDER[conn])
    base, K = ndimage.label(mask, structure=structure)
    print(f"shape={shape} conn={conn}: K={labels.max()} scipy K={K}")
    _same_partition(labels, base)
    assert sizes.shape == (K,)
    assert np.array_equal(np.sort(sizes), np.sort(np.bincount(base.ravel())[1:]))


def test_labels_follow_scan_order():
    mask = _random_mask((40, 40), density=0.4, seed=3)
    labels, _ = label_regions(mask)
    flat = labels.ravel()
    firsts = [int(np.flatnonzero(flat == l)[0]) for l in range(1, int(flat.max()) + 1)]
    assert firsts == sorted(firsts), "labels not numbered by first voxel in scan order"


@pytest.mark.parametrize("min_size", [1, 2, 3, 5, 8])
def test_min_size_suppression_matches_scipy(min_size):
    mask = _random_mask((16, 16, 16), density=0.3, seed=11)
    labels, sizes = label_regions(mask, min_size=min_size)
    base, K = ndimage.label(mask, structure=np.ones((3, 3, 3), dtype=bool))
    base_sizes = np.bincount(base.ravel(), minlength=K + 1)
    keep = np.flatnonzero(base_sizes >= min_size)
    keep = keep[keep != 0]
    base_kept = np.where(np.isin(base, keep), base, 0)
    _same_partition(labels, base_kept)
    assert np.all(sizes >= min_size)
    assert sizes.size == keep.size
    flat = labels.ravel()
    assert np.array_equal(np.unique(flat[flat > 0]), np.arange(1, sizes.size + 1))


def test_compact_labels_by_first_occurrence():
    labels = np.array([[0, 9, 9, 0], [4, 0, 7, 7], [4, 0, 0, 2]], dtype=np.uint32)
    K = compact_labels(labels)
    assert K == 4
    assert labels.tolist() == [[0, 1, 1, 0], [2, 0, 3, 3], [2, 0, 0, 4]]


@pytest.mark.parametrize("shape,inner,outer,conn", [
    ((24, 24), 2.0, 3.0, 8),
    ((24, 24), 1.5, 4.0, 8),
    ((24, 24), 2.0, 3.0, 4),
    ((12, 12, 12), 2.0, 3.0, 26),
    ((12, 12, 12), 1.0, 2.5, 6),
])
def test_count_branches_matches_scipy(shape, inner, outer, conn):
    mask = _random_mask(shape, density=0.3, seed=5)
    shell = build_shell(inner, outer, len(shape), connectivity=conn)
    rng = np.random.default_rng(1)
    # include centers near and on the border; out-of-grid shell cells are ignored
    for _ in range(60):
        center = tuple(int(rng.integers(0, n)) for n in shape)
        got = count_branches(mask, center, shell)
        exp = _baseline_count(mask, center, shell)
        assert got == exp, f"center={center}: {got} != {exp}"


@pytest.mark.parametrize("shape", [(21, 23), (11, 12, 13)])
def test_branch_count_map_matches_pointwise(shape):
    mask = _random_mask(shape, density=0.35, seed=9)
    shell = build_shell(2.0, 3.0, len(shape))
    counts = branch_count_map(mask, shell, slab_size=3)
    m = shell.margin
    for idx in np.ndindex(*shape):
        interior = all(m <= idx[a] < shape[a] - m for a in range(len(shape)))
        if interior and mask[idx]:
            assert counts[idx] == count_branches(mask, idx, shell), f"mismatch at {idx}"
        else:
            assert counts[idx] == 0, f"non-interior or background voxel {idx} counted"


def test_count_branches_empty_shell_and_no_hits():
    mask = np.zeros((9, 9), dtype=bool)
    shell = build_shell(2.0, 3.0, 2)
    assert count_branches(mask, (4, 4), shell) == 0
    mask[4, 4] = True
    assert count_branches(mask, (4, 4), shell) == 0
    empty = build_shell(0.2, 0.8, 2)
    assert empty.size == 0
    assert count_branches(mask, (4, 4), empty) == 0


if __name__ == "__main__":
    test_label_regions_matches_scipy((48, 48), 8)
    test_labels_follow_scan_order()
    test_count_branches_matches_scipy((24, 24), 2.0, 3.0, 8)
    test_branch_count_map_matches_pointwise((21, 23))
    print("Equivalence checks passed (numba kernels == scipy.ndimage baseline).")
