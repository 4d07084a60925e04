from __future__ import annotations

from typing import Dict, Iterable, List, NamedTuple, Tuple

import numpy as np

from config import JunctionConfig


class JunctionRecord(NamedTuple):
    """One detected junction.

    index is the representative voxel in array index order; branches is the
    branch count measured there; size is the voxel count of the region.
    """

    label: int
    index: Tuple[int, ...]
    radius: float
    branches: int = 0
    size: int = 0


def _ensure_K(labels: np.ndarray, K: int | None = None) -> int:
    if K is None:
        K = int(labels.max()) if labels.size else 0
    return K


def num_cells(labels: np.ndarray, K: int | None = None) -> np.ndarray:
    K = _ensure_K(labels, K)
    lab = labels.ravel()
    cnt = np.bincount(lab, minlength=K + 1).astype(np.int64)
    return cnt[1:]


def compute_bboxes(labels: np.ndarray, K: int | None = None) -> np.ndarray:
    """Compute per-label bounding boxes in grid indices [min,max) along every axis.

    Returns int32 array of shape [K, 2*D]: (a0_min, a0_max, a1_min, a1_max, ...)
    """
    K = _ensure_K(labels, K)
    ndim = labels.ndim
    if K == 0:
        return np.zeros((0, 2 * ndim), dtype=np.int32)
    cols = []
    for axis in range(ndim):
        n = labels.shape[axis]
        amin = np.full(K + 1, n, dtype=np.int64)
        amax = np.zeros(K + 1, dtype=np.int64)
        for p in range(n):
            u = np.unique(np.take(labels, p, axis=axis))
            u = u[u != 0]
            if u.size == 0:
                continue
            amin[u] = np.minimum(amin[u], p)
            amax[u] = np.maximum(amax[u], p + 1)
        cols.extend([amin[1:], amax[1:]])
    return np.stack(cols, axis=1).astype(np.int32)


def representatives(labels: np.ndarray,
                    branch_counts: np.ndarray,
                    K: int | None = None) -> tuple[np.ndarray, np.ndarray]:
    """Pick one voxel per label: the maximum branch count, ties to the first in C scan order.

    Returns (index[K, D] int64, branches[K] int32) in ascending label order.
    """
    K = _ensure_K(labels, K)
    ndim = labels.ndim
    if K == 0:
        return np.zeros((0, ndim), dtype=np.int64), np.zeros((0,), dtype=np.int32)
    if branch_counts.shape != labels.shape:
        raise ValueError("branch_counts and labels must have the same shape")

    flat = labels.ravel()
    sel = np.flatnonzero(flat)
    lab = flat[sel].astype(np.int64)
    cnt = branch_counts.ravel()[sel].astype(np.int64)

    # Sort by label, then count descending, then scan position
    order = np.lexsort((sel, -cnt, lab))
    lab_sorted = lab[order]
    first = np.ones(order.size, dtype=bool)
    first[1:] = lab_sorted[1:] != lab_sorted[:-1]
    picks = order[first]

    index = np.stack(np.unravel_index(sel[picks], labels.shape), axis=1).astype(np.int64)
    return index, cnt[picks].astype(np.int32)


def junction_radii(branches: np.ndarray, config: JunctionConfig) -> np.ndarray:
    """Radius estimate per junction.

    The sweep only records pass/fail per shell, so every junction gets the
    outer shell radius.
    """
    return np.full(branches.shape[0], float(config.outer_radius), dtype=np.float64)


def summarize(labels: np.ndarray,
              branch_counts: np.ndarray,
              config: JunctionConfig,
              grid: np.ndarray | None = None,
              sizes: np.ndarray | None = None) -> tuple[Dict[int, JunctionRecord], np.ndarray]:
    """Collapse each labeled region into a JunctionRecord.

    Returns (junctions, output). junctions maps label -> record and is empty when
    no region survived. output is the labeled grid; with config.background ==
    "input" the non-junction voxels carry the input grid value instead of 0.
    """
    K = _ensure_K(labels)
    index, branches = representatives(labels, branch_counts, K=K)
    radii = junction_radii(branches, config)
    if sizes is None:
        sizes = num_cells(labels, K=K)

    junctions: Dict[int, JunctionRecord] = {}
    for l in range(K):
        junctions[l + 1] = JunctionRecord(
            label=l + 1,
            index=tuple(int(c) for c in index[l]),
            radius=float(radii[l]),
            branches=int(branches[l]),
            size=int(sizes[l]),
        )

    if config.background == "input":
        if grid is None:
            raise ValueError("background='input' requires the input grid")
        output = np.where(labels > 0, labels, np.asarray(grid))
    else:
        output = labels.copy()
    return junctions, output


def junction_rows(junctions: Dict[int, JunctionRecord] | Iterable[JunctionRecord]) -> List[JunctionRecord]:
    """Records ordered by ascending label."""
    recs = junctions.values() if isinstance(junctions, dict) else junctions
    return sorted(recs, key=lambda r: r.label)


__all__ = [
    "JunctionRecord",
    "num_cells",
    "compute_bboxes",
    "representatives",
    "junction_radii",
    "summarize",
    "junction_rows",
]
