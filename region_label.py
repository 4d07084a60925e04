from __future__ import annotations

import numpy as np
from numba import njit

from config import InvalidConfiguration, check_dimension
from shell_geometry import lift_to_3d, neighbor_steps


@njit(inline='always')
def uf_find(parent, x):
    while parent[x] != x:
        parent[x] = parent[parent[x]]
        x = parent[x]
    return x


@njit(inline='always')
def uf_union(parent, a, b):
    ra = uf_find(parent, a)
    rb = uf_find(parent, b)
    if ra != rb:
        parent[rb] = ra


@njit(cache=True)
def _ccl_volume(mask: np.ndarray, neigh: np.ndarray, max_labels: int) -> np.ndarray:
    """Label a boolean volume using two-pass union-find CCL with given half-neighborhood.

    Scan order is C order: i, then j, then k fastest. Returns provisional labels
    resolved to their set representatives (uint32, 0 is background).
    """
    ni, nj, nk = mask.shape
    labels = np.zeros((ni, nj, nk), dtype=np.uint32)

    # Provisional labels never exceed the foreground count, so the parent arena
    # is sized by it rather than by the volume.
    parent = np.arange(max_labels, dtype=np.int64)
    next_label = 1

    # First pass: assign and union
    for i in range(ni):
        for j in range(nj):
            for k in range(nk):
                if not mask[i, j, k]:
                    continue
                lbl = 0
                for t in range(neigh.shape[0]):
                    di = i + neigh[t, 0]
                    dj = j + neigh[t, 1]
                    dk = k + neigh[t, 2]
                    if di < 0 or dj < 0 or dk < 0 or di >= ni or dj >= nj or dk >= nk:
                        continue
                    nb = np.int64(labels[di, dj, dk])
                    if nb != 0:
                        if lbl == 0 or nb < lbl:
                            lbl = nb
                if lbl == 0:
                    lbl = next_label
                    next_label += 1
                labels[i, j, k] = lbl

                for t in range(neigh.shape[0]):
                    di = i + neigh[t, 0]
                    dj = j + neigh[t, 1]
                    dk = k + neigh[t, 2]
                    if di < 0 or dj < 0 or dk < 0 or di >= ni or dj >= nj or dk >= nk:
                        continue
                    nb = np.int64(labels[di, dj, dk])
                    if nb != 0 and nb != lbl:
                        uf_union(parent, lbl, nb)

    # Second pass: compress to representatives
    for i in range(ni):
        for j in range(nj):
            for k in range(nk):
                l = np.int64(labels[i, j, k])
                if l != 0:
                    labels[i, j, k] = uf_find(parent, l)

    return labels


def compact_labels(labels: np.ndarray) -> int:
    """Relabel positive labels in-place to 1..K by first occurrence in C order. Return K."""
    if labels.size == 0:
        return 0
    u, first = np.unique(labels.ravel(), return_index=True)
    pos = u != 0
    u = u[pos]
    first = first[pos]
    if u.size == 0:
        return 0
    order = np.argsort(first, kind="stable")
    lut = np.zeros(int(u.max()) + 1, dtype=np.uint32)
    lut[u[order]] = np.arange(1, u.size + 1, dtype=np.uint32)
    sel = labels > 0
    labels[sel] = lut[labels[sel]]
    return int(u.size)


def label_regions(mask: np.ndarray,
                  connectivity: int | None = None,
                  min_size: int = 1) -> tuple[np.ndarray, np.ndarray]:
    """Label connected regions of a 2-D or 3-D boolean mask.

    - connectivity: 4/8 in 2-D, 6/18/26 in 3-D; None means full adjacency.
    - min_size: regions with fewer voxels are zeroed and dropped from the sizes.

    Returns (labels, sizes). labels is uint32 with the mask's shape, dense 1..K,
    numbered by each region's first voxel in C scan order; sizes[l-1] is the
    voxel count of label l.
    """
    m = np.asarray(mask, dtype=bool)
    check_dimension(m.ndim)
    if int(min_size) < 1:
        raise InvalidConfiguration(f"min_size must be >= 1, got {min_size}")
    neigh = lift_to_3d(neighbor_steps(m.ndim, connectivity, half=True))
    vol = np.ascontiguousarray(m if m.ndim == 3 else m[:, :, np.newaxis])

    n_fg = int(np.count_nonzero(vol))
    if n_fg == 0:
        return np.zeros(m.shape, dtype=np.uint32), np.zeros((0,), dtype=np.int64)

    labels = _ccl_volume(vol, neigh, n_fg + 1)
    K = compact_labels(labels)
    sizes = np.bincount(labels.ravel(), minlength=K + 1)[1:].astype(np.int64)

    if int(min_size) > 1:
        keep = sizes >= int(min_size)
        lut = np.zeros(K + 1, dtype=np.uint32)
        lut[1:][keep] = np.arange(1, int(keep.sum()) + 1, dtype=np.uint32)
        labels = lut[labels]
        sizes = sizes[keep]

    return labels.reshape(m.shape), sizes


__all__ = ["label_regions", "compact_labels", "uf_find", "uf_union"]
