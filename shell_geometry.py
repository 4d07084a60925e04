from __future__ import annotations

import itertools
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import check_dimension, check_radii, connectivity_order, FULL_CONNECTIVITY


def neighbor_steps(dimension: int, connectivity: Optional[int] = None, half: bool = False) -> np.ndarray:
    """Return unit neighbor steps, shaped (S, dimension), in lexicographic order.

    With half=True only the steps that precede the origin in C scan order are
    returned (first nonzero component negative); a forward scan sees exactly
    these neighbors already visited.
    """
    order = connectivity_order(dimension, connectivity)
    steps = []
    for s in itertools.product((-1, 0, 1), repeat=dimension):
        nz = sum(1 for c in s if c != 0)
        if nz == 0 or nz > order:
            continue
        if half:
            first = next(c for c in s if c != 0)
            if first > 0:
                continue
        steps.append(s)
    return np.asarray(steps, dtype=np.int64).reshape(-1, dimension)


def lift_to_3d(vectors: np.ndarray) -> np.ndarray:
    """Append a zero third component to 2-D index vectors.

    2-D grids are swept as (ni, nj, 1) volumes, so a 2-D step (di, dj) becomes
    (di, dj, 0). Always returns a fresh writable (N, 3) int64 array.
    """
    v = np.array(vectors, dtype=np.int64, copy=True)
    if v.ndim != 2 or v.shape[1] not in (2, 3):
        raise ValueError("expected (N, 2) or (N, 3) index vectors")
    if v.shape[1] == 3:
        return np.ascontiguousarray(v)
    return np.ascontiguousarray(np.concatenate([v, np.zeros((v.shape[0], 1), dtype=np.int64)], axis=1))


def shell_margin(outer_radius: float) -> int:
    """Border band width (in voxels) where a full shell does not fit."""
    return int(math.ceil(float(outer_radius)))


@dataclass(frozen=True, eq=False)
class ShellOffsets:
    """Integer shell offsets for one (inner, outer, dimension, connectivity).

    - offsets: (M, D) int64, every nonzero o with inner <= |o| <= outer, lexicographic.
    - edges: (E, 2) int64 index pairs (a, b), a != b, of offsets one neighbor step apart.
    Both arrays are read-only and can be shared between runs and threads.
    """

    offsets: np.ndarray
    edges: np.ndarray
    inner_radius: float
    outer_radius: float
    dimension: int
    connectivity: int

    @property
    def size(self) -> int:
        return int(self.offsets.shape[0])

    @property
    def margin(self) -> int:
        return shell_margin(self.outer_radius)

    def matches(self, inner_radius: float, outer_radius: float, dimension: int,
                connectivity: Optional[int] = None) -> bool:
        if connectivity is None:
            connectivity = FULL_CONNECTIVITY.get(dimension)
        return (float(inner_radius) == self.inner_radius
                and float(outer_radius) == self.outer_radius
                and int(dimension) == self.dimension
                and connectivity == self.connectivity)


def _shell_edges(offsets: np.ndarray, radius: int, dimension: int, connectivity: int) -> np.ndarray:
    if offsets.shape[0] == 0:
        return np.zeros((0, 2), dtype=np.int64)
    # Dense lookup box covering offsets plus one step in every direction
    shift = radius + 1
    lut = np.full((2 * radius + 3,) * dimension, -1, dtype=np.int64)
    lut[tuple((offsets + shift).T)] = np.arange(offsets.shape[0], dtype=np.int64)

    pairs = []
    for step in neighbor_steps(dimension, connectivity, half=True):
        nb = lut[tuple((offsets + step + shift).T)]
        ok = nb >= 0
        if ok.any():
            pairs.append(np.stack([nb[ok], np.nonzero(ok)[0]], axis=1))
    if not pairs:
        return np.zeros((0, 2), dtype=np.int64)
    edges = np.concatenate(pairs, axis=0).astype(np.int64, copy=False)
    order = np.lexsort((edges[:, 1], edges[:, 0]))
    return edges[order]


def build_shell(inner_radius: float, outer_radius: float, dimension: int,
                connectivity: Optional[int] = None) -> ShellOffsets:
    """Enumerate the shell offsets with inner_radius <= |o| <= outer_radius.

    Raises InvalidConfiguration for negative radii, outer <= inner, a dimension
    other than 2 or 3, or a connectivity the dimension does not support.
    Cost of every later voxel evaluation grows with the returned size, so the
    result should be built once per configuration and reused.
    """
    check_radii(inner_radius, outer_radius)
    check_dimension(dimension)
    connectivity_order(dimension, connectivity)
    if connectivity is None:
        connectivity = FULL_CONNECTIVITY[dimension]
    inner = float(inner_radius)
    outer = float(outer_radius)

    R = int(math.floor(outer))
    axis = np.arange(-R, R + 1, dtype=np.int64)
    grids = np.meshgrid(*([axis] * dimension), indexing="ij")
    cand = np.stack([g.ravel() for g in grids], axis=1)
    d2 = (cand * cand).sum(axis=1)
    keep = (d2 > 0) & (d2 >= inner * inner) & (d2 <= outer * outer)
    offsets = np.ascontiguousarray(cand[keep])

    edges = _shell_edges(offsets, R, dimension, int(connectivity))
    offsets.setflags(write=False)
    edges.setflags(write=False)
    return ShellOffsets(offsets=offsets, edges=edges, inner_radius=inner, outer_radius=outer,
                        dimension=int(dimension), connectivity=int(connectivity))


__all__ = ["ShellOffsets", "build_shell", "neighbor_steps", "lift_to_3d", "shell_margin"]
