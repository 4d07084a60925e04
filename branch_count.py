from __future__ import annotations

from typing import Callable, Optional, Sequence

import numpy as np
import numba
from numba import njit

from config import IncompatibleGrid, InvalidConfiguration, JunctionConfig
from region_label import uf_find, uf_union
from shell_geometry import ShellOffsets, build_shell, lift_to_3d, shell_margin


ProgressCallback = Callable[[float], None]


@njit(cache=True)
def _count_at(mask: np.ndarray, ci: int, cj: int, ck: int,
              offsets: np.ndarray, edges: np.ndarray,
              hit: np.ndarray, parent: np.ndarray) -> int:
    """Number of foreground branches crossing the shell centered at (ci, cj, ck).

    hit/parent are scratch arrays of length M reused across calls.
    """
    ni, nj, nk = mask.shape
    M = offsets.shape[0]
    n_hit = 0
    for t in range(M):
        parent[t] = t
        ii = ci + offsets[t, 0]
        jj = cj + offsets[t, 1]
        kk = ck + offsets[t, 2]
        if ii < 0 or jj < 0 or kk < 0 or ii >= ni or jj >= nj or kk >= nk:
            hit[t] = False
        elif mask[ii, jj, kk]:
            hit[t] = True
            n_hit += 1
        else:
            hit[t] = False
    if n_hit == 0:
        return 0

    # Hits joined by a shell edge belong to the same branch
    for e in range(edges.shape[0]):
        a = edges[e, 0]
        b = edges[e, 1]
        if hit[a] and hit[b]:
            uf_union(parent, a, b)

    n = 0
    for t in range(M):
        if hit[t] and uf_find(parent, t) == t:
            n += 1
    return n


@numba.njit(parallel=True, cache=True)
def _sweep_slab(mask: np.ndarray, i0: int, i1: int,
                lo: np.ndarray, hi: np.ndarray,
                offsets: np.ndarray, edges: np.ndarray,
                counts: np.ndarray) -> None:
    """Fill counts for foreground voxels of planes [i0, i1) inside the interior box [lo, hi)."""
    M = offsets.shape[0]
    for i in numba.prange(i0, i1):
        # Per-plane scratch; planes write disjoint cells of counts
        hit = np.zeros(M, dtype=np.bool_)
        parent = np.empty(M, dtype=np.int64)
        for j in range(lo[1], hi[1]):
            for k in range(lo[2], hi[2]):
                if mask[i, j, k]:
                    counts[i, j, k] = _count_at(mask, i, j, k, offsets, edges, hit, parent)


def foreground_mask(grid: np.ndarray, threshold: float = 0.0) -> np.ndarray:
    """Boolean grids pass through; scalar grids are foreground where value > threshold."""
    g = np.asarray(grid)
    if g.dtype == np.bool_:
        return g
    return g > threshold


def _as_volume(mask: np.ndarray) -> np.ndarray:
    # 2-D grids are swept as (ni, nj, 1) volumes
    if mask.ndim == 2:
        mask = mask[:, :, np.newaxis]
    return np.ascontiguousarray(mask, dtype=np.bool_)


def check_grid(shape: Sequence[int], outer_radius: float) -> None:
    """Raise IncompatibleGrid when some axis cannot host a full shell anywhere."""
    need = 2 * shell_margin(outer_radius) + 1
    small = [int(n) for n in shape if int(n) < need]
    if small:
        raise IncompatibleGrid(
            f"grid shape {tuple(int(n) for n in shape)} too small for outer_radius={outer_radius}: "
            f"every axis needs at least {need} voxels")


def interior_bounds(shape: Sequence[int], outer_radius: float) -> tuple[np.ndarray, np.ndarray]:
    """Half-open (lo, hi) index box, in swept 3-D form, of voxels at >= ceil(outer) from every border."""
    m = shell_margin(outer_radius)
    dim = len(shape)
    lo = np.zeros(3, dtype=np.int64)
    hi = np.ones(3, dtype=np.int64)
    for a in range(dim):
        lo[a] = m
        hi[a] = int(shape[a]) - m
    return lo, hi


def resolve_shell(config: JunctionConfig, dimension: int,
                  shell: Optional[ShellOffsets] = None) -> ShellOffsets:
    """Build the shell for a resolved config, or check that a cached one matches it."""
    if shell is None:
        return build_shell(config.inner_radius, config.outer_radius, dimension, config.connectivity)
    if not shell.matches(config.inner_radius, config.outer_radius, dimension, config.connectivity):
        raise InvalidConfiguration(
            f"shell built for inner={shell.inner_radius} outer={shell.outer_radius} "
            f"dimension={shell.dimension} connectivity={shell.connectivity} does not match the run")
    return shell


def count_branches(grid: np.ndarray, center: Sequence[int], shell: ShellOffsets,
                   foreground_threshold: float = 0.0) -> int:
    """Count disjoint foreground branches crossing the shell around one voxel.

    Shell cells outside the grid are ignored. Returns 0 when no shell cell is
    foreground. The grid is not modified.
    """
    mask = foreground_mask(grid, foreground_threshold)
    if mask.ndim != shell.dimension:
        raise IncompatibleGrid(f"{mask.ndim}-D grid used with a {shell.dimension}-D shell")
    c = np.asarray(center, dtype=np.int64).reshape(1, -1)
    if c.shape[1] != mask.ndim:
        raise ValueError(f"center {tuple(center)} does not match a {mask.ndim}-D grid")
    c3 = lift_to_3d(c)[0]
    offsets = lift_to_3d(shell.offsets)
    edges = np.array(shell.edges, dtype=np.int64)
    hit = np.zeros(shell.size, dtype=np.bool_)
    parent = np.empty(shell.size, dtype=np.int64)
    return int(_count_at(_as_volume(mask), c3[0], c3[1], c3[2], offsets, edges, hit, parent))


def branch_count_map(grid: np.ndarray, shell: ShellOffsets,
                     foreground_threshold: float = 0.0,
                     progress: Optional[ProgressCallback] = None,
                     slab_size: int = 16) -> np.ndarray:
    """Branch count for every interior foreground voxel; 0 elsewhere.

    Interior means at least ceil(outer_radius) voxels from every boundary. The
    sweep runs one axis-0 slab of `slab_size` planes at a time; `progress` is
    called with the completed fraction (0.0 first, 1.0 last) between slabs and
    may raise to abort the run.
    """
    mask = foreground_mask(grid, foreground_threshold)
    if mask.ndim != shell.dimension:
        raise IncompatibleGrid(f"{mask.ndim}-D grid used with a {shell.dimension}-D shell")
    check_grid(mask.shape, shell.outer_radius)
    if int(slab_size) < 1:
        raise InvalidConfiguration(f"slab_size must be >= 1, got {slab_size}")

    vol = _as_volume(mask)
    counts = np.zeros(vol.shape, dtype=np.int32)
    lo, hi = interior_bounds(mask.shape, shell.outer_radius)
    offsets = lift_to_3d(shell.offsets)
    edges = np.array(shell.edges, dtype=np.int64)

    i_lo, i_hi = int(lo[0]), int(hi[0])
    total = i_hi - i_lo
    if progress is not None:
        progress(0.0)
    for s0 in range(i_lo, i_hi, int(slab_size)):
        s1 = min(s0 + int(slab_size), i_hi)
        _sweep_slab(vol, s0, s1, lo, hi, offsets, edges, counts)
        if progress is not None:
            progress((s1 - i_lo) / total)

    return counts.reshape(mask.shape)


def detect_candidates(grid: np.ndarray, config: JunctionConfig,
                      shell: Optional[ShellOffsets] = None,
                      progress: Optional[ProgressCallback] = None) -> np.ndarray:
    """Boolean mask of voxels whose branch count reaches config.junction_threshold."""
    grid = np.asarray(grid)
    cfg = config.resolved(grid.ndim)
    shell = resolve_shell(cfg, grid.ndim, shell)
    counts = branch_count_map(grid, shell, cfg.foreground_threshold,
                              progress=progress, slab_size=cfg.slab_size)
    return counts >= cfg.junction_threshold


__all__ = [
    "branch_count_map",
    "count_branches",
    "detect_candidates",
    "foreground_mask",
    "check_grid",
    "interior_bounds",
    "resolve_shell",
]
