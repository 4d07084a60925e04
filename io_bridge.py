"""
io_bridge.py

Thin I/O wrapper around the detection core.

- Grids are read from .npy files or from one array of an .npz archive.
- Arrays keep NumPy index order; junction indices are reported in the same
  order (jcIndex[0] is axis 0).
- Physical coordinates are origin + index * spacing; spacing and origin come
  from the run config, the core never uses them.

Primary API
-----------

    from io_bridge import load_grid, save_labels, write_junction_table

    grid = load_grid("vessels.npz", key="mask")
    result = detect_junctions(grid, cfg)
    save_labels("out/vessels_labels.npz", result, spacing=(0.5, 0.5, 0.5))
    write_junction_table("out/vessels_junctions.txt", result.junctions, grid.ndim)

Junction table format (whitespace separated, label ascending):

    jcLabel jcIndex[0] jcIndex[1] jcIndex[2] jcRadius
    1 12 40 33 3
"""

from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from metrics import JunctionRecord, compute_bboxes, junction_rows


def load_grid(path: str, key: Optional[str] = None) -> np.ndarray:
    """Load a 2-D or 3-D grid from .npy or .npz.

    For .npz archives `key` selects the array; it may be omitted when the
    archive holds a single array.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext == ".npy":
        return np.load(path)
    if ext == ".npz":
        with np.load(path) as d:
            if key is None:
                if len(d.files) != 1:
                    raise KeyError(f"{path} holds {d.files}; set input_key to pick one")
                key = d.files[0]
            if key not in d.files:
                raise KeyError(f"{key!r} not found in {path}; available: {d.files}")
            return d[key]
    raise ValueError(f"unsupported grid file {path!r}: expected .npy or .npz")


def physical_points(index: np.ndarray,
                    spacing: Optional[Sequence[float]] = None,
                    origin: Optional[Sequence[float]] = None) -> np.ndarray:
    """Map (K, D) grid indices to physical coordinates origin + index * spacing."""
    idx = np.asarray(index, dtype=np.float64)
    ndim = idx.shape[1] if idx.ndim == 2 else 0
    sp = np.ones(ndim) if spacing is None else np.asarray(spacing, dtype=np.float64)
    org = np.zeros(ndim) if origin is None else np.asarray(origin, dtype=np.float64)
    if sp.shape != (ndim,) or org.shape != (ndim,):
        raise ValueError(f"spacing and origin must have {ndim} components")
    return org + idx * sp


def junction_arrays(junctions: Dict[int, JunctionRecord] | Iterable[JunctionRecord],
                    ndim: int) -> Dict[str, np.ndarray]:
    rows = junction_rows(junctions)
    return {
        "label_ids": np.array([r.label for r in rows], dtype=np.int32),
        "junction_index": np.array([r.index for r in rows], dtype=np.int64).reshape(-1, ndim),
        "junction_radius": np.array([r.radius for r in rows], dtype=np.float64),
        "junction_branches": np.array([r.branches for r in rows], dtype=np.int32),
        "junction_size": np.array([r.size for r in rows], dtype=np.int64),
    }


def save_labels(path: str, result, spacing: Optional[Sequence[float]] = None,
                origin: Optional[Sequence[float]] = None) -> None:
    """Write the labeled output grid, branch counts and junction arrays to an .npz."""
    ndim = result.labels.ndim
    arrs = junction_arrays(result.junctions, ndim)
    sp = np.ones(ndim) if spacing is None else np.asarray(spacing, dtype=np.float64)
    org = np.zeros(ndim) if origin is None else np.asarray(origin, dtype=np.float64)
    cfg = result.config
    out = {
        "labels": result.output,
        "region_labels": result.labels,
        "branch_counts": result.branch_counts,
        "region_sizes": result.region_sizes,
        "junction_bbox": compute_bboxes(result.labels, len(result.junctions)),
        "junction_point": physical_points(arrs["junction_index"], sp, org),
        "voxel_spacing": sp,
        "origin": org,
        "inner_radius": np.float64(cfg.inner_radius),
        "outer_radius": np.float64(cfg.outer_radius),
        "min_region_size": np.int32(cfg.min_region_size),
        "connectivity": np.int32(cfg.connectivity),
    }
    out.update(arrs)
    np.savez(path, **out)


def format_junction_table(junctions: Dict[int, JunctionRecord] | Iterable[JunctionRecord],
                          ndim: int) -> str:
    header = " ".join(["jcLabel"] + [f"jcIndex[{a}]" for a in range(ndim)] + ["jcRadius"])
    lines = [header]
    for r in junction_rows(junctions):
        idx = " ".join(str(int(c)) for c in r.index)
        lines.append(f"{r.label} {idx} {r.radius:g}")
    return "\n".join(lines) + "\n"


def write_junction_table(path: str,
                         junctions: Dict[int, JunctionRecord] | Iterable[JunctionRecord],
                         ndim: int) -> None:
    with open(path, "w") as f:
        f.write(format_junction_table(junctions, ndim))


def read_junction_table(path: str) -> List[Tuple[int, Tuple[int, ...], float]]:
    """Read a junction table back as (label, index, radius) tuples."""
    rows = []
    with open(path, "r") as f:
        header = f.readline().split()
        if not header or header[0] != "jcLabel" or header[-1] != "jcRadius":
            raise ValueError(f"{path} is not a junction table")
        ndim = len(header) - 2
        for line in f:
            parts = line.split()
            if not parts:
                continue
            if len(parts) != ndim + 2:
                raise ValueError(f"malformed junction row in {path}: {line.rstrip()!r}")
            rows.append((int(parts[0]), tuple(int(p) for p in parts[1:-1]), float(parts[-1])))
    return rows


__all__ = [
    "load_grid",
    "physical_points",
    "junction_arrays",
    "save_labels",
    "format_junction_table",
    "write_junction_table",
    "read_junction_table",
]
