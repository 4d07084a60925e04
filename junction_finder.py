from __future__ import annotations

import argparse
import json
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from branch_count import ProgressCallback, branch_count_map, check_grid, resolve_shell
from config import JunctionConfig, config_from_dict, parse_config
from io_bridge import format_junction_table, load_grid, save_labels, write_junction_table
from metrics import JunctionRecord, junction_rows, summarize
from region_label import label_regions
from shell_geometry import ShellOffsets


@dataclass
class JunctionResult:
    """Outputs of one detection run.

    - labels: region labels (uint32, 0 = not a junction), same shape as the input.
    - output: finalized output grid (labels, or input values off-junction when
      config.background == "input").
    - junctions: label -> JunctionRecord.
    - branch_counts: per-voxel branch counts from the sweep.
    - region_sizes: voxel count per surviving label.
    - config: the resolved configuration.
    """

    labels: np.ndarray
    output: np.ndarray
    junctions: Dict[int, JunctionRecord]
    branch_counts: np.ndarray
    region_sizes: np.ndarray
    config: JunctionConfig

    @property
    def K(self) -> int:
        return len(self.junctions)

    def rows(self) -> List[JunctionRecord]:
        return junction_rows(self.junctions)


def detect_junctions(grid: np.ndarray,
                     config: JunctionConfig,
                     shell: Optional[ShellOffsets] = None,
                     progress: Optional[ProgressCallback] = None) -> JunctionResult:
    """Detect junction regions in a 2-D or 3-D tubular-structure mask.

    Configuration and grid-size errors are raised before the sweep starts. A
    prebuilt shell may be passed to reuse it across grids; it must match the
    config. No junctions is a valid, empty result.
    """
    grid = np.asarray(grid)
    cfg = config.resolved(grid.ndim)
    shell = resolve_shell(cfg, grid.ndim, shell)
    check_grid(grid.shape, cfg.outer_radius)

    counts = branch_count_map(grid, shell, cfg.foreground_threshold,
                              progress=progress, slab_size=cfg.slab_size)
    candidates = counts >= cfg.junction_threshold
    labels, sizes = label_regions(candidates, connectivity=cfg.connectivity,
                                  min_size=cfg.min_region_size)
    junctions, output = summarize(labels, counts, cfg, grid=grid, sizes=sizes)
    return JunctionResult(labels=labels, output=output, junctions=junctions,
                          branch_counts=counts, region_sizes=sizes, config=cfg)


def _print_progress(fraction: float) -> None:
    print(f"{int(100 * fraction)}% completed", end="\r", flush=True)


def _git_rev():
    try:
        return subprocess.check_output(["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL).decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def main(argv=None):
    ap = argparse.ArgumentParser(description="Detect junctions in a binary tubular-structure grid.")
    ap.add_argument("--config", required=True)
    ap.add_argument("--input", default=None, help="grid path (.npy/.npz); overrides input_path")
    ap.add_argument("--output-dir", default=None, help="overrides output_dir")
    ap.add_argument("--inner", type=float, default=None, help="inner shell radius (voxels)")
    ap.add_argument("--outer", type=float, default=None, help="outer shell radius (voxels)")
    ap.add_argument("--min-region-size", type=int, default=None,
                    help="minimum candidate voxels per junction (default 6 in 2-D, 16 in 3-D)")
    ap.add_argument("--no-progress", action="store_true")
    args = ap.parse_args(argv)

    cfg = parse_config(args.config)
    if args.input is not None:
        cfg["input_path"] = args.input
    if args.output_dir is not None:
        cfg["output_dir"] = args.output_dir
    if args.inner is not None:
        cfg["inner_radius"] = args.inner
    if args.outer is not None:
        cfg["outer_radius"] = args.outer
    if args.min_region_size is not None:
        cfg["min_region_size"] = args.min_region_size
    if "input_path" not in cfg:
        raise ValueError("input_path must be provided (config or --input)")
    show_progress = bool(cfg.get("progress", True)) and not args.no_progress

    det_cfg = config_from_dict(cfg)
    input_path = str(cfg["input_path"])

    t0 = time.time()
    grid = load_grid(input_path, key=cfg.get("input_key"))
    t_load = time.time()

    if grid.dtype != np.bool_:
        u = np.unique(grid)
        if u.size > 2:
            print(f"WARNING: input has {u.size} distinct values; foreground is value > "
                  f"{det_cfg.foreground_threshold}.")

    result = detect_junctions(grid, det_cfg, progress=_print_progress if show_progress else None)
    if show_progress:
        print()
    t_detect = time.time()

    ndim = grid.ndim
    spacing = cfg.get("spacing")
    origin = cfg.get("origin")
    for name, val in (("spacing", spacing), ("origin", origin)):
        if val is not None and len(val) != ndim:
            raise ValueError(f"{name} must have {ndim} components, got {val}")

    out_dir = cfg.get("output_dir", "./junction_out")
    os.makedirs(out_dir, exist_ok=True)
    stem = os.path.splitext(os.path.basename(input_path))[0]
    labels_path = os.path.join(out_dir, f"{stem}_labels.npz")
    table_path = os.path.join(out_dir, f"{stem}_junctions.txt")
    save_labels(labels_path, result, spacing=spacing, origin=origin)
    write_junction_table(table_path, result.junctions, ndim)
    t_done = time.time()

    rc = result.config
    meta = {
        "input": input_path,
        "shape": [int(n) for n in grid.shape],
        "K": int(result.K),
        "candidates": int(np.count_nonzero(result.branch_counts >= rc.junction_threshold)),
        "times": {
            "load": float(t_load - t0),
            "detect": float(t_detect - t_load),
            "write": float(t_done - t_detect),
        },
        "detection": {
            "inner_radius": float(rc.inner_radius),
            "outer_radius": float(rc.outer_radius),
            "min_region_size": int(rc.min_region_size),
            "connectivity": int(rc.connectivity),
            "foreground_threshold": float(rc.foreground_threshold),
            "junction_threshold": int(rc.junction_threshold),
            "background": rc.background,
        },
        "git_rev": _git_rev(),
        "config": cfg,
        "output_npz": os.path.basename(labels_path),
        "output_table": os.path.basename(table_path),
    }
    with open(os.path.join(out_dir, f"{stem}.meta.json"), "w") as f:
        json.dump(meta, f, indent=2)

    if result.K == 0:
        print("No junctions found.")
    else:
        print(format_junction_table(result.junctions, ndim), end="")
    print(f"times: load={t_load-t0:.2f}s detect={t_detect-t_load:.2f}s write={t_done-t_detect:.2f}s K={result.K}")
    return result


if __name__ == "__main__":
    main()
