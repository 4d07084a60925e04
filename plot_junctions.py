from __future__ import annotations

import argparse
import os

import numpy as np
import matplotlib
matplotlib.use("agg")
import matplotlib.pyplot as plt
from matplotlib.patches import Circle

from io_bridge import load_grid, read_junction_table


def _background(grid: np.ndarray, threshold: float = 0.0) -> np.ndarray:
    """2-D image to draw under the junctions; 3-D grids are max-projected along axis 0."""
    g = np.asarray(grid)
    mask = g if g.dtype == np.bool_ else (g > threshold)
    if mask.ndim == 3:
        return mask.max(axis=0)
    return mask


def make_png(grid: np.ndarray, rows, out_path: str, threshold: float = 0.0, title: str | None = None):
    """Overlay junction circles on the mask.

    rows are (label, index, radius) tuples as returned by read_junction_table,
    or JunctionRecord objects. For 3-D grids circles are drawn at (index[1], index[2])
    on the axis-0 max projection.
    """
    img = _background(grid, threshold)
    fig, ax = plt.subplots(figsize=(6, 6), dpi=150)
    ax.imshow(img, cmap="gray", interpolation="nearest", origin="upper")
    n = 0
    for label, index, radius in ((r[0], r[1], r[2]) for r in rows):
        row, col = (index[0], index[1]) if len(index) == 2 else (index[1], index[2])
        ax.add_patch(Circle((col, row), radius, fill=False, edgecolor="tab:red", linewidth=1.2))
        ax.text(col + radius + 0.5, row, str(label), color="tab:red", fontsize=7, va="center")
        n += 1
    planar = np.asarray(grid).ndim == 2
    ax.set_xlabel("index[1]" if planar else "index[2]")
    ax.set_ylabel("index[0]" if planar else "index[1]")
    ax.set_title(title or f"Junctions (K={n})")
    fig.savefig(out_path, bbox_inches="tight")
    plt.close(fig)
    print(f"Wrote {out_path}")


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--grid", required=True, help="input grid (.npy/.npz)")
    ap.add_argument("--grid-key", default=None, help="array name inside an .npz grid")
    ap.add_argument("--table", required=True, help="junction table written by junction_finder.py")
    ap.add_argument("--output", default=None, help="PNG path (default next to the table)")
    ap.add_argument("--threshold", type=float, default=0.0, help="foreground threshold for scalar grids")
    args = ap.parse_args()

    grid = load_grid(args.grid, key=args.grid_key)
    rows = read_junction_table(args.table)
    out = args.output or (os.path.splitext(args.table)[0] + ".png")
    make_png(grid, rows, out, threshold=args.threshold)


if __name__ == "__main__":
    main()
