from __future__ import annotations

import numpy as np

from config import JunctionConfig
from io_bridge import format_junction_table
from junction_finder import detect_junctions


def make_line_mask(shape=(31, 31), row=15):
    """1-voxel-wide straight segment spanning the whole grid along axis 1."""
    mask = np.zeros(shape, dtype=bool)
    mask[row, :] = True
    return mask


def make_t_mask(shape=(31, 31), center=(15, 15), arm=12):
    """Thin T: a horizontal bar through `center` and a stem going down (+axis 0)."""
    mask = np.zeros(shape, dtype=bool)
    r, c = center
    mask[r, c - arm:c + arm + 1] = True
    mask[r:r + arm + 1, c] = True
    return mask


def make_cross_mask(shape=(31, 31), center=(15, 15), arm=12):
    mask = np.zeros(shape, dtype=bool)
    r, c = center
    mask[r, c - arm:c + arm + 1] = True
    mask[r - arm:r + arm + 1, c] = True
    return mask


def make_y_mask(shape=(31, 31), center=(15, 15), arm=10):
    """Thin Y: two diagonal arms going up (-axis 0) and a straight stem going down."""
    mask = np.zeros(shape, dtype=bool)
    r, c = center
    for k in range(arm + 1):
        mask[r - k, c - k] = True
        mask[r - k, c + k] = True
        mask[r + k, c] = True
    return mask


def embed_planar(mask2d: np.ndarray, depth: int = 9) -> np.ndarray:
    """Place a 2-D mask in the middle axis-0 plane of an otherwise empty volume."""
    vol = np.zeros((depth,) + mask2d.shape, dtype=bool)
    vol[depth // 2] = mask2d
    return vol


def main():
    cfg = JunctionConfig(inner_radius=2.0, outer_radius=3.0, min_region_size=4)

    res = detect_junctions(make_line_mask(), cfg)
    assert res.K == 0, f"expected no junction on a straight line, got {res.K}"

    for name, mask in (("T", make_t_mask()), ("Y", make_y_mask()), ("cross", make_cross_mask())):
        res = detect_junctions(mask, cfg)
        assert res.K == 1, f"{name}: expected 1 junction, got {res.K}"
        rec = res.junctions[1]
        off = max(abs(a - b) for a, b in zip(rec.index, (15, 15)))
        assert off <= 1, f"{name}: junction at {rec.index}, expected within 1 voxel of (15, 15)"
        print(f"{name}: region size={rec.size} branches={rec.branches}")
        print(format_junction_table(res.junctions, mask.ndim), end="")

    vol = embed_planar(make_t_mask())
    res3 = detect_junctions(vol, cfg)
    assert res3.K == 1, f"planar 3-D T: expected 1 junction, got {res3.K}"
    print(format_junction_table(res3.junctions, vol.ndim), end="")


if __name__ == "__main__":
    main()
