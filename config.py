"""
config.py

Run configuration and error types for junction detection.

    from config import JunctionConfig, parse_config, config_from_dict

    cfg = JunctionConfig(inner_radius=2.0, outer_radius=3.0, min_region_size=6)
    cfg = cfg.resolved(dimension=2)   # fills dimension-dependent defaults

YAML run files are read with ``parse_config`` and the detection keys are
converted with ``config_from_dict``; everything else in the file (paths,
spacing, output options) is left to the driver.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

import yaml


class JunctionDetectionError(Exception):
    """Base class for errors raised by the detection core."""


class InvalidConfiguration(JunctionDetectionError, ValueError):
    """Radii, dimension, connectivity or thresholds are unusable."""


class IncompatibleGrid(JunctionDetectionError, ValueError):
    """Grid rank or extent cannot host a full shell anywhere."""


# Minimum surviving region size used by the 2-D and 3-D tools.
DEFAULT_MIN_REGION_SIZE = {2: 6, 3: 16}

# Full (face/edge/corner) adjacency per dimension.
FULL_CONNECTIVITY = {2: 8, 3: 26}

# Accepted connectivities and their neighbor order (max nonzero step components).
CONNECTIVITY_ORDER = {
    2: {4: 1, 8: 2},
    3: {6: 1, 18: 2, 26: 3},
}

BACKGROUND_MODES = ("zero", "input")


@dataclass(frozen=True)
class JunctionConfig:
    """Parameters of one detection run.

    - inner_radius / outer_radius: shell bounds in voxels, 0 <= inner < outer.
    - min_region_size: regions with fewer candidate voxels are dropped. None picks
      6 for 2-D grids and 16 for 3-D grids.
    - connectivity: neighbor connectivity for shell branches and region labeling.
      None picks full adjacency (8 in 2-D, 26 in 3-D).
    - foreground_threshold: voxels with value > threshold are foreground.
    - junction_threshold: minimum branch count for a candidate (>= 3).
    - background: "zero" leaves non-junction voxels at 0 in the output grid,
      "input" copies the input value there.
    - slab_size: axis-0 planes swept per batch; progress is reported per batch.
    """

    inner_radius: float
    outer_radius: float
    min_region_size: Optional[int] = None
    connectivity: Optional[int] = None
    foreground_threshold: float = 0.0
    junction_threshold: int = 3
    background: str = "zero"
    slab_size: int = 16

    def validate(self, dimension: Optional[int] = None) -> None:
        check_radii(self.inner_radius, self.outer_radius)
        if self.min_region_size is not None and int(self.min_region_size) < 1:
            raise InvalidConfiguration(
                f"min_region_size must be >= 1, got {self.min_region_size}")
        if int(self.junction_threshold) < 3:
            raise InvalidConfiguration(
                f"junction_threshold must be >= 3, got {self.junction_threshold}")
        if self.background not in BACKGROUND_MODES:
            raise InvalidConfiguration(
                f"background must be one of {BACKGROUND_MODES}, got {self.background!r}")
        if int(self.slab_size) < 1:
            raise InvalidConfiguration(f"slab_size must be >= 1, got {self.slab_size}")
        if dimension is not None:
            check_dimension(dimension)
            if self.connectivity is not None:
                connectivity_order(dimension, self.connectivity)

    def resolved(self, dimension: int) -> "JunctionConfig":
        """Validate for a grid dimension and fill the None defaults."""
        self.validate(dimension)
        min_size = self.min_region_size
        if min_size is None:
            min_size = DEFAULT_MIN_REGION_SIZE[dimension]
        conn = self.connectivity
        if conn is None:
            conn = FULL_CONNECTIVITY[dimension]
        return replace(self, min_region_size=int(min_size), connectivity=int(conn))


def check_radii(inner_radius: float, outer_radius: float) -> None:
    inner = float(inner_radius)
    outer = float(outer_radius)
    if inner < 0.0 or outer < 0.0:
        raise InvalidConfiguration(
            f"radii must be non-negative, got inner={inner} outer={outer}")
    if outer <= inner:
        raise InvalidConfiguration(
            f"outer_radius must exceed inner_radius, got inner={inner} outer={outer}")


def check_dimension(dimension: int) -> None:
    if dimension not in (2, 3):
        raise InvalidConfiguration(f"dimension must be 2 or 3, got {dimension}")


def connectivity_order(dimension: int, connectivity: Optional[int]) -> int:
    """Map a connectivity (e.g. 8, 26) to the max number of nonzero step components."""
    check_dimension(dimension)
    if connectivity is None:
        connectivity = FULL_CONNECTIVITY[dimension]
    orders = CONNECTIVITY_ORDER[dimension]
    if int(connectivity) not in orders:
        raise InvalidConfiguration(
            f"connectivity must be one of {sorted(orders)} in {dimension}-D, got {connectivity}")
    return orders[int(connectivity)]


def parse_config(path: str) -> dict:
    with open(path, "r") as f:
        cfg = yaml.safe_load(f)
    return cfg or {}


def config_from_dict(cfg: dict) -> JunctionConfig:
    """Build a JunctionConfig from the detection keys of a run dictionary."""
    if "inner_radius" not in cfg or "outer_radius" not in cfg:
        raise InvalidConfiguration("inner_radius and outer_radius must be provided")
    min_size = cfg.get("min_region_size")
    conn = cfg.get("connectivity")
    out = JunctionConfig(
        inner_radius=float(cfg["inner_radius"]),
        outer_radius=float(cfg["outer_radius"]),
        min_region_size=int(min_size) if min_size is not None else None,
        connectivity=int(conn) if conn is not None else None,
        foreground_threshold=float(cfg.get("foreground_threshold", 0.0)),
        junction_threshold=int(cfg.get("junction_threshold", 3)),
        background=str(cfg.get("background", "zero")).lower(),
        slab_size=int(cfg.get("slab_size", 16)),
    )
    out.validate()
    return out


__all__ = [
    "JunctionConfig",
    "JunctionDetectionError",
    "InvalidConfiguration",
    "IncompatibleGrid",
    "config_from_dict",
    "parse_config",
]
