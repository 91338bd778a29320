"""Occupancy-grid rendering of an NDT map.

The renderer samples the NDT likelihood on a regular lattice of map-frame
points and marks a lattice cell occupied when the likelihood falls inside a
band ``lower < l < upper``.

``LEGACY_OCCUPIED_BAND`` reproduces the band of the first mapping prototype
(every point with non-zero likelihood is occupied, since likelihoods never
reach 50); the default band used by the mapper is configurable through
``MapperConfig.occupied_lower`` / ``occupied_upper``.

Author: Navigation Engineer
Date: 2024
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .ndt import NDT

OCCUPIED = 100
FREE = 0

LEGACY_OCCUPIED_BAND: Tuple[float, float] = (0.0, 50.0)


@dataclass
class OccupancyGrid:
    """
    Rasterized map.

    Attributes:
        resolution: Cell size (meters).
        width: Number of columns (x).
        height: Number of rows (y).
        origin_x, origin_y: Map-frame position of cell (0, 0).
        data: int8 array of shape (height, width); 100 occupied, 0 otherwise.
              ``data[row, col]`` covers x = origin_x + col * resolution,
              y = origin_y + row * resolution.
    """

    resolution: float
    width: int
    height: int
    origin_x: float
    origin_y: float
    data: np.ndarray

    def occupied_fraction(self) -> float:
        """Fraction of cells marked occupied."""
        if self.data.size == 0:
            return 0.0
        return float(np.count_nonzero(self.data == OCCUPIED)) / self.data.size

    def to_flat(self) -> np.ndarray:
        """Row-major flattening (index = col + row * width)."""
        return self.data.reshape(-1)

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """Map-frame x (width,) and y (height,) coordinates of the samples."""
        xs = self.origin_x + np.arange(self.width) * self.resolution
        ys = self.origin_y + np.arange(self.height) * self.resolution
        return xs, ys


def render_occupancy(
    ndt: NDT,
    resolution: float,
    width: float,
    height: float,
    origin_x: float,
    origin_y: float,
    lower: float = 0.1,
    upper: float = float("inf"),
) -> OccupancyGrid:
    """
    Rasterize an NDT into an occupancy grid.

    Args:
        ndt: Computed NDT map.
        resolution: Output cell size (meters).
        width, height: Output extent (meters).
        origin_x, origin_y: Map-frame position of the first sample.
        lower: Exclusive lower likelihood bound for "occupied".
        upper: Exclusive upper likelihood bound for "occupied".

    Returns:
        OccupancyGrid of int(width / resolution) x int(height / resolution)
        cells.

    Raises:
        ValueError: If resolution/extent are not positive or lower >= upper.

    Examples:
        >>> grid = render_occupancy(ndt, 0.05, 10.0, 10.0, -5.0, -5.0)
        >>> grid.data.shape
        (200, 200)
    """
    if resolution <= 0:
        raise ValueError(f"resolution must be positive, got {resolution}")
    if width <= 0 or height <= 0:
        raise ValueError(f"width and height must be positive, got {width} x {height}")
    if not lower < upper:
        raise ValueError(f"lower must be below upper, got ({lower}, {upper})")

    n_cols = int(width / resolution + 1e-9)
    n_rows = int(height / resolution + 1e-9)

    xs = origin_x + np.arange(n_cols) * resolution
    ys = origin_y + np.arange(n_rows) * resolution
    X, Y = np.meshgrid(xs, ys)  # (n_rows, n_cols)

    likelihood = ndt.likelihoods(np.column_stack([X.ravel(), Y.ravel()]))
    likelihood = likelihood.reshape(n_rows, n_cols)

    data = np.full((n_rows, n_cols), FREE, dtype=np.int8)
    data[(likelihood > lower) & (likelihood < upper)] = OCCUPIED

    return OccupancyGrid(
        resolution=resolution,
        width=n_cols,
        height=n_rows,
        origin_x=origin_x,
        origin_y=origin_y,
        data=data,
    )


def render_ndt(
    ndt: NDT,
    resolution: float,
    lower: float = 0.1,
    upper: float = float("inf"),
) -> OccupancyGrid:
    """Rasterize the full extent covered by an NDT's cells."""
    min_x, min_y, max_x, max_y = ndt.bounds()
    return render_occupancy(
        ndt, resolution, max_x - min_x, max_y - min_y, min_x, min_y, lower, upper
    )
