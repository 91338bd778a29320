"""Conversion of raw laser range readings into sensor-frame point clouds.

A laser sweep is described by its first beam angle, the angular increment
between beams and one range per beam. Beam i points at

    angle_i = angle_min + i * angle_increment

and a valid return projects to (r cos(angle_i), r sin(angle_i)) in the
sensor frame. Returns that are NaN/inf, below ``range_min`` or beyond the
effective maximum range are dropped.

Author: Navigation Engineer
Date: 2024
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class LaserScan:
    """
    One sweep of raw range readings.

    Attributes:
        angle_min: Angle of the first beam (radians).
        angle_increment: Angle between consecutive beams (radians).
        ranges: Measured ranges (meters), shape (N,). NaN marks no return.
        range_min: Minimum valid range (meters).
        range_max: Maximum valid range reported by the sensor (meters).
    """

    angle_min: float
    angle_increment: float
    ranges: np.ndarray
    range_min: float = 0.0
    range_max: float = float("inf")

    def __post_init__(self) -> None:
        self.ranges = np.asarray(self.ranges, dtype=np.float64)
        if self.ranges.ndim != 1:
            raise ValueError(f"ranges must be 1D, got shape {self.ranges.shape}")
        if self.range_min < 0:
            raise ValueError(f"range_min must be non-negative, got {self.range_min}")
        if self.range_max <= self.range_min:
            raise ValueError(
                f"range_max ({self.range_max}) must exceed range_min ({self.range_min})"
            )

    @property
    def angles(self) -> np.ndarray:
        """Beam angles, shape (N,)."""
        return self.angle_min + np.arange(self.ranges.shape[0]) * self.angle_increment


def laser_scan_to_points(
    laser: LaserScan, range_max: Optional[float] = None
) -> np.ndarray:
    """
    Project valid range readings to sensor-frame points.

    Args:
        laser: Raw sweep.
        range_max: Additional range cutoff (e.g. the scan matcher's
                   ``range_max``). The tighter of this and
                   ``laser.range_max`` applies.

    Returns:
        Points of shape (M, 2), M <= number of beams, in beam order.

    Examples:
        >>> laser = LaserScan(0.0, np.pi / 2, np.array([1.0, np.nan, 2.0]))
        >>> np.round(laser_scan_to_points(laser), 6)
        array([[ 1.,  0.],
               [-2.,  0.]])
    """
    limit = laser.range_max if range_max is None else min(laser.range_max, range_max)

    ranges = laser.ranges
    angles = laser.angles

    valid = np.isfinite(ranges)
    valid[valid] &= (ranges[valid] >= laser.range_min) & (ranges[valid] <= limit)

    r = ranges[valid]
    a = angles[valid]
    return np.column_stack([r * np.cos(a), r * np.sin(a)])
