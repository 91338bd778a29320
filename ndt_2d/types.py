"""Value types shared by the NDT mapping modules.

Key types:
    - Point: a single 2D point (meters)
    - Pose2d: SE(2) pose [x, y, theta]
    - PointCloud2D: type alias for (N, 2) point arrays

Point clouds are passed around as NumPy arrays of shape (N, 2); the
dataclasses below are used where a single value is exchanged (scan poses,
query points, constraint endpoints).

Author: Navigation Engineer
Date: 2024
"""

from dataclasses import dataclass

import numpy as np


# Type alias for clarity and documentation
PointCloud2D = np.ndarray  # Shape (N, 2), points in 2D space (meters)


@dataclass(frozen=True)
class Point:
    """
    2D point in meters.

    The frame (sensor or map) depends on context; scans store sensor-frame
    points and the NDT works with map-frame points.

    Attributes:
        x: Position along x (meters).
        y: Position along y (meters).

    Examples:
        >>> p = Point(3.5, 3.5)
        >>> p.to_array()
        array([3.5, 3.5])
    """

    x: float
    y: float

    def to_array(self) -> np.ndarray:
        """Convert point to NumPy array [x, y]."""
        return np.array([self.x, self.y], dtype=np.float64)


@dataclass(frozen=True)
class Pose2d:
    """
    SE(2) pose for 2D scan matching.

    Represents a rigid transformation in the plane: position (x, y) and
    heading (theta). Scan poses, odometry poses and match results all use
    this type.

    Attributes:
        x: Position in x-axis (meters).
        y: Position in y-axis (meters).
        theta: Heading angle (radians), counter-clockwise from the positive
               x-axis. Normalized to (-π, π] by every composition helper.

    Examples:
        >>> p = Pose2d(x=1.0, y=2.0, theta=np.pi / 4)
        >>> arr = p.to_array()
        >>> Pose2d.from_array(arr) == p
        True
    """

    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def __post_init__(self) -> None:
        """Validate pose values after initialization."""
        if not np.isfinite(self.x):
            raise ValueError(f"x must be finite, got {self.x}")
        if not np.isfinite(self.y):
            raise ValueError(f"y must be finite, got {self.y}")
        if not np.isfinite(self.theta):
            raise ValueError(f"theta must be finite, got {self.theta}")

    def to_array(self) -> np.ndarray:
        """
        Convert pose to NumPy array [x, y, theta].

        Returns:
            Array of shape (3,) containing [x, y, theta].
        """
        return np.array([self.x, self.y, self.theta], dtype=np.float64)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "Pose2d":
        """
        Create Pose2d from NumPy array [x, y, theta].

        Args:
            arr: Array of shape (3,) containing [x, y, theta].

        Returns:
            Pose2d instance.

        Raises:
            ValueError: If array does not have exactly 3 elements.
        """
        arr = np.asarray(arr, dtype=np.float64)
        if arr.shape != (3,):
            raise ValueError(f"Array must have shape (3,), got {arr.shape}")
        return cls(x=float(arr[0]), y=float(arr[1]), theta=float(arr[2]))

    @classmethod
    def identity(cls) -> "Pose2d":
        """Create identity pose (origin with zero rotation)."""
        return cls(x=0.0, y=0.0, theta=0.0)

    def __repr__(self) -> str:
        """Readable string representation."""
        return f"Pose2d(x={self.x:.4f}, y={self.y:.4f}, theta={self.theta:.4f})"
