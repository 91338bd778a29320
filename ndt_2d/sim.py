"""2D LiDAR simulation by ray casting against wall segments.

Produces raw ``LaserScan`` sweeps (one range per beam, NaN for beams that
hit nothing within range) so simulated data goes through the same range
conversion as real sensor data.

Author: Navigation Engineer
Date: 2024
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import KDTree

from .laser import LaserScan
from .types import Pose2d

Wall = Tuple[np.ndarray, np.ndarray]


def ray_segment_intersection(
    ray_origin: np.ndarray,
    ray_direction: np.ndarray,
    segment_start: np.ndarray,
    segment_end: np.ndarray,
) -> float:
    """Distance along a ray to a line segment.

    Solves origin + t * direction = start + u * (end - start) with t >= 0
    and 0 <= u <= 1.

    Args:
        ray_origin: Ray starting point [x, y].
        ray_direction: Unit direction [dx, dy].
        segment_start: Segment start point [x, y].
        segment_end: Segment end point [x, y].

    Returns:
        Distance t to the intersection, inf if the ray misses the segment.
    """
    o = np.asarray(ray_origin, dtype=float)
    d = np.asarray(ray_direction, dtype=float)
    start = np.asarray(segment_start, dtype=float)
    s_dir = np.asarray(segment_end, dtype=float) - start

    # Degenerate segment or parallel ray
    det = d[0] * s_dir[1] - d[1] * s_dir[0]
    if np.dot(s_dir, s_dir) < 1e-10 or abs(det) < 1e-10:
        return float("inf")

    diff = start - o
    t = (diff[0] * s_dir[1] - diff[1] * s_dir[0]) / det
    u = (diff[0] * d[1] - diff[1] * d[0]) / det

    if t < 0 or u < 0 or u > 1:
        return float("inf")
    return float(t)


def simulate_laser_scan(
    pose: Pose2d,
    walls: Sequence[Wall],
    num_rays: int = 360,
    max_range: float = 10.0,
    noise_std: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> LaserScan:
    """Cast a full 360° sweep from ``pose`` and return the raw ranges.

    Beam i points at angle 2π i / num_rays in the sensor frame. Each beam
    reports its closest wall hit, so near walls occlude far ones.

    Args:
        pose: Sensor pose in the world frame.
        walls: (start, end) wall segments in the world frame.
        num_rays: Number of beams.
        max_range: Sensor range; farther hits are reported as NaN.
        noise_std: Standard deviation of additive range noise (meters).
        rng: Random generator for the noise.

    Returns:
        LaserScan with ``num_rays`` ranges.

    Example:
        >>> walls = box_room_walls(10.0, 6.0)
        >>> laser = simulate_laser_scan(Pose2d(0.0, 0.0, 0.0), walls, num_rays=4)
        >>> np.round(laser.ranges, 3)
        array([5., 3., 5., 3.])
    """
    if num_rays <= 0:
        raise ValueError(f"num_rays must be positive, got {num_rays}")
    if max_range <= 0:
        raise ValueError(f"max_range must be positive, got {max_range}")

    increment = 2.0 * np.pi / num_rays
    origin = np.array([pose.x, pose.y])
    ranges = np.full(num_rays, np.nan)

    for i in range(num_rays):
        angle = pose.theta + i * increment
        direction = np.array([np.cos(angle), np.sin(angle)])
        distance = min(
            (ray_segment_intersection(origin, direction, a, b) for a, b in walls),
            default=float("inf"),
        )
        if distance <= max_range:
            ranges[i] = distance

    if noise_std > 0:
        rng = rng if rng is not None else np.random.default_rng()
        hit = np.isfinite(ranges)
        ranges[hit] = np.maximum(ranges[hit] + rng.normal(0.0, noise_std, hit.sum()), 0.0)

    return LaserScan(
        angle_min=0.0,
        angle_increment=increment,
        ranges=ranges,
        range_min=0.0,
        range_max=max_range,
    )


def box_room_walls(
    width: float,
    height: float,
    center: Tuple[float, float] = (0.0, 0.0),
    obstacles: bool = False,
) -> List[Wall]:
    """Walls of a rectangular room, optionally with interior obstacles.

    Args:
        width, height: Room size (meters).
        center: Room center in the world frame.
        obstacles: Add a short wall and a pillar so that the room is not
                   symmetric.

    Returns:
        List of (start, end) wall segments.
    """
    cx, cy = center
    hw, hh = 0.5 * width, 0.5 * height
    corners = [
        np.array([cx - hw, cy - hh]),
        np.array([cx + hw, cy - hh]),
        np.array([cx + hw, cy + hh]),
        np.array([cx - hw, cy + hh]),
    ]
    walls = [(corners[i], corners[(i + 1) % 4]) for i in range(4)]

    if obstacles:
        # Partition from the top wall
        walls.append((np.array([cx + 0.2 * hw, cy + hh]), np.array([cx + 0.2 * hw, cy + 0.4 * hh])))
        # Square pillar
        p = np.array([cx - 0.5 * hw, cy - 0.4 * hh])
        s = 0.1 * min(hw, hh)
        pillar = [p + [-s, -s], p + [s, -s], p + [s, s], p + [-s, s]]
        walls.extend((pillar[i], pillar[(i + 1) % 4]) for i in range(4))

    return walls


def sample_walls(walls: Sequence[Wall], spacing: float = 0.01) -> np.ndarray:
    """Points along every wall, at most ``spacing`` apart, shape (M, 2)."""
    samples = []
    for a, b in walls:
        a = np.asarray(a, dtype=float)
        b = np.asarray(b, dtype=float)
        n = max(int(np.ceil(np.linalg.norm(b - a) / spacing)), 1)
        t = np.linspace(0.0, 1.0, n + 1)[:, None]
        samples.append(a + t * (b - a))
    if not samples:
        return np.empty((0, 2))
    return np.vstack(samples)


def wall_distances(points: np.ndarray, walls: Sequence[Wall], spacing: float = 0.01) -> np.ndarray:
    """Distance from each world-frame point to the nearest wall (approx. ``spacing``)."""
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    reference = sample_walls(walls, spacing)
    if points.shape[0] == 0 or reference.shape[0] == 0:
        return np.full(points.shape[0], np.inf)
    distances, _ = KDTree(reference).query(points)
    return distances
