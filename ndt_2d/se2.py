"""SE(2) operations for 2D scan matching.

Rigid transformations in 2D (rotation + translation) used to move scans into
the map frame, to apply search offsets to a seed pose and to derive relative
constraints between scans.

Key functions:
    - wrap_angle: Normalize angle to (-π, π]
    - se2_compose: Compose two SE(2) poses (p1 ⊕ p2)
    - se2_inverse: Invert an SE(2) pose (p⁻¹)
    - se2_relative: Relative pose p_from⁻¹ ⊕ p_to
    - se2_apply: Transform points by an SE(2) pose

SE(2) representation: poses are NumPy arrays [x, y, theta] of shape (3,) or
Pose2d instances; results are returned as arrays.

Author: Navigation Engineer
Date: 2024
"""

from typing import Union

import numpy as np

from .types import Pose2d

PoseLike = Union[np.ndarray, Pose2d]


def _as_pose_array(p: PoseLike, name: str) -> np.ndarray:
    if isinstance(p, Pose2d):
        return p.to_array()
    p = np.asarray(p, dtype=np.float64)
    if p.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {p.shape}")
    return p


def wrap_angle(theta: float) -> float:
    """
    Normalize angle to the range (-π, π].

    Args:
        theta: Angle in radians (any real value).

    Returns:
        Equivalent angle in (-π, π].

    Examples:
        >>> wrap_angle(0.0)
        0.0
        >>> wrap_angle(3 * np.pi)
        3.141592653589793
        >>> wrap_angle(-np.pi)  # lower bound is excluded
        3.141592653589793

    Notes:
        atan2(sin θ, cos θ) returns values in [-π, π]; the -π endpoint is
        folded onto +π so each heading has exactly one representation.
    """
    wrapped = float(np.arctan2(np.sin(theta), np.cos(theta)))
    if wrapped <= -np.pi:
        wrapped = float(np.pi)
    return wrapped


def se2_compose(p1: PoseLike, p2: PoseLike) -> np.ndarray:
    """
    Compose two SE(2) poses: p_result = p1 ⊕ p2.

    The composition formula for SE(2):
        x_result = x1 + x2*cos(θ1) - y2*sin(θ1)
        y_result = y1 + x2*sin(θ1) + y2*cos(θ1)
        θ_result = θ1 + θ2  (wrapped to (-π, π])

    Args:
        p1: First pose, array [x1, y1, θ1] or Pose2d instance.
        p2: Second pose, array [x2, y2, θ2] or Pose2d instance.

    Returns:
        Composed pose as array [x, y, theta] of shape (3,).

    Raises:
        ValueError: If poses do not have shape (3,).

    Examples:
        >>> p1 = np.array([0, 0, np.pi/2])  # 90° rotation
        >>> p2 = np.array([1, 0, 0])  # 1m forward
        >>> np.allclose(se2_compose(p1, p2), [0, 1, np.pi/2], atol=1e-10)
        True
    """
    x1, y1, th1 = _as_pose_array(p1, "p1")
    x2, y2, th2 = _as_pose_array(p2, "p2")

    cos_th1 = np.cos(th1)
    sin_th1 = np.sin(th1)

    x_result = x1 + x2 * cos_th1 - y2 * sin_th1
    y_result = y1 + x2 * sin_th1 + y2 * cos_th1
    th_result = wrap_angle(th1 + th2)

    return np.array([x_result, y_result, th_result], dtype=np.float64)


def se2_inverse(p: PoseLike) -> np.ndarray:
    """
    Compute the inverse of an SE(2) pose such that p ⊕ p⁻¹ = identity.

    Args:
        p: Pose to invert, array [x, y, theta] or Pose2d instance.

    Returns:
        Inverted pose as array [x, y, theta] of shape (3,).

    Examples:
        >>> p = np.array([1, 2, np.pi/4])
        >>> np.allclose(se2_compose(p, se2_inverse(p)), [0, 0, 0], atol=1e-10)
        True
    """
    x, y, th = _as_pose_array(p, "p")

    cos_th = np.cos(th)
    sin_th = np.sin(th)

    x_inv = -(x * cos_th + y * sin_th)
    y_inv = -(-x * sin_th + y * cos_th)
    th_inv = wrap_angle(-th)

    return np.array([x_inv, y_inv, th_inv], dtype=np.float64)


def se2_relative(p_from: PoseLike, p_to: PoseLike) -> np.ndarray:
    """
    Compute relative pose between two global poses: p_from⁻¹ ⊕ p_to.

    Used to turn consecutive corrected poses into odometry constraints.

    Args:
        p_from: Starting pose [x, y, theta] or Pose2d instance.
        p_to: Target pose [x, y, theta] or Pose2d instance.

    Returns:
        Relative pose as array [x, y, theta] of shape (3,).

    Examples:
        >>> rel = se2_relative(np.array([0, 0, 0]), np.array([1, 1, np.pi/2]))
        >>> np.allclose(rel, [1, 1, np.pi/2], atol=1e-10)
        True
    """
    return se2_compose(se2_inverse(p_from), p_to)


def se2_apply(p: PoseLike, points: np.ndarray) -> np.ndarray:
    """
    Transform 2D points by an SE(2) pose.

    Rotates by theta first, then translates by (x, y):
        points_transformed = R(theta) * points + [x, y]

    Args:
        p: Pose [x, y, theta] or Pose2d instance defining the transformation.
        points: Points to transform, array of shape (N, 2).

    Returns:
        Transformed points, array of shape (N, 2).

    Raises:
        ValueError: If points does not have shape (N, 2).

    Examples:
        >>> p = np.array([0, 0, np.pi/2])
        >>> pts = np.array([[1, 0], [0, 1]])
        >>> np.allclose(se2_apply(p, pts), [[0, 1], [-1, 0]], atol=1e-10)
        True
    """
    x, y, th = _as_pose_array(p, "p")

    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 2:
        raise ValueError(f"points must have shape (N, 2), got {points.shape}")

    cos_th = np.cos(th)
    sin_th = np.sin(th)
    R = np.array([[cos_th, -sin_th], [sin_th, cos_th]], dtype=np.float64)

    # points.T has shape (2, N), R @ points.T has shape (2, N)
    return (R @ points.T).T + np.array([x, y], dtype=np.float64)
