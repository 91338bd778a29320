"""NDT scan matcher: correlation search of a scan against an NDT map.

The matcher owns an NDT built from reference scans (each placed at its
stored map-frame pose) and aligns new scans against it by brute-force
evaluation of a regular lattice of pose offsets around a seed pose:

    dx, dy   ∈ {-linear_size, ..., +linear_size}    step linear_res
    dtheta   ∈ {-angular_size, ..., +angular_size}  step angular_res

For each candidate the (sub-sampled) scan points are moved into the map frame
and the summed NDT likelihood is evaluated; the best candidate wins. The
covariance of the result is the likelihood-weighted covariance of the offsets
of near-peak candidates, plus the variance of the lattice discretization.

Key components:
    - MatchResult: score, corrected pose and covariance of one match
    - ScanMatcherNDT: map building (add_scans), scoring and matching

Author: Navigation Engineer
Date: 2024
"""

import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from .config import ScanMatcherConfig
from .graph import Scan
from .ndt import NDT
from .se2 import se2_apply, wrap_angle
from .types import Pose2d


@dataclass
class MatchResult:
    """
    Outcome of one scan-to-map match.

    Attributes:
        score: Best summed likelihood (0 when no information was available).
        pose: Seed pose with the best offset applied.
        covariance: 3x3 covariance of [x, y, theta].
        offset: Best offset [dx, dy, dtheta] relative to the seed.
        n_points: Number of scan points used for scoring.
        n_candidates: Number of candidate poses evaluated.
        valid: False for a zero-information match (empty map or scan).
    """

    score: float
    pose: Pose2d
    covariance: np.ndarray
    offset: np.ndarray
    n_points: int
    n_candidates: int
    valid: bool


def _lattice(size: float, res: float) -> np.ndarray:
    """Symmetric search values {-n*res, ..., n*res} clipped to [-size, size]."""
    n = int(np.floor(size / res + 1e-9))
    return np.clip(np.arange(-n, n + 1) * res, -size, size)


def subsample_points(points: np.ndarray, max_points: Optional[int]) -> np.ndarray:
    """
    Evenly strided subset of at most ``max_points`` points.

    Args:
        points: Points of shape (N, 2).
        max_points: Cap on the number of points; None keeps all.

    Returns:
        Points of shape (min(N, max_points), 2), in original order.
    """
    n = points.shape[0]
    if max_points is None or n <= max_points:
        return points
    if max_points <= 0:
        return points[:0]
    index = (np.arange(max_points) * n // max_points).astype(np.int64)
    return points[index]


class ScanMatcherNDT:
    """
    NDT map + correlation-search scan matcher.

    States: empty (no scans, or no scoreable cell) and populated. Every
    ``add_scans`` call rebuilds the map from exactly the scans passed in;
    ``reset`` returns to the empty state.

    Attributes:
        config: Search and map parameters.
        resolution: NDT cell size (meters).
        angular_res, angular_size: Rotation search step / half-width.
        linear_res, linear_size: Translation search step / half-width.
        range_max: Sensor range cutoff for raw range conversion.
        ndt: Current map, None when empty.

    Example:
        >>> matcher = ScanMatcherNDT()
        >>> matcher.add_scans([reference_scan])
        >>> result = matcher.match_scan(new_scan, seed_pose, scan_points_to_use=100)
        >>> result.pose, result.score, result.covariance
    """

    def __init__(self, config: Optional[ScanMatcherConfig] = None) -> None:
        self.config = config if config is not None else ScanMatcherConfig()

        self.resolution = self.config.resolution
        self.angular_res = self.config.angular_res
        self.angular_size = self.config.angular_size
        self.linear_res = self.config.linear_res
        self.linear_size = self.config.linear_size
        self.range_max = self.config.range_max

        self.ndt: Optional[NDT] = None
        self.n_scans = 0

        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Map management
    # ------------------------------------------------------------------
    def add_scans(self, scans: Iterable[Scan]) -> None:
        """
        Rebuild the map from the given scans at their stored poses.

        The new NDT is fully built and computed before it replaces the
        current one, so concurrent readers always see a complete map.

        Args:
            scans: Scans to ingest (e.g. the last N scans of a session).
        """
        scans = list(scans)
        self.ndt = NDT.from_scans(
            scans,
            self.resolution,
            map_size=self.config.map_size,
            min_points=self.config.min_points,
            regularization_ratio=self.config.regularization_ratio,
        )
        self.n_scans = len(scans)

    def reset(self) -> None:
        """Discard the map, returning to the empty state."""
        self.ndt = None
        self.n_scans = 0
        self.close()

    def close(self) -> None:
        """Shut down the search thread pool; it is recreated on the next match."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.num_threads,
                    thread_name_prefix="ndt-match",
                )
            return self._executor

    def set_range_max(self, range_max: float) -> None:
        """Set the maximum valid sensor range (meters)."""
        if range_max <= 0:
            raise ValueError(f"range_max must be positive, got {range_max}")
        self.range_max = float(range_max)

    def is_empty(self) -> bool:
        """True when no cell of the map can contribute a score."""
        return self.ndt is None or self.ndt.is_empty()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def score_points(self, points: np.ndarray, pose: Pose2d) -> float:
        """Summed likelihood of sensor-frame points placed at ``pose``."""
        if self.ndt is None:
            return 0.0
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if points.shape[0] == 0:
            return 0.0
        return self.ndt.score_points(se2_apply(pose, points))

    def score_scan(self, scan: Scan, pose: Optional[Pose2d] = None) -> float:
        """Summed likelihood of a scan at ``pose`` (default: its own pose)."""
        return self.score_points(scan.points, scan.pose if pose is None else pose)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------
    def candidate_offsets(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Search lattice values (dx, dy, dtheta) around the seed."""
        linear = _lattice(self.linear_size, self.linear_res)
        angular = _lattice(self.angular_size, self.angular_res)
        return linear, linear.copy(), angular

    def max_covariance(self) -> np.ndarray:
        """
        Covariance reported for a zero-information match.

        This is the largest covariance the estimator can produce over the
        search window: all weight at the window edges, plus the
        discretization floor.
        """
        return np.diag(
            [self.linear_size**2, self.linear_size**2, self.angular_size**2]
        ) + self._discretization_covariance()

    def _discretization_covariance(self) -> np.ndarray:
        # Variance of a uniform error within one lattice step
        return np.diag(
            [self.linear_res**2, self.linear_res**2, self.angular_res**2]
        ) / 12.0

    def _score_rotation(
        self,
        points: np.ndarray,
        seed: Pose2d,
        dtheta: float,
        dxs: np.ndarray,
        dys: np.ndarray,
    ) -> np.ndarray:
        """Scores of all translations for one rotation, shape (len(dxs), len(dys))."""
        rotated = se2_apply(np.array([seed.x, seed.y, seed.theta + dtheta]), points)

        shifts = np.stack(np.meshgrid(dxs, dys, indexing="ij"), axis=-1)  # (nx, ny, 2)
        query = rotated[None, None, :, :] + shifts[:, :, None, :]          # (nx, ny, N, 2)

        likelihoods = self.ndt.likelihoods(query.reshape(-1, 2))
        return likelihoods.reshape(len(dxs), len(dys), points.shape[0]).sum(axis=-1)

    def _empty_result(self, seed: Pose2d, n_points: int, reason: str) -> MatchResult:
        warnings.warn(
            f"Scan match has no information ({reason}); returning seed pose "
            "with maximal covariance.",
            RuntimeWarning,
        )
        return MatchResult(
            score=0.0,
            pose=seed,
            covariance=self.max_covariance(),
            offset=np.zeros(3),
            n_points=n_points,
            n_candidates=0,
            valid=False,
        )

    def match_scan(
        self,
        scan,
        pose: Optional[Pose2d] = None,
        scan_points_to_use: Optional[int] = None,
    ) -> MatchResult:
        """
        Find the pose near ``pose`` that best aligns a scan with the map.

        Args:
            scan: Scan (sensor-frame ``points``) or an (N, 2) point array.
            pose: Seed pose; defaults to ``scan.pose``.
            scan_points_to_use: Cap on the number of scan points scored;
                                points are evenly strided down to it.

        Returns:
            MatchResult with the corrected pose, the best summed likelihood
            and the 3x3 covariance of [x, y, theta]. With an empty map or no
            usable points the seed pose is returned with score 0 and
            ``max_covariance()``.

        Notes:
            Offsets are applied in the map frame: the candidate pose is
            (seed.x + dx, seed.y + dy, seed.theta + dtheta). Among equally
            scoring candidates the one closest to the seed is chosen.
        """
        if pose is None:
            pose = getattr(scan, "pose", None)
            if pose is None:
                raise ValueError("pose is required when scan carries no pose")
        seed = pose

        points = np.asarray(getattr(scan, "points", scan), dtype=np.float64).reshape(-1, 2)
        points = points[np.isfinite(points).all(axis=1)]
        points = subsample_points(points, scan_points_to_use)
        n_points = points.shape[0]

        if self.is_empty():
            return self._empty_result(seed, n_points, "empty map")
        if n_points == 0:
            return self._empty_result(seed, n_points, "no usable scan points")

        dxs, dys, dthetas = self.candidate_offsets()

        if self.config.num_threads > 1 and len(dthetas) > 1:
            slices = list(
                self._get_executor().map(
                    lambda dth: self._score_rotation(points, seed, dth, dxs, dys),
                    dthetas,
                )
            )
        else:
            slices = [self._score_rotation(points, seed, dth, dxs, dys) for dth in dthetas]
        scores = np.stack(slices)  # (n_theta, nx, ny)

        best_score = float(scores.max())
        if best_score <= 0.0:
            return self._empty_result(seed, n_points, "no scan point hit the map")

        DTH, DX, DY = np.meshgrid(dthetas, dxs, dys, indexing="ij")

        # Break ties towards the seed
        ties = np.flatnonzero(scores.ravel() >= best_score)
        distance = (
            (DX.ravel()[ties] / self.linear_size) ** 2
            + (DY.ravel()[ties] / self.linear_size) ** 2
            + (DTH.ravel()[ties] / self.angular_size) ** 2
        )
        best = ties[np.argmin(distance)]
        offset = np.array([DX.ravel()[best], DY.ravel()[best], DTH.ravel()[best]])

        covariance = self._estimate_covariance(scores, DX, DY, DTH, best_score)

        return MatchResult(
            score=best_score,
            pose=Pose2d(
                x=seed.x + offset[0],
                y=seed.y + offset[1],
                theta=wrap_angle(seed.theta + offset[2]),
            ),
            covariance=covariance,
            offset=offset,
            n_points=n_points,
            n_candidates=int(scores.size),
            valid=True,
        )

    def _estimate_covariance(
        self,
        scores: np.ndarray,
        DX: np.ndarray,
        DY: np.ndarray,
        DTH: np.ndarray,
        best_score: float,
    ) -> np.ndarray:
        """
        Likelihood-weighted covariance of near-peak candidate offsets.

        A sharp peak leaves only the discretization floor; a flat score
        surface (e.g. a featureless corridor) spreads weight along the
        ambiguous direction and inflates that axis.
        """
        near_peak = scores >= self.config.peak_ratio * best_score
        weights = scores[near_peak]
        weights = weights / weights.sum()

        offsets = np.column_stack([DX[near_peak], DY[near_peak], DTH[near_peak]])
        mean = weights @ offsets
        centered = offsets - mean
        covariance = (centered * weights[:, None]).T @ centered

        return 0.5 * (covariance + covariance.T) + self._discretization_covariance()
