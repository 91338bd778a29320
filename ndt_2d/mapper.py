"""Mapping loop: odometry gating, NDT scan matching and map publication.

Mapper2D turns a stream of (laser sweep, odometry pose) pairs into a pose
graph of corrected scans:

    1. Gate: a sweep is kept only after the robot has moved at least
       ``minimum_travel_distance`` or turned ``minimum_travel_rotation``
       since the last kept sweep.
    2. Predict: the odometry delta since the last kept sweep is rotated by
       the heading offset between the odometry and map frames and added to
       the last corrected pose. The first sweep starts at the map origin.
    3. Match: the scan matcher map is rebuilt from the last
       ``rolling_depth`` scans and the new sweep is matched around the
       prediction.
    4. Record: scan, odometry pose and an odometry constraint are appended
       under a lock and a map update is flagged.

A background thread (``start``/``stop``) periodically rebuilds a full NDT
from every scan and renders it as an occupancy grid.

Author: Navigation Engineer
Date: 2024
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from .config import MapperConfig
from .graph import Graph
from .laser import LaserScan, laser_scan_to_points
from .ndt import NDT
from .occupancy import OccupancyGrid, render_ndt, render_occupancy
from .scan_matcher import MatchResult, ScanMatcherNDT
from .se2 import se2_compose, se2_inverse, wrap_angle
from .types import Pose2d

logger = logging.getLogger(__name__)

MapCallback = Callable[[Optional[OccupancyGrid], Optional[Pose2d]], None]


@dataclass
class MapperStepResult:
    """
    Outcome of feeding one sweep to the mapper.

    Attributes:
        accepted: False when the sweep was dropped by the travel gate.
        odom_pose: Odometry pose supplied with the sweep.
        scan_id: Graph id of the new scan (None if not accepted).
        predicted_pose: Odometry-based prediction of the map-frame pose.
        corrected_pose: Pose stored in the graph (match or prediction).
        match: Scan match result, None when the matcher map was empty.
        matched: True when the match pose was adopted.
        n_points: Number of sensor points kept from the sweep.
    """

    accepted: bool
    odom_pose: Pose2d
    scan_id: Optional[int] = None
    predicted_pose: Optional[Pose2d] = None
    corrected_pose: Optional[Pose2d] = None
    match: Optional[MatchResult] = None
    matched: bool = False
    n_points: int = 0


class Mapper2D:
    """
    Incremental NDT mapper.

    Attributes:
        config: Mapper parameters.
        matcher: Rolling-window scan matcher.
        map_update_available: True when scans were added since the last
                              published map.
        latest_map: Last grid returned by ``publish_map``.

    Example:
        >>> mapper = Mapper2D()
        >>> for laser, odom in stream:
        ...     mapper.add_laser_scan(laser, odom)
        >>> grid = mapper.publish_map()
        >>> mapper.graph.save("session.npz")
    """

    def __init__(self, config: Optional[MapperConfig] = None) -> None:
        self.config = config if config is not None else MapperConfig()
        self.matcher = ScanMatcherNDT(self.config.matcher)

        self._graph = Graph()
        self._odom_poses: List[Pose2d] = []
        self._lock = threading.Lock()

        self.map_update_available = False
        self.latest_map: Optional[OccupancyGrid] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    @property
    def graph(self) -> Graph:
        return self._graph

    @property
    def odom_poses(self) -> List[Pose2d]:
        with self._lock:
            return list(self._odom_poses)

    @property
    def corrected_poses(self) -> List[Pose2d]:
        with self._lock:
            return [scan.pose for scan in self._graph.scans]

    def _last_poses(self):
        with self._lock:
            if not self._odom_poses:
                return None, None
            return self._odom_poses[-1], self._graph.scans[-1].pose

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def travelled_enough(self, odom_pose: Pose2d) -> bool:
        """True when ``odom_pose`` is far enough from the last kept sweep."""
        last_odom, _ = self._last_poses()
        if last_odom is None:
            return True

        distance = np.hypot(odom_pose.x - last_odom.x, odom_pose.y - last_odom.y)
        rotation = abs(wrap_angle(odom_pose.theta - last_odom.theta))
        return (
            distance >= self.config.minimum_travel_distance
            or rotation >= self.config.minimum_travel_rotation
        )

    def predict_pose(self, odom_pose: Pose2d) -> Pose2d:
        """
        Map-frame prediction for a new odometry pose.

        The odometry delta is expressed in the odometry frame, so it is
        rotated by the heading offset between the last corrected pose and
        the last odometry pose before being applied.
        """
        last_odom, last_corrected = self._last_poses()
        if last_odom is None:
            return Pose2d.identity()

        dx = odom_pose.x - last_odom.x
        dy = odom_pose.y - last_odom.y
        dtheta = wrap_angle(odom_pose.theta - last_odom.theta)

        heading = wrap_angle(last_corrected.theta - last_odom.theta)
        c, s = np.cos(heading), np.sin(heading)
        return Pose2d(
            x=last_corrected.x + c * dx - s * dy,
            y=last_corrected.y + s * dx + c * dy,
            theta=wrap_angle(last_corrected.theta + dtheta),
        )

    def add_laser_scan(self, laser: LaserScan, odom_pose: Pose2d) -> MapperStepResult:
        """
        Feed one raw sweep with its odometry pose.

        Ranges are converted with the matcher's ``range_max``; see
        ``add_scan_points`` for the rest of the pipeline.
        """
        if not self.travelled_enough(odom_pose):
            logger.debug("Skipping sweep: not enough travel since last scan")
            return MapperStepResult(accepted=False, odom_pose=odom_pose)

        points = laser_scan_to_points(laser, self.matcher.range_max)
        return self._add_accepted(points, odom_pose)

    def add_scan_points(self, points: np.ndarray, odom_pose: Pose2d) -> MapperStepResult:
        """
        Feed one sweep already converted to sensor-frame points.

        Args:
            points: Sensor-frame points, shape (N, 2).
            odom_pose: Odometry pose at capture time.

        Returns:
            MapperStepResult describing what happened to the sweep.
        """
        if not self.travelled_enough(odom_pose):
            logger.debug("Skipping sweep: not enough travel since last scan")
            return MapperStepResult(accepted=False, odom_pose=odom_pose)

        return self._add_accepted(points, odom_pose)

    def _add_accepted(self, points: np.ndarray, odom_pose: Pose2d) -> MapperStepResult:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        predicted = self.predict_pose(odom_pose)
        corrected = predicted
        match = None
        information = None

        with self._lock:
            window = self._graph.scans[-self.config.rolling_depth:]

        if window:
            self.matcher.add_scans(window)
            if not self.matcher.is_empty():
                match = self.matcher.match_scan(
                    points, predicted, self.config.scan_points_to_use
                )
                if match.valid and match.score > self.config.min_match_score:
                    corrected = match.pose
                    information = np.linalg.inv(match.covariance)

        with self._lock:
            scan = self._graph.add_scan(points, corrected)
            self._odom_poses.append(odom_pose)
            if scan.id > 0:
                self._graph.add_odom_constraint(scan.id - 1, scan.id, information=information)
            self.map_update_available = True

        logger.info("Adding scan %d to map (%d points)", scan.id, len(scan))
        logger.debug("Odom pose: %s, corrected pose: %s", odom_pose, corrected)

        return MapperStepResult(
            accepted=True,
            odom_pose=odom_pose,
            scan_id=scan.id,
            predicted_pose=predicted,
            corrected_pose=corrected,
            match=match,
            matched=information is not None,
            n_points=len(scan),
        )

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------
    def build_map(self) -> Optional[NDT]:
        """Full NDT of every scan at its corrected pose (None if no points)."""
        with self._lock:
            scans = list(self._graph.scans)

        matcher_cfg = self.config.matcher
        return NDT.from_scans(
            scans,
            matcher_cfg.resolution,
            map_size=self.config.map_size,
            min_points=matcher_cfg.min_points,
            regularization_ratio=matcher_cfg.regularization_ratio,
        )

    def publish_map(self, force: bool = False) -> Optional[OccupancyGrid]:
        """
        Render the occupancy grid if scans were added since the last call.

        Args:
            force: Render even when no update is pending.

        Returns:
            OccupancyGrid, or None when nothing changed or there is nothing
            to render.
        """
        with self._lock:
            if not (self.map_update_available or force):
                return None
            self.map_update_available = False

        ndt = self.build_map()
        if ndt is None:
            return None

        cfg = self.config
        if cfg.map_size is not None:
            half = 0.5 * cfg.map_size
            grid = render_occupancy(
                ndt, cfg.map_resolution, cfg.map_size, cfg.map_size, -half, -half,
                lower=cfg.occupied_lower, upper=cfg.occupied_upper,
            )
        else:
            grid = render_ndt(
                ndt, cfg.map_resolution,
                lower=cfg.occupied_lower, upper=cfg.occupied_upper,
            )

        self.latest_map = grid
        logger.info(
            "Published %dx%d map (%.1f%% occupied)",
            grid.width, grid.height, 100.0 * grid.occupied_fraction(),
        )
        return grid

    def map_to_odom(self) -> Optional[Pose2d]:
        """
        Transform from the map frame to the odometry frame.

        map->odom = (map->robot) * (odom->robot)^-1 for the latest scan;
        None before the first scan.
        """
        last_odom, last_corrected = self._last_poses()
        if last_odom is None:
            return None
        return Pose2d.from_array(se2_compose(last_corrected, se2_inverse(last_odom)))

    # ------------------------------------------------------------------
    # Background publisher
    # ------------------------------------------------------------------
    def start(self, callback: Optional[MapCallback] = None) -> None:
        """
        Start the background publisher thread.

        Every ``publish_period`` seconds the thread calls ``publish_map`` and
        then ``callback(grid, map_to_odom)``; ``grid`` is None on ticks
        without a map update.
        """
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Mapper publisher is already running")

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._publish_loop, args=(callback,), daemon=True
        )
        self._thread.start()
        logger.info("Map publisher started (period %.3f s)", self.config.publish_period)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the background publisher thread and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Map publisher stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _publish_loop(self, callback: Optional[MapCallback]) -> None:
        while not self._stop_event.wait(self.config.publish_period):
            try:
                grid = self.publish_map()
                if callback is not None:
                    callback(grid, self.map_to_odom())
            except Exception:
                logger.exception("Map publication failed")
