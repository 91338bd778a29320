"""NDT-based 2D LiDAR mapping and scan matching.

The package represents accumulated laser scans as a grid of local Gaussians
(the Normal Distributions Transform) and estimates the pose of new scans by
searching for the offset that maximizes their likelihood under that grid.

Main components:
    - Point, Pose2d: Value types
    - se2_compose, se2_inverse, se2_relative, se2_apply: SE(2) operations
    - Cell, NDT: Gaussian cells and the dense NDT grid
    - ScanMatcherNDT, MatchResult: Correlation-search scan matching
    - Scan, Constraint, Graph: Pose-graph record with .npz persistence
    - LaserScan, laser_scan_to_points: Raw range conversion
    - OccupancyGrid, render_occupancy: Map rasterization
    - Mapper2D: Gated mapping loop with a background map publisher
    - simulate_laser_scan, box_room_walls: Ray-cast LiDAR simulation

Example usage:
    >>> from ndt_2d import Mapper2D, Pose2d, box_room_walls, simulate_laser_scan
    >>> walls = box_room_walls(10.0, 6.0, obstacles=True)
    >>> mapper = Mapper2D()
    >>> for pose in trajectory:
    ...     mapper.add_laser_scan(simulate_laser_scan(pose, walls), pose)
    >>> grid = mapper.publish_map()
"""

from .config import MapperConfig, ScanMatcherConfig, load_config, save_config
from .graph import Constraint, Graph, Marker, Scan
from .laser import LaserScan, laser_scan_to_points
from .mapper import Mapper2D, MapperStepResult
from .ndt import NDT, Cell, information_matrix, regularize_covariance
from .occupancy import (
    LEGACY_OCCUPIED_BAND,
    OccupancyGrid,
    render_ndt,
    render_occupancy,
)
from .scan_matcher import MatchResult, ScanMatcherNDT, subsample_points
from .se2 import se2_apply, se2_compose, se2_inverse, se2_relative, wrap_angle
from .sim import box_room_walls, simulate_laser_scan, wall_distances
from .types import Point, PointCloud2D, Pose2d

__version__ = "0.1.0"

__all__ = [
    # Types
    "Point",
    "Pose2d",
    "PointCloud2D",
    # SE(2) operations
    "wrap_angle",
    "se2_compose",
    "se2_inverse",
    "se2_relative",
    "se2_apply",
    # NDT
    "Cell",
    "NDT",
    "regularize_covariance",
    "information_matrix",
    # Scan matching
    "ScanMatcherNDT",
    "MatchResult",
    "subsample_points",
    # Graph
    "Scan",
    "Constraint",
    "Graph",
    "Marker",
    # Configuration
    "ScanMatcherConfig",
    "MapperConfig",
    "load_config",
    "save_config",
    # Sensor data and maps
    "LaserScan",
    "laser_scan_to_points",
    "OccupancyGrid",
    "render_occupancy",
    "render_ndt",
    "LEGACY_OCCUPIED_BAND",
    # Mapping
    "Mapper2D",
    "MapperStepResult",
    # Simulation
    "simulate_laser_scan",
    "box_room_walls",
    "wall_distances",
]
