"""Configuration for the NDT scan matcher and the mapping loop.

All units are SI (meters, radians, seconds). Parameters are plain numbers
validated for positivity at construction; there is no cross-validation
between them.

Configuration can be built in code, from a dictionary, or from a JSON file:

    >>> cfg = MapperConfig.from_dict({"rolling_depth": 5,
    ...                               "matcher": {"linear_size": 0.5}})
    >>> cfg.matcher.linear_size
    0.5

Author: Navigation Engineer
Date: 2024
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .ndt import DEFAULT_MIN_POINTS, DEFAULT_REGULARIZATION_RATIO


def _require_positive(obj: Any, *names: str) -> None:
    for name in names:
        value = getattr(obj, name)
        if value is None or not value > 0:
            raise ValueError(f"{name} must be positive, got {value}")


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return dict(data)


@dataclass(frozen=True)
class ScanMatcherConfig:
    """
    Parameters of the NDT map and the correlation search.

    Attributes:
        resolution: NDT cell size (meters).
        angular_res: Rotation step of the search lattice (radians).
        angular_size: Half-width of the rotation search window (radians).
        linear_res: Translation step of the search lattice (meters).
        linear_size: Half-width of the translation search window (meters).
        range_max: Maximum valid sensor range (meters) used when converting
                   raw ranges to points.
        map_size: Edge of a fixed square NDT centered on the map origin
                  (meters). None sizes the grid to the ingested scans.
        min_points: Minimum samples for a cell to be scoreable (>= 2).
        regularization_ratio: Minor/major eigenvalue floor for cell
                              covariances.
        peak_ratio: Candidates scoring at least ``peak_ratio * best`` take
                    part in the covariance estimate.
        num_threads: Worker threads for candidate evaluation (1 = inline).
    """

    resolution: float = 0.25
    angular_res: float = 0.02
    angular_size: float = 0.2
    linear_res: float = 0.05
    linear_size: float = 0.3
    range_max: float = 30.0
    map_size: Optional[float] = None
    min_points: int = DEFAULT_MIN_POINTS
    regularization_ratio: float = DEFAULT_REGULARIZATION_RATIO
    peak_ratio: float = 0.8
    num_threads: int = 1

    def __post_init__(self) -> None:
        _require_positive(
            self,
            "resolution",
            "angular_res",
            "angular_size",
            "linear_res",
            "linear_size",
            "range_max",
            "regularization_ratio",
            "peak_ratio",
            "num_threads",
        )
        if self.map_size is not None:
            _require_positive(self, "map_size")
        if self.min_points < 2:
            raise ValueError(f"min_points must be >= 2, got {self.min_points}")
        if self.peak_ratio > 1.0:
            raise ValueError(f"peak_ratio must be <= 1, got {self.peak_ratio}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanMatcherConfig":
        """Build from a dictionary; unknown keys raise ValueError."""
        return cls(**_known_fields(cls, data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MapperConfig:
    """
    Parameters of the mapping loop.

    Attributes:
        map_resolution: Cell size of the published occupancy grid (meters).
        minimum_travel_distance: Distance the robot must travel before a new
                                 scan is accepted (meters).
        minimum_travel_rotation: Rotation that also triggers acceptance
                                 (radians).
        rolling_depth: Number of most recent scans the matcher map is built
                       from.
        map_size: Edge of the published square map centered on the origin
                  (meters). None sizes the map to the accumulated scans.
        scan_points_to_use: Cap on scan points used per match.
        min_match_score: A match is adopted only above this score.
        occupied_lower: Exclusive lower likelihood bound for "occupied".
        occupied_upper: Exclusive upper likelihood bound for "occupied".
        publish_period: Period of the background map publisher (seconds).
        matcher: Scan matcher parameters.
    """

    map_resolution: float = 0.05
    minimum_travel_distance: float = 0.1
    minimum_travel_rotation: float = 1.0
    rolling_depth: int = 10
    map_size: Optional[float] = None
    scan_points_to_use: int = 100
    min_match_score: float = 0.0
    occupied_lower: float = 0.1
    occupied_upper: float = float("inf")
    publish_period: float = 0.25
    matcher: ScanMatcherConfig = field(default_factory=ScanMatcherConfig)

    def __post_init__(self) -> None:
        _require_positive(
            self,
            "map_resolution",
            "minimum_travel_distance",
            "minimum_travel_rotation",
            "rolling_depth",
            "scan_points_to_use",
            "publish_period",
        )
        if self.map_size is not None:
            _require_positive(self, "map_size")
        if self.min_match_score < 0:
            raise ValueError(
                f"min_match_score must be non-negative, got {self.min_match_score}"
            )
        if not self.occupied_lower < self.occupied_upper:
            raise ValueError(
                "occupied_lower must be below occupied_upper, got "
                f"({self.occupied_lower}, {self.occupied_upper})"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MapperConfig":
        """Build from a dictionary with an optional nested ``matcher`` dict."""
        data = _known_fields(cls, data)
        matcher = data.pop("matcher", None)
        if isinstance(matcher, dict):
            data["matcher"] = ScanMatcherConfig.from_dict(matcher)
        elif matcher is not None:
            data["matcher"] = matcher
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: Union[str, Path]) -> MapperConfig:
    """
    Load a MapperConfig from a JSON file.

    Args:
        path: Path to a JSON object with MapperConfig keys.

    Returns:
        MapperConfig instance.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If keys are unknown or values are invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    return MapperConfig.from_dict(data)


def save_config(config: MapperConfig, path: Union[str, Path]) -> None:
    """Write a MapperConfig to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
