"""Pose-graph data model: scans, constraints, persistence and markers.

The graph records every accepted scan together with its corrected map-frame
pose, plus relative-pose constraints between scans. Two constraint kinds are
kept in separate lists:

    - odometry constraints: sequential scans, high confidence
    - loop constraints: non-sequential scans, lower confidence

Scan ids are positions in acquisition order and double as indices into
``Graph.scans``.

Persistence uses a single NumPy ``.npz`` archive:

    graph.npz
    ├── scan_ids              (N,)      int64
    ├── scan_poses            (N, 3)    [x, y, theta]
    ├── scan_point_counts     (N,)      int64
    ├── scan_points           (P, 2)    all scans' points, concatenated
    ├── odom_endpoints        (M, 2)    [begin, end]
    ├── odom_transforms       (M, 3)
    ├── odom_information      (M, 3, 3) NaN where not computed
    └── loop_*                same layout as odom_*

Author: Navigation Engineer
Date: 2024
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .se2 import se2_relative
from .types import Pose2d

GRAPH_FORMAT_VERSION = 1


@dataclass
class Scan:
    """
    One accepted sensor sweep.

    Attributes:
        id: Position of the scan in acquisition order.
        pose: Corrected map-frame pose at capture time. This is the only
              field that is updated after creation.
        points: Sensor-frame points, shape (N, 2), read-only.
    """

    id: int
    pose: Pose2d
    points: np.ndarray

    def __post_init__(self) -> None:
        points = np.array(self.points, dtype=np.float64).reshape(-1, 2)
        points.setflags(write=False)
        self.points = points

    def __len__(self) -> int:
        return self.points.shape[0]


@dataclass
class Constraint:
    """
    Directed relative-pose edge between two scans.

    Attributes:
        begin: Id of the scan the transform is expressed in.
        end: Id of the target scan.
        transform: Relative pose [dx, dy, dtheta] from begin to end.
        information: 3x3 precision matrix, or None when not computed.
    """

    begin: int
    end: int
    transform: np.ndarray
    information: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.transform = np.asarray(self.transform, dtype=np.float64)
        if self.transform.shape != (3,):
            raise ValueError(
                f"transform must have shape (3,), got {self.transform.shape}"
            )
        if self.information is not None:
            self.information = np.asarray(self.information, dtype=np.float64)
            if self.information.shape != (3, 3):
                raise ValueError(
                    f"information must have shape (3, 3), got {self.information.shape}"
                )


@dataclass
class Marker:
    """Plain visualization marker (frame, namespace, shape, color, geometry)."""

    ns: str
    id: int
    type: str
    color: Tuple[float, float, float, float]
    scale: Tuple[float, float, float] = (0.1, 0.1, 0.1)
    position: Tuple[float, float] = (0.0, 0.0)
    points: List[Tuple[float, float]] = field(default_factory=list)
    frame_id: str = "map"


class Graph:
    """
    Accumulated pose graph.

    Attributes:
        scans: Scans in acquisition order (scan.id == index).
        odom_constraints: Sequential constraints.
        loop_constraints: Non-sequential constraints.

    Example:
        >>> graph = Graph()
        >>> s0 = graph.add_scan(np.array([[2.0, 3.0]]), Pose2d(0.0, 1.0, 0.0))
        >>> s1 = graph.add_scan(np.array([[1.0, 1.5]]), Pose2d(1.0, 2.5, 0.05))
        >>> c = graph.add_odom_constraint(0, 1, np.array([1.0, 1.5, 0.0]))
        >>> len(graph.odom_constraints)
        1
    """

    def __init__(self) -> None:
        self.scans: List[Scan] = []
        self.odom_constraints: List[Constraint] = []
        self.loop_constraints: List[Constraint] = []

    def __len__(self) -> int:
        return len(self.scans)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------
    def add_scan(self, points: np.ndarray, pose: Pose2d) -> Scan:
        """Append a scan; its id is its position in ``scans``."""
        scan = Scan(id=len(self.scans), pose=pose, points=points)
        self.scans.append(scan)
        return scan

    def _check_endpoints(self, begin: int, end: int) -> None:
        n = len(self.scans)
        for name, idx in (("begin", begin), ("end", end)):
            if not 0 <= idx < n:
                raise ValueError(
                    f"Constraint {name}={idx} does not index an existing scan "
                    f"(graph has {n} scans)"
                )

    def add_odom_constraint(
        self,
        begin: int,
        end: int,
        transform: Optional[np.ndarray] = None,
        information: Optional[np.ndarray] = None,
    ) -> Constraint:
        """
        Add an odometry constraint.

        When ``transform`` is None it is derived from the stored poses of the
        two scans.
        """
        return self._add_constraint(self.odom_constraints, begin, end, transform, information)

    def add_loop_constraint(
        self,
        begin: int,
        end: int,
        transform: Optional[np.ndarray] = None,
        information: Optional[np.ndarray] = None,
    ) -> Constraint:
        """Add a loop constraint (same conventions as odometry)."""
        return self._add_constraint(self.loop_constraints, begin, end, transform, information)

    def _add_constraint(
        self,
        target: List[Constraint],
        begin: int,
        end: int,
        transform: Optional[np.ndarray],
        information: Optional[np.ndarray],
    ) -> Constraint:
        self._check_endpoints(begin, end)
        if transform is None:
            transform = se2_relative(self.scans[begin].pose, self.scans[end].pose)
        constraint = Constraint(begin, end, transform, information)
        target.append(constraint)
        return constraint

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self, filename: Union[str, Path]) -> Path:
        """
        Save scans and constraints to a ``.npz`` archive.

        Args:
            filename: Destination path; ``.npz`` is appended if missing.

        Returns:
            Path of the written file.
        """
        path = Path(filename)
        if path.suffix != ".npz":
            path = path.with_name(path.name + ".npz")
        path.parent.mkdir(parents=True, exist_ok=True)

        counts = np.array([len(s) for s in self.scans], dtype=np.int64)
        if self.scans:
            points = np.vstack([s.points for s in self.scans])
        else:
            points = np.empty((0, 2))

        arrays = {
            "format_version": np.array(GRAPH_FORMAT_VERSION),
            "scan_ids": np.array([s.id for s in self.scans], dtype=np.int64),
            "scan_poses": np.array(
                [s.pose.to_array() for s in self.scans], dtype=np.float64
            ).reshape(-1, 3),
            "scan_point_counts": counts,
            "scan_points": points,
        }
        arrays.update(_pack_constraints("odom", self.odom_constraints))
        arrays.update(_pack_constraints("loop", self.loop_constraints))

        np.savez_compressed(path, **arrays)
        return path

    @classmethod
    def load(cls, filename: Union[str, Path]) -> "Graph":
        """
        Load a graph written by ``save``.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the archive has an unsupported format version or
                        inconsistent scan/point counts, scan ids that are not
                        their positions, or constraints whose endpoints are
                        not stored scans.
        """
        path = Path(filename)
        if not path.exists():
            raise FileNotFoundError(f"Graph file not found: {path}")

        graph = cls()
        with np.load(path, allow_pickle=False) as data:
            version = int(data["format_version"])
            if version != GRAPH_FORMAT_VERSION:
                raise ValueError(f"Unsupported graph format version: {version}")

            ids = data["scan_ids"]
            poses = data["scan_poses"]
            counts = data["scan_point_counts"]
            points = data["scan_points"]
            if int(np.sum(counts)) != points.shape[0]:
                raise ValueError(
                    f"Point counts ({int(np.sum(counts))}) do not match stored "
                    f"points ({points.shape[0]})"
                )

            offsets = np.concatenate([[0], np.cumsum(counts)])
            for i, scan_id in enumerate(ids):
                if int(scan_id) != i:
                    raise ValueError(f"Scan id {int(scan_id)} stored at position {i}")
                graph.scans.append(
                    Scan(
                        id=int(scan_id),
                        pose=Pose2d.from_array(poses[i]),
                        points=points[offsets[i]:offsets[i + 1]],
                    )
                )

            graph.odom_constraints = _unpack_constraints("odom", data)
            graph.loop_constraints = _unpack_constraints("loop", data)

        for c in graph.odom_constraints + graph.loop_constraints:
            graph._check_endpoints(c.begin, c.end)

        return graph

    # ------------------------------------------------------------------
    # Visualization
    # ------------------------------------------------------------------
    def get_markers(self) -> List[Marker]:
        """
        Markers for nodes (red spheres), odometry edges (blue) and loop
        edges (green).
        """
        markers: List[Marker] = []

        for scan in self.scans:
            markers.append(
                Marker(
                    ns="nodes",
                    id=scan.id,
                    type="SPHERE",
                    color=(1.0, 0.0, 0.0, 1.0),
                    position=(scan.pose.x, scan.pose.y),
                )
            )

        edge_id = 0
        for constraints, color in (
            (self.odom_constraints, (0.0, 0.0, 1.0, 1.0)),
            (self.loop_constraints, (0.0, 1.0, 0.0, 1.0)),
        ):
            for constraint in constraints:
                begin = self.scans[constraint.begin].pose
                end = self.scans[constraint.end].pose
                markers.append(
                    Marker(
                        ns="edges",
                        id=edge_id,
                        type="LINE_STRIP",
                        color=color,
                        points=[(begin.x, begin.y), (end.x, end.y)],
                    )
                )
                edge_id += 1

        return markers

    def __repr__(self) -> str:
        return (
            f"Graph(scans={len(self.scans)}, odom_constraints={len(self.odom_constraints)}, "
            f"loop_constraints={len(self.loop_constraints)})"
        )


def _pack_constraints(prefix: str, constraints: Sequence[Constraint]) -> dict:
    information = np.full((len(constraints), 3, 3), np.nan)
    for i, c in enumerate(constraints):
        if c.information is not None:
            information[i] = c.information
    return {
        f"{prefix}_endpoints": np.array(
            [[c.begin, c.end] for c in constraints], dtype=np.int64
        ).reshape(-1, 2),
        f"{prefix}_transforms": np.array(
            [c.transform for c in constraints], dtype=np.float64
        ).reshape(-1, 3),
        f"{prefix}_information": information,
    }


def _unpack_constraints(prefix: str, data) -> List[Constraint]:
    endpoints = data[f"{prefix}_endpoints"]
    transforms = data[f"{prefix}_transforms"]
    information = data[f"{prefix}_information"]

    constraints = []
    for i in range(endpoints.shape[0]):
        info = information[i]
        constraints.append(
            Constraint(
                begin=int(endpoints[i, 0]),
                end=int(endpoints[i, 1]),
                transform=transforms[i].copy(),
                information=None if np.isnan(info).any() else info.copy(),
            )
        )
    return constraints
