"""NDT Mapping Demo: Gated Scan Matching → Pose Graph → Occupancy Map.

A simulated robot drives a rectangular loop inside a room with a partition
and a pillar. Its odometry drifts; every sweep is fed to Mapper2D, which
    1. GATES sweeps by travelled distance / rotation
    2. PREDICTS the map-frame pose from the odometry delta
    3. MATCHES the sweep against an NDT of the last few scans
    4. RECORDS the corrected pose in the pose graph
while a background thread periodically renders the occupancy map.

The script prints a machine-readable summary line:

    [NDT_SUMMARY] {"n_scans": ..., "rmse": {"odom": ..., "ndt": ...}, ...}

Usage:
    python -m ndt_mapping.example_ndt_mapping
    python -m ndt_mapping.example_ndt_mapping --max-steps 20 --no-show

Author: Navigation Engineer
Date: 2024
"""

import argparse
import json
import logging
import threading
from pathlib import Path
from typing import List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from ndt_2d import (
    Graph,
    Mapper2D,
    MapperConfig,
    OccupancyGrid,
    Pose2d,
    box_room_walls,
    load_config,
    se2_apply,
    se2_compose,
    se2_relative,
    simulate_laser_scan,
    wall_distances,
)


def generate_loop_trajectory(step: float = 0.2) -> List[Pose2d]:
    """Rectangular loop around the room center, heading along the path.

    Args:
        step: Distance between consecutive poses (meters).

    Returns:
        List of true poses in the world frame.
    """
    corners = np.array([[-3.5, -2.2], [3.5, -2.2], [3.5, 0.5], [-3.5, 0.5], [-3.5, -2.2]])

    poses = []
    for start, end in zip(corners[:-1], corners[1:]):
        heading = float(np.arctan2(end[1] - start[1], end[0] - start[0]))
        n = int(np.round(np.linalg.norm(end - start) / step))
        for t in np.arange(n) / n:
            x, y = start + t * (end - start)
            poses.append(Pose2d(float(x), float(y), heading))
    return poses


def simulate_odometry(
    true_poses: List[Pose2d],
    rng: np.random.Generator,
    linear_std: float = 0.01,
    angular_std: float = 0.005,
    angular_bias: float = 0.003,
) -> List[Pose2d]:
    """Integrate noisy relative motion into a drifting odometry track."""
    odom = [true_poses[0]]
    for prev, curr in zip(true_poses[:-1], true_poses[1:]):
        delta = se2_relative(prev, curr)
        noise = np.array([
            rng.normal(0.0, linear_std),
            rng.normal(0.0, linear_std),
            rng.normal(angular_bias, angular_std),
        ])
        odom.append(Pose2d.from_array(se2_compose(odom[-1], delta + noise)))
    return odom


def position_rmse(estimates: List[Pose2d], truth: List[Pose2d]) -> float:
    """RMSE of positions after expressing both tracks relative to their first pose."""
    errors = []
    for est, ref in zip(estimates, truth):
        est_rel = se2_relative(estimates[0], est)
        ref_rel = se2_relative(truth[0], ref)
        errors.append(np.linalg.norm(est_rel[:2] - ref_rel[:2]))
    return float(np.sqrt(np.mean(np.square(errors))))


def map_points(graph: Graph) -> np.ndarray:
    """All scan points placed at their corrected poses, shape (N, 2)."""
    clouds = [se2_apply(scan.pose, scan.points) for scan in graph.scans if len(scan) > 0]
    if not clouds:
        return np.empty((0, 2))
    return np.vstack(clouds)


def plot_results(
    grid: Optional[OccupancyGrid],
    true_rel: np.ndarray,
    odom_rel: np.ndarray,
    ndt_rel: np.ndarray,
    output_dir: Path,
    show: bool,
) -> Path:
    """Occupancy map with the three trajectories overlaid."""
    fig, ax = plt.subplots(figsize=(10, 6))

    if grid is not None:
        xs, ys = grid.cell_centers()
        ax.imshow(
            grid.data,
            origin="lower",
            cmap="Greys",
            vmin=0,
            vmax=100,
            extent=(xs[0], xs[-1] + grid.resolution, ys[0], ys[-1] + grid.resolution),
        )

    ax.plot(true_rel[:, 0], true_rel[:, 1], "g-", linewidth=2, label="Ground Truth")
    ax.plot(odom_rel[:, 0], odom_rel[:, 1], "r--", linewidth=1.5, label="Odometry", alpha=0.7)
    ax.plot(ndt_rel[:, 0], ndt_rel[:, 1], "b-", linewidth=1.5, label="NDT Mapper", alpha=0.8)
    ax.plot(ndt_rel[:, 0], ndt_rel[:, 1], "b.", markersize=4)

    ax.set_xlabel("X [m]", fontsize=12)
    ax.set_ylabel("Y [m]", fontsize=12)
    ax.set_title("NDT Mapping: Occupancy Map and Trajectories", fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    ax.axis("equal")
    plt.tight_layout()

    output_dir.mkdir(parents=True, exist_ok=True)
    output_file = output_dir / "ndt_mapping_results.png"
    plt.savefig(output_file, dpi=150, bbox_inches="tight")
    print(f"\n[OK] Saved figure: {output_file}")

    if show:
        plt.show()
    plt.close(fig)
    return output_file


def run(
    config: MapperConfig,
    output_dir: Path,
    max_steps: Optional[int] = None,
    seed: int = 42,
    show: bool = True,
) -> dict:
    """Run the simulated mapping session and return the summary."""
    rng = np.random.default_rng(seed)
    walls = box_room_walls(10.0, 6.0, obstacles=True)

    print("\n" + "=" * 70)
    print("NDT MAPPING DEMO")
    print("=" * 70)

    print("\n1. Generating trajectory and odometry...")
    true_poses = generate_loop_trajectory()
    if max_steps is not None:
        true_poses = true_poses[:max_steps]
    odom_poses = simulate_odometry(true_poses, rng)
    print(f"   Poses: {len(true_poses)}")

    print("\n2. Mapping...")
    mapper = Mapper2D(config)
    published = []
    publish_lock = threading.Lock()

    def on_publish(grid, _transform):
        if grid is not None:
            with publish_lock:
                published.append(grid)

    mapper.start(on_publish)
    accepted: List[Tuple[int, Pose2d]] = []
    n_matched = 0
    try:
        for i, (true_pose, odom_pose) in enumerate(
            tqdm(list(zip(true_poses, odom_poses)), desc="Mapping", unit="scan")
        ):
            laser = simulate_laser_scan(true_pose, walls, num_rays=360, max_range=8.0,
                                        noise_std=0.01, rng=rng)
            step = mapper.add_laser_scan(laser, odom_pose)
            if step.accepted:
                accepted.append((i, odom_pose))
                if step.matched:
                    n_matched += 1
    finally:
        mapper.stop()

    grid = mapper.publish_map(force=True)
    graph = mapper.graph
    print(f"   Accepted scans: {len(graph)} / {len(true_poses)}")
    print(f"   Matched scans: {n_matched}")
    print(f"   Background publications: {len(published)}")

    print("\n3. Evaluating...")
    truth = [true_poses[i] for i, _ in accepted]
    odom = [pose for _, pose in accepted]
    corrected = mapper.corrected_poses

    odom_rmse = position_rmse(odom, truth)
    ndt_rmse = position_rmse(corrected, truth)

    # Map frame is the first robot pose
    points_world = se2_apply(truth[0], map_points(graph)) if truth else np.empty((0, 2))
    wall_error = float(np.median(wall_distances(points_world, walls))) if len(points_world) else float("nan")

    print(f"   Odometry RMSE: {odom_rmse:.4f} m")
    print(f"   NDT RMSE: {ndt_rmse:.4f} m")
    print(f"   Median map-to-wall distance: {wall_error:.4f} m")

    print("\n4. Saving...")
    output_dir.mkdir(parents=True, exist_ok=True)
    graph_file = graph.save(output_dir / "ndt_graph.npz")
    print(f"   Graph: {graph_file}")

    true_rel = np.array([se2_relative(truth[0], p) for p in truth]).reshape(-1, 3)
    odom_rel = np.array([se2_relative(odom[0], p) for p in odom]).reshape(-1, 3)
    ndt_rel = np.array([se2_relative(corrected[0], p) for p in corrected]).reshape(-1, 3)
    plot_results(grid, true_rel, odom_rel, ndt_rel, output_dir, show)

    summary = {
        "n_poses": len(true_poses),
        "n_scans": len(graph),
        "n_matched": n_matched,
        "n_odom_constraints": len(graph.odom_constraints),
        "rmse": {"odom": odom_rmse, "ndt": ndt_rmse},
        "median_wall_distance": wall_error,
        "map": None if grid is None else {
            "width": grid.width,
            "height": grid.height,
            "occupied_fraction": grid.occupied_fraction(),
        },
        "graph_file": str(graph_file),
    }
    print(f"\n[NDT_SUMMARY] {json.dumps(summary)}")
    return summary


def main():
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="NDT 2D mapping on a simulated room",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full loop with default parameters
  python -m ndt_mapping.example_ndt_mapping

  # Short headless run with a JSON parameter file
  python -m ndt_mapping.example_ndt_mapping --max-steps 20 --no-show --config mapper.json
        """,
    )
    parser.add_argument("--config", type=str, default=None,
                        help="JSON file with MapperConfig parameters")
    parser.add_argument("--max-steps", type=int, default=None,
                        help="Only use the first N poses of the trajectory")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--output", type=str, default="ndt_mapping/figs",
                        help="Output directory for the figure and graph")
    parser.add_argument("--no-show", action="store_true", help="Do not open a plot window")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log mapper activity")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    config = load_config(args.config) if args.config else MapperConfig(publish_period=0.1)
    run(config, Path(args.output), max_steps=args.max_steps, seed=args.seed,
        show=not args.no_show)


if __name__ == "__main__":
    main()
