"""NDT mapping examples.

Examples:
    - example_ndt_mapping.py: Simulated robot mapping a room with Mapper2D,
      with trajectory/map plots and a machine-readable summary line

Key Concepts Demonstrated:
    - Odometry gating and pose prediction
    - Rolling-window NDT scan matching
    - Occupancy-grid rendering from the NDT
    - Pose-graph persistence

Dependencies:
    - ndt_2d: Mapper, scan matcher, simulator
    - matplotlib: Visualization
    - tqdm: Progress reporting
    - numpy: Numerical operations

Author: Navigation Engineer
Date: 2024
"""

__version__ = "0.1.0"

__all__ = []
