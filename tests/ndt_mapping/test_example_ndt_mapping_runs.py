"""Smoke tests for the NDT mapping example script.

Runs the demo headless (Agg backend) on a shortened trajectory and checks
the machine-readable [NDT_SUMMARY] JSON line:
- every pose with enough travel is accepted and matched after the first
- the NDT track is not worse than a loose accuracy bound
- the graph file and figure are written

Author: Navigation Engineer
Date: 2024
"""

import json
import os
import re
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, Optional


def parse_ndt_summary(stdout: str) -> Optional[Dict[str, Any]]:
    """Parse the [NDT_SUMMARY] JSON line from script output.

    Args:
        stdout: Standard output from the mapping script.

    Returns:
        Parsed JSON dictionary, or None if not found.

    Raises:
        ValueError: If the summary line is malformed.
    """
    match = re.search(r"\[NDT_SUMMARY\]\s*(\{.*\})", stdout)
    if not match:
        return None

    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed NDT_SUMMARY JSON: {e}")


class TestExampleNDTMappingRuns(unittest.TestCase):
    """Smoke test: the example script runs and reports sane results."""

    def setUp(self):
        self.python_exe = sys.executable
        self.workspace_root = Path(__file__).parent.parent.parent
        self.script_path = self.workspace_root / "ndt_mapping" / "example_ndt_mapping.py"
        self.assertTrue(self.script_path.exists(), f"Script not found: {self.script_path}")

    def test_short_run(self):
        """Short headless run writes outputs and a valid summary."""
        env = os.environ.copy()
        env.update({
            "MPLBACKEND": "Agg",
            "PYTHONPATH": str(self.workspace_root),
        })

        with tempfile.TemporaryDirectory() as tmp:
            result = subprocess.run(
                [
                    self.python_exe,
                    "-m",
                    "ndt_mapping.example_ndt_mapping",
                    "--max-steps", "12",
                    "--no-show",
                    "--output", tmp,
                ],
                cwd=str(self.workspace_root),
                env=env,
                capture_output=True,
                text=True,
                timeout=300,
            )

            self.assertEqual(
                result.returncode, 0,
                f"Script failed:\nSTDOUT:\n{result.stdout}\nSTDERR:\n{result.stderr}",
            )

            summary = parse_ndt_summary(result.stdout)
            self.assertIsNotNone(summary, "Missing [NDT_SUMMARY] line")

            self.assertEqual(summary["n_poses"], 12)
            self.assertEqual(summary["n_scans"], 12)
            self.assertEqual(summary["n_odom_constraints"], 11)
            self.assertGreaterEqual(summary["n_matched"], 10)
            self.assertLess(summary["rmse"]["ndt"], 0.3)
            self.assertIsNotNone(summary["map"])
            self.assertGreater(summary["map"]["occupied_fraction"], 0.0)

            self.assertTrue(Path(summary["graph_file"]).exists())
            self.assertTrue((Path(tmp) / "ndt_mapping_results.png").exists())


if __name__ == "__main__":
    unittest.main()
