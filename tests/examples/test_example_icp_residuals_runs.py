"""Smoke tests for the ICP residuals example script.

Verifies that the example runs without errors and validates the
machine-readable [ICP_SUMMARY] JSON line:
- every nonlinear method recovers the true pose from exact correspondences
- every global refinement recovers all frame poses
Uses Agg backend to avoid display requirements.
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


def parse_icp_summary(stdout: str) -> Optional[Dict[str, Any]]:
    """Parse the [ICP_SUMMARY] JSON line from script output.

    Args:
        stdout: Standard output from the example script.

    Returns:
        Parsed JSON dictionary, or None if not found.

    Raises:
        ValueError: If the summary line is malformed.
    """
    match = re.search(r'\[ICP_SUMMARY\]\s*(\{.*\})', stdout)
    if not match:
        return None

    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed ICP_SUMMARY JSON: {e}")


class TestExampleICPResidualsRuns(unittest.TestCase):
    """Smoke tests: the example script should run without errors."""

    def setUp(self):
        """Set up test environment."""
        self.python_exe = sys.executable
        self.workspace_root = Path(__file__).parent.parent.parent
        self.script_path = self.workspace_root / "examples" / "example_icp_residuals.py"

        self.assertTrue(self.script_path.exists(),
                        f"Script not found: {self.script_path}")

        self.env = os.environ.copy()
        self.env.update({
            "MPLBACKEND": "Agg",
            "PYTHONPATH": str(self.workspace_root),
        })

    def run_example(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.python_exe, "-m", "examples.example_icp_residuals", "--points", "15", *args],
            cwd=self.workspace_root,
            capture_output=True,
            text=True,
            timeout=120,
            env=self.env,
        )

    def test_exact_correspondences(self):
        result = self.run_example()

        self.assertEqual(result.returncode, 0,
                         f"Script failed with stderr:\n{result.stderr}")
        self.assertIn("ICP EXAMPLE COMPLETE", result.stdout)

        summary = parse_icp_summary(result.stdout)
        self.assertIsNotNone(summary, "Missing [ICP_SUMMARY] JSON line in output")
        self.assertEqual(summary["n_correspondences"], 45)

        for key in (
            "svd_point_to_point",
            "point_to_point_quaternion",
            "point_to_point_angle_axis",
            "point_to_plane_quaternion",
            "point_to_plane_angle_axis",
        ):
            method = summary["methods"][key]
            self.assertLess(method["rotation_error_deg"], 1e-4, key)
            self.assertLess(method["translation_error"], 1e-6, key)

        self.assertEqual(len(summary["global"]), 4)
        for key, refinement in summary["global"].items():
            self.assertTrue(refinement["converged"], key)
            self.assertLess(refinement["max_translation_error"], 1e-6, key)

    def test_noisy_with_plot(self):
        with tempfile.TemporaryDirectory() as tmp:
            plot_file = os.path.join(tmp, "convergence.png")
            result = self.run_example("--noise", "0.002", "--plot", plot_file)

            self.assertEqual(result.returncode, 0,
                             f"Script failed with stderr:\n{result.stderr}")
            self.assertTrue(os.path.exists(plot_file))

        summary = parse_icp_summary(result.stdout)
        self.assertIsNotNone(summary)
        # Noise limits accuracy but the pose must still be close
        self.assertLess(summary["methods"]["point_to_point_quaternion"]["translation_error"], 0.01)

    def test_invalid_arguments(self):
        result = self.run_example("--noise", "-1")
        self.assertNotEqual(result.returncode, 0)


if __name__ == "__main__":
    unittest.main()
