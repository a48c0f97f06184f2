"""Unit tests for rotation parameterizations.

Test cases include:
- Known rotations (90° about z, identity)
- Quaternion, axis-angle and matrix rotations agree with each other and with
  scipy.spatial.transform.Rotation
- Small-angle branch of Rodrigues' formula
- Complex-valued inputs (used for complex-step differentiation)
- Unit-quaternion and finiteness checks
"""

import unittest

import numpy as np
from scipy.spatial.transform import Rotation

from icpcore.coords.rotations import (
    angle_axis_rotate_point,
    angle_axis_to_quat,
    angle_axis_to_rotation_matrix,
    check_finite,
    check_unit_quaternion,
    quat_conjugate,
    quat_identity,
    quat_multiply,
    quat_rotate_point,
    quat_to_angle_axis,
    quat_to_rotation_matrix,
    rotation_matrix_to_quat,
    skew,
)

SQRT_HALF = np.sqrt(0.5)


def random_angle_axis(rng: np.random.Generator, max_angle: float = 3.0) -> np.ndarray:
    axis = rng.standard_normal(3)
    axis /= np.linalg.norm(axis)
    return axis * rng.uniform(0.0, max_angle)


class TestQuaternionRotation(unittest.TestCase):
    """Test cases for quaternion point rotation and products."""

    def test_identity(self) -> None:
        v = np.array([0.3, -1.2, 2.0])
        np.testing.assert_allclose(quat_rotate_point(quat_identity(), v), v, atol=1e-15)

    def test_90_deg_about_z(self) -> None:
        q = np.array([SQRT_HALF, 0.0, 0.0, SQRT_HALF])
        v = quat_rotate_point(q, np.array([1.0, 0.0, 0.0]))
        np.testing.assert_allclose(v, [0.0, 1.0, 0.0], atol=1e-12)

    def test_matches_scipy(self) -> None:
        """w-first quaternions agree with scipy's scalar-last convention."""
        rng = np.random.default_rng(0)
        for _ in range(20):
            w = random_angle_axis(rng)
            xyzw = Rotation.from_rotvec(w).as_quat()
            q = np.array([xyzw[3], xyzw[0], xyzw[1], xyzw[2]])
            v = rng.standard_normal(3)
            np.testing.assert_allclose(
                quat_rotate_point(q, v), Rotation.from_rotvec(w).apply(v), atol=1e-12
            )

    def test_negated_quaternion_same_rotation(self) -> None:
        q = angle_axis_to_quat(np.array([0.3, -0.4, 1.1]))
        v = np.array([1.0, 2.0, 3.0])
        np.testing.assert_allclose(quat_rotate_point(-q, v), quat_rotate_point(q, v), atol=1e-12)

    def test_multiply_composes_right_to_left(self) -> None:
        """Rotating by p ⊗ q applies q first, then p."""
        p = angle_axis_to_quat(np.array([0.0, 0.0, 0.7]))
        q = angle_axis_to_quat(np.array([0.4, 0.0, 0.0]))
        v = np.array([0.2, -0.5, 1.0])

        expected = quat_rotate_point(p, quat_rotate_point(q, v))
        np.testing.assert_allclose(quat_rotate_point(quat_multiply(p, q), v), expected, atol=1e-12)

    def test_conjugate_is_inverse(self) -> None:
        q = angle_axis_to_quat(np.array([0.5, 0.2, -0.3]))
        np.testing.assert_allclose(quat_multiply(q, quat_conjugate(q)), quat_identity(), atol=1e-12)

    def test_complex_input(self) -> None:
        q = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.complex128)
        q[3] += 1e-20j
        v = quat_rotate_point(q, np.array([1.0, 0.0, 0.0]))
        self.assertTrue(np.iscomplexobj(v))
        # d/dqz of the rotated x-axis at identity is [0, 2, 0]
        np.testing.assert_allclose(np.imag(v) / 1e-20, [0.0, 2.0, 0.0], atol=1e-12)

    def test_wrong_shape_raises(self) -> None:
        with self.assertRaises(ValueError):
            quat_rotate_point(np.array([1.0, 0.0, 0.0]), np.zeros(3))
        with self.assertRaises(ValueError):
            quat_rotate_point(quat_identity(), np.zeros(4))


class TestAngleAxisRotation(unittest.TestCase):
    """Test cases for Rodrigues' rotation."""

    def test_matches_scipy(self) -> None:
        rng = np.random.default_rng(1)
        for _ in range(20):
            w = random_angle_axis(rng)
            v = rng.standard_normal(3)
            np.testing.assert_allclose(
                angle_axis_rotate_point(w, v), Rotation.from_rotvec(w).apply(v), atol=1e-12
            )

    def test_zero_vector_is_identity(self) -> None:
        v = np.array([1.0, -2.0, 0.5])
        np.testing.assert_allclose(angle_axis_rotate_point(np.zeros(3), v), v, atol=1e-15)

    def test_small_angle_first_order(self) -> None:
        w = np.array([1e-9, -2e-9, 5e-10])
        v = np.array([1.0, 2.0, 3.0])
        np.testing.assert_allclose(angle_axis_rotate_point(w, v), v + np.cross(w, v), atol=1e-15)

    def test_angle_pi(self) -> None:
        w = np.array([0.0, 0.0, np.pi])
        v = angle_axis_rotate_point(w, np.array([1.0, 0.0, 0.0]))
        np.testing.assert_allclose(v, [-1.0, 0.0, 0.0], atol=1e-12)

    def test_agrees_with_quaternion(self) -> None:
        rng = np.random.default_rng(2)
        for _ in range(20):
            w = random_angle_axis(rng)
            v = rng.standard_normal(3)
            np.testing.assert_allclose(
                angle_axis_rotate_point(w, v),
                quat_rotate_point(angle_axis_to_quat(w), v),
                atol=1e-12,
            )


class TestConversions(unittest.TestCase):
    """Test cases for conversions between representations."""

    def test_angle_axis_quaternion_round_trip(self) -> None:
        rng = np.random.default_rng(3)
        for _ in range(20):
            w = random_angle_axis(rng)
            np.testing.assert_allclose(quat_to_angle_axis(angle_axis_to_quat(w)), w, atol=1e-12)

    def test_quat_to_angle_axis_shortest(self) -> None:
        """q and -q give the same vector with angle <= π."""
        q = angle_axis_to_quat(np.array([0.0, 0.0, 1.0]))
        np.testing.assert_allclose(quat_to_angle_axis(-q), [0.0, 0.0, 1.0], atol=1e-12)

    def test_quat_to_angle_axis_identity(self) -> None:
        np.testing.assert_allclose(quat_to_angle_axis(quat_identity()), np.zeros(3))

    def test_small_angle_quaternion(self) -> None:
        q = angle_axis_to_quat(np.array([1e-10, 0.0, 0.0]))
        np.testing.assert_allclose(q, [1.0, 5e-11, 0.0, 0.0], atol=1e-15)

    def test_matrix_matches_point_rotation(self) -> None:
        rng = np.random.default_rng(4)
        for _ in range(10):
            w = random_angle_axis(rng)
            q = angle_axis_to_quat(w)
            v = rng.standard_normal(3)
            np.testing.assert_allclose(quat_to_rotation_matrix(q) @ v, quat_rotate_point(q, v), atol=1e-12)
            np.testing.assert_allclose(angle_axis_to_rotation_matrix(w) @ v, quat_rotate_point(q, v), atol=1e-12)

    def test_matrix_properties(self) -> None:
        R = angle_axis_to_rotation_matrix(np.array([0.3, -0.8, 1.5]))
        np.testing.assert_allclose(R.T @ R, np.eye(3), atol=1e-12)
        self.assertAlmostEqual(np.linalg.det(R), 1.0, places=12)

    def test_rotation_matrix_to_quat(self) -> None:
        rng = np.random.default_rng(5)
        for _ in range(20):
            q = angle_axis_to_quat(random_angle_axis(rng, max_angle=np.pi))
            if q[0] < 0.0:
                q = -q
            np.testing.assert_allclose(rotation_matrix_to_quat(quat_to_rotation_matrix(q)), q, atol=1e-10)

    def test_rotation_matrix_to_quat_180(self) -> None:
        R = np.diag([1.0, -1.0, -1.0])  # 180° about x
        q = rotation_matrix_to_quat(R)
        np.testing.assert_allclose(np.abs(q), [0.0, 1.0, 0.0, 0.0], atol=1e-12)

    def test_rotation_matrix_wrong_shape(self) -> None:
        with self.assertRaises(ValueError):
            rotation_matrix_to_quat(np.eye(4))

    def test_skew(self) -> None:
        a = np.array([1.0, 2.0, 3.0])
        b = np.array([-0.5, 0.1, 2.0])
        np.testing.assert_allclose(skew(a) @ b, np.cross(a, b))


class TestValidation(unittest.TestCase):
    """Test cases for fail-fast input checks."""

    def test_unit_quaternion_accepted(self) -> None:
        check_unit_quaternion(angle_axis_to_quat(np.array([0.1, 0.2, 0.3])))

    def test_zero_quaternion_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "zero norm"):
            check_unit_quaternion(np.zeros(4))

    def test_non_unit_quaternion_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "unit-norm"):
            check_unit_quaternion(np.array([2.0, 0.0, 0.0, 0.0]))

    def test_tolerance(self) -> None:
        check_unit_quaternion(np.array([1.0 + 1e-8, 0.0, 0.0, 0.0]))
        with self.assertRaises(ValueError):
            check_unit_quaternion(np.array([1.0 + 1e-3, 0.0, 0.0, 0.0]))

    def test_nan_quaternion_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "finite"):
            check_unit_quaternion(np.array([np.nan, 0.0, 0.0, 0.0]))

    def test_check_finite(self) -> None:
        check_finite("point", np.array([1.0, 2.0, 3.0]))
        with self.assertRaises(ValueError):
            check_finite("point", np.array([1.0, np.inf, 3.0]))


if __name__ == "__main__":
    unittest.main()
