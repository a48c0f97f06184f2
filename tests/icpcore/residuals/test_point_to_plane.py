"""Unit tests for point-to-plane ICP residuals."""

import numpy as np
import pytest

from icpcore.coords import angle_axis_to_quat, apply_transform, pose_to_matrix
from icpcore.residuals import (
    PointToPlaneError,
    PointToPlaneErrorAngleAxis,
    PointToPlaneErrorGlobal,
    PointToPlaneErrorGlobalAngleAxis,
    PointToPointError,
    make_point_to_plane_residual,
    make_point_to_plane_residual_global,
)

IDENTITY_Q = np.array([1.0, 0.0, 0.0, 0.0])


@pytest.fixture
def rng():
    return np.random.default_rng(21)


def random_pose(rng):
    axis = rng.standard_normal(3)
    axis /= np.linalg.norm(axis)
    return axis * rng.uniform(0.0, 3.0), rng.uniform(-2.0, 2.0, size=3)


def random_unit(rng):
    n = rng.standard_normal(3)
    return n / np.linalg.norm(n)


class TestScenarios:
    """Hand-computed signed distances."""

    def test_offset_along_normal(self):
        """src lifted to z = 2 above the plane z = 0."""
        cost = make_point_to_plane_residual(dst=[0, 0, 0], src=[0, 0, 1], normal=[0, 0, 1])
        r = cost(IDENTITY_Q, np.array([0.0, 0.0, 1.0]))
        np.testing.assert_allclose(r, [2.0])

    def test_translation_adds_to_offset(self):
        cost = make_point_to_plane_residual(dst=[0, 0, 0], src=[0, 0, 1], normal=[0, 0, 1])
        r = cost(IDENTITY_Q, np.array([0.0, 0.0, 2.0]))
        np.testing.assert_allclose(r, [3.0])

    def test_tangential_offset_is_free(self):
        cost = PointToPlaneError(dst=[0, 0, 0], src=[0, 0, 0], normal=[0, 0, 1])
        r = cost(IDENTITY_Q, np.array([5.0, -3.0, 0.0]))
        np.testing.assert_allclose(r, [0.0])

    def test_is_projection_of_point_to_point(self, rng):
        angle_axis, t = random_pose(rng)
        q = angle_axis_to_quat(angle_axis)
        src, dst = rng.uniform(-3.0, 3.0, size=(2, 3))
        normal = random_unit(rng)

        r_point = PointToPointError(dst, src)(q, t)
        r_plane = PointToPlaneError(dst, src, normal)(q, t)
        np.testing.assert_allclose(r_plane, [r_point @ normal], atol=1e-12)

    def test_angle_axis_scenario(self):
        cost = make_point_to_plane_residual(
            dst=[0, 0, 0], src=[1, 0, 0], normal=[0, 1, 0], rotation="angle_axis"
        )
        # 90° about z maps (1, 0, 0) onto (0, 1, 0), one unit above the plane y = 0
        pose = np.array([0.0, 0.0, np.pi / 2, 0.0, 0.0, 0.0])
        np.testing.assert_allclose(cost(pose), [1.0], atol=1e-12)


class TestTruePose:
    """Residuals vanish for exact correspondences at the true pose."""

    def test_fixed_destination(self, rng):
        angle_axis, t = random_pose(rng)
        q = angle_axis_to_quat(angle_axis)
        src = rng.uniform(-5.0, 5.0, size=(20, 3))
        dst = apply_transform(pose_to_matrix(q, t), src)
        pose = np.concatenate([angle_axis, t])

        for p, d in zip(src, dst):
            n = random_unit(rng)
            assert abs(PointToPlaneError(d, p, n)(q, t)[0]) < 1e-9
            assert abs(PointToPlaneErrorAngleAxis(d, p, n)(pose)[0]) < 1e-9

    def test_global(self, rng):
        aa_s, t_s = random_pose(rng)
        aa_d, t_d = random_pose(rng)
        q_s = angle_axis_to_quat(aa_s)
        q_d = angle_axis_to_quat(aa_d)

        src = rng.uniform(-5.0, 5.0, size=(20, 3))
        world = apply_transform(pose_to_matrix(q_s, t_s), src)
        dst = apply_transform(np.linalg.inv(pose_to_matrix(q_d, t_d)), world)

        pose_s = np.concatenate([aa_s, t_s])
        pose_d = np.concatenate([aa_d, t_d])
        for p, d in zip(src, dst):
            n = random_unit(rng)
            assert abs(PointToPlaneErrorGlobal(d, p, n)(q_s, t_s, q_d, t_d)[0]) < 1e-9
            assert abs(PointToPlaneErrorGlobalAngleAxis(d, p, n)(pose_s, pose_d)[0]) < 1e-9


class TestNormalHandling:
    """The normal is used as given and transformed as a direction."""

    @pytest.mark.parametrize("scale", [0.5, 2.0, 10.0])
    def test_positive_scaling_scales_residual(self, rng, scale):
        angle_axis, t = random_pose(rng)
        q = angle_axis_to_quat(angle_axis)
        src, dst = rng.uniform(-3.0, 3.0, size=(2, 3))
        n = random_unit(rng)

        r = PointToPlaneError(dst, src, n)(q, t)
        r_scaled = PointToPlaneError(dst, src, scale * n)(q, t)
        np.testing.assert_allclose(r_scaled, scale * r, rtol=1e-12)
        assert np.sign(r_scaled[0]) == np.sign(r[0])

    def test_negated_normal_flips_sign(self, rng):
        angle_axis, t = random_pose(rng)
        q = angle_axis_to_quat(angle_axis)
        src, dst = rng.uniform(-3.0, 3.0, size=(2, 3))
        n = random_unit(rng)

        r = PointToPlaneError(dst, src, n)(q, t)
        np.testing.assert_allclose(PointToPlaneError(dst, src, -n)(q, t), -r, rtol=1e-12)

        pose = np.concatenate([angle_axis, t])
        r_aa = PointToPlaneErrorAngleAxis(dst, src, n)(pose)
        np.testing.assert_allclose(PointToPlaneErrorAngleAxis(dst, src, -n)(pose), -r_aa, rtol=1e-12)

    def test_global_reduces_to_fixed(self, rng):
        for _ in range(20):
            angle_axis, t = random_pose(rng)
            q = angle_axis_to_quat(angle_axis)
            src, dst = rng.uniform(-3.0, 3.0, size=(2, 3))
            n = random_unit(rng)

            np.testing.assert_allclose(
                PointToPlaneErrorGlobal(dst, src, n)(q, t, IDENTITY_Q, np.zeros(3)),
                PointToPlaneError(dst, src, n)(q, t),
                atol=1e-12,
            )
            pose = np.concatenate([angle_axis, t])
            np.testing.assert_allclose(
                PointToPlaneErrorGlobalAngleAxis(dst, src, n)(pose, np.zeros(6)),
                PointToPlaneErrorAngleAxis(dst, src, n)(pose),
                atol=1e-12,
            )

    def test_destination_translation_does_not_move_normal(self, rng):
        """Translated destination frame == fixed residual against translated dst."""
        for _ in range(20):
            angle_axis, t = random_pose(rng)
            q = angle_axis_to_quat(angle_axis)
            t_dst = rng.uniform(-5.0, 5.0, size=3)
            src, dst = rng.uniform(-3.0, 3.0, size=(2, 3))
            n = random_unit(rng)

            r_global = PointToPlaneErrorGlobal(dst, src, n)(q, t, IDENTITY_Q, t_dst)
            r_fixed = PointToPlaneError(dst + t_dst, src, n)(q, t)
            np.testing.assert_allclose(r_global, r_fixed, atol=1e-12)

            pose = np.concatenate([angle_axis, t])
            pose_dst = np.concatenate([np.zeros(3), t_dst])
            r_global = PointToPlaneErrorGlobalAngleAxis(dst, src, n)(pose, pose_dst)
            r_fixed = PointToPlaneErrorAngleAxis(dst + t_dst, src, n)(pose)
            np.testing.assert_allclose(r_global, r_fixed, atol=1e-12)

    def test_destination_rotation_rotates_normal(self):
        """A 90° destination rotation turns the z-plane normal into an x-plane normal."""
        q_d = angle_axis_to_quat(np.array([0.0, np.pi / 2, 0.0]))  # z -> x
        cost = PointToPlaneErrorGlobal(dst=[0, 0, 0], src=[0, 0, 0], normal=[0, 0, 1])

        # Source point moved along world x: off the rotated plane
        r = cost(IDENTITY_Q, np.array([1.0, 0.0, 0.0]), q_d, np.zeros(3))
        np.testing.assert_allclose(r, [1.0], atol=1e-12)

        # Moved along world z: in the rotated plane
        r = cost(IDENTITY_Q, np.array([0.0, 0.0, 1.0]), q_d, np.zeros(3))
        np.testing.assert_allclose(r, [0.0], atol=1e-12)

    def test_quaternion_and_angle_axis_agree(self, rng):
        for _ in range(50):
            aa_s, t_s = random_pose(rng)
            aa_d, t_d = random_pose(rng)
            src, dst = rng.uniform(-10.0, 10.0, size=(2, 3))
            n = random_unit(rng)

            r_q = PointToPlaneErrorGlobal(dst, src, n)(
                angle_axis_to_quat(aa_s), t_s, angle_axis_to_quat(aa_d), t_d
            )
            r_aa = PointToPlaneErrorGlobalAngleAxis(dst, src, n)(
                np.concatenate([aa_s, t_s]), np.concatenate([aa_d, t_d])
            )
            np.testing.assert_allclose(r_q, r_aa, atol=1e-6)


class TestFactories:

    def test_dispatch(self):
        assert isinstance(make_point_to_plane_residual([0, 0, 0], [1, 1, 1], [0, 0, 1]), PointToPlaneError)
        assert isinstance(
            make_point_to_plane_residual([0, 0, 0], [1, 1, 1], [0, 0, 1], rotation="angle_axis"),
            PointToPlaneErrorAngleAxis,
        )
        assert isinstance(
            make_point_to_plane_residual_global([0, 0, 0], [1, 1, 1], [0, 0, 1]),
            PointToPlaneErrorGlobal,
        )
        assert isinstance(
            make_point_to_plane_residual_global([0, 0, 0], [1, 1, 1], [0, 0, 1], rotation="angle_axis"),
            PointToPlaneErrorGlobalAngleAxis,
        )

    def test_single_residual(self):
        cost = make_point_to_plane_residual_global([0, 0, 0], [1, 1, 1], [0, 0, 1])
        assert cost.num_residuals == 1
        assert cost.parameter_block_sizes == (4, 3, 4, 3)

    def test_unknown_rotation(self):
        with pytest.raises(ValueError, match="rotation parameterization"):
            make_point_to_plane_residual([0, 0, 0], [1, 1, 1], [0, 0, 1], rotation="rodrigues")

    def test_non_finite_normal(self):
        with pytest.raises(ValueError, match="normal"):
            make_point_to_plane_residual([0, 0, 0], [1, 1, 1], [0, np.nan, 1])
