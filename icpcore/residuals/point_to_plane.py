"""Point-to-plane ICP residuals.

For one correspondence (source point p, destination point q with surface
normal n) these residuals measure the signed distance of the transformed
source point to the tangent plane at q:

    Fixed destination:  r = (R p + t - q) · n
    Global pairwise:    r = ((R_s p + t_s) - (R_d q + t_d)) · (R_d n)

On locally planar surfaces this converges faster than point-to-point and
lets correspondences slide along the surface without penalty.

In the global form the normal belongs to the destination frame, so it is
rotated by the destination rotation and never translated (it is a
direction). Dropping that rotation biases the solution whenever the
destination frame's orientation is itself being optimized.

Normals are used as given. Scaling n by c > 0 scales r by c, and negating
n flips the sign of r.
"""

import numpy as np

from ..coords.rotations import angle_axis_rotate_point, quat_rotate_point
from .cost_function import CostFunction, as_owned_vector, check_rotation_parameterization


class PointToPlaneError(CostFunction):
    """Point-to-plane residual against a fixed destination (quaternion pose).

    Parameter blocks: rotation q(4), translation t(3). One residual.

    Args:
        dst: Destination point q, shape (3,).
        src: Source point p, shape (3,).
        normal: Destination surface normal n, shape (3,).
        **kwargs: Forwarded to ``CostFunction``.

    Example:
        >>> cost = PointToPlaneError([0, 0, 0], [0, 0, 1], [0, 0, 1])
        >>> cost(np.array([1.0, 0, 0, 0]), np.array([0.0, 0.0, 2.0]))
        array([3.])
    """

    num_residuals = 1
    parameter_block_sizes = (4, 3)
    parameter_block_names = ("rotation", "translation")
    quaternion_blocks = (0,)

    def __init__(self, dst, src, normal, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)
        self.normal = as_owned_vector("normal", normal)

    def residual(self, rotation, translation):
        p = quat_rotate_point(rotation, self.src) + translation
        return np.atleast_1d((p - self.dst) @ self.normal)


class PointToPlaneErrorAngleAxis(CostFunction):
    """Point-to-plane residual against a fixed destination (axis-angle pose).

    Parameter block: [ωx, ωy, ωz, tx, ty, tz]. One residual.
    """

    num_residuals = 1
    parameter_block_sizes = (6,)
    parameter_block_names = ("pose",)

    def __init__(self, dst, src, normal, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)
        self.normal = as_owned_vector("normal", normal)

    def residual(self, pose):
        p = angle_axis_rotate_point(pose[:3], self.src) + pose[3:]
        return np.atleast_1d((p - self.dst) @ self.normal)


class PointToPlaneErrorGlobal(CostFunction):
    """Point-to-plane residual between two independently posed frames.

    Parameter blocks: rotation_src(4), translation_src(3), rotation_dst(4),
    translation_dst(3). One residual.
    """

    num_residuals = 1
    parameter_block_sizes = (4, 3, 4, 3)
    parameter_block_names = (
        "rotation_src",
        "translation_src",
        "rotation_dst",
        "translation_dst",
    )
    quaternion_blocks = (0, 2)

    def __init__(self, dst, src, normal, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)
        self.normal = as_owned_vector("normal", normal)

    def residual(self, rotation_src, translation_src, rotation_dst, translation_dst):
        p = quat_rotate_point(rotation_src, self.src) + translation_src
        p_dst = quat_rotate_point(rotation_dst, self.dst) + translation_dst
        # Normals rotate with the destination frame but are not translated
        n_dst = quat_rotate_point(rotation_dst, self.normal)
        return np.atleast_1d((p - p_dst) @ n_dst)


class PointToPlaneErrorGlobalAngleAxis(CostFunction):
    """Global pairwise point-to-plane residual with packed axis-angle poses."""

    num_residuals = 1
    parameter_block_sizes = (6, 6)
    parameter_block_names = ("pose_src", "pose_dst")

    def __init__(self, dst, src, normal, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)
        self.normal = as_owned_vector("normal", normal)

    def residual(self, pose_src, pose_dst):
        p = angle_axis_rotate_point(pose_src[:3], self.src) + pose_src[3:]
        p_dst = angle_axis_rotate_point(pose_dst[:3], self.dst) + pose_dst[3:]
        n_dst = angle_axis_rotate_point(pose_dst[:3], self.normal)
        return np.atleast_1d((p - p_dst) @ n_dst)


def make_point_to_plane_residual(
    dst, src, normal, rotation: str = "quaternion", **kwargs
) -> CostFunction:
    """Create the fixed-destination point-to-plane residual for one correspondence.

    Args:
        dst: Destination point, shape (3,).
        src: Source point, shape (3,).
        normal: Surface normal at dst, shape (3,).
        rotation: "quaternion" (blocks q(4), t(3)) or "angle_axis"
            (block [ω, t](6)).
        **kwargs: Forwarded to the cost function.

    Returns:
        CostFunction with 1 residual.

    Raises:
        ValueError: If rotation is unknown or the vectors are malformed.
    """
    if check_rotation_parameterization(rotation) == "quaternion":
        return PointToPlaneError(dst, src, normal, **kwargs)
    return PointToPlaneErrorAngleAxis(dst, src, normal, **kwargs)


def make_point_to_plane_residual_global(
    dst, src, normal, rotation: str = "quaternion", **kwargs
) -> CostFunction:
    """Create the global pairwise point-to-plane residual for one correspondence.

    Args:
        dst: Destination point in the destination frame, shape (3,).
        src: Source point in the source frame, shape (3,).
        normal: Surface normal at dst in the destination frame, shape (3,).
        rotation: "quaternion" (blocks q_src(4), t_src(3), q_dst(4), t_dst(3))
            or "angle_axis" (blocks pose_src(6), pose_dst(6)).
        **kwargs: Forwarded to the cost function.

    Returns:
        CostFunction with 1 residual.
    """
    if check_rotation_parameterization(rotation) == "quaternion":
        return PointToPlaneErrorGlobal(dst, src, normal, **kwargs)
    return PointToPlaneErrorGlobalAngleAxis(dst, src, normal, **kwargs)
