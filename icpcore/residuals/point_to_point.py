"""Point-to-point ICP residuals.

For one correspondence (source point p, destination point q) these residuals
measure the 3D misalignment after applying the candidate pose(s):

    Fixed destination:   r = R p + t - q                          (3 residuals)
    Global pairwise:     r = (R_src p + t_src) - (R_dst q + t_dst)  (3 residuals)

The residual is the zero vector iff the pose maps p exactly onto q.

Each residual exists for both rotation parameterizations:

    =======================================  ======================  ==============
    Class                                    Parameter blocks        Residuals
    =======================================  ======================  ==============
    PointToPointError                        q(4), t(3)              3
    PointToPointErrorAngleAxis               [ω, t](6)               3
    PointToPointErrorGlobal                  q_s(4), t_s(3),         3
                                             q_d(4), t_d(3)
    PointToPointErrorGlobalAngleAxis         [ω_s, t_s](6),          3
                                             [ω_d, t_d](6)
    =======================================  ======================  ==============

The global variants are used when many frames are refined jointly in a
shared world frame, each frame owning its own pose blocks. Both poses of one
global residual always use the same rotation encoding.
"""

from ..coords.rotations import angle_axis_rotate_point, quat_rotate_point
from .cost_function import CostFunction, as_owned_vector, check_rotation_parameterization


class PointToPointError(CostFunction):
    """Point-to-point residual against a fixed destination (quaternion pose).

    Args:
        dst: Destination point q, shape (3,).
        src: Source point p, shape (3,).
        **kwargs: Forwarded to ``CostFunction`` (differentiation, step,
            validate).
    """

    num_residuals = 3
    parameter_block_sizes = (4, 3)
    parameter_block_names = ("rotation", "translation")
    quaternion_blocks = (0,)

    def __init__(self, dst, src, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)

    def residual(self, rotation, translation):
        return quat_rotate_point(rotation, self.src) + translation - self.dst


class PointToPointErrorAngleAxis(CostFunction):
    """Point-to-point residual against a fixed destination (axis-angle pose).

    The single parameter block is [ωx, ωy, ωz, tx, ty, tz]: the first three
    entries are the rotation vector, the last three the translation.
    """

    num_residuals = 3
    parameter_block_sizes = (6,)
    parameter_block_names = ("pose",)

    def __init__(self, dst, src, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)

    def residual(self, pose):
        return angle_axis_rotate_point(pose[:3], self.src) + pose[3:] - self.dst


class PointToPointErrorGlobal(CostFunction):
    """Point-to-point residual between two independently posed frames.

    r = (R(q_src) p + t_src) - (R(q_dst) q + t_dst)

    With q_dst = identity and t_dst = 0 this reduces exactly to
    ``PointToPointError``.
    """

    num_residuals = 3
    parameter_block_sizes = (4, 3, 4, 3)
    parameter_block_names = (
        "rotation_src",
        "translation_src",
        "rotation_dst",
        "translation_dst",
    )
    quaternion_blocks = (0, 2)

    def __init__(self, dst, src, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)

    def residual(self, rotation_src, translation_src, rotation_dst, translation_dst):
        p = quat_rotate_point(rotation_src, self.src) + translation_src
        p_dst = quat_rotate_point(rotation_dst, self.dst) + translation_dst
        return p - p_dst


class PointToPointErrorGlobalAngleAxis(CostFunction):
    """Global pairwise point-to-point residual with packed axis-angle poses."""

    num_residuals = 3
    parameter_block_sizes = (6, 6)
    parameter_block_names = ("pose_src", "pose_dst")

    def __init__(self, dst, src, **kwargs):
        super().__init__(**kwargs)
        self.dst = as_owned_vector("dst", dst)
        self.src = as_owned_vector("src", src)

    def residual(self, pose_src, pose_dst):
        p = angle_axis_rotate_point(pose_src[:3], self.src) + pose_src[3:]
        p_dst = angle_axis_rotate_point(pose_dst[:3], self.dst) + pose_dst[3:]
        return p - p_dst


def make_point_to_point_residual(dst, src, rotation: str = "quaternion", **kwargs) -> CostFunction:
    """Create the fixed-destination point-to-point residual for one correspondence.

    Args:
        dst: Destination point, shape (3,).
        src: Source point, shape (3,).
        rotation: "quaternion" (blocks q(4), t(3)) or "angle_axis"
            (block [ω, t](6)).
        **kwargs: Forwarded to the cost function (differentiation, step,
            validate).

    Returns:
        CostFunction with 3 residuals.

    Raises:
        ValueError: If rotation is unknown or the points are malformed.

    Example:
        >>> cost = make_point_to_point_residual([0, 1, 0], [1, 0, 0])
        >>> cost(np.array([1.0, 0, 0, 0]), np.array([-1.0, 1.0, 0.0]))
        array([0., 0., 0.])
    """
    if check_rotation_parameterization(rotation) == "quaternion":
        return PointToPointError(dst, src, **kwargs)
    return PointToPointErrorAngleAxis(dst, src, **kwargs)


def make_point_to_point_residual_global(
    dst, src, rotation: str = "quaternion", **kwargs
) -> CostFunction:
    """Create the global pairwise point-to-point residual for one correspondence.

    Args:
        dst: Destination point in the destination frame, shape (3,).
        src: Source point in the source frame, shape (3,).
        rotation: "quaternion" (blocks q_src(4), t_src(3), q_dst(4), t_dst(3))
            or "angle_axis" (blocks pose_src(6), pose_dst(6)).
        **kwargs: Forwarded to the cost function.

    Returns:
        CostFunction with 3 residuals.
    """
    if check_rotation_parameterization(rotation) == "quaternion":
        return PointToPointErrorGlobal(dst, src, **kwargs)
    return PointToPointErrorGlobalAngleAxis(dst, src, **kwargs)
