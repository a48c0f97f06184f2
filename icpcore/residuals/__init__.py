"""ICP residual (cost function) library.

One cost function is created per correspondence and handed to a
least-squares optimizer together with the pose parameter blocks it acts
on. The optimizer sums the squared residuals of all correspondences and
refines the pose(s).

Main components:
    - CostFunction: evaluation + Jacobian contract shared by all residuals
    - Point-to-point residuals (fixed destination and global pairwise)
    - Point-to-plane residuals (fixed destination and global pairwise)
    - make_* factories selecting the quaternion or axis-angle variant

Parameter block layouts:
    quaternion:  rotation [qw, qx, qy, qz] (4), translation (3)
    angle_axis:  pose [ωx, ωy, ωz, tx, ty, tz] (6)

Example usage:
    >>> import numpy as np
    >>> from icpcore.residuals import make_point_to_point_residual
    >>> cost = make_point_to_point_residual(dst=[0, 1, 0], src=[1, 0, 0])
    >>> q = np.array([np.sqrt(0.5), 0.0, 0.0, np.sqrt(0.5)])  # 90° about z
    >>> r, (J_q, J_t) = cost.evaluate(q, np.zeros(3), jacobians=True)
"""

from .cost_function import (
    DIFFERENTIATION_METHODS,
    ROTATION_PARAMETERIZATIONS,
    CostFunction,
    as_owned_vector,
    check_rotation_parameterization,
)
from .point_to_plane import (
    PointToPlaneError,
    PointToPlaneErrorAngleAxis,
    PointToPlaneErrorGlobal,
    PointToPlaneErrorGlobalAngleAxis,
    make_point_to_plane_residual,
    make_point_to_plane_residual_global,
)
from .point_to_point import (
    PointToPointError,
    PointToPointErrorAngleAxis,
    PointToPointErrorGlobal,
    PointToPointErrorGlobalAngleAxis,
    make_point_to_point_residual,
    make_point_to_point_residual_global,
)

__all__ = [
    # Interface
    "CostFunction",
    "DIFFERENTIATION_METHODS",
    "ROTATION_PARAMETERIZATIONS",
    "as_owned_vector",
    "check_rotation_parameterization",
    # Point-to-point
    "PointToPointError",
    "PointToPointErrorAngleAxis",
    "PointToPointErrorGlobal",
    "PointToPointErrorGlobalAngleAxis",
    "make_point_to_point_residual",
    "make_point_to_point_residual_global",
    # Point-to-plane
    "PointToPlaneError",
    "PointToPlaneErrorAngleAxis",
    "PointToPlaneErrorGlobal",
    "PointToPlaneErrorGlobalAngleAxis",
    "make_point_to_plane_residual",
    "make_point_to_plane_residual_global",
]
