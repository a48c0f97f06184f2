"""Rotation parameterizations, manifolds and rigid transforms.

This module provides the geometric building blocks shared by the ICP
residuals:
- Quaternion and axis-angle rotation of points (w-first quaternions)
- Conversions between quaternions, axis-angle vectors and rotation matrices
- Manifolds (local parameterizations) that keep quaternion blocks unit-norm
- SE(3) pose <-> 4x4 matrix helpers
"""

from icpcore.coords.manifolds import (
    EuclideanManifold,
    Manifold,
    QuaternionManifold,
    SubsetManifold,
)
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
from icpcore.coords.transforms import (
    angle_axis_pose_to_matrix,
    apply_transform,
    identity_pose,
    invert_transform,
    matrix_to_angle_axis_pose,
    matrix_to_pose,
    pose_to_matrix,
)

__all__ = [
    # Rotations
    "quat_identity",
    "quat_multiply",
    "quat_conjugate",
    "quat_rotate_point",
    "angle_axis_rotate_point",
    "angle_axis_to_quat",
    "quat_to_angle_axis",
    "quat_to_rotation_matrix",
    "angle_axis_to_rotation_matrix",
    "rotation_matrix_to_quat",
    "skew",
    "check_finite",
    "check_unit_quaternion",
    # Manifolds
    "Manifold",
    "EuclideanManifold",
    "QuaternionManifold",
    "SubsetManifold",
    # Transforms
    "identity_pose",
    "pose_to_matrix",
    "angle_axis_pose_to_matrix",
    "matrix_to_pose",
    "matrix_to_angle_axis_pose",
    "apply_transform",
    "invert_transform",
]
