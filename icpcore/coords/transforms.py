"""Rigid transform helpers (SE(3)).

Conversions between the pose parameter blocks used by the residuals and
4x4 homogeneous matrices:
- Quaternion pose: (q, t) with q = [qw, qx, qy, qz] and t = [tx, ty, tz]
- Axis-angle pose: packed 6-vector [ωx, ωy, ωz, tx, ty, tz]
- Homogeneous matrix: T = [[R, t], [0, 1]], p' = R p + t
"""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from .rotations import (
    angle_axis_to_rotation_matrix,
    quat_identity,
    quat_to_angle_axis,
    quat_to_rotation_matrix,
    rotation_matrix_to_quat,
)


def identity_pose() -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Return the identity pose as (q, t) = ([1, 0, 0, 0], [0, 0, 0])."""
    return quat_identity(), np.zeros(3)


def pose_to_matrix(q: NDArray[np.float64], t: NDArray[np.float64]) -> NDArray[np.float64]:
    """Build a 4x4 transform from a quaternion and a translation.

    Args:
        q: Unit quaternion [qw, qx, qy, qz].
        t: Translation, shape (3,).

    Returns:
        Homogeneous transform, shape (4, 4).
    """
    t = np.asarray(t, dtype=np.float64)
    if t.shape != (3,):
        raise ValueError(f"Expected 3-element translation, got shape {t.shape}")

    T = np.eye(4)
    T[:3, :3] = quat_to_rotation_matrix(np.asarray(q, dtype=np.float64))
    T[:3, 3] = t
    return T


def angle_axis_pose_to_matrix(pose: NDArray[np.float64]) -> NDArray[np.float64]:
    """Build a 4x4 transform from a packed [ω, t] 6-vector."""
    pose = np.asarray(pose, dtype=np.float64)
    if pose.shape != (6,):
        raise ValueError(f"Expected 6-element axis-angle pose, got shape {pose.shape}")

    T = np.eye(4)
    T[:3, :3] = angle_axis_to_rotation_matrix(pose[:3])
    T[:3, 3] = pose[3:]
    return T


def _check_transform(T: np.ndarray) -> np.ndarray:
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"Expected 4x4 transform, got shape {T.shape}")
    return T


def matrix_to_pose(T: NDArray[np.float64]) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Split a 4x4 transform into (q, t) with qw >= 0."""
    T = _check_transform(T)
    return rotation_matrix_to_quat(T[:3, :3]), T[:3, 3].copy()


def matrix_to_angle_axis_pose(T: NDArray[np.float64]) -> NDArray[np.float64]:
    """Pack a 4x4 transform as [ωx, ωy, ωz, tx, ty, tz]."""
    q, t = matrix_to_pose(T)
    return np.concatenate([quat_to_angle_axis(q), t])


def apply_transform(T: NDArray[np.float64], points: NDArray[np.float64]) -> NDArray[np.float64]:
    """Apply a 4x4 transform to an (N, 3) array of points.

    Raises:
        ValueError: If points is not an (N, 3) array or T is not 4x4.
    """
    T = _check_transform(T)
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {points.shape}")

    return points @ T[:3, :3].T + T[:3, 3]


def invert_transform(T: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse of a rigid transform: [[Rᵀ, -Rᵀ t], [0, 1]]."""
    T = _check_transform(T)
    R = T[:3, :3]
    T_inv = np.eye(4)
    T_inv[:3, :3] = R.T
    T_inv[:3, 3] = -R.T @ T[:3, 3]
    return T_inv
