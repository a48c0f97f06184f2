"""Rotation parameterizations used by the ICP residuals.

This module provides the two rotation encodings the residual library is
built around, plus the conversions between them:
- Unit quaternions (4 parameters, q = [qw, qx, qy, qz])
- Axis-angle vectors (3 parameters, ω = θ·k, |ω| = θ)
- Rotation matrices (3x3 orthogonal matrices, SO(3))

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part. This w-first
  layout is used by every quaternion parameter block in the package.
- Axis-angle: ω = θ·k with θ in radians and k the unit rotation axis.
- Rotations act on column vectors: v' = R @ v.

The point-rotation functions (``quat_rotate_point``,
``angle_axis_rotate_point``, ``quat_multiply``, ...) are written against
plain array arithmetic only, so they accept complex-valued inputs as well
as float64. The residuals rely on this for complex-step differentiation.

None of the functions renormalize a quaternion. Keeping quaternion blocks
on the unit sphere is the optimizer's job (see ``icpcore.coords.manifolds``).
"""

import numpy as np
from numpy.typing import NDArray

# Below this squared angle the axis-angle formulas switch to their
# first-order Taylor expansions.
SMALL_ANGLE_SQUARED = np.finfo(np.float64).eps

UNIT_NORM_TOLERANCE = 1e-6


def _as_vector(x, size: int, name: str) -> np.ndarray:
    x = np.asarray(x)
    if x.shape != (size,):
        raise ValueError(f"Expected {size}-element {name}, got shape {x.shape}")
    return x


def skew(v: NDArray) -> NDArray:
    """Return the 3x3 skew-symmetric matrix [v]x with [v]x @ u = v × u."""
    v = _as_vector(v, 3, "vector")
    zero = np.zeros_like(v[0])
    return np.array(
        [
            [zero, -v[2], v[1]],
            [v[2], zero, -v[0]],
            [-v[1], v[0], zero],
        ]
    )


def quat_identity() -> NDArray[np.float64]:
    """Identity rotation as [1, 0, 0, 0]."""
    return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)


def quat_multiply(p: NDArray, q: NDArray) -> NDArray:
    """Hamilton product p ⊗ q.

    Rotating by ``quat_multiply(p, q)`` applies q first, then p.

    Args:
        p: Quaternion [pw, px, py, pz].
        q: Quaternion [qw, qx, qy, qz].

    Returns:
        Product quaternion [w, x, y, z].

    Raises:
        ValueError: If either input is not a 4-element array.
    """
    p = _as_vector(p, 4, "quaternion")
    q = _as_vector(q, 4, "quaternion")

    pw, px, py, pz = p
    qw, qx, qy, qz = q

    return np.array(
        [
            pw * qw - px * qx - py * qy - pz * qz,
            pw * qx + px * qw + py * qz - pz * qy,
            pw * qy - px * qz + py * qw + pz * qx,
            pw * qz + px * qy - py * qx + pz * qw,
        ]
    )


def quat_conjugate(q: NDArray) -> NDArray:
    """Conjugate [qw, -qx, -qy, -qz] (the inverse for a unit quaternion)."""
    q = _as_vector(q, 4, "quaternion")
    return np.concatenate([q[:1], -q[1:]])


def quat_rotate_point(q: NDArray, v: NDArray) -> NDArray:
    """Rotate a 3D point by a unit quaternion: v' = q · v · q⁻¹.

    Uses the expanded form
        t = 2 (u × v)
        v' = v + qw t + u × t
    with u = [qx, qy, qz], which is exact for unit quaternions and costs
    two cross products. The quaternion is assumed to be unit-norm and is
    not renormalized.

    Args:
        q: Unit quaternion [qw, qx, qy, qz].
        v: Point or direction, shape (3,).

    Returns:
        Rotated vector, shape (3,). The dtype follows the inputs (complex
        inputs give complex outputs).

    Raises:
        ValueError: If q is not a 4-element array or v not a 3-element array.

    Example:
        >>> q = np.array([np.sqrt(0.5), 0.0, 0.0, np.sqrt(0.5)])  # 90° about z
        >>> quat_rotate_point(q, np.array([1.0, 0.0, 0.0]))  # ≈ [0, 1, 0]
    """
    q = _as_vector(q, 4, "quaternion")
    v = _as_vector(v, 3, "vector")

    u = q[1:]
    t = 2.0 * np.cross(u, v)
    return v + q[0] * t + np.cross(u, t)


def angle_axis_rotate_point(angle_axis: NDArray, v: NDArray) -> NDArray:
    """Rotate a 3D point by an axis-angle vector (Rodrigues' formula).

    For θ = |ω| away from zero:
        v' = v cos θ + (k × v) sin θ + k (k · v)(1 - cos θ),   k = ω / θ

    Near θ = 0 the division by θ is ill-conditioned, so the first-order
    expansion v' = v + ω × v is used instead. Both branches agree to first
    order, which keeps the Jacobian correct at the identity rotation.

    Args:
        angle_axis: Rotation vector ω, shape (3,), magnitude in radians.
        v: Point or direction, shape (3,).

    Returns:
        Rotated vector, shape (3,).

    Raises:
        ValueError: If either input is not a 3-element array.

    Reference:
        Same formulation as ceres::AngleAxisRotatePoint.
    """
    w = _as_vector(angle_axis, 3, "angle-axis vector")
    v = _as_vector(v, 3, "vector")

    theta2 = w @ w
    if np.real(theta2) > SMALL_ANGLE_SQUARED:
        theta = np.sqrt(theta2)
        cos_theta = np.cos(theta)
        sin_theta = np.sin(theta)
        k = w / theta
        return (
            v * cos_theta
            + np.cross(k, v) * sin_theta
            + k * (k @ v) * (1.0 - cos_theta)
        )

    # R ≈ I + [ω]x
    return v + np.cross(w, v)


def angle_axis_to_quat(angle_axis: NDArray) -> NDArray:
    """Convert an axis-angle vector to a unit quaternion [qw, qx, qy, qz].

    Args:
        angle_axis: Rotation vector ω, shape (3,).

    Returns:
        Unit quaternion with qw = cos(θ/2), [qx, qy, qz] = sin(θ/2) k.
    """
    w = _as_vector(angle_axis, 3, "angle-axis vector")

    theta2 = w @ w
    if np.real(theta2) > SMALL_ANGLE_SQUARED:
        theta = np.sqrt(theta2)
        half_theta = 0.5 * theta
        k = np.sin(half_theta) / theta
        return np.concatenate([[np.cos(half_theta)], w * k])

    # sin(θ/2)/θ → 1/2
    return np.concatenate([[np.ones_like(theta2)], 0.5 * w])


def quat_to_angle_axis(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a unit quaternion to the shortest axis-angle vector.

    The returned angle lies in [0, π]; q and -q map to the same vector.
    Uses atan2 rather than acos so the angle stays accurate near 0 and π.

    Args:
        q: Unit quaternion [qw, qx, qy, qz].

    Returns:
        Axis-angle vector ω, shape (3,).

    Raises:
        ValueError: If q is not a 4-element array.

    Example:
        >>> quat_to_angle_axis(np.array([1.0, 0.0, 0.0, 0.0]))
        array([0., 0., 0.])
    """
    q = np.asarray(_as_vector(q, 4, "quaternion"), dtype=np.float64)

    u = q[1:]
    sin_squared = u @ u
    if sin_squared > 0.0:
        sin_half = np.sqrt(sin_squared)
        cos_half = q[0]
        # Pick the equivalent quaternion with qw >= 0 so that θ <= π
        if cos_half < 0.0:
            theta = 2.0 * np.arctan2(-sin_half, -cos_half)
        else:
            theta = 2.0 * np.arctan2(sin_half, cos_half)
        return u * (theta / sin_half)

    return 2.0 * u


def quat_to_rotation_matrix(q: NDArray) -> NDArray:
    """Convert quaternion to rotation matrix.

    Args:
        q: Unit quaternion as numpy array [qw, qx, qy, qz].

    Returns:
        3x3 rotation matrix R with R @ v == quat_rotate_point(q, v).

    Raises:
        ValueError: If q is not a 4-element array.

    Example:
        >>> R = quat_to_rotation_matrix(np.array([1.0, 0.0, 0.0, 0.0]))
        >>> np.allclose(R, np.eye(3))
        True
    """
    q = _as_vector(q, 4, "quaternion")

    qw, qx, qy, qz = q

    return np.array(
        [
            [
                1.0 - 2.0 * (qy * qy + qz * qz),
                2.0 * (qx * qy - qw * qz),
                2.0 * (qx * qz + qw * qy),
            ],
            [
                2.0 * (qx * qy + qw * qz),
                1.0 - 2.0 * (qx * qx + qz * qz),
                2.0 * (qy * qz - qw * qx),
            ],
            [
                2.0 * (qx * qz - qw * qy),
                2.0 * (qy * qz + qw * qx),
                1.0 - 2.0 * (qx * qx + qy * qy),
            ],
        ]
    )


def angle_axis_to_rotation_matrix(angle_axis: NDArray) -> NDArray:
    """Convert an axis-angle vector to a rotation matrix.

    R = cos θ I + sin θ [k]x + (1 - cos θ) k kᵀ, and R ≈ I + [ω]x for
    vanishing θ.
    """
    w = _as_vector(angle_axis, 3, "angle-axis vector")

    theta2 = w @ w
    if np.real(theta2) > SMALL_ANGLE_SQUARED:
        theta = np.sqrt(theta2)
        k = w / theta
        cos_theta = np.cos(theta)
        return (
            cos_theta * np.eye(3)
            + np.sin(theta) * skew(k)
            + (1.0 - cos_theta) * np.outer(k, k)
        )

    return np.eye(3) + skew(w)


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert rotation matrix to quaternion.

    Extracts a unit quaternion from a 3x3 rotation matrix using
    Shepperd's method for numerical stability. The sign is chosen so that
    qw >= 0.

    Args:
        R: 3x3 rotation matrix (orthogonal matrix in SO(3)).

    Returns:
        Unit quaternion as numpy array [qw, qx, qy, qz].

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    # Shepperd's method: branch on the largest of trace and diagonal
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    q = np.array([qw, qx, qy, qz], dtype=np.float64)
    q = q / np.linalg.norm(q)
    if q[0] < 0.0:
        q = -q

    return q


def check_finite(name: str, x: NDArray) -> None:
    """Raise ValueError if x contains NaN or infinite entries."""
    if not np.all(np.isfinite(x)):
        raise ValueError(f"{name} must be finite, got {x}")


def check_unit_quaternion(
    q: NDArray,
    tol: float = UNIT_NORM_TOLERANCE,
    name: str = "quaternion",
) -> None:
    """Fail fast on a quaternion that does not encode a proper rotation.

    The residuals never normalize their rotation blocks, so a drifting or
    zero quaternion would silently scale points and poison the solve.
    Only the real part is checked, which keeps the check usable during
    complex-step differentiation.

    Args:
        q: Quaternion [qw, qx, qy, qz].
        tol: Allowed deviation of ‖q‖ from 1.
        name: Label used in error messages.

    Raises:
        ValueError: If q has the wrong shape, non-finite entries, zero norm,
            or a norm further than tol from 1.
    """
    q = _as_vector(q, 4, name)
    check_finite(name, q)

    norm = np.sqrt(np.sum(np.real(q) ** 2))
    if norm < np.finfo(np.float64).tiny:
        raise ValueError(f"{name} has zero norm and does not define a rotation")
    if abs(norm - 1.0) > tol:
        raise ValueError(
            f"{name} must be unit-norm (|‖q‖ - 1| <= {tol}), got ‖q‖ = {norm:.12g}"
        )
