"""Manifolds (local parameterizations) for pose parameter blocks.

An optimizer that works on a quaternion block must never step off the unit
sphere: the residuals in ``icpcore.residuals`` assume a unit quaternion on
input and do not renormalize. Attaching a ``QuaternionManifold`` to every
quaternion block makes the solver compute its step δ in the 3D tangent
space and apply it with ``plus``, so the block stays a valid rotation after
every iteration. Leaving it out raises no error; it only degrades
convergence. The drivers in ``icpcore.registration`` attach one to every
quaternion block they add to an ``icpcore.estimators.Problem``.

Axis-angle blocks are minimal (3 DoF) and Euclidean; they use
``EuclideanManifold`` (the default when no manifold is given).
"""

from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from .rotations import quat_conjugate, quat_multiply


class Manifold:
    """Base class for a parameter block update rule.

    Attributes:
        ambient_size: Number of stored parameters (e.g. 4 for a quaternion).
        tangent_size: Number of degrees of freedom the solver steps in.
    """

    ambient_size: int
    tangent_size: int

    def plus(self, x: NDArray[np.float64], delta: NDArray[np.float64]) -> NDArray[np.float64]:
        """Apply a tangent-space step: x ⊞ δ."""
        raise NotImplementedError

    def minus(self, y: NDArray[np.float64], x: NDArray[np.float64]) -> NDArray[np.float64]:
        """Tangent vector δ such that x ⊞ δ = y."""
        raise NotImplementedError

    def plus_jacobian(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        """∂(x ⊞ δ)/∂δ at δ = 0, shape (ambient_size, tangent_size)."""
        raise NotImplementedError

    def _check_sizes(self, x: np.ndarray, delta: np.ndarray) -> None:
        if x.shape != (self.ambient_size,):
            raise ValueError(
                f"Expected parameter block of size {self.ambient_size}, got shape {x.shape}"
            )
        if delta.shape != (self.tangent_size,):
            raise ValueError(
                f"Expected tangent step of size {self.tangent_size}, got shape {delta.shape}"
            )


class EuclideanManifold(Manifold):
    """Plain vector space: x ⊞ δ = x + δ."""

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"size must be positive, got {size}")
        self.ambient_size = size
        self.tangent_size = size

    def plus(self, x, delta):
        x = np.asarray(x, dtype=np.float64)
        delta = np.asarray(delta, dtype=np.float64)
        self._check_sizes(x, delta)
        return x + delta

    def minus(self, y, x):
        return np.asarray(y, dtype=np.float64) - np.asarray(x, dtype=np.float64)

    def plus_jacobian(self, x):
        return np.eye(self.ambient_size)

    def __repr__(self) -> str:
        return f"EuclideanManifold(size={self.ambient_size})"


class QuaternionManifold(Manifold):
    """Unit quaternions [qw, qx, qy, qz] with a left-multiplied update.

    x ⊞ δ = exp(δ) ⊗ x,  exp(δ) = [cos‖δ‖, sin‖δ‖ δ/‖δ‖]

    so δ is half the rotation vector of the applied increment, expressed in
    the fixed (world) frame. The result is renormalized to absorb rounding.
    This matches the convention of Ceres' ``QuaternionManifold``.
    """

    ambient_size = 4
    tangent_size = 3

    @staticmethod
    def exp(delta: NDArray[np.float64]) -> NDArray[np.float64]:
        """Map a tangent vector to a unit quaternion."""
        norm_delta = np.linalg.norm(delta)
        if norm_delta > 0.0:
            return np.concatenate(
                [[np.cos(norm_delta)], np.sin(norm_delta) / norm_delta * delta]
            )
        return np.array([1.0, 0.0, 0.0, 0.0])

    @staticmethod
    def log(q: NDArray[np.float64]) -> NDArray[np.float64]:
        """Inverse of ``exp`` on the hemisphere qw >= 0."""
        if q[0] < 0.0:
            q = -q
        v = q[1:]
        sin_norm = np.linalg.norm(v)
        if sin_norm > 0.0:
            return np.arctan2(sin_norm, q[0]) / sin_norm * v
        return np.zeros(3)

    def plus(self, x, delta):
        x = np.asarray(x, dtype=np.float64)
        delta = np.asarray(delta, dtype=np.float64)
        self._check_sizes(x, delta)

        q = quat_multiply(self.exp(delta), x)
        return q / np.linalg.norm(q)

    def minus(self, y, x):
        y = np.asarray(y, dtype=np.float64)
        x = np.asarray(x, dtype=np.float64)
        return self.log(quat_multiply(y, quat_conjugate(x)))

    def plus_jacobian(self, x):
        x = np.asarray(x, dtype=np.float64)
        # Columns are [0, e_i] ⊗ x
        J = np.zeros((4, 3))
        for i in range(3):
            e = np.zeros(4)
            e[i + 1] = 1.0
            J[:, i] = quat_multiply(e, x)
        return J

    def __repr__(self) -> str:
        return "QuaternionManifold()"


class SubsetManifold(Manifold):
    """Vector space with some coordinates held constant.

    Useful for freezing part of a packed block, for example the translation
    of an axis-angle pose [ωx, ωy, ωz, tx, ty, tz] to refine rotation only.

    Args:
        size: Ambient block size.
        constant_indices: Indices that never change.
    """

    def __init__(self, size: int, constant_indices: Sequence[int]):
        constant = sorted(set(int(i) for i in constant_indices))
        if any(i < 0 or i >= size for i in constant):
            raise ValueError(
                f"constant_indices must lie in [0, {size}), got {list(constant_indices)}"
            )
        if len(constant) == size:
            raise ValueError("SubsetManifold must leave at least one free coordinate")

        self.ambient_size = size
        self.tangent_size = size - len(constant)
        self.constant_indices = constant
        self.free_indices = [i for i in range(size) if i not in constant]

    def plus(self, x, delta):
        x = np.asarray(x, dtype=np.float64)
        delta = np.asarray(delta, dtype=np.float64)
        self._check_sizes(x, delta)

        y = x.copy()
        y[self.free_indices] += delta
        return y

    def minus(self, y, x):
        diff = np.asarray(y, dtype=np.float64) - np.asarray(x, dtype=np.float64)
        return diff[self.free_indices]

    def plus_jacobian(self, x):
        J = np.zeros((self.ambient_size, self.tangent_size))
        J[self.free_indices, np.arange(self.tangent_size)] = 1.0
        return J

    def __repr__(self) -> str:
        return (
            f"SubsetManifold(size={self.ambient_size}, "
            f"constant_indices={self.constant_indices})"
        )
