"""Optimizer-facing cost function interface.

Every ICP residual is a ``CostFunction``: a stateless mapping from one or
more pose parameter blocks to a small residual vector, plus the data it
captured at construction (points and normals). An optimizer only needs
three things from it:

    - ``num_residuals``: length of the residual vector
    - ``parameter_block_sizes``: sizes of the blocks it is evaluated on
    - ``evaluate(*blocks, jacobians=True)``: residual and ∂r/∂block_i

Subclasses implement ``residual(*blocks)`` only, written with plain array
arithmetic so that it runs unchanged on float64 and complex128 inputs. The
Jacobians are then obtained by a pluggable differentiation strategy:

    - "complex_step": J[:, j] = Im(r(x + i h e_j)) / h with h = 1e-20.
      No subtractive cancellation, so the result is exact to machine
      precision (the counterpart of automatic differentiation).
    - "central": J[:, j] = (r(x + h e_j) - r(x - h e_j)) / 2h.

Jacobians are taken with respect to the ambient parameters (4 columns for
a quaternion block). Projecting them onto a manifold's tangent space is the
optimizer's responsibility.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ..coords.rotations import check_finite, check_unit_quaternion

DIFFERENTIATION_METHODS = ("complex_step", "central")

_COMPLEX_STEP = 1e-20
_CENTRAL_STEP = 1e-7


def as_owned_vector(name: str, x, size: int = 3) -> NDArray[np.float64]:
    """Copy x into a read-only float64 vector, validating shape and finiteness.

    Residuals keep their own copy of every point and normal so they cannot
    outlive or observe changes to caller-owned arrays.

    Raises:
        ValueError: If x does not have shape (size,) or is not finite.
    """
    v = np.array(x, dtype=np.float64, copy=True)
    if v.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {v.shape}")
    check_finite(name, v)
    v.flags.writeable = False
    return v


class CostFunction:
    """Base class for residuals evaluated by a least-squares optimizer.

    Attributes:
        num_residuals: Number of residual components.
        parameter_block_sizes: Size of each parameter block, in call order.
        parameter_block_names: Human-readable block names (error messages).
        quaternion_blocks: Indices of blocks holding unit quaternions; these
            are checked for unit norm before evaluation when validate=True.
        differentiation: "complex_step" or "central".
        validate: Whether to check parameter blocks before evaluation.
    """

    num_residuals: int = 0
    parameter_block_sizes: Tuple[int, ...] = ()
    parameter_block_names: Tuple[str, ...] = ()
    quaternion_blocks: Tuple[int, ...] = ()

    def __init__(
        self,
        differentiation: str = "complex_step",
        step: Optional[float] = None,
        validate: bool = True,
    ):
        if differentiation not in DIFFERENTIATION_METHODS:
            raise ValueError(
                f"Unknown differentiation method: {differentiation}. "
                f"Use one of {DIFFERENTIATION_METHODS}."
            )
        if step is not None and step <= 0.0:
            raise ValueError(f"step must be positive, got {step}")

        self.differentiation = differentiation
        self.step = step
        self.validate = validate

    def residual(self, *blocks: NDArray) -> NDArray:
        """Compute the residual vector. Must accept complex-valued blocks."""
        raise NotImplementedError

    def __call__(self, *blocks) -> NDArray[np.float64]:
        residuals, _ = self.evaluate(*blocks)
        return residuals

    def evaluate(
        self,
        *blocks,
        jacobians: bool = False,
    ) -> Tuple[NDArray[np.float64], Optional[List[NDArray[np.float64]]]]:
        """Evaluate the residual and, optionally, its Jacobians.

        Args:
            *blocks: Parameter blocks, one array per entry of
                ``parameter_block_sizes``.
            jacobians: If True, also return ∂r/∂block_i for every block.

        Returns:
            Tuple of (residuals, jacobian_list). residuals has shape
            (num_residuals,); jacobian_list[i] has shape
            (num_residuals, parameter_block_sizes[i]), or is None when
            jacobians=False.

        Raises:
            ValueError: If the blocks have the wrong count or sizes, contain
                non-finite values, or a quaternion block is not unit-norm.
        """
        blocks = self._prepare_blocks(blocks)

        r = np.asarray(self.residual(*blocks), dtype=np.float64)
        if r.shape != (self.num_residuals,):
            raise ValueError(
                f"{type(self).__name__}.residual returned shape {r.shape}, "
                f"expected ({self.num_residuals},)"
            )

        if not jacobians:
            return r, None

        if self.differentiation == "complex_step":
            J = self._complex_step_jacobians(blocks)
        else:
            J = self._central_difference_jacobians(blocks)
        return r, J

    def _prepare_blocks(self, blocks: Sequence) -> List[np.ndarray]:
        if len(blocks) != len(self.parameter_block_sizes):
            raise ValueError(
                f"{type(self).__name__} expects {len(self.parameter_block_sizes)} "
                f"parameter blocks, got {len(blocks)}"
            )

        prepared = []
        for i, (block, size) in enumerate(zip(blocks, self.parameter_block_sizes)):
            name = self._block_name(i)
            x = np.asarray(block, dtype=np.float64)
            if x.shape != (size,):
                raise ValueError(f"{name} must have shape ({size},), got {x.shape}")
            if self.validate:
                check_finite(name, x)
                if i in self.quaternion_blocks:
                    check_unit_quaternion(x, name=name)
            prepared.append(x)
        return prepared

    def _block_name(self, index: int) -> str:
        if index < len(self.parameter_block_names):
            return self.parameter_block_names[index]
        return f"parameter block {index}"

    def _complex_step_jacobians(self, blocks: List[np.ndarray]) -> List[np.ndarray]:
        h = self.step if self.step is not None else _COMPLEX_STEP
        complex_blocks = [b.astype(np.complex128) for b in blocks]

        jacobians = []
        for i, size in enumerate(self.parameter_block_sizes):
            J = np.zeros((self.num_residuals, size))
            for j in range(size):
                complex_blocks[i][j] += 1j * h
                J[:, j] = np.imag(self.residual(*complex_blocks)) / h
                complex_blocks[i][j] -= 1j * h
            jacobians.append(J)
        return jacobians

    def _central_difference_jacobians(self, blocks: List[np.ndarray]) -> List[np.ndarray]:
        h = self.step if self.step is not None else _CENTRAL_STEP
        work = [b.copy() for b in blocks]

        jacobians = []
        for i, size in enumerate(self.parameter_block_sizes):
            J = np.zeros((self.num_residuals, size))
            for j in range(size):
                original = work[i][j]
                work[i][j] = original + h
                r_plus = np.asarray(self.residual(*work), dtype=np.float64)
                work[i][j] = original - h
                r_minus = np.asarray(self.residual(*work), dtype=np.float64)
                work[i][j] = original
                J[:, j] = (r_plus - r_minus) / (2.0 * h)
            jacobians.append(J)
        return jacobians

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(num_residuals={self.num_residuals}, "
            f"parameter_block_sizes={list(self.parameter_block_sizes)})"
        )


ROTATION_PARAMETERIZATIONS = ("quaternion", "angle_axis")


def check_rotation_parameterization(rotation: str) -> str:
    """Validate a rotation parameterization name.

    Raises:
        ValueError: If rotation is not "quaternion" or "angle_axis".
    """
    if rotation not in ROTATION_PARAMETERIZATIONS:
        raise ValueError(
            f"Unknown rotation parameterization: {rotation}. "
            f"Use one of {ROTATION_PARAMETERIZATIONS}."
        )
    return rotation
