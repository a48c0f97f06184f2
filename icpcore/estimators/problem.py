"""Nonlinear least-squares problem over pose parameter blocks.

This module is the optimizer side of the residual library: it collects one
cost function per correspondence, the parameter blocks they act on, and a
manifold per block, then minimizes

    F(x) = ½ Σᵢ ‖rᵢ(x_i1, x_i2, ...)‖²

with Gauss-Newton or Levenberg-Marquardt.

Every step is computed in the tangent space of the variable blocks and
applied through the block's manifold:

    Jᵢ_tangent = (∂rᵢ/∂x) · (∂(x ⊞ δ)/∂δ)|δ=0
    (JᵀJ + μI) δ = -Jᵀr
    x ← x ⊞ δ

so quaternion blocks with a ``QuaternionManifold`` stay unit-norm after every
iteration, which is the invariant the residuals rely on.

Levenberg-Marquardt uses the gain-ratio damping update
    μ ← μ · max(1/3, 1 - (2g - 1)³)   on an accepted step,
    μ ← μ · ν, ν ← 2ν                  on a rejected step.
"""

import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from ..coords.manifolds import EuclideanManifold, Manifold, QuaternionManifold
from ..coords.rotations import check_finite, check_unit_quaternion
from ..residuals.cost_function import CostFunction

SOLVER_METHODS = ("levenberg_marquardt", "lm", "gauss_newton")

# Damping beyond this means no step can reduce the cost any more.
_MAX_MU = 1e16


@dataclass(frozen=True)
class SolverOptions:
    """Configuration for ``Problem.solve``.

    Attributes:
        method: "levenberg_marquardt" (alias "lm") or "gauss_newton".
        max_iterations: Maximum number of outer iterations.
        function_tolerance: Stop when |ΔF| <= function_tolerance · F.
        parameter_tolerance: Stop when ‖δ‖ <= parameter_tolerance · (‖x‖ + parameter_tolerance).
        gradient_tolerance: Stop when max|Jᵀr| <= gradient_tolerance.
        initial_mu: Initial LM damping.

    Example:
        >>> options = SolverOptions(method="gauss_newton", max_iterations=20)
    """

    method: str = "levenberg_marquardt"
    max_iterations: int = 50
    function_tolerance: float = 1e-12
    parameter_tolerance: float = 1e-10
    gradient_tolerance: float = 1e-12
    initial_mu: float = 1e-4

    def __post_init__(self) -> None:
        """Validate option values."""
        if self.method not in SOLVER_METHODS:
            raise ValueError(
                f"Unknown method: {self.method}. Use one of {SOLVER_METHODS}."
            )
        if not isinstance(self.max_iterations, int) or self.max_iterations < 1:
            raise ValueError(
                f"max_iterations must be a positive integer, got {self.max_iterations}"
            )
        for name in ("function_tolerance", "parameter_tolerance", "gradient_tolerance"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.initial_mu <= 0.0:
            raise ValueError(f"initial_mu must be positive, got {self.initial_mu}")


@dataclass
class SolverSummary:
    """Diagnostics returned by ``Problem.solve``.

    Attributes:
        initial_cost: ½‖r‖² before optimization.
        final_cost: ½‖r‖² after optimization.
        iterations: Number of iterations performed.
        converged: Whether a tolerance criterion was met.
        termination: Which criterion stopped the solver.
        cost_history: Cost after every iteration, starting with initial_cost.
    """

    initial_cost: float
    final_cost: float
    iterations: int
    converged: bool
    termination: str
    cost_history: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class ResidualBlock:
    """A cost function bound to named parameter blocks."""

    cost_function: CostFunction
    parameter_names: Tuple[str, ...]


class Problem:
    """Least-squares problem built from ICP residual blocks.

    Parameter blocks are identified by name. Values are copied on insertion
    and updated in place by ``solve``; read them back with ``parameter``.

    Example:
        >>> problem = Problem()
        >>> problem.add_parameter_block("q", [1, 0, 0, 0], QuaternionManifold())
        >>> problem.add_parameter_block("t", np.zeros(3))
        >>> for s, d in zip(src, dst):
        ...     problem.add_residual_block(PointToPointError(d, s), ["q", "t"])
        >>> summary = problem.solve()
    """

    def __init__(self):
        """Initialize an empty problem."""
        self._values: Dict[str, np.ndarray] = {}
        self._manifolds: Dict[str, Manifold] = {}
        self._constant: Set[str] = set()
        self.residual_blocks: List[ResidualBlock] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_parameter_block(
        self,
        name: str,
        value: np.ndarray,
        manifold: Optional[Manifold] = None,
    ) -> None:
        """
        Add a parameter block.

        Args:
            name: Unique identifier for this block.
            value: Initial value (n,).
            manifold: Update rule for the block. Defaults to
                ``EuclideanManifold(n)``.

        Raises:
            ValueError: If the name is taken, the value is not a finite
                1D array, or the manifold size does not match.
        """
        if name in self._values:
            raise ValueError(f"Parameter block '{name}' already exists")

        x = np.array(value, dtype=np.float64, copy=True)
        if x.ndim != 1 or x.size == 0:
            raise ValueError(f"Parameter block '{name}' must be a non-empty 1D array, got shape {x.shape}")
        check_finite(f"parameter block '{name}'", x)

        self._values[name] = x
        self.set_manifold(name, manifold if manifold is not None else EuclideanManifold(x.size))

    def set_manifold(self, name: str, manifold: Manifold) -> None:
        """Attach a manifold to an existing parameter block.

        Raises:
            ValueError: If the block is unknown or sizes do not match, or a
                quaternion block does not currently hold a unit quaternion.
        """
        x = self._get(name)
        if not isinstance(manifold, Manifold):
            raise TypeError(f"manifold must be a Manifold, got {type(manifold).__name__}")
        if manifold.ambient_size != x.size:
            raise ValueError(
                f"Manifold ambient size {manifold.ambient_size} does not match "
                f"parameter block '{name}' of size {x.size}"
            )
        if isinstance(manifold, QuaternionManifold):
            check_unit_quaternion(x, name=f"parameter block '{name}'")
        self._manifolds[name] = manifold

    def set_parameter_block_constant(self, name: str) -> None:
        """Hold a block fixed during optimization."""
        self._get(name)
        self._constant.add(name)

    def set_parameter_block_variable(self, name: str) -> None:
        """Let a previously constant block vary again."""
        self._get(name)
        self._constant.discard(name)

    def is_parameter_block_constant(self, name: str) -> bool:
        self._get(name)
        return name in self._constant

    def add_residual_block(
        self,
        cost_function: CostFunction,
        parameter_names: Sequence[str],
    ) -> ResidualBlock:
        """
        Add a residual block.

        Args:
            cost_function: Residual to evaluate.
            parameter_names: One block name per cost function parameter block.

        Returns:
            The created ResidualBlock.

        Raises:
            TypeError: If cost_function is not a CostFunction.
            ValueError: If a block is unknown or a size does not match.
        """
        if not isinstance(cost_function, CostFunction):
            raise TypeError(
                f"cost_function must be a CostFunction, got {type(cost_function).__name__}"
            )

        names = tuple(parameter_names)
        sizes = cost_function.parameter_block_sizes
        if len(names) != len(sizes):
            raise ValueError(
                f"{type(cost_function).__name__} expects {len(sizes)} parameter blocks, "
                f"got {len(names)}"
            )
        for name, size in zip(names, sizes):
            x = self._get(name)
            if x.size != size:
                raise ValueError(
                    f"Parameter block '{name}' has size {x.size}, "
                    f"{type(cost_function).__name__} expects {size}"
                )

        block = ResidualBlock(cost_function, names)
        self.residual_blocks.append(block)
        return block

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def parameter(self, name: str) -> np.ndarray:
        """Current value of a parameter block (a copy)."""
        return self._get(name).copy()

    @property
    def parameter_names(self) -> List[str]:
        return list(self._values)

    @property
    def num_parameter_blocks(self) -> int:
        return len(self._values)

    @property
    def num_parameters(self) -> int:
        return sum(x.size for x in self._values.values())

    @property
    def num_residual_blocks(self) -> int:
        return len(self.residual_blocks)

    @property
    def num_residuals(self) -> int:
        return sum(b.cost_function.num_residuals for b in self.residual_blocks)

    def residuals(self) -> np.ndarray:
        """Stacked residual vector at the current parameter values."""
        if not self.residual_blocks:
            return np.zeros(0)
        return np.concatenate([self._evaluate_block(b)[0] for b in self.residual_blocks])

    def evaluate(self) -> float:
        """Total cost ½‖r‖² at the current parameter values."""
        r = self.residuals()
        return 0.5 * float(r @ r)

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def solve(self, options: Optional[SolverOptions] = None) -> SolverSummary:
        """
        Minimize the total cost over all non-constant parameter blocks.

        Args:
            options: Solver configuration. Defaults to ``SolverOptions()``.

        Returns:
            SolverSummary with costs, iteration count and termination reason.
        """
        if options is None:
            options = SolverOptions()

        layout = self._variable_layout()
        initial_cost = self.evaluate()

        if not layout:
            return SolverSummary(
                initial_cost=initial_cost,
                final_cost=initial_cost,
                iterations=0,
                converged=True,
                termination="no_variables",
                cost_history=[initial_cost],
            )

        if options.method == "gauss_newton":
            summary = self._gauss_newton(layout, options, initial_cost)
        else:
            summary = self._levenberg_marquardt(layout, options, initial_cost)

        if summary.termination == "max_iterations":
            warnings.warn(
                f"Solver stopped after {summary.iterations} iterations without "
                f"meeting a tolerance (cost {summary.final_cost:.6g})",
                RuntimeWarning,
                stacklevel=2,
            )
        return summary

    def _gauss_newton(
        self,
        layout: Dict[str, Tuple[int, int]],
        options: SolverOptions,
        initial_cost: float,
    ) -> SolverSummary:
        """
        Gauss-Newton iterations.

        Solves (JᵀJ) δ = -Jᵀr at each iteration and updates x ← x ⊞ δ.
        """
        cost_history = [initial_cost]
        termination = "max_iterations"
        iteration = 0

        for iteration in range(1, options.max_iterations + 1):
            H, b = self._build_linearized_system(layout)

            if np.max(np.abs(b)) <= options.gradient_tolerance:
                termination = "gradient_tolerance"
                iteration -= 1
                break

            delta = self._solve_normal_equations(H, b)
            step_small = self._step_is_small(layout, delta, options)

            self._update_variables(layout, delta)
            cost = self.evaluate()
            cost_history.append(cost)

            if step_small:
                termination = "parameter_tolerance"
                break
            if abs(cost_history[-2] - cost) <= options.function_tolerance * cost_history[-2]:
                termination = "function_tolerance"
                break

        return SolverSummary(
            initial_cost=initial_cost,
            final_cost=cost_history[-1],
            iterations=iteration,
            converged=termination != "max_iterations",
            termination=termination,
            cost_history=cost_history,
        )

    def _levenberg_marquardt(
        self,
        layout: Dict[str, Tuple[int, int]],
        options: SolverOptions,
        initial_cost: float,
    ) -> SolverSummary:
        """
        Levenberg-Marquardt iterations.

        Solves (JᵀJ + μI) δ = -Jᵀr and accepts the step when the gain ratio
            g = (F(x) - F(x ⊞ δ)) / (½ δᵀ(μδ - Jᵀr))
        is positive.
        """
        cost_history = [initial_cost]
        termination = "max_iterations"
        mu = options.initial_mu
        nu = 2.0
        iteration = 0

        for iteration in range(1, options.max_iterations + 1):
            H, b = self._build_linearized_system(layout)
            current_cost = cost_history[-1]

            if np.max(np.abs(b)) <= options.gradient_tolerance:
                termination = "gradient_tolerance"
                iteration -= 1
                break

            delta = self._solve_normal_equations(H + mu * np.eye(H.shape[0]), b)

            if self._step_is_small(layout, delta, options):
                termination = "parameter_tolerance"
                break

            saved = {name: self._values[name].copy() for name in layout}
            self._update_variables(layout, delta)
            new_cost = self.evaluate()

            actual_reduction = current_cost - new_cost
            predicted_reduction = 0.5 * float(delta @ (mu * delta + b))
            gain = actual_reduction / predicted_reduction if predicted_reduction > 0.0 else 0.0

            if gain > 0.0:
                cost_history.append(new_cost)
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain - 1.0) ** 3)
                nu = 2.0
                if actual_reduction <= options.function_tolerance * current_cost:
                    termination = "function_tolerance"
                    break
            else:
                # Reject: restore and move towards gradient descent
                self._values.update(saved)
                cost_history.append(current_cost)
                mu = mu * nu
                nu = 2.0 * nu
                if mu > _MAX_MU:
                    termination = "function_tolerance"
                    break

        return SolverSummary(
            initial_cost=initial_cost,
            final_cost=cost_history[-1],
            iterations=iteration,
            converged=termination != "max_iterations",
            termination=termination,
            cost_history=cost_history,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, name: str) -> np.ndarray:
        try:
            return self._values[name]
        except KeyError:
            raise ValueError(f"Unknown parameter block '{name}'") from None

    def _evaluate_block(
        self, block: ResidualBlock, jacobians: bool = False
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        values = [self._values[name] for name in block.parameter_names]
        return block.cost_function.evaluate(*values, jacobians=jacobians)

    def _variable_layout(self) -> Dict[str, Tuple[int, int]]:
        """Map each variable block to (offset, tangent_size) in the step vector."""
        layout = {}
        offset = 0
        for name in self._values:
            if name in self._constant:
                continue
            size = self._manifolds[name].tangent_size
            layout[name] = (offset, size)
            offset += size
        return layout

    def _build_linearized_system(
        self, layout: Dict[str, Tuple[int, int]]
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Build the tangent-space normal equations H δ = b.

        H = JᵀJ (Gauss-Newton Hessian approximation)
        b = -Jᵀr (negative gradient)

        Returns:
            Tuple of (H, b).
        """
        total_dim = sum(size for _, size in layout.values())
        H = np.zeros((total_dim, total_dim))
        b = np.zeros(total_dim)

        plus_jacobians = {
            name: self._manifolds[name].plus_jacobian(self._values[name]) for name in layout
        }

        for block in self.residual_blocks:
            r, jacobians = self._evaluate_block(block, jacobians=True)

            # Tangent Jacobians of the variable blocks touched by this residual
            local = []
            for name, J in zip(block.parameter_names, jacobians):
                if name in layout:
                    local.append((layout[name], J @ plus_jacobians[name]))

            for (offset_i, size_i), J_i in local:
                b[offset_i:offset_i + size_i] -= J_i.T @ r
                for (offset_j, size_j), J_j in local:
                    H[offset_i:offset_i + size_i, offset_j:offset_j + size_j] += J_i.T @ J_j

        return H, b

    def _solve_normal_equations(self, H: np.ndarray, b: np.ndarray) -> np.ndarray:
        try:
            return cho_solve(cho_factor(H), b)
        except np.linalg.LinAlgError:
            # Rank-deficient (e.g. unobservable direction) - minimum-norm step
            warnings.warn(
                "Normal equations are not positive definite; using a least-squares step",
                RuntimeWarning,
                stacklevel=3,
            )
            return np.linalg.lstsq(H, b, rcond=None)[0]

    def _step_is_small(
        self,
        layout: Dict[str, Tuple[int, int]],
        delta: np.ndarray,
        options: SolverOptions,
    ) -> bool:
        x_norm = np.sqrt(sum(float(self._values[name] @ self._values[name]) for name in layout))
        tol = options.parameter_tolerance
        return float(np.linalg.norm(delta)) <= tol * (x_norm + tol)

    def _update_variables(self, layout: Dict[str, Tuple[int, int]], delta: np.ndarray) -> None:
        for name, (offset, size) in layout.items():
            self._values[name] = self._manifolds[name].plus(
                self._values[name], delta[offset:offset + size]
            )

    def __repr__(self) -> str:
        return (
            f"Problem(parameter_blocks={self.num_parameter_blocks}, "
            f"residual_blocks={self.num_residual_blocks})"
        )
