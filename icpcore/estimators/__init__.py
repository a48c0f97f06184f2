"""Least-squares estimation over pose parameter blocks.

Main components:
    - Problem: parameter blocks + residual blocks, Gauss-Newton / LM solve
    - SolverOptions: frozen solver configuration
    - SolverSummary: costs, iterations and termination reason
"""

from .problem import (
    SOLVER_METHODS,
    Problem,
    ResidualBlock,
    SolverOptions,
    SolverSummary,
)

__all__ = [
    "Problem",
    "ResidualBlock",
    "SolverOptions",
    "SolverSummary",
    "SOLVER_METHODS",
]
