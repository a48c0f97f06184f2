"""ICP residuals and registration.

This package contains the components for rigid 3D point-cloud registration:
- coords: Rotation parameterizations, manifolds and SE(3) helpers
- residuals: Point-to-point and point-to-plane ICP cost functions
- estimators: Least-squares problem with Gauss-Newton / LM solvers
- registration: Closed-form, single-pose and multi-frame alignment drivers
"""

__version__ = "0.1.0"
