"""Rigid registration drivers built on the ICP residuals.

Main components:
    - align_point_to_point_svd / align_point_to_plane_linear: closed form
    - register_point_to_point / register_point_to_plane: nonlinear refinement
    - refine_poses_global: joint multi-frame refinement
"""

from .icp import (
    METRICS,
    MIN_CORRESPONDENCES,
    FrameLink,
    GlobalRegistrationResult,
    RegistrationResult,
    align_point_to_plane_linear,
    align_point_to_point_svd,
    refine_poses_global,
    register_point_to_plane,
    register_point_to_point,
)

__all__ = [
    "FrameLink",
    "GlobalRegistrationResult",
    "RegistrationResult",
    "METRICS",
    "MIN_CORRESPONDENCES",
    "align_point_to_point_svd",
    "align_point_to_plane_linear",
    "register_point_to_point",
    "register_point_to_plane",
    "refine_poses_global",
]
