"""Rigid registration of corresponded 3D point sets.

Given matched source/destination points (and destination normals for the
point-to-plane metric) these drivers return the rigid transform T with
T · src ≈ dst. They cover the three ways the residual library is used:

    - Closed form: ``align_point_to_point_svd`` (Kabsch / Umeyama without
      scale) and ``align_point_to_plane_linear`` (one small-angle linear
      solve).
    - Nonlinear refinement of a single pose: ``register_point_to_point`` and
      ``register_point_to_plane`` build one residual per correspondence and
      solve an ``icpcore.estimators.Problem``.
    - Joint refinement of several frames in a shared world frame:
      ``refine_poses_global`` with the global pairwise residuals.

Correspondence search is not part of this module; every function expects
row i of ``src`` to match row i of ``dst``.
"""

import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from ..coords.manifolds import QuaternionManifold
from ..coords.rotations import angle_axis_to_rotation_matrix, check_finite
from ..coords.transforms import (
    angle_axis_pose_to_matrix,
    apply_transform,
    matrix_to_angle_axis_pose,
    matrix_to_pose,
    pose_to_matrix,
)
from ..estimators.problem import Problem, SolverOptions, SolverSummary
from ..residuals.cost_function import check_rotation_parameterization
from ..residuals.point_to_plane import (
    make_point_to_plane_residual,
    make_point_to_plane_residual_global,
)
from ..residuals.point_to_point import (
    make_point_to_point_residual,
    make_point_to_point_residual_global,
)

METRICS = ("point_to_point", "point_to_plane")

MIN_CORRESPONDENCES = 3


@dataclass
class RegistrationResult:
    """Result of aligning one source set to one destination set.

    Attributes:
        transform: 4x4 homogeneous transform mapping src into dst.
        rotation: Unit quaternion [qw, qx, qy, qz] of the transform (qw >= 0).
        translation: Translation of the transform, shape (3,).
        summary: Solver diagnostics, or None for closed-form alignment.
        rmse: Root-mean-square residual at the returned transform.
    """

    transform: NDArray[np.float64]
    rotation: NDArray[np.float64]
    translation: NDArray[np.float64]
    summary: Optional[SolverSummary]
    rmse: float


@dataclass
class FrameLink:
    """Corresponded points between two frames of a multi-frame problem.

    Row i of ``src`` (in ``src_frame`` coordinates) matches row i of ``dst``
    (in ``dst_frame`` coordinates). ``normals`` are destination normals in
    ``dst_frame`` coordinates and are required for point-to-plane.
    """

    src_frame: int
    dst_frame: int
    src: NDArray[np.float64]
    dst: NDArray[np.float64]
    normals: Optional[NDArray[np.float64]] = None


@dataclass
class GlobalRegistrationResult:
    """Result of joint multi-frame refinement.

    Attributes:
        transforms: One 4x4 frame-to-world transform per frame.
        summary: Solver diagnostics.
        rmse: Root-mean-square residual over all links.
    """

    transforms: List[NDArray[np.float64]]
    summary: SolverSummary
    rmse: float


def _check_correspondences(src, dst, normals=None):
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)

    if src.ndim != 2 or src.shape[1] != 3:
        raise ValueError(f"src must have shape (N, 3), got {src.shape}")
    if dst.shape != src.shape:
        raise ValueError(
            f"src and dst must have the same shape. Got src={src.shape}, dst={dst.shape}"
        )
    if src.shape[0] < MIN_CORRESPONDENCES:
        raise ValueError(
            f"Need at least {MIN_CORRESPONDENCES} correspondences, got {src.shape[0]}"
        )
    check_finite("src", src)
    check_finite("dst", dst)

    if normals is not None:
        normals = np.asarray(normals, dtype=np.float64)
        if normals.shape != src.shape:
            raise ValueError(
                f"normals must have the same shape as src. "
                f"Got normals={normals.shape}, src={src.shape}"
            )
        check_finite("normals", normals)

    return src, dst, normals


def _initial_transform(initial) -> NDArray[np.float64]:
    if initial is None:
        return np.eye(4)
    T = np.asarray(initial, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"initial must be a 4x4 transform, got shape {T.shape}")
    check_finite("initial", T)
    return T


def _result_from_transform(T, summary, rmse) -> RegistrationResult:
    q, t = matrix_to_pose(T)
    return RegistrationResult(
        transform=pose_to_matrix(q, t),
        rotation=q,
        translation=t,
        summary=summary,
        rmse=rmse,
    )


def _point_to_point_rmse(T, src, dst) -> float:
    diff = apply_transform(T, src) - dst
    return float(np.sqrt(np.mean(np.sum(diff**2, axis=1))))


def _point_to_plane_rmse(T, src, dst, normals) -> float:
    diff = np.sum((apply_transform(T, src) - dst) * normals, axis=1)
    return float(np.sqrt(np.mean(diff**2)))


def align_point_to_point_svd(src, dst) -> RegistrationResult:
    """
    Closed-form point-to-point alignment (Kabsch).

    Minimizes Σ ‖R pᵢ + t - qᵢ‖² exactly:
        1. Center both sets on their centroids.
        2. H = Σ (pᵢ - p̄)(qᵢ - q̄)ᵀ, H = U Σ Vᵀ.
        3. R = V diag(1, 1, det(V Uᵀ)) Uᵀ (reflection fix).
        4. t = q̄ - R p̄.

    Args:
        src: Source points, shape (N, 3).
        dst: Corresponding destination points, shape (N, 3).

    Returns:
        RegistrationResult with summary=None.

    Raises:
        ValueError: If the shapes differ, N < 3, or a point is not finite.

    Example:
        >>> src = np.random.rand(10, 3)
        >>> result = align_point_to_point_svd(src, src + [1.0, 2.0, 3.0])
        >>> np.allclose(result.translation, [1, 2, 3])
        True
    """
    src, dst, _ = _check_correspondences(src, dst)

    centroid_src = np.mean(src, axis=0)
    centroid_dst = np.mean(dst, axis=0)

    H = (src - centroid_src).T @ (dst - centroid_dst)
    U, _, Vt = np.linalg.svd(H)

    R = Vt.T @ U.T

    # Reflection: flip the axis of the smallest singular value
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = centroid_dst - R @ centroid_src

    return _result_from_transform(T, None, _point_to_point_rmse(T, src, dst))


def align_point_to_plane_linear(src, dst, normals) -> RegistrationResult:
    """
    One linearized point-to-plane solve.

    With R ≈ I + [ω]x the point-to-plane residual becomes linear in [ω, t]:
        (R pᵢ + t - qᵢ) · nᵢ ≈ (pᵢ × nᵢ) · ω + nᵢ · t + (pᵢ - qᵢ) · nᵢ
    The stacked system is solved in the least-squares sense and ω is mapped
    back to an exact rotation with Rodrigues' formula. The result is exact
    only for small rotations; use ``register_point_to_plane`` to refine it.

    Args:
        src: Source points, shape (N, 3).
        dst: Corresponding destination points, shape (N, 3).
        normals: Destination normals, shape (N, 3).

    Returns:
        RegistrationResult with summary=None.

    Raises:
        ValueError: If the shapes differ, N < 3, or an input is not finite.
    """
    src, dst, normals = _check_correspondences(src, dst, normals)

    A = np.hstack([np.cross(src, normals), normals])
    b = -np.sum((src - dst) * normals, axis=1)

    x, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    if rank < 6:
        warnings.warn(
            f"Point-to-plane system has rank {rank} < 6; "
            "the unobserved pose directions are left at zero",
            RuntimeWarning,
            stacklevel=2,
        )

    T = np.eye(4)
    T[:3, :3] = angle_axis_to_rotation_matrix(x[:3])
    T[:3, 3] = x[3:]

    return _result_from_transform(T, None, _point_to_plane_rmse(T, src, dst, normals))


def _solve_single_pose(src, dst, normals, rotation, initial, options) -> RegistrationResult:
    rotation = check_rotation_parameterization(rotation)
    T0 = _initial_transform(initial)

    problem = Problem()
    if rotation == "quaternion":
        q0, t0 = matrix_to_pose(T0)
        problem.add_parameter_block("rotation", q0, QuaternionManifold())
        problem.add_parameter_block("translation", t0)
        names = ["rotation", "translation"]
    else:
        problem.add_parameter_block("pose", matrix_to_angle_axis_pose(T0))
        names = ["pose"]

    for i in range(src.shape[0]):
        if normals is None:
            cost = make_point_to_point_residual(dst[i], src[i], rotation=rotation)
        else:
            cost = make_point_to_plane_residual(dst[i], src[i], normals[i], rotation=rotation)
        problem.add_residual_block(cost, names)

    summary = problem.solve(options)

    if rotation == "quaternion":
        T = pose_to_matrix(problem.parameter("rotation"), problem.parameter("translation"))
    else:
        T = angle_axis_pose_to_matrix(problem.parameter("pose"))

    if normals is None:
        rmse = _point_to_point_rmse(T, src, dst)
    else:
        rmse = _point_to_plane_rmse(T, src, dst, normals)
    return _result_from_transform(T, summary, rmse)


def register_point_to_point(
    src,
    dst,
    rotation: str = "quaternion",
    initial: Optional[NDArray[np.float64]] = None,
    options: Optional[SolverOptions] = None,
) -> RegistrationResult:
    """
    Refine a rigid transform by minimizing Σ ‖R pᵢ + t - qᵢ‖².

    One point-to-point residual is added per correspondence. With
    rotation="quaternion" the pose is stored as q(4) + t(3) and q gets a
    ``QuaternionManifold``; with "angle_axis" it is a single [ω, t] block.

    Args:
        src: Source points, shape (N, 3).
        dst: Corresponding destination points, shape (N, 3).
        rotation: "quaternion" or "angle_axis".
        initial: Initial 4x4 transform. Defaults to identity.
        options: Solver configuration.

    Returns:
        RegistrationResult.

    Raises:
        ValueError: On malformed inputs or an unknown rotation name.
    """
    src, dst, _ = _check_correspondences(src, dst)
    return _solve_single_pose(src, dst, None, rotation, initial, options)


def register_point_to_plane(
    src,
    dst,
    normals,
    rotation: str = "quaternion",
    initial: Optional[NDArray[np.float64]] = None,
    options: Optional[SolverOptions] = None,
) -> RegistrationResult:
    """
    Refine a rigid transform by minimizing Σ ((R pᵢ + t - qᵢ) · nᵢ)².

    Args:
        src: Source points, shape (N, 3).
        dst: Corresponding destination points, shape (N, 3).
        normals: Destination normals, shape (N, 3).
        rotation: "quaternion" or "angle_axis".
        initial: Initial 4x4 transform. Defaults to identity.
        options: Solver configuration.

    Returns:
        RegistrationResult.

    Raises:
        ValueError: On malformed inputs or an unknown rotation name.
    """
    src, dst, normals = _check_correspondences(src, dst, normals)
    return _solve_single_pose(src, dst, normals, rotation, initial, options)


def refine_poses_global(
    num_frames: int,
    links: Sequence[FrameLink],
    metric: str = "point_to_point",
    rotation: str = "quaternion",
    initial_poses: Optional[Sequence[NDArray[np.float64]]] = None,
    fixed_frame: Optional[int] = 0,
    options: Optional[SolverOptions] = None,
) -> GlobalRegistrationResult:
    """
    Jointly refine the frame-to-world poses of several frames.

    Every correspondence of every link contributes one global residual
    comparing both points in the world frame:
        point_to_point: (T_src p) - (T_dst q)
        point_to_plane: ((T_src p) - (T_dst q)) · (R_dst n)

    Only relative poses are observable, so the pose of ``fixed_frame`` is
    held constant at its initial value. Passing fixed_frame=None leaves the
    gauge free; the solver then takes minimum-norm steps.

    Args:
        num_frames: Number of frames (poses) in the problem.
        links: Corresponded point sets between pairs of frames.
        metric: "point_to_point" or "point_to_plane".
        rotation: "quaternion" or "angle_axis".
        initial_poses: One initial 4x4 transform per frame. Defaults to
            identity for all frames.
        fixed_frame: Index of the frame held constant, or None.
        options: Solver configuration.

    Returns:
        GlobalRegistrationResult with one transform per frame.

    Raises:
        ValueError: If frame indices are out of range, a link joins a frame
            to itself, point sets are malformed, or point-to-plane links have
            no normals.

    Example:
        >>> link = FrameLink(src_frame=1, dst_frame=0, src=pts_1, dst=pts_0)
        >>> result = refine_poses_global(2, [link])
        >>> T_0_to_1 = invert_transform(result.transforms[1])
    """
    if metric not in METRICS:
        raise ValueError(f"Unknown metric: {metric}. Use one of {METRICS}.")
    rotation = check_rotation_parameterization(rotation)
    if num_frames < 2:
        raise ValueError(f"num_frames must be at least 2, got {num_frames}")
    if fixed_frame is not None and not 0 <= fixed_frame < num_frames:
        raise ValueError(f"fixed_frame must lie in [0, {num_frames}), got {fixed_frame}")
    if not links:
        raise ValueError("At least one FrameLink is required")

    if initial_poses is None:
        initial_poses = [np.eye(4) for _ in range(num_frames)]
    if len(initial_poses) != num_frames:
        raise ValueError(
            f"Expected {num_frames} initial poses, got {len(initial_poses)}"
        )
    initial_poses = [_initial_transform(T) for T in initial_poses]

    problem = Problem()
    frame_blocks = []
    for k, T0 in enumerate(initial_poses):
        if rotation == "quaternion":
            q0, t0 = matrix_to_pose(T0)
            problem.add_parameter_block(f"rotation_{k}", q0, QuaternionManifold())
            problem.add_parameter_block(f"translation_{k}", t0)
            frame_blocks.append([f"rotation_{k}", f"translation_{k}"])
        else:
            problem.add_parameter_block(f"pose_{k}", matrix_to_angle_axis_pose(T0))
            frame_blocks.append([f"pose_{k}"])

    if fixed_frame is not None:
        for name in frame_blocks[fixed_frame]:
            problem.set_parameter_block_constant(name)

    for link in links:
        for frame in (link.src_frame, link.dst_frame):
            if not 0 <= frame < num_frames:
                raise ValueError(f"Frame index {frame} out of range [0, {num_frames})")
        if link.src_frame == link.dst_frame:
            raise ValueError(f"Link joins frame {link.src_frame} to itself")
        if metric == "point_to_plane" and link.normals is None:
            raise ValueError(
                f"Link {link.src_frame}->{link.dst_frame} has no normals "
                "for point_to_plane"
            )

        normals = link.normals if metric == "point_to_plane" else None
        src, dst, normals = _check_correspondences(link.src, link.dst, normals)

        names = frame_blocks[link.src_frame] + frame_blocks[link.dst_frame]
        for i in range(src.shape[0]):
            if normals is None:
                cost = make_point_to_point_residual_global(dst[i], src[i], rotation=rotation)
            else:
                cost = make_point_to_plane_residual_global(
                    dst[i], src[i], normals[i], rotation=rotation
                )
            problem.add_residual_block(cost, names)

    summary = problem.solve(options)

    transforms = []
    for k in range(num_frames):
        if rotation == "quaternion":
            T = pose_to_matrix(problem.parameter(f"rotation_{k}"), problem.parameter(f"translation_{k}"))
        else:
            T = angle_axis_pose_to_matrix(problem.parameter(f"pose_{k}"))
        transforms.append(T)

    residuals = problem.residuals()
    rmse = float(np.sqrt(np.mean(residuals**2)))
    if metric == "point_to_point":
        # Per-point distance rather than per-coordinate
        rmse *= np.sqrt(3.0)

    return GlobalRegistrationResult(transforms=transforms, summary=summary, rmse=float(rmse))
