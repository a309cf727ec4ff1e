"""Relative pose estimation from 3D-2D correspondences."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import cv2
import numpy as np

from .errors import (
    InsufficientCorrespondencesError,
    LowConfidencePoseError,
    PoseSolveError,
)
from .pose import SE3
from .reconstruction import Correspondences

logger = logging.getLogger(__name__)

# Minimum for a determined perspective-n-point solve.
MIN_PNP_POINTS = 4


@dataclass
class PoseSolution:
    """Raw output of a pose solver.

    Attributes:
        transform: T_c_l, mapping 3D points of the correspondence set into
            the camera that observed the 2D pixels
        inlier_mask: (N,) bool mask over the input correspondences
    """

    transform: SE3
    inlier_mask: np.ndarray  # (N,) bool

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inlier_mask))


@dataclass
class PoseEstimate:
    """Accepted relative pose.

    Attributes:
        T_c_l: Transform from last camera to current camera coordinates
        num_inliers: Number of inlier correspondences
        num_correspondences: Size of the correspondence set that was solved
        inlier_mask: (N,) bool mask over the correspondences
        reprojection_error: Mean inlier reprojection error (pixels)
    """

    T_c_l: SE3
    num_inliers: int
    num_correspondences: int
    inlier_mask: np.ndarray
    reprojection_error: float

    @property
    def inlier_ratio(self) -> float:
        if self.num_correspondences == 0:
            return 0.0
        return self.num_inliers / self.num_correspondences


class PoseSolver(Protocol):
    """Perspective-n-point with outlier rejection."""

    def solve(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        camera_matrix: np.ndarray,
    ) -> PoseSolution: ...


class PnPRansacSolver:
    """PnP + RANSAC solver backed by cv2.solvePnPRansac.

    RANSAC provides robustness to incorrect matches; the pose is then
    optionally refined on all inliers with iterative PnP.
    """

    def __init__(
        self,
        reprojection_threshold: float = 2.0,
        ransac_confidence: float = 0.99,
        max_iterations: int = 100,
        refine_with_inliers: bool = True,
    ) -> None:
        """Initialize solver.

        Args:
            reprojection_threshold: RANSAC inlier threshold in pixels
            ransac_confidence: Desired probability of finding a good model (0-1)
            max_iterations: Maximum RANSAC iterations
            refine_with_inliers: Refine the RANSAC pose using all inliers
        """
        if reprojection_threshold <= 0:
            raise ValueError(
                f"reprojection_threshold must be positive, got {reprojection_threshold}"
            )
        if not 0.0 < ransac_confidence < 1.0:
            raise ValueError(
                f"ransac_confidence must be in (0, 1), got {ransac_confidence}"
            )
        self._reprojection_threshold = reprojection_threshold
        self._ransac_confidence = ransac_confidence
        self._max_iterations = max_iterations
        self._refine = refine_with_inliers

    def solve(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        camera_matrix: np.ndarray,
    ) -> PoseSolution:
        """Estimate the transform that projects ``points_3d`` onto ``points_2d``.

        Raises:
            PoseSolveError: If RANSAC fails or yields a non-finite pose
        """
        n_points = len(points_3d)

        # OpenCV needs float64 for best results
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 1, 3)
        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 1, 2)
        camera_matrix = np.asarray(camera_matrix, dtype=np.float64)

        # Rectified images: no distortion
        dist_coeffs = None

        try:
            success, rvec, tvec, inliers = cv2.solvePnPRansac(
                objectPoints=points_3d,
                imagePoints=points_2d,
                cameraMatrix=camera_matrix,
                distCoeffs=dist_coeffs,
                iterationsCount=self._max_iterations,
                reprojectionError=self._reprojection_threshold,
                confidence=self._ransac_confidence,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as e:
            raise PoseSolveError(f"solvePnPRansac failed: {e}") from e

        if not success or inliers is None or len(inliers) == 0:
            raise PoseSolveError("solvePnPRansac found no consistent pose")

        inlier_mask = np.zeros(n_points, dtype=bool)
        inlier_mask[inliers.flatten()] = True

        if self._refine and np.count_nonzero(inlier_mask) >= 4:
            try:
                success_refine, rvec_refined, tvec_refined = cv2.solvePnP(
                    objectPoints=points_3d[inlier_mask],
                    imagePoints=points_2d[inlier_mask],
                    cameraMatrix=camera_matrix,
                    distCoeffs=dist_coeffs,
                    rvec=rvec,
                    tvec=tvec,
                    useExtrinsicGuess=True,
                    flags=cv2.SOLVEPNP_ITERATIVE,
                )
            except cv2.error as e:
                raise PoseSolveError(f"solvePnP refinement failed: {e}") from e
            if success_refine:
                rvec, tvec = rvec_refined, tvec_refined

        if not np.isfinite(rvec).all() or not np.isfinite(tvec).all():
            raise PoseSolveError("solvePnPRansac returned a non-finite pose")

        return PoseSolution(
            transform=SE3.from_rvec_tvec(rvec, tvec),
            inlier_mask=inlier_mask,
        )

    @property
    def reprojection_threshold(self) -> float:
        """Return RANSAC inlier threshold."""
        return self._reprojection_threshold


def reprojection_error(
    transform: SE3,
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    camera_matrix: np.ndarray,
) -> float:
    """Mean pixel distance between projected 3D points and observed pixels."""
    if len(points_3d) == 0:
        return 0.0

    rvec, tvec = transform.to_rvec_tvec()
    projected, _ = cv2.projectPoints(
        np.asarray(points_3d, dtype=np.float64).reshape(-1, 1, 3),
        rvec,
        tvec,
        np.asarray(camera_matrix, dtype=np.float64),
        None,
    )
    errors = np.linalg.norm(projected.reshape(-1, 2) - points_2d.reshape(-1, 2), axis=1)
    return float(np.mean(errors))


class PoseEstimator:
    """Acceptance policy around a pose solver.

    - fewer than ``min_correspondences`` -> InsufficientCorrespondencesError,
      the solver is not called
    - solver failure or fewer than ``min_inliers`` inliers ->
      LowConfidencePoseError, no transform is returned
    """

    def __init__(
        self,
        solver: PoseSolver | None = None,
        min_correspondences: int = MIN_PNP_POINTS,
        min_inliers: int = 10,
    ) -> None:
        """Initialize estimator.

        Args:
            solver: Pose solving capability. PnP + RANSAC with defaults if None.
            min_correspondences: Minimum correspondences before solving (>= 4)
            min_inliers: Minimum inliers for an accepted pose (>= 1)
        """
        if min_correspondences < MIN_PNP_POINTS:
            raise ValueError(
                f"min_correspondences must be at least {MIN_PNP_POINTS}, "
                f"got {min_correspondences}"
            )
        if min_inliers < 1:
            raise ValueError(f"min_inliers must be positive, got {min_inliers}")

        self._solver = solver or PnPRansacSolver()
        self._min_correspondences = min_correspondences
        self._min_inliers = min_inliers

    def estimate(
        self, correspondences: Correspondences, camera_matrix: np.ndarray
    ) -> PoseEstimate:
        """Estimate T_c_l from last-frame 3D points and current-frame pixels.

        Raises:
            InsufficientCorrespondencesError: Too few correspondences to solve
            LowConfidencePoseError: Solver failed or too few inliers
        """
        n = len(correspondences)
        if n < self._min_correspondences:
            raise InsufficientCorrespondencesError(n, self._min_correspondences)

        try:
            solution = self._solver.solve(
                correspondences.points_3d, correspondences.points_2d, camera_matrix
            )
        except PoseSolveError as e:
            raise LowConfidencePoseError(0, self._min_inliers, reason=str(e)) from e

        num_inliers = solution.num_inliers
        if not solution.transform.is_finite():
            raise LowConfidencePoseError(0, self._min_inliers, reason="non-finite pose")
        if num_inliers < self._min_inliers:
            raise LowConfidencePoseError(num_inliers, self._min_inliers)

        inlier_mask = np.asarray(solution.inlier_mask, dtype=bool)
        error = reprojection_error(
            solution.transform,
            correspondences.points_3d[inlier_mask],
            correspondences.points_2d[inlier_mask],
            camera_matrix,
        )

        logger.debug(
            "Pose accepted: %d/%d inliers, reprojection error %.3f px",
            num_inliers,
            n,
            error,
        )
        return PoseEstimate(
            T_c_l=solution.transform,
            num_inliers=num_inliers,
            num_correspondences=n,
            inlier_mask=inlier_mask,
            reprojection_error=error,
        )

    @property
    def min_correspondences(self) -> int:
        return self._min_correspondences

    @property
    def min_inliers(self) -> int:
        """Return minimum required inliers."""
        return self._min_inliers
