"""Exception hierarchy for the odometry pipeline.

Capabilities (frame sources, disparity, pose solvers) raise these errors.
StructurelessVO converts every OdometryError into an explicit StepResult
outcome so that a failed step never leaves the pipeline half-updated.
"""

from __future__ import annotations


class OdometryError(Exception):
    """Base class for all odometry failures."""


class FrameReadError(OdometryError, FileNotFoundError):
    """A stereo pair could not be read for the requested frame id."""

    def __init__(self, frame_id: int, message: str) -> None:
        super().__init__(message)
        self.frame_id = frame_id


class ReconstructionError(OdometryError):
    """Disparity was invalid or no keypoint produced a valid 3D point."""


class NotInitializedError(OdometryError):
    """step() was called before initialize() succeeded."""


class PoseSolveError(OdometryError):
    """The pose solver could not produce a transform."""


class TrackingLostError(OdometryError):
    """Base class for failures that move the pipeline to LOST."""


class InsufficientCorrespondencesError(TrackingLostError):
    """Too few 3D-2D correspondences survived filtering to attempt a solve."""

    def __init__(self, num_correspondences: int, required: int) -> None:
        super().__init__(
            f"Insufficient correspondences: {num_correspondences} < {required}"
        )
        self.num_correspondences = num_correspondences
        self.required = required


class LowConfidencePoseError(TrackingLostError):
    """The solved pose has fewer inliers than the acceptance threshold."""

    def __init__(self, num_inliers: int, required: int, reason: str = "") -> None:
        message = f"Low confidence pose: {num_inliers} inliers < {required}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.num_inliers = num_inliers
        self.required = required
