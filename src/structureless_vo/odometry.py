"""Structureless frame-to-frame stereo visual odometry pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

from .camera import StereoIntrinsics
from .config import VOConfig
from .dataset_reader import FrameSource, KittiSequenceReader
from .disparity import DisparityComputer, SgbmDisparity
from .errors import (
    FrameReadError,
    NotInitializedError,
    OdometryError,
    ReconstructionError,
)
from .features import Features, OrbFeatureDetector
from .frame import Frame, FrameWindow
from .matching import BruteForceMatcher
from .pose import SE3
from .pose_estimator import PnPRansacSolver, PoseEstimate, PoseEstimator
from .reconstruction import CorrespondenceBuilder, ReferencePoints
from .tracking import FeatureTracker
from .trajectory import camera_positions

logger = logging.getLogger(__name__)


class TrackingState(Enum):
    """State of the odometry state machine."""

    UNINITIALIZED = "UNINITIALIZED"
    TRACKING = "TRACKING"
    LOST = "LOST"


class StepStatus(Enum):
    """Outcome of a single initialize()/step() call."""

    SUCCESS = "SUCCESS"
    LOST = "LOST"
    FAILED = "FAILED"


@dataclass
class StepTiming:
    """Timing breakdown for a single step (milliseconds)."""

    read_ms: float = 0.0
    detect_ms: float = 0.0
    matching_ms: float = 0.0
    pnp_ms: float = 0.0
    stereo_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class StepResult:
    """Outcome and diagnostics of one initialize()/step() call.

    ``T_c_w`` is the pipeline's world pose after the call; on LOST or
    FAILED it is the unchanged pose of the last accepted frame.
    """

    frame_id: int
    status: StepStatus
    state: TrackingState
    T_c_w: SE3
    num_features: int = 0
    num_matches: int = 0
    num_correspondences: int = 0
    num_inliers: int = 0
    num_reference_points: int = 0
    reprojection_error: float = 0.0
    error: OdometryError | None = None
    timing: StepTiming = field(default_factory=StepTiming)

    @property
    def ok(self) -> bool:
        """Return True if the frame was accepted."""
        return self.status == StepStatus.SUCCESS

    @property
    def position(self) -> np.ndarray:
        """Return the camera center in world coordinates."""
        return self.T_c_w.inverse().translation


def _elapsed_ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000


class StructurelessVO:
    """Frame-to-frame stereo visual odometry without a landmark map.

    Each accepted frame gets 3D points from its own disparity map. The
    next frame's keypoints are matched against them, the relative pose
    T_c_l is solved with PnP, and the world pose is chained as

        T_c_w_new = T_c_l @ T_c_w_old

    The pipeline holds only a two-frame window. A step either commits
    (new window, new T_c_w, new T_c_l and num_inliers) or leaves every
    piece of state untouched, so a failed step can be retried against the
    same reference frame.

    State machine:
        UNINITIALIZED --initialize() ok--> TRACKING
        TRACKING --step() ok--> TRACKING
        TRACKING --step() tracking failure--> LOST
        LOST --step() ok--> TRACKING
        any --reset()--> UNINITIALIZED
    """

    def __init__(
        self,
        frame_source: FrameSource,
        intrinsics: StereoIntrinsics,
        tracker: FeatureTracker | None = None,
        disparity: DisparityComputer | None = None,
        builder: CorrespondenceBuilder | None = None,
        pose_estimator: PoseEstimator | None = None,
        start_frame_id: int = 0,
    ) -> None:
        """Initialize the pipeline with its capabilities.

        Args:
            frame_source: Supplies stereo pairs by frame id
            intrinsics: Rectified stereo calibration
            tracker: Feature tracker. ORB + Hamming cross-check if None.
            disparity: Disparity capability. SGBM if None.
            builder: Correspondence builder. Defaults for ``intrinsics`` if None.
            pose_estimator: Pose estimator. PnP + RANSAC if None.
            start_frame_id: Frame used by initialize() when no id is given
        """
        self._source = frame_source
        self._intrinsics = intrinsics
        self._camera_matrix = intrinsics.to_matrix()

        self._tracker = tracker or FeatureTracker()
        self._disparity = disparity or SgbmDisparity()
        self._builder = builder or CorrespondenceBuilder(intrinsics)
        self._pose_estimator = pose_estimator or PoseEstimator()
        self._start_frame_id = start_frame_id

        self.reset()

    @classmethod
    def from_config(
        cls,
        frame_source: FrameSource,
        intrinsics: StereoIntrinsics,
        config: VOConfig | None = None,
    ) -> StructurelessVO:
        """Create a pipeline with OpenCV capabilities configured from ``config``."""
        config = config or VOConfig()
        tracker = FeatureTracker(
            detector=OrbFeatureDetector(n_features=config.n_features),
            matcher=BruteForceMatcher(cv2.NORM_HAMMING),
            max_distance=config.max_match_distance,
            max_matches=config.max_matches,
        )
        disparity = SgbmDisparity(
            num_disparities=config.num_disparities,
            block_size=config.block_size,
        )
        builder = CorrespondenceBuilder(
            intrinsics,
            min_disparity=config.min_disparity,
            max_depth=config.max_depth,
        )
        pose_estimator = PoseEstimator(
            solver=PnPRansacSolver(
                reprojection_threshold=config.reprojection_threshold,
                ransac_confidence=config.ransac_confidence,
                max_iterations=config.max_iterations,
                refine_with_inliers=config.refine_with_inliers,
            ),
            min_correspondences=config.min_correspondences,
            min_inliers=config.min_inliers,
        )
        return cls(
            frame_source=frame_source,
            intrinsics=intrinsics,
            tracker=tracker,
            disparity=disparity,
            builder=builder,
            pose_estimator=pose_estimator,
            start_frame_id=config.start_frame_id,
        )

    @classmethod
    def from_kitti_sequence(
        cls,
        sequence_path: str | Path,
        config: VOConfig | None = None,
    ) -> StructurelessVO:
        """Create a pipeline reading a KITTI odometry sequence and its calib.txt."""
        reader = KittiSequenceReader(sequence_path)
        return cls.from_config(reader, reader.load_intrinsics(), config)

    def reset(self) -> None:
        """Return to UNINITIALIZED, dropping the frame window and trajectory."""
        self._state = TrackingState.UNINITIALIZED
        self._window: FrameWindow | None = None
        self._T_c_w = SE3.identity()
        self._T_c_l: SE3 | None = None
        self._num_inliers = 0
        self._trajectory: list[SE3] = []
        self._trajectory_ids: list[int] = []
        self._next_frame_id = self._start_frame_id

    def initialize(self, frame_id: int | None = None) -> StepResult:
        """Bootstrap the trajectory from a single stereo pair.

        The frame gets the identity pose and its reconstructed 3D points
        become the reference for the first step. Re-initializing a running
        pipeline discards its trajectory, but only once the new frame has been
        read and reconstructed.

        Args:
            frame_id: Frame to initialize on. Defaults to the next unread frame.

        Returns:
            SUCCESS, or FAILED (read error or no valid 3D points) with the
            frame window, pose and trajectory left as they were
        """
        if frame_id is None:
            frame_id = self._next_frame_id

        timing = StepTiming()
        t_start = time.perf_counter()

        try:
            frame = self._read(frame_id, timing)
            self._next_frame_id = frame_id + 1
            features = self._detect(frame, timing)
            reference = self._reconstruct(frame, features, timing)
        except OdometryError as e:
            timing.total_ms = _elapsed_ms(t_start)
            logger.warning("Initialization on frame %d failed: %s", frame_id, e)
            return self._result(frame_id, StepStatus.FAILED, error=e, timing=timing)

        self.reset()
        self._next_frame_id = frame_id + 1
        identity = SE3.identity()
        self._commit(
            FrameWindow.bootstrap(frame.with_pose(identity), reference),
            T_c_w=identity,
            estimate=None,
        )

        timing.total_ms = _elapsed_ms(t_start)
        logger.info(
            "Initialized on frame %d with %d reference points", frame_id, len(reference)
        )
        return self._result(
            frame_id,
            StepStatus.SUCCESS,
            num_features=len(features),
            num_reference_points=len(reference),
            timing=timing,
        )

    def step(self, frame_id: int | None = None) -> StepResult:
        """Track the next stereo pair against the last accepted frame.

        Pipeline stages:
        1. Read the stereo pair
        2. Detect features in the current left image
        3. Match last frame's reference descriptors against them
        4. Assemble 3D (last) <-> 2D (current) correspondences
        5. Solve T_c_l and apply the inlier policy
        6. Reconstruct the current frame's own 3D points for the next step
        7. Commit: chain T_c_w and promote the current frame

        Args:
            frame_id: Frame to process. Defaults to the frame after the last
                one read.

        Returns:
            SUCCESS (frame accepted), LOST (tracking failure, state
            unchanged, pipeline now LOST) or FAILED (frame unreadable or
            pipeline not initialized, state unchanged)
        """
        if frame_id is None:
            frame_id = self._next_frame_id

        timing = StepTiming()
        t_start = time.perf_counter()

        if self._window is None:
            error = NotInitializedError("step() called before initialize() succeeded")
            return self._result(frame_id, StepStatus.FAILED, error=error, timing=timing)

        try:
            frame = self._read(frame_id, timing)
        except FrameReadError as e:
            timing.total_ms = _elapsed_ms(t_start)
            logger.warning("Frame %d unreadable: %s", frame_id, e)
            return self._result(frame_id, StepStatus.FAILED, error=e, timing=timing)
        self._next_frame_id = frame_id + 1

        window = self._window
        features = Features.empty()
        num_matches = 0
        num_correspondences = 0
        try:
            features = self._detect(frame, timing)

            t0 = time.perf_counter()
            matches = self._tracker.match(window.reference.descriptors, features.descriptors)
            correspondences = self._builder.correspondences(
                window.reference, features, matches
            )
            timing.matching_ms = _elapsed_ms(t0)
            num_matches = len(matches)
            num_correspondences = len(correspondences)

            t0 = time.perf_counter()
            estimate = self._pose_estimator.estimate(correspondences, self._camera_matrix)
            timing.pnp_ms = _elapsed_ms(t0)

            reference = self._reconstruct(frame, features, timing)
        except OdometryError as e:
            timing.total_ms = _elapsed_ms(t_start)
            return self._lost(
                frame_id,
                e,
                timing,
                num_features=len(features),
                num_matches=num_matches,
                num_correspondences=num_correspondences,
            )

        T_c_w = estimate.T_c_l @ self._T_c_w
        self._commit(
            window.promote(frame.with_pose(T_c_w), reference),
            T_c_w=T_c_w,
            estimate=estimate,
        )

        timing.total_ms = _elapsed_ms(t_start)
        logger.debug(
            "Frame %d tracked: %d matches, %d/%d inliers, %.1f ms",
            frame_id,
            num_matches,
            estimate.num_inliers,
            num_correspondences,
            timing.total_ms,
        )
        return self._result(
            frame_id,
            StepStatus.SUCCESS,
            num_features=len(features),
            num_matches=num_matches,
            num_correspondences=num_correspondences,
            num_inliers=estimate.num_inliers,
            num_reference_points=len(reference),
            reprojection_error=estimate.reprojection_error,
            timing=timing,
        )

    def run(self, max_frames: int | None = None) -> Iterator[StepResult]:
        """Process frames in order until the source runs out.

        Initializes on the next unread frame (moving forward past frames
        without valid 3D points), then steps frame by frame. Iteration stops
        at the first unreadable frame.

        Args:
            max_frames: Stop after this many results (None = no limit)

        Yields:
            One StepResult per processed frame
        """
        processed = 0
        while max_frames is None or processed < max_frames:
            if self._state == TrackingState.UNINITIALIZED:
                result = self.initialize()
            else:
                result = self.step()

            if isinstance(result.error, FrameReadError):
                return

            yield result
            processed += 1

    def _read(self, frame_id: int, timing: StepTiming) -> Frame:
        t0 = time.perf_counter()
        left, right = self._source.read_frame(frame_id)
        timing.read_ms = _elapsed_ms(t0)
        return Frame(id=frame_id, left_image=left, right_image=right)

    def _detect(self, frame: Frame, timing: StepTiming) -> Features:
        t0 = time.perf_counter()
        features = self._tracker.detect(frame.left_image)
        timing.detect_ms = _elapsed_ms(t0)
        return features

    def _reconstruct(
        self, frame: Frame, features: Features, timing: StepTiming
    ) -> ReferencePoints:
        """Compute the frame's disparity and 3D points of its left keypoints.

        Raises:
            ReconstructionError: If no keypoint has a valid disparity
        """
        t0 = time.perf_counter()
        disparity_map = self._disparity.compute(frame.left_image, frame.right_image)
        reference = self._builder.build(features, disparity_map)
        timing.stereo_ms = _elapsed_ms(t0)

        if len(reference) == 0:
            raise ReconstructionError(
                f"No valid 3D points in frame {frame.id} "
                f"({len(features)} keypoints detected)"
            )
        return reference

    def _commit(
        self, window: FrameWindow, T_c_w: SE3, estimate: PoseEstimate | None
    ) -> None:
        """Replace all tracked state at once after an accepted frame."""
        previous_state = self._state

        self._window = window
        self._T_c_w = T_c_w
        if estimate is not None:
            self._T_c_l = estimate.T_c_l
            self._num_inliers = estimate.num_inliers
        self._trajectory.append(T_c_w)
        self._trajectory_ids.append(window.current.id)
        self._state = TrackingState.TRACKING

        if previous_state == TrackingState.LOST:
            logger.info("Tracking recovered on frame %d", window.current.id)

    def _lost(
        self, frame_id: int, error: OdometryError, timing: StepTiming, **counts: int
    ) -> StepResult:
        if self._state != TrackingState.LOST:
            logger.warning("Tracking lost on frame %d: %s", frame_id, error)
        else:
            logger.debug("Still lost on frame %d: %s", frame_id, error)
        self._state = TrackingState.LOST
        return self._result(frame_id, StepStatus.LOST, error=error, timing=timing, **counts)

    def _result(self, frame_id: int, status: StepStatus, **kwargs) -> StepResult:
        return StepResult(
            frame_id=frame_id,
            status=status,
            state=self._state,
            T_c_w=self._T_c_w,
            **kwargs,
        )

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._window is not None

    @property
    def T_c_w(self) -> SE3:
        """World-to-camera transform of the most recently accepted frame."""
        return self._T_c_w

    @property
    def T_c_l(self) -> SE3 | None:
        """Relative transform of the most recent accepted step."""
        return self._T_c_l

    @property
    def num_inliers(self) -> int:
        """Inlier count of the most recent accepted pose solve."""
        return self._num_inliers

    @property
    def frame_current(self) -> Frame | None:
        """Most recently accepted frame; the next step tracks against it."""
        return None if self._window is None else self._window.current

    @property
    def frame_last(self) -> Frame | None:
        """Frame that ``frame_current`` was tracked from."""
        return None if self._window is None else self._window.last

    @property
    def reference_points(self) -> ReferencePoints | None:
        return None if self._window is None else self._window.reference

    @property
    def current_frame_id(self) -> int | None:
        frame = self.frame_current
        return None if frame is None else frame.id

    @property
    def next_frame_id(self) -> int:
        return self._next_frame_id

    @property
    def trajectory(self) -> list[SE3]:
        """T_c_w of every accepted frame, in order."""
        return self._trajectory.copy()

    @property
    def trajectory_frame_ids(self) -> list[int]:
        return self._trajectory_ids.copy()

    @property
    def intrinsics(self) -> StereoIntrinsics:
        return self._intrinsics

    def camera_positions(self) -> np.ndarray:
        """Return Nx3 camera centers (world coordinates) of accepted frames."""
        return camera_positions(self._trajectory)
