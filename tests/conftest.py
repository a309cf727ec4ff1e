"""Shared fixtures: a synthetic stereo scene with deterministic capabilities.

Frames are constant images whose pixel value is the frame id. The stub
detector and disparity capabilities read that id back and project a fixed
set of world points with the frame's ground-truth pose, so every keypoint,
descriptor and disparity is exact.
"""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from structureless_vo import (
    SE3,
    BruteForceMatcher,
    CorrespondenceBuilder,
    FeatureTracker,
    Features,
    FrameReadError,
    PoseEstimator,
    PoseSolution,
    StereoIntrinsics,
    StructurelessVO,
    back_project,
)

INTRINSICS = StereoIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0, baseline=0.5)
IMAGE_SHAPE = (480, 640)  # (height, width)

# KITTI odometry sequence 00, grayscale cameras P0/P1 and color P2
KITTI_CALIB_00 = """\
P0: 7.188560000000e+02 0.000000000000e+00 6.071928000000e+02 0.000000000000e+00 0.000000000000e+00 7.188560000000e+02 1.852157000000e+02 0.000000000000e+00 0.000000000000e+00 0.000000000000e+00 1.000000000000e+00 0.000000000000e+00
P1: 7.188560000000e+02 0.000000000000e+00 6.071928000000e+02 -3.861448000000e+02 0.000000000000e+00 7.188560000000e+02 1.852157000000e+02 0.000000000000e+00 0.000000000000e+00 0.000000000000e+00 1.000000000000e+00 0.000000000000e+00
P2: 7.188560000000e+02 0.000000000000e+00 6.071928000000e+02 4.538225000000e+01 0.000000000000e+00 7.188560000000e+02 1.852157000000e+02 -1.130887000000e-01 0.000000000000e+00 0.000000000000e+00 1.000000000000e+00 3.779761000000e-03
Tr: 4.276802385584e-04 -9.999672484946e-01 -8.084491683471e-03 -1.198459927713e-02 -7.210626507497e-03 8.081198471645e-03 -9.999413164504e-01 -5.403984729748e-02 9.999738645903e-01 4.859485810390e-04 -7.206933692422e-03 -2.921968648686e-01
"""


def make_world_points() -> np.ndarray:
    """Return 117 world points on a pixel grid of the identity camera, depth 4-14m."""
    us, vs = np.meshgrid(np.arange(80, 561, 40), np.arange(80, 401, 40))
    pixels = np.column_stack([us.ravel(), vs.ravel()]).astype(np.float64)
    depths = 4.0 + (np.arange(len(pixels)) * 7 % 11)
    return back_project(pixels, INTRINSICS.depth_scale / depths, INTRINSICS)


def translation(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> SE3:
    return SE3(rotation=np.eye(3), translation=np.array([x, y, z]))


class SyntheticSequence:
    """Stereo sequence of a static point cloud seen from known poses.

    Args:
        poses_c_w: Ground-truth world-to-camera transform per frame
        blank_frames: Frames in which no feature is detected
        no_depth_frames: Frames whose disparity map is entirely invalid
    """

    def __init__(
        self,
        poses_c_w: list[SE3],
        blank_frames: set[int] | None = None,
        no_depth_frames: set[int] | None = None,
    ) -> None:
        self.poses_c_w = poses_c_w
        self.points_world = make_world_points()
        self.descriptors = (
            np.random.default_rng(0).random((len(self.points_world), 32)).astype(np.float32)
        )
        self.blank_frames = blank_frames or set()
        self.no_depth_frames = no_depth_frames or set()

    def __len__(self) -> int:
        return len(self.poses_c_w)

    def read_frame(self, frame_id: int) -> tuple[np.ndarray, np.ndarray]:
        if not 0 <= frame_id < len(self):
            raise FrameReadError(frame_id, f"No frame {frame_id}")
        image = np.full(IMAGE_SHAPE, frame_id, dtype=np.uint8)
        return image, image.copy()

    def observe(self, frame_id: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (visible indices, pixels, depths) of the points in a frame."""
        points_cam = self.poses_c_w[frame_id].transform_points(self.points_world)
        z = points_cam[:, 2]
        in_front = z > 0.1
        u = np.full(len(z), -1.0)
        v = np.full(len(z), -1.0)
        u[in_front] = INTRINSICS.fx * points_cam[in_front, 0] / z[in_front] + INTRINSICS.cx
        v[in_front] = INTRINSICS.fy * points_cam[in_front, 1] / z[in_front] + INTRINSICS.cy
        height, width = IMAGE_SHAPE
        visible = in_front & (u >= 0) & (u <= width - 1) & (v >= 0) & (v <= height - 1)
        indices = np.flatnonzero(visible)
        return indices, np.column_stack([u[indices], v[indices]]), z[indices]

    def expected_T_c_l(self, last_id: int, current_id: int) -> SE3:
        return self.poses_c_w[current_id] @ self.poses_c_w[last_id].inverse()


class SceneDetector:
    """Detection capability returning the exact projections of the scene."""

    def __init__(self, sequence: SyntheticSequence) -> None:
        self._sequence = sequence

    def detect(self, image: np.ndarray) -> Features:
        frame_id = int(image[0, 0])
        if frame_id in self._sequence.blank_frames:
            return Features.empty()
        indices, pixels, _ = self._sequence.observe(frame_id)
        return Features.from_points(pixels, self._sequence.descriptors[indices])


class SceneDisparity:
    """Disparity capability writing exact disparities at keypoint pixels."""

    def __init__(self, sequence: SyntheticSequence) -> None:
        self._sequence = sequence

    def compute(self, left: np.ndarray, right: np.ndarray) -> np.ndarray:
        frame_id = int(left[0, 0])
        disparity = np.full(IMAGE_SHAPE, -1.0, dtype=np.float32)
        if frame_id in self._sequence.no_depth_frames:
            return disparity
        _, pixels, depths = self._sequence.observe(frame_id)
        # Same float32 rounding path as the keypoints the builder samples at
        pixels = pixels.astype(np.float32)
        cols = np.rint(pixels[:, 0]).astype(int)
        rows = np.rint(pixels[:, 1]).astype(int)
        disparity[rows, cols] = INTRINSICS.depth_scale / depths
        return disparity


class ScriptedSolver:
    """Pose solver returning scripted transforms and inlier counts."""

    def __init__(
        self,
        transforms: list[SE3] | None = None,
        inlier_counts: list[int] | None = None,
    ) -> None:
        self.transforms = list(transforms or [])
        self.inlier_counts = list(inlier_counts or [])
        self.calls = 0

    def solve(
        self, points_3d: np.ndarray, points_2d: np.ndarray, camera_matrix: np.ndarray
    ) -> PoseSolution:
        self.calls += 1
        transform = self.transforms.pop(0) if self.transforms else SE3.identity()
        count = self.inlier_counts.pop(0) if self.inlier_counts else len(points_3d)
        mask = np.zeros(len(points_3d), dtype=bool)
        mask[:count] = True
        return PoseSolution(transform=transform, inlier_mask=mask)


def make_pipeline(
    sequence: SyntheticSequence,
    solver=None,
    min_inliers: int = 10,
) -> StructurelessVO:
    """Build a pipeline over ``sequence`` with stubbed detection and disparity."""
    tracker = FeatureTracker(
        detector=SceneDetector(sequence),
        matcher=BruteForceMatcher(cv2.NORM_L2),
        max_distance=1.0,
    )
    return StructurelessVO(
        frame_source=sequence,
        intrinsics=INTRINSICS,
        tracker=tracker,
        disparity=SceneDisparity(sequence),
        builder=CorrespondenceBuilder(INTRINSICS, min_disparity=1.0),
        pose_estimator=PoseEstimator(solver=solver, min_inliers=min_inliers),
    )


@pytest.fixture
def intrinsics() -> StereoIntrinsics:
    return INTRINSICS


@pytest.fixture
def two_frame_sequence() -> SyntheticSequence:
    """Camera translating by +0.1m along x between frame 0 and frame 1."""
    # Moving the camera center to (0.1, 0, 0) gives T_c_w translation (-0.1, 0, 0)
    return SyntheticSequence([SE3.identity(), translation(x=-0.1)])


@pytest.fixture
def moving_sequence() -> SyntheticSequence:
    """Four frames of forward motion with a slow yaw."""
    poses = [SE3.identity()]
    for i in range(1, 4):
        yaw = SE3.from_axis_angle([0.0, 1.0, 0.0], np.radians(1.0 * i))
        poses.append(yaw @ translation(x=-0.05 * i, z=-0.2 * i))
    return SyntheticSequence(poses)
