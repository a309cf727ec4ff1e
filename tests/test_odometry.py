"""Tests for the StructurelessVO pipeline and its state machine."""

from pathlib import Path

import cv2
import numpy as np
import pytest

from conftest import (
    INTRINSICS,
    KITTI_CALIB_00,
    ScriptedSolver,
    SyntheticSequence,
    make_pipeline,
    translation,
)
from structureless_vo import (
    SE3,
    FrameReadError,
    InsufficientCorrespondencesError,
    LowConfidencePoseError,
    NotInitializedError,
    ReconstructionError,
    StepStatus,
    StructurelessVO,
    TrackingState,
    VOConfig,
)


def snapshot(vo) -> dict:
    """Capture everything a failed step must leave untouched."""
    return {
        "state": vo.state,
        "T_c_w": vo.T_c_w,
        "T_c_l": vo.T_c_l,
        "num_inliers": vo.num_inliers,
        "frame_last": vo.frame_last,
        "frame_current": vo.frame_current,
        "reference": vo.reference_points,
        "trajectory": vo.trajectory,
    }


def assert_unchanged(vo, before: dict, expect_state=None) -> None:
    assert vo.state == (expect_state or before["state"])
    assert vo.T_c_w is before["T_c_w"]
    assert vo.T_c_l is before["T_c_l"]
    assert vo.num_inliers == before["num_inliers"]
    assert vo.frame_last is before["frame_last"]
    assert vo.frame_current is before["frame_current"]
    assert vo.reference_points is before["reference"]
    assert len(vo.trajectory) == len(before["trajectory"])


class TestInitialization:
    """Test suite for initialize()."""

    def test_initialize_seeds_identity_pose(self, two_frame_sequence: SyntheticSequence):
        """Test that a successful bootstrap starts tracking at the identity."""
        vo = make_pipeline(two_frame_sequence)

        result = vo.initialize()

        assert result.status == StepStatus.SUCCESS
        assert vo.state == TrackingState.TRACKING
        assert vo.T_c_w.allclose(SE3.identity())
        assert vo.T_c_l is None
        assert vo.num_inliers == 0
        assert vo.current_frame_id == 0
        assert vo.frame_current.pose.allclose(SE3.identity())
        assert vo.frame_last is vo.frame_current
        assert result.num_reference_points == len(two_frame_sequence.points_world)
        assert len(vo.trajectory) == 1

    def test_initialize_without_valid_depth_fails(self):
        """Test that zero valid 3D points is fatal to initialization."""
        sequence = SyntheticSequence([SE3.identity()], no_depth_frames={0})
        vo = make_pipeline(sequence)

        result = vo.initialize()

        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, ReconstructionError)
        assert vo.state == TrackingState.UNINITIALIZED
        assert vo.frame_current is None

    def test_initialize_without_features_fails(self):
        """Test that a frame without keypoints cannot bootstrap tracking."""
        sequence = SyntheticSequence([SE3.identity()], blank_frames={0})
        vo = make_pipeline(sequence)

        result = vo.initialize()

        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, ReconstructionError)

    def test_initialize_missing_frame_fails(self, two_frame_sequence: SyntheticSequence):
        """Test that an unreadable frame is reported, not raised."""
        vo = make_pipeline(two_frame_sequence)

        result = vo.initialize(frame_id=42)

        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, FrameReadError)
        assert vo.state == TrackingState.UNINITIALIZED

    def test_step_before_initialize_fails(self, two_frame_sequence: SyntheticSequence):
        """Test that step() refuses to run on an uninitialized pipeline."""
        vo = make_pipeline(two_frame_sequence)

        result = vo.step(1)

        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, NotInitializedError)
        assert vo.state == TrackingState.UNINITIALIZED

    def test_is_initialized(self, two_frame_sequence: SyntheticSequence):
        vo = make_pipeline(two_frame_sequence)
        assert not vo.is_initialized

        vo.initialize()
        assert vo.is_initialized

        vo.reset()
        assert not vo.is_initialized

    def test_failed_reinitialize_keeps_tracking_state(
        self, two_frame_sequence: SyntheticSequence
    ):
        """Test that an unreadable re-initialization frame discards nothing."""
        vo = make_pipeline(two_frame_sequence)
        vo.initialize()
        vo.step()
        before = snapshot(vo)

        result = vo.initialize(frame_id=99)

        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, FrameReadError)
        assert result.state == TrackingState.TRACKING
        assert_unchanged(vo, before)
        assert vo.T_c_w.allclose(translation(x=-0.1), atol=1e-3)
        assert vo.trajectory_frame_ids == [0, 1]
        assert vo.next_frame_id == 2

    def test_reinitialize_without_depth_keeps_tracking_state(self):
        """Test that a re-initialization frame without 3D points discards nothing."""
        sequence = SyntheticSequence(
            [SE3.identity(), translation(x=-0.1), translation(x=-0.2)],
            no_depth_frames={2},
        )
        vo = make_pipeline(sequence)
        vo.initialize()
        vo.step()
        before = snapshot(vo)

        result = vo.initialize(frame_id=2)

        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, ReconstructionError)
        assert_unchanged(vo, before)
        assert vo.next_frame_id == 3

    def test_successful_reinitialize_restarts_trajectory(
        self, two_frame_sequence: SyntheticSequence
    ):
        """Test that re-initializing on a good frame starts over at the identity."""
        vo = make_pipeline(two_frame_sequence)
        vo.initialize()
        vo.step()

        result = vo.initialize(frame_id=1)

        assert result.status == StepStatus.SUCCESS
        assert vo.T_c_w.allclose(SE3.identity())
        assert vo.T_c_l is None
        assert vo.trajectory_frame_ids == [1]
        assert vo.next_frame_id == 2

    def test_reset(self, two_frame_sequence: SyntheticSequence):
        """Test that reset returns the pipeline to its initial state."""
        vo = make_pipeline(two_frame_sequence)
        vo.initialize()
        vo.step()

        vo.reset()

        assert vo.state == TrackingState.UNINITIALIZED
        assert vo.T_c_w.allclose(SE3.identity())
        assert vo.T_c_l is None
        assert vo.num_inliers == 0
        assert vo.trajectory == []
        assert vo.next_frame_id == 0


class TestTracking:
    """Test suite for step() on successful frames."""

    def test_recovers_known_translation(self, two_frame_sequence: SyntheticSequence):
        """Test end-to-end recovery of a 0.1m sideways move with the real PnP solver."""
        vo = make_pipeline(two_frame_sequence)
        vo.initialize()

        result = vo.step()

        assert result.status == StepStatus.SUCCESS
        expected = two_frame_sequence.expected_T_c_l(0, 1)
        error = np.linalg.norm(vo.T_c_l.translation - expected.translation)
        assert error < 0.01 * INTRINSICS.baseline
        assert np.allclose(vo.T_c_l.rotation, np.eye(3), atol=1e-4)
        assert vo.num_inliers == result.num_correspondences
        assert vo.num_inliers == len(two_frame_sequence.points_world)
        np.testing.assert_allclose(result.position, [0.1, 0.0, 0.0], atol=0.005)

    def test_step_promotes_current_frame(self, two_frame_sequence: SyntheticSequence):
        """Test that the accepted frame becomes the tracking reference."""
        vo = make_pipeline(two_frame_sequence)
        vo.initialize()
        frame0 = vo.frame_current

        vo.step()

        assert vo.frame_last is frame0
        assert vo.current_frame_id == 1
        assert vo.frame_current.pose is vo.T_c_w
        assert vo.next_frame_id == 2

    def test_reported_pose_cannot_rewrite_pipeline(
        self, two_frame_sequence: SyntheticSequence
    ):
        """Test that the pose shared by results, frames and trajectory is immutable."""
        vo = make_pipeline(two_frame_sequence)
        vo.initialize()
        result = vo.step()

        with pytest.raises(ValueError, match="read-only"):
            result.T_c_w.translation[:] = 0.0
        with pytest.raises(ValueError, match="read-only"):
            vo.trajectory[-1].rotation[0, 0] = 0.0

        np.testing.assert_allclose(vo.T_c_w.translation, [-0.1, 0.0, 0.0], atol=1e-3)
        assert vo.frame_current.pose.allclose(vo.T_c_w)

    def test_world_pose_composition_order(self, moving_sequence: SyntheticSequence):
        """Test that T_c_w after T1, T2, T3 equals T3 @ T2 @ T1."""
        T1 = SE3.from_axis_angle([0, 1, 0], 0.02, translation=[0.1, 0.0, -0.3])
        T2 = SE3.from_axis_angle([1, 0, 0], -0.01, translation=[0.0, 0.05, -0.2])
        T3 = SE3.from_axis_angle([0, 0, 1], 0.03, translation=[-0.02, 0.0, -0.25])
        vo = make_pipeline(moving_sequence, solver=ScriptedSolver([T1, T2, T3]))
        vo.initialize()

        for _ in range(3):
            assert vo.step().status == StepStatus.SUCCESS

        expected = T3 @ T2 @ T1
        assert vo.T_c_w.allclose(expected, atol=1e-12)
        assert not vo.T_c_w.allclose(T1 @ T2 @ T3, atol=1e-6)
        assert vo.T_c_l is T3
        assert vo.trajectory_frame_ids == [0, 1, 2, 3]

    def test_tracks_moving_sequence(self, moving_sequence: SyntheticSequence):
        """Test that real PnP tracking follows the ground-truth trajectory."""
        vo = make_pipeline(moving_sequence)

        results = list(vo.run())

        assert [r.status for r in results] == [StepStatus.SUCCESS] * 4
        for estimated, truth in zip(vo.trajectory, moving_sequence.poses_c_w):
            assert np.linalg.norm(estimated.translation - truth.translation) < 1e-3
            assert np.allclose(estimated.rotation, truth.rotation, atol=1e-4)

    def test_run_respects_max_frames(self, moving_sequence: SyntheticSequence):
        """Test that run() stops after max_frames results."""
        vo = make_pipeline(moving_sequence)

        results = list(vo.run(max_frames=2))

        assert [r.frame_id for r in results] == [0, 1]

    def test_run_skips_frames_without_depth_during_initialization(self):
        """Test that run() initializes on the first frame with valid 3D points."""
        sequence = SyntheticSequence(
            [SE3.identity(), SE3.identity(), translation(x=-0.1)],
            no_depth_frames={0},
        )
        vo = make_pipeline(sequence)

        results = list(vo.run())

        assert [r.status for r in results] == [
            StepStatus.FAILED,
            StepStatus.SUCCESS,
            StepStatus.SUCCESS,
        ]
        assert vo.trajectory_frame_ids == [1, 2]

    def test_camera_positions(self, two_frame_sequence: SyntheticSequence):
        """Test that camera centers are reported in world coordinates."""
        vo = make_pipeline(two_frame_sequence)
        list(vo.run())

        positions = vo.camera_positions()

        assert positions.shape == (2, 3)
        np.testing.assert_allclose(positions[0], [0.0, 0.0, 0.0], atol=1e-9)
        np.testing.assert_allclose(positions[1], [0.1, 0.0, 0.0], atol=1e-3)


class TestTrackingFailures:
    """Test suite for LOST/FAILED outcomes and recovery."""

    def test_inlier_threshold_gating(self, two_frame_sequence: SyntheticSequence):
        """Test that poses are accepted iff inliers >= threshold, state intact otherwise."""
        threshold = 20
        n = len(two_frame_sequence.points_world)
        moved = translation(x=-0.1)

        for count in range(n + 1):
            solver = ScriptedSolver([moved], inlier_counts=[count])
            vo = make_pipeline(two_frame_sequence, solver=solver, min_inliers=threshold)
            vo.initialize()
            before = snapshot(vo)

            result = vo.step()

            assert solver.calls == 1
            if count >= threshold:
                assert result.status == StepStatus.SUCCESS
                assert vo.num_inliers == count
                assert vo.T_c_w.allclose(moved)
            else:
                assert result.status == StepStatus.LOST
                assert isinstance(result.error, LowConfidencePoseError)
                assert_unchanged(vo, before, expect_state=TrackingState.LOST)

    def test_blank_frame_then_recovery(self):
        """Test that a featureless frame is LOST and the next good frame recovers."""
        poses = [SE3.identity(), translation(x=-0.05), translation(x=-0.1)]
        sequence = SyntheticSequence(poses, blank_frames={1})
        vo = make_pipeline(sequence)
        vo.initialize()
        before = snapshot(vo)

        lost = vo.step()

        assert lost.status == StepStatus.LOST
        assert isinstance(lost.error, InsufficientCorrespondencesError)
        assert lost.num_features == 0
        assert lost.T_c_w is before["T_c_w"]
        assert_unchanged(vo, before, expect_state=TrackingState.LOST)

        recovered = vo.step()

        assert recovered.status == StepStatus.SUCCESS
        assert recovered.frame_id == 2
        assert vo.state == TrackingState.TRACKING
        assert vo.frame_last.id == 0
        assert vo.current_frame_id == 2
        assert np.linalg.norm(vo.T_c_w.translation - poses[2].translation) < 1e-3

    def test_current_frame_without_depth_is_lost(self):
        """Test that a frame whose own 3D points cannot be built is not adopted."""
        sequence = SyntheticSequence(
            [SE3.identity(), translation(x=-0.1)], no_depth_frames={1}
        )
        vo = make_pipeline(sequence)
        vo.initialize()
        before = snapshot(vo)

        result = vo.step()

        assert result.status == StepStatus.LOST
        assert isinstance(result.error, ReconstructionError)
        assert_unchanged(vo, before, expect_state=TrackingState.LOST)

    def test_unreadable_frame_fails_without_state_change(
        self, two_frame_sequence: SyntheticSequence
    ):
        """Test that an I/O failure is fatal to the step only."""
        vo = make_pipeline(two_frame_sequence)
        vo.initialize()
        before = snapshot(vo)

        result = vo.step(99)

        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, FrameReadError)
        assert_unchanged(vo, before)
        assert vo.next_frame_id == 1

    def test_retry_same_frame_after_lost(self, two_frame_sequence: SyntheticSequence):
        """Test that the failed step can be retried against the same reference."""
        solver = ScriptedSolver(
            [SE3.identity(), translation(x=-0.1)], inlier_counts=[3, 50]
        )
        vo = make_pipeline(two_frame_sequence, solver=solver)
        vo.initialize()

        assert vo.step(1).status == StepStatus.LOST
        assert vo.step(1).status == StepStatus.SUCCESS
        assert vo.num_inliers == 50
        assert vo.T_c_w.allclose(translation(x=-0.1))


@pytest.fixture
def textured_kitti_sequence(tmp_path: Path) -> Path:
    """Create a 3-frame KITTI sequence of a static textured plane.

    Every right image is the left image shifted by 8 pixels, so SGBM sees a
    constant disparity and the camera never moves.
    """
    sequence = tmp_path / "sequences" / "00"
    (sequence / "image_0").mkdir(parents=True)
    (sequence / "image_1").mkdir(parents=True)

    rng = np.random.default_rng(5)
    left = cv2.GaussianBlur(rng.integers(0, 256, size=(240, 320), dtype=np.uint8), (3, 3), 0)
    right = np.roll(left, -8, axis=1)
    for i in range(3):
        cv2.imwrite(str(sequence / "image_0" / f"{i:06d}.png"), left)
        cv2.imwrite(str(sequence / "image_1" / f"{i:06d}.png"), right)
    (sequence / "calib.txt").write_text(KITTI_CALIB_00)
    return sequence


class TestConstruction:
    """Test suite for building the pipeline with OpenCV capabilities."""

    def test_from_kitti_sequence_tracks_static_camera(self, textured_kitti_sequence: Path):
        """Test ORB + SGBM + PnP end to end on a camera that does not move."""
        vo = StructurelessVO.from_kitti_sequence(
            textured_kitti_sequence, VOConfig(n_features=500, num_disparities=32)
        )

        results = list(vo.run())

        assert vo.intrinsics.fx == pytest.approx(718.856)
        assert [r.status for r in results] == [StepStatus.SUCCESS] * 3
        assert results[1].num_inliers >= 10
        assert vo.T_c_w.rotation_angle() < 1e-3
        assert np.linalg.norm(vo.T_c_w.translation) < 1e-2

    def test_from_config_start_frame(self, two_frame_sequence: SyntheticSequence):
        """Test that start_frame_id selects the initialization frame."""
        vo = StructurelessVO.from_config(
            two_frame_sequence, INTRINSICS, VOConfig(start_frame_id=1)
        )

        assert vo.next_frame_id == 1
        result = vo.initialize()

        # Constant synthetic images carry no ORB features
        assert result.frame_id == 1
        assert result.status == StepStatus.FAILED
        assert isinstance(result.error, ReconstructionError)
