"""Structureless stereo visual odometry in Python."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .camera import StereoIntrinsics
from .config import VOConfig
from .dataset_reader import FrameSource, KittiSequenceReader
from .disparity import DisparityComputer, SgbmDisparity
from .errors import (
    FrameReadError,
    InsufficientCorrespondencesError,
    LowConfidencePoseError,
    NotInitializedError,
    OdometryError,
    PoseSolveError,
    ReconstructionError,
    TrackingLostError,
)
from .features import FeatureDetector, Features, OrbFeatureDetector
from .frame import Frame, FrameWindow
from .matching import BruteForceMatcher, DescriptorMatcher, Matches
from .odometry import (
    StepResult,
    StepStatus,
    StepTiming,
    StructurelessVO,
    TrackingState,
)
from .pose import SE3
from .pose_estimator import (
    PnPRansacSolver,
    PoseEstimate,
    PoseEstimator,
    PoseSolution,
    PoseSolver,
)
from .reconstruction import (
    CorrespondenceBuilder,
    Correspondences,
    ReferencePoints,
    back_project,
)
from .tracking import FeatureTracker
from .trajectory import (
    camera_positions,
    path_length,
    read_kitti_trajectory,
    write_kitti_trajectory,
)

__all__ = [
    "__version__",
    # Pipeline
    "StructurelessVO",
    "StepResult",
    "StepStatus",
    "StepTiming",
    "TrackingState",
    "VOConfig",
    # Frames
    "Frame",
    "FrameWindow",
    # Pose
    "SE3",
    # Camera / dataset
    "StereoIntrinsics",
    "FrameSource",
    "KittiSequenceReader",
    # Features and tracking
    "FeatureDetector",
    "Features",
    "OrbFeatureDetector",
    "DescriptorMatcher",
    "BruteForceMatcher",
    "Matches",
    "FeatureTracker",
    # Stereo reconstruction
    "DisparityComputer",
    "SgbmDisparity",
    "CorrespondenceBuilder",
    "Correspondences",
    "ReferencePoints",
    "back_project",
    # Pose estimation
    "PoseSolver",
    "PoseSolution",
    "PnPRansacSolver",
    "PoseEstimate",
    "PoseEstimator",
    # Errors
    "OdometryError",
    "FrameReadError",
    "ReconstructionError",
    "NotInitializedError",
    "PoseSolveError",
    "TrackingLostError",
    "InsufficientCorrespondencesError",
    "LowConfidencePoseError",
    # Trajectory IO
    "read_kitti_trajectory",
    "write_kitti_trajectory",
    "camera_positions",
    "path_length",
]
