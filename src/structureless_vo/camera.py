"""Rectified stereo rig calibration (pinhole intrinsics + baseline)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml


@dataclass(frozen=True)
class StereoIntrinsics:
    """Intrinsics of a rectified stereo pair.

    Both cameras share the same pinhole model after rectification; the right
    camera is displaced by ``baseline`` meters along the left camera's x-axis.

    Attributes:
        fx: Focal length x (pixels)
        fy: Focal length y (pixels)
        cx: Principal point x (pixels)
        cy: Principal point y (pixels)
        baseline: Distance between the two camera centers (meters)
    """

    fx: float
    fy: float
    cx: float
    cy: float
    baseline: float

    def __post_init__(self) -> None:
        """Reject degenerate calibrations."""
        if not (self.fx > 0 and self.fy > 0):
            raise ValueError(f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}")
        if not self.baseline > 0:
            raise ValueError(f"Baseline must be positive, got {self.baseline}")

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def depth_scale(self) -> float:
        """Return fx * baseline, so that depth = depth_scale / disparity."""
        return self.fx * self.baseline

    @classmethod
    def from_projection_matrices(
        cls, P_left: np.ndarray, P_right: np.ndarray
    ) -> StereoIntrinsics:
        """Create intrinsics from rectified 3x4 projection matrices.

        For a rectified pair P_right[0, 3] = -fx * baseline.

        Args:
            P_left: 3x4 projection matrix of the left camera
            P_right: 3x4 projection matrix of the right camera

        Returns:
            StereoIntrinsics
        """
        P_left = np.asarray(P_left, dtype=np.float64).reshape(3, 4)
        P_right = np.asarray(P_right, dtype=np.float64).reshape(3, 4)

        fx = float(P_left[0, 0])
        baseline = float(-(P_right[0, 3] - P_left[0, 3]) / fx)
        return cls(
            fx=fx,
            fy=float(P_left[1, 1]),
            cx=float(P_left[0, 2]),
            cy=float(P_left[1, 2]),
            baseline=baseline,
        )

    @classmethod
    def from_kitti_calib(cls, calib_path: str | Path) -> StereoIntrinsics:
        """Parse a KITTI odometry ``calib.txt`` file.

        Each line holds a key and 12 row-major values of a 3x4 matrix:

            P0: 7.188560e+02 0.000000e+00 6.071928e+02 0.000000e+00 ...
            P1: 7.188560e+02 0.000000e+00 6.071928e+02 -3.861448e+02 ...

        P0/P1 are the rectified grayscale left/right cameras.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If P0 or P1 is missing or malformed
        """
        path = Path(calib_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {calib_path}")

        matrices: dict[str, np.ndarray] = {}
        with open(path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or ":" not in line:
                    continue
                key, values = line.split(":", 1)
                try:
                    data = [float(v) for v in values.split()]
                except ValueError as e:
                    raise ValueError(f"Invalid line in {calib_path}: '{line}'") from e
                if len(data) == 12:
                    matrices[key.strip()] = np.array(data).reshape(3, 4)

        if "P0" not in matrices or "P1" not in matrices:
            raise ValueError(f"P0/P1 projection matrices not found in {calib_path}")

        return cls.from_projection_matrices(matrices["P0"], matrices["P1"])

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> StereoIntrinsics:
        """Load intrinsics from a YAML file with fx, fy, cx, cy and baseline keys.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If a required key is missing
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        missing = [k for k in ("fx", "fy", "cx", "cy", "baseline") if k not in data]
        if missing:
            raise ValueError(f"Missing calibration keys in {yaml_path}: {missing}")

        return cls(
            fx=float(data["fx"]),
            fy=float(data["fy"]),
            cx=float(data["cx"]),
            cy=float(data["cy"]),
            baseline=float(data["baseline"]),
        )
