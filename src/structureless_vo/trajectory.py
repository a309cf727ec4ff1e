"""Trajectory export/import in the KITTI odometry pose format.

Each line holds the 12 row-major values of the 3x4 matrix [R | t] of
T_w_c, the camera-to-world transform of one frame. The pipeline tracks
T_c_w, so poses are inverted on write.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import numpy as np

from .pose import SE3


def write_kitti_trajectory(path: str | Path, poses_c_w: Iterable[SE3]) -> int:
    """Write world-to-camera poses as KITTI camera-to-world lines.

    Args:
        path: Output file path (parent directories are created)
        poses_c_w: T_c_w per frame, in frame order

    Returns:
        Number of poses written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    count = 0
    with open(path, "w") as f:
        for T_c_w in poses_c_w:
            T_w_c = T_c_w.inverse().to_matrix()[:3, :]
            f.write(" ".join(f"{v:.9e}" for v in T_w_c.flatten()) + "\n")
            count += 1
    return count


def read_kitti_trajectory(path: str | Path) -> list[SE3]:
    """Read KITTI pose lines as camera-to-world transforms T_w_c.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If a line does not hold 12 numbers
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Trajectory file not found: {path}")

    poses = []
    with open(path, "r") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                values = [float(v) for v in line.split()]
            except ValueError as e:
                raise ValueError(f"Invalid line {line_number} in {path}: '{line}'") from e
            if len(values) != 12:
                raise ValueError(
                    f"Expected 12 values on line {line_number} of {path}, got {len(values)}"
                )
            poses.append(SE3.from_matrix(np.array(values).reshape(3, 4)))
    return poses


def camera_positions(poses_c_w: Iterable[SE3]) -> np.ndarray:
    """Return Nx3 camera centers in world coordinates."""
    positions = [T_c_w.inverse().translation for T_c_w in poses_c_w]
    if len(positions) == 0:
        return np.empty((0, 3), dtype=np.float64)
    return np.array(positions, dtype=np.float64)


def path_length(positions: np.ndarray) -> float:
    """Return the total distance travelled along Nx3 positions."""
    positions = np.asarray(positions, dtype=np.float64)
    if len(positions) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(positions, axis=0), axis=1).sum())
