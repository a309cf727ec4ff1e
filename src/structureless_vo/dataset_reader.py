"""KITTI odometry sequence reader for rectified stereo images."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Protocol

import cv2
import numpy as np

from .camera import StereoIntrinsics
from .errors import FrameReadError


class FrameSource(Protocol):
    """Supplies rectified left/right images by integer frame id."""

    def read_frame(self, frame_id: int) -> tuple[np.ndarray, np.ndarray]: ...


class KittiSequenceReader:
    """Reader for one KITTI odometry sequence.

    Expected structure:
        <sequence>/
            calib.txt
            times.txt        (optional)
            image_0/000000.png, 000001.png, ...   (left, grayscale)
            image_1/000000.png, 000001.png, ...   (right, grayscale)
    """

    def __init__(self, sequence_path: str | Path) -> None:
        """Initialize reader with path to a sequence directory.

        Args:
            sequence_path: Path to e.g. data/kitti/sequences/00

        Raises:
            FileNotFoundError: If the sequence or required directories don't exist
        """
        self.sequence_path = Path(sequence_path)
        self.left_path = self.sequence_path / "image_0"
        self.right_path = self.sequence_path / "image_1"
        self.calib_path = self.sequence_path / "calib.txt"

        self._validate_paths()
        self._num_frames = len(list(self.left_path.glob("*.png")))
        self._timestamps = self._load_timestamps()

    def _validate_paths(self) -> None:
        """Validate that all required paths exist."""
        if not self.sequence_path.exists():
            raise FileNotFoundError(
                f"Sequence path does not exist: {self.sequence_path}"
            )

        if not self.left_path.exists():
            raise FileNotFoundError(
                f"image_0 directory not found: {self.left_path}\n"
                f"Expected structure: {self.sequence_path}/image_0/"
            )

        if not self.right_path.exists():
            raise FileNotFoundError(
                f"image_1 directory not found: {self.right_path}\n"
                f"Expected structure: {self.sequence_path}/image_1/"
            )

    def _load_timestamps(self) -> list[float]:
        """Parse times.txt (one timestamp in seconds per line) if present."""
        times_path = self.sequence_path / "times.txt"
        if not times_path.exists():
            return []

        timestamps = []
        with open(times_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    timestamps.append(float(line))
                except ValueError as e:
                    raise ValueError(f"Invalid line in {times_path}: '{line}'") from e
        return timestamps

    @staticmethod
    def image_name(frame_id: int) -> str:
        return f"{frame_id:06d}.png"

    def read_frame(self, frame_id: int) -> tuple[np.ndarray, np.ndarray]:
        """Load the rectified stereo pair of a frame.

        Args:
            frame_id: Zero-based frame index

        Returns:
            Tuple of (left_image, right_image) as grayscale numpy arrays

        Raises:
            FrameReadError: If either image is missing or cannot be decoded
        """
        if frame_id < 0:
            raise FrameReadError(frame_id, f"Invalid frame id: {frame_id}")

        filename = self.image_name(frame_id)
        left_path = self.left_path / filename
        right_path = self.right_path / filename

        if not left_path.exists():
            raise FrameReadError(frame_id, f"Left camera image not found: {left_path}")

        if not right_path.exists():
            raise FrameReadError(frame_id, f"Right camera image not found: {right_path}")

        left_img = cv2.imread(str(left_path), cv2.IMREAD_GRAYSCALE)
        right_img = cv2.imread(str(right_path), cv2.IMREAD_GRAYSCALE)

        if left_img is None:
            raise FrameReadError(frame_id, f"Failed to load left image: {left_path}")

        if right_img is None:
            raise FrameReadError(frame_id, f"Failed to load right image: {right_path}")

        return left_img, right_img

    def load_intrinsics(self) -> StereoIntrinsics:
        """Load the stereo calibration of this sequence from calib.txt."""
        return StereoIntrinsics.from_kitti_calib(self.calib_path)

    def timestamp(self, frame_id: int) -> float | None:
        """Return the timestamp (seconds) of a frame, None if unknown."""
        if 0 <= frame_id < len(self._timestamps):
            return self._timestamps[frame_id]
        return None

    def __len__(self) -> int:
        """Return number of left images in the sequence."""
        return self._num_frames

    def __iter__(self) -> Iterator[tuple[int, np.ndarray, np.ndarray]]:
        """Iterate over (frame_id, left_image, right_image) in order."""
        for frame_id in range(self._num_frames):
            left, right = self.read_frame(frame_id)
            yield frame_id, left, right
