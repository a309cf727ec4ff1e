"""Dense stereo disparity capability."""

from __future__ import annotations

from typing import Protocol

import cv2
import numpy as np

from .errors import ReconstructionError


class DisparityComputer(Protocol):
    """Computes a per-pixel disparity map (in pixels) for a rectified pair.

    Invalid pixels are marked with a non-positive or non-finite value.
    """

    def compute(self, left: np.ndarray, right: np.ndarray) -> np.ndarray: ...


class SgbmDisparity:
    """Semi-global block matching on rectified grayscale images.

    OpenCV returns fixed-point disparities scaled by 16; they are divided
    back to pixels. Pixels without a match come out as
    (min_disparity - 1), which is below any positive validity threshold.
    """

    def __init__(
        self,
        num_disparities: int = 96,
        block_size: int = 9,
        min_disparity: int = 0,
        uniqueness_ratio: int = 10,
        speckle_window_size: int = 100,
        speckle_range: int = 2,
        disp12_max_diff: int = 1,
    ) -> None:
        """Initialize SGBM matcher.

        Args:
            num_disparities: Disparity search range, a positive multiple of 16
            block_size: Odd matching block size (3..11 is typical)
            min_disparity: Smallest disparity searched
            uniqueness_ratio: Margin (%) by which the best cost must win
            speckle_window_size: Max size of smooth regions treated as noise
            speckle_range: Max disparity variation within a speckle region
            disp12_max_diff: Max allowed left-right consistency difference
        """
        if num_disparities <= 0 or num_disparities % 16 != 0:
            raise ValueError(
                f"num_disparities must be a positive multiple of 16, got {num_disparities}"
            )
        if block_size < 1 or block_size % 2 == 0:
            raise ValueError(f"block_size must be odd and positive, got {block_size}")

        channels = 1
        self._sgbm = cv2.StereoSGBM_create(
            minDisparity=min_disparity,
            numDisparities=num_disparities,
            blockSize=block_size,
            P1=8 * channels * block_size * block_size,
            P2=32 * channels * block_size * block_size,
            disp12MaxDiff=disp12_max_diff,
            uniquenessRatio=uniqueness_ratio,
            speckleWindowSize=speckle_window_size,
            speckleRange=speckle_range,
            mode=cv2.STEREO_SGBM_MODE_SGBM_3WAY,
        )

    def compute(self, left: np.ndarray, right: np.ndarray) -> np.ndarray:
        """Compute the disparity map of a rectified stereo pair.

        Raises:
            ReconstructionError: If the images are missing or mismatched
        """
        if left is None or right is None:
            raise ReconstructionError("Stereo pair is missing an image")
        if left.shape[:2] != right.shape[:2]:
            raise ReconstructionError(
                f"Stereo images differ in size: {left.shape[:2]} vs {right.shape[:2]}"
            )

        if left.ndim == 3:
            left = cv2.cvtColor(left, cv2.COLOR_BGR2GRAY)
        if right.ndim == 3:
            right = cv2.cvtColor(right, cv2.COLOR_BGR2GRAY)

        try:
            raw = self._sgbm.compute(left, right)
        except cv2.error as e:
            raise ReconstructionError(f"Disparity computation failed: {e}") from e

        return raw.astype(np.float32) / 16.0
