"""Stereo reconstruction: disparity -> depth -> 3D camera-space points."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .camera import StereoIntrinsics
from .errors import ReconstructionError
from .features import Features
from .matching import Matches

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferencePoints:
    """3D points reconstructed for one frame's left-image keypoints.

    Only keypoints with a valid disparity are kept; ``features`` and
    ``points_3d`` are aligned index-for-index.

    Attributes:
        points_3d: Nx3 points in the frame's camera coordinates
        features: Keypoints and descriptors of the surviving subset
        keypoint_indices: Indices of the survivors in the original detection
    """

    points_3d: np.ndarray  # (N, 3) float64
    features: Features
    keypoint_indices: np.ndarray  # (N,) int

    def __len__(self) -> int:
        return len(self.points_3d)

    @property
    def descriptors(self) -> np.ndarray | None:
        return self.features.descriptors


@dataclass(frozen=True)
class Correspondences:
    """3D points in the last camera frame paired with pixels in the current image."""

    points_3d: np.ndarray  # (N, 3) float64
    points_2d: np.ndarray  # (N, 2) float64

    def __len__(self) -> int:
        return len(self.points_3d)


def back_project(
    pixels: np.ndarray, disparities: np.ndarray, intrinsics: StereoIntrinsics
) -> np.ndarray:
    """Back-project pixels with known disparity into camera coordinates.

    Z = fx * baseline / d,  X = (u - cx) * Z / fx,  Y = (v - cy) * Z / fy

    Args:
        pixels: Nx2 array of (u, v) pixel coordinates in the left image
        disparities: (N,) disparities in pixels, all assumed valid
        intrinsics: Rectified stereo calibration

    Returns:
        Nx3 array of points in the left camera frame
    """
    pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
    disparities = np.asarray(disparities, dtype=np.float64).reshape(-1)

    z = intrinsics.depth_scale / disparities
    x = (pixels[:, 0] - intrinsics.cx) * z / intrinsics.fx
    y = (pixels[:, 1] - intrinsics.cy) * z / intrinsics.fy
    return np.column_stack([x, y, z])


def sample_disparity(disparity_map: np.ndarray, pixels: np.ndarray) -> np.ndarray:
    """Look up the disparity at each pixel (nearest neighbour).

    Pixels whose raw coordinates fall outside the map get NaN so that they
    fail validation. A pixel inside the map whose rounded position lands one
    past the last row or column reads that last row or column.
    """
    pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
    height, width = disparity_map.shape[:2]

    u, v = pixels[:, 0], pixels[:, 1]
    inside = (u >= 0) & (u < width) & (v >= 0) & (v < height)

    cols = np.clip(np.rint(np.nan_to_num(u)), 0, width - 1).astype(np.int64)
    rows = np.clip(np.rint(np.nan_to_num(v)), 0, height - 1).astype(np.int64)

    values = np.full(len(pixels), np.nan, dtype=np.float64)
    values[inside] = disparity_map[rows[inside], cols[inside]]
    return values


class CorrespondenceBuilder:
    """Turns keypoints plus a disparity map into 3D reference points.

    Validity policy, applied per keypoint disparity d:
    - reject non-finite d (unmatched or out-of-image pixels)
    - reject d <= 0 (no match or point at infinity)
    - reject d < min_disparity (too far for a reliable depth)
    - optionally reject points deeper than max_depth
    """

    def __init__(
        self,
        intrinsics: StereoIntrinsics,
        min_disparity: float = 1.0,
        max_depth: float | None = None,
    ) -> None:
        """Initialize builder.

        Args:
            intrinsics: Rectified stereo calibration
            min_disparity: Smallest accepted disparity in pixels (> 0)
            max_depth: Largest accepted depth in meters, or None for no limit
        """
        if not min_disparity > 0:
            raise ValueError(f"min_disparity must be positive, got {min_disparity}")
        if max_depth is not None and not max_depth > 0:
            raise ValueError(f"max_depth must be positive, got {max_depth}")

        self._intrinsics = intrinsics
        self._min_disparity = min_disparity
        self._max_depth = max_depth

    def valid_disparity_mask(self, disparities: np.ndarray) -> np.ndarray:
        """Return a boolean mask of disparities that yield trustworthy depth."""
        disparities = np.asarray(disparities, dtype=np.float64)
        mask = np.isfinite(disparities)
        mask[mask] = disparities[mask] >= self._min_disparity

        if self._max_depth is not None:
            depth = np.full(disparities.shape, np.inf)
            depth[mask] = self._intrinsics.depth_scale / disparities[mask]
            mask &= depth <= self._max_depth

        return mask

    def build(self, features: Features, disparity_map: np.ndarray) -> ReferencePoints:
        """Reconstruct 3D points for the keypoints with valid disparity.

        Args:
            features: Left-image features of the frame
            disparity_map: Disparity map of the same frame's stereo pair

        Returns:
            ReferencePoints aligned with the surviving keypoints (may be empty)
        """
        disparity_map = np.asarray(disparity_map)
        if disparity_map.ndim != 2:
            raise ReconstructionError(
                f"Disparity map must be 2D, got shape {disparity_map.shape}"
            )

        if len(features) == 0 or features.descriptors is None:
            return ReferencePoints(
                points_3d=np.empty((0, 3), dtype=np.float64),
                features=Features.empty(),
                keypoint_indices=np.empty(0, dtype=np.int64),
            )

        pixels = features.points
        disparities = sample_disparity(disparity_map, pixels)
        valid = self.valid_disparity_mask(disparities)
        indices = np.flatnonzero(valid)

        points_3d = back_project(pixels[valid], disparities[valid], self._intrinsics)

        logger.debug(
            "Reconstructed %d/%d keypoints (min disparity %.2f)",
            len(indices),
            len(features),
            self._min_disparity,
        )
        return ReferencePoints(
            points_3d=points_3d,
            features=features.subset(indices),
            keypoint_indices=indices,
        )

    @staticmethod
    def correspondences(
        reference: ReferencePoints, current: Features, matches: Matches
    ) -> Correspondences:
        """Pair reference 3D points with current-frame pixels.

        Args:
            reference: Reference points of the last frame (match query side)
            current: Features of the current frame (match train side)
            matches: Accepted matches between the two descriptor sets

        Returns:
            Correspondences with one entry per match
        """
        if len(matches) == 0:
            return Correspondences(
                points_3d=np.empty((0, 3), dtype=np.float64),
                points_2d=np.empty((0, 2), dtype=np.float64),
            )

        return Correspondences(
            points_3d=reference.points_3d[matches.query_indices],
            points_2d=current.points[matches.train_indices].astype(np.float64),
        )

    @property
    def intrinsics(self) -> StereoIntrinsics:
        return self._intrinsics

    @property
    def min_disparity(self) -> float:
        return self._min_disparity
