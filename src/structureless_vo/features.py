"""Keypoint detection capability and its ORB implementation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import cv2
import numpy as np


@dataclass(frozen=True)
class Features:
    """Keypoints detected in one image and their descriptors.

    Attributes:
        keypoints: Tuple of OpenCV KeyPoint objects
        descriptors: NxD descriptor array (uint8 for ORB), or None if no features
    """

    keypoints: tuple[cv2.KeyPoint, ...]
    descriptors: np.ndarray | None

    @classmethod
    def empty(cls) -> Features:
        return cls(keypoints=(), descriptors=None)

    @classmethod
    def from_points(
        cls, points: np.ndarray, descriptors: np.ndarray, size: float = 7.0
    ) -> Features:
        """Build features from Nx2 pixel coordinates and matching descriptors."""
        points = np.asarray(points, dtype=np.float32).reshape(-1, 2)
        if len(points) != len(descriptors):
            raise ValueError(
                f"Got {len(points)} points but {len(descriptors)} descriptors"
            )
        keypoints = tuple(
            cv2.KeyPoint(float(x), float(y), size) for x, y in points
        )
        return cls(keypoints=keypoints, descriptors=np.asarray(descriptors))

    @property
    def points(self) -> np.ndarray:
        """Return Nx2 array of keypoint (x, y) coordinates."""
        if len(self.keypoints) == 0:
            return np.empty((0, 2), dtype=np.float32)
        return np.array([kp.pt for kp in self.keypoints], dtype=np.float32)

    def subset(self, indices: np.ndarray) -> Features:
        """Return the features at ``indices`` (in that order)."""
        indices = np.asarray(indices, dtype=np.int64)
        if len(indices) == 0 or self.descriptors is None:
            return Features.empty()
        return Features(
            keypoints=tuple(self.keypoints[i] for i in indices),
            descriptors=self.descriptors[indices],
        )

    def __len__(self) -> int:
        """Return number of detected features."""
        return len(self.keypoints)


class FeatureDetector(Protocol):
    """Detects keypoints and computes their descriptors in an image."""

    def detect(self, image: np.ndarray) -> Features: ...


class OrbFeatureDetector:
    """ORB feature detector for sparse feature extraction.

    ORB (Oriented FAST and Rotated BRIEF) is a fast, rotation-invariant
    detector producing 256-bit binary descriptors, matched with Hamming
    distance.
    """

    def __init__(
        self,
        n_features: int = 1000,
        scale_factor: float = 1.2,
        n_levels: int = 8,
        edge_threshold: int = 31,
        fast_threshold: int = 20,
    ) -> None:
        """Initialize ORB detector.

        Args:
            n_features: Maximum number of features to retain (sorted by score)
            scale_factor: Pyramid decimation ratio (>1.0)
            n_levels: Number of pyramid levels for multi-scale detection
            edge_threshold: Border margin (pixels) where features are not detected
            fast_threshold: Threshold for FAST corner detection
        """
        if n_features <= 0:
            raise ValueError(f"n_features must be positive, got {n_features}")
        self._orb = cv2.ORB_create(
            nfeatures=n_features,
            scaleFactor=scale_factor,
            nlevels=n_levels,
            edgeThreshold=edge_threshold,
            fastThreshold=fast_threshold,
        )
        self._n_features = n_features

    def detect(self, image: np.ndarray) -> Features:
        """Detect ORB features in a grayscale (or BGR) image."""
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        keypoints, descriptors = self._orb.detectAndCompute(image, None)

        if keypoints is None or descriptors is None or len(keypoints) == 0:
            return Features.empty()

        return Features(keypoints=tuple(keypoints), descriptors=descriptors)

    @property
    def n_features(self) -> int:
        """Return maximum number of features to detect."""
        return self._n_features
