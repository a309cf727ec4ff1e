"""Descriptor matching capability and match containers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import cv2
import numpy as np


@dataclass(frozen=True)
class Matches:
    """Correspondences between two descriptor sets.

    Attributes:
        query_indices: Indices into the first (query) descriptor set
        train_indices: Indices into the second (train) descriptor set
        distances: Descriptor distances of the matched pairs
    """

    query_indices: np.ndarray  # (N,) int
    train_indices: np.ndarray  # (N,) int
    distances: np.ndarray  # (N,) float32

    @classmethod
    def empty(cls) -> Matches:
        return cls(
            query_indices=np.empty(0, dtype=np.int32),
            train_indices=np.empty(0, dtype=np.int32),
            distances=np.empty(0, dtype=np.float32),
        )

    @classmethod
    def from_dmatches(cls, dmatches: list[cv2.DMatch]) -> Matches:
        """Convert OpenCV DMatch objects into a Matches container."""
        if len(dmatches) == 0:
            return cls.empty()
        return cls(
            query_indices=np.array([m.queryIdx for m in dmatches], dtype=np.int32),
            train_indices=np.array([m.trainIdx for m in dmatches], dtype=np.int32),
            distances=np.array([m.distance for m in dmatches], dtype=np.float32),
        )

    def __len__(self) -> int:
        """Return number of matches."""
        return len(self.query_indices)

    def subset(self, mask: np.ndarray) -> Matches:
        """Return the matches selected by a boolean mask or index array."""
        return Matches(
            query_indices=self.query_indices[mask],
            train_indices=self.train_indices[mask],
            distances=self.distances[mask],
        )

    def filter_by_distance(self, max_distance: float) -> Matches:
        """Return only matches with distance <= max_distance."""
        return self.subset(self.distances <= max_distance)

    def sorted_by_query(self) -> Matches:
        return self.subset(np.argsort(self.query_indices, kind="stable"))


class DescriptorMatcher(Protocol):
    """Finds, for every query descriptor, its nearest train descriptor."""

    def match(
        self, query_descriptors: np.ndarray, train_descriptors: np.ndarray
    ) -> Matches: ...


class BruteForceMatcher:
    """Exhaustive nearest-neighbour matcher backed by cv2.BFMatcher.

    Returns one match per query descriptor (its best train descriptor).
    Cross-checking and distance gating are left to the FeatureTracker.
    """

    def __init__(self, norm_type: int = cv2.NORM_HAMMING) -> None:
        """Initialize matcher.

        Args:
            norm_type: OpenCV norm, NORM_HAMMING for binary descriptors such
                as ORB, NORM_L2 for float descriptors.
        """
        self._norm_type = norm_type
        self._bf_matcher = cv2.BFMatcher(norm_type, crossCheck=False)

    def match(
        self, query_descriptors: np.ndarray, train_descriptors: np.ndarray
    ) -> Matches:
        """Match each query descriptor to its nearest train descriptor."""
        if len(query_descriptors) == 0 or len(train_descriptors) == 0:
            return Matches.empty()
        return Matches.from_dmatches(
            self._bf_matcher.match(query_descriptors, train_descriptors)
        )

    @property
    def norm_type(self) -> int:
        return self._norm_type
