"""Frame-to-frame feature tracking with distance and cross-check filtering."""

from __future__ import annotations

import logging

import numpy as np

from .features import FeatureDetector, Features, OrbFeatureDetector
from .matching import BruteForceMatcher, DescriptorMatcher, Matches

logger = logging.getLogger(__name__)


class FeatureTracker:
    """Detects features and matches them between two images.

    A raw match (i, j) from the matching capability survives only if:
    1. its descriptor distance is at most ``max_distance``, and
    2. it is symmetric: j is i's best match in the forward search AND
       i is j's best match in the reverse search.

    The tracker never touches Frame state; it only returns new containers.
    """

    def __init__(
        self,
        detector: FeatureDetector | None = None,
        matcher: DescriptorMatcher | None = None,
        max_distance: float = 50.0,
        max_matches: int | None = None,
    ) -> None:
        """Initialize tracker.

        Args:
            detector: Detection capability. ORB with defaults if None.
            matcher: Matching capability. Hamming brute force if None.
            max_distance: Maximum descriptor distance for an accepted match.
                ORB descriptors are 256 bits, so Hamming distance is <= 256.
            max_matches: If set, keep only this many lowest-distance matches.
        """
        if max_distance < 0:
            raise ValueError(f"max_distance must be non-negative, got {max_distance}")
        if max_matches is not None and max_matches <= 0:
            raise ValueError(f"max_matches must be positive, got {max_matches}")

        self._detector = detector or OrbFeatureDetector()
        self._matcher = matcher or BruteForceMatcher()
        self._max_distance = max_distance
        self._max_matches = max_matches

    def detect(self, image: np.ndarray) -> Features:
        """Detect keypoints and descriptors in an image."""
        return self._detector.detect(image)

    def match(
        self,
        descriptors_a: np.ndarray | None,
        descriptors_b: np.ndarray | None,
    ) -> Matches:
        """Match two descriptor sets, keeping mutual best matches only.

        Args:
            descriptors_a: Query descriptors (e.g. last frame's reference set)
            descriptors_b: Train descriptors (e.g. current frame)

        Returns:
            Accepted matches ordered by query index. May be empty.
        """
        if (
            descriptors_a is None
            or descriptors_b is None
            or len(descriptors_a) == 0
            or len(descriptors_b) == 0
        ):
            return Matches.empty()

        forward = self._matcher.match(descriptors_a, descriptors_b)
        reverse = self._matcher.match(descriptors_b, descriptors_a)

        # best_in_a[j] = index in a of j's nearest neighbour, -1 if none
        best_in_a = np.full(len(descriptors_b), -1, dtype=np.int64)
        best_in_a[reverse.query_indices] = reverse.train_indices

        symmetric = best_in_a[forward.train_indices] == forward.query_indices
        close = forward.distances <= self._max_distance
        matches = forward.subset(symmetric & close)

        if self._max_matches is not None and len(matches) > self._max_matches:
            best = np.argsort(matches.distances, kind="stable")[: self._max_matches]
            matches = matches.subset(best)

        matches = matches.sorted_by_query()

        logger.debug(
            "Matched %d/%d descriptors (%d symmetric, %d within distance %.1f)",
            len(matches),
            len(forward),
            int(np.count_nonzero(symmetric)),
            int(np.count_nonzero(close)),
            self._max_distance,
        )
        return matches

    def track(self, features_a: Features, image_b: np.ndarray) -> tuple[Features, Matches]:
        """Detect features in ``image_b`` and match ``features_a`` against them."""
        features_b = self.detect(image_b)
        return features_b, self.match(features_a.descriptors, features_b.descriptors)

    @property
    def max_distance(self) -> float:
        return self._max_distance
