"""Tunable parameters of the odometry pipeline."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass
class VOConfig:
    """Configuration for StructurelessVO and its default capabilities.

    Attributes:
        n_features: Maximum ORB features per image
        max_match_distance: Maximum Hamming distance of an accepted match
        max_matches: Keep only this many best matches per step (None = all)
        min_disparity: Smallest disparity (pixels) accepted for 3D points
        max_depth: Largest depth (meters) accepted for 3D points (None = no limit)
        num_disparities: SGBM disparity search range (multiple of 16)
        block_size: SGBM block size (odd)
        min_correspondences: Correspondences required before solving (>= 4)
        min_inliers: Inliers required to accept a pose
        reprojection_threshold: RANSAC inlier threshold (pixels)
        ransac_confidence: RANSAC success probability
        max_iterations: RANSAC iteration cap
        refine_with_inliers: Refine the RANSAC pose on all inliers
        start_frame_id: Frame used to initialize the trajectory
    """

    n_features: int = 1000
    max_match_distance: float = 50.0
    max_matches: int | None = None
    min_disparity: float = 1.0
    max_depth: float | None = None
    num_disparities: int = 96
    block_size: int = 9
    min_correspondences: int = 4
    min_inliers: int = 10
    reprojection_threshold: float = 2.0
    ransac_confidence: float = 0.99
    max_iterations: int = 100
    refine_with_inliers: bool = True
    start_frame_id: int = 0

    def __post_init__(self) -> None:
        """Validate parameter ranges."""
        if self.n_features <= 0:
            raise ValueError(f"n_features must be positive, got {self.n_features}")
        if self.max_match_distance < 0:
            raise ValueError(
                f"max_match_distance must be non-negative, got {self.max_match_distance}"
            )
        if self.min_disparity <= 0:
            raise ValueError(f"min_disparity must be positive, got {self.min_disparity}")
        if self.min_correspondences < 4:
            raise ValueError(
                f"min_correspondences must be at least 4, got {self.min_correspondences}"
            )
        if self.min_inliers < 1:
            raise ValueError(f"min_inliers must be positive, got {self.min_inliers}")
        if self.start_frame_id < 0:
            raise ValueError(f"start_frame_id must be >= 0, got {self.start_frame_id}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VOConfig:
        """Create a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {unknown}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> VOConfig:
        """Load a config from a YAML mapping; missing keys keep their defaults.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not a mapping or holds invalid values
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {yaml_path}")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)
