"""Stereo frames and the two-slot frame window held by the pipeline."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from .pose import SE3

if TYPE_CHECKING:
    from .reconstruction import ReferencePoints


@dataclass(frozen=True)
class Frame:
    """One rectified stereo capture.

    Frames are never modified in place. ``with_pose`` returns a copy carrying
    the accepted pose ``T_c_w``; a frame that already has a pose refuses a
    second one.

    Attributes:
        id: Frame index in the source sequence
        left_image: Rectified left image
        right_image: Rectified right image
        pose: World-to-camera transform T_c_w, None until accepted
    """

    id: int
    left_image: np.ndarray
    right_image: np.ndarray
    pose: SE3 | None = None

    def with_pose(self, pose: SE3) -> Frame:
        """Return a copy of this frame with its pose set."""
        if self.pose is not None:
            raise ValueError(f"Frame {self.id} already has a pose")
        return dataclasses.replace(self, pose=pose)

    @property
    def has_pose(self) -> bool:
        return self.pose is not None


@dataclass(frozen=True)
class FrameWindow:
    """Sliding window of the two most recently accepted frames.

    ``current`` is the newest accepted frame and ``reference`` holds the 3D
    points reconstructed from its own stereo pair; the next step tracks
    against them. ``last`` is the frame ``current`` was tracked from (the
    same frame right after initialization).

    The window is replaced wholesale by ``promote`` when a step commits.
    """

    last: Frame
    current: Frame
    reference: ReferencePoints

    @classmethod
    def bootstrap(cls, frame: Frame, reference: ReferencePoints) -> FrameWindow:
        """Create the window for the first accepted frame."""
        return cls(last=frame, current=frame, reference=reference)

    def promote(self, frame: Frame, reference: ReferencePoints) -> FrameWindow:
        """Return the window after ``frame`` has been accepted."""
        if frame.pose is None:
            raise ValueError(f"Cannot promote frame {frame.id} without a pose")
        return FrameWindow(last=self.current, current=frame, reference=reference)
