"""SE(3) rigid transforms for frame-to-frame odometry."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    Transforms are named ``T_a_b``: they map coordinates expressed in frame
    ``b`` into frame ``a``:

        p_a = R @ p_b + t

    The odometry pipeline keeps ``T_c_w`` (world -> current camera) and
    ``T_c_l`` (last camera -> current camera). Chaining follows the names,
    so ``T_c_w_new = T_c_l @ T_c_w_old``.

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs.

        Both arrays are private read-only copies, so a pose shared between
        the pipeline, its frames and step results cannot be edited in place.
        """
        self.rotation = np.array(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

        self.rotation.setflags(write=False)
        self.translation.setflags(write=False)

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from a 4x4 homogeneous or 3x4 [R | t] matrix.

        Args:
            T: 4x4 transformation matrix, or its top 3x4 block

        Returns:
            SE3 transformation
        """
        T = np.asarray(T, dtype=np.float64)
        if T.shape not in ((4, 4), (3, 4)):
            raise ValueError(f"Transform must be 4x4 or 3x4, got {T.shape}")

        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from OpenCV Rodrigues vector and translation.

        cv2.solvePnP returns the transform that maps object points into the
        camera frame. When the object points are expressed in the last
        camera's frame, the result is directly ``T_c_l``.

        Args:
            rvec: 3D Rodrigues rotation vector (axis * angle)
            tvec: 3D translation vector

        Returns:
            SE3 transformation
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).flatten())
        t = np.asarray(tvec).flatten()
        return cls(rotation=R, translation=t)

    @classmethod
    def from_axis_angle(
        cls, axis: np.ndarray, angle: float, translation: np.ndarray | None = None
    ) -> SE3:
        """Create SE3 from a rotation axis, angle (radians) and translation."""
        axis = np.asarray(axis, dtype=np.float64).flatten()
        axis = axis / np.linalg.norm(axis)
        if translation is None:
            translation = np.zeros(3)
        return cls.from_rvec_tvec(axis * angle, translation)

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix [[R, t], [0, 1]]."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        rvec, _ = cv2.Rodrigues(self.rotation.copy())
        return rvec.flatten(), self.translation.copy()

    def inverse(self) -> SE3:
        """Compute the inverse transformation.

        If T_a_b maps b -> a, its inverse T_b_a maps a -> b.
        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: ``self @ other``.

        With ``self = T_a_b`` and ``other = T_b_c`` the result is ``T_a_c``:
        ``other`` is applied first, then ``self``.

        Example:
            T_c_l.compose(T_l_w) gives T_c_w
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map Nx3 points from frame b into frame a (p_a = R @ p_b + t)."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return (self.rotation @ points.T).T + self.translation

    def is_finite(self) -> bool:
        """Return True if rotation and translation contain only finite values."""
        return bool(
            np.isfinite(self.rotation).all() and np.isfinite(self.translation).all()
        )

    def rotation_angle(self) -> float:
        """Return the rotation magnitude in radians."""
        cos_angle = (np.trace(self.rotation) - 1.0) / 2.0
        return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))

    def allclose(self, other: SE3, atol: float = 1e-8) -> bool:
        """Return True if both transforms agree elementwise within ``atol``."""
        return bool(
            np.allclose(self.rotation, other.rotation, atol=atol)
            and np.allclose(self.translation, other.translation, atol=atol)
        )

    @property
    def position(self) -> np.ndarray:
        """Return the origin of frame b expressed in frame a.

        For a world-to-camera transform use ``T_c_w.inverse().position`` to
        obtain the camera center in world coordinates.
        """
        return self.translation.copy()

    def __repr__(self) -> str:
        """Return string representation."""
        t = self.translation
        return (
            f"SE3(translation=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}], "
            f"angle={np.degrees(self.rotation_angle()):.2f}deg)"
        )

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition: T_a_c = T_a_b @ T_b_c."""
        return self.compose(other)
