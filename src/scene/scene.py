"""Passive data structures describing a reconstructed scene."""

from dataclasses import dataclass, field

import numpy as np

# feature index of an observation that is not linked to a concrete feature
UNDEFINED_INDEX = -1


@dataclass(frozen=True)
class Observation:
    """
    Link between a landmark and the feature that produced it in one view.

    Attributes:
        view_id: Identifier of the observing view.
        feature_index: Index into that view's regions, or UNDEFINED_INDEX.

    """

    view_id: int
    feature_index: int = UNDEFINED_INDEX

    @property
    def is_defined(self) -> bool:
        return self.feature_index != UNDEFINED_INDEX


@dataclass
class Landmark:
    """
    A reconstructed 3D point.

    Attributes:
        landmark_id: Unique, stable identifier.
        X: 3D world coordinates [x, y, z].
        observations: Mapping view_id -> Observation.

    """

    landmark_id: int
    X: np.ndarray
    observations: dict[int, Observation] = field(default_factory=dict)


@dataclass
class Pose:
    """
    Camera pose.

    Attributes:
        R: 3x3 rotation matrix (world to camera).
        center: (3,) camera center in world coordinates.

    """

    R: np.ndarray = field(default_factory=lambda: np.eye(3))
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @property
    def translation(self) -> np.ndarray:
        """Translation t such that X_cam = R @ X + t."""
        return -self.R @ self.center


@dataclass(frozen=True)
class SceneSnapshot:
    """
    Read-only view of a reconstruction.

    Attributes:
        landmarks: Mapping landmark_id -> Landmark.
        poses: Mapping view_id -> Pose for the already registered views.

    """

    landmarks: dict[int, Landmark] = field(default_factory=dict)
    poses: dict[int, Pose] = field(default_factory=dict)

    def landmark_positions(self, landmark_ids: np.ndarray) -> np.ndarray:
        """(N, 3) positions of the given landmarks, in order."""
        if len(landmark_ids) == 0:
            return np.empty((0, 3))
        return np.array(
            [self.landmarks[int(i)].X for i in landmark_ids], dtype=np.float64
        ).reshape(-1, 3)
