from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from scene.scene import Pose


class LocalizationStatus(Enum):
    """Outcome of a single localization query."""

    SUCCESS = 0
    DATABASE_NOT_INITIALIZED = 1
    MATCHING_FAILED = 2
    RESECTION_FAILED = 3

    @property
    def is_hard_failure(self) -> bool:
        """Caller error or degenerate input, as opposed to "no pose found"."""
        return self in (
            LocalizationStatus.DATABASE_NOT_INITIALIZED,
            LocalizationStatus.MATCHING_FAILED,
        )


@dataclass
class ResectionData:
    """2D-3D working set of one query."""

    pt3d: np.ndarray = field(
        default_factory=lambda: np.empty((0, 3))
    )  # (M, 3) matched landmark positions
    pt2d: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2))
    )  # (M, 2) query feature positions, image domain
    inliers: np.ndarray = field(
        default_factory=lambda: np.empty(0, dtype=int)
    )  # (K,) indices into pt3d / pt2d
    projection_matrix: np.ndarray | None = None  # 3x4
    error_max: float = float("inf")  # converged inlier threshold in pixels
    landmark_ids: np.ndarray = field(
        default_factory=lambda: np.empty(0, dtype=np.int64)
    )  # (M,) landmark of each correspondence
    query_indices: np.ndarray = field(
        default_factory=lambda: np.empty(0, dtype=int)
    )  # (M,) query feature of each correspondence


@dataclass
class LocalizationResult:
    status: LocalizationStatus
    pose: Pose | None = None
    resection_data: ResectionData | None = None

    @property
    def success(self) -> bool:
        return self.status == LocalizationStatus.SUCCESS
