"""Camera intrinsic models used to rectify query points."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import cv2
import numpy as np


def camera_matrix(
    fx: float, fy: float, cx: float, cy: float, skew: float = 0.0
) -> np.ndarray:
    """Upper triangular calibration matrix, the form krt_from_p returns."""
    return np.array([[fx, skew, cx], [0, fy, cy], [0, 0, 1]], dtype=np.float64)


class IntrinsicBase(ABC):
    """Abstract camera model."""

    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height

    def has_distortion(self) -> bool:
        return False

    @abstractmethod
    def undistort_pixels(self, points_2d: np.ndarray) -> np.ndarray:
        """Map (N, 2) observed pixels to their distortion free location."""

    def calibration_hint(self) -> np.ndarray | None:
        """3x3 calibration matrix if the model is a pinhole, else None."""
        return None


class PinholeIntrinsic(IntrinsicBase):
    """Ideal pinhole camera."""

    def __init__(
        self, width: int, height: int, fx: float, fy: float, cx: float, cy: float
    ) -> None:
        super().__init__(width, height)
        self.K = camera_matrix(fx, fy, cx, cy)

    def dist_coeffs(self) -> np.ndarray:
        return np.zeros(5)

    def undistort_pixels(self, points_2d: np.ndarray) -> np.ndarray:
        return np.array(points_2d, dtype=np.float64).reshape(-1, 2)

    def calibration_hint(self) -> np.ndarray | None:
        return self.K


class PinholeRadialIntrinsic(PinholeIntrinsic):
    """Pinhole camera with radial distortion k1, k2, k3."""

    def __init__(
        self,
        width: int,
        height: int,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        k1: float = 0.0,
        k2: float = 0.0,
        k3: float = 0.0,
    ) -> None:
        super().__init__(width, height, fx, fy, cx, cy)
        self.k1, self.k2, self.k3 = k1, k2, k3

    def dist_coeffs(self) -> np.ndarray:
        # opencv order k1, k2, p1, p2, k3
        return np.array([self.k1, self.k2, 0.0, 0.0, self.k3])

    def has_distortion(self) -> bool:
        return bool(np.any(self.dist_coeffs() != 0))

    def undistort_pixels(self, points_2d: np.ndarray) -> np.ndarray:
        pts = np.asarray(points_2d, dtype=np.float64).reshape(-1, 1, 2)
        if len(pts) == 0:
            return np.empty((0, 2))
        undist = cv2.undistortPoints(pts, self.K, self.dist_coeffs(), P=self.K)
        return undist.reshape(-1, 2)


class PinholeBrownIntrinsic(PinholeRadialIntrinsic):
    """Pinhole camera with radial k1, k2, k3 and tangential t1, t2 distortion."""

    def __init__(
        self,
        width: int,
        height: int,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        k1: float = 0.0,
        k2: float = 0.0,
        k3: float = 0.0,
        t1: float = 0.0,
        t2: float = 0.0,
    ) -> None:
        super().__init__(width, height, fx, fy, cx, cy, k1, k2, k3)
        self.t1, self.t2 = t1, t2

    def dist_coeffs(self) -> np.ndarray:
        return np.array([self.k1, self.k2, self.t1, self.t2, self.k3])


class FisheyeIntrinsic(PinholeIntrinsic):
    """Pinhole camera with the equidistant fisheye model k1..k4."""

    def __init__(
        self,
        width: int,
        height: int,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        k1: float = 0.0,
        k2: float = 0.0,
        k3: float = 0.0,
        k4: float = 0.0,
    ) -> None:
        super().__init__(width, height, fx, fy, cx, cy)
        self.D = np.array([k1, k2, k3, k4], dtype=np.float64)

    def dist_coeffs(self) -> np.ndarray:
        return self.D

    def has_distortion(self) -> bool:
        # the equidistant projection differs from a pinhole even with zero coefficients
        return True

    def undistort_pixels(self, points_2d: np.ndarray) -> np.ndarray:
        pts = np.asarray(points_2d, dtype=np.float64).reshape(-1, 1, 2)
        if len(pts) == 0:
            return np.empty((0, 2))
        undist = cv2.fisheye.undistortPoints(pts, self.K, self.D, P=self.K)
        return undist.reshape(-1, 2)


class IntrinsicHintKind(Enum):
    """How much the resection solver may learn from the query camera."""

    NO_INTRINSIC = 0
    NO_CALIBRATION_HINT = 1
    PINHOLE = 2


@dataclass(frozen=True)
class IntrinsicHint:
    """Optional intrinsic of a query, resolved once per call."""

    kind: IntrinsicHintKind
    intrinsic: IntrinsicBase | None = None
    K: np.ndarray | None = None

    def correct(self, points_2d: np.ndarray) -> np.ndarray:
        """Undistorted copy of the points, or a plain copy without distortion."""
        if self.intrinsic is not None and self.intrinsic.has_distortion():
            return self.intrinsic.undistort_pixels(points_2d)
        return np.array(points_2d, dtype=np.float64).reshape(-1, 2)


def resolve_intrinsic_hint(
    intrinsic: IntrinsicBase | None, use_calibration_hint: bool = True
) -> IntrinsicHint:
    """
    Classify an optional intrinsic for the resection step.

    Args:
        intrinsic: Query camera model, if known.
        use_calibration_hint: If False, never hand K to the solver.

    Returns:
        The resolved hint.

    """
    if intrinsic is None:
        return IntrinsicHint(IntrinsicHintKind.NO_INTRINSIC)

    K = intrinsic.calibration_hint() if use_calibration_hint else None
    if K is None:
        return IntrinsicHint(IntrinsicHintKind.NO_CALIBRATION_HINT, intrinsic)

    return IntrinsicHint(
        IntrinsicHintKind.PINHOLE, intrinsic, np.asarray(K, dtype=np.float64)
    )
