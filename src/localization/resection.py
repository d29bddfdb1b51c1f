"""Robust camera resection from 2D-3D correspondences."""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field

import cv2
import numpy as np

from localization.geometry import compute_reprojection_error, projection_matrix

logger = logging.getLogger(__name__)

PNP_MIN_SAMPLE = 4
DLT_MIN_SAMPLE = 6

# consensus refinement: threshold narrows to a multiple of the median inlier
# residual, bounded below by MIN_THRESHOLD pixels
ADAPTIVE_FACTOR = 4.0
MIN_THRESHOLD = 0.1
MAX_REFINE_ROUNDS = 10


@dataclass
class ResectionOutput:
    success: bool
    P: np.ndarray | None = None  # 3x4 projection matrix
    inliers: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=int))
    error_max: float = float("inf")  # largest inlier reprojection error (px)


def robust_resection(
    image_size: tuple[int, int],
    points_2d: np.ndarray,
    points_3d: np.ndarray,
    K: np.ndarray | None = None,
    max_iterations: int = 4096,
    confidence: float = 0.999,
    threshold: float = 4.0,
    seed: int | None = 0,
) -> ResectionOutput:
    """
    Estimate a projection matrix that explains as many correspondences as possible.

    With a calibration matrix the pose is found with PnP-RANSAC, otherwise
    the full 3x4 matrix is estimated with a 6 point DLT inside RANSAC.

    Args:
        image_size: (width, height) of the query image
        points_2d: (N, 2) image points, already distortion free
        points_3d: (N, 3) world points
        K: Optional 3x3 calibration matrix
        max_iterations: RANSAC iteration cap
        confidence: Probability of drawing an outlier free sample
        threshold: Inlier reprojection threshold in pixels
        seed: Seed of the DLT sampler

    Returns:
        ResectionOutput, with success False if no model is supported by a
        minimal sample of inliers.

    """
    points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
    points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)

    if K is not None:
        return _resection_pnp(
            points_2d, points_3d, K, max_iterations, confidence, threshold
        )
    return _resection_dlt(
        image_size, points_2d, points_3d, max_iterations, confidence, threshold, seed
    )


def _score(
    P: np.ndarray, points_2d: np.ndarray, points_3d: np.ndarray, threshold: float
) -> tuple[np.ndarray, np.ndarray]:
    errors = compute_reprojection_error(P, points_3d, points_2d)
    inliers = np.flatnonzero((errors <= threshold) & in_front_of_camera(P, points_3d))
    return inliers, errors


def _refine_consensus(
    P: np.ndarray,
    points_2d: np.ndarray,
    points_3d: np.ndarray,
    threshold: float,
    min_sample: int,
    refit: Callable[[np.ndarray], np.ndarray],
) -> ResectionOutput:
    """
    Alternate inlier scoring and refitting until the inlier set is stable.

    After every refit the threshold shrinks to ADAPTIVE_FACTOR times the
    median inlier residual, clipped to [MIN_THRESHOLD, previous threshold].
    The returned P is always fitted on the returned inliers, so points
    dropped while narrowing no longer pull the estimate.

    Args:
        P: Initial 3x4 projection matrix from the sampling stage
        points_2d: (N, 2) image points
        points_3d: (N, 3) world points
        threshold: Initial inlier threshold in pixels
        min_sample: Minimal number of inliers for a valid model
        refit: Maps inlier indices to a projection matrix fitted on them

    Returns:
        ResectionOutput

    """
    inliers, errors = _score(P, points_2d, points_3d, threshold)

    for round_index in range(MAX_REFINE_ROUNDS):
        if len(inliers) < min_sample:
            return ResectionOutput(False, inliers=inliers)

        P = refit(inliers)
        errors = compute_reprojection_error(P, points_3d, points_2d)
        threshold = float(
            np.clip(ADAPTIVE_FACTOR * np.median(errors[inliers]), MIN_THRESHOLD, threshold)
        )
        new_inliers, errors = _score(P, points_2d, points_3d, threshold)
        if np.array_equal(new_inliers, inliers):
            break
        inliers = new_inliers
    else:
        # not converged, the last P was fitted on the previous set
        if len(inliers) < min_sample:
            return ResectionOutput(False, inliers=inliers)
        P = refit(inliers)
        inliers, errors = _score(P, points_2d, points_3d, threshold)

    logger.debug(
        "Consensus refinement: %d rounds, %d inliers, threshold %.3f",
        round_index + 1,
        len(inliers),
        threshold,
    )

    if len(inliers) < min_sample:
        return ResectionOutput(False, inliers=inliers)
    return ResectionOutput(True, P, inliers, float(np.max(errors[inliers])))


def _resection_pnp(
    points_2d: np.ndarray,
    points_3d: np.ndarray,
    K: np.ndarray,
    max_iterations: int,
    confidence: float,
    threshold: float,
) -> ResectionOutput:
    if len(points_3d) < PNP_MIN_SAMPLE:
        return ResectionOutput(False)

    # points are undistorted upstream
    success, rvec_est, tvec_est, inliers = cv2.solvePnPRansac(
        points_3d,
        points_2d,
        K,
        distCoeffs=None,
        iterationsCount=max_iterations,
        reprojectionError=threshold,
        confidence=confidence,
        flags=cv2.SOLVEPNP_EPNP,
    )

    if not success or inliers is None or len(inliers) < PNP_MIN_SAMPLE:
        return ResectionOutput(False)

    def refit(inl: np.ndarray) -> np.ndarray:
        # EPnP is linear, polish on the current consensus set
        nonlocal rvec_est, tvec_est
        rvec_est, tvec_est = cv2.solvePnPRefineLM(
            points_3d[inl], points_2d[inl], K, None, rvec_est, tvec_est
        )
        R_est, _ = cv2.Rodrigues(rvec_est)
        return projection_matrix(K, R_est, tvec_est.ravel())

    R_est, _ = cv2.Rodrigues(rvec_est)
    P = projection_matrix(K, R_est, tvec_est.ravel())
    return _refine_consensus(P, points_2d, points_3d, threshold, PNP_MIN_SAMPLE, refit)


def in_front_of_camera(P: np.ndarray, points_3d: np.ndarray) -> np.ndarray:
    """Cheirality mask (N,) valid for any sign of the projective scale of P."""
    X_h = np.hstack((points_3d, np.ones((len(points_3d), 1))))
    depth = (P @ X_h.T)[2] * np.sign(np.linalg.det(P[:, :3]))
    return depth > 0


def _normalize_3d(points_3d: np.ndarray) -> np.ndarray:
    """Similarity moving the centroid to the origin with mean distance sqrt(3)."""
    centroid = points_3d.mean(axis=0)
    mean_dist = np.mean(np.linalg.norm(points_3d - centroid, axis=1))
    s = math.sqrt(3) / mean_dist if mean_dist > 1e-12 else 1.0
    T = np.diag([s, s, s, 1.0])
    T[:3, 3] = -s * centroid
    return T


def _normalize_2d(image_size: tuple[int, int]) -> np.ndarray:
    """Map the image rectangle to roughly [-1, 1]^2."""
    w, h = float(image_size[0]), float(image_size[1])
    s = 2.0 / max(w, h, 1.0)
    return np.array([[s, 0, -s * w / 2], [0, s, -s * h / 2], [0, 0, 1]])


def dlt_projection(points_2d: np.ndarray, points_3d: np.ndarray) -> np.ndarray:
    """
    Linear estimate of P from at least 6 correspondences.

    Args:
        points_2d: (N, 2) normalized image points
        points_3d: (N, 3) normalized world points

    Returns:
        P: 3x4 projection matrix with unit Frobenius norm

    """
    n = len(points_3d)
    X = np.hstack((points_3d, np.ones((n, 1))))
    u = points_2d[:, 0:1]
    v = points_2d[:, 1:2]

    A = np.zeros((2 * n, 12))
    A[0::2, 4:8] = -X
    A[0::2, 8:12] = v * X
    A[1::2, 0:4] = X
    A[1::2, 8:12] = -u * X

    _, _, Vt = np.linalg.svd(A)
    return Vt[-1].reshape(3, 4)


def ransac_iterations(inlier_ratio: float, sample_size: int, confidence: float) -> float:
    """Number of draws needed to hit one clean sample with the given confidence."""
    p_clean = inlier_ratio**sample_size
    if p_clean <= 0.0:
        return float("inf")
    if p_clean >= 1.0:
        return 1.0
    return math.log(1.0 - confidence) / math.log(1.0 - p_clean)


def _resection_dlt(
    image_size: tuple[int, int],
    points_2d: np.ndarray,
    points_3d: np.ndarray,
    max_iterations: int,
    confidence: float,
    threshold: float,
    seed: int | None,
) -> ResectionOutput:
    n = len(points_3d)
    if n < DLT_MIN_SAMPLE:
        return ResectionOutput(False)

    T2 = _normalize_2d(image_size)
    T3 = _normalize_3d(points_3d)
    T2_inv = np.linalg.inv(T2)
    pts2_n = (T2 @ np.hstack((points_2d, np.ones((n, 1)))).T).T[:, :2]
    pts3_n = (T3 @ np.hstack((points_3d, np.ones((n, 1)))).T).T[:, :3]

    def denormalize(P_n: np.ndarray) -> np.ndarray:
        return T2_inv @ P_n @ T3

    def refit(inl: np.ndarray) -> np.ndarray:
        # least squares DLT on the current consensus set
        return denormalize(dlt_projection(pts2_n[inl], pts3_n[inl]))

    rng = np.random.default_rng(seed)
    best_P = None
    best_inliers = np.empty(0, dtype=int)
    needed = float(max_iterations)
    iteration = 0

    while iteration < min(max_iterations, needed):
        iteration += 1
        sample = rng.choice(n, DLT_MIN_SAMPLE, replace=False)
        P = refit(sample)
        if not np.all(np.isfinite(P)):
            continue

        inliers, _ = _score(P, points_2d, points_3d, threshold)
        if len(inliers) > len(best_inliers):
            best_P = P
            best_inliers = inliers
            needed = ransac_iterations(len(inliers) / n, DLT_MIN_SAMPLE, confidence)

    logger.debug("DLT RANSAC: %d iterations, %d inliers", iteration, len(best_inliers))

    if best_P is None or len(best_inliers) < DLT_MIN_SAMPLE:
        return ResectionOutput(False, inliers=best_inliers)

    return _refine_consensus(
        best_P, points_2d, points_3d, threshold, DLT_MIN_SAMPLE, refit
    )
