"""Geometric calculations on projection matrices and poses."""

import cv2
import numpy as np
from scipy.linalg import rq
from scipy.optimize import least_squares


def krt_from_p(P: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Decompose a projection matrix P = K [R | t].

    Args:
        P: 3x4 projection matrix, known up to scale.

    Returns:
        K: 3x3 upper triangular calibration with positive diagonal, K[2, 2] = 1
        R: 3x3 rotation matrix with det(R) = +1
        t: (3,) translation vector

    """
    P = np.asarray(P, dtype=np.float64).reshape(3, 4)

    # P is defined up to scale, pick the sign that gives a proper rotation
    if np.linalg.det(P[:, :3]) < 0:
        P = -P

    K, R = rq(P[:, :3])

    # force positive focal lengths, S @ S = I keeps K @ R unchanged
    signs = np.sign(np.diag(K))
    signs[signs == 0] = 1.0
    S = np.diag(signs)
    K = K @ S
    R = S @ R

    t = np.linalg.solve(K, P[:, 3])
    K = K / K[2, 2]

    return K, R, t


def camera_center(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Camera center C = -R^T t in world coordinates."""
    return -np.asarray(R).T @ np.asarray(t).reshape(3)


def projection_matrix(K: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """P = K [R | t]."""
    return K @ np.hstack((R, np.asarray(t).reshape(3, 1)))


def project_with_p(P: np.ndarray, points_3d: np.ndarray) -> np.ndarray:
    """
    Project 3D points with a 3x4 projection matrix.

    Args:
        P: 3x4 projection matrix
        points_3d: (N, 3) 3D points in world frame

    Returns:
        points_2d: (N, 2) projected 2D points

    """
    X_h = np.hstack((points_3d, np.ones((len(points_3d), 1))))
    x = (P @ X_h.T).T

    # perspective division
    z = x[:, 2]
    z = np.where(np.abs(z) < 1e-12, 1e-12, z)  # avoid zero div
    return x[:, :2] / z[:, None]


def compute_reprojection_error(
    P: np.ndarray,
    points_3d: np.ndarray,
    points_2d: np.ndarray,
) -> np.ndarray:
    """
    Compute reprojection error for each 3D-2D correspondence.

    Args:
        P: 3x4 projection matrix
        points_3d: (N, 3) 3D points
        points_2d: (N, 2) 2D points

    Returns:
        errors: (N,) array of reprojection errors in pixels

    """
    if len(points_3d) == 0:
        return np.empty(0)
    projected = project_with_p(P, points_3d)
    return np.linalg.norm(projected - points_2d, axis=1)


def refine_pose_nonlinear(
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    R_init: np.ndarray,
    t_init: np.ndarray,
    K: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Refine pose by minimizing reprojection error using nonlinear optimization.

    Args:
        points_3d: (N, 3) inlier 3D points
        points_2d: (N, 2) inlier 2D points
        R_init: 3x3 initial rotation
        t_init: (3,) initial translation
        K: 3x3 camera matrix

    Returns:
        R_refined: 3x3 refined rotation
        t_refined: (3,) refined translation

    """
    # angle axis rotation represenation
    r_vec_init, _ = cv2.Rodrigues(np.asarray(R_init, dtype=np.float64))
    x0 = np.hstack((r_vec_init.ravel(), np.asarray(t_init, dtype=np.float64).ravel()))

    def residuals(x: np.ndarray) -> np.ndarray:
        R_curr, _ = cv2.Rodrigues(x[:3])
        P = projection_matrix(K, R_curr, x[3:])
        return (project_with_p(P, points_3d) - points_2d).ravel()

    # soft_l1 damps what RANSAC let through
    res = least_squares(residuals, x0, loss="soft_l1", f_scale=1.0)

    R_final, _ = cv2.Rodrigues(res.x[:3])
    return R_final, res.x[3:].copy()
