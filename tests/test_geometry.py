import cv2
import numpy as np
import pytest

from localization.geometry import (
    camera_center,
    compute_reprojection_error,
    krt_from_p,
    projection_matrix,
    refine_pose_nonlinear,
)
from localization.intrinsics import camera_matrix


@pytest.fixture
def camera() -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    K = camera_matrix(700.0, 650.0, 320.0, 240.0)
    R, _ = cv2.Rodrigues(np.array([0.3, -0.2, 0.1]))
    t = np.array([0.5, -0.1, 4.0])
    return K, R, t


@pytest.mark.parametrize("scale", [1.0, 3.5, -0.2])
def test_krt_from_p_recovers_factors_up_to_scale(camera, scale: float) -> None:
    K, R, t = camera

    K_est, R_est, t_est = krt_from_p(scale * projection_matrix(K, R, t))

    np.testing.assert_allclose(K_est, K, atol=1e-8)
    np.testing.assert_allclose(R_est, R, atol=1e-10)
    np.testing.assert_allclose(t_est, t, atol=1e-10)
    assert np.linalg.det(R_est) == pytest.approx(1.0)


def test_krt_from_p_keeps_skew(camera) -> None:
    _, R, t = camera
    K = camera_matrix(700.0, 650.0, 320.0, 240.0, skew=2.5)

    K_est, R_est, _ = krt_from_p(projection_matrix(K, R, t))

    np.testing.assert_allclose(K_est, K, atol=1e-8)
    np.testing.assert_allclose(R_est, R, atol=1e-10)


def test_camera_center_projects_to_origin_of_camera_frame(camera) -> None:
    _, R, t = camera

    C = camera_center(R, t)

    np.testing.assert_allclose(R @ C + t, np.zeros(3), atol=1e-12)


def test_reprojection_error_is_zero_for_exact_projections(camera) -> None:
    K, R, t = camera
    rng = np.random.default_rng(0)
    points_3d = rng.uniform(-1, 1, size=(10, 3))
    P = projection_matrix(K, R, t)
    points_2d, _ = cv2.projectPoints(points_3d, cv2.Rodrigues(R)[0], t, K, None)

    errors = compute_reprojection_error(P, points_3d, points_2d.reshape(-1, 2))

    assert errors.shape == (10,)
    assert np.max(errors) < 1e-9


def test_refine_pose_nonlinear_converges_from_perturbed_pose(camera) -> None:
    K, R, t = camera
    rng = np.random.default_rng(1)
    points_3d = rng.uniform(-1, 1, size=(30, 3))
    points_2d, _ = cv2.projectPoints(points_3d, cv2.Rodrigues(R)[0], t, K, None)

    R_init, _ = cv2.Rodrigues(cv2.Rodrigues(R)[0] + 0.02)
    R_ref, t_ref = refine_pose_nonlinear(
        points_3d, points_2d.reshape(-1, 2), R_init, t + 0.05, K
    )

    np.testing.assert_allclose(R_ref, R, atol=1e-5)
    np.testing.assert_allclose(t_ref, t, atol=1e-5)
