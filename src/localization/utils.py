from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
from scipy.spatial.transform import Rotation as R_scipy

from localization.intrinsics import camera_matrix
from scene.regions import Regions
from scene.scene import Landmark, Observation, Pose, SceneSnapshot


def look_at(center: np.ndarray, target: np.ndarray, up: np.ndarray | None = None) -> Pose:
    """
    Pose of a camera at `center` looking at `target`.

    Camera convention: forward +Z, right +X, down +Y.

    """
    if up is None:
        up = np.array([0.0, 0.0, 1.0])
    center = np.asarray(center, dtype=np.float64)
    z = np.asarray(target, dtype=np.float64) - center
    z /= np.linalg.norm(z)
    x = np.cross(-up, z)
    x /= np.linalg.norm(x)
    y = np.cross(z, x)
    return Pose(R=np.stack([x, y, z]), center=center)


def project_pose(
    pose: Pose, K: np.ndarray, points_3d: np.ndarray, dist_coeffs: np.ndarray | None = None
) -> np.ndarray:
    """Project (N, 3) world points into a camera, optionally with lens distortion."""
    rvec, _ = cv2.Rodrigues(pose.R)
    projected, _ = cv2.projectPoints(
        np.asarray(points_3d, dtype=np.float64).reshape(-1, 1, 3),
        rvec,
        pose.translation.reshape(3, 1),
        K,
        dist_coeffs,
    )
    return projected.reshape(-1, 2)


@dataclass
class SyntheticScene:
    """A reconstruction plus one query image with known ground truth."""

    scene: SceneSnapshot
    regions_per_view: dict[int, Regions]
    query_regions: Regions
    query_pose: Pose
    K: np.ndarray
    image_size: tuple[int, int]
    query_landmark_ids: np.ndarray  # (N,) landmark the query feature really shows
    corrupted: np.ndarray  # (N,) True where the descriptor belongs to another landmark


def make_synthetic_scene(
    num_landmarks: int = 60,
    num_views: int = 3,
    descriptor_size: int = 32,
    image_size: tuple[int, int] = (640, 480),
    focal: float = 500.0,
    descriptor_noise: float = 0.05,
    num_distractors: int = 10,
    outlier_ratio: float = 0.0,
    dist_coeffs: np.ndarray | None = None,
    seed: int = 0,
) -> SyntheticScene:
    """
    Generate landmarks seen by a ring of cameras and a query camera.

    Every landmark is observed in every view. Query descriptors are copies of
    the view 0 descriptors, so the best database match is exact. A fraction
    `outlier_ratio` of the query features gets the descriptor of a different
    landmark, which yields a wrong 3D association after matching.

    Args:
        num_landmarks: Number of 3D points
        num_views: Number of registered views
        descriptor_size: Descriptor dimension (float32)
        image_size: (width, height)
        focal: Focal length in pixels
        descriptor_noise: Per-view descriptor perturbation
        num_distractors: Unobserved random features added to each view
        outlier_ratio: Fraction of query features associated to a wrong landmark
        dist_coeffs: OpenCV distortion applied to the query projections
        seed: Random seed

    Returns:
        The generated scene.

    """
    rng = np.random.default_rng(seed)
    w, h = image_size
    K = camera_matrix(focal, focal, w / 2, h / 2)

    points_3d = rng.uniform([-2.0, -2.0, -1.0], [2.0, 2.0, 1.0], size=(num_landmarks, 3))
    base_descriptors = rng.normal(size=(num_landmarks, descriptor_size)).astype(np.float32)
    landmark_ids = np.arange(100, 100 + num_landmarks)

    landmarks = {
        int(lid): Landmark(landmark_id=int(lid), X=points_3d[i])
        for i, lid in enumerate(landmark_ids)
    }
    poses = {}
    regions_per_view = {}

    for view_id in range(num_views):
        angle = 2 * np.pi * view_id / num_views
        center = np.array([8.0 * np.cos(angle), 8.0 * np.sin(angle), 2.0])
        pose = look_at(center, np.zeros(3))
        poses[view_id] = pose

        positions = project_pose(pose, K, points_3d)
        descriptors = base_descriptors + descriptor_noise * rng.normal(
            size=base_descriptors.shape
        ).astype(np.float32)

        # shuffle so feature index != landmark index
        order = rng.permutation(num_landmarks)
        feature_of_landmark = np.empty(num_landmarks, dtype=int)
        feature_of_landmark[order] = np.arange(num_landmarks)

        distractor_pos = rng.uniform([0, 0], [w, h], size=(num_distractors, 2))
        distractor_desc = rng.normal(size=(num_distractors, descriptor_size)).astype(
            np.float32
        )
        regions_per_view[view_id] = Regions(
            positions=np.vstack((positions[order], distractor_pos)),
            descriptors=np.vstack((descriptors[order], distractor_desc)),
        )

        for i, lid in enumerate(landmark_ids):
            landmarks[int(lid)].observations[view_id] = Observation(
                view_id=view_id, feature_index=int(feature_of_landmark[i])
            )

    query_pose = look_at(np.array([6.0, -5.0, 3.0]), np.array([0.2, -0.1, 0.0]))
    query_positions = project_pose(query_pose, K, points_3d, dist_coeffs)
    view0 = regions_per_view[0]
    query_descriptors = np.array(
        [
            view0.descriptors[landmarks[int(lid)].observations[0].feature_index]
            for lid in landmark_ids
        ]
    )

    corrupted = np.zeros(num_landmarks, dtype=bool)
    num_outliers = int(round(outlier_ratio * num_landmarks))
    if num_outliers > 0:
        bad = rng.choice(num_landmarks, num_outliers, replace=False)
        # cyclic shift guarantees a different landmark for every corrupted feature
        shifted = np.roll(bad, 1) if num_outliers > 1 else (bad + 1) % num_landmarks
        query_descriptors[bad] = query_descriptors[shifted]
        corrupted[bad] = True

    return SyntheticScene(
        scene=SceneSnapshot(landmarks=landmarks, poses=poses),
        regions_per_view=regions_per_view,
        query_regions=Regions(positions=query_positions, descriptors=query_descriptors),
        query_pose=query_pose,
        K=K,
        image_size=image_size,
        query_landmark_ids=landmark_ids.copy(),
        corrupted=corrupted,
    )


def save_poses(poses: dict[int, Pose], filename: str | Path) -> None:
    """
    Save camera poses in TUM format (id tx ty tz qx qy qz qw).

    The translation is the camera center and the quaternion the camera to
    world rotation.

    Args:
        poses: Mapping image id -> Pose
        filename: Output filename

    """
    with Path(filename).open("w") as f:
        for image_id, pose in poses.items():
            c = pose.center.flatten()
            # rotation matrix to quaternion
            quat = R_scipy.from_matrix(pose.R.T).as_quat()

            f.write(
                f"{image_id} {c[0]:.6f} {c[1]:.6f} {c[2]:.6f} "
                f"{quat[0]:.6f} {quat[1]:.6f} {quat[2]:.6f} {quat[3]:.6f}\n"
            )


def load_poses(filename: str | Path) -> dict[int, Pose]:
    """
    Load camera poses written by save_poses.

    Args:
        filename: Input filename

    Returns:
        poses: Mapping image id -> Pose

    """
    poses = {}
    data = np.loadtxt(filename, ndmin=2)
    if data.size == 0:
        return poses

    for row in data:
        quat = row[4:8]  # x,y,z,w
        R_cw = R_scipy.from_quat(quat).as_matrix()
        poses[int(row[0])] = Pose(R=R_cw.T, center=row[1:4].copy())
    return poses


def save_scene_npz(scene: SceneSnapshot, filename: str | Path) -> None:
    """Store landmarks, observations and poses as flat arrays."""
    landmark_ids = np.array(list(scene.landmarks.keys()), dtype=np.int64)
    X = np.array([lm.X for lm in scene.landmarks.values()], dtype=np.float64).reshape(-1, 3)
    observations = np.array(
        [
            (lid, obs.view_id, obs.feature_index)
            for lid, lm in scene.landmarks.items()
            for obs in lm.observations.values()
        ],
        dtype=np.int64,
    ).reshape(-1, 3)
    view_ids = np.array(list(scene.poses.keys()), dtype=np.int64)
    rotations = np.array([p.R for p in scene.poses.values()]).reshape(-1, 3, 3)
    centers = np.array([p.center for p in scene.poses.values()]).reshape(-1, 3)

    np.savez(
        filename,
        landmark_ids=landmark_ids,
        X=X,
        observations=observations,
        view_ids=view_ids,
        rotations=rotations,
        centers=centers,
    )


def load_scene_npz(filename: str | Path) -> SceneSnapshot:
    """Inverse of save_scene_npz."""
    with np.load(filename) as data:
        arrays = {key: data[key] for key in data.files}

    X = arrays["X"]
    landmarks = {
        int(lid): Landmark(landmark_id=int(lid), X=X[i])
        for i, lid in enumerate(arrays["landmark_ids"])
    }
    for lid, view_id, feature_index in arrays["observations"]:
        landmarks[int(lid)].observations[int(view_id)] = Observation(
            view_id=int(view_id), feature_index=int(feature_index)
        )
    rotations, centers = arrays["rotations"], arrays["centers"]
    poses = {
        int(view_id): Pose(R=rotations[i], center=centers[i])
        for i, view_id in enumerate(arrays["view_ids"])
    }
    return SceneSnapshot(landmarks=landmarks, poses=poses)


def save_regions_npz(regions_per_view: dict[int, Regions], filename: str | Path) -> None:
    """Store regions as positions_<view> / descriptors_<view> arrays."""
    arrays = {}
    for view_id, regions in regions_per_view.items():
        arrays[f"positions_{view_id}"] = regions.positions
        arrays[f"descriptors_{view_id}"] = regions.descriptors
    np.savez(filename, **arrays)


def load_regions_npz(filename: str | Path) -> dict[int, Regions]:
    """Inverse of save_regions_npz."""
    regions_per_view = {}
    with np.load(filename) as data:
        for key in data.files:
            if not key.startswith("positions_"):
                continue
            view_id = int(key.removeprefix("positions_"))
            regions_per_view[view_id] = Regions(
                positions=data[key], descriptors=data[f"descriptors_{view_id}"]
            )
    return regions_per_view
