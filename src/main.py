import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import cv2
import numpy as np
import rerun as rr
import tyro

from localization.config import get_config
from localization.features import DescriptorType, extract_regions
from localization.intrinsics import PinholeIntrinsic, PinholeRadialIntrinsic
from localization.localizer import Localizer
from localization.utils import (
    load_regions_npz,
    load_scene_npz,
    make_synthetic_scene,
    save_poses,
)
from scene.localization_data import LocalizationResult
from scene.regions import Regions
from scene.scene import SceneSnapshot


def init_rerun() -> None:
    """Initialize Rerun logging with correct coordinate systems."""
    rr.init("Single Image Localization", spawn=True)

    # forward +Z, right +X, down +Y
    rr.log("world", rr.ViewCoordinates.RIGHT_HAND_Y_DOWN, static=True)


def log_localization_rerun(
    scene: SceneSnapshot,
    result: LocalizationResult,
    K: np.ndarray | None,
    image_size: tuple[int, int],
) -> None:
    landmarks_3d = np.array([lm.X for lm in scene.landmarks.values()]).reshape(-1, 3)
    rr.log("world/landmarks", rr.Points3D(landmarks_3d, colors=[0, 255, 0], radii=0.03))

    # registered views
    for view_id, pose in scene.poses.items():
        rr.log(
            f"world/views/{view_id}",
            rr.Transform3D(translation=pose.center, mat3x3=pose.R.T),
        )

    data = result.resection_data
    if data is None:
        return

    inlier_mask = np.zeros(len(data.pt3d), dtype=bool)
    inlier_mask[data.inliers] = True
    rr.log(
        "world/inliers",
        rr.Points3D(data.pt3d[inlier_mask], colors=[255, 255, 0], radii=0.05),
    )

    if result.pose is None:
        return

    # camera-world for rerun
    rr.log(
        "world/query",
        rr.Transform3D(translation=result.pose.center, mat3x3=result.pose.R.T),
    )
    if K is not None:
        rr.log(
            "world/query/image",
            rr.Pinhole(image_from_camera=K, width=image_size[0], height=image_size[1]),
        )
        rr.log(
            "world/query/image/inliers",
            rr.Points2D(data.pt2d[inlier_mask], colors=[255, 255, 0], radii=2),
        )
        rr.log(
            "world/query/image/outliers",
            rr.Points2D(data.pt2d[~inlier_mask], colors=[255, 0, 0], radii=2),
        )


def load_query_images(
    paths: tuple[Path, ...], descriptor: DescriptorType
) -> dict[int, tuple[tuple[int, int], Regions]]:
    """
    Extract query regions from grayscale images.

    Args:
        paths: Image files, query ids follow their order
        descriptor: Extractor, must match the database descriptors

    Returns:
        queries: Mapping query id -> ((width, height), regions)

    Raises:
        FileNotFoundError: If an image cannot be read.

    """
    queries = {}
    for query_id, path in enumerate(paths):
        img = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if img is None:
            msg = f"Cannot read query image {path}"
            raise FileNotFoundError(msg)
        height, width = img.shape[:2]
        queries[query_id] = ((width, height), extract_regions(img, descriptor))
    return queries


@dataclass
class Args:
    source: Literal["synthetic", "npz"] = "synthetic"
    preset: Literal["default", "fast", "accurate"] = "default"
    # npz input
    scene: Path = Path("data/scene.npz")
    regions: Path = Path("data/regions.npz")
    query: Path = Path("data/query.npz")
    width: int = 640
    height: int = 480
    focal: float | None = None  # pinhole focal in pixels, None if unknown
    # query images replace query.npz when given
    images: tuple[Path, ...] = ()
    descriptor: Literal["sift", "orb"] = "sift"
    # synthetic input
    outlier_ratio: float = 0.3
    k1: float = 0.0
    # output
    output: Path = Path("poses.txt")
    headless: bool = True


def main(args: Args) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    cfg = get_config(args.preset)

    # setup
    print(f"Loading {args.source} input...")
    if args.source == "synthetic":
        dist = np.array([args.k1, 0.0, 0.0, 0.0, 0.0])
        synthetic = make_synthetic_scene(outlier_ratio=args.outlier_ratio, dist_coeffs=dist)
        scene = synthetic.scene
        regions_per_view = synthetic.regions_per_view
        queries = {0: (synthetic.image_size, synthetic.query_regions)}
    else:
        scene = load_scene_npz(args.scene)
        regions_per_view = load_regions_npz(args.regions)
        if args.images:
            descriptor = DescriptorType[args.descriptor.upper()]
            queries = load_query_images(args.images, descriptor)
        else:
            image_size = (args.width, args.height)
            queries = {
                query_id: (image_size, regions)
                for query_id, regions in load_regions_npz(args.query).items()
            }

    localizer = Localizer(cfg)
    if not localizer.init(scene, regions_per_view):
        print("Error: database initialization failed.")
        return

    if not args.headless:
        init_rerun()

    localized = {}
    for query_id, (image_size, query_regions) in queries.items():
        w, h = image_size
        if args.source == "synthetic":
            K = synthetic.K
            intrinsic = PinholeRadialIntrinsic(
                w, h, K[0, 0], K[1, 1], K[0, 2], K[1, 2], k1=args.k1
            )
        elif args.focal is not None:
            intrinsic = PinholeIntrinsic(w, h, args.focal, args.focal, w / 2, h / 2)
            K = intrinsic.K
        else:
            K = None
            intrinsic = None

        result = localizer.localize(image_size, intrinsic, query_regions)
        data = result.resection_data
        num_matches = 0 if data is None else len(data.pt3d)
        num_inliers = 0 if data is None else len(data.inliers)

        print(
            f"Query {query_id:04d} | "
            f"Status: {result.status.name} | "
            f"Matches: {num_matches:04d} | "
            f"Inliers: {num_inliers:04d}"
        )

        if result.success:
            localized[query_id] = result.pose
            c = result.pose.center
            print(f"  center: [{c[0]:.4f} {c[1]:.4f} {c[2]:.4f}]")

        if not args.headless:
            rr.set_time("query", sequence=query_id)
            log_localization_rerun(scene, result, K, image_size)

    if args.source == "synthetic":
        gt = synthetic.query_pose.center
        print(f"  ground truth center: [{gt[0]:.4f} {gt[1]:.4f} {gt[2]:.4f}]")

    save_poses(localized, args.output)
    print(f"Localized {len(localized)} / {len(queries)} queries.")


if __name__ == "__main__":
    args = tyro.cli(Args)
    main(args)
