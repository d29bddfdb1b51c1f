from pathlib import Path

import cv2
import numpy as np
import pytest

from localization.features import DescriptorType
from localization.utils import load_poses, save_regions_npz, save_scene_npz
from main import Args, load_query_images, main


def _textured_image(path: Path) -> None:
    rng = np.random.default_rng(4)
    img = np.zeros((240, 320), dtype=np.uint8)
    for _ in range(40):
        center = (int(rng.integers(20, 300)), int(rng.integers(20, 220)))
        cv2.circle(img, center, int(rng.integers(3, 12)), int(rng.integers(80, 255)), -1)
    assert cv2.imwrite(str(path), img)


@pytest.fixture
def npz_input(synthetic, tmp_path: Path) -> Args:
    save_scene_npz(synthetic.scene, tmp_path / "scene.npz")
    save_regions_npz(synthetic.regions_per_view, tmp_path / "regions.npz")
    save_regions_npz({7: synthetic.query_regions}, tmp_path / "query.npz")
    return Args(
        source="npz",
        scene=tmp_path / "scene.npz",
        regions=tmp_path / "regions.npz",
        query=tmp_path / "query.npz",
        width=synthetic.image_size[0],
        height=synthetic.image_size[1],
        focal=float(synthetic.K[0, 0]),
        output=tmp_path / "poses.txt",
    )


def test_load_query_images_extracts_regions(tmp_path: Path) -> None:
    _textured_image(tmp_path / "query.png")

    queries = load_query_images((tmp_path / "query.png",), DescriptorType.ORB)

    assert list(queries) == [0]
    image_size, regions = queries[0]
    assert image_size == (320, 240)
    assert regions.dtype == np.uint8
    assert regions.descriptors.shape == (len(regions), 32)


def test_load_query_images_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_query_images((tmp_path / "missing.png",), DescriptorType.SIFT)


def test_npz_queries_are_localized_and_saved(synthetic, npz_input: Args) -> None:
    main(npz_input)

    poses = load_poses(npz_input.output)
    assert list(poses) == [7]
    np.testing.assert_allclose(poses[7].center, synthetic.query_pose.center, atol=1e-4)


def test_image_query_with_other_descriptor_type_saves_no_pose(
    npz_input: Args, tmp_path: Path
) -> None:
    _textured_image(tmp_path / "query.png")
    npz_input.images = (tmp_path / "query.png",)
    npz_input.descriptor = "orb"

    # binary ORB descriptors cannot match the float database
    main(npz_input)

    assert load_poses(npz_input.output) == {}
