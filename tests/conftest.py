"""Shared fixtures; `src` is put on sys.path by the pytest configuration."""

import numpy as np
import pytest

from localization.utils import SyntheticScene, make_synthetic_scene
from scene.regions import Regions
from scene.scene import Landmark, Observation, Pose, SceneSnapshot, UNDEFINED_INDEX


@pytest.fixture
def synthetic() -> SyntheticScene:
    return make_synthetic_scene(seed=0)


@pytest.fixture
def tiny_scene() -> tuple[SceneSnapshot, dict[int, Regions]]:
    """One landmark observed in two views, only one observation defined."""
    rng = np.random.default_rng(1)
    regions_per_view = {
        view_id: Regions(
            positions=rng.uniform(0, 100, size=(5, 2)),
            descriptors=rng.normal(size=(5, 8)).astype(np.float32),
        )
        for view_id in (0, 1)
    }
    landmark = Landmark(
        landmark_id=42,
        X=np.array([0.0, 0.0, 5.0]),
        observations={
            0: Observation(view_id=0, feature_index=3),
            1: Observation(view_id=1, feature_index=UNDEFINED_INDEX),
        },
    )
    scene = SceneSnapshot(landmarks={42: landmark}, poses={0: Pose(), 1: Pose()})
    return scene, regions_per_view
