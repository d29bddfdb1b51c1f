import numpy as np
import pytest

from localization.database import CorrespondenceDatabase
from localization.matching import MatcherType
from scene.regions import Regions
from scene.scene import Landmark, Observation, Pose, SceneSnapshot


def test_build_indexes_only_defined_observations(tiny_scene) -> None:
    scene, regions_per_view = tiny_scene

    db = CorrespondenceDatabase.build(scene, regions_per_view)

    assert len(db) == 1
    assert db.index_to_landmark_id.tolist() == [42]
    np.testing.assert_array_equal(
        db.regions.descriptors[0], regions_per_view[0].descriptors[3]
    )
    np.testing.assert_array_equal(db.regions.positions[0], regions_per_view[0].positions[3])


def test_every_entry_round_trips_to_its_landmark(synthetic) -> None:
    scene = synthetic.scene
    regions_per_view = synthetic.regions_per_view

    db = CorrespondenceDatabase.build(scene, regions_per_view)

    num_observations = sum(len(lm.observations) for lm in scene.landmarks.values())
    assert len(db) == num_observations

    for i in range(len(db)):
        landmark = scene.landmarks[int(db.index_to_landmark_id[i])]
        assert any(
            np.array_equal(
                regions_per_view[obs.view_id].descriptors[obs.feature_index],
                db.regions.descriptors[i],
            )
            for obs in landmark.observations.values()
            if obs.is_defined
        )


def test_database_is_read_only_after_build(synthetic) -> None:
    db = CorrespondenceDatabase.build(synthetic.scene, synthetic.regions_per_view)

    with pytest.raises(ValueError):
        db.index_to_landmark_id[0] = 7
    with pytest.raises(ValueError):
        db.regions.descriptors[0, 0] = 1.0


def test_build_rejects_missing_regions(tiny_scene) -> None:
    scene, _ = tiny_scene
    with pytest.raises(ValueError, match="No per-view regions"):
        CorrespondenceDatabase.build(scene, {})


@pytest.mark.parametrize("empty", ["poses", "landmarks"])
def test_build_rejects_scene_without_3d_content(tiny_scene, empty: str) -> None:
    scene, regions_per_view = tiny_scene
    if empty == "poses":
        scene = SceneSnapshot(landmarks=scene.landmarks, poses={})
    else:
        scene = SceneSnapshot(landmarks={}, poses=scene.poses)

    with pytest.raises(ValueError, match="no 3D content"):
        CorrespondenceDatabase.build(scene, regions_per_view)


def test_build_rejects_observation_of_unknown_view(tiny_scene) -> None:
    scene, regions_per_view = tiny_scene
    scene.landmarks[42].observations[9] = Observation(view_id=9, feature_index=0)

    with pytest.raises(ValueError, match="view 9"):
        CorrespondenceDatabase.build(scene, regions_per_view)


def test_build_rejects_feature_index_out_of_range(tiny_scene) -> None:
    scene, regions_per_view = tiny_scene
    landmarks = {
        7: Landmark(7, np.zeros(3), {0: Observation(view_id=0, feature_index=5)})
    }

    with pytest.raises(ValueError, match="invalid observation"):
        CorrespondenceDatabase.build(SceneSnapshot(landmarks, scene.poses), regions_per_view)


def test_all_undefined_observations_give_an_empty_database(tiny_scene) -> None:
    _, regions_per_view = tiny_scene
    scene = SceneSnapshot(
        landmarks={1: Landmark(1, np.zeros(3), {0: Observation(view_id=0)})},
        poses={0: Pose()},
    )

    db = CorrespondenceDatabase.build(scene, regions_per_view)

    assert len(db) == 0
    assert db.regions.descriptors.shape == (0, 8)
    success, _ = db.match(0.8, regions_per_view[0])
    assert not success


def test_matcher_type_defaults_to_descriptor_dtype() -> None:
    rng = np.random.default_rng(0)
    binary = {
        0: Regions(
            positions=rng.uniform(0, 100, size=(4, 2)),
            descriptors=rng.integers(0, 256, size=(4, 32), dtype=np.uint8),
        )
    }
    scene = SceneSnapshot(
        landmarks={
            i: Landmark(i, np.zeros(3), {0: Observation(view_id=0, feature_index=i)})
            for i in range(4)
        },
        poses={0: Pose()},
    )

    db = CorrespondenceDatabase.build(scene, binary)

    assert db.matcher.matcher_type == MatcherType.BRUTE_FORCE_HAMMING
    assert db.regions.dtype == np.uint8
