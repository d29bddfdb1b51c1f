import logging

import numpy as np

from localization.matching import MatcherType, RegionsMatcher
from scene.regions import Regions
from scene.scene import SceneSnapshot

logger = logging.getLogger(__name__)


class CorrespondenceDatabase:
    """
    One descriptor per landmark observation, linked to the landmark id.

    Row i of `regions` was copied from an observation of landmark
    `index_to_landmark_id[i]`. Both arrays are read-only once built.
    """

    def __init__(
        self,
        regions: Regions,
        index_to_landmark_id: np.ndarray,
        matcher_type: MatcherType | None = None,
    ) -> None:
        if len(regions) != len(index_to_landmark_id):
            msg = "Descriptor storage and landmark index map differ in length"
            raise ValueError(msg)

        self.regions = regions
        self.index_to_landmark_id = np.asarray(index_to_landmark_id, dtype=np.int64)
        self.index_to_landmark_id.setflags(write=False)
        self.matcher = RegionsMatcher(regions, matcher_type)

    def __len__(self) -> int:
        return len(self.index_to_landmark_id)

    @classmethod
    def build(
        cls,
        scene: SceneSnapshot,
        regions_per_view: dict[int, Regions],
        matcher_type: MatcherType | None = None,
    ) -> "CorrespondenceDatabase":
        """
        Index every defined landmark observation of a scene.

        Args:
            scene: Reconstruction providing landmarks and poses.
            regions_per_view: Mapping view_id -> Regions of that view.
            matcher_type: Nearest neighbor backend, None for the default.

        Returns:
            The built database.

        Raises:
            ValueError: If there is nothing to index or an observation
                references a missing view or feature.

        """
        if not regions_per_view:
            msg = "No per-view regions supplied"
            raise ValueError(msg)

        if not scene.poses or not scene.landmarks:
            msg = "The input scene has no 3D content to match with"
            raise ValueError(msg)

        # all views share one descriptor type, take it from any of them
        regions_type = next(iter(regions_per_view.values()))
        accumulator = regions_type.empty_clone()
        index_to_landmark_id = []

        for landmark_id, landmark in scene.landmarks.items():
            for view_id, observation in landmark.observations.items():
                if not observation.is_defined:
                    continue

                view_regions = regions_per_view.get(view_id)
                if view_regions is None:
                    msg = f"Landmark {landmark_id} is observed in view {view_id} without regions"
                    raise ValueError(msg)

                try:
                    view_regions.copy_region(observation.feature_index, accumulator)
                except IndexError as e:
                    msg = f"Landmark {landmark_id}: invalid observation in view {view_id}"
                    raise ValueError(msg) from e
                index_to_landmark_id.append(landmark_id)

        logger.info("Init retrieval database ...")
        database = cls(accumulator.freeze(), np.array(index_to_landmark_id), matcher_type)
        logger.info(
            "Retrieval database initialized: #landmark: %d, #descriptor initialized: %d",
            len(scene.landmarks),
            len(database),
        )
        return database

    def landmark_ids_for(self, indices: np.ndarray) -> np.ndarray:
        """Landmark ids of the given database rows."""
        return self.index_to_landmark_id[np.asarray(indices, dtype=int)]

    def match(self, ratio: float, query: Regions) -> tuple[bool, np.ndarray]:
        """Ratio test matching, see RegionsMatcher.match."""
        return self.matcher.match(ratio, query)
