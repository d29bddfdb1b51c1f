import logging
from enum import Enum

import cv2
import numpy as np

from scene.regions import Regions

logger = logging.getLogger(__name__)

FLANN_INDEX_KDTREE = 1


class MatcherType(Enum):
    """Enum for nearest neighbor search backends."""

    BRUTE_FORCE_L2 = 0
    BRUTE_FORCE_HAMMING = 1
    ANN_L2 = 2


def default_matcher_type(dtype: np.dtype) -> MatcherType:
    """Binary (uint8) descriptors use Hamming distance, everything else L2."""
    if np.dtype(dtype) == np.uint8:
        return MatcherType.BRUTE_FORCE_HAMMING
    return MatcherType.BRUTE_FORCE_L2


class RegionsMatcher:
    """
    Nearest neighbor matcher built once over a fixed descriptor set.

    Queries never modify the matcher, so concurrent read-only use is fine.
    """

    def __init__(self, database: Regions, matcher_type: MatcherType | None = None) -> None:
        """
        Build the search structure.

        Args:
            database: Regions to search in.
            matcher_type: Backend, picked from the descriptor dtype if None.

        """
        self.matcher_type = matcher_type or default_matcher_type(database.dtype)
        self.descriptor_size = database.descriptor_size
        self.dtype = np.dtype(database.dtype)
        self._train = self._prepare(database.descriptors)

        self._flann = None
        # kd-tree needs at least two points to return a second neighbor
        if self.matcher_type == MatcherType.ANN_L2 and len(self._train) > 1:
            index_params = {"algorithm": FLANN_INDEX_KDTREE, "trees": 4}
            search_params = {"checks": 64}
            self._flann = cv2.FlannBasedMatcher(index_params, search_params)
            self._flann.add([np.array(self._train)])
            self._flann.train()

    def __len__(self) -> int:
        return len(self._train)

    def _prepare(self, descriptors: np.ndarray) -> np.ndarray:
        if self.matcher_type == MatcherType.BRUTE_FORCE_HAMMING:
            return np.ascontiguousarray(descriptors, dtype=np.uint8)
        return np.ascontiguousarray(descriptors, dtype=np.float32)

    def _knn(self, query_descriptors: np.ndarray) -> list:
        if self._flann is not None:
            return self._flann.knnMatch(query_descriptors, k=2)

        norm = cv2.NORM_L2
        if self.matcher_type == MatcherType.BRUTE_FORCE_HAMMING:
            norm = cv2.NORM_HAMMING
        matcher = cv2.BFMatcher(norm, crossCheck=False)
        return matcher.knnMatch(query_descriptors, self._train, k=2)

    def match(self, ratio: float, query: Regions) -> tuple[bool, np.ndarray]:
        """
        Match query descriptors against the database with a distance ratio test.

        Args:
            ratio: Accept only if best distance < ratio * second best distance.
            query: Query regions.

        Returns:
            success: False for an empty or incompatible input
            matches: (M, 2) int array of [database_index, query_index] rows,
                at most one row per query index

        """
        empty = np.empty((0, 2), dtype=int)
        if len(self._train) == 0 or len(query) == 0:
            return False, empty

        if query.descriptor_size != self.descriptor_size:
            logger.warning(
                "Query descriptor size %d does not match database size %d",
                query.descriptor_size,
                self.descriptor_size,
            )
            return False, empty

        # binary and real valued descriptors cannot be compared
        if np.dtype(query.dtype).kind != self.dtype.kind:
            logger.warning(
                "Query descriptor type %s does not match database type %s",
                query.dtype,
                self.dtype,
            )
            return False, empty

        knn_matches = self._knn(self._prepare(query.descriptors))

        matches = []
        for candidates in knn_matches:
            if len(candidates) == 0:
                continue
            best = candidates[0]
            if len(candidates) == 1:
                # no second neighbor exists in a single entry database
                if len(self._train) == 1:
                    matches.append((best.trainIdx, best.queryIdx))
                continue
            if best.distance < ratio * candidates[1].distance:
                matches.append((best.trainIdx, best.queryIdx))

        if not matches:
            return True, empty
        return True, np.array(matches, dtype=int)
