import numpy as np
import pytest

from localization.matching import MatcherType, RegionsMatcher, default_matcher_type
from scene.regions import Regions


def _regions(descriptors: np.ndarray) -> Regions:
    positions = np.arange(2 * len(descriptors), dtype=np.float64).reshape(-1, 2)
    return Regions(positions=positions, descriptors=descriptors)


@pytest.fixture
def database() -> Regions:
    rng = np.random.default_rng(3)
    return _regions(rng.normal(size=(50, 16)).astype(np.float32))


@pytest.mark.parametrize("matcher_type", [MatcherType.BRUTE_FORCE_L2, MatcherType.ANN_L2])
def test_exact_copies_are_matched_to_their_source(database: Regions, matcher_type) -> None:
    matcher = RegionsMatcher(database, matcher_type)
    query = _regions(database.descriptors[[4, 17, 30]].copy())

    success, matches = matcher.match(0.8, query)

    assert success
    assert matches.tolist() == [[4, 0], [17, 1], [30, 2]]


def test_each_query_descriptor_is_matched_at_most_once(database: Regions) -> None:
    rng = np.random.default_rng(4)
    matcher = RegionsMatcher(database)
    # half near copies, half random
    near = database.descriptors[:20] + 0.01 * rng.normal(size=(20, 16)).astype(np.float32)
    query = _regions(np.vstack((near, rng.normal(size=(20, 16)).astype(np.float32))))

    success, matches = matcher.match(0.8, query)

    assert success
    assert len(np.unique(matches[:, 1])) == len(matches)
    assert set(range(20)) <= set(matches[:, 1].tolist())


def test_ambiguous_matches_are_rejected() -> None:
    base = np.zeros((2, 4), dtype=np.float32)
    base[0, 0] = 1.0
    base[1, 0] = -1.0
    matcher = RegionsMatcher(_regions(base))

    # equidistant from both database entries
    success, matches = matcher.match(0.8, _regions(np.zeros((1, 4), dtype=np.float32)))

    assert success
    assert matches.shape == (0, 2)


def test_single_entry_database_accepts_its_nearest_neighbor() -> None:
    matcher = RegionsMatcher(_regions(np.ones((1, 4), dtype=np.float32)))

    success, matches = matcher.match(0.8, _regions(np.zeros((3, 4), dtype=np.float32)))

    assert success
    assert matches.tolist() == [[0, 0], [0, 1], [0, 2]]


def test_empty_query_fails(database: Regions) -> None:
    matcher = RegionsMatcher(database)

    success, matches = matcher.match(0.8, _regions(np.empty((0, 16), dtype=np.float32)))

    assert not success
    assert matches.shape == (0, 2)


def test_descriptor_size_mismatch_fails(database: Regions) -> None:
    matcher = RegionsMatcher(database)

    success, _ = matcher.match(0.8, _regions(np.zeros((3, 8), dtype=np.float32)))

    assert not success


def test_descriptor_type_mismatch_fails(database: Regions) -> None:
    rng = np.random.default_rng(6)
    binary = rng.integers(0, 256, size=(20, 16), dtype=np.uint8)

    # real valued query against binary database
    success, matches = RegionsMatcher(_regions(binary)).match(
        0.8, _regions(binary[:5].astype(np.float32))
    )
    assert not success
    assert matches.shape == (0, 2)

    # binary query against real valued database
    success, matches = RegionsMatcher(database).match(0.8, _regions(binary[:5]))
    assert not success
    assert matches.shape == (0, 2)


def test_binary_descriptors_use_hamming_distance() -> None:
    rng = np.random.default_rng(5)
    descriptors = rng.integers(0, 256, size=(30, 32), dtype=np.uint8)
    matcher = RegionsMatcher(_regions(descriptors))

    query = descriptors[[2, 9]].copy()
    query[0, 0] ^= 1  # one flipped bit
    success, matches = matcher.match(0.8, _regions(query))

    assert default_matcher_type(np.uint8) == MatcherType.BRUTE_FORCE_HAMMING
    assert matcher.matcher_type == MatcherType.BRUTE_FORCE_HAMMING
    assert success
    assert matches.tolist() == [[2, 0], [9, 1]]
