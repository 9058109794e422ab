"""Unit tests for ProfileCollection aggregates, offsets and segments."""

from __future__ import annotations

import numpy as np
import pytest

from nucleusprofile.core.collection import ProfileCollection
from nucleusprofile.core.exceptions import MissingLandmarkError, ProfileError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.profile import Profile, ProfileType
from nucleusprofile.core.segments import SegmentRing

RP = Landmark.REFERENCE_POINT
OP = Landmark.ORIENTATION_POINT


@pytest.fixture
def collection() -> ProfileCollection:
    c = ProfileCollection(ProfileType.ANGLE)
    c.create_aggregate([Profile(np.arange(10, dtype=float) + k) for k in range(3)], 10)
    return c


def test_reference_point_defaults_to_zero() -> None:
    c = ProfileCollection(ProfileType.RADIUS)
    assert c.landmark_index(RP) == 0
    assert not c.has_aggregate()
    with pytest.raises(ProfileError):
        _ = c.length


def test_median_and_quartiles(collection: ProfileCollection) -> None:
    assert collection.individual_count == 3
    assert collection.median().to_list() == [float(i + 1) for i in range(10)]
    assert collection.quartile(25)[0] == pytest.approx(0.5)
    assert collection.quartile(75)[0] == pytest.approx(1.5)
    with pytest.raises(ProfileError):
        collection.quartile(120)


def test_median_anchored_at_another_landmark(collection: ProfileCollection) -> None:
    collection.set_landmark(OP, 13)
    assert collection.landmark_index(OP) == 3
    assert collection.median(OP)[0] == 4.0


def test_missing_offset_raises(collection: ProfileCollection) -> None:
    with pytest.raises(MissingLandmarkError):
        collection.median(Landmark.TOP_VERTICAL)


def test_reference_point_cannot_be_removed(collection: ProfileCollection) -> None:
    collection.remove_landmark(RP)
    assert collection.has_landmark(RP)


def test_rebuilding_at_a_new_length_rescales_offsets_and_segments(
    collection: ProfileCollection,
) -> None:
    collection.set_landmark(OP, 3)
    collection.set_segments(SegmentRing.from_starts([0, 5], 10, ["a", "b"]))
    collection.create_aggregate([Profile(np.ones(10))], 20)
    assert collection.length == 20
    assert collection.landmark_index(OP) == 6
    assert collection.segments.starts == [0, 10]
    assert collection.segment_ids == ["a", "b"]


def test_empty_aggregate_rejected() -> None:
    with pytest.raises(ProfileError):
        ProfileCollection(ProfileType.ANGLE).create_aggregate([], 10)


def test_segments_carried_on_median(collection: ProfileCollection) -> None:
    collection.set_segments(SegmentRing.from_starts([0, 4], 10, ["a", "b"]))
    median = collection.median()
    assert median.segments.ids == ["a", "b"]
    assert median.segment_profile("b").to_list() == [float(i + 1) for i in range(4, 10)]
