"""Unit tests for circular Profile behaviour."""

from __future__ import annotations

import numpy as np
import pytest

from nucleusprofile.core.exceptions import NoDetectedIndexError, ProfileError
from nucleusprofile.core.profile import Profile, concatenate_profiles


def _random_profile(n: int = 50, seed: int = 3) -> Profile:
    return Profile(np.random.default_rng(seed).normal(180.0, 20.0, n))


# ---------------------------------------------------------------------------
# Construction and indexing
# ---------------------------------------------------------------------------


def test_empty_profile_rejected() -> None:
    with pytest.raises(ProfileError):
        Profile([])


def test_values_are_read_only() -> None:
    p = Profile([1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        p.values[0] = 5.0


def test_indexing_wraps_in_both_directions() -> None:
    p = Profile([10.0, 20.0, 30.0, 40.0])
    assert p[4] == 10.0
    assert p[-1] == 40.0
    assert p.get(9) == 20.0
    assert p.wrap(-5) == 3


def test_index_of_max_respects_mask() -> None:
    p = Profile([5.0, 9.0, 1.0, 7.0])
    mask = np.array([True, False, True, True])
    assert p.index_of_max() == 1
    assert p.index_of_max(mask) == 3
    assert p.index_of_min(mask) == 2


def test_empty_mask_raises_no_detected_index() -> None:
    p = Profile([5.0, 9.0, 1.0])
    with pytest.raises(NoDetectedIndexError):
        p.index_of_min(np.zeros(3, dtype=bool))


# ---------------------------------------------------------------------------
# Circular transforms
# ---------------------------------------------------------------------------


def test_offset_moves_index_k_to_zero() -> None:
    p = Profile([0.0, 1.0, 2.0, 3.0, 4.0])
    assert p.offset(2).to_list() == [2.0, 3.0, 4.0, 0.0, 1.0]


@pytest.mark.parametrize("k", [0, 1, 17, 49, 50, 123, -8])
def test_offset_then_negative_offset_is_identity(k: int) -> None:
    p = _random_profile()
    assert p.offset(k).offset(-k) == p


def test_smoothing_a_constant_profile_is_a_no_op() -> None:
    p = Profile(np.full(30, 170.0))
    assert np.allclose(p.smooth(3).values, 170.0)


def test_smoothing_wraps_around_the_ends() -> None:
    values = np.zeros(20)
    values[0] = 10.0
    smoothed = Profile(values).smooth(1)
    assert smoothed[19] == pytest.approx(10.0 / 3)
    assert smoothed[1] == pytest.approx(10.0 / 3)


def test_local_maxima_need_strictly_falling_neighbours() -> None:
    values = np.full(20, 100.0)
    values[8:13] = [110.0, 120.0, 130.0, 120.0, 110.0]
    mask = Profile(values).local_maxima(2)
    assert np.flatnonzero(mask).tolist() == [10]
    assert not Profile(values).local_maxima(2, threshold=140.0).any()


def test_interpolate_preserves_length_and_constant_values() -> None:
    p = Profile(np.full(40, 3.0))
    assert len(p.interpolate(75)) == 75
    assert np.allclose(p.interpolate(75).values, 3.0)


def test_interpolate_rejects_non_positive_length() -> None:
    with pytest.raises(ProfileError):
        Profile([1.0, 2.0]).interpolate(0)


# ---------------------------------------------------------------------------
# Best fit and comparison
# ---------------------------------------------------------------------------


def test_best_fit_offset_recovers_rotation() -> None:
    p = _random_profile()
    rotated = p.offset(7)
    assert rotated.find_best_fit_offset(p) == len(p) - 7
    assert p.find_best_fit_offset(rotated) == 7


def test_best_fit_offset_respects_range() -> None:
    p = _random_profile()
    rotated = p.offset(7)
    assert p.find_best_fit_offset(rotated, min_offset=10, max_offset=20) in range(10, 20)


def test_best_fit_offset_empty_range_raises() -> None:
    with pytest.raises(ProfileError):
        _random_profile().find_best_fit_offset(_random_profile(), 5, 5)


def test_absolute_square_difference_of_identical_profiles_is_zero() -> None:
    p = _random_profile()
    assert p.absolute_square_difference(p) == 0.0
    assert p.absolute_square_difference(p + 1.0) == pytest.approx(len(p))


# ---------------------------------------------------------------------------
# Helpers and arithmetic
# ---------------------------------------------------------------------------


def test_subregion_is_inclusive_and_wraps() -> None:
    p = Profile(np.arange(10, dtype=float))
    assert p.subregion(8, 1).to_list() == [8.0, 9.0, 0.0, 1.0]
    assert p.subregion(2, 4).to_list() == [2.0, 3.0, 4.0]


def test_fraction_helpers() -> None:
    p = Profile(np.arange(200, dtype=float))
    assert p.index_of_fraction(0.25) == 50
    assert p.fraction_of_index(250) == pytest.approx(0.25)
    with pytest.raises(ProfileError):
        p.index_of_fraction(1.5)


def test_arithmetic_requires_equal_lengths() -> None:
    a = Profile([1.0, 2.0, 3.0])
    assert (a + a).to_list() == [2.0, 4.0, 6.0]
    assert abs(a - 5.0).to_list() == [4.0, 3.0, 2.0]
    with pytest.raises(ProfileError):
        a + Profile([1.0, 2.0])


def test_concatenate_profiles() -> None:
    joined = concatenate_profiles([Profile([1.0]), Profile([2.0, 3.0])])
    assert joined.to_list() == [1.0, 2.0, 3.0]
