"""Unit tests for rules, rule sets and built-in shape classes."""

from __future__ import annotations

import numpy as np
import pytest

from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.profile import Profile, ProfileType
from nucleusprofile.core.rules import (
    SHAPE_CLASSES,
    Rule,
    RuleSet,
    RuleSetCollection,
    RuleType,
    mouse_sperm_rules,
    rule_sets_for_shape,
)


def _all(n: int) -> np.ndarray:
    return np.ones(n, dtype=bool)


# ---------------------------------------------------------------------------
# Single rules
# ---------------------------------------------------------------------------


def test_parameter_count_is_validated() -> None:
    with pytest.raises(ValueError):
        Rule(RuleType.IS_CONSTANT_REGION, (180, 10))
    with pytest.raises(ValueError):
        Rule(RuleType.IS_ZERO_INDEX, (1,))


def test_is_minimum_picks_within_mask() -> None:
    p = Profile([5.0, 1.0, 4.0, 3.0])
    mask = np.array([True, False, True, True])
    result = Rule(RuleType.IS_MINIMUM, (1,)).apply(p, mask)
    assert np.flatnonzero(result).tolist() == [3]


def test_excluding_the_maximum_narrows_the_mask() -> None:
    p = Profile([5.0, 9.0, 4.0])
    result = Rule(RuleType.IS_MAXIMUM, (0,)).apply(p, _all(3))
    assert result.tolist() == [True, False, True]


def test_index_bounds_use_proportions() -> None:
    p = Profile(np.zeros(10))
    less = Rule(RuleType.INDEX_IS_LESS_THAN, (0.25,)).apply(p, _all(10))
    more = Rule(RuleType.INDEX_IS_MORE_THAN, (0.75,)).apply(p, _all(10))
    assert np.flatnonzero(less).tolist() == [0, 1, 2]
    assert np.flatnonzero(more).tolist() == [7, 8, 9]


def test_value_thresholds_are_strict() -> None:
    p = Profile([170.0, 180.0, 190.0])
    assert Rule(RuleType.VALUE_IS_MORE_THAN, (180,)).apply(p, _all(3)).tolist() == [
        False,
        False,
        True,
    ]
    assert Rule(RuleType.VALUE_IS_LESS_THAN, (180,)).apply(p, _all(3)).tolist() == [
        True,
        False,
        False,
    ]


def test_constant_region_marks_the_first_long_run() -> None:
    values = np.full(40, 150.0)
    values[5:8] = 180.0
    values[20:32] = 181.0
    mask = Rule(RuleType.IS_CONSTANT_REGION, (180, 10, 2)).apply(Profile(values), _all(40))
    assert np.flatnonzero(mask).tolist() == list(range(20, 32))


def test_first_and_last_true() -> None:
    p = Profile(np.zeros(6))
    mask = np.array([False, True, True, False, True, False])
    assert np.flatnonzero(Rule(RuleType.FIRST_TRUE, (1,)).apply(p, mask)).tolist() == [1]
    assert np.flatnonzero(Rule(RuleType.LAST_TRUE, (1,)).apply(p, mask)).tolist() == [4]
    assert np.flatnonzero(Rule(RuleType.FIRST_TRUE, (0,)).apply(p, mask)).tolist() == [2, 4]


def test_within_fraction_of_zero_is_circular() -> None:
    p = Profile(np.zeros(20))
    mask = Rule(RuleType.INDEX_IS_WITHIN_FRACTION_OF, (0.1,)).apply(p, _all(20))
    assert np.flatnonzero(mask).tolist() == [0, 1, 2, 18, 19]


def test_zero_index_rule() -> None:
    mask = Rule(RuleType.IS_ZERO_INDEX).apply(Profile(np.zeros(5)), _all(5))
    assert mask.tolist() == [True, False, False, False, False]


# ---------------------------------------------------------------------------
# Rule sets
# ---------------------------------------------------------------------------


def test_rule_set_masks_only_narrow() -> None:
    values = 180.0 + 40.0 * np.sin(np.linspace(0, 6 * np.pi, 120, endpoint=False))
    rule_set = RuleSet(
        ProfileType.ANGLE,
        (
            Rule(RuleType.INDEX_IS_MORE_THAN, (0.2,)),
            Rule(RuleType.INDEX_IS_LESS_THAN, (0.8,)),
            Rule(RuleType.IS_LOCAL_MAXIMUM, (1, 5)),
            Rule(RuleType.VALUE_IS_MORE_THAN, (180,)),
            Rule(RuleType.IS_MAXIMUM, (1,)),
        ),
        smoothing=2,
    )
    previous = _all(120)
    for mask in rule_set.masks(Profile(values)):
        assert not (mask & ~previous).any()
        previous = mask
    assert previous.sum() == 1
    assert np.array_equal(rule_set.evaluate(Profile(values)), previous)


def test_rule_set_dict_round_trip() -> None:
    collection = mouse_sperm_rules()
    restored = RuleSetCollection.from_dict(collection.to_dict())
    assert restored.get(Landmark.ORIENTATION_POINT) == collection.get(Landmark.ORIENTATION_POINT)
    assert restored.landmark_names == collection.landmark_names


# ---------------------------------------------------------------------------
# Shape classes
# ---------------------------------------------------------------------------


def test_reference_point_is_listed_first() -> None:
    landmarks = mouse_sperm_rules().landmarks
    assert landmarks[0] is Landmark.REFERENCE_POINT
    assert set(landmarks) == {
        Landmark.REFERENCE_POINT,
        Landmark.ORIENTATION_POINT,
        Landmark.TOP_VERTICAL,
        Landmark.BOTTOM_VERTICAL,
    }


@pytest.mark.parametrize("name", sorted(SHAPE_CLASSES))
def test_every_shape_class_locates_the_reference_point(name: str) -> None:
    assert rule_sets_for_shape(name).has(Landmark.REFERENCE_POINT)


def test_unknown_shape_class_lists_valid_names() -> None:
    with pytest.raises(ValueError, match="round"):
        rule_sets_for_shape("hexagonal")
