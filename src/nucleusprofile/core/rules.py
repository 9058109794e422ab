"""Declarative rules for locating landmarks on profiles.

A :class:`Rule` is one predicate over a profile. A :class:`RuleSet` applies
its rules in order to a boolean mask that starts all-true; every rule is
AND-combined with the running mask, so each rule only sees the indexes that
survived the rules before it. A :class:`RuleSetCollection` maps each landmark
of a nucleus shape class to the rule sets that locate it, which makes a shape
class pure data.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from nucleusprofile.core.exceptions import NoDetectedIndexError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.profile import Profile, ProfileType


class RuleType(str, Enum):
    """Predicate kinds. Parameters are listed in the order rules expect them."""

    IS_LOCAL_MINIMUM = "is_local_minimum"  # include, window
    IS_LOCAL_MAXIMUM = "is_local_maximum"  # include, window
    IS_MINIMUM = "is_minimum"  # include
    IS_MAXIMUM = "is_maximum"  # include
    INDEX_IS_LESS_THAN = "index_is_less_than"  # proportion
    INDEX_IS_MORE_THAN = "index_is_more_than"  # proportion
    VALUE_IS_LESS_THAN = "value_is_less_than"  # value
    VALUE_IS_MORE_THAN = "value_is_more_than"  # value
    IS_CONSTANT_REGION = "is_constant_region"  # value, window, tolerance
    FIRST_TRUE = "first_true"  # include
    LAST_TRUE = "last_true"  # include
    INDEX_IS_WITHIN_FRACTION_OF = "index_is_within_fraction_of"  # fraction
    IS_ZERO_INDEX = "is_zero_index"


_PARAMETER_COUNTS = {
    RuleType.IS_LOCAL_MINIMUM: 2,
    RuleType.IS_LOCAL_MAXIMUM: 2,
    RuleType.IS_MINIMUM: 1,
    RuleType.IS_MAXIMUM: 1,
    RuleType.INDEX_IS_LESS_THAN: 1,
    RuleType.INDEX_IS_MORE_THAN: 1,
    RuleType.VALUE_IS_LESS_THAN: 1,
    RuleType.VALUE_IS_MORE_THAN: 1,
    RuleType.IS_CONSTANT_REGION: 3,
    RuleType.FIRST_TRUE: 1,
    RuleType.LAST_TRUE: 1,
    RuleType.INDEX_IS_WITHIN_FRACTION_OF: 1,
    RuleType.IS_ZERO_INDEX: 0,
}


# ---------------------------------------------------------------------------
# Rule
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    """A single predicate over a profile.

    Attributes:
        type: The predicate kind.
        values: Numeric parameters, see :class:`RuleType`. Boolean
            ``include`` parameters are encoded as 1.0 / 0.0.
    """

    type: RuleType
    values: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", RuleType(self.type))
        object.__setattr__(self, "values", tuple(float(v) for v in self.values))
        expected = _PARAMETER_COUNTS[self.type]
        if len(self.values) != expected:
            raise ValueError(
                f"Rule {self.type.name} takes {expected} parameter(s), "
                f"got {len(self.values)}"
            )

    def apply(self, profile: Profile, mask: np.ndarray) -> np.ndarray:
        """Narrow *mask* to the indexes of *profile* that satisfy this rule."""
        return mask & self._candidates(profile, mask)

    def _candidates(self, profile: Profile, mask: np.ndarray) -> np.ndarray:
        n = len(profile)
        values = profile.values
        indexes = np.arange(n)
        p = self.values
        kind = self.type

        if kind in (RuleType.IS_LOCAL_MINIMUM, RuleType.IS_LOCAL_MAXIMUM):
            window = int(p[1])
            if kind is RuleType.IS_LOCAL_MINIMUM:
                found = profile.local_minima(window)
            else:
                found = profile.local_maxima(window)
            return found if p[0] else ~found

        if kind in (RuleType.IS_MINIMUM, RuleType.IS_MAXIMUM):
            try:
                if kind is RuleType.IS_MINIMUM:
                    index = profile.index_of_min(mask)
                else:
                    index = profile.index_of_max(mask)
            except NoDetectedIndexError:
                return np.zeros(n, dtype=bool)
            return _one_hot(n, index, include=bool(p[0]))

        if kind is RuleType.INDEX_IS_LESS_THAN:
            return indexes < math.ceil(n * p[0])
        if kind is RuleType.INDEX_IS_MORE_THAN:
            return indexes >= math.floor(n * p[0])
        if kind is RuleType.VALUE_IS_LESS_THAN:
            return values < p[0]
        if kind is RuleType.VALUE_IS_MORE_THAN:
            return values > p[0]

        if kind is RuleType.IS_CONSTANT_REGION:
            target, window, tolerance = p[0], int(p[1]), p[2]
            return _first_run(mask & (np.abs(values - target) <= tolerance), window)

        if kind in (RuleType.FIRST_TRUE, RuleType.LAST_TRUE):
            hits = np.flatnonzero(mask)
            if hits.size == 0:
                return np.zeros(n, dtype=bool)
            index = hits[0] if kind is RuleType.FIRST_TRUE else hits[-1]
            return _one_hot(n, int(index), include=bool(p[0]))

        if kind is RuleType.INDEX_IS_WITHIN_FRACTION_OF:
            # Circular distance from index 0.
            return np.minimum(indexes, n - indexes) <= n * p[0]

        if kind is RuleType.IS_ZERO_INDEX:
            return indexes == 0

        raise ValueError(f"Unhandled rule type {kind}")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "values": list(self.values)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rule:
        return cls(RuleType(data["type"]), tuple(data.get("values", ())))


def _one_hot(n: int, index: int, include: bool) -> np.ndarray:
    hot = np.zeros(n, dtype=bool)
    hot[index] = True
    return hot if include else ~hot


def _first_run(flags: np.ndarray, window: int) -> np.ndarray:
    """Mark the first run of at least *window* consecutive true flags."""
    out = np.zeros(flags.shape, dtype=bool)
    start = None
    for i, flag in enumerate(flags):
        if flag:
            if start is None:
                start = i
            continue
        if start is not None and i - start >= window:
            out[start:i] = True
            return out
        start = None
    if start is not None and flags.size - start >= window:
        out[start:] = True
    return out


# ---------------------------------------------------------------------------
# RuleSet
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleSet:
    """Ordered rules evaluated against one profile type.

    Attributes:
        profile_type: The profile the rules read.
        rules: Rules applied in order.
        smoothing: If positive, the profile is smoothed with this window
            before any rule runs.
    """

    profile_type: ProfileType
    rules: tuple[Rule, ...] = ()
    smoothing: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "profile_type", ProfileType(self.profile_type))
        object.__setattr__(self, "rules", tuple(self.rules))

    def masks(self, profile: Profile) -> Iterator[np.ndarray]:
        """Yield the running mask after each rule has been applied."""
        prepared = profile.smooth(self.smoothing) if self.smoothing > 0 else profile
        mask = np.ones(len(profile), dtype=bool)
        for rule in self.rules:
            mask = rule.apply(prepared, mask)
            yield mask

    def evaluate(self, profile: Profile) -> np.ndarray:
        mask = np.ones(len(profile), dtype=bool)
        for step in self.masks(profile):
            mask = step
        return mask

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile_type": self.profile_type.value,
            "smoothing": self.smoothing,
            "rules": [r.to_dict() for r in self.rules],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleSet:
        return cls(
            ProfileType(data["profile_type"]),
            tuple(Rule.from_dict(r) for r in data.get("rules", [])),
            int(data.get("smoothing", 0)),
        )


# ---------------------------------------------------------------------------
# RuleSetCollection
# ---------------------------------------------------------------------------


@dataclass
class RuleSetCollection:
    """Landmark-finding recipe for one nucleus shape class.

    Attributes:
        name: Shape class name, e.g. "Round".
        rule_sets: Rule sets per landmark. A landmark located by several
            rule sets takes the first index on which all of them agree.
        landmark_names: Optional biological names for landmarks.
    """

    name: str
    rule_sets: dict[Landmark, list[RuleSet]] = field(default_factory=dict)
    landmark_names: dict[Landmark, str] = field(default_factory=dict)

    def add(self, landmark: Landmark, rule_set: RuleSet) -> None:
        self.rule_sets.setdefault(Landmark.parse(landmark), []).append(rule_set)

    def get(self, landmark: Landmark) -> list[RuleSet]:
        return list(self.rule_sets.get(Landmark.parse(landmark), []))

    def has(self, landmark: Landmark) -> bool:
        return bool(self.rule_sets.get(Landmark.parse(landmark)))

    @property
    def landmarks(self) -> list[Landmark]:
        """Landmarks with at least one rule set, reference point first."""
        found = [lm for lm, sets in self.rule_sets.items() if sets]
        return sorted(found, key=lambda lm: lm is not Landmark.REFERENCE_POINT)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "landmarks": {
                lm.value: [rs.to_dict() for rs in sets]
                for lm, sets in self.rule_sets.items()
            },
            "landmark_names": {lm.value: n for lm, n in self.landmark_names.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleSetCollection:
        collection = cls(name=str(data.get("name", "custom")))
        for key, sets in (data.get("landmarks") or {}).items():
            for rs in sets:
                collection.add(Landmark.parse(key), RuleSet.from_dict(rs))
        for key, label in (data.get("landmark_names") or {}).items():
            collection.landmark_names[Landmark.parse(key)] = str(label)
        return collection


# ---------------------------------------------------------------------------
# Built-in shape classes
# ---------------------------------------------------------------------------


def _rule(kind: RuleType, *values: float) -> Rule:
    return Rule(kind, values)


def round_rules() -> RuleSetCollection:
    """Round nuclei: the reference point sits on the longest diameter."""
    longest = RuleSet(ProfileType.DIAMETER, (_rule(RuleType.IS_MAXIMUM, 1),))
    return RuleSetCollection(
        name="Round",
        rule_sets={
            Landmark.REFERENCE_POINT: [longest],
            Landmark.ORIENTATION_POINT: [longest],
        },
        landmark_names={Landmark.REFERENCE_POINT: "Longest axis"},
    )


def pig_sperm_rules() -> RuleSetCollection:
    """Pig sperm: the reference point is the sharpest convex bulge."""
    socket = RuleSet(
        ProfileType.ANGLE,
        (
            _rule(RuleType.IS_LOCAL_MAXIMUM, 1, 5),
            _rule(RuleType.VALUE_IS_MORE_THAN, 180),
            _rule(RuleType.IS_MAXIMUM, 1),
        ),
        smoothing=2,
    )
    return RuleSetCollection(
        name="Pig sperm",
        rule_sets={
            Landmark.REFERENCE_POINT: [socket],
            Landmark.ORIENTATION_POINT: [socket],
        },
        landmark_names={Landmark.REFERENCE_POINT: "Tail socket"},
    )


def mouse_sperm_rules() -> RuleSetCollection:
    """Mouse sperm: hook tip, tail socket and the flat ventral edge."""
    hook = RuleSet(ProfileType.ANGLE, (_rule(RuleType.IS_MINIMUM, 1),))
    tail_socket = RuleSet(
        ProfileType.ANGLE,
        (
            _rule(RuleType.INDEX_IS_MORE_THAN, 0.2),
            _rule(RuleType.INDEX_IS_LESS_THAN, 0.6),
            _rule(RuleType.IS_LOCAL_MINIMUM, 1, 5),
            _rule(RuleType.IS_MINIMUM, 1),
        ),
        smoothing=2,
    )
    ventral = (_rule(RuleType.IS_CONSTANT_REGION, 180, 10, 2),)
    return RuleSetCollection(
        name="Mouse sperm",
        rule_sets={
            Landmark.REFERENCE_POINT: [hook],
            Landmark.ORIENTATION_POINT: [tail_socket],
            Landmark.TOP_VERTICAL: [
                RuleSet(ProfileType.ANGLE, ventral + (_rule(RuleType.FIRST_TRUE, 1),))
            ],
            Landmark.BOTTOM_VERTICAL: [
                RuleSet(ProfileType.ANGLE, ventral + (_rule(RuleType.LAST_TRUE, 1),))
            ],
        },
        landmark_names={
            Landmark.REFERENCE_POINT: "Tip of hook",
            Landmark.ORIENTATION_POINT: "Tail socket",
            Landmark.TOP_VERTICAL: "Ventral upper",
            Landmark.BOTTOM_VERTICAL: "Ventral lower",
        },
    )


SHAPE_CLASSES: dict[str, Callable[[], RuleSetCollection]] = {
    "round": round_rules,
    "pig_sperm": pig_sperm_rules,
    "mouse_sperm": mouse_sperm_rules,
}


def rule_sets_for_shape(shape_class: str) -> RuleSetCollection:
    """Return a fresh copy of a built-in shape class recipe.

    Raises:
        ValueError: If *shape_class* is not a built-in name.
    """
    factory = SHAPE_CLASSES.get(shape_class.lower())
    if factory is None:
        raise ValueError(
            f"Unknown shape class {shape_class!r}. Valid values: {sorted(SHAPE_CLASSES)}"
        )
    return factory()


__all__ = [
    "SHAPE_CLASSES",
    "Rule",
    "RuleSet",
    "RuleSetCollection",
    "RuleType",
    "mouse_sperm_rules",
    "pig_sperm_rules",
    "round_rules",
    "rule_sets_for_shape",
]
