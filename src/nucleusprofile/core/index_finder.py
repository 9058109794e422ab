"""Evaluate rule sets against profiles to locate landmark indexes."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence

import numpy as np

from nucleusprofile.core.exceptions import NoDetectedIndexError, ProfileError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.profile import Profile, ProfileType
from nucleusprofile.core.rules import RuleSet, round_rules

logger = logging.getLogger(__name__)

NO_INDEX_FOUND = -1


class ProfileIndexFinder:
    """Single evaluator for every shape-class landmark recipe.

    Example::

        finder = ProfileIndexFinder()
        mask = finder.matching_indexes(angle_profile, rule_set)
        index = finder.identify_index(angle_profile, rule_set)
    """

    def matching_indexes(self, profile: Profile, rule_set: RuleSet) -> np.ndarray:
        """Return the fully narrowed boolean mask for *rule_set*."""
        return rule_set.evaluate(profile)

    def identify_index(self, profile: Profile, rule_set: RuleSet) -> int:
        """Return the first matching index, or ``NO_INDEX_FOUND``."""
        hits = np.flatnonzero(self.matching_indexes(profile, rule_set))
        return int(hits[0]) if hits.size else NO_INDEX_FOUND

    def identify_index_in(
        self,
        profiles: Mapping[ProfileType, Profile],
        rule_sets: Sequence[RuleSet],
    ) -> int:
        """Intersect the masks of several rule sets and return the first hit.

        Args:
            profiles: Profiles keyed by type; every rule set reads the profile
                of its own type. All profiles must share one length.
            rule_sets: Rule sets to intersect.

        Returns:
            First index selected by every rule set, or ``NO_INDEX_FOUND``.

        Raises:
            ProfileError: If a rule set needs a profile type that is missing
                or the profiles differ in length.
        """
        if not rule_sets:
            return NO_INDEX_FOUND
        combined: np.ndarray | None = None
        for rule_set in rule_sets:
            profile = profiles.get(rule_set.profile_type)
            if profile is None:
                raise ProfileError(
                    f"No {rule_set.profile_type.value} profile to evaluate rules on"
                )
            mask = self.matching_indexes(profile, rule_set)
            if combined is None:
                combined = mask
            elif combined.shape != mask.shape:
                raise ProfileError("Rule sets were evaluated on profiles of different lengths")
            else:
                combined = combined & mask
        hits = np.flatnonzero(combined)
        return int(hits[0]) if hits.size else NO_INDEX_FOUND

    def find_index(
        self,
        profiles: Mapping[ProfileType, Profile],
        rule_sets: Sequence[RuleSet],
    ) -> int:
        """Like :meth:`identify_index_in` but raise when nothing matches.

        Raises:
            NoDetectedIndexError: If no index satisfies every rule set.
        """
        index = self.identify_index_in(profiles, rule_sets)
        if index == NO_INDEX_FOUND:
            raise NoDetectedIndexError("No index satisfies the rule sets")
        return index


# ---------------------------------------------------------------------------
# Round nucleus helpers
# ---------------------------------------------------------------------------


def identify_rp_index_in_round_nucleus(diameter: Profile) -> int:
    """Reference point of a round nucleus: the longest diameter."""
    rule_sets = round_rules().get(Landmark.REFERENCE_POINT)
    return ProfileIndexFinder().find_index({ProfileType.DIAMETER: diameter}, rule_sets)


def identify_op_index_in_round_nucleus(diameter: Profile) -> int:
    """Round nuclei have no distinct orientation point; it coincides with RP."""
    rule_sets = round_rules().get(Landmark.ORIENTATION_POINT)
    return ProfileIndexFinder().find_index({ProfileType.DIAMETER: diameter}, rule_sets)


def identify_ip_index(op_index: int, length: int) -> int:
    """Index half a profile away from the orientation point."""
    return (op_index - math.ceil(length / 2)) % length


__all__ = [
    "NO_INDEX_FOUND",
    "ProfileIndexFinder",
    "identify_ip_index",
    "identify_op_index_in_round_nucleus",
    "identify_rp_index_in_round_nucleus",
]
