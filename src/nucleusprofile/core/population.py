"""A population of nuclei and its per-profile-type collections."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

import numpy as np

from nucleusprofile.core.collection import ProfileCollection
from nucleusprofile.core.exceptions import ProfileError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.nucleus import Nucleus
from nucleusprofile.core.profile import ProfileType
from nucleusprofile.core.rules import RuleSetCollection, round_rules
from nucleusprofile.core.segments import SegmentedProfile, SegmentRing

logger = logging.getLogger(__name__)

GEOMETRIC_TYPES = (ProfileType.ANGLE, ProfileType.RADIUS, ProfileType.DIAMETER)


class Population:
    """Nuclei analysed together, with one :class:`ProfileCollection` per type.

    The collections' landmark offsets and segment rings are kept identical
    through :meth:`set_landmark` and :meth:`set_segments`.

    Args:
        nuclei: Individuals of the population.
        rule_sets: Landmark recipe of the population's shape class.
        name: Display name.
        consensus: Optional consensus shape kept in step with edits.
    """

    def __init__(
        self,
        nuclei: Iterable[Nucleus],
        rule_sets: RuleSetCollection | None = None,
        *,
        name: str = "population",
        consensus: Nucleus | None = None,
    ) -> None:
        self.name = name
        self.nuclei: list[Nucleus] = list(nuclei)
        self.rule_sets = rule_sets if rule_sets is not None else round_rules()
        self.consensus = consensus
        self._collections = {t: ProfileCollection(t) for t in ProfileType}

    def __len__(self) -> int:
        return len(self.nuclei)

    def __iter__(self) -> Iterator[Nucleus]:
        return iter(self.nuclei)

    def __repr__(self) -> str:
        return f"Population({self.name!r}, nuclei={len(self.nuclei)})"

    def get(self, nucleus_id: str) -> Nucleus:
        for nucleus in self.nuclei:
            if nucleus.id == nucleus_id:
                return nucleus
        raise KeyError(f"No nucleus with id {nucleus_id}")

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def collection(self, profile_type: ProfileType = ProfileType.ANGLE) -> ProfileCollection:
        return self._collections[profile_type]

    @property
    def collections(self) -> dict[ProfileType, ProfileCollection]:
        return dict(self._collections)

    def aggregate_length(self) -> int:
        """Median border length of the population."""
        if not self.nuclei:
            raise ProfileError(f"Population {self.name} has no nuclei")
        return int(round(float(np.median([n.border_length for n in self.nuclei]))))

    def create_profile_collections(self) -> None:
        """Rebuild every aggregate from the nuclei's current RP anchoring.

        Nuclei without a reference point are left out of the aggregates. The
        recombined (FRANKEN) aggregate is rebuilt only from nuclei that have
        a recombined profile.

        Raises:
            ProfileError: If no nucleus has a reference point.
        """
        anchored = [n for n in self.nuclei if n.has_landmark(Landmark.REFERENCE_POINT)]
        if len(anchored) < len(self.nuclei):
            logger.warning(
                "%d nuclei in %s have no reference point and are excluded from aggregates",
                len(self.nuclei) - len(anchored), self.name,
            )
        if not anchored:
            raise ProfileError(f"No nucleus in {self.name} has a reference point")
        length = self.aggregate_length()
        for profile_type in GEOMETRIC_TYPES:
            self._collections[profile_type].create_aggregate(
                [n.profile(profile_type) for n in anchored], length
            )
        recombined = [n.franken for n in anchored if n.franken is not None]
        if recombined:
            self._collections[ProfileType.FRANKEN].create_aggregate(recombined, length)

    def median(
        self,
        profile_type: ProfileType = ProfileType.ANGLE,
        landmark: Landmark = Landmark.REFERENCE_POINT,
    ) -> SegmentedProfile:
        return self._collections[profile_type].median(landmark)

    def median_profiles(
        self, landmark: Landmark = Landmark.REFERENCE_POINT
    ) -> dict[ProfileType, SegmentedProfile]:
        """Medians of every built geometric aggregate, anchored at *landmark*."""
        return {
            t: self._collections[t].median(landmark)
            for t in GEOMETRIC_TYPES
            if self._collections[t].has_aggregate()
        }

    # ------------------------------------------------------------------
    # Synchronised landmark offsets and segments
    # ------------------------------------------------------------------

    def set_landmark(self, landmark: Landmark, index: int) -> None:
        for collection in self._collections.values():
            collection.set_landmark(landmark, index)

    def landmark_index(self, landmark: Landmark) -> int:
        return self._collections[ProfileType.ANGLE].landmark_index(landmark)

    def has_landmark(self, landmark: Landmark) -> bool:
        return self._collections[ProfileType.ANGLE].has_landmark(landmark)

    @property
    def landmarks(self) -> dict[Landmark, int]:
        return self._collections[ProfileType.ANGLE].landmarks

    def set_segments(self, segments: SegmentRing | None) -> None:
        for collection in self._collections.values():
            collection.set_segments(segments)

    @property
    def segments(self) -> SegmentRing | None:
        return self._collections[ProfileType.ANGLE].segments

    def has_segments(self) -> bool:
        return self._collections[ProfileType.ANGLE].has_segments()

    def count_not_matching_median(self) -> int:
        """Number of nuclei whose segment ids differ from the median's."""
        median = self.segments
        if median is None:
            return 0
        expected = set(median.ids)
        return sum(
            1
            for n in self.nuclei
            if n.segments is None or set(n.segments.ids) != expected
        )


__all__ = ["GEOMETRIC_TYPES", "Population"]
