"""Population-level aggregate of one profile type.

A :class:`ProfileCollection` stacks every individual's RP-anchored profile,
resampled to a common length, and derives per-index statistics (median and
arbitrary percentiles). It also stores the landmark offsets and the segment
ring of the median, both in aggregate (RP-anchored) coordinates.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from nucleusprofile.core.exceptions import MissingLandmarkError, ProfileError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.profile import MINIMUM_PROFILE_LENGTH, Profile, ProfileType
from nucleusprofile.core.segments import SegmentedProfile, SegmentRing

logger = logging.getLogger(__name__)


class ProfileCollection:
    """Aggregate, landmark offsets and segment pattern for one profile type.

    Args:
        profile_type: The measurement held by this collection.
    """

    def __init__(self, profile_type: ProfileType) -> None:
        self.profile_type = profile_type
        self._aggregate: np.ndarray | None = None
        self._length: int | None = None
        self._landmarks: dict[Landmark, int] = {Landmark.REFERENCE_POINT: 0}
        self._segments: SegmentRing | None = None

    def __repr__(self) -> str:
        return (
            f"ProfileCollection({self.profile_type.value}, length={self._length}, "
            f"individuals={self.individual_count})"
        )

    # ------------------------------------------------------------------
    # Aggregate
    # ------------------------------------------------------------------

    @property
    def length(self) -> int:
        if self._length is None:
            raise ProfileError(f"The {self.profile_type.value} aggregate has not been built")
        return self._length

    @property
    def individual_count(self) -> int:
        return 0 if self._aggregate is None else int(self._aggregate.shape[0])

    def has_aggregate(self) -> bool:
        return self._aggregate is not None

    def create_aggregate(self, profiles: Sequence[Profile], length: int) -> None:
        """Rebuild the aggregate from RP-anchored individual profiles.

        Landmark offsets and segments are rescaled if the aggregate length
        changes.

        Raises:
            ProfileError: If there are no profiles or *length* is too short.
        """
        if not profiles:
            raise ProfileError(f"No {self.profile_type.value} profiles to aggregate")
        if length < MINIMUM_PROFILE_LENGTH:
            raise ProfileError(f"Aggregate length {length} is below {MINIMUM_PROFILE_LENGTH}")
        if self._length is not None and self._length != length:
            self.interpolate_to(length)
        self._aggregate = np.vstack([p.interpolate(length).values for p in profiles])
        self._length = length
        if self._segments is not None and self._segments.total_length != length:
            self._segments = self._segments.interpolate(length)
        logger.debug(
            "Built %s aggregate from %d profiles at length %d",
            self.profile_type.value, len(profiles), length,
        )

    def interpolate_to(self, length: int) -> None:
        """Rescale landmark offsets and segments onto a new aggregate length."""
        old = self._length
        if old is None or old == length:
            self._length = length
            return
        self._landmarks = {
            lm: int(round(idx * length / old)) % length for lm, idx in self._landmarks.items()
        }
        if self._segments is not None:
            self._segments = self._segments.interpolate(length)
        self._length = length

    def _rows(self) -> np.ndarray:
        if self._aggregate is None:
            raise ProfileError(f"The {self.profile_type.value} aggregate has not been built")
        return self._aggregate

    def _anchored(self, values: np.ndarray, landmark: Landmark) -> SegmentedProfile:
        segments = self._segments or SegmentRing.single(len(values))
        return SegmentedProfile(values, segments).offset(self.landmark_index(landmark))

    def median(self, landmark: Landmark = Landmark.REFERENCE_POINT) -> SegmentedProfile:
        """Per-index median, rotated so *landmark* is at index 0."""
        return self._anchored(np.median(self._rows(), axis=0), landmark)

    def quartile(
        self, percentile: float, landmark: Landmark = Landmark.REFERENCE_POINT
    ) -> SegmentedProfile:
        """Per-index percentile (0-100), rotated so *landmark* is at index 0."""
        if not 0 <= percentile <= 100:
            raise ProfileError(f"Percentile {percentile} is outside [0, 100]")
        return self._anchored(np.percentile(self._rows(), percentile, axis=0), landmark)

    # ------------------------------------------------------------------
    # Landmarks
    # ------------------------------------------------------------------

    @property
    def landmarks(self) -> dict[Landmark, int]:
        return dict(self._landmarks)

    def has_landmark(self, landmark: Landmark) -> bool:
        return landmark in self._landmarks

    def landmark_index(self, landmark: Landmark) -> int:
        try:
            return self._landmarks[landmark]
        except KeyError:
            raise MissingLandmarkError(
                f"The {self.profile_type.value} collection has no {landmark.value} offset"
            ) from None

    def set_landmark(self, landmark: Landmark, index: int) -> None:
        index = int(index)
        if self._length is not None:
            index %= self._length
        self._landmarks[Landmark.parse(landmark)] = index

    def remove_landmark(self, landmark: Landmark) -> None:
        if landmark is not Landmark.REFERENCE_POINT:
            self._landmarks.pop(landmark, None)

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    @property
    def segments(self) -> SegmentRing | None:
        """Median segments anchored at the reference point."""
        return self._segments

    def has_segments(self) -> bool:
        return self._segments is not None

    def set_segments(self, segments: SegmentRing | None) -> None:
        if segments is not None and self._length is not None:
            if segments.total_length != self._length:
                segments = segments.interpolate(self._length)
        self._segments = segments

    @property
    def segment_ids(self) -> list[str]:
        return [] if self._segments is None else self._segments.ids


__all__ = ["ProfileCollection"]
