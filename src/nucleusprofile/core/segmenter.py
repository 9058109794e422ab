"""Curvature-based segmentation of a single profile.

The segmenter scans an (RP-anchored) angle profile left to right and opens a
new segment at inflection points whose rate of change is large enough, while
honouring forced boundaries (landmarks that must lie on a segment boundary)
and a minimum segment length.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import numpy as np

from nucleusprofile.core.exceptions import UnsegmentableProfileError
from nucleusprofile.core.profile import Profile
from nucleusprofile.core.segments import MIN_SEGMENT_SIZE, SegmentRing

logger = logging.getLogger(__name__)

SMOOTH_WINDOW = 2
MAXIMA_WINDOW = 5
DELTA_WINDOW = 2
ANGLE_THRESHOLD = 180.0
MIN_RATE_OF_CHANGE = 0.02


class ProfileSegmenter:
    """Partition one profile into a closed ring of segments.

    Args:
        profile: Profile to segment. Index 0 is always a boundary.
        forced: Optional mapping of label (usually a landmark) to an index
            that must fall on a segment boundary. Declaration order matters:
            a forced index closer than *min_segment_size* to one declared
            earlier is dropped.
        min_segment_size: Minimum number of points per segment.

    Example::

        ring = ProfileSegmenter(median, {Landmark.ORIENTATION_POINT: 57}).segment()
    """

    def __init__(
        self,
        profile: Profile,
        forced: Mapping[object, int] | None = None,
        min_segment_size: int = MIN_SEGMENT_SIZE,
    ) -> None:
        self._profile = profile
        self._forced = dict(forced or {})
        self._min = int(min_segment_size)

    def forced_boundaries(self) -> list[int]:
        """Return the forced indexes that survive pruning, in declaration order."""
        n = len(self._profile)
        kept: list[int] = []
        for label, index in self._forced.items():
            index = int(index) % n
            if index == 0:
                continue
            if index < self._min or index > n - self._min:
                logger.debug(
                    "Forced boundary %s at %d is within %d of the profile ends; ignored",
                    label, index, self._min,
                )
                continue
            if any(abs(index - k) < self._min for k in kept):
                logger.debug(
                    "Forced boundary %s at %d is too close to an earlier boundary; ignored",
                    label, index,
                )
                continue
            kept.append(index)
        return kept

    def inflection_mask(self) -> np.ndarray:
        """Local maxima above, or minima below, the angle threshold after smoothing."""
        smoothed = self._profile.smooth(SMOOTH_WINDOW)
        return smoothed.local_maxima(MAXIMA_WINDOW, ANGLE_THRESHOLD) | smoothed.local_minima(
            MAXIMA_WINDOW, ANGLE_THRESHOLD
        )

    def rate_of_change(self) -> Profile:
        """Second finite difference: smooth, delta, smooth, delta."""
        return (
            self._profile.smooth(SMOOTH_WINDOW)
            .deltas(DELTA_WINDOW)
            .smooth(SMOOTH_WINDOW)
            .deltas(DELTA_WINDOW)
        )

    def boundaries(self) -> list[int]:
        """Return the segment start indexes, beginning with 0."""
        n = len(self._profile)
        forced = self.forced_boundaries()
        forced_set = set(forced)
        inflections = self.inflection_mask()
        delta = self.rate_of_change()
        min_rate = (delta.max() - delta.min()) * MIN_RATE_OF_CHANGE
        magnitude = np.abs(delta.values)

        starts = [0]
        for i in range(1, n):
            since_last = i - starts[-1]
            if i in forced_set:
                if since_last >= self._min:
                    starts.append(i)
                continue
            if since_last < self._min or i < self._min or i > n - self._min:
                continue
            if any(abs(i - k) < self._min for k in forced):
                continue
            if inflections[i] and magnitude[i] > min_rate:
                starts.append(i)
        return starts

    def segment(self) -> SegmentRing:
        """Segment the profile into a closed ring with fresh segment ids.

        Raises:
            UnsegmentableProfileError: If the profile is shorter than the
                minimum segment size or the segments cannot form a ring.
        """
        n = len(self._profile)
        if n < self._min:
            raise UnsegmentableProfileError(
                f"Profile of length {n} is shorter than the minimum segment size {self._min}"
            )
        starts = self.boundaries()
        try:
            ring = SegmentRing.from_starts(starts, n)
        except ValueError as exc:
            raise UnsegmentableProfileError(f"Cannot close the segment ring: {exc}") from exc
        if ring.shortest() < self._min:
            raise UnsegmentableProfileError(
                f"Segmentation produced a segment shorter than {self._min}"
            )
        logger.debug("Segmented %d-point profile into %d segments", n, len(ring))
        return ring


__all__ = [
    "ANGLE_THRESHOLD",
    "DELTA_WINDOW",
    "MAXIMA_WINDOW",
    "MIN_RATE_OF_CHANGE",
    "ProfileSegmenter",
    "SMOOTH_WINDOW",
]
