"""Fit median segment boundaries onto individual profiles.

The :class:`SegmentFitter` nudges each unlocked segment start of a target
profile to minimise the squared difference between the target's segments and
the template (median) segments of the same id, then recombines the fitted
target into a "frankenprofile" that lines up point for point with the
template.
"""

from __future__ import annotations

import logging

from nucleusprofile.core.exceptions import ProfileError, SegmentUpdateError
from nucleusprofile.core.segments import MIN_SEGMENT_SIZE, SegmentedProfile, SegmentRing

logger = logging.getLogger(__name__)

COARSE_STEP = 10
FINE_RANGE = 5


class SegmentFitter:
    """Sliding-window refinement of segment starts against a template.

    Args:
        template: RP-anchored median profile carrying the reference segments.
        min_segment_size: No move may shrink a segment below this length.
        coarse_step: Step of the first, coarse search over start changes.
        fine_range: Half-width of the fine search around the coarse optimum.
    """

    def __init__(
        self,
        template: SegmentedProfile,
        *,
        min_segment_size: int = MIN_SEGMENT_SIZE,
        coarse_step: int = COARSE_STEP,
        fine_range: int = FINE_RANGE,
    ) -> None:
        if coarse_step < 1:
            raise ValueError(f"coarse_step must be positive, got {coarse_step}")
        self.template = template
        self.min_segment_size = min_segment_size
        self.coarse_step = coarse_step
        self.fine_range = fine_range

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(self, target: SegmentedProfile) -> float:
        """Sum over segments of the squared difference to the template."""
        return self._score(target, target.segments, target.segments.ids)

    def _score(self, target: SegmentedProfile, ring: SegmentRing, ids) -> float:
        profile = target.with_segments(ring)
        return sum(
            profile.segment_profile(seg_id).absolute_square_difference(
                self.template.segment_profile(seg_id)
            )
            for seg_id in ids
        )

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def fit(self, target: SegmentedProfile) -> SegmentedProfile:
        """Return *target* with its segment starts fitted to the template.

        If the target's segments do not match the template's ids, the
        template ring is first interpolated onto the target's length. The
        segment starting at index 0 (the reference point) and locked segments
        are never moved.
        """
        ring = target.segments
        if ring.ids != self.template.segments.ids:
            ring = self.template.segments.interpolate(len(target))
        for seg_id in ring.ids:
            seg = ring.get(seg_id)
            if seg.locked or seg.start == 0 or len(ring) < 2:
                continue
            ring = self._best_fit_segment(target, ring, seg_id)
        return target.with_segments(ring)

    def _best_fit_segment(
        self, target: SegmentedProfile, ring: SegmentRing, seg_id: str
    ) -> SegmentRing:
        seg, prev = ring.get(seg_id), ring.previous(seg_id)
        lowest = -(prev.length - self.min_segment_size)
        highest = seg.length - self.min_segment_size
        if lowest > highest:
            return ring
        affected = {prev.id, seg.id}
        best_ring = ring
        best_score = self._score(target, ring, affected)
        best_change = 0

        def trial(change: int) -> None:
            nonlocal best_ring, best_score, best_change
            try:
                candidate = ring.adjust_start(seg_id, change, self.min_segment_size)
            except SegmentUpdateError:
                return
            score = self._score(target, candidate, affected)
            if score < best_score:
                best_ring, best_score, best_change = candidate, score, change

        for change in range(lowest, highest + 1, self.coarse_step):
            if change:
                trial(change)
        centre = best_change
        for change in range(
            max(lowest, centre - self.fine_range), min(highest, centre + self.fine_range) + 1
        ):
            if change and change != centre:
                trial(change)
        return best_ring

    # ------------------------------------------------------------------
    # Recombination
    # ------------------------------------------------------------------

    def recombine(self, target: SegmentedProfile) -> SegmentedProfile:
        """Build the frankenprofile of *target* against the template.

        Raises:
            ProfileError: If the target's segment ids differ from the template's.
        """
        if set(target.segments.ids) != set(self.template.segments.ids):
            raise ProfileError("Target segments do not match the template segments")
        return target.franken_normalise(self.template)


__all__ = ["COARSE_STEP", "FINE_RANGE", "SegmentFitter"]
