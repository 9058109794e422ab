"""Population-wide edits that keep medians, nuclei and consensus consistent.

Every :class:`ProfileManager` operation first changes the median (all profile
type collections at once), then each eligible nucleus, then the consensus
shape if the population has one. Eligibility is an explicit predicate, by
default "not locked". A failure on one nucleus is logged and the rest of the
population is still updated; an invalid edit on the median is refused before
anything changes and reported by a ``False`` return value.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from nucleusprofile.core.dataset_segmenter import (
    DatasetSegmenter,
    SegmentationMode,
    copy_collection_offsets,
)
from nucleusprofile.core.exceptions import (
    ProfileError,
    SegmentUpdateError,
    UnsegmentableProfileError,
)
from nucleusprofile.core.fitter import COARSE_STEP, FINE_RANGE
from nucleusprofile.core.index_finder import identify_ip_index
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.nucleus import Nucleus, is_unlocked
from nucleusprofile.core.population import Population
from nucleusprofile.core.profile import Profile, ProfileType
from nucleusprofile.core.profiler import (
    MAX_COERCION_ATTEMPTS,
    fit_landmark_to_median,
)
from nucleusprofile.core.segments import MIN_SEGMENT_SIZE, new_segment_id
from nucleusprofile.core.tasks import Eligibility

logger = logging.getLogger(__name__)

RP = Landmark.REFERENCE_POINT
OP = Landmark.ORIENTATION_POINT
IP = Landmark.INTERSECTION_POINT


class ProfileManager:
    """Façade for landmark and segment edits on a profiled population.

    Args:
        population: Population whose aggregates have been built.
        eligible: Predicate selecting the nuclei an edit may change.
        min_segment_size: Minimum median segment length for edits.
        max_coercion_attempts: Bound on RP coercion after an RP move.
        coarse_step: Segment fitter coarse step used when refitting.
        fine_range: Segment fitter fine range used when refitting.
    """

    def __init__(
        self,
        population: Population,
        *,
        eligible: Eligibility = is_unlocked,
        min_segment_size: int = MIN_SEGMENT_SIZE,
        max_coercion_attempts: int = MAX_COERCION_ATTEMPTS,
        coarse_step: int = COARSE_STEP,
        fine_range: int = FINE_RANGE,
    ) -> None:
        self.population = population
        self.eligible = eligible
        self.min_segment_size = min_segment_size
        self.max_coercion_attempts = max_coercion_attempts
        self.coarse_step = coarse_step
        self.fine_range = fine_range

    def _editable(self) -> Iterator[Nucleus]:
        """Eligible nuclei, followed by the consensus shape if present."""
        for nucleus in self.population:
            if self.eligible(nucleus):
                yield nucleus
            else:
                logger.debug("Nucleus %s is not eligible; skipped", nucleus.id)
        if self.population.consensus is not None:
            yield self.population.consensus

    def _segmenter(self, mode: SegmentationMode) -> DatasetSegmenter:
        return DatasetSegmenter(
            self.population,
            mode,
            min_segment_size=self.min_segment_size,
            coarse_step=self.coarse_step,
            fine_range=self.fine_range,
            eligible=self.eligible,
        )

    # ------------------------------------------------------------------
    # Landmarks
    # ------------------------------------------------------------------

    def offset_nucleus_profiles(
        self,
        landmark: Landmark,
        profile_type: ProfileType,
        median: Profile,
    ) -> int:
        """Best-fit *landmark* of every editable nucleus to *median*.

        Returns:
            Number of nuclei (including the consensus) updated.
        """
        updated = 0
        for nucleus in self._editable():
            try:
                fit_landmark_to_median(nucleus, landmark, median, profile_type)
            except ProfileError as exc:
                logger.warning("Cannot offset nucleus %s to %s: %s", nucleus.id, landmark.value, exc)
                continue
            updated += 1
        return updated

    def update_landmark(self, landmark: Landmark | str, index: int) -> bool:
        """Move a landmark to *index* of the RP-anchored median.

        The reference point triggers rotation, coercion and resegmentation.
        The orientation point triggers resegmentation with a boundary at its
        new index. Extended landmarks are only refitted.

        Returns:
            False if resegmentation was impossible, True otherwise.
        """
        landmark = Landmark.parse(landmark)
        length = self.population.collection(ProfileType.ANGLE).length
        index = int(index) % length
        logger.info("Moving %s to median index %d", landmark.value, index)
        if landmark is RP:
            return self._update_reference_point(index)
        if landmark.is_core:
            return self._update_core_landmark(landmark, index)
        self._refit_landmark(landmark, index)
        return True

    def _rotate_reference(self, index: int) -> bool:
        """Make median *index* the new reference point and rebase all offsets.

        Nuclei are refitted to the median rotated by *index*. While the rebuilt
        median is still offset from that target, nuclei are refitted to the
        median rotated by the remaining offset, up to the coercion bound. Every
        pass shifts the other median landmarks and the median segments by the
        same amount as the reference point, so their offsets keep matching
        each nucleus's distance from its new reference point.

        Returns:
            True if the rebuilt median lines up with the requested rotation.
        """
        length = self.population.collection(ProfileType.ANGLE).length
        target = self.population.median(ProfileType.ANGLE, RP).offset(index)
        shift = index % length
        passes = 0
        while shift != 0 and passes < self.max_coercion_attempts:
            rebased = {
                lm: (old - shift) % length
                for lm, old in self.population.landmarks.items()
                if lm is not RP
            }
            segments = self.population.segments
            rotated = self.population.median(ProfileType.ANGLE, RP).offset(shift)
            self.offset_nucleus_profiles(RP, ProfileType.ANGLE, rotated)
            for lm, new_index in rebased.items():
                self.population.set_landmark(lm, new_index)
            self.population.set_landmark(RP, 0)
            if segments is not None:
                self.population.set_segments(segments.offset(shift))
            self.population.create_profile_collections()
            shift = self.population.median(ProfileType.ANGLE, RP).find_best_fit_offset(target)
            passes += 1
            logger.debug("Reference point pass %d: median off by %d", passes, shift)
        if shift != 0:
            logger.warning(
                "Reference point did not settle after %d passes (median off by %d)", passes, shift
            )
        return shift == 0

    def _update_reference_point(self, index: int) -> bool:
        self._rotate_reference(index)
        return self._resegment()

    def _update_core_landmark(self, landmark: Landmark, index: int) -> bool:
        self.population.set_landmark(landmark, index)
        self.offset_nucleus_profiles(
            landmark, ProfileType.ANGLE, self.population.median(ProfileType.ANGLE, landmark)
        )
        if landmark is OP:
            self._follow_orientation_point()
        return self._resegment()

    def _refit_landmark(self, landmark: Landmark, index: int) -> None:
        self.population.set_landmark(landmark, index)
        self.offset_nucleus_profiles(
            landmark, ProfileType.ANGLE, self.population.median(ProfileType.ANGLE, landmark)
        )

    def _follow_orientation_point(self) -> None:
        """Keep the intersection point opposite the orientation point."""
        if not self.population.has_landmark(IP):
            return
        length = self.population.collection(ProfileType.ANGLE).length
        self.population.set_landmark(IP, identify_ip_index(self.population.landmark_index(OP), length))
        for nucleus in self._editable():
            if nucleus.has_landmark(OP):
                nucleus.set_landmark(IP, nucleus.find_opposite_border(nucleus.landmark_index(OP)))

    def _resegment(self) -> bool:
        try:
            return self._segmenter(SegmentationMode.NEW).run()
        except UnsegmentableProfileError as exc:
            logger.warning("Cannot resegment %s: %s", self.population.name, exc)
            return False

    # ------------------------------------------------------------------
    # Segment edits
    # ------------------------------------------------------------------

    def segments_mergeable(self, first_id: str, second_id: str) -> bool:
        """True when both segments exist in the median and are adjacent."""
        ring = self.population.segments
        if ring is None or first_id not in ring or second_id not in ring or first_id == second_id:
            return False
        return ring.next(first_id).id == second_id or ring.next(second_id).id == first_id

    def merge_segments(self, first_id: str, second_id: str, new_id: str | None = None) -> bool:
        """Merge two adjacent median segments everywhere.

        Returns:
            False (with nothing changed) if the segments are not both present
            and adjacent in the median.
        """
        if not self.segments_mergeable(first_id, second_id):
            logger.warning("Segments %s and %s cannot be merged", first_id, second_id)
            return False
        new_id = new_id or new_segment_id()
        self.population.set_segments(self.population.segments.merge(first_id, second_id, new_id))
        for nucleus in self._editable():
            ring = nucleus.segments
            if ring is None or first_id not in ring or second_id not in ring:
                logger.warning("Nucleus %s lacks segments %s/%s; not merged", nucleus.id, first_id, second_id)
                continue
            try:
                nucleus.set_segments(ring.merge(first_id, second_id, new_id))
            except ProfileError as exc:
                logger.warning("Cannot merge segments in nucleus %s: %s", nucleus.id, exc)
        return True

    def unmerge_segments(self, segment_id: str) -> bool:
        """Restore the source segments of a merged median segment everywhere."""
        ring = self.population.segments
        if ring is None or segment_id not in ring or not ring.get(segment_id).is_merge:
            logger.warning("Segment %s is not a merged median segment", segment_id)
            return False
        self.population.set_segments(ring.unmerge(segment_id))
        for nucleus in self._editable():
            own = nucleus.segments
            if own is None or segment_id not in own:
                logger.warning("Nucleus %s lacks segment %s; not unmerged", nucleus.id, segment_id)
                continue
            try:
                nucleus.set_segments(own.unmerge(segment_id))
            except ProfileError as exc:
                logger.warning("Cannot unmerge segment in nucleus %s: %s", nucleus.id, exc)
        return True

    def split_segment(
        self,
        segment_id: str,
        index: int | None = None,
        new_ids: tuple[str, str] | None = None,
    ) -> bool:
        """Split a median segment at *index* (its midpoint by default).

        Each nucleus is split at the same proportional position within its
        own copy of the segment. Merge-derived segments are never split.

        Returns:
            False (with nothing changed) if the median split is invalid.
        """
        ring = self.population.segments
        if ring is None or segment_id not in ring:
            logger.warning("Segment %s is not in the median", segment_id)
            return False
        seg = ring.get(segment_id)
        if seg.is_merge:
            logger.warning("Segment %s was formed by a merge and cannot be split", segment_id)
            return False
        if index is None:
            index = seg.proportional_index(0.5)
        first_id, second_id = new_ids or (new_segment_id(), new_segment_id())
        try:
            proportion = seg.index_proportion(index)
            split = ring.split(segment_id, index, first_id, second_id, self.min_segment_size)
        except SegmentUpdateError as exc:
            logger.warning("Cannot split segment %s: %s", segment_id, exc)
            return False
        self.population.set_segments(split)
        for nucleus in self._editable():
            own = nucleus.segments
            if own is None or segment_id not in own:
                logger.warning("Nucleus %s lacks segment %s; not split", nucleus.id, segment_id)
                continue
            try:
                at = own.get(segment_id).proportional_index(proportion)
                nucleus.set_segments(own.split(segment_id, at, first_id, second_id, min_length=1))
            except ProfileError as exc:
                logger.warning("Cannot split segment in nucleus %s: %s", nucleus.id, exc)
        return True

    def update_median_segment_start(self, segment_id: str, index: int) -> bool:
        """Drag the start of a median segment to *index*.

        A core landmark sitting on the old start moves with it (the reference
        point by rotating the whole median). Nuclei are then refitted to the
        new median segments.
        """
        ring = self.population.segments
        if ring is None or segment_id not in ring:
            logger.warning("Segment %s is not in the median", segment_id)
            return False
        seg = ring.get(segment_id)
        old_start = seg.start
        try:
            updated = ring.update(segment_id, index, seg.end, self.min_segment_size)
        except SegmentUpdateError as exc:
            logger.warning("Cannot move segment %s: %s", segment_id, exc)
            return False
        new_start = updated.get(segment_id).start
        moved = [lm for lm, i in self.population.landmarks.items() if i == old_start and lm.is_core]
        self.population.set_segments(updated)
        target = new_start
        if RP in moved:
            # landmarks that shared the old start now sit on the new reference point
            self._rotate_reference(new_start)
            target = 0
        for landmark in moved:
            if landmark is not RP:
                self._refit_landmark(landmark, target)
                if landmark is OP:
                    self._follow_orientation_point()
        self._segmenter(SegmentationMode.NEW).assign_and_recombine()
        return True

    def update_nucleus_segment_start(self, nucleus: Nucleus, segment_id: str, index: int) -> bool:
        """Move one nucleus's segment start to *index* of its RP-anchored profile.

        Landmarks on the old start move with it; moving the orientation point
        also moves the intersection point to the opposite border. The moved
        segment is locked so later refits keep it.
        """
        if not self.eligible(nucleus):
            logger.warning("Nucleus %s is locked; segment not moved", nucleus.id)
            return False
        try:
            anchored = nucleus.anchored_segments(RP)
            seg = anchored.get(segment_id)
            updated = anchored.update(segment_id, index, seg.end, min_length=1)
        except ProfileError as exc:
            logger.warning("Cannot move segment %s in nucleus %s: %s", segment_id, nucleus.id, exc)
            return False
        rp = nucleus.landmark_index(RP)
        old_border = (rp + seg.start) % nucleus.border_length
        new_border = (rp + updated.get(segment_id).start) % nucleus.border_length
        nucleus.set_anchored_segments(updated.lock_segment(segment_id), RP)
        for landmark, border_index in nucleus.landmarks.items():
            if border_index != old_border:
                continue
            nucleus.set_landmark(landmark, new_border)
            if landmark is OP and nucleus.has_landmark(IP):
                nucleus.set_landmark(IP, nucleus.find_opposite_border(new_border))
        return True

    # ------------------------------------------------------------------
    # Locks and bookkeeping
    # ------------------------------------------------------------------

    def set_lock_on_all_nucleus_segments(self, locked: bool) -> None:
        for nucleus in self.population:
            if nucleus.segments is not None:
                nucleus.set_segments(nucleus.segments.with_lock(locked))

    def set_lock_on_all_nucleus_segments_except(self, segment_id: str, locked: bool = True) -> None:
        """Lock (or unlock) every segment except *segment_id*, which gets the opposite."""
        for nucleus in self.population:
            if nucleus.segments is not None:
                nucleus.set_segments(nucleus.segments.with_lock(locked, except_id=segment_id))

    def copy_collection_offsets(self, destination: Population) -> None:
        copy_collection_offsets(self.population, destination)

    def count_nuclei_not_matching_median(self) -> int:
        return self.population.count_not_matching_median()


__all__ = ["ProfileManager"]
