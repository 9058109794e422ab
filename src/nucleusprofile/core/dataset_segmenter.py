"""Population segmentation: segment the median, propagate, recombine.

Three modes are supported:

- ``new``: segment the RP-anchored median (forcing a boundary at OP), assign
  the median segments to every nucleus, recombine, rebuild aggregates.
- ``copy``: take landmark offsets and the segment pattern from another
  population, then assign and recombine without resegmenting.
- ``refresh``: rebuild aggregates and reassign from the existing median
  segments, recombine, then unlock every nucleus's segments.
"""

from __future__ import annotations

import logging
from enum import Enum

from nucleusprofile.core.exceptions import ProfileError
from nucleusprofile.core.fitter import COARSE_STEP, FINE_RANGE, SegmentFitter
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.nucleus import is_unlocked
from nucleusprofile.core.population import Population
from nucleusprofile.core.profile import ProfileType
from nucleusprofile.core.segmenter import ProfileSegmenter
from nucleusprofile.core.segments import MIN_SEGMENT_SIZE, SegmentRing
from nucleusprofile.core.tasks import (
    PROFILE_TASK_THRESHOLD,
    Eligibility,
    ProgressCallback,
    SegmentAssignmentTask,
    SegmentRecombiningTask,
)

logger = logging.getLogger(__name__)


class SegmentationMode(str, Enum):
    NEW = "new"
    COPY = "copy"
    REFRESH = "refresh"


class DatasetSegmenter:
    """Run the segmentation and recombination pipeline on a population.

    Args:
        population: Profiled population (RP coerced, landmarks assigned).
        mode: One of :class:`SegmentationMode`.
        source: Population to copy from in ``copy`` mode.
        min_segment_size: Minimum segment length.
        coarse_step: Coarse search step of the segment fitter.
        fine_range: Fine search half-width of the segment fitter.
        eligible: Nuclei failing this predicate are left untouched.
        max_workers: Thread pool size for per-nucleus tasks.
        threshold: Largest range a task processes without splitting.
        on_progress: Per-nucleus progress callback.
    """

    def __init__(
        self,
        population: Population,
        mode: SegmentationMode | str = SegmentationMode.NEW,
        *,
        source: Population | None = None,
        min_segment_size: int = MIN_SEGMENT_SIZE,
        coarse_step: int = COARSE_STEP,
        fine_range: int = FINE_RANGE,
        eligible: Eligibility = is_unlocked,
        max_workers: int | None = None,
        threshold: int = PROFILE_TASK_THRESHOLD,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.population = population
        self.mode = SegmentationMode(mode)
        self.source = source
        self.min_segment_size = min_segment_size
        self.coarse_step = coarse_step
        self.fine_range = fine_range
        self.eligible = eligible
        self.max_workers = max_workers
        self.threshold = threshold
        self.on_progress = on_progress

    def run(self) -> bool:
        """Run the configured mode.

        Returns:
            True on success, False if the mode could not run (copy with no
            source, refresh without median segments).

        Raises:
            UnsegmentableProfileError: If the median cannot be segmented.
        """
        logger.info("Segmenting %s (%s mode)", self.population.name, self.mode.value)
        if self.mode is SegmentationMode.NEW:
            return self.run_new_analysis()
        if self.mode is SegmentationMode.COPY:
            return self.run_copy_analysis()
        return self.run_refresh_analysis()

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def run_new_analysis(self) -> bool:
        median = self.population.median(ProfileType.ANGLE, Landmark.REFERENCE_POINT)
        forced = {}
        if self.population.has_landmark(Landmark.ORIENTATION_POINT):
            forced[Landmark.ORIENTATION_POINT] = self.population.landmark_index(
                Landmark.ORIENTATION_POINT
            )
        ring = ProfileSegmenter(median, forced, self.min_segment_size).segment()
        logger.info("Median of %s divided into %d segments", self.population.name, len(ring))
        self.population.set_segments(ring)
        self.assign_and_recombine()
        return True

    def run_copy_analysis(self) -> bool:
        if self.source is None:
            logger.warning("No source population to copy segments from")
            return False
        source_segments = self.source.segments
        if source_segments is None:
            logger.warning("Source population %s has no segments to copy", self.source.name)
            return False
        copy_collection_offsets(self.source, self.population)
        self.assign_and_recombine()
        return True

    def run_refresh_analysis(self) -> bool:
        self.population.create_profile_collections()
        if not self.population.has_segments():
            logger.warning("Population %s has no median segments to refresh", self.population.name)
            return False
        self.assign_and_recombine()
        for nucleus in self.population:
            if nucleus.segments is not None:
                nucleus.set_segments(nucleus.segments.with_lock(False))
        return True

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def assign_and_recombine(self) -> None:
        """Assign median segments to nuclei, recombine, then rebuild aggregates."""
        self.assign_segments()
        self.recombine()
        self.population.create_profile_collections()

    def _task_options(self) -> dict:
        return {
            "eligible": self.eligible,
            "threshold": self.threshold,
            "on_progress": self.on_progress,
        }

    def assign_segments(self) -> None:
        median = self.population.median(ProfileType.ANGLE, Landmark.REFERENCE_POINT)
        SegmentAssignmentTask(self.population.nuclei, median, **self._task_options()).invoke(
            self.max_workers
        )

    def recombine(self) -> None:
        median = self.population.median(ProfileType.ANGLE, Landmark.REFERENCE_POINT)
        fitter = SegmentFitter(
            median,
            min_segment_size=self.min_segment_size,
            coarse_step=self.coarse_step,
            fine_range=self.fine_range,
        )
        SegmentRecombiningTask(self.population.nuclei, fitter, **self._task_options()).invoke(
            self.max_workers
        )


def copy_collection_offsets(source: Population, destination: Population) -> None:
    """Copy landmark offsets and median segments from *source* to *destination*.

    Offsets and segments are rescaled when the aggregate lengths differ.

    Raises:
        ProfileError: If *source* has no segments or the copied ring would
            not keep its segment ids.
    """
    segments = source.segments
    if segments is None:
        raise ProfileError(f"Population {source.name} has no segments to copy")
    if not destination.collection(ProfileType.ANGLE).has_aggregate():
        destination.create_profile_collections()
    source_length = source.collection(ProfileType.ANGLE).length
    length = destination.collection(ProfileType.ANGLE).length
    copied: SegmentRing = segments.interpolate(length)
    if copied.ids != segments.ids:
        raise ProfileError("Segment ids changed while copying between populations")
    for landmark, index in source.landmarks.items():
        destination.set_landmark(landmark, int(round(index * length / source_length)))
    destination.set_segments(copied)


__all__ = ["DatasetSegmenter", "SegmentationMode", "copy_collection_offsets"]
