"""Fork/join decomposition of per-individual work over a population.

A :class:`RangeTask` covers the index range ``[low, high)`` of a sequence of
items. Ranges at or below the task's threshold are processed sequentially;
larger ranges are split at their midpoint, recursively, into a balanced
binary tree. :meth:`RangeTask.invoke` runs the leaves of that tree on a
bounded ``ThreadPoolExecutor`` and joins them from the calling thread.

Each item is handled by exactly one leaf, so per-individual state is only
ever written by one worker. Shared inputs (the median and its segments) must
be fully built before :meth:`RangeTask.invoke` and are only read by leaves.
A :class:`ProfileError` raised for one item is logged and the leaf moves on.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from nucleusprofile.core.exceptions import ProfileError
from nucleusprofile.core.fitter import SegmentFitter
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.nucleus import Nucleus, is_unlocked
from nucleusprofile.core.profile import ProfileType
from nucleusprofile.core.segments import SegmentedProfile, SegmentRing

logger = logging.getLogger(__name__)

PROFILE_TASK_THRESHOLD = 30
IMPORT_TASK_THRESHOLD = 5

ProgressCallback = Callable[[str, str, int], None]
"""Called as ``callback(task_name, item_id, total)`` after each item."""

Eligibility = Callable[[Nucleus], bool]


class RangeTask:
    """Recursive range task; subclasses implement :meth:`process`.

    Args:
        items: Shared sequence the task ranges over.
        low: First index covered (inclusive).
        high: Last index covered (exclusive). Defaults to ``len(items)``.
        threshold: Largest range processed without splitting.
        on_progress: Optional callback invoked after each item.
    """

    name = "range-task"
    default_threshold = PROFILE_TASK_THRESHOLD

    def __init__(
        self,
        items: Sequence[Any],
        low: int = 0,
        high: int | None = None,
        *,
        threshold: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.items = items
        self.low = low
        self.high = len(items) if high is None else high
        self.threshold = max(1, threshold or self.default_threshold)
        self.on_progress = on_progress

    def __len__(self) -> int:
        return max(0, self.high - self.low)

    def split(self) -> tuple[RangeTask, RangeTask]:
        """Split the range at its midpoint into two subtasks."""
        mid = self.low + len(self) // 2
        return self._child(self.low, mid), self._child(mid, self.high)

    def _child(self, low: int, high: int) -> RangeTask:
        child = copy.copy(self)
        child.low, child.high = low, high
        return child

    def leaves(self) -> list[RangeTask]:
        """Return the leaf tasks of the balanced split tree, left to right."""
        if len(self) <= self.threshold:
            return [self]
        left, right = self.split()
        return left.leaves() + right.leaves()

    def compute(self) -> None:
        """Process this task's range sequentially."""
        total = len(self.items)
        for index in range(self.low, self.high):
            item = self.items[index]
            try:
                self.process(index, item)
            except ProfileError as exc:
                logger.warning("%s: skipping %s: %s", self.name, self.describe(item), exc)
            if self.on_progress is not None:
                self.on_progress(self.name, self.describe(item), total)

    def process(self, index: int, item: Any) -> None:
        raise NotImplementedError

    def describe(self, item: Any) -> str:
        return str(getattr(item, "id", item))

    def invoke(self, max_workers: int | None = None) -> None:
        """Run the task tree to completion.

        A range small enough to be a single leaf runs in the calling thread.
        Otherwise the leaves are submitted to a thread pool and joined in
        order; an unexpected exception in any leaf is re-raised here.
        """
        leaves = self.leaves()
        if len(leaves) == 1:
            leaves[0].compute()
            return
        logger.debug("%s: %d items split into %d leaves", self.name, len(self), len(leaves))
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(leaf.compute) for leaf in leaves]
            for future in futures:
                future.result()


# ---------------------------------------------------------------------------
# Segment assignment
# ---------------------------------------------------------------------------


def assign_segments(nucleus: Nucleus, median: SegmentedProfile) -> SegmentRing:
    """Map the median's segment boundaries onto one nucleus.

    For each median boundary the nucleus's RP-anchored angle profile is
    matched against the median rotated to that boundary; the best-fit offset
    becomes the nucleus's boundary. Segment ids follow the median.

    Returns:
        The nucleus's ring in RP-anchored coordinates.

    Raises:
        ProfileError: If the fitted boundaries do not form a valid ring.
    """
    profile = nucleus.profile(ProfileType.ANGLE, Landmark.REFERENCE_POINT)
    fitted: dict[int, int] = {}
    starts = []
    for seg in median.segments:
        if seg.start not in fitted:
            fitted[seg.start] = profile.find_best_fit_offset(median.offset(seg.start))
        starts.append(fitted[seg.start])
    return SegmentRing.from_starts(starts, len(profile), median.segments.ids)


class SegmentAssignmentTask(RangeTask):
    """Assign the median's segments to every eligible nucleus.

    Args:
        nuclei: Population members.
        median: RP-anchored median carrying the segments to assign.
        eligible: Predicate selecting the nuclei that may be changed.
    """

    name = "segment-assignment"

    def __init__(
        self,
        nuclei: Sequence[Nucleus],
        median: SegmentedProfile,
        *,
        eligible: Eligibility = is_unlocked,
        **kwargs: Any,
    ) -> None:
        super().__init__(nuclei, **kwargs)
        self.median = median
        self.eligible = eligible

    def process(self, index: int, item: Nucleus) -> None:
        if not self.eligible(item):
            logger.debug("Nucleus %s is not eligible for segment assignment", item.id)
            return
        item.set_anchored_segments(assign_segments(item, self.median))


# ---------------------------------------------------------------------------
# Recombination
# ---------------------------------------------------------------------------


class SegmentRecombiningTask(RangeTask):
    """Fit each eligible nucleus's segments and store its frankenprofile."""

    name = "segment-recombination"

    def __init__(
        self,
        nuclei: Sequence[Nucleus],
        fitter: SegmentFitter,
        *,
        eligible: Eligibility = is_unlocked,
        **kwargs: Any,
    ) -> None:
        super().__init__(nuclei, **kwargs)
        self.fitter = fitter
        self.eligible = eligible

    def process(self, index: int, item: Nucleus) -> None:
        if not self.eligible(item):
            logger.debug("Nucleus %s is not eligible for recombination", item.id)
            return
        fitted = self.fitter.fit(item.profile(ProfileType.ANGLE, Landmark.REFERENCE_POINT))
        franken = self.fitter.recombine(fitted)
        item.set_anchored_segments(fitted.segments)
        item.set_franken(franken)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


class NucleusBuildTask(RangeTask):
    """Build nuclei (and their profiles) from raw border records.

    Results are written to :attr:`results` at the record's own position;
    records that fail to build leave ``None`` behind. A *window_proportion*
    of ``None`` keeps each record's own value.
    """

    name = "nucleus-import"
    default_threshold = IMPORT_TASK_THRESHOLD

    def __init__(
        self,
        records: Sequence[dict[str, Any]],
        *,
        window_proportion: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(records, **kwargs)
        self.window_proportion = window_proportion
        self.results: list[Nucleus | None] = [None] * len(records)

    def process(self, index: int, item: dict[str, Any]) -> None:
        self.results[index] = Nucleus.from_dict(item, self.window_proportion)

    def describe(self, item: dict[str, Any]) -> str:
        return str(item.get("id", "<unnamed record>"))

    def built(self) -> list[Nucleus]:
        return [n for n in self.results if n is not None]


__all__ = [
    "IMPORT_TASK_THRESHOLD",
    "PROFILE_TASK_THRESHOLD",
    "NucleusBuildTask",
    "ProgressCallback",
    "RangeTask",
    "SegmentAssignmentTask",
    "SegmentRecombiningTask",
    "assign_segments",
]
