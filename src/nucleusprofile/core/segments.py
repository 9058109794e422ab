"""Segments and segment rings over circular profiles.

A :class:`Segment` is a value record for the half-open span ``[start, end)``
on a circular profile of ``total_length`` points. A :class:`SegmentRing` is an
ordered, immutable tuple of segments that tiles the whole profile; the
neighbours of a segment are derived from its position in the tuple, the last
segment being followed by the first.

Edits (merge, split, unmerge, boundary updates) never mutate a ring: they
return a new ring, so a failed edit leaves the original untouched.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from nucleusprofile.core.exceptions import (
    MissingSegmentError,
    ProfileError,
    SegmentUpdateError,
)
from nucleusprofile.core.profile import Profile

logger = logging.getLogger(__name__)

MIN_SEGMENT_SIZE = 10
DEFAULT_SEGMENT_ID = "00000000-0000-0000-0000-000000000000"


def new_segment_id() -> str:
    """Return a fresh, globally unique segment identifier."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Segment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Segment:
    """One contiguous span of a circular profile.

    Attributes:
        id: Stable identifier, preserved when segments are copied between
            individuals and populations.
        start: First index of the span.
        end: One past the last index of the span (wrapping). ``start == end``
            means the segment covers the whole profile.
        total_length: Length of the profile the segment lives on.
        merge_sources: The two segments this one was merged from, if any.
        locked: Locked segments are not moved by segment fitting.
    """

    id: str
    start: int
    end: int
    total_length: int
    merge_sources: tuple[Segment, ...] = ()
    locked: bool = False

    def __post_init__(self) -> None:
        if self.total_length <= 0:
            raise SegmentUpdateError(
                f"Segment {self.id} has non-positive total length {self.total_length}"
            )
        object.__setattr__(self, "start", int(self.start) % self.total_length)
        object.__setattr__(self, "end", int(self.end) % self.total_length)

    @property
    def length(self) -> int:
        span = (self.end - self.start) % self.total_length
        return span if span else self.total_length

    @property
    def is_merge(self) -> bool:
        return bool(self.merge_sources)

    def contains(self, index: int) -> bool:
        return (int(index) - self.start) % self.total_length < self.length

    def proportional_index(self, proportion: float) -> int:
        """Return the border index lying *proportion* of the way through."""
        if not 0 <= proportion <= 1:
            raise SegmentUpdateError(f"Proportion {proportion} is outside [0, 1]")
        step = int(round(self.length * proportion))
        return (self.start + step) % self.total_length

    def index_proportion(self, index: int) -> float:
        """Inverse of :meth:`proportional_index` for an index inside the segment."""
        if not self.contains(index):
            raise SegmentUpdateError(f"Index {index} is not inside segment {self.id}")
        return ((int(index) - self.start) % self.total_length) / self.length

    def shifted(self, k: int) -> Segment:
        """Return the segment as seen from a profile rotated by *k*."""
        return dataclasses.replace(
            self,
            start=self.start - k,
            end=self.end - k,
            merge_sources=tuple(s.shifted(k) for s in self.merge_sources),
        )

    def rescaled(self, new_length: int) -> Segment:
        """Return the segment with proportionally rescaled bounds."""
        scale = new_length / self.total_length
        return dataclasses.replace(
            self,
            start=int(round(self.start * scale)) % new_length,
            end=int(round(self.end * scale)) % new_length,
            total_length=new_length,
            merge_sources=tuple(s.rescaled(new_length) for s in self.merge_sources),
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping of the bounds, lock and (recursively) merge sources."""
        data: dict[str, Any] = {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "locked": self.locked,
        }
        if self.merge_sources:
            data["merge_sources"] = [s.to_dict() for s in self.merge_sources]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], total_length: int) -> Segment:
        return cls(
            str(data["id"]),
            int(data["start"]),
            int(data["end"]),
            total_length,
            merge_sources=tuple(
                cls.from_dict(s, total_length) for s in data.get("merge_sources") or ()
            ),
            locked=bool(data.get("locked", False)),
        )


# ---------------------------------------------------------------------------
# SegmentRing
# ---------------------------------------------------------------------------


class SegmentRing:
    """Ordered, closed tiling of a circular profile by segments.

    Args:
        segments: Segments in ring order. Each segment's ``end`` must equal
            the following segment's ``start`` and the lengths must sum to the
            shared ``total_length``.

    Raises:
        SegmentUpdateError: If the segments do not form a valid closed ring.
    """

    __slots__ = ("_segments", "_index")

    def __init__(self, segments: Iterable[Segment]) -> None:
        segs = tuple(segments)
        if not segs:
            raise SegmentUpdateError("A segment ring needs at least one segment")
        total = segs[0].total_length
        if any(s.total_length != total for s in segs):
            raise SegmentUpdateError("Segments in a ring must share a total length")
        ids = [s.id for s in segs]
        if len(set(ids)) != len(ids):
            raise SegmentUpdateError(f"Duplicate segment ids in ring: {ids}")
        for i, seg in enumerate(segs):
            following = segs[(i + 1) % len(segs)]
            if seg.end != following.start:
                raise SegmentUpdateError(
                    f"Segment {seg.id} ends at {seg.end} but {following.id} "
                    f"starts at {following.start}"
                )
        covered = sum(s.length for s in segs)
        if covered != total:
            raise SegmentUpdateError(
                f"Segments cover {covered} indexes of a {total}-point profile"
            )
        self._segments = segs
        self._index = {s.id: i for i, s in enumerate(segs)}

    @classmethod
    def from_starts(
        cls,
        starts: Sequence[int],
        total_length: int,
        ids: Sequence[str] | None = None,
    ) -> SegmentRing:
        """Build a ring from segment start indexes given in ring order."""
        if ids is None:
            ids = [new_segment_id() for _ in starts]
        if len(ids) != len(starts):
            raise SegmentUpdateError("Need exactly one id per segment start")
        count = len(starts)
        return cls(
            Segment(ids[i], starts[i], starts[(i + 1) % count], total_length)
            for i in range(count)
        )

    @classmethod
    def single(cls, total_length: int, segment_id: str = DEFAULT_SEGMENT_ID) -> SegmentRing:
        return cls([Segment(segment_id, 0, 0, total_length)])

    @classmethod
    def from_list(cls, items: Iterable[dict[str, Any]], total_length: int) -> SegmentRing:
        """Inverse of :meth:`to_list`."""
        return cls(Segment.from_dict(item, total_length) for item in items)

    def to_list(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self._segments]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def total_length(self) -> int:
        return self._segments[0].total_length

    @property
    def ids(self) -> list[str]:
        return [s.id for s in self._segments]

    @property
    def starts(self) -> list[int]:
        return [s.start for s in self._segments]

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self) -> Iterator[Segment]:
        return iter(self._segments)

    def __contains__(self, segment_id: object) -> bool:
        return segment_id in self._index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SegmentRing):
            return NotImplemented
        return self._segments == other._segments

    def __hash__(self) -> int:
        return hash(self._segments)

    def __repr__(self) -> str:
        bounds = ", ".join(f"[{s.start},{s.end})" for s in self._segments)
        return f"SegmentRing(n={self.total_length}, {bounds})"

    def position(self, segment_id: str) -> int:
        try:
            return self._index[segment_id]
        except KeyError:
            raise MissingSegmentError(f"No segment with id {segment_id}") from None

    def get(self, segment_id: str) -> Segment:
        return self._segments[self.position(segment_id)]

    def __getitem__(self, segment_id: str) -> Segment:
        return self.get(segment_id)

    def first(self) -> Segment:
        return self._segments[0]

    def next(self, segment_id: str) -> Segment:
        return self._segments[(self.position(segment_id) + 1) % len(self)]

    def previous(self, segment_id: str) -> Segment:
        return self._segments[(self.position(segment_id) - 1) % len(self)]

    def segment_containing(self, index: int) -> Segment:
        for seg in self._segments:
            if seg.contains(index):
                return seg
        raise MissingSegmentError(f"No segment contains index {index}")

    def has_same_ids(self, other: SegmentRing) -> bool:
        return self.ids == other.ids

    def same_boundaries(self, other: SegmentRing) -> bool:
        """True when both rings split the profile at the same indexes."""
        return sorted(self.starts) == sorted(other.starts)

    # ------------------------------------------------------------------
    # Whole-ring transforms
    # ------------------------------------------------------------------

    def offset(self, k: int) -> SegmentRing:
        """Return the ring as seen from a profile rotated by *k*."""
        return SegmentRing(s.shifted(int(k)) for s in self._segments)

    def interpolate(self, new_length: int) -> SegmentRing:
        """Rescale every boundary proportionally onto *new_length* points.

        Raises:
            SegmentUpdateError: If rescaling collapses a segment.
        """
        if new_length == self.total_length:
            return self
        return SegmentRing(s.rescaled(new_length) for s in self._segments)

    def with_lock(self, locked: bool, except_id: str | None = None) -> SegmentRing:
        """Set the lock state of every segment.

        The segment named by *except_id*, if any, receives the opposite state.
        """
        return SegmentRing(
            dataclasses.replace(s, locked=(not locked) if s.id == except_id else locked)
            for s in self._segments
        )

    def lock_segment(self, segment_id: str, locked: bool = True) -> SegmentRing:
        self.get(segment_id)
        return SegmentRing(
            dataclasses.replace(s, locked=locked) if s.id == segment_id else s
            for s in self._segments
        )

    def _rotated_to_cover(self, segs: list[Segment], index: int) -> SegmentRing:
        # Keep the segment covering the original first start at the front.
        for i, seg in enumerate(segs):
            if seg.contains(index):
                return SegmentRing(segs[i:] + segs[:i])
        return SegmentRing(segs)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def merge(self, first_id: str, second_id: str, new_id: str | None = None) -> SegmentRing:
        """Merge two adjacent segments into one.

        Raises:
            SegmentUpdateError: If the segments are not adjacent.
            MissingSegmentError: If either id is absent.
        """
        a, b = self.get(first_id), self.get(second_id)
        if len(self) < 2 or a.id == b.id:
            raise SegmentUpdateError("Merging needs two distinct segments")
        if self.next(a.id).id == b.id:
            head, tail = a, b
        elif self.next(b.id).id == a.id:
            head, tail = b, a
        else:
            raise SegmentUpdateError(f"Segments {a.id} and {b.id} are not adjacent")
        merged = Segment(
            new_id or new_segment_id(),
            head.start,
            tail.end,
            self.total_length,
            merge_sources=(head, tail),
            locked=head.locked and tail.locked,
        )
        segs = []
        for seg in self._segments:
            if seg.id == head.id:
                segs.append(merged)
            elif seg.id != tail.id:
                segs.append(seg)
        return self._rotated_to_cover(segs, self._segments[0].start)

    def unmerge(self, segment_id: str) -> SegmentRing:
        """Restore the two source segments of a merged segment.

        The inner boundary is taken from the sources when it still lies
        inside the merged span, otherwise it is placed proportionally.

        Raises:
            SegmentUpdateError: If the segment was not formed by a merge.
        """
        seg = self.get(segment_id)
        if not seg.is_merge:
            raise SegmentUpdateError(f"Segment {segment_id} is not a merged segment")
        head, tail = seg.merge_sources
        inner = head.end % self.total_length
        if not seg.contains(inner) or inner == seg.start:
            fraction = head.length / (head.length + tail.length)
            inner = seg.proportional_index(fraction)
        restored = (
            dataclasses.replace(head, start=seg.start, end=inner, total_length=self.total_length),
            dataclasses.replace(tail, start=inner, end=seg.end, total_length=self.total_length),
        )
        segs: list[Segment] = []
        for s in self._segments:
            segs.extend(restored if s.id == seg.id else (s,))
        return SegmentRing(segs)

    def split(
        self,
        segment_id: str,
        index: int,
        first_id: str | None = None,
        second_id: str | None = None,
        min_length: int = MIN_SEGMENT_SIZE,
    ) -> SegmentRing:
        """Split a segment in two at *index*.

        Raises:
            SegmentUpdateError: If the segment came from a merge, *index* is
                not strictly inside it, or either part would be shorter than
                *min_length*.
        """
        seg = self.get(segment_id)
        if seg.is_merge:
            raise SegmentUpdateError(
                f"Segment {segment_id} was formed by a merge and cannot be split"
            )
        index = int(index) % self.total_length
        if not seg.contains(index) or index == seg.start:
            raise SegmentUpdateError(f"Index {index} is not inside segment {segment_id}")
        head_length = (index - seg.start) % self.total_length
        tail_length = seg.length - head_length
        if min(head_length, tail_length) < min_length:
            raise SegmentUpdateError(
                f"Splitting {segment_id} at {index} would leave a segment shorter "
                f"than {min_length}"
            )
        head = Segment(first_id or new_segment_id(), seg.start, index, self.total_length, locked=seg.locked)
        tail = Segment(second_id or new_segment_id(), index, seg.end, self.total_length, locked=seg.locked)
        segs: list[Segment] = []
        for s in self._segments:
            segs.extend((head, tail) if s.id == seg.id else (s,))
        return SegmentRing(segs)

    def update(
        self,
        segment_id: str,
        start: int,
        end: int,
        min_length: int = MIN_SEGMENT_SIZE,
    ) -> SegmentRing:
        """Move the bounds of one segment, resizing only its neighbours.

        Raises:
            SegmentUpdateError: If any resized segment would be shorter than
                *min_length* or the ring would no longer close.
        """
        if len(self) < 2:
            raise SegmentUpdateError("A single-segment ring has no movable bounds")
        n = self.total_length
        seg = self.get(segment_id)
        prev, following = self.previous(segment_id), self.next(segment_id)
        changed = {seg.id: dataclasses.replace(seg, start=start, end=end)}
        if prev.id == following.id:
            changed[prev.id] = dataclasses.replace(prev, start=end, end=start)
        else:
            changed[prev.id] = dataclasses.replace(prev, end=start)
            changed[following.id] = dataclasses.replace(following, start=end)
        for s in changed.values():
            if (s.end - s.start) % n == 0 or s.length < min_length:
                raise SegmentUpdateError(
                    f"Moving {segment_id} to [{start}, {end}) would leave "
                    f"segment {s.id} shorter than {min_length}"
                )
        return SegmentRing(changed.get(s.id, s) for s in self._segments)

    def adjust_start(
        self, segment_id: str, delta: int, min_length: int = MIN_SEGMENT_SIZE
    ) -> SegmentRing:
        seg = self.get(segment_id)
        return self.update(segment_id, seg.start + delta, seg.end, min_length)

    def shortest(self) -> int:
        return min(s.length for s in self._segments)


# ---------------------------------------------------------------------------
# SegmentedProfile
# ---------------------------------------------------------------------------


class SegmentedProfile(Profile):
    """A profile together with the segment ring that tiles it.

    Args:
        values: Profile values.
        segments: Ring whose total length equals ``len(values)``. A single
            default segment is used when omitted.
    """

    __slots__ = ("_segments",)

    def __init__(
        self,
        values: Sequence[float] | np.ndarray,
        segments: SegmentRing | None = None,
    ) -> None:
        super().__init__(values)
        if segments is None:
            segments = SegmentRing.single(len(self))
        if segments.total_length != len(self):
            raise ProfileError(
                f"Segments cover {segments.total_length} points but the profile "
                f"has {len(self)}"
            )
        self._segments = segments

    @classmethod
    def from_profile(cls, profile: Profile, segments: SegmentRing | None = None) -> SegmentedProfile:
        return cls(profile.values, segments)

    @property
    def segments(self) -> SegmentRing:
        return self._segments

    def with_segments(self, segments: SegmentRing) -> SegmentedProfile:
        return SegmentedProfile(self.values, segments)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SegmentedProfile):
            return super().__eq__(other) and self._segments == other._segments
        return super().__eq__(other)

    __hash__ = Profile.__hash__

    def offset(self, k: int) -> SegmentedProfile:
        return SegmentedProfile(np.roll(self.values, -int(k)), self._segments.offset(k))

    def start_from(self, k: int) -> SegmentedProfile:
        return self.offset(k)

    def segment_profile(self, segment_id: str) -> Profile:
        """Return the values covered by one segment, in order."""
        seg = self._segments.get(segment_id)
        return self.subregion(seg.start, seg.start + seg.length - 1)

    def franken_normalise(self, template: SegmentedProfile) -> SegmentedProfile:
        """Stretch each segment onto the template's segment of the same id.

        The stretched pieces are concatenated in the template's ring order,
        giving a profile that is point-for-point comparable with the template
        and carries the template's segments.

        Raises:
            ProfileError: If the two rings do not hold the same segment ids.
        """
        if set(self._segments.ids) != set(template.segments.ids):
            raise ProfileError("Cannot recombine profiles with different segment ids")
        pieces = [
            self.segment_profile(seg.id).interpolate(seg.length).values
            for seg in template.segments
        ]
        joined = np.roll(np.concatenate(pieces), template.segments.first().start)
        return SegmentedProfile(joined, template.segments)


__all__ = [
    "DEFAULT_SEGMENT_ID",
    "MIN_SEGMENT_SIZE",
    "Segment",
    "SegmentRing",
    "SegmentedProfile",
    "new_segment_id",
]
