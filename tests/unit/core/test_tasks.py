"""Unit tests for the fork/join range tasks."""

from __future__ import annotations

import logging
import threading

import numpy as np
import pytest

from nucleusprofile.core.exceptions import ProfileError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.profile import ProfileType
from nucleusprofile.core.segments import SegmentRing
from nucleusprofile.core.tasks import (
    NucleusBuildTask,
    RangeTask,
    SegmentAssignmentTask,
    assign_segments,
)


class RecordingTask(RangeTask):
    """Records which thread handled each index."""

    name = "recording"

    def __init__(self, items, *, fail_on=(), **kwargs) -> None:
        super().__init__(items, **kwargs)
        self.fail_on = set(fail_on)
        self.seen: list[int] = []
        self._lock = threading.Lock()

    def process(self, index, item) -> None:
        if index in self.fail_on:
            raise ProfileError(f"bad item {item}")
        with self._lock:
            self.seen.append(index)


def test_leaves_are_balanced() -> None:
    task = RecordingTask(list(range(100)), threshold=30)
    assert [(leaf.low, leaf.high) for leaf in task.leaves()] == [
        (0, 25),
        (25, 50),
        (50, 75),
        (75, 100),
    ]


def test_small_range_is_a_single_leaf() -> None:
    task = RecordingTask(list(range(5)), threshold=30)
    assert task.leaves() == [task]


def test_every_item_processed_exactly_once() -> None:
    task = RecordingTask(list(range(100)), threshold=7)
    task.invoke(max_workers=4)
    assert sorted(task.seen) == list(range(100))


def test_profile_errors_are_logged_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    task = RecordingTask(list(range(10)), fail_on={3}, threshold=4)
    with caplog.at_level(logging.WARNING, logger="nucleusprofile.core.tasks"):
        task.invoke()
    assert sorted(task.seen) == [0, 1, 2, 4, 5, 6, 7, 8, 9]
    assert "bad item 3" in caplog.text


def test_unexpected_errors_propagate() -> None:
    class Exploding(RangeTask):
        def process(self, index, item) -> None:
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        Exploding(list(range(100)), threshold=10).invoke()


def test_progress_reports_every_item() -> None:
    calls = []
    task = RecordingTask(
        list(range(100)),
        threshold=30,
        on_progress=lambda name, item_id, total: calls.append((name, item_id, total)),
    )
    task.invoke()
    assert len(calls) == 100
    assert {c[0] for c in calls} == {"recording"}
    assert {c[2] for c in calls} == {100}
    assert sorted(int(c[1]) for c in calls) == list(range(100))


def test_build_task_keeps_positions(make_teardrop) -> None:
    records = [
        {"id": "a", "border": make_teardrop().tolist()},
        {"id": "broken"},
        {"id": "c", "border": make_teardrop(tip=5).tolist(), "window_proportion": 0.1},
    ]
    task = NucleusBuildTask(records, threshold=1)
    task.invoke()
    assert task.results[1] is None
    assert [n.id for n in task.built()] == ["a", "c"]
    assert task.results[2].window_proportion == 0.1


def test_build_task_window_override(make_teardrop) -> None:
    records = [{"id": "a", "border": make_teardrop().tolist(), "window_proportion": 0.1}]
    task = NucleusBuildTask(records, window_proportion=0.02)
    task.invoke()
    assert task.built()[0].window_proportion == 0.02


def test_assign_segments_follows_the_median(population) -> None:
    population.create_profile_collections()
    ring = SegmentRing.from_starts([0, 30, 60], 100, ["a", "b", "c"])
    median = population.median(ProfileType.ANGLE, Landmark.REFERENCE_POINT).with_segments(ring)
    for nucleus in population:
        assert assign_segments(nucleus, median) == ring


def test_assignment_task_skips_ineligible(population) -> None:
    population.create_profile_collections()
    ring = SegmentRing.from_starts([0, 30, 60], 100, ["a", "b", "c"])
    median = population.median().with_segments(ring)
    SegmentAssignmentTask(
        population.nuclei, median, eligible=lambda n: n.id != "n2", threshold=3
    ).invoke()
    assert population.get("n2").segments is None
    n1 = population.get("n1")
    assert n1.anchored_segments() == ring
    assert n1.segments.starts == [7, 37, 67]
    assert np.isclose(population.median()[0], n1.profile()[0])
