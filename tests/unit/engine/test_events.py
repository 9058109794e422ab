"""Unit tests for the typed event dataclasses and EventBus/Observer system.

Tests cover:
- Frozen dataclass immutability and timestamps
- Observer structural typing (no inheritance required)
- EventBus filtered dispatch, base-type subscription and ordering
- Single delivery to an observer subscribed at several levels
- Fault-tolerant dispatch and unsubscribe
- Emission from worker threads
"""

from __future__ import annotations

import threading
import time
from dataclasses import FrozenInstanceError

import pytest

from nucleusprofile.engine.events import (
    Event,
    IndividualProcessed,
    PipelineComplete,
    PipelineFailed,
    PipelineStart,
    StageComplete,
    StageStart,
)
from nucleusprofile.engine.observers import EventBus, Observer


class Recorder:
    def __init__(self) -> None:
        self.received: list[Event] = []

    def on_event(self, event: Event) -> None:
        self.received.append(event)


# ---------------------------------------------------------------------------
# Event dataclass tests
# ---------------------------------------------------------------------------


def test_event_dataclasses_frozen() -> None:
    """Mutating a frozen event field raises FrozenInstanceError."""
    event = PipelineStart(run_id="run_test", config=None)
    with pytest.raises(FrozenInstanceError):
        event.run_id = "mutated"  # type: ignore[misc]


def test_event_has_timestamp() -> None:
    """StageComplete event has a float timestamp taken at construction."""
    before = time.time()
    event = StageComplete(
        stage_name="ProfilingStage", stage_index=1, elapsed_seconds=1.0, summary={}
    )
    after = time.time()

    assert isinstance(event.timestamp, float)
    assert before <= event.timestamp <= after


def test_individual_processed_fields() -> None:
    event = IndividualProcessed(stage_name="segment-assignment", individual_id="n3", total=40)
    assert (event.stage_name, event.individual_id, event.total) == (
        "segment-assignment",
        "n3",
        40,
    )


# ---------------------------------------------------------------------------
# Observer protocol tests
# ---------------------------------------------------------------------------


def test_observer_structural_typing() -> None:
    """A plain class with on_event satisfies Observer without inheritance."""
    assert isinstance(Recorder(), Observer)
    assert not isinstance(object(), Observer)


# ---------------------------------------------------------------------------
# EventBus tests
# ---------------------------------------------------------------------------


def test_eventbus_delivers_to_subscriber() -> None:
    bus = EventBus()
    recorder = Recorder()
    bus.subscribe(StageStart, recorder)

    evt = StageStart(stage_name="ImportStage", stage_index=0)
    bus.emit(evt)

    assert recorder.received == [evt]


def test_eventbus_filters_by_type() -> None:
    """Observer subscribed to StageStart does not receive PipelineComplete."""
    a, b = Recorder(), Recorder()
    bus = EventBus()
    bus.subscribe(StageStart, a)
    bus.subscribe(PipelineComplete, b)

    bus.emit(StageStart(stage_name="SegmentationStage", stage_index=2))

    assert len(a.received) == 1
    assert len(b.received) == 0


def test_eventbus_synchronous_order() -> None:
    """Observers receive the event in subscription order (A, B, C)."""
    order: list[str] = []

    class Named:
        def __init__(self, name: str) -> None:
            self.name = name

        def on_event(self, event: Event) -> None:
            order.append(self.name)

    bus = EventBus()
    for name in "ABC":
        bus.subscribe(PipelineStart, Named(name))

    bus.emit(PipelineStart(run_id="run_test", config=None))

    assert order == ["A", "B", "C"]


def test_eventbus_base_type_subscription() -> None:
    """Subscribing to Event (base) receives all event subtypes."""
    catch_all = Recorder()
    bus = EventBus()
    bus.subscribe(Event, catch_all)

    bus.emit(StageStart(stage_name="ExportStage", stage_index=3))
    bus.emit(PipelineComplete(run_id="run_test", elapsed_seconds=5.0))
    bus.emit(IndividualProcessed(stage_name="nucleus-import", individual_id="a", total=1))

    assert len(catch_all.received) == 3


def test_observer_on_several_levels_receives_once() -> None:
    recorder = Recorder()
    bus = EventBus()
    bus.subscribe(Event, recorder)
    bus.subscribe(StageStart, recorder)

    bus.emit(StageStart(stage_name="ImportStage", stage_index=0))

    assert len(recorder.received) == 1


def test_eventbus_fault_tolerant() -> None:
    """A raising observer does not prevent delivery to subsequent observers."""

    class RaisingObserver:
        def on_event(self, event: Event) -> None:
            raise RuntimeError("deliberate failure")

    good = Recorder()
    bus = EventBus()
    bus.subscribe(PipelineFailed, RaisingObserver())
    bus.subscribe(PipelineFailed, good)

    evt = PipelineFailed(run_id="run_test", error="oops", elapsed_seconds=1.0)
    bus.emit(evt)

    assert good.received == [evt]


def test_unsubscribe() -> None:
    """After unsubscribe, observer receives no further events."""
    recorder = Recorder()
    bus = EventBus()
    bus.subscribe(StageComplete, recorder)

    bus.emit(StageComplete(stage_name="ImportStage", stage_index=0, elapsed_seconds=1.0))
    bus.unsubscribe(StageComplete, recorder)
    bus.emit(StageComplete(stage_name="ProfilingStage", stage_index=1, elapsed_seconds=0.5))

    assert len(recorder.received) == 1
    bus.unsubscribe(StageComplete, recorder)


def test_emit_from_worker_threads() -> None:
    counts = {"n": 0}
    lock = threading.Lock()

    class Counter:
        def on_event(self, event: Event) -> None:
            with lock:
                counts["n"] += 1

    bus = EventBus()
    bus.subscribe(IndividualProcessed, Counter())

    def work() -> None:
        for i in range(50):
            bus.emit(IndividualProcessed(stage_name="t", individual_id=str(i), total=200))

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert counts["n"] == 200
