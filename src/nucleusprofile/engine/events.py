"""Frozen event types emitted while a profiling run executes.

Three families, each with a shared base:

- run events (:class:`RunEvent`): start, completion and failure of the run;
- stage events (:class:`StageEvent`): start and completion of one stage;
- :class:`IndividualProcessed`: one nucleus handled by a leaf task.

Progress events are advisory; nothing in a run waits on them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Event:
    """Root of the hierarchy; subscribing to it receives everything."""

    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Run events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunEvent(Event):
    """An event about the run as a whole.

    Attributes:
        run_id: Identifier of the run, as in ``PipelineConfig.run_id``.
    """

    run_id: str = ""


@dataclass(frozen=True)
class PipelineStart(RunEvent):
    """The run is about to execute its first stage.

    ``config`` is the run's ``PipelineConfig``, typed loosely so this module
    stays free of config imports.
    """

    config: object = field(default=None, compare=False)


@dataclass(frozen=True)
class PipelineComplete(RunEvent):
    """Every stage finished; ``context`` is the final ``PipelineContext``."""

    elapsed_seconds: float = 0.0
    context: object = field(default=None, compare=False)


@dataclass(frozen=True)
class PipelineFailed(RunEvent):
    """A stage raised; ``error`` is the exception's message."""

    error: str = ""
    elapsed_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Stage events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageEvent(Event):
    """An event about one stage.

    Attributes:
        stage_name: Class name of the stage.
        stage_index: Zero-based position of the stage in the run.
    """

    stage_name: str = ""
    stage_index: int = 0


@dataclass(frozen=True)
class StageStart(StageEvent):
    pass


@dataclass(frozen=True)
class StageComplete(StageEvent):
    """The stage returned.

    Attributes:
        elapsed_seconds: Wall-clock time spent in the stage.
        summary: Metrics the stage left in ``context.summary``, such as
            ``{"nuclei": 120}`` or ``{"not_matching_median": 3}``.
    """

    elapsed_seconds: float = 0.0
    summary: dict[str, object] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndividualProcessed(Event):
    """A leaf task finished with one nucleus (or input record).

    Emitted from pool worker threads.

    Attributes:
        stage_name: Name of the task, e.g. ``segment-assignment``.
        individual_id: Id of the nucleus or record handled.
        total: Size of the whole task tree the item belongs to.
    """

    stage_name: str = ""
    individual_id: str = ""
    total: int = 0


__all__ = [
    "Event",
    "IndividualProcessed",
    "PipelineComplete",
    "PipelineFailed",
    "PipelineStart",
    "RunEvent",
    "StageComplete",
    "StageEvent",
    "StageStart",
]
