"""Profiling pipeline engine.

Event system, observers, config hierarchy, and the pipeline orchestrator.

Import boundary: engine/ may import from core/, but core/ must NEVER import
from engine/. Per-individual progress crosses the boundary as a plain
callback on the pipeline context.
"""

from nucleusprofile.core.context import PipelineContext, Stage
from nucleusprofile.engine.config import (
    ConcurrencyConfig,
    PipelineConfig,
    ProfilingConfig,
    SegmentationConfig,
    load_config,
    serialize_config,
)
from nucleusprofile.engine.console_observer import ConsoleObserver
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
from nucleusprofile.engine.pipeline import ProfilingPipeline, build_stages
from nucleusprofile.engine.progress import ProgressObserver
from nucleusprofile.engine.timing import TimingObserver

__all__ = [
    "ConcurrencyConfig",
    "ConsoleObserver",
    "Event",
    "EventBus",
    "IndividualProcessed",
    "Observer",
    "PipelineComplete",
    "PipelineConfig",
    "PipelineContext",
    "PipelineFailed",
    "PipelineStart",
    "ProfilingConfig",
    "ProfilingPipeline",
    "ProgressObserver",
    "SegmentationConfig",
    "Stage",
    "StageComplete",
    "StageStart",
    "TimingObserver",
    "build_stages",
    "load_config",
    "serialize_config",
]
