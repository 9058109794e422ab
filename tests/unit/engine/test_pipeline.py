"""Unit tests for ProfilingPipeline orchestration, event emission, and config artifact."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from nucleusprofile.core.context import PipelineContext
from nucleusprofile.engine import (
    Event,
    IndividualProcessed,
    PipelineComplete,
    PipelineFailed,
    PipelineStart,
    ProfilingPipeline,
    StageComplete,
    StageStart,
    load_config,
)

# ---------------------------------------------------------------------------
# Test helpers / fixtures
# ---------------------------------------------------------------------------


class MockStage:
    """Stage conforming to the Stage protocol via structural typing.

    Records its own name under ``context.stage_timing["_order"]`` so tests can
    inspect execution order without building a population.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def run(self, context: PipelineContext) -> PipelineContext:
        order = context.stage_timing.setdefault("_order", [])
        order.append(self.name)  # type: ignore[attr-defined]
        return context


class FailingStage:
    """Stage that always raises RuntimeError."""

    def run(self, context: PipelineContext) -> PipelineContext:
        raise RuntimeError("boom")


class ProgressStage:
    """Stage that reports three individuals and a summary metric."""

    def run(self, context: PipelineContext) -> PipelineContext:
        for item in ("a", "b", "c"):
            context.on_progress("nucleus-import", item, 3)
        context.summary["nuclei"] = 3
        return context


class RecordingObserver:
    """Observer that records every received event in order."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def on_event(self, event: Event) -> None:
        self.events.append(event)


class ConfigCheckStage:
    """Stage that checks the config.yaml artifact already exists when it runs."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir
        self.config_existed: bool = False

    def run(self, context: PipelineContext) -> PipelineContext:
        self.config_existed = (self.output_dir / "config.yaml").exists()
        return context


@pytest.fixture
def config(tmp_path: Path):
    return load_config(run_id="test_run", cli_overrides={"output_dir": str(tmp_path)})


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


def test_pipeline_runs_stages_in_order(config) -> None:
    """Stages execute in the order A, B, C."""
    stages = [MockStage("A"), MockStage("B"), MockStage("C")]
    context = ProfilingPipeline(stages=stages, config=config).run()

    assert context.stage_timing["_order"] == ["A", "B", "C"]


def test_pipeline_emits_lifecycle_events(config) -> None:
    """Observer receives PipelineStart, StageStart, StageComplete, PipelineComplete."""
    observer = RecordingObserver()
    ProfilingPipeline(stages=[MockStage("only")], config=config, observers=[observer]).run()

    types = [type(e) for e in observer.events]
    assert types == [PipelineStart, StageStart, StageComplete, PipelineComplete]


def test_pipeline_writes_config_artifact(config, tmp_path: Path) -> None:
    """config.yaml written to output_dir with the run_id and stage sections."""
    ProfilingPipeline(stages=[MockStage("x")], config=config).run()

    config_file = tmp_path / "config.yaml"
    assert config_file.exists()

    parsed = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    assert parsed["run_id"] == "test_run"
    assert parsed["segmentation"]["mode"] == "new"
    assert parsed["profiling"]["max_coercion_attempts"] == 50


def test_config_artifact_written_before_stages(config, tmp_path: Path) -> None:
    checker = ConfigCheckStage(output_dir=tmp_path)
    ProfilingPipeline(stages=[checker], config=config).run()

    assert checker.config_existed


def test_pipeline_emits_failed_on_error(config) -> None:
    """PipelineFailed emitted with the error message and the error re-raised."""
    observer = RecordingObserver()
    pipeline = ProfilingPipeline(stages=[FailingStage()], config=config, observers=[observer])

    with pytest.raises(RuntimeError, match="boom"):
        pipeline.run()

    failed = [e for e in observer.events if isinstance(e, PipelineFailed)]
    assert len(failed) == 1
    assert "boom" in failed[0].error
    assert not any(isinstance(e, PipelineComplete) for e in observer.events)


def test_pipeline_records_stage_timing(config) -> None:
    """stage_timing has non-negative entries keyed by stage class name."""

    class FirstStage:
        def run(self, context: PipelineContext) -> PipelineContext:
            return context

    class SecondStage:
        def run(self, context: PipelineContext) -> PipelineContext:
            return context

    context = ProfilingPipeline(stages=[FirstStage(), SecondStage()], config=config).run()

    assert context.stage_timing["FirstStage"] >= 0.0
    assert context.stage_timing["SecondStage"] >= 0.0


def test_progress_callbacks_become_events(config) -> None:
    observer = RecordingObserver()
    ProfilingPipeline(stages=[ProgressStage()], config=config, observers=[observer]).run()

    progress = [e for e in observer.events if isinstance(e, IndividualProcessed)]
    assert [e.individual_id for e in progress] == ["a", "b", "c"]
    assert {e.stage_name for e in progress} == {"nucleus-import"}
    assert {e.total for e in progress} == {3}


def test_stage_summary_is_reported_and_reset(config) -> None:
    observer = RecordingObserver()
    ProfilingPipeline(
        stages=[ProgressStage(), MockStage("after")], config=config, observers=[observer]
    ).run()

    completes = [e for e in observer.events if isinstance(e, StageComplete)]
    assert completes[0].summary == {"nuclei": 3}
    assert completes[1].summary == {}


def test_observer_can_be_added_and_removed(config) -> None:
    observer = RecordingObserver()
    pipeline = ProfilingPipeline(stages=[MockStage("x")], config=config)
    pipeline.add_observer(observer, StageStart)
    pipeline.run()
    assert [type(e) for e in observer.events] == [StageStart]

    pipeline.remove_observer(observer, StageStart)
    pipeline.run()
    assert len(observer.events) == 1


def test_pipeline_context_passed_between_stages(config) -> None:
    """Context accumulates across stages; the second stage reads the first's output."""

    class WriterStage:
        def run(self, context: PipelineContext) -> PipelineContext:
            context.converged = True
            return context

    class ReaderStage:
        def __init__(self) -> None:
            self.saw_converged = False

        def run(self, context: PipelineContext) -> PipelineContext:
            self.saw_converged = bool(context.get("converged"))
            return context

    reader = ReaderStage()
    ProfilingPipeline(stages=[WriterStage(), reader], config=config).run()

    assert reader.saw_converged


def test_context_get_reports_missing_stage_output() -> None:
    with pytest.raises(ValueError, match="population"):
        PipelineContext().get("population")
