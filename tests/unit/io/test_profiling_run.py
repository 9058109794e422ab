"""End-to-end profiling run: config -> stages -> pipeline -> results file."""

from __future__ import annotations

from pathlib import Path

import yaml

from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.engine import (
    IndividualProcessed,
    ProfilingPipeline,
    ProgressObserver,
    StageComplete,
    build_stages,
    load_config,
)
from nucleusprofile.io import load_population


class RecordingObserver:
    def __init__(self) -> None:
        self.events = []

    def on_event(self, event) -> None:
        self.events.append(event)


def _run(tmp_path: Path, overrides: dict):
    config = load_config(
        run_id="e2e",
        cli_overrides={"output_dir": str(tmp_path / "out"), **overrides},
    )
    recorder = RecordingObserver()
    progress = ProgressObserver()
    pipeline = ProfilingPipeline(
        stages=build_stages(config), config=config, observers=[recorder, progress]
    )
    return pipeline.run(), recorder


def test_full_run_writes_results(tmp_path: Path, nucleus_document, rule_set_file) -> None:
    context, recorder = _run(
        tmp_path,
        {"input_path": str(nucleus_document()), "rule_set_path": str(rule_set_file)},
    )

    assert context.converged
    assert context.coercion_iterations == 0
    assert context.segmented
    results = Path(context.results_path)
    assert results == tmp_path / "out" / "results.yaml"
    assert (tmp_path / "out" / "config.yaml").exists()

    population = context.population
    for nucleus in population:
        assert nucleus.landmark_index(Landmark.REFERENCE_POINT) == (7 * int(nucleus.id[1:])) % 100
    assert population.count_not_matching_median() == 0

    document = yaml.safe_load(results.read_text(encoding="utf-8"))
    assert document["converged"] is True
    assert document["segmented"] is True
    assert document["median"]["landmarks"]["RP"] == 0

    summaries = {e.stage_name: e.summary for e in recorder.events if isinstance(e, StageComplete)}
    assert summaries["ImportStage"]["nuclei"] == 10
    assert summaries["SegmentationStage"]["not_matching_median"] == 0

    progress = [e for e in recorder.events if isinstance(e, IndividualProcessed)]
    assert {e.stage_name for e in progress} >= {
        "nucleus-import",
        "segment-assignment",
        "segment-recombination",
    }


def test_copy_run_reuses_previous_segments(
    tmp_path: Path, nucleus_document, rule_set_file
) -> None:
    first, _ = _run(
        tmp_path / "first",
        {"input_path": str(nucleus_document()), "rule_set_path": str(rule_set_file)},
    )
    second, _ = _run(
        tmp_path / "second",
        {
            "input_path": str(nucleus_document(count=5, name="more.yaml")),
            "rule_set_path": str(rule_set_file),
            "segmentation.mode": "copy",
            "segmentation.source_path": first.results_path,
        },
    )
    assert second.segmented
    assert second.population.segments.ids == first.population.segments.ids
    reloaded = load_population(second.results_path)
    assert reloaded.segments.ids == first.population.segments.ids
