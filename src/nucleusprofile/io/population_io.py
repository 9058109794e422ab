"""Reading nucleus populations and rule sets, and writing profiling results.

Input documents are YAML or JSON (JSON is read as YAML)::

    name: sample-1
    nuclei:
      - id: n1
        border: [[x, y], ...]
        centre_of_mass: [x, y]     # optional
        locked: false              # optional

A results document written by :func:`write_results` is itself a valid input:
it carries each nucleus's landmarks and segments, plus a ``median`` section
that :func:`load_population` restores onto the rebuilt aggregates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from nucleusprofile.core.exceptions import ProfileError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.population import Population
from nucleusprofile.core.profile import ProfileType
from nucleusprofile.core.rules import RuleSetCollection
from nucleusprofile.core.segments import SegmentRing
from nucleusprofile.core.tasks import IMPORT_TASK_THRESHOLD, NucleusBuildTask, ProgressCallback

__all__ = [
    "load_population",
    "load_rule_sets",
    "population_to_dict",
    "read_document",
    "write_results",
]

logger = logging.getLogger(__name__)


def read_document(path: str | Path) -> dict[str, Any]:
    """Load a YAML or JSON mapping from *path*.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the document is not a mapping.
    """
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a mapping")
    return data


def load_rule_sets(path: str | Path) -> RuleSetCollection:
    """Read a custom landmark recipe (the format of ``RuleSetCollection.to_dict``)."""
    return RuleSetCollection.from_dict(read_document(path))


# ---------------------------------------------------------------------------
# Populations
# ---------------------------------------------------------------------------


def load_population(
    path: str | Path,
    rule_sets: RuleSetCollection | None = None,
    *,
    window_proportion: float | None = None,
    max_workers: int | None = None,
    threshold: int = IMPORT_TASK_THRESHOLD,
    on_progress: ProgressCallback | None = None,
) -> Population:
    """Build a population from a nucleus document.

    Records are turned into nuclei by a :class:`NucleusBuildTask`; a record
    that cannot be built is logged and left out.

    Args:
        path: YAML or JSON document.
        rule_sets: Landmark recipe. Defaults to the round shape class.
        window_proportion: Angle window proportion applied to every nucleus;
            ``None`` keeps each record's own (or the default).
        max_workers: Thread pool size for the import task.
        threshold: Largest record range built without splitting.
        on_progress: Per-record progress callback.

    Raises:
        ProfileError: If the document holds no buildable nucleus.
    """
    path = Path(path)
    document = read_document(path)
    records = document.get("nuclei") or []
    task = NucleusBuildTask(
        records,
        window_proportion=window_proportion,
        threshold=threshold,
        on_progress=on_progress,
    )
    task.invoke(max_workers)
    nuclei = task.built()
    if len(nuclei) < len(records):
        logger.warning("%d of %d records in %s were not imported", len(records) - len(nuclei), len(records), path)
    if not nuclei:
        raise ProfileError(f"No nuclei could be imported from {path}")
    population = Population(nuclei, rule_sets, name=str(document.get("name", path.stem)))
    logger.info("Imported %d nuclei from %s", len(nuclei), path)
    median = document.get("median")
    if median:
        _restore_median(population, median)
    return population


def _restore_median(population: Population, median: dict[str, Any]) -> None:
    """Rebuild aggregates and reapply saved median landmarks and segments."""
    population.create_profile_collections()
    length = population.collection(ProfileType.ANGLE).length
    saved_length = int(median.get("length", length))
    for key, index in (median.get("landmarks") or {}).items():
        population.set_landmark(Landmark.parse(key), int(round(int(index) * length / saved_length)))
    if median.get("segments"):
        ring = SegmentRing.from_list(median["segments"], saved_length)
        population.set_segments(ring.interpolate(length) if saved_length != length else ring)


def population_to_dict(population: Population, **metadata: Any) -> dict[str, Any]:
    """Serialisable view of a profiled population.

    Args:
        population: Population to describe.
        **metadata: Extra top-level keys (e.g. ``converged=True``).
    """
    document: dict[str, Any] = {
        "name": population.name,
        "shape_class": population.rule_sets.name,
        **metadata,
    }
    angle = population.collection(ProfileType.ANGLE)
    if angle.has_aggregate():
        median: dict[str, Any] = {
            "length": angle.length,
            "landmarks": {lm.value: idx for lm, idx in population.landmarks.items()},
            "profiles": {
                t.value: population.median(t).to_list()
                for t in ProfileType
                if population.collection(t).has_aggregate()
            },
            "angle_quartiles": {
                "q25": angle.quartile(25).to_list(),
                "q75": angle.quartile(75).to_list(),
            },
        }
        if population.segments is not None:
            median["segments"] = population.segments.to_list()
        document["median"] = median
    document["nuclei"] = [n.to_dict() for n in population]
    return document


def write_results(population: Population, path: str | Path, **metadata: Any) -> Path:
    """Write :func:`population_to_dict` as YAML to *path*; return the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(population_to_dict(population, **metadata), default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    logger.info("Results for %s written to %s", population.name, path)
    return path
