"""Shared outline builders for the unit tests."""

from __future__ import annotations

import numpy as np
import pytest
import yaml

from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.nucleus import Nucleus
from nucleusprofile.core.population import Population
from nucleusprofile.core.profile import ProfileType
from nucleusprofile.core.rules import Rule, RuleSet, RuleSetCollection, RuleType


def teardrop_border(n: int = 100, tip: int = 0, scale: float = 50.0) -> np.ndarray:
    """Counter-clockwise teardrop outline whose sharp tip is border point *tip*."""
    t = 2.0 * np.pi * ((np.arange(n) - tip) % n) / n
    x = np.cos(t)
    y = np.sin(t) * np.sin(t / 2.0)
    return scale * np.column_stack([x, y]) + 200.0


def circle_border(n: int = 100, radius: float = 30.0) -> np.ndarray:
    t = 2.0 * np.pi * np.arange(n) / n
    return radius * np.column_stack([np.cos(t), np.sin(t)])


def tip_rules() -> RuleSetCollection:
    """Reference point at the sharpest (smallest angle) border point."""
    return RuleSetCollection(
        name="Teardrop",
        rule_sets={
            Landmark.REFERENCE_POINT: [
                RuleSet(ProfileType.ANGLE, (Rule(RuleType.IS_MINIMUM, (1,)),))
            ]
        },
    )


def teardrop_population(
    count: int = 10,
    n: int = 100,
    rp_error: int = 0,
    locked: tuple[int, ...] = (),
) -> Population:
    """Identical teardrops with tips at varied border indexes.

    Each nucleus starts with its reference point *rp_error* points past its tip.
    """
    nuclei = []
    for i in range(count):
        tip = (7 * i) % n
        nucleus = Nucleus(
            teardrop_border(n, tip=tip, scale=40.0 + i),
            nucleus_id=f"n{i}",
            locked=i in locked,
        )
        nucleus.set_landmark(Landmark.REFERENCE_POINT, tip + rp_error)
        nuclei.append(nucleus)
    return Population(nuclei, tip_rules(), name="teardrops")


@pytest.fixture
def population() -> Population:
    """Ten teardrops with their reference points already on the tips."""
    return teardrop_population()


@pytest.fixture
def make_population():
    """Factory for :func:`teardrop_population`."""
    return teardrop_population


@pytest.fixture
def make_teardrop():
    """Factory for :func:`teardrop_border`."""
    return teardrop_border


@pytest.fixture
def make_circle():
    """Factory for :func:`circle_border`."""
    return circle_border


@pytest.fixture
def rules() -> RuleSetCollection:
    return tip_rules()


@pytest.fixture
def tip_of():
    """Border index of a test teardrop's tip, from its id."""

    def _tip(nucleus: Nucleus) -> int:
        return (7 * int(nucleus.id[1:])) % nucleus.border_length

    return _tip


@pytest.fixture
def nucleus_document(tmp_path):
    """Factory writing a YAML nucleus document of teardrops; returns its path."""

    def _write(count: int = 10, n: int = 100, name: str = "nuclei.yaml", **extra):
        records = [
            {"id": f"n{i}", "border": teardrop_border(n, tip=(7 * i) % n, scale=40.0 + i).tolist()}
            for i in range(count)
        ]
        path = tmp_path / name
        path.write_text(yaml.safe_dump({"nuclei": records, **extra}), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def rule_set_file(tmp_path):
    """The tip recipe written as a YAML rule set file."""
    path = tmp_path / "tip_rules.yaml"
    path.write_text(yaml.safe_dump(tip_rules().to_dict()), encoding="utf-8")
    return path
