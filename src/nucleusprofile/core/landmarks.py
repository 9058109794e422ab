"""Named landmarks on a nucleus border."""

from __future__ import annotations

from enum import Enum


class Landmark(str, Enum):
    """Semantic border points.

    Core landmarks (RP, OP) define segment boundaries, so moving one forces
    resegmentation. Extended landmarks are only repositioned by best fit.
    """

    REFERENCE_POINT = "RP"
    ORIENTATION_POINT = "OP"
    TOP_VERTICAL = "TV"
    BOTTOM_VERTICAL = "BV"
    INTERSECTION_POINT = "IP"

    @property
    def is_core(self) -> bool:
        return self in CORE_LANDMARKS

    @classmethod
    def parse(cls, value: str | Landmark) -> Landmark:
        """Accept a landmark, its short code ("RP") or its name ("REFERENCE_POINT")."""
        if isinstance(value, Landmark):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls[str(value).upper()]


CORE_LANDMARKS = frozenset({Landmark.REFERENCE_POINT, Landmark.ORIENTATION_POINT})

RP = Landmark.REFERENCE_POINT
OP = Landmark.ORIENTATION_POINT
TV = Landmark.TOP_VERTICAL
BV = Landmark.BOTTOM_VERTICAL
IP = Landmark.INTERSECTION_POINT

__all__ = ["BV", "CORE_LANDMARKS", "IP", "Landmark", "OP", "RP", "TV"]
