"""Individual nuclei: border geometry, profiles, landmarks and segments.

A :class:`Nucleus` is built from an ordered, closed sequence of 2-D border
points. Its angle, radius and diameter profiles are computed once at
construction and indexed by border position. Landmarks and segments are also
stored in border coordinates; :meth:`Nucleus.profile` rotates a profile (and
its segments) so that a requested landmark sits at index 0.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import numpy as np
from skimage.measure import points_in_poly

from nucleusprofile.core.exceptions import MissingLandmarkError, ProfileError
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.profile import MINIMUM_PROFILE_LENGTH, Profile, ProfileType
from nucleusprofile.core.segments import SegmentedProfile, SegmentRing

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_PROPORTION = 0.05

_GEOMETRIC_TYPES = (ProfileType.ANGLE, ProfileType.RADIUS, ProfileType.DIAMETER)


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------


def polygon_centroid(border: np.ndarray) -> np.ndarray:
    """Area centroid of a closed polygon, or the vertex mean if degenerate."""
    x, y = border[:, 0], border[:, 1]
    x1, y1 = np.roll(x, -1), np.roll(y, -1)
    cross = x * y1 - x1 * y
    area = cross.sum() / 2.0
    if abs(area) < 1e-12:
        return border.mean(axis=0)
    cx = ((x + x1) * cross).sum() / (6.0 * area)
    cy = ((y + y1) * cross).sum() / (6.0 * area)
    return np.array([cx, cy])


def angle_profile(border: np.ndarray, window: int) -> np.ndarray:
    """Interior angle at each border point, measured *window* points either side.

    Angles open towards the inside of the shape are below 180 degrees;
    concave points, whose neighbour midpoint lies outside, are reported as
    ``360 - angle``.
    """
    before = np.roll(border, window, axis=0)
    after = np.roll(border, -window, axis=0)
    v1 = before - border
    v2 = after - border
    norms = np.linalg.norm(v1, axis=1) * np.linalg.norm(v2, axis=1)
    dots = np.einsum("ij,ij->i", v1, v2)
    cosines = np.divide(dots, norms, out=np.full(len(border), -1.0), where=norms > 0)
    angles = np.degrees(np.arccos(np.clip(cosines, -1.0, 1.0)))
    midpoints = (before + after) / 2.0
    inside = points_in_poly(midpoints, border)
    return np.where(inside, angles, 360.0 - angles)


def opposite_border_indexes(border: np.ndarray, centre: np.ndarray) -> np.ndarray:
    """For each point, the border point most nearly opposite it through *centre*."""
    rel = border - centre
    theta = np.arctan2(rel[:, 1], rel[:, 0])
    target = theta + np.pi
    # Wrapped angular distance between every target and every border direction.
    gap = np.abs(np.angle(np.exp(1j * (theta[None, :] - target[:, None]))))
    return np.argmin(gap, axis=1)


def is_unlocked(nucleus: Nucleus) -> bool:
    """Default eligibility predicate for population-wide edits."""
    return not nucleus.locked


# ---------------------------------------------------------------------------
# Nucleus
# ---------------------------------------------------------------------------


class Nucleus:
    """One profiled shape in a population.

    Args:
        border: ``(n, 2)`` array of border points in order around the shape.
            The closing point must not repeat the first point.
        centre_of_mass: Optional ``(x, y)``; the polygon centroid by default.
        nucleus_id: Stable identifier; a UUID is generated when omitted.
        window_proportion: Angle window as a proportion of the perimeter.
        locked: Locked nuclei are protected from bulk re-fitting.

    Raises:
        ProfileError: If the border is not an ``(n, 2)`` array with at least
            ``MINIMUM_PROFILE_LENGTH`` points.
    """

    def __init__(
        self,
        border: np.ndarray,
        centre_of_mass: np.ndarray | None = None,
        *,
        nucleus_id: str | None = None,
        window_proportion: float = DEFAULT_WINDOW_PROPORTION,
        locked: bool = False,
    ) -> None:
        pts = np.array(border, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 2 or len(pts) < MINIMUM_PROFILE_LENGTH:
            raise ProfileError(
                f"Border must be an (n, 2) array with n >= {MINIMUM_PROFILE_LENGTH}, "
                f"got shape {pts.shape}"
            )
        pts.setflags(write=False)
        self.id = nucleus_id or str(uuid.uuid4())
        self._border = pts
        if centre_of_mass is None:
            centre_of_mass = polygon_centroid(pts)
        self.centre_of_mass = np.asarray(centre_of_mass, dtype=np.float64)
        self.window_proportion = float(window_proportion)
        self.locked = bool(locked)
        self._landmarks: dict[Landmark, int] = {}
        self._segments: SegmentRing | None = None
        self._franken: SegmentedProfile | None = None
        self._opposite = opposite_border_indexes(pts, self.centre_of_mass)
        self._profiles = self._calculate_profiles()

    def __repr__(self) -> str:
        return f"Nucleus(id={self.id!r}, n={self.border_length}, locked={self.locked})"

    # ------------------------------------------------------------------
    # Geometry and profiles
    # ------------------------------------------------------------------

    @property
    def border(self) -> np.ndarray:
        return self._border

    @property
    def border_length(self) -> int:
        return len(self._border)

    @property
    def window_size(self) -> int:
        return max(1, int(round(self.border_length * self.window_proportion)))

    def _calculate_profiles(self) -> dict[ProfileType, Profile]:
        pts = self._border
        radius = np.linalg.norm(pts - self.centre_of_mass, axis=1)
        diameter = np.linalg.norm(pts - pts[self._opposite], axis=1)
        return {
            ProfileType.ANGLE: Profile(angle_profile(pts, self.window_size)),
            ProfileType.RADIUS: Profile(radius),
            ProfileType.DIAMETER: Profile(diameter),
        }

    def find_opposite_border(self, index: int) -> int:
        """Index of the border point opposite *index* through the centre of mass."""
        return int(self._opposite[int(index) % self.border_length])

    def raw_profile(self, profile_type: ProfileType) -> Profile:
        """Profile in border order, independent of any landmark."""
        if profile_type not in _GEOMETRIC_TYPES:
            raise ProfileError(f"No raw {profile_type.value} profile for a nucleus")
        return self._profiles[profile_type]

    def profile(
        self,
        profile_type: ProfileType = ProfileType.ANGLE,
        landmark: Landmark = Landmark.REFERENCE_POINT,
    ) -> SegmentedProfile:
        """Return a profile rotated so that *landmark* sits at index 0.

        The returned profile carries this nucleus's segments (a single
        default segment if none are assigned). Recombined (FRANKEN) profiles
        are stored anchored at the reference point; other anchors rotate them
        proportionally.

        Raises:
            MissingLandmarkError: If the landmark has not been assigned.
            ProfileError: If a recombined profile was requested but none exists.
        """
        anchor = self.landmark_index(landmark)
        if profile_type is ProfileType.FRANKEN:
            if self._franken is None:
                raise ProfileError(f"Nucleus {self.id} has no recombined profile")
            rp = self.landmark_index(Landmark.REFERENCE_POINT)
            fraction = ((anchor - rp) % self.border_length) / self.border_length
            return self._franken.offset(int(round(fraction * len(self._franken))))
        base = self.raw_profile(profile_type)
        segments = self._segments or SegmentRing.single(self.border_length)
        return SegmentedProfile(base.values, segments).offset(anchor)

    # ------------------------------------------------------------------
    # Landmarks
    # ------------------------------------------------------------------

    @property
    def landmarks(self) -> dict[Landmark, int]:
        return dict(self._landmarks)

    def has_landmark(self, landmark: Landmark) -> bool:
        return landmark in self._landmarks

    def landmark_index(self, landmark: Landmark) -> int:
        try:
            return self._landmarks[landmark]
        except KeyError:
            raise MissingLandmarkError(
                f"Nucleus {self.id} has no {landmark.value} landmark"
            ) from None

    def set_landmark(self, landmark: Landmark, index: int) -> None:
        self._landmarks[Landmark.parse(landmark)] = int(index) % self.border_length

    def remove_landmark(self, landmark: Landmark) -> None:
        self._landmarks.pop(landmark, None)

    # ------------------------------------------------------------------
    # Segments and recombination
    # ------------------------------------------------------------------

    @property
    def segments(self) -> SegmentRing | None:
        """Segments in border coordinates, or None before assignment."""
        return self._segments

    def has_segments(self) -> bool:
        return self._segments is not None

    def set_segments(self, segments: SegmentRing | None) -> None:
        if segments is not None and segments.total_length != self.border_length:
            raise ProfileError(
                f"Segments cover {segments.total_length} points but nucleus "
                f"{self.id} has {self.border_length}"
            )
        self._segments = segments

    def anchored_segments(self, landmark: Landmark = Landmark.REFERENCE_POINT) -> SegmentRing:
        """Segments as seen from a profile starting at *landmark*."""
        if self._segments is None:
            raise ProfileError(f"Nucleus {self.id} has no segments")
        return self._segments.offset(self.landmark_index(landmark))

    def set_anchored_segments(
        self, segments: SegmentRing, landmark: Landmark = Landmark.REFERENCE_POINT
    ) -> None:
        """Store segments given relative to *landmark* in border coordinates."""
        self.set_segments(segments.offset(-self.landmark_index(landmark)))

    @property
    def franken(self) -> SegmentedProfile | None:
        return self._franken

    def set_franken(self, profile: SegmentedProfile | None) -> None:
        self._franken = profile

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "border": self._border.tolist(),
            "centre_of_mass": self.centre_of_mass.tolist(),
            "window_proportion": self.window_proportion,
            "locked": self.locked,
            "landmarks": {lm.value: idx for lm, idx in self._landmarks.items()},
        }
        if self._segments is not None:
            data["segments"] = self._segments.to_list()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], window_proportion: float | None = None) -> Nucleus:
        """Build a nucleus from a record with at least a ``border`` key."""
        if "border" not in data:
            raise ProfileError("Nucleus record has no 'border' points")
        nucleus = cls(
            np.asarray(data["border"], dtype=np.float64),
            data.get("centre_of_mass"),
            nucleus_id=data.get("id"),
            window_proportion=(
                window_proportion
                if window_proportion is not None
                else data.get("window_proportion", DEFAULT_WINDOW_PROPORTION)
            ),
            locked=bool(data.get("locked", False)),
        )
        for key, index in (data.get("landmarks") or {}).items():
            nucleus.set_landmark(Landmark.parse(key), int(index))
        if data.get("segments"):
            nucleus.set_segments(SegmentRing.from_list(data["segments"], nucleus.border_length))
        return nucleus

    def duplicate(self) -> Nucleus:
        """Deep copy with the same id, landmarks, segments and lock state."""
        twin = Nucleus(
            self._border,
            self.centre_of_mass,
            nucleus_id=self.id,
            window_proportion=self.window_proportion,
            locked=self.locked,
        )
        twin._landmarks = dict(self._landmarks)
        twin._segments = self._segments
        twin._franken = self._franken
        return twin


__all__ = [
    "DEFAULT_WINDOW_PROPORTION",
    "Nucleus",
    "angle_profile",
    "is_unlocked",
    "opposite_border_indexes",
    "polygon_centroid",
]
