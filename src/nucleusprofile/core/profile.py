"""Circular 1-D profiles measured around a closed border.

A :class:`Profile` is an immutable, circularly indexed sequence of floats:
index ``n`` is index ``0`` again. Every transformation (smoothing, rotation,
interpolation) returns a new profile; the wrapped numpy array is read-only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from enum import Enum

import numpy as np
from scipy.ndimage import uniform_filter1d

from nucleusprofile.core.exceptions import NoDetectedIndexError, ProfileError

logger = logging.getLogger(__name__)

MINIMUM_PROFILE_LENGTH = 3


class ProfileType(str, Enum):
    """Kinds of measurement a profile can hold."""

    ANGLE = "angle"
    RADIUS = "radius"
    DIAMETER = "diameter"
    FRANKEN = "franken"


class Profile:
    """Immutable circular sequence of real values.

    Args:
        values: One-dimensional sequence of numbers. Copied on construction.

    Raises:
        ProfileError: If *values* is empty or not one-dimensional.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Sequence[float] | np.ndarray) -> None:
        arr = np.array(values, dtype=np.float64)
        if arr.ndim != 1 or arr.size == 0:
            raise ProfileError(
                f"A profile needs a non-empty 1-D sequence, got shape {arr.shape}"
            )
        arr.setflags(write=False)
        self._values = arr

    # ------------------------------------------------------------------
    # Basic access
    # ------------------------------------------------------------------

    @property
    def values(self) -> np.ndarray:
        """Read-only view of the underlying values."""
        return self._values

    def to_list(self) -> list[float]:
        return self._values.tolist()

    def __len__(self) -> int:
        return int(self._values.size)

    def __iter__(self) -> Iterator[float]:
        return iter(self._values.tolist())

    def __getitem__(self, index: int) -> float:
        return float(self._values[self.wrap(index)])

    def get(self, index: int) -> float:
        """Return the value at *index*, wrapping around the ends."""
        return self[index]

    def wrap(self, index: int) -> int:
        """Map any integer onto ``[0, len(self))``."""
        return int(index) % len(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Profile):
            return NotImplemented
        return np.array_equal(self._values, other._values)

    def __hash__(self) -> int:
        return hash(self._values.tobytes())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n={len(self)})"

    def copy_values(self) -> np.ndarray:
        """Return a writable copy of the values."""
        return self._values.copy()

    # ------------------------------------------------------------------
    # Summary statistics
    # ------------------------------------------------------------------

    def max(self) -> float:
        return float(self._values.max())

    def min(self) -> float:
        return float(self._values.min())

    def index_of_max(self, mask: np.ndarray | None = None) -> int:
        """Return the first index of the largest value within *mask*.

        Raises:
            NoDetectedIndexError: If *mask* selects no index.
        """
        return self._masked_extreme(mask, np.argmax, -np.inf)

    def index_of_min(self, mask: np.ndarray | None = None) -> int:
        """Return the first index of the smallest value within *mask*.

        Raises:
            NoDetectedIndexError: If *mask* selects no index.
        """
        return self._masked_extreme(mask, np.argmin, np.inf)

    def _masked_extreme(self, mask, pick, fill: float) -> int:
        if mask is None:
            return int(pick(self._values))
        mask = self._check_mask(mask)
        if not mask.any():
            raise NoDetectedIndexError("No index is selected by the search mask")
        return int(pick(np.where(mask, self._values, fill)))

    def _check_mask(self, mask: np.ndarray) -> np.ndarray:
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != self._values.shape:
            raise ProfileError(
                f"Mask length {mask.size} does not match profile length {len(self)}"
            )
        return mask

    # ------------------------------------------------------------------
    # Circular transforms
    # ------------------------------------------------------------------

    def offset(self, k: int) -> Profile:
        """Rotate so that the new index 0 is the old index *k*."""
        return Profile(np.roll(self._values, -int(k)))

    def start_from(self, k: int) -> Profile:
        return self.offset(k)

    def reverse(self) -> Profile:
        return Profile(self._values[::-1])

    def smooth(self, window: int) -> Profile:
        """Circular running mean over ``window`` points either side."""
        if window <= 0:
            return Profile(self._values)
        return Profile(
            uniform_filter1d(self._values, size=2 * window + 1, mode="wrap")
        )

    def deltas(self, window: int) -> Profile:
        """Sum of the forward and backward differences within *window*.

        The per-step differences telescope to ``v[i + window] - v[i - window]``.
        """
        v = self._values
        return Profile(np.roll(v, -window) - np.roll(v, window))

    def local_minima(self, window: int, threshold: float | None = None) -> np.ndarray:
        """Boolean mask of indexes whose neighbours rise for *window* steps.

        Args:
            window: Number of strictly increasing steps required on each side.
            threshold: If given, minima must also lie below this value.
        """
        mask = self._monotone_outward(window, rising=True)
        if threshold is not None:
            mask &= self._values < threshold
        return mask

    def local_maxima(self, window: int, threshold: float | None = None) -> np.ndarray:
        """Boolean mask of indexes whose neighbours fall for *window* steps."""
        mask = self._monotone_outward(window, rising=False)
        if threshold is not None:
            mask &= self._values > threshold
        return mask

    def _monotone_outward(self, window: int, rising: bool) -> np.ndarray:
        v = self._values
        mask = np.ones(v.shape, dtype=bool)
        for k in range(1, window + 1):
            ahead, ahead_prev = np.roll(v, -k), np.roll(v, -(k - 1))
            behind, behind_prev = np.roll(v, k), np.roll(v, k - 1)
            if rising:
                mask &= (ahead > ahead_prev) & (behind > behind_prev)
            else:
                mask &= (ahead < ahead_prev) & (behind < behind_prev)
        return mask

    def interpolate(self, length: int) -> Profile:
        """Linearly resample the circular profile to *length* points.

        Raises:
            ProfileError: If *length* is not positive.
        """
        length = int(length)
        if length < 1:
            raise ProfileError(f"Cannot interpolate a profile to length {length}")
        n = len(self)
        if length == n:
            return Profile(self._values)
        xp = np.arange(n + 1, dtype=np.float64)
        fp = np.append(self._values, self._values[0])
        x = np.arange(length, dtype=np.float64) * (n / length)
        return Profile(np.interp(x, xp, fp))

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def absolute_square_difference(self, other: Profile) -> float:
        """Sum of squared differences, after stretching the shorter profile."""
        a, b = self, other
        if len(a) < len(b):
            a = a.interpolate(len(b))
        elif len(b) < len(a):
            b = b.interpolate(len(a))
        diff = a._values - b._values
        return float(np.dot(diff, diff))

    def find_best_fit_offset(
        self,
        template: Profile,
        min_offset: int = 0,
        max_offset: int | None = None,
    ) -> int:
        """Find the rotation of this profile that best matches *template*.

        The template is interpolated to this profile's length, then every
        offset in ``[min_offset, max_offset)`` is scored by the sum of squared
        differences.

        Args:
            template: Profile to match against.
            min_offset: First offset tested.
            max_offset: One past the last offset tested. Defaults to the
                profile length.

        Returns:
            The lowest-scoring offset; ties resolve to the smallest offset.
        """
        n = len(self)
        if max_offset is None:
            max_offset = n
        if max_offset <= min_offset:
            raise ProfileError(
                f"Empty offset range [{min_offset}, {max_offset}) for best fit"
            )
        target = template.interpolate(n)._values
        offsets = np.arange(min_offset, max_offset)
        idx = (np.arange(n)[None, :] + offsets[:, None]) % n
        diff = self._values[idx] - target[None, :]
        scores = np.einsum("ij,ij->i", diff, diff)
        return int(offsets[int(np.argmin(scores))])

    # ------------------------------------------------------------------
    # Indexing helpers
    # ------------------------------------------------------------------

    def subregion(self, start: int, end: int) -> Profile:
        """Return the inclusive span ``start..end``, wrapping if needed."""
        n = len(self)
        start, end = self.wrap(start), self.wrap(end)
        count = (end - start) % n + 1
        return Profile(self._values[(start + np.arange(count)) % n])

    def index_of_fraction(self, fraction: float) -> int:
        if not 0 <= fraction <= 1:
            raise ProfileError(f"Fraction {fraction} is outside [0, 1]")
        return int(len(self) * fraction)

    def fraction_of_index(self, index: int) -> float:
        return self.wrap(index) / len(self)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _operand(self, other: Profile | float) -> np.ndarray | float:
        if isinstance(other, Profile):
            if len(other) != len(self):
                raise ProfileError(
                    f"Profile lengths differ: {len(self)} and {len(other)}"
                )
            return other._values
        return float(other)

    def __add__(self, other: Profile | float) -> Profile:
        return Profile(self._values + self._operand(other))

    def __sub__(self, other: Profile | float) -> Profile:
        return Profile(self._values - self._operand(other))

    def __mul__(self, other: Profile | float) -> Profile:
        return Profile(self._values * self._operand(other))

    def __truediv__(self, other: Profile | float) -> Profile:
        return Profile(self._values / self._operand(other))

    def __abs__(self) -> Profile:
        return Profile(np.abs(self._values))


def concatenate_profiles(profiles: Sequence[Profile]) -> Profile:
    """Join profiles end to end into one profile."""
    if not profiles:
        raise ProfileError("Cannot concatenate an empty list of profiles")
    return Profile(np.concatenate([p.values for p in profiles]))


__all__ = [
    "MINIMUM_PROFILE_LENGTH",
    "Profile",
    "ProfileType",
    "concatenate_profiles",
]
