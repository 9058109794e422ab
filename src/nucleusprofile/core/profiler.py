"""Landmark discovery on the population median and reference-point coercion.

:class:`DatasetProfiler` turns a population whose nuclei know their reference
point only approximately into one whose aggregates are anchored exactly at
the reference point, then locates every other landmark of the shape class on
the median and propagates it to the individuals by best fit.
"""

from __future__ import annotations

import logging

from nucleusprofile.core.exceptions import NoDetectedIndexError, ProfileError
from nucleusprofile.core.index_finder import ProfileIndexFinder, identify_ip_index
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.nucleus import Nucleus, is_unlocked
from nucleusprofile.core.population import GEOMETRIC_TYPES, Population
from nucleusprofile.core.profile import Profile, ProfileType
from nucleusprofile.core.tasks import Eligibility

logger = logging.getLogger(__name__)

MAX_COERCION_ATTEMPTS = 50

RP = Landmark.REFERENCE_POINT


def fit_landmark_to_median(
    nucleus: Nucleus,
    landmark: Landmark,
    median: Profile,
    profile_type: ProfileType = ProfileType.ANGLE,
) -> int:
    """Move one nucleus's *landmark* to where its profile best matches *median*.

    *median* must be anchored at *landmark*. A nucleus that does not have the
    landmark yet starts from its reference point.

    Returns:
        The new border index of the landmark.
    """
    base = landmark if nucleus.has_landmark(landmark) else RP
    start = nucleus.landmark_index(base)
    offset = nucleus.profile(profile_type, base).find_best_fit_offset(median)
    nucleus.set_landmark(landmark, start + offset)
    return nucleus.landmark_index(landmark)


class DatasetProfiler:
    """Locate landmarks on the median and converge the reference point.

    Args:
        population: Population to profile.
        max_coercion_attempts: Upper bound on coercion iterations.
        eligible: Nuclei failing this predicate keep their landmarks.
        finder: Index finder; a default instance is used when omitted.

    Example::

        profiler = DatasetProfiler(population)
        profiler.run()
        assert population.median().values.size == population.aggregate_length()
    """

    def __init__(
        self,
        population: Population,
        *,
        max_coercion_attempts: int = MAX_COERCION_ATTEMPTS,
        eligible: Eligibility = is_unlocked,
        finder: ProfileIndexFinder | None = None,
    ) -> None:
        self.population = population
        self.max_coercion_attempts = max_coercion_attempts
        self.eligible = eligible
        self.finder = finder or ProfileIndexFinder()
        self.coercion_iterations = 0
        self.converged = False

    def run(self) -> None:
        """Detect missing reference points, coerce RP, then find the other landmarks."""
        self.detect_individual_reference_points()
        self.identify_reference_point()
        self.identify_other_landmarks()

    # ------------------------------------------------------------------
    # Per-individual starting points
    # ------------------------------------------------------------------

    def detect_individual_reference_points(self) -> int:
        """Give every nucleus without a reference point one from its own profiles.

        Nuclei where the rules find nothing start at border index 0.

        Returns:
            Number of nuclei that received a reference point.
        """
        rule_sets = self.population.rule_sets.get(RP)
        assigned = 0
        for nucleus in self.population:
            if nucleus.has_landmark(RP):
                continue
            profiles = {t: nucleus.raw_profile(t) for t in GEOMETRIC_TYPES}
            try:
                index = self.finder.find_index(profiles, rule_sets)
            except NoDetectedIndexError:
                logger.warning("No reference point detected in nucleus %s; using 0", nucleus.id)
                index = 0
            nucleus.set_landmark(RP, index)
            assigned += 1
        return assigned

    # ------------------------------------------------------------------
    # Reference point coercion
    # ------------------------------------------------------------------

    def _median_index(self, landmark: Landmark) -> int:
        rule_sets = self.population.rule_sets.get(landmark)
        if not rule_sets:
            raise NoDetectedIndexError(f"No rule sets locate {landmark.value}")
        return self.finder.find_index(self.population.median_profiles(RP), rule_sets)

    def _reference_index(self) -> int:
        try:
            return self._median_index(RP)
        except NoDetectedIndexError:
            logger.warning("Reference point not found in the median; assuming index 0")
            return 0

    def fit_nuclei_to_median(self, landmark: Landmark, median: Profile) -> int:
        """Best-fit *landmark* of every eligible nucleus to *median*.

        Returns:
            Number of nuclei updated.
        """
        updated = 0
        for nucleus in self.population:
            if not self.eligible(nucleus):
                continue
            try:
                fit_landmark_to_median(nucleus, landmark, median)
            except ProfileError as exc:
                logger.warning("Cannot fit %s in nucleus %s: %s", landmark.value, nucleus.id, exc)
                continue
            updated += 1
        return updated

    def identify_reference_point(self) -> int:
        """Rotate and refit until the reference point sits at median index 0.

        Returns:
            The reference point's final index in the median; 0 on convergence.
        """
        self.population.create_profile_collections()
        rp_index = self._reference_index()
        counter = 0
        while rp_index != 0 and counter < self.max_coercion_attempts:
            rotated = self.population.median(ProfileType.ANGLE, RP).offset(rp_index)
            self.fit_nuclei_to_median(RP, rotated)
            self.population.create_profile_collections()
            rp_index = self._reference_index()
            counter += 1
            logger.debug("Coercion iteration %d: RP at median index %d", counter, rp_index)
        self.coercion_iterations = counter
        self.converged = rp_index == 0
        if not self.converged:
            logger.warning(
                "Reference point did not converge after %d iterations (median index %d)",
                counter, rp_index,
            )
        else:
            logger.info("Reference point converged after %d iteration(s)", counter)
        return rp_index

    # ------------------------------------------------------------------
    # Other landmarks
    # ------------------------------------------------------------------

    def identify_other_landmarks(self) -> dict[Landmark, int]:
        """Locate every non-RP landmark on the median and fit nuclei to it.

        A core landmark the rules cannot find falls back to the reference
        point; a missing extended landmark is skipped. The intersection point
        is derived from the orientation point when no rule set names it.

        Returns:
            Median index of each landmark that was assigned.
        """
        assigned: dict[Landmark, int] = {}
        for landmark in self.population.rule_sets.landmarks:
            if landmark is RP:
                continue
            try:
                index = self._locate(landmark)
                if index is None:
                    continue
                self.population.set_landmark(landmark, index)
                self.fit_nuclei_to_median(landmark, self.population.median(ProfileType.ANGLE, landmark))
                assigned[landmark] = index
            except ProfileError as exc:
                logger.warning("Landmark %s not assigned: %s", landmark.value, exc)
        ip = Landmark.INTERSECTION_POINT
        if ip not in assigned and not self.population.rule_sets.has(ip):
            if Landmark.ORIENTATION_POINT in assigned:
                assigned[ip] = self.derive_intersection_point()
        return assigned

    def _locate(self, landmark: Landmark) -> int | None:
        try:
            return self._median_index(landmark)
        except NoDetectedIndexError:
            if landmark.is_core:
                logger.warning("%s not found in the median; using the reference point", landmark.value)
                return self.population.landmark_index(RP)
            logger.warning("%s not found in the median; skipped", landmark.value)
            return None

    def derive_intersection_point(self) -> int:
        """Place IP opposite OP on the median and on every eligible nucleus."""
        op = Landmark.ORIENTATION_POINT
        ip = Landmark.INTERSECTION_POINT
        length = self.population.collection(ProfileType.ANGLE).length
        index = identify_ip_index(self.population.landmark_index(op), length)
        self.population.set_landmark(ip, index)
        for nucleus in self.population:
            if self.eligible(nucleus) and nucleus.has_landmark(op):
                nucleus.set_landmark(ip, nucleus.find_opposite_border(nucleus.landmark_index(op)))
        return index


__all__ = ["MAX_COERCION_ATTEMPTS", "DatasetProfiler", "fit_landmark_to_median"]
