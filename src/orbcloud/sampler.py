from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from orbcloud.angular import angular_probability, estimate_max_angular, random_directions, unit_vectors
from orbcloud.config import SamplerConfig
from orbcloud.quantum import QuantumState
from orbcloud.radial import radial_scale, sample_radius


@dataclass(frozen=True)
class FillResult:
    produced: int
    attempts: int


class PointSampler:
    """Rejection sampler for |psi(n, l, m)|^2 with a separable angular x radial density.

    Each attempt draws one radius from the Gamma surrogate and, if it clears
    the nucleus, up to ``angular_attempts`` directions tested against the
    Monte-Carlo angular envelope.
    """

    def __init__(
        self,
        state: QuantumState,
        rng: np.random.Generator,
        config: SamplerConfig | None = None,
    ) -> None:
        self.state = state
        self.config = config or SamplerConfig()
        self.rng = rng
        self.min_radius = self.config.min_radius
        self.max_angular = estimate_max_angular(
            state.l,
            state.m,
            rng,
            trials=self.config.angular_trials,
            safety=self.config.angular_safety,
        )

    def try_sample(self) -> np.ndarray | None:
        """One rejection attempt; returns a Cartesian point or None."""
        state = self.state
        r = sample_radius(state.n, state.l, self.rng, self.config)
        if r < self.min_radius:
            return None
        tries = self.config.angular_attempts
        theta, phi = random_directions(self.rng, tries)
        density = angular_probability(theta, phi, state.l, state.m)
        accepted = np.flatnonzero(self.rng.random(tries) < density / self.max_angular)
        if accepted.size == 0:
            return None
        first = accepted[0]
        return r * unit_vectors(theta[first : first + 1], phi[first : first + 1])[0]

    def fill(self, points: np.ndarray, start: int, stop: int, max_attempts: int, keep_going=None) -> FillResult:
        """Write accepted samples into ``points[start:stop]`` within an attempt budget.

        ``keep_going`` is polled before every attempt; returning False stops
        the fill without writing anything further.
        """
        index = start
        attempts = 0
        while index < stop and attempts < max_attempts:
            if keep_going is not None and not keep_going():
                break
            attempts += 1
            point = self.try_sample()
            if point is None:
                continue
            points[index] = point
            index += 1
        return FillResult(produced=index - start, attempts=attempts)

    def fallback_radius_limit(self) -> float:
        n = self.state.n
        return max(1.0, n * n * self.config.radial_unit * self.config.fallback_radius_factor)

    def fill_isotropic(self, points: np.ndarray, start: int, stop: int) -> int:
        """Coarse uniform-in-volume fill used when rejection sampling starves."""
        count = stop - start
        if count <= 0:
            return 0
        r_max = self.fallback_radius_limit()
        min_r = self.min_radius
        radii = r_max * np.cbrt(self.rng.random(count)) * radial_scale(self.state.l, self.config)
        low = radii < min_r
        if np.any(low):
            span = max(r_max - min_r, 0.0)
            radii[low] = min_r + span * np.cbrt(self.rng.random(int(low.sum())))
        radii = np.maximum(radii, min_r)
        theta, phi = random_directions(self.rng, count)
        points[start:stop] = radii[:, None] * unit_vectors(theta, phi)
        return count
