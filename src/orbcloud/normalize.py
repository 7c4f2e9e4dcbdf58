from __future__ import annotations

import numpy as np

from orbcloud.angular import random_directions, unit_vectors
from orbcloud.config import SamplerConfig
from orbcloud.quantum import QuantumState
from orbcloud.stats import percentile

_EPS = 1e-6
_EQUATORIAL_PERCENTILE = 0.80
_EQUATORIAL_FRACTION = 0.2
_EQUATORIAL_FLOOR = 1.0


def equatorial_threshold(points: np.ndarray) -> float:
    """|z| below which a point counts as part of the equatorial band."""
    z = points[:, 2]
    upper = percentile(z[z >= 0], _EQUATORIAL_PERCENTILE)
    lower = percentile(-z[z < 0], _EQUATORIAL_PERCENTILE)
    return max(_EQUATORIAL_FRACTION * max(upper, lower), _EQUATORIAL_FLOOR)


def push_outward(
    points: np.ndarray,
    rng: np.random.Generator,
    config: SamplerConfig | None = None,
    global_factor: float | None = None,
    equatorial_factor: float | None = None,
    near_multiplier: float | None = None,
    near_threshold: float | None = None,
    near_equatorial_threshold: float | None = None,
) -> np.ndarray:
    """Rescale every point's radius in place, keeping its direction.

    Equatorial points get the larger factor. With ``near_multiplier`` set,
    points inside the near threshold are pushed by the extra multiplier and
    out to at least that threshold. Points at the origin are re-seeded in a
    random direction. Every point ends at or beyond ``config.min_radius``.
    """
    config = config or SamplerConfig()
    if points.size == 0:
        return points
    global_factor = config.global_push if global_factor is None else global_factor
    equatorial_factor = config.equatorial_push if equatorial_factor is None else equatorial_factor
    min_allowed = config.min_radius

    eq_threshold = equatorial_threshold(points)
    radii = np.linalg.norm(points, axis=1)
    equatorial = np.abs(points[:, 2]) <= eq_threshold
    factors = np.where(equatorial, equatorial_factor, global_factor)
    targets = np.full(len(points), min_allowed)

    if near_multiplier is not None:
        if near_threshold is None:
            near_threshold = min_allowed * config.near_threshold_mult
        if near_equatorial_threshold is None:
            near_equatorial_threshold = near_threshold
        near_eq = equatorial & (radii <= near_equatorial_threshold)
        near_axial = ~equatorial & (radii <= near_threshold)
        factors = np.where(near_eq | near_axial, factors * near_multiplier, factors)
        targets[near_eq] = max(min_allowed, near_equatorial_threshold)
        targets[near_axial] = max(min_allowed, near_threshold)

    at_origin = radii <= _EPS
    moving = ~at_origin
    new_radii = np.maximum(targets[moving], radii[moving] * factors[moving])
    points[moving] *= (new_radii / radii[moving])[:, None]

    if np.any(at_origin):
        theta, phi = random_directions(rng, int(at_origin.sum()))
        points[at_origin] = targets[at_origin][:, None] * unit_vectors(theta, phi)
    return points


def normalize_cloud(
    points: np.ndarray,
    state: QuantumState,
    rng: np.random.Generator,
    config: SamplerConfig | None = None,
) -> np.ndarray:
    """Post-sampling push; dz2 clouds also get the near-nucleus separation."""
    config = config or SamplerConfig()
    if state.is_dz2:
        return push_outward(
            points,
            rng,
            config,
            near_multiplier=config.near_push,
            near_threshold=config.dz2_near_threshold,
            near_equatorial_threshold=config.dz2_near_equatorial_threshold,
        )
    return push_outward(points, rng, config)
