from __future__ import annotations

import numpy as np

from orbcloud.config import SamplerConfig

_EXTENT_FLOOR = 120.0
_EXTENT_COVER = 3.0
_EXTENT_MARGIN = 1.12


def radial_l_scale(l: int, config: SamplerConfig | None = None) -> float:
    """Per-l compression of the radial surrogate, non-increasing in l."""
    config = config or SamplerConfig()
    if l <= 0:
        return 1.0
    return max(config.l_compression_floor, 1.0 - config.l_compression_step * l)


def gamma_shape(l: int) -> int:
    # r^(2l+2) growth near the nucleus
    return max(1, 2 * l + 3)


def theta_scale(n: int, config: SamplerConfig | None = None) -> float:
    config = config or SamplerConfig()
    return n * config.radial_unit / 2.0


def radial_scale(l: int, config: SamplerConfig | None = None) -> float:
    config = config or SamplerConfig()
    return radial_l_scale(l, config) * config.distance_multiplier


def expected_radius(n: int, l: int, config: SamplerConfig | None = None) -> float:
    """Mean of the surrogate before the minimum-radius rejection."""
    config = config or SamplerConfig()
    return gamma_shape(l) * theta_scale(n, config) * radial_scale(l, config)


def sample_radius(
    n: int,
    l: int,
    rng: np.random.Generator,
    config: SamplerConfig | None = None,
    size: int | None = None,
):
    """Gamma(2l+3) surrogate for r^2 R(r)^2, built from summed exponential variates.

    Draws are not clipped here; the point sampler rejects those below the
    minimum allowed radius and draws again on its next attempt.
    """
    config = config or SamplerConfig()
    k = gamma_shape(l)
    scale = theta_scale(n, config) * radial_scale(l, config)
    if size is None:
        return float(rng.standard_exponential(k).sum() * scale)
    return rng.standard_exponential((int(size), k)).sum(axis=1) * scale


def estimate_axis_length(n: int, l: int, config: SamplerConfig | None = None) -> float:
    """Rough view extent for a cloud that has not been sampled yet."""
    config = config or SamplerConfig()
    estimate = theta_scale(n, config) * (2 * l + 1) * _EXTENT_COVER * radial_scale(l, config)
    return max(estimate * _EXTENT_MARGIN, _EXTENT_FLOOR)
