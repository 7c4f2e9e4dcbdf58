from __future__ import annotations

import numpy as np

ANGULAR_FLOOR = 1e-30
_MAX_FLOOR = 1e-20


def associated_legendre(l: int, m: int, x):
    """Associated Legendre P_l^m(x) (Condon-Shortley phase) by upward recurrence.

    Works on floats and numpy arrays alike; scalars come back as floats.
    """
    values = _legendre_recurrence(int(l), abs(int(m)), np.asarray(x, dtype=float))
    if values.ndim == 0:
        return float(values)
    return values


def _legendre_recurrence(l: int, m: int, x: np.ndarray) -> np.ndarray:
    if m > l:
        return np.zeros_like(x)
    pmm = np.ones_like(x)
    if m > 0:
        somx2 = np.sqrt(np.maximum(0.0, 1.0 - x * x))
        fact = 1.0
        for _ in range(m):
            pmm = -fact * somx2 * pmm
            fact += 2.0
    if l == m:
        return pmm
    pmmp1 = x * (2 * m + 1) * pmm
    if l == m + 1:
        return pmmp1
    p_prev, p_curr = pmm, pmmp1
    for ll in range(m + 2, l + 1):
        p_next = ((2 * ll - 1) * x * p_curr - (ll + m - 1) * p_prev) / (ll - m)
        p_prev, p_curr = p_curr, p_next
    return p_curr


def angular_probability(theta, phi, l: int, m: int):
    """Unnormalized squared real angular part, floored so it is never exactly zero."""
    plm = associated_legendre(l, m, np.cos(theta))
    if m > 0:
        plm = plm * np.cos(m * np.asarray(phi, dtype=float))
    elif m < 0:
        plm = plm * np.sin(abs(m) * np.asarray(phi, dtype=float))
    return plm * plm + ANGULAR_FLOOR


def random_directions(rng: np.random.Generator, count: int) -> tuple[np.ndarray, np.ndarray]:
    """Uniform directions on the unit sphere as (theta, phi)."""
    theta = np.arccos(rng.uniform(-1.0, 1.0, count))
    phi = rng.uniform(0.0, 2.0 * np.pi, count)
    return theta, phi


def unit_vectors(theta: np.ndarray, phi: np.ndarray) -> np.ndarray:
    sin_t = np.sin(theta)
    return np.column_stack((sin_t * np.cos(phi), sin_t * np.sin(phi), np.cos(theta)))


def estimate_max_angular(
    l: int,
    m: int,
    rng: np.random.Generator,
    trials: int = 500,
    safety: float = 1.2,
) -> float:
    """Monte-Carlo peak of the angular density, inflated into a rejection envelope."""
    theta, phi = random_directions(rng, max(1, int(trials)))
    observed = float(np.max(angular_probability(theta, phi, l, m)))
    return max(observed, _MAX_FLOOR) * safety
