from __future__ import annotations

import numpy as np

from orbcloud.config import SamplerConfig

_EXTENT_FLOOR = 120.0
_EXTENT_MARGIN = 1.02
_EXTENT_MAX_POINTS = 100000


def percentile(values, fraction: float, default: float = 0.0) -> float:
    """Nearest-rank percentile: sorted[min(n - 1, floor(fraction * n))]."""
    values = np.asarray(values, dtype=float).ravel()
    if values.size == 0:
        return default
    index = min(values.size - 1, int(np.floor(fraction * values.size)))
    return float(np.partition(values, index)[index])


def kmeans(
    points: np.ndarray,
    k: int,
    rng: np.random.Generator,
    max_iter: int = 30,
) -> list[np.ndarray]:
    """Plain Lloyd k-means with random-point init; returns member indices per cluster.

    Clusters that lose all members are reseeded from a random point.
    """
    count = len(points)
    if count == 0 or k <= 0:
        return []
    centroids = points[rng.integers(0, count, size=k)].astype(float, copy=True)
    labels = np.full(count, -1, dtype=int)
    for _ in range(max(1, int(max_iter))):
        distances = ((points[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2)
        new_labels = np.argmin(distances, axis=1)
        moved = bool(np.any(new_labels != labels))
        labels = new_labels
        for c in range(k):
            members = labels == c
            if np.any(members):
                centroids[c] = points[members].mean(axis=0)
            else:
                centroids[c] = points[rng.integers(0, count)]
        if not moved:
            break
    return [np.flatnonzero(labels == c) for c in range(k)]


def radii(points: np.ndarray) -> np.ndarray:
    return np.linalg.norm(points, axis=1)


def cloud_extent(points: np.ndarray, config: SamplerConfig | None = None) -> float:
    """View extent for a finished cloud: max radius with a small margin."""
    config = config or SamplerConfig()
    if len(points) == 0:
        return _EXTENT_FLOOR
    step = max(1, len(points) // _EXTENT_MAX_POINTS)
    max_r = float(np.max(radii(points[::step])))
    max_r = max(max_r, config.nucleus_radius)
    return max(max_r * _EXTENT_MARGIN, _EXTENT_FLOOR)
