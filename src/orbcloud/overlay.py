from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from orbcloud.config import OverlayConfig, SamplerConfig
from orbcloud.normalize import equatorial_threshold
from orbcloud.quantum import QuantumState
from orbcloud.stats import kmeans, percentile

logger = logging.getLogger(__name__)

Vector = tuple[float, float, float]

_MIN_EXTENT = 0.01
_AXIS_EPS = 1e-9
_DZ2_AXIAL_FLOOR = 1.0
_RING_TUBE_FLOOR = 1.0
_RING_GAP = 0.001
_P_DEFAULT_AXIAL = 8.0
_P_DEFAULT_RADIAL = 2.0
_D_DEFAULT_RADIAL = 0.5

# (in-plane axis 1, in-plane axis 2, starting angle) of the four lobes for each m of a d orbital.
_D_LOBE_PLANES: dict[int, tuple[Vector, Vector, float]] = {
    2: ((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), 0.0),
    -2: ((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), math.pi / 4),
    1: ((1.0, 0.0, 0.0), (0.0, 0.0, 1.0), math.pi / 4),
    -1: ((0.0, 1.0, 0.0), (0.0, 0.0, 1.0), math.pi / 4),
}


@dataclass(frozen=True)
class Lobe:
    """Ellipsoidal lobe leaving the nucleus along ``axis``.

    ``rotation`` turns the major radial direction away from the first vector
    of ``perpendicular_basis(axis)``, in radians within [0, pi).
    """

    axis: Vector
    axial_extent: float
    radial_extent: float
    radial_minor_extent: float
    rotation: float = 0.0
    axial_offset: float = 0.0

    def extents(self) -> tuple[float, ...]:
        return (self.axial_extent, self.radial_extent, self.radial_minor_extent, self.rotation, self.axial_offset)


@dataclass(frozen=True)
class Ring:
    inner_radius: float
    outer_radius: float
    major_radius: float
    tube_radius: float

    def extents(self) -> tuple[float, ...]:
        return (self.inner_radius, self.outer_radius, self.major_radius, self.tube_radius)


class OverlayDescriptor:
    kind: ClassVar[str] = ""

    @property
    def lobes(self) -> tuple[Lobe, ...]:
        return ()

    def extents(self) -> tuple[float, ...]:
        values: list[float] = []
        for lobe in self.lobes:
            values.extend(lobe.extents())
        return tuple(values)


@dataclass(frozen=True)
class Sphere(OverlayDescriptor):
    kind: ClassVar[str] = "sphere"
    radius: float

    def extents(self) -> tuple[float, ...]:
        return (self.radius,)


@dataclass(frozen=True)
class LobePair(OverlayDescriptor):
    kind: ClassVar[str] = "lobe_pair"
    pair: tuple[Lobe, Lobe]
    used_fallback: bool = False

    @property
    def lobes(self) -> tuple[Lobe, ...]:
        return self.pair


@dataclass(frozen=True)
class AxialLobesWithRing(OverlayDescriptor):
    kind: ClassVar[str] = "axial_lobes_with_ring"
    upper: Lobe
    lower: Lobe
    ring: Ring

    @property
    def lobes(self) -> tuple[Lobe, ...]:
        return (self.upper, self.lower)

    def extents(self) -> tuple[float, ...]:
        return super().extents() + self.ring.extents()


@dataclass(frozen=True)
class ClusterLobes(OverlayDescriptor):
    kind: ClassVar[str] = "cluster_lobes"
    members: tuple[Lobe, ...]
    used_fallback: bool = False

    @property
    def lobes(self) -> tuple[Lobe, ...]:
        return self.members


def _extent(value: float, floor: float = _MIN_EXTENT) -> float:
    value = float(value)
    if not math.isfinite(value):
        return floor
    return max(floor, value)


def _unit(vector) -> np.ndarray | None:
    vector = np.asarray(vector, dtype=float)
    length = float(np.linalg.norm(vector))
    if not math.isfinite(length) or length <= _AXIS_EPS:
        return None
    return vector / length


def _as_vector(vector: np.ndarray) -> Vector:
    return (float(vector[0]), float(vector[1]), float(vector[2]))


def perpendicular_basis(axis) -> tuple[np.ndarray, np.ndarray]:
    """Orthonormal (u, v) spanning the plane perpendicular to ``axis``, with u x v = axis."""
    axis = np.asarray(axis, dtype=float)
    helper = np.array([0.0, 0.0, 1.0]) if abs(axis[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
    u = np.cross(axis, helper)
    u /= np.linalg.norm(u)
    v = np.cross(axis, u)
    return u, v


def in_plane_rotation(a: np.ndarray, b: np.ndarray) -> float:
    """Principal direction of 2-D points from the closed-form covariance eigenvector."""
    a = a - a.mean()
    b = b - b.mean()
    c_aa = float(np.mean(a * a))
    c_bb = float(np.mean(b * b))
    c_ab = float(np.mean(a * b))
    angle = 0.5 * math.atan2(2.0 * c_ab, c_aa - c_bb)
    return angle % math.pi


def _finite_points(positions, count: int) -> np.ndarray:
    flat = np.asarray(positions, dtype=float).ravel()
    usable = min(max(0, int(count)), flat.size // 3)
    points = flat[: usable * 3].reshape(-1, 3)
    return points[np.all(np.isfinite(points), axis=1)]


def _axial_radial(points: np.ndarray, axis: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    t = points @ axis
    radial_sq = np.einsum("ij,ij->i", points, points) - t * t
    return np.abs(t), np.sqrt(np.maximum(radial_sq, 0.0))


def compute_overlay(
    positions,
    count: int,
    state: QuantumState,
    config: OverlayConfig | None = None,
    rng: np.random.Generator | None = None,
    min_radius: float | None = None,
) -> OverlayDescriptor | None:
    """Reduce a finished cloud to an overlay descriptor.

    Returns None for an empty buffer and for l > 2; otherwise always a
    descriptor with finite, non-negative extents.
    """
    config = config or OverlayConfig()
    if min_radius is None:
        min_radius = SamplerConfig().min_radius
    if positions is None:
        return None
    points = _finite_points(positions, count)
    if len(points) == 0 or state.l > 2:
        return None
    if rng is None:
        rng = np.random.default_rng(config.seed)
    try:
        if state.l == 0:
            descriptor = _fit_sphere(points, config)
        elif state.l == 1:
            descriptor = _fit_lobe_pair(points, config, rng)
        elif state.m == 0:
            descriptor = _fit_axial_lobes_with_ring(points, config, min_radius)
        else:
            descriptor = _fit_cluster_lobes(points, state.m, config, rng)
    except (ValueError, FloatingPointError, np.linalg.LinAlgError):
        logger.exception("Overlay fit failed for l=%d m=%d; using default geometry", state.l, state.m)
        descriptor = default_overlay(state, config)
    logger.info("Overlay for l=%d m=%d: %s", state.l, state.m, descriptor.kind)
    return descriptor


def default_overlay(state: QuantumState, config: OverlayConfig | None = None) -> OverlayDescriptor | None:
    """Conservative geometry used when a fit cannot be made."""
    config = config or OverlayConfig()
    if state.l == 0:
        return Sphere(radius=config.sphere_min_radius)
    if state.l == 1:
        axial = _P_DEFAULT_AXIAL * config.p_fallback_axial_boost
        radial = _P_DEFAULT_RADIAL * config.p_fallback_radial_boost
        return LobePair(
            pair=(
                Lobe((1.0, 0.0, 0.0), axial, radial, radial),
                Lobe((-1.0, 0.0, 0.0), axial, radial, radial),
            ),
            used_fallback=True,
        )
    if state.l == 2 and state.m == 0:
        inner, outer = config.ring_default_inner, config.ring_default_outer
        ring = Ring(inner, outer, 0.5 * (inner + outer), max(_RING_TUBE_FLOOR, 0.5 * (outer - inner)))
        offset = _DZ2_AXIAL_FLOOR * config.dz2_axial_offset
        radial = config.dz2_min_radial
        return AxialLobesWithRing(
            upper=Lobe((0.0, 0.0, 1.0), _DZ2_AXIAL_FLOOR, radial, radial, axial_offset=offset),
            lower=Lobe((0.0, 0.0, -1.0), _DZ2_AXIAL_FLOOR, radial, radial, axial_offset=offset),
            ring=ring,
        )
    if state.l == 2:
        return _canonical_d_lobes(state.m, config.d_axial_floor, _D_DEFAULT_RADIAL, config)
    return None


def _fit_sphere(points: np.ndarray, config: OverlayConfig) -> Sphere:
    r = percentile(np.linalg.norm(points, axis=1), config.sphere_percentile)
    return Sphere(radius=_extent(r * config.sphere_scale, config.sphere_min_radius))


def _fit_lobe_pair(points: np.ndarray, config: OverlayConfig, rng: np.random.Generator) -> LobePair:
    fitted: list[tuple[np.ndarray, float, float]] = []
    for members in kmeans(points, 2, rng, config.kmeans_iterations):
        if len(members) < config.lobe_min_members:
            continue
        cluster = points[members]
        axis = _unit(cluster.mean(axis=0))
        if axis is None:
            continue
        axial, radial = _axial_radial(cluster, axis)
        fitted.append((axis, percentile(axial, config.lobe_percentile), percentile(radial, config.lobe_percentile)))

    used_fallback = len(fitted) < 2
    if used_fallback:
        logger.debug("p clustering gave %d usable lobes; splitting by sign of x", len(fitted))
        fitted = _split_by_sign_of_x(points, config)

    # Both lobes take the extents of the one closest to the x axis.
    canonical = max(fitted, key=lambda item: abs(item[0][0]))
    axial = _extent(canonical[1])
    radial = _extent(canonical[2])
    first, second = fitted[0][0], fitted[1][0]
    return LobePair(
        pair=(
            Lobe(_as_vector(first), axial, radial, radial),
            Lobe(_as_vector(second), axial, radial, radial),
        ),
        used_fallback=used_fallback,
    )


def _split_by_sign_of_x(points: np.ndarray, config: OverlayConfig) -> list[tuple[np.ndarray, float, float]]:
    halves = (points[points[:, 0] >= 0], points[points[:, 0] < 0])
    stats: list[tuple[float, float] | None] = []
    for half in halves:
        if len(half) == 0:
            stats.append(None)
            continue
        axial = percentile(np.abs(half[:, 0]), config.lobe_percentile) * config.p_fallback_axial_boost
        radial = percentile(np.hypot(half[:, 1], half[:, 2]), config.lobe_percentile) * config.p_fallback_radial_boost
        stats.append((axial, radial))
    default = (_P_DEFAULT_AXIAL * config.p_fallback_axial_boost, _P_DEFAULT_RADIAL * config.p_fallback_radial_boost)
    positive = stats[0] or stats[1] or default
    negative = stats[1] or stats[0] or default
    return [
        (np.array([1.0, 0.0, 0.0]), positive[0], positive[1]),
        (np.array([-1.0, 0.0, 0.0]), negative[0], negative[1]),
    ]


def _fit_axial_lobes_with_ring(points: np.ndarray, config: OverlayConfig, min_radius: float) -> AxialLobesWithRing:
    z = points[:, 2]
    rxy = np.hypot(points[:, 0], points[:, 1])

    upper_extent = _extent(percentile(z[z >= 0], config.lobe_percentile) * config.dz2_axial_scale, _DZ2_AXIAL_FLOOR)
    lower_extent = _extent(percentile(-z[z < 0], config.lobe_percentile) * config.dz2_axial_scale, _DZ2_AXIAL_FLOOR)
    lobe_radial = _extent(percentile(rxy, config.dz2_radial_percentile) * config.dz2_radial_scale, config.dz2_min_radial)

    band = rxy[np.abs(z) <= equatorial_threshold(points)]
    if len(band) >= config.ring_min_points:
        inner = _extent(percentile(band, config.ring_inner_percentile), min_radius)
        outer = _extent(percentile(band, config.ring_outer_percentile), inner + _RING_GAP)
    else:
        inner, outer = config.ring_default_inner, config.ring_default_outer
    ring = Ring(
        inner_radius=inner,
        outer_radius=outer,
        major_radius=0.5 * (inner + outer),
        tube_radius=max(_RING_TUBE_FLOOR, 0.5 * (outer - inner)),
    )
    return AxialLobesWithRing(
        upper=Lobe(
            (0.0, 0.0, 1.0),
            upper_extent,
            lobe_radial,
            lobe_radial,
            axial_offset=upper_extent * config.dz2_axial_offset,
        ),
        lower=Lobe(
            (0.0, 0.0, -1.0),
            lower_extent,
            lobe_radial,
            lobe_radial,
            axial_offset=lower_extent * config.dz2_axial_offset,
        ),
        ring=ring,
    )


def _cluster_d_lobes(points: np.ndarray, config: OverlayConfig, rng: np.random.Generator) -> list[np.ndarray]:
    threshold = max(config.lobe_min_members, int(config.cluster_min_fraction * len(points)))
    iterations = config.kmeans_iterations
    best: list[np.ndarray] = []
    for attempt in range(1 + max(0, config.kmeans_retries)):
        clusters = kmeans(points, 4, rng, iterations)
        smallest = min(len(c) for c in clusters)
        if not best or smallest > min(len(c) for c in best):
            best = clusters
        if smallest >= threshold:
            break
        logger.debug("d clustering attempt %d left a cluster of %d (< %d); retrying", attempt + 1, smallest, threshold)
        iterations *= 2
    return [c for c in best if len(c) >= threshold]


def _fit_cluster_lobes(points: np.ndarray, m: int, config: OverlayConfig, rng: np.random.Generator) -> ClusterLobes:
    frames = []
    axial_pool, major_pool, minor_pool = [], [], []
    for members in _cluster_d_lobes(points, config, rng):
        cluster = points[members]
        axis = _unit(cluster.mean(axis=0))
        if axis is None:
            continue
        u, v = perpendicular_basis(axis)
        a = cluster @ u
        b = cluster @ v
        rotation = in_plane_rotation(a, b)
        cos_r, sin_r = math.cos(rotation), math.sin(rotation)
        axial_pool.append(np.abs(cluster @ axis))
        major_pool.append(np.abs(a * cos_r + b * sin_r))
        minor_pool.append(np.abs(-a * sin_r + b * cos_r))
        frames.append((axis, rotation))

    if len(frames) < 4:
        logger.debug("d clustering found %d lobes; using canonical layout for m=%d", len(frames), m)
        return _global_d_lobes(points, m, config)

    # Pooled statistics give every lobe of the multiplet the same size.
    axial = _extent(percentile(np.concatenate(axial_pool), config.lobe_percentile), config.d_axial_floor)
    major = _extent(percentile(np.concatenate(major_pool), config.lobe_percentile) * config.d_radial_shrink)
    minor = _extent(percentile(np.concatenate(minor_pool), config.lobe_percentile) * config.d_radial_shrink)
    lobes = tuple(
        Lobe(
            _as_vector(axis),
            axial,
            major,
            minor,
            rotation=rotation,
            axial_offset=axial * config.d_axial_offset,
        )
        for axis, rotation in frames
    )
    return ClusterLobes(members=lobes)


def _global_d_lobes(points: np.ndarray, m: int, config: OverlayConfig) -> ClusterLobes:
    e1, e2, _start = _D_LOBE_PLANES.get(m, _D_LOBE_PLANES[2])
    e1, e2 = np.asarray(e1), np.asarray(e2)
    normal = np.cross(e1, e2)
    in_plane = np.hypot(points @ e1, points @ e2)
    out_of_plane = np.abs(points @ normal)
    axial = _extent(percentile(in_plane, config.lobe_percentile), config.d_axial_floor)
    radial = _extent(percentile(out_of_plane, config.lobe_percentile) * config.d_radial_shrink)
    return _canonical_d_lobes(m, axial, radial, config)


def _canonical_d_lobes(m: int, axial: float, radial: float, config: OverlayConfig) -> ClusterLobes:
    e1, e2, start = _D_LOBE_PLANES.get(m, _D_LOBE_PLANES[2])
    lobes = []
    for i in range(4):
        angle = start + i * math.pi / 2
        axis = math.cos(angle) * np.asarray(e1) + math.sin(angle) * np.asarray(e2)
        lobes.append(Lobe(_as_vector(axis), axial, radial, radial, axial_offset=axial * config.d_axial_offset))
    return ClusterLobes(members=tuple(lobes), used_fallback=True)
