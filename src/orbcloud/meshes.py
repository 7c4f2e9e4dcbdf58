from __future__ import annotations

import numpy as np
import pyvista as pv

from orbcloud.config import OverlayConfig
from orbcloud.overlay import AxialLobesWithRing, Lobe, OverlayDescriptor, Ring, Sphere, perpendicular_basis

_RESOLUTION = 24


def cloud_polydata(positions, count: int | None = None) -> pv.PolyData:
    """Point cloud with a per-point ``radius`` array for colouring."""
    points = np.asarray(positions, dtype=float).reshape(-1, 3)
    if count is not None:
        points = points[: max(0, int(count))]
    cloud = pv.PolyData(points.copy())
    cloud["radius"] = np.linalg.norm(points, axis=1)
    return cloud


def lobe_frame(lobe: Lobe) -> np.ndarray:
    """4x4 transform taking the unit ellipsoid frame onto the lobe."""
    axis = np.asarray(lobe.axis, dtype=float)
    axis = axis / np.linalg.norm(axis)
    u, v = perpendicular_basis(axis)
    cos_r, sin_r = np.cos(lobe.rotation), np.sin(lobe.rotation)
    major = cos_r * u + sin_r * v
    minor = -sin_r * u + cos_r * v

    matrix = np.eye(4)
    matrix[:3, 0] = major
    matrix[:3, 1] = minor
    matrix[:3, 2] = axis
    matrix[:3, 3] = axis * (0.5 * lobe.axial_extent + lobe.axial_offset)
    return matrix


def lobe_mesh(lobe: Lobe, scale: float = 1.0, resolution: int = _RESOLUTION) -> pv.PolyData:
    ellipsoid = pv.ParametricEllipsoid(
        xradius=lobe.radial_extent * scale,
        yradius=lobe.radial_minor_extent * scale,
        zradius=0.5 * lobe.axial_extent * scale,
        u_res=resolution,
        v_res=resolution,
        w_res=resolution,
    )
    matrix = lobe_frame(lobe)
    matrix[:3, 3] *= scale
    return ellipsoid.transform(matrix, inplace=False)


def ring_mesh(ring: Ring, scale: float = 1.0, resolution: int = _RESOLUTION) -> pv.PolyData:
    return pv.ParametricTorus(
        ringradius=ring.major_radius * scale,
        crosssectionradius=ring.tube_radius * scale,
        u_res=resolution * 2,
        v_res=resolution,
        w_res=resolution,
    )


def overlay_meshes(
    descriptor: OverlayDescriptor | None,
    config: OverlayConfig | None = None,
) -> list[tuple[str, pv.PolyData]]:
    """Named meshes for an overlay descriptor, scaled for display."""
    if descriptor is None:
        return []
    config = config or OverlayConfig()
    scale = config.overlay_scale
    if isinstance(descriptor, Sphere):
        return [("sphere", pv.Sphere(radius=descriptor.radius * scale))]

    meshes = [(f"lobe_{i}", lobe_mesh(lobe, scale)) for i, lobe in enumerate(descriptor.lobes)]
    if isinstance(descriptor, AxialLobesWithRing):
        meshes.append(("ring", ring_mesh(descriptor.ring, scale)))
    return meshes
