from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path

from orbcloud.profiles import load_profile_data

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamplerConfig:
    nucleus_radius: float = 18.0
    min_gap: float = 6.0
    radial_unit: float = 40.0
    distance_multiplier: float = 1.6
    l_compression_step: float = 0.06
    l_compression_floor: float = 0.6
    angular_trials: int = 500
    angular_safety: float = 1.2
    angular_attempts: int = 20
    chunk_samples: int = 1000
    attempts_per_chunk: int = 20000
    starvation_factor: int = 3
    yield_delay_ms: int = 0
    starved_delay_ms: int = 10
    fallback_radius_factor: float = 1.8
    max_samples: int = 30000
    global_push: float = 1.15
    equatorial_push: float = 1.35
    near_push: float = 2.0
    near_threshold_mult: float = 1.5
    dz2_near_threshold: float = 80.0
    dz2_near_equatorial_threshold: float = 120.0

    @property
    def min_radius(self) -> float:
        return self.nucleus_radius + self.min_gap

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OverlayConfig:
    seed: int | None = 0
    sphere_percentile: float = 0.95
    sphere_scale: float = 0.85
    sphere_min_radius: float = 0.5
    lobe_percentile: float = 0.95
    lobe_min_members: int = 6
    kmeans_iterations: int = 30
    kmeans_retries: int = 2
    cluster_min_fraction: float = 0.02
    p_fallback_axial_boost: float = 1.15
    p_fallback_radial_boost: float = 1.10
    dz2_axial_scale: float = 1.0
    dz2_radial_percentile: float = 0.80
    dz2_radial_scale: float = 0.65 * 1.03
    dz2_min_radial: float = 0.9
    dz2_axial_offset: float = 0.18 * 0.85
    ring_inner_percentile: float = 0.125
    ring_outer_percentile: float = 0.875
    ring_min_points: int = 8
    ring_default_inner: float = 60.0
    ring_default_outer: float = 90.0
    d_radial_shrink: float = 0.80
    d_axial_floor: float = 4.0
    d_axial_offset: float = 0.12
    overlay_scale: float = 0.90

    def to_dict(self) -> dict:
        return asdict(self)


def _apply_section(config, section: dict | None, name: str):
    if not section:
        return config
    known = {f.name for f in fields(config)}
    updates = {}
    for key, value in section.items():
        if key not in known:
            logger.warning("Ignoring unknown %s setting %r", name, key)
            continue
        updates[key] = value
    return replace(config, **updates)


def config_from_dict(data: dict) -> tuple[SamplerConfig, OverlayConfig]:
    sampler = _apply_section(SamplerConfig(), data.get("sampler"), "sampler")
    overlay = _apply_section(OverlayConfig(), data.get("overlay"), "overlay")
    return sampler, overlay


def load_config(path: str | Path) -> tuple[SamplerConfig, OverlayConfig]:
    """Read a JSON profile with optional ``sampler`` and ``overlay`` sections."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Profile {path} must contain a JSON object")
    return config_from_dict(data)


def save_config(path: str | Path, sampler: SamplerConfig, overlay: OverlayConfig) -> None:
    payload = {"sampler": sampler.to_dict(), "overlay": overlay.to_dict()}
    Path(path).write_text(json.dumps(payload, indent=2), encoding="utf-8")


def load_builtin_profile(name: str) -> tuple[SamplerConfig, OverlayConfig]:
    """Settings bundled with the package (``default``, ``preview``)."""
    return config_from_dict(load_profile_data(name))
