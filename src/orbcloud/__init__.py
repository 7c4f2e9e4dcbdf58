from __future__ import annotations

from orbcloud.config import OverlayConfig, SamplerConfig, load_builtin_profile, load_config
from orbcloud.overlay import (
    AxialLobesWithRing,
    ClusterLobes,
    Lobe,
    LobePair,
    OverlayDescriptor,
    Ring,
    Sphere,
    compute_overlay,
)
from orbcloud.quantum import InvalidQuantumState, QuantumState, orbital_label
from orbcloud.scheduler import ChunkedSampler, ManualScheduler, QtTimerScheduler
from orbcloud.session import SamplingContext

__version__ = "0.1.0"
