from __future__ import annotations

import logging

import numpy as np
from PySide6 import QtCore

from orbcloud.config import OverlayConfig, SamplerConfig
from orbcloud.overlay import OverlayDescriptor, compute_overlay
from orbcloud.quantum import QuantumState
from orbcloud.radial import estimate_axis_length
from orbcloud.scheduler import ChunkScheduler, ChunkedSampler, QtTimerScheduler
from orbcloud.session import SamplingContext
from orbcloud.stats import cloud_extent

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 150


class OrbitalCloudController(QtCore.QObject):
    """Owns the active sampling session and its overlay for a Qt host.

    All work runs on the Qt event loop in bounded steps; widgets connect to
    the signals and never touch the sampler directly.
    """

    sampling_started = QtCore.Signal(int, int)
    sampling_progress = QtCore.Signal(int, int)
    cloud_ready = QtCore.Signal(object, int)
    overlay_changed = QtCore.Signal(object)
    extent_hint = QtCore.Signal(float)

    def __init__(
        self,
        sampler_config: SamplerConfig | None = None,
        overlay_config: OverlayConfig | None = None,
        rng: np.random.Generator | None = None,
        scheduler: ChunkScheduler | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        parent: QtCore.QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.sampler_config = sampler_config or SamplerConfig()
        self.overlay_config = overlay_config or OverlayConfig()
        self.context = SamplingContext()
        self.scheduler = scheduler or QtTimerScheduler()
        self.sampler = ChunkedSampler(self.scheduler, self.context, self.sampler_config, rng)
        self._overlay_enabled = False
        self._overlay: OverlayDescriptor | None = None
        self._last_request: tuple[QuantumState, int] | None = None
        self._pending_request: tuple[QuantumState, int] | None = None

        self._debounce_timer = QtCore.QTimer(self)
        self._debounce_timer.setSingleShot(True)
        self._debounce_timer.setInterval(debounce_ms)
        self._debounce_timer.timeout.connect(self._flush_pending_request)

    @property
    def overlay(self) -> OverlayDescriptor | None:
        return self._overlay

    @property
    def overlay_enabled(self) -> bool:
        return self._overlay_enabled

    @property
    def positions(self) -> np.ndarray | None:
        return self.context.positions

    @property
    def sample_count(self) -> int:
        return self.context.sample_count

    @property
    def state(self) -> QuantumState | None:
        active = self.context.active
        return None if active is None else active.state

    def _clamp_count(self, count: int) -> int:
        count = int(count)
        if count < 0:
            raise ValueError(f"sample count must be non-negative, got {count}")
        if count > self.sampler_config.max_samples:
            logger.warning("Clamping sample count %d to %d", count, self.sampler_config.max_samples)
            count = self.sampler_config.max_samples
        return count

    def request(self, n: int, l: int, m: int, count: int, force: bool = False) -> int | None:
        """Start sampling (n, l, m); returns the new session id, or None for a repeated request."""
        state = QuantumState.from_values(n, l, m)
        count = self._clamp_count(count)
        return self._start(state, count, force)

    def schedule_request(self, n: int, l: int, m: int, count: int) -> None:
        """Debounced ``request``: bursts of edits collapse into one session."""
        self._pending_request = (QuantumState.from_values(n, l, m), self._clamp_count(count))
        self._debounce_timer.start()

    def cancel(self) -> None:
        self._debounce_timer.stop()
        self._pending_request = None
        self._last_request = None
        self.sampler.cancel()
        self._set_overlay(None)

    def set_overlay_enabled(self, enabled: bool) -> None:
        enabled = bool(enabled)
        if enabled == self._overlay_enabled:
            return
        self._overlay_enabled = enabled
        if enabled:
            self._schedule_overlay()
        else:
            self._set_overlay(None)

    def _flush_pending_request(self) -> None:
        if self._pending_request is None:
            return
        state, count = self._pending_request
        self._pending_request = None
        self._start(state, count, force=False)

    def _start(self, state: QuantumState, count: int, force: bool) -> int | None:
        key = (state, count)
        if not force and key == self._last_request:
            logger.debug("Ignoring repeated request for n=%d l=%d m=%d count=%d", state.n, state.l, state.m, count)
            return None
        self._last_request = key
        self._set_overlay(None)
        self.extent_hint.emit(float(estimate_axis_length(state.n, state.l, self.sampler_config)))
        self.sampler.request_sample(
            state,
            count,
            on_complete=self._on_cloud_complete,
            on_progress=self.sampling_progress.emit,
        )
        session_id = self.context.session_counter
        self.sampling_started.emit(session_id, count)
        return session_id

    def _on_cloud_complete(self, buffer: np.ndarray, count: int) -> None:
        self.cloud_ready.emit(buffer, count)
        if count > 0:
            points = buffer.reshape(-1, 3)[:count]
            self.extent_hint.emit(float(cloud_extent(points, self.sampler_config)))
        if self._overlay_enabled:
            self._schedule_overlay()

    def _schedule_overlay(self) -> None:
        session = self.context.active
        if session is None or not session.finished:
            return
        session_id = session.session_id

        def fit() -> None:
            if not self.context.is_current(session_id) or not self._overlay_enabled:
                return
            descriptor = compute_overlay(
                session.buffer,
                session.produced,
                session.state,
                self.overlay_config,
                min_radius=self.sampler_config.min_radius,
            )
            if self.context.is_current(session_id) and self._overlay_enabled:
                self._set_overlay(descriptor)

        self.scheduler.call_later(0, fit)

    def _set_overlay(self, descriptor: OverlayDescriptor | None) -> None:
        if descriptor is None and self._overlay is None:
            return
        self._overlay = descriptor
        self.overlay_changed.emit(descriptor)
