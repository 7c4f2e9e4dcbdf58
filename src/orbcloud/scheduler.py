from __future__ import annotations

import logging
import math
from collections import deque
from typing import Callable

import numpy as np
from PySide6 import QtCore

from orbcloud.config import SamplerConfig
from orbcloud.normalize import normalize_cloud
from orbcloud.quantum import QuantumState
from orbcloud.sampler import PointSampler
from orbcloud.session import SamplingContext, SamplingSession, SessionStatus

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[np.ndarray, int], None]
ProgressCallback = Callable[[int, int], None]


class ChunkScheduler:
    """Runs zero-argument callables later, on the host's own loop."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None:
        raise NotImplementedError


class QtTimerScheduler(ChunkScheduler):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None:
        QtCore.QTimer.singleShot(max(0, int(delay_ms)), callback)


class ManualScheduler(ChunkScheduler):
    """FIFO task queue pumped explicitly by the owner (headless hosts and tests)."""

    def __init__(self) -> None:
        self._queue: deque[tuple[int, Callable[[], None]]] = deque()
        self.delays: list[int] = []

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None:
        self.delays.append(int(delay_ms))
        self._queue.append((int(delay_ms), callback))

    @property
    def pending(self) -> int:
        return len(self._queue)

    def run_pending(self) -> int:
        """Run the tasks queued so far; tasks they schedule wait for the next tick."""
        ran = 0
        for _ in range(len(self._queue)):
            _delay, callback = self._queue.popleft()
            callback()
            ran += 1
        return ran

    def run_until_idle(self, max_ticks: int = 100000) -> int:
        ticks = 0
        while self._queue and ticks < max_ticks:
            self.run_pending()
            ticks += 1
        return ticks


class ChunkedSampler:
    """Fills sample buffers in bounded chunks without blocking the host loop.

    A new request supersedes the previous session: its pending chunks see a
    stale session id at their next checkpoint and stop without calling back.
    """

    def __init__(
        self,
        scheduler: ChunkScheduler,
        context: SamplingContext | None = None,
        config: SamplerConfig | None = None,
        rng: np.random.Generator | None = None,
        normalize: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.context = context or SamplingContext()
        self.config = config or SamplerConfig()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.normalize = normalize

    def attempt_budget(self, target: int) -> int:
        chunks = max(1, math.ceil(target / max(1, self.config.chunk_samples)))
        return self.config.attempts_per_chunk * chunks * max(1, self.config.starvation_factor)

    def request_sample(
        self,
        state: QuantumState,
        count: int,
        on_complete: CompletionCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> np.ndarray:
        """Start a session for ``state``; returns its (progressively filled) flat buffer."""
        count = int(count)
        if count < 0:
            raise ValueError(f"sample count must be non-negative, got {count}")
        session = self.context.begin_session(state, count)
        sampler = PointSampler(state, self.rng, self.config) if count > 0 else None
        budget = self.attempt_budget(count)
        logger.debug("Session %d started: n=%d l=%d m=%d count=%d", session.session_id, state.n, state.l, state.m, count)

        def chunk() -> None:
            self._run_chunk(session, sampler, budget, on_complete, on_progress, chunk)

        self.scheduler.call_later(self.config.yield_delay_ms, chunk)
        return session.buffer

    def cancel(self) -> None:
        self.context.invalidate()

    def _run_chunk(
        self,
        session: SamplingSession,
        sampler: PointSampler | None,
        budget: int,
        on_complete: CompletionCallback | None,
        on_progress: ProgressCallback | None,
        chunk: Callable[[], None],
    ) -> None:
        session_id = session.session_id
        if not self.context.is_current(session_id):
            logger.debug("Session %d dropped before chunk %d", session_id, session.chunks + 1)
            return
        session.chunks += 1
        target = session.target_count
        attempts_cap = self.config.attempts_per_chunk
        if sampler is not None and session.produced < target:
            stop = min(target, session.produced + self.config.chunk_samples)
            result = sampler.fill(
                session.points,
                session.produced,
                stop,
                min(attempts_cap, max(0, budget - session.attempts)),
                keep_going=lambda: self.context.is_current(session_id),
            )
            if not self.context.is_current(session_id):
                return
            session.produced += result.produced
            session.attempts += result.attempts
            self._notify_progress(on_progress, session)

            if session.produced < target:
                if session.attempts < budget:
                    starved = result.attempts >= attempts_cap
                    delay = self.config.starved_delay_ms if starved else self.config.yield_delay_ms
                    self.scheduler.call_later(delay, chunk)
                    return
                missing = target - session.produced
                logger.warning(
                    "Session %d starved after %d attempts; filling %d samples isotropically",
                    session_id,
                    session.attempts,
                    missing,
                )
                session.fallback_filled = sampler.fill_isotropic(session.points, session.produced, target)
                session.produced = target
                self._notify_progress(on_progress, session)
        self._complete(session, on_complete)

    def _notify_progress(self, on_progress: ProgressCallback | None, session: SamplingSession) -> None:
        if on_progress is None:
            return
        try:
            on_progress(session.produced, session.target_count)
        except Exception:
            logger.exception("Sampling progress callback failed for session %d", session.session_id)

    def _complete(self, session: SamplingSession, on_complete: CompletionCallback | None) -> None:
        if not self.context.is_current(session.session_id) or session.status is not SessionStatus.SAMPLING:
            return
        if self.normalize and session.produced > 0:
            normalize_cloud(session.points[: session.produced], session.state, self.rng, self.config)
        session.status = SessionStatus.DONE
        logger.info(
            "Session %d finished: %d samples in %d chunks (%d attempts)",
            session.session_id,
            session.produced,
            session.chunks,
            session.attempts,
        )
        if on_complete is None:
            return
        try:
            on_complete(session.buffer, session.produced)
        except Exception:
            logger.exception("Sampling completion callback failed for session %d", session.session_id)
