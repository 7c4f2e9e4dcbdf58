from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

import numpy as np

from orbcloud.quantum import QuantumState

logger = logging.getLogger(__name__)


class SessionStatus(enum.Enum):
    SAMPLING = "sampling"
    DONE = "done"
    SUPERSEDED = "superseded"


@dataclass
class SamplingSession:
    session_id: int
    state: QuantumState
    target_count: int
    buffer: np.ndarray
    produced: int = 0
    attempts: int = 0
    chunks: int = 0
    fallback_filled: int = 0
    status: SessionStatus = SessionStatus.SAMPLING

    @property
    def points(self) -> np.ndarray:
        """(target_count, 3) view onto the flat buffer."""
        return self.buffer.reshape(-1, 3)

    @property
    def finished(self) -> bool:
        return self.status is SessionStatus.DONE


@dataclass
class SamplingContext:
    """Session counter and active buffer shared by the sampler and the fitting engine."""

    session_counter: int = 0
    active: SamplingSession | None = None

    def begin_session(self, state: QuantumState, target_count: int) -> SamplingSession:
        previous = self.active
        if previous is not None and previous.status is SessionStatus.SAMPLING:
            previous.status = SessionStatus.SUPERSEDED
            logger.debug("Session %d superseded at %d/%d samples", previous.session_id, previous.produced, previous.target_count)
        self.session_counter += 1
        session = SamplingSession(
            session_id=self.session_counter,
            state=state,
            target_count=int(target_count),
            buffer=np.zeros(int(target_count) * 3, dtype=float),
        )
        self.active = session
        return session

    def is_current(self, session_id: int) -> bool:
        return session_id == self.session_counter

    def invalidate(self) -> int:
        """Supersede whatever is in flight without starting a new sample set."""
        if self.active is not None and self.active.status is SessionStatus.SAMPLING:
            self.active.status = SessionStatus.SUPERSEDED
        self.session_counter += 1
        self.active = None
        return self.session_counter

    @property
    def sampling(self) -> bool:
        return self.active is not None and self.active.status is SessionStatus.SAMPLING

    @property
    def positions(self) -> np.ndarray | None:
        if self.active is None or self.active.target_count == 0:
            return None
        return self.active.buffer

    @property
    def sample_count(self) -> int:
        return 0 if self.active is None else min(self.active.produced, self.active.target_count)
