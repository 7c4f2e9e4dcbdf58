from __future__ import annotations

import sys
import unittest
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from orbcloud.config import SamplerConfig
from orbcloud.quantum import QuantumState
from orbcloud.scheduler import ChunkedSampler, ManualScheduler
from orbcloud.session import SamplingContext, SessionStatus


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[np.ndarray, int]] = []

    def __call__(self, buffer: np.ndarray, count: int) -> None:
        self.calls.append((buffer, count))


class ChunkedSamplerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.scheduler = ManualScheduler()
        self.context = SamplingContext()
        self.sampler = ChunkedSampler(self.scheduler, self.context, rng=np.random.default_rng(21))

    def test_request_fills_exact_count(self) -> None:
        done = Recorder()
        buffer = self.sampler.request_sample(QuantumState(1, 0, 0), 1500, on_complete=done)
        self.assertEqual(buffer.shape, (4500,))
        self.assertEqual(done.calls, [])

        self.scheduler.run_until_idle()

        self.assertEqual(len(done.calls), 1)
        delivered, count = done.calls[0]
        self.assertIs(delivered, buffer)
        self.assertEqual(count, 1500)
        radii = np.linalg.norm(buffer.reshape(-1, 3), axis=1)
        self.assertTrue(np.all(radii >= SamplerConfig().min_radius))
        self.assertEqual(self.context.active.chunks, 2)
        self.assertEqual(self.context.active.status, SessionStatus.DONE)
        self.assertEqual(self.context.sample_count, 1500)

    def test_progress_is_reported_per_chunk(self) -> None:
        progress: list[tuple[int, int]] = []
        self.sampler.request_sample(QuantumState(1, 0, 0), 2500, on_progress=lambda done, total: progress.append((done, total)))
        self.scheduler.run_until_idle()
        self.assertEqual(progress, [(1000, 2500), (2000, 2500), (2500, 2500)])

    def test_zero_count_completes_empty(self) -> None:
        done = Recorder()
        buffer = self.sampler.request_sample(QuantumState(2, 1, 0), 0, on_complete=done)
        self.assertEqual(buffer.size, 0)
        self.assertIsNone(self.context.positions)
        self.scheduler.run_until_idle()
        self.assertEqual(len(done.calls), 1)
        self.assertEqual(done.calls[0][1], 0)

    def test_negative_count_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.sampler.request_sample(QuantumState(1, 0, 0), -1)
        self.assertEqual(self.scheduler.pending, 0)

    def test_new_request_supersedes_running_session(self) -> None:
        first, second = Recorder(), Recorder()
        buffer_1 = self.sampler.request_sample(QuantumState(2, 1, 0), 3000, on_complete=first)
        self.scheduler.run_pending()
        snapshot = buffer_1.copy()
        self.assertTrue(snapshot.any())

        buffer_2 = self.sampler.request_sample(QuantumState(1, 0, 0), 1200, on_complete=second)
        self.scheduler.run_until_idle()

        self.assertEqual(first.calls, [])
        self.assertEqual(len(second.calls), 1)
        self.assertEqual(second.calls[0][1], 1200)
        np.testing.assert_array_equal(buffer_1, snapshot)
        self.assertFalse(np.shares_memory(buffer_1, buffer_2))

    def test_request_from_progress_callback_drops_old_session(self) -> None:
        first, second = Recorder(), Recorder()

        def restart(done: int, total: int) -> None:
            if not second.calls and self.context.session_counter == 1:
                self.sampler.request_sample(QuantumState(1, 0, 0), 300, on_complete=second)

        self.sampler.request_sample(QuantumState(1, 0, 0), 500, on_complete=first, on_progress=restart)
        self.scheduler.run_until_idle()

        self.assertEqual(first.calls, [])
        self.assertEqual(len(second.calls), 1)

    def test_cancel_silences_session(self) -> None:
        done = Recorder()
        self.sampler.request_sample(QuantumState(1, 0, 0), 2000, on_complete=done)
        self.scheduler.run_pending()
        self.sampler.cancel()
        self.scheduler.run_until_idle()
        self.assertEqual(done.calls, [])
        self.assertIsNone(self.context.active)

    def test_callback_failure_is_logged_and_contained(self) -> None:
        def explode(buffer: np.ndarray, count: int) -> None:
            raise RuntimeError("renderer went away")

        self.sampler.request_sample(QuantumState(1, 0, 0), 50, on_complete=explode)
        with self.assertLogs("orbcloud.scheduler", level="ERROR") as logs:
            self.scheduler.run_until_idle()
        self.assertTrue(any("completion callback failed" in line for line in logs.output))
        self.assertTrue(self.context.active.finished)

        done = Recorder()
        self.sampler.request_sample(QuantumState(1, 0, 0), 50, on_complete=done)
        self.scheduler.run_until_idle()
        self.assertEqual(len(done.calls), 1)


class StarvationTests(unittest.TestCase):
    def test_budget_exhaustion_fills_isotropically(self) -> None:
        config = SamplerConfig(attempts_per_chunk=5, starvation_factor=3)
        scheduler = ManualScheduler()
        sampler = ChunkedSampler(scheduler, config=config, rng=np.random.default_rng(8))
        done = Recorder()

        self.assertEqual(sampler.attempt_budget(200), 15)
        with self.assertLogs("orbcloud.scheduler", level="WARNING"):
            buffer = sampler.request_sample(QuantumState(1, 0, 0), 200, on_complete=done)
            scheduler.run_until_idle()

        self.assertEqual(scheduler.delays, [0, 10, 10])
        self.assertEqual(len(done.calls), 1)
        self.assertEqual(done.calls[0][1], 200)
        session = sampler.context.active
        self.assertEqual(session.attempts, 15)
        self.assertGreaterEqual(session.fallback_filled, 185)
        radii = np.linalg.norm(buffer.reshape(-1, 3), axis=1)
        self.assertTrue(np.all(radii >= config.min_radius))

    def test_attempt_budget_scales_with_chunks(self) -> None:
        sampler = ChunkedSampler(ManualScheduler())
        self.assertEqual(sampler.attempt_budget(0), 60000)
        self.assertEqual(sampler.attempt_budget(1000), 60000)
        self.assertEqual(sampler.attempt_budget(1001), 120000)


if __name__ == "__main__":
    unittest.main()
