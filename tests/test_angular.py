from __future__ import annotations

import math
import sys
import unittest
from pathlib import Path

import numpy as np
from scipy.special import lpmv

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from orbcloud.angular import (
    ANGULAR_FLOOR,
    angular_probability,
    associated_legendre,
    estimate_max_angular,
    random_directions,
    unit_vectors,
)


class AssociatedLegendreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.x = np.linspace(-1.0, 1.0, 41)

    def test_closed_forms(self) -> None:
        x = self.x
        np.testing.assert_allclose(associated_legendre(0, 0, x), np.ones_like(x))
        np.testing.assert_allclose(associated_legendre(1, 0, x), x)
        np.testing.assert_allclose(associated_legendre(1, 1, x), -np.sqrt(1.0 - x * x))
        np.testing.assert_allclose(associated_legendre(2, 0, x), 0.5 * (3.0 * x * x - 1.0))
        np.testing.assert_allclose(associated_legendre(2, 1, x), -3.0 * x * np.sqrt(1.0 - x * x), atol=1e-12)
        np.testing.assert_allclose(associated_legendre(2, 2, x), 3.0 * (1.0 - x * x), atol=1e-12)

    def test_matches_scipy(self) -> None:
        for l in range(7):
            for m in range(l + 1):
                np.testing.assert_allclose(
                    associated_legendre(l, m, self.x),
                    lpmv(m, l, self.x),
                    rtol=1e-9,
                    atol=1e-9,
                    err_msg=f"l={l} m={m}",
                )

    def test_negative_m_uses_absolute_order(self) -> None:
        np.testing.assert_allclose(associated_legendre(2, -1, self.x), associated_legendre(2, 1, self.x))

    def test_scalar_input_returns_float(self) -> None:
        value = associated_legendre(2, 0, 0.5)
        self.assertIsInstance(value, float)
        self.assertAlmostEqual(value, -0.125)


class AngularProbabilityTests(unittest.TestCase):
    def test_non_negative_everywhere(self) -> None:
        theta, phi = np.meshgrid(np.linspace(0.0, np.pi, 37), np.linspace(0.0, 2.0 * np.pi, 72, endpoint=False))
        for l in range(5):
            for m in range(-l, l + 1):
                density = angular_probability(theta, phi, l, m)
                self.assertTrue(np.all(density > 0.0), f"l={l} m={m}")

    def test_nodal_plane_hits_floor(self) -> None:
        value = float(angular_probability(math.pi / 2, 0.0, 1, 0))
        self.assertGreaterEqual(value, ANGULAR_FLOOR)
        self.assertLess(value, 1e-29)

    def test_cos_and_sin_factors(self) -> None:
        equator = math.pi / 2
        self.assertAlmostEqual(float(angular_probability(equator, 0.0, 1, 1)), 1.0)
        self.assertLess(float(angular_probability(equator, 0.0, 1, -1)), 1e-29)
        self.assertAlmostEqual(float(angular_probability(equator, math.pi / 2, 1, -1)), 1.0)

    def test_s_density_is_constant(self) -> None:
        theta = np.array([0.1, 1.0, 2.5])
        phi = np.array([0.0, 3.0, 5.0])
        np.testing.assert_allclose(angular_probability(theta, phi, 0, 0), 1.0)


class DirectionTests(unittest.TestCase):
    def test_random_directions_are_unit_vectors(self) -> None:
        rng = np.random.default_rng(3)
        theta, phi = random_directions(rng, 1000)
        self.assertTrue(np.all((theta >= 0.0) & (theta <= np.pi)))
        self.assertTrue(np.all((phi >= 0.0) & (phi < 2.0 * np.pi)))
        vectors = unit_vectors(theta, phi)
        np.testing.assert_allclose(np.linalg.norm(vectors, axis=1), 1.0)
        # uniform on the sphere: cos(theta) has mean ~0
        self.assertLess(abs(float(np.mean(vectors[:, 2]))), 0.1)


class MaxAngularTests(unittest.TestCase):
    def test_s_envelope_is_safety_factor(self) -> None:
        rng = np.random.default_rng(0)
        self.assertAlmostEqual(estimate_max_angular(0, 0, rng, trials=500, safety=1.2), 1.2)

    def test_p_envelope_brackets_peak(self) -> None:
        rng = np.random.default_rng(1)
        envelope = estimate_max_angular(1, 0, rng, trials=500, safety=1.2)
        self.assertGreater(envelope, 1.0)
        self.assertLessEqual(envelope, 1.2 + 1e-9)


if __name__ == "__main__":
    unittest.main()
