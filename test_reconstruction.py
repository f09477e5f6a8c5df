"""Tests for mapping internal states back to physical quantities"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pendulum_models import FULL_STATES, G, L_PENDULUM
from reconstruction import (
    VISUALIZATION_COLUMNS, R_z, full_state_record, reconstruct_rotating, rotating_state_record,
)
from rotating_lqr import ROTATING_STATES, equilibrium_point


@pytest.fixture
def ep():
    return equilibrium_point(L_PENDULUM, G, omega=1.0, radius=2.0)


def test_rotation_is_orthonormal():
    M = R_z(0.7)
    assert_allclose(M @ M.T, np.eye(3), atol=1e-12)
    assert_allclose(R_z(np.pi / 2) @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)


def test_zero_heading_restores_equilibrium(ep):
    sample = reconstruct_rotating(np.zeros(12), ep, 0.0, 1.0, 2.0, G)

    assert_allclose(sample.cart, [2.0, 0.0, 0.0], atol=1e-12)
    assert_allclose(sample.euler, [0.0, ep.mu_0], atol=1e-12)
    assert_allclose(sample.pendulum, [ep.p_0, 0.0], atol=1e-12)
    assert_allclose(sample.pendulum_actual, [2.0 + ep.p_0, 0.0], atol=1e-12)
    assert_allclose(sample.reference, [2.0, 0.0], atol=1e-12)
    assert sample.gamma == pytest.approx(0.0, abs=1e-12)
    assert sample.beta == pytest.approx(ep.mu_0)
    assert sample.beta_dot == pytest.approx(0.0, abs=1e-12)
    assert sample.gamma_dot == pytest.approx(2.0 / ep.a_0)


def test_quarter_turn_heading(ep):
    sample = reconstruct_rotating(np.zeros(12), ep, np.pi / 2, 1.0, 2.0, G)

    assert_allclose(sample.cart, [0.0, 2.0, 0.0], atol=1e-12)
    assert_allclose(sample.reference, [0.0, 2.0], atol=1e-12)
    assert_allclose(sample.pendulum, [0.0, ep.p_0], atol=1e-12)


def test_deviation_is_added_to_equilibrium(ep):
    x = ROTATING_STATES.vector(u=0.1, w=-0.2, p=0.05, nu=0.01)

    sample = reconstruct_rotating(x, ep, 0.0, 1.0, 2.0, G)

    assert sample.actual['u'] == pytest.approx(2.1)
    assert sample.actual['w'] == pytest.approx(-0.2)
    assert sample.actual['p'] == pytest.approx(ep.p_0 + 0.05)
    assert sample.actual['nu'] == pytest.approx(0.01)
    assert_allclose(sample.cart, [2.1, 0.0, -0.2], atol=1e-12)


def test_full_state_record_columns():
    T = 5
    states = np.arange(16)[:, None] * np.ones((1, T))

    record = full_state_record(states)

    assert record.shape == (T, len(VISUALIZATION_COLUMNS))
    S = FULL_STATES
    expected = [S['x'], S['y'], S['z'], S['gamma'], S['beta'], S['alpha'], S['r'], S['s']]
    assert_allclose(record[0], expected)


def test_rotating_state_record_holds_yaw_at_zero():
    T = 4
    cart = np.ones((3, T))
    euler = 2 * np.ones((2, T))
    pendulum = 3 * np.ones((2, T))

    record = rotating_state_record(cart, euler, pendulum)

    assert record.shape == (T, 8)
    assert_allclose(record[:, 5], 0.0)
    assert_allclose(record[0], [1, 1, 1, 2, 2, 0, 3, 3])


@pytest.mark.parametrize("heading", [0.3, 1.2, 2.5, 4.0])
def test_tilt_rates_match_angle_derivatives(ep, heading):
    omega, radius = 1.0, 2.0
    dt = 1e-6

    def angles(theta):
        sample = reconstruct_rotating(np.zeros(12), ep, theta, omega, radius, G)
        return sample.beta, sample.gamma

    beta_plus, gamma_plus = angles(heading + omega * dt)
    beta_minus, gamma_minus = angles(heading - omega * dt)
    sample = reconstruct_rotating(np.zeros(12), ep, heading, omega, radius, G)

    assert sample.gamma_dot == pytest.approx((gamma_plus - gamma_minus) / (2 * dt), rel=1e-5)
    assert sample.beta_dot == pytest.approx((beta_plus - beta_minus) / (2 * dt), rel=1e-5)
