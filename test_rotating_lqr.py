"""Tests for the rotating-equilibrium linearization and the Riccati gain"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from control_errors import ModelConfigurationError, SolverFailure
from pendulum_models import G, L_PENDULUM
from rotating_lqr import (
    ROTATING_INPUTS, ROTATING_STATES, RotatingLQRController,
    dlqr, equilibrium_point, linearize_rotating, rotating_linear_model,
)

S, I = ROTATING_STATES, ROTATING_INPUTS


def test_hover_equilibrium():
    ep = equilibrium_point(L_PENDULUM, G, omega=0.0, radius=0.0)

    assert ep.mu_0 == pytest.approx(0.0)
    assert ep.a_0 == pytest.approx(G)
    assert ep.p_0 == pytest.approx(0.0)
    assert ep.q_0 == 0.0
    assert ep.zeta_0 == pytest.approx(L_PENDULUM)
    assert ep.u_0 == 0.0


def test_hover_model_is_decoupled():
    model, _ = rotating_linear_model(L_PENDULUM, G, 0.0, 0.0)
    Ac, Bc = model.Ac, model.Bc

    # no centrifugal or Coriolis coupling
    assert Ac[S['u_dot'], S['u']] == 0
    assert Ac[S['u_dot'], S['v_dot']] == 0
    assert Ac[S['v_dot'], S['u_dot']] == 0
    assert Ac[S['v_dot'], S['v']] == 0
    assert Ac[S['q_dot'], S['p_dot']] == 0

    assert Ac[S['u_dot'], S['mu']] == pytest.approx(G)
    assert Ac[S['v_dot'], S['nu']] == pytest.approx(-G)
    assert Ac[S['w_dot'], S['mu']] == pytest.approx(0.0)
    assert Bc[S['w_dot'], I['a']] == pytest.approx(1.0)
    assert Bc[S['u_dot'], I['a']] == pytest.approx(0.0)

    # pendulum reduces to the inverted pendulum on each axis
    assert Ac[S['p_dot'], S['p']] == pytest.approx(G / L_PENDULUM)
    assert Ac[S['q_dot'], S['q']] == pytest.approx(G / L_PENDULUM)
    assert Ac[S['p_dot'], S['mu']] == pytest.approx(-G)
    assert Ac[S['q_dot'], S['nu']] == pytest.approx(G)


def test_equilibrium_uses_single_substitution():
    omega, radius, L = 1.0, 2.0, L_PENDULUM

    ep = equilibrium_point(L, G, omega, radius)

    p_0 = -(omega**2 * radius) / (omega**2 + G / 0.5)
    assert ep.p_0 == pytest.approx(p_0)
    assert ep.zeta_0 == pytest.approx(np.sqrt(L**2 - p_0**2))
    assert ep.mu_0 == pytest.approx(np.arctan(-omega**2 * radius / G))
    assert ep.a_0 == pytest.approx(np.sqrt(G**2 + (radius * omega**2)**2))
    assert ep.u_0 == radius
    assert ep.v_0 == 0 and ep.w_0 == 0 and ep.nu_0 == 0


def test_equilibrium_iterations_reach_fixed_point():
    omega, radius, L = 1.05, 2.0, L_PENDULUM

    ep = equilibrium_point(L, G, omega, radius, iterations=50)

    residual = ep.p_0 + (omega**2 * radius) / (omega**2 + G / ep.zeta_0)
    assert abs(residual) < 1e-10
    assert ep.zeta_0 == pytest.approx(np.sqrt(L**2 - ep.p_0**2))

    one_shot = equilibrium_point(L, G, omega, radius)
    assert one_shot.p_0 == pytest.approx(ep.p_0, abs=0.02)


def test_equilibrium_out_of_reach():
    with pytest.raises(ModelConfigurationError):
        equilibrium_point(L_PENDULUM, G, omega=100.0, radius=2.0)
    with pytest.raises(ModelConfigurationError):
        equilibrium_point(L_PENDULUM, G, 1.0, 2.0, iterations=0)


def test_rotating_model_coefficients():
    omega, radius = 1.0, 2.0
    model, ep = rotating_linear_model(L_PENDULUM, G, omega, radius)
    Ac, Bc = model.Ac, model.Bc

    C1 = ep.zeta_0**2 / L_PENDULUM**2
    C2 = omega**2 + G * L_PENDULUM**2 / ep.zeta_0**3
    C5 = (ep.p_0 / ep.zeta_0) * np.cos(ep.mu_0) - np.sin(ep.mu_0)

    assert Ac[S['p_dot'], S['p']] == pytest.approx(C1 * C2)
    assert Ac[S['p_dot'], S['q_dot']] == pytest.approx(2 * C1 * omega)
    assert Ac[S['q_dot'], S['p_dot']] == pytest.approx(-2 * omega)
    assert Ac[S['q_dot'], S['q']] == pytest.approx(omega**2 + G / ep.zeta_0)
    assert Ac[S['u_dot'], S['u']] == pytest.approx(omega**2)
    assert Ac[S['u_dot'], S['v_dot']] == pytest.approx(2 * omega)
    assert Ac[S['v_dot'], S['u_dot']] == pytest.approx(-2 * omega)
    assert Ac[S['u_dot'], S['mu']] == pytest.approx(ep.a_0 * np.cos(ep.mu_0))
    assert Ac[S['w_dot'], S['mu']] == pytest.approx(-ep.a_0 * np.sin(ep.mu_0))
    assert Bc[S['p_dot'], I['a']] == pytest.approx(C1 * C5)
    assert Bc[S['mu'], I['mu_dot']] == 1
    assert Bc[S['nu'], I['nu_dot']] == 1
    # attitude states are pure integrators of the rate inputs
    assert not Ac[S["mu"]].any()
    assert not Ac[S["nu"]].any()


def test_linearize_rotating_discretizes():
    sysd, ep = linearize_rotating(L_PENDULUM, G, 1.0, 2.0, 0.05)

    assert sysd.A.shape == (12, 12)
    assert sysd.B.shape == (12, 3)
    assert_allclose(sysd.C, np.eye(12))
    assert sysd.dt == 0.05
    assert ep.u_0 == 2.0


def test_dlqr_stabilizes_rotating_model():
    sysd, _ = linearize_rotating(L_PENDULUM, G, 1.0, 2.0, 0.05)
    Q = np.diag(ROTATING_STATES.vector(u=1, v=1, w=1))
    R = 0.1 * np.eye(3)

    K, eigvals = dlqr(sysd.A, sysd.B, Q, R)

    assert K.shape == (3, 12)
    assert np.max(np.abs(eigvals)) < 1.0
    assert_allclose(np.sort_complex(eigvals),
                    np.sort_complex(np.linalg.eigvals(sysd.A - sysd.B @ K)), atol=1e-8)


def test_dlqr_matches_scalar_riccati():
    A, B = np.array([[1.2]]), np.array([[1.0]])
    Q, R = np.array([[1.0]]), np.array([[1.0]])

    K, eigvals = dlqr(A, B, Q, R)

    # P = A^2 P / (1 + P) + 1  =>  P^2 - A^2 P - 1 = 0
    P = (1.44 + np.sqrt(1.44**2 + 4)) / 2
    assert K[0, 0] == pytest.approx(1.2 * P / (1 + P))
    assert abs(eigvals[0]) < 1


def test_dlqr_unstabilizable_raises():
    A = np.diag([2.0, 0.5])
    B = np.array([[0.0], [1.0]])

    with pytest.raises(SolverFailure):
        dlqr(A, B, np.eye(2), np.eye(1))


def test_controller_update_returns_model_and_gain():
    controller = RotatingLQRController()

    sysd, ep, K, eigvals = controller.update(1.0, 2.0)

    assert sysd.A.shape == (12, 12)
    assert K.shape == (3, 12)
    assert ep.u_0 == 2.0
    assert np.max(np.abs(eigvals)) < 1.0
