"""
LQR around a Rotating Equilibrium
=================================

The quadrotor flies a circle of radius R_radius at angular rate Omega with
the pendulum balanced on top. In a frame rotating with the vehicle the
circular flight is an equilibrium; this module computes that equilibrium,
linearizes the dynamics around it and solves the discrete Riccati equation
for a frozen-time LQR gain. Omega and R_radius change along a run, so all
of this is redone at every step.

Rotating-frame state: [p, p_dot, q, q_dot, u, u_dot, v, v_dot, w, w_dot, mu, nu]
- p, q:  pendulum lateral deflections
- u, v, w: quadrotor position
- mu, nu: small-angle attitude states
Inputs: [mu_dot, nu_dot, a] (attitude rates and mass-normalized thrust)
"""

import numpy as np
import scipy.linalg

from control_errors import ModelConfigurationError, SolverFailure
from pendulum_models import G, L_PENDULUM, LinearPlantModel, StateLayout, check_finite

TS_ROTATING = 0.05  # seconds

# Initial estimate of the pendulum height used by the equilibrium substitution
ZETA_GUESS = 0.5  # m

ROTATING_STATES = StateLayout('rotating', [
    'p', 'p_dot', 'q', 'q_dot',
    'u', 'u_dot', 'v', 'v_dot', 'w', 'w_dot',
    'mu', 'nu',
])
ROTATING_INPUTS = StateLayout('rotating_inputs', ['mu_dot', 'nu_dot', 'a'])


class EquilibriumPoint:
    """Nominal values around which the rotating dynamics are linearized"""

    def __init__(self, a_0, p_0, q_0, zeta_0, mu_0, nu_0, u_0, v_0, w_0, z_0=np.inf):
        self.a_0 = a_0        # nominal thrust
        self.p_0 = p_0        # nominal lateral pendulum deflection
        self.q_0 = q_0
        self.zeta_0 = zeta_0  # pendulum height above the vehicle
        self.mu_0 = mu_0      # nominal euler angles
        self.nu_0 = nu_0
        self.u_0 = u_0        # nominal position in the rotating frame
        self.v_0 = v_0
        self.w_0 = w_0
        self.z_0 = z_0        # constant reference altitude, unused

    def as_dict(self):
        return dict(vars(self))

    def __repr__(self):
        return (f"EquilibriumPoint(a_0={self.a_0:.4f}, p_0={self.p_0:.4f}, "
                f"mu_0={self.mu_0:.4f}, u_0={self.u_0:.4f})")


def equilibrium_point(L, g, omega, radius, zeta_guess=ZETA_GUESS, iterations=1):
    """
    Equilibrium of circular flight at radius `radius` and rate `omega`.

    p_0 = -(Omega^2 R) / (Omega^2 + g/zeta_0),  zeta_0 = sqrt(L^2 - q_0^2 - p_0^2)

    The pair is solved by substitution starting from `zeta_guess`. One
    substitution (the default) is an approximation; more iterations move
    it toward the fixed point.
    """
    if iterations < 1:
        raise ModelConfigurationError("at least one substitution is required")

    q_0 = 0.0
    zeta_0 = zeta_guess
    for _ in range(iterations):
        p_0 = -(omega**2 * radius) / (omega**2 + g / zeta_0)
        zeta_sq = L**2 - q_0**2 - p_0**2
        if zeta_sq <= 0:
            raise ModelConfigurationError(
                f"no equilibrium: pendulum deflection {p_0:.3f} m exceeds length {L} m")
        zeta_0 = np.sqrt(zeta_sq)

    mu_0 = np.arctan(-omega**2 * radius / g)
    a_0 = np.sqrt(g**2 + (radius * omega**2)**2)

    return EquilibriumPoint(a_0=a_0, p_0=p_0, q_0=q_0, zeta_0=zeta_0,
                            mu_0=mu_0, nu_0=0.0, u_0=radius, v_0=0.0, w_0=0.0)


def rotating_linear_model(L, g, omega, radius, zeta_guess=ZETA_GUESS, iterations=1):
    """
    Continuous-time linearization around the rotating equilibrium.

    Returns: LinearPlantModel, EquilibriumPoint
    """
    ep = equilibrium_point(L, g, omega, radius, zeta_guess, iterations)
    a_0, p_0, zeta_0, mu_0 = ep.a_0, ep.p_0, ep.zeta_0, ep.mu_0

    C1 = zeta_0**2 / L**2
    C2 = omega**2 + g * L**2 / zeta_0**3
    C3 = omega
    C4 = -(p_0 / zeta_0) * a_0 * np.sin(mu_0) - a_0 * np.cos(mu_0)
    C5 = (p_0 / zeta_0) * np.cos(mu_0) - np.sin(mu_0)
    C6 = omega**2 + g / zeta_0

    S, I = ROTATING_STATES, ROTATING_INPUTS
    Ac = np.zeros((12, 12))
    Bc = np.zeros((12, 3))

    # pendulum
    Ac[S['p'], S['p_dot']] = 1
    Ac[S['p_dot'], S['p']] = C1 * C2
    Ac[S['p_dot'], S['q_dot']] = 2 * C1 * C3
    Ac[S['p_dot'], S['mu']] = C1 * C4
    Ac[S['q'], S['q_dot']] = 1
    Ac[S['q_dot'], S['p_dot']] = -2 * C3
    Ac[S['q_dot'], S['q']] = C6
    Ac[S['q_dot'], S['nu']] = a_0

    # quadrotor position, centrifugal and Coriolis terms
    Ac[S['u'], S['u_dot']] = 1
    Ac[S['u_dot'], S['u']] = C3**2
    Ac[S['u_dot'], S['v_dot']] = 2 * C3
    Ac[S['u_dot'], S['mu']] = a_0 * np.cos(mu_0)
    Ac[S['v'], S['v_dot']] = 1
    Ac[S['v_dot'], S['u_dot']] = -2 * C3
    Ac[S['v_dot'], S['v']] = C3**2
    Ac[S['v_dot'], S['nu']] = -a_0
    Ac[S['w'], S['w_dot']] = 1
    Ac[S['w_dot'], S['mu']] = -a_0 * np.sin(mu_0)

    Bc[S['p_dot'], I['a']] = C1 * C5
    Bc[S['u_dot'], I['a']] = np.sin(mu_0)
    Bc[S['w_dot'], I['a']] = np.cos(mu_0)
    Bc[S['mu'], I['mu_dot']] = 1
    Bc[S['nu'], I['nu_dot']] = 1

    return LinearPlantModel(Ac, Bc, np.eye(12), ROTATING_STATES, ROTATING_INPUTS), ep


def linearize_rotating(L, g, omega, radius, h, zeta_guess=ZETA_GUESS, iterations=1):
    """
    Discrete linearized system at the current (omega, radius).

    Returns: DiscreteModel, EquilibriumPoint
    """
    model, ep = rotating_linear_model(L, g, omega, radius, zeta_guess, iterations)
    return model.discretize(h), ep


def dlqr(A, B, Q, R):
    """
    Discrete LQR gain from the Riccati equation.

    Returns:
        K: gain for u = -K x
        eigvals: closed-loop eigenvalues of A - B K
    """
    try:
        P = scipy.linalg.solve_discrete_are(A, B, Q, R)
    except (np.linalg.LinAlgError, ValueError) as exc:
        raise SolverFailure(f"Riccati solve failed: {exc}",
                            matrices={'A': A, 'B': B, 'Q': Q, 'R': R}) from exc

    K = np.linalg.solve(B.T @ P @ B + R, B.T @ P @ A)
    eigvals = np.linalg.eigvals(A - B @ K)

    if not np.all(np.isfinite(K)) or np.max(np.abs(eigvals)) >= 1.0:
        raise SolverFailure("Riccati gain is not stabilizing",
                            matrices={'A': A, 'B': B, 'Q': Q, 'R': R, 'K': K})

    return K, eigvals


class RotatingLQRController:
    """Frozen-time LQR recomputed from a fresh linearization at each call"""

    def __init__(self, L=L_PENDULUM, g=G, h=TS_ROTATING, Q=None, R=None,
                 zeta_guess=ZETA_GUESS, iterations=1):
        if Q is None:
            # only penalize position errors
            Q = np.diag(ROTATING_STATES.vector(u=1, v=1, w=1))
        if R is None:
            R = 0.1 * np.eye(3)
        self.L = L
        self.g = g
        self.h = h
        self.Q = Q
        self.R = R
        self.zeta_guess = zeta_guess
        self.iterations = iterations

    def update(self, omega, radius):
        """
        Relinearize at (omega, radius) and solve for the gain.

        Returns: DiscreteModel, EquilibriumPoint, K, closed-loop eigenvalues
        """
        model, ep = linearize_rotating(self.L, self.g, omega, radius, self.h,
                                       self.zeta_guess, self.iterations)
        check_finite("rotating linearization", model.A, model.B)
        K, eigvals = dlqr(model.A, model.B, self.Q, self.R)
        return model, ep, K, eigvals
