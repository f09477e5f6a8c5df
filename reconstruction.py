"""
Mapping of internal states back to Cartesian coordinates and Euler angles.

Visualization records have 8 columns: [x, y, z, roll, pitch, yaw, r, s].
"""

import numpy as np

from pendulum_models import FULL_STATES
from rotating_lqr import ROTATING_STATES

VISUALIZATION_COLUMNS = ['x', 'y', 'z', 'roll', 'pitch', 'yaw', 'r', 's']


def R_z(angle):
    """Rotation from the rotating (u, v, w) frame to inertial (x, y, z)"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0],
                     [s,  c, 0],
                     [0,  0, 1]])


def R_2d(angle):
    """Planar rotation used for pendulum deflections and tilt angles"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s],
                     [s,  c]])


def full_state_record(states):
    """
    Visualization record of the 16-state model.

    Args:
        states: (16, T) state trajectory
    Returns: (T, 8) array
    """
    S = FULL_STATES
    idx = S.indices('x', 'y', 'z', 'gamma', 'beta', 'alpha', 'r', 's')
    return np.asarray(states)[idx, :].T


class RotatingSample:
    """Absolute physical quantities at one step of the rotating scenario"""

    def __init__(self, cart, euler, pendulum, pendulum_actual, beta, gamma,
                 beta_dot, gamma_dot, reference, actual):
        self.cart = cart
        self.euler = euler
        self.pendulum = pendulum
        self.pendulum_actual = pendulum_actual
        self.beta = beta
        self.gamma = gamma
        self.beta_dot = beta_dot
        self.gamma_dot = gamma_dot
        self.reference = reference
        self.actual = actual


def reconstruct_rotating(x, ep, heading, omega, radius, g):
    """
    Restore absolute quantities from a deviation state.

    Args:
        x: deviation state in the rotating frame (12,)
        ep: EquilibriumPoint of this step
        heading: accumulated heading angle OmegaAngle(k)
        omega, radius: operating point of this step
        g: gravity
    """
    S = ROTATING_STATES

    u_actual = x[S['u']] + ep.u_0
    v_actual = x[S['v']] + ep.v_0
    w_actual = x[S['w']] + ep.w_0
    p_actual = x[S['p']] + ep.p_0
    q_actual = x[S['q']] + ep.q_0
    mu = x[S['mu']] + ep.mu_0
    nu = x[S['nu']] + ep.nu_0

    cart = R_z(heading) @ np.array([u_actual, v_actual, w_actual])
    euler = R_2d(heading) @ np.array([nu, mu])

    # r, s of the pendulum relative to the quadrotor center
    pendulum = R_2d(heading) @ np.array([p_actual, q_actual])
    pendulum_actual = pendulum + cart[:2]

    # tilt angles seen by the propellers
    gamma = -np.arcsin(np.sin(heading) * np.sin(mu) * np.cos(nu) - np.cos(heading) * np.sin(nu))
    beta = np.arcsin((np.cos(heading) * np.sin(mu) * np.cos(nu)
                      + np.sin(heading) * np.sin(nu)) / np.cos(gamma))

    thrust = np.sqrt(g**2 + (radius * omega**2)**2)
    # time derivatives of the tilt angles along the nominal circle
    scale = radius * omega**3 / (np.cos(gamma) * thrust)
    beta_dot = scale * (np.tan(beta) * np.tan(gamma) * np.cos(heading) + np.sin(heading) / np.cos(beta))
    gamma_dot = scale * np.cos(heading)

    reference = np.array([np.cos(heading), np.sin(heading)]) * radius

    actual = {'u': u_actual, 'v': v_actual, 'w': w_actual,
              'p': p_actual, 'q': q_actual, 'mu': mu, 'nu': nu}

    return RotatingSample(cart, euler, pendulum, pendulum_actual, beta, gamma,
                          beta_dot, gamma_dot, reference, actual)


def rotating_state_record(states_cart, euler_angles, states_pendulum):
    """
    Visualization record of the rotating scenario (yaw held at zero).

    Returns: (T, 8) array
    """
    T = states_cart.shape[1]
    return np.vstack([
        states_cart[:3, :],
        euler_angles[0, :],
        euler_angles[1, :],
        np.zeros(T),
        states_pendulum[:2, :],
    ]).T
