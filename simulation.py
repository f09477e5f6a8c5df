"""
Closed-Loop Simulation
======================

Scenario configurations and the simulation loops tying control laws to
state propagation:
- MPC tracking on the 16-state model (QP solved at every step)
- LQR around a rotating equilibrium, relinearized at every step
- LQR step response of the single-axis balancing model

Simulators only compute trajectories; rendering lives in plotting.py.
"""

import numpy as np
import pandas as pd

from control_errors import ControlEngineError, ModelConfigurationError
from mpc_control import MPCController, U_MAX
from pendulum_models import (
    G, L_PENDULUM, TS_BALANCING, TS_MPC, FULL_STATES, QuadPendulumSystem,
    check_finite, check_stabilizable, check_weights,
)
from reconstruction import full_state_record, reconstruct_rotating, rotating_state_record
from rotating_lqr import (
    ROTATING_INPUTS, ROTATING_STATES, TS_ROTATING, ZETA_GUESS, RotatingLQRController, dlqr,
)

# Omega ramp of the rotating scenario (rad/s per second of flight)
OMEGA_RAMP = 0.0035


def _n_steps(duration, h):
    if h <= 0 or duration <= 0:
        raise ModelConfigurationError("sample period and duration must be positive")
    return int(round(duration / h))


class MPCScenario:
    """
    MPC tracking of a step in (x, y, z, yaw) on the full model.

    Defaults: h = 0.2 s, 8 s of flight, N = 8, Q = S = 10 I, R = 0.1 I.
    """

    def __init__(self, system=None, h=TS_MPC, t_final=8.0, horizon=8,
                 Q=None, R=None, S=None, x0=None, reference=None,
                 u_max=U_MAX, solver=None, solver_params=None):
        self.system = system or QuadPendulumSystem()
        self.h = h
        self.t_final = t_final
        self.n_steps = _n_steps(t_final, h)
        self.horizon = int(horizon)
        if self.horizon < 1:
            raise ModelConfigurationError(f"horizon must be a positive integer, got {horizon}")

        n, m = len(FULL_STATES), 4
        self.Q = 10 * np.eye(n) if Q is None else np.asarray(Q, dtype=float)
        self.R = 0.1 * np.eye(m) if R is None else np.asarray(R, dtype=float)
        self.S = 10 * np.eye(n) if S is None else np.asarray(S, dtype=float)
        check_weights(self.Q, self.R, self.S)

        if x0 is None:
            #          r     r_dot x    x_dot beta beta_dot
            x0 = [0.02, 0, 0.1, 0, 0, 0,
                  #  s   s_dot y    y_dot gamma gamma_dot
                  0.05, 0, 0.4, 0, 0, 0,
                  #  z   z_dot alpha alpha_dot
                  0.2, 0, 0.3, 0]
        self.x0 = np.asarray(x0, dtype=float)
        if self.x0.shape != (n,):
            raise ModelConfigurationError(f"initial state must have {n} entries")

        # desired reference (x, y, z, yaw), one column per step
        if reference is None:
            reference = np.ones((4, self.n_steps))
        self.reference = np.asarray(reference, dtype=float)
        if self.reference.shape != (4, self.n_steps):
            raise ModelConfigurationError(
                f"reference must be 4 x {self.n_steps}, got {self.reference.shape}")

        self.u_max = u_max
        self.solver = solver
        self.solver_params = solver_params


class RotatingScenario:
    """
    LQR on circular flight: radius constant 2 m, Omega ramping from 1.0 rad/s,
    h = 0.05 s, 20 s of flight.
    """

    def __init__(self, L=L_PENDULUM, g=G, h=TS_ROTATING, sim_time=20.0,
                 radius_sequence=None, omega_sequence=None, x0=None, Q=None, R=None,
                 zeta_guess=ZETA_GUESS, fixed_point_iterations=1):
        self.L = L
        self.g = g
        self.h = h
        self.sim_time = sim_time
        self.n_steps = _n_steps(sim_time, h)

        t = h * np.arange(1, self.n_steps + 1)
        if radius_sequence is None:
            radius_sequence = 2 * np.ones(self.n_steps)
        if omega_sequence is None:
            omega_sequence = 1.0 + OMEGA_RAMP * t
        self.radius_sequence = np.asarray(radius_sequence, dtype=float)
        self.omega_sequence = np.asarray(omega_sequence, dtype=float)
        if len(self.radius_sequence) < self.n_steps or len(self.omega_sequence) < self.n_steps:
            raise ModelConfigurationError(
                f"radius and omega sequences need at least {self.n_steps} entries")

        if x0 is None:
            x0 = ROTATING_STATES.vector(p=0.2, mu=0.2, nu=0.2)
        self.x0 = np.asarray(x0, dtype=float)
        if self.x0.shape != (len(ROTATING_STATES),):
            raise ModelConfigurationError(f"initial state must have {len(ROTATING_STATES)} entries")

        if Q is None:
            # only penalize position errors
            Q = np.diag(ROTATING_STATES.vector(u=1, v=1, w=1))
        self.Q = np.asarray(Q, dtype=float)
        self.R = 0.1 * np.eye(3) if R is None else np.asarray(R, dtype=float)
        check_weights(self.Q, self.R)

        self.zeta_guess = zeta_guess
        self.fixed_point_iterations = fixed_point_iterations


class BalancingScenario:
    """Single-axis balancing: LQR with Q = I, R = 0.1 at h = 0.05 s, unit step input"""

    def __init__(self, system=None, h=TS_BALANCING, n_steps=100, Q=None, R=None):
        self.system = system or QuadPendulumSystem()
        self.h = h
        self.n_steps = int(n_steps)
        self.Q = np.eye(5) if Q is None else np.asarray(Q, dtype=float)
        self.R = np.array([[0.1]]) if R is None else np.atleast_2d(np.asarray(R, dtype=float))
        check_weights(self.Q, self.R)


def _freeze(*arrays):
    for array in arrays:
        array.setflags(write=False)


class SimulationRun:
    """Trajectories of one completed run"""

    def __init__(self, t, x, u, y, states, inputs):
        self.t = t          # (T+1,)
        self.x = x          # (n, T+1)
        self.u = u          # (m, T)
        self.y = y          # (p, T)
        self.states = states
        self.inputs = inputs
        _freeze(t, x, u, y)

    @property
    def n_steps(self):
        return self.u.shape[1]

    def states_table(self):
        """State trajectory as a DataFrame, one row per step"""
        df = pd.DataFrame(self.x.T, columns=list(self.states))
        df.insert(0, 't', self.t)
        return df

    def inputs_table(self):
        df = pd.DataFrame(self.u.T, columns=list(self.inputs))
        df.insert(0, 't', self.t[:-1])
        return df


class MPCRun(SimulationRun):

    def __init__(self, t, x, u, y, x_ref, solve_times, states, inputs):
        super().__init__(t, x, u, y, states, inputs)
        self.x_ref = x_ref
        self.solve_times = np.asarray(solve_times)
        _freeze(self.x_ref, self.solve_times)

    def tracking_error(self):
        """Deviation from the reference at every step (n, T)"""
        return self.x[:, :-1] - self.x_ref

    def states_trajectory(self):
        """(T, 8) visualization record [x, y, z, roll, pitch, yaw, r, s]"""
        return full_state_record(self.y)


class RotatingRun(SimulationRun):

    def __init__(self, t, x, u, y, states, inputs, **post):
        super().__init__(t, x, u, y, states, inputs)
        self.states_cart = post['states_cart']
        self.euler_angles = post['euler_angles']
        self.states_pendulum = post['states_pendulum']
        self.states_pendulum_actual = post['states_pendulum_actual']
        self.beta_angle = post['beta_angle']
        self.gamma_angle = post['gamma_angle']
        self.beta_dot_angle = post['beta_dot_angle']
        self.gamma_dot_angle = post['gamma_dot_angle']
        self.reference_trajectory = post['reference_trajectory']
        self.heading = post['heading']
        self.actual = post['actual']
        self.equilibria = tuple(post['equilibria'])
        self.gains = post['gains']
        self.closed_loop_eigvals = post['closed_loop_eigvals']
        _freeze(self.states_cart, self.euler_angles, self.states_pendulum,
                self.states_pendulum_actual, self.beta_angle, self.gamma_angle,
                self.beta_dot_angle, self.gamma_dot_angle, self.reference_trajectory,
                self.heading, self.gains, self.closed_loop_eigvals, *self.actual.values())

    def spectral_radii(self):
        """Largest closed-loop eigenvalue magnitude at every step"""
        return np.max(np.abs(self.closed_loop_eigvals), axis=1)

    def radius(self):
        return np.hypot(self.states_cart[0], self.states_cart[1])

    def states_trajectory(self):
        return rotating_state_record(self.states_cart, self.euler_angles, self.states_pendulum)


def _at_step(exc, k):
    exc.step = k
    return exc


def simulate_mpc(scenario, verbose=False):
    """
    Receding-horizon tracking of the reference on the full model.

    At each step: x0 = x(k) - B_ref r(k), solve the QP, apply the first
    input block, x(k+1) = A x(k) + B u(k).
    """
    system = scenario.system
    model = system.full_dynamics()
    if verbose:
        bad = model.uncontrollable_eigenvalues()
        print(f"Uncontrollable eigenvalues: {bad if len(bad) else 'none'}")

    sysd = model.discretize(scenario.h)
    A, B, C = sysd.A, sysd.B, sysd.C
    check_stabilizable(A, B, scenario.Q)

    controller = MPCController(A, B, scenario.Q, scenario.R, scenario.S,
                               horizon=scenario.horizon, u_max=scenario.u_max,
                               solver=scenario.solver, solver_params=scenario.solver_params)

    B_ref = system.reference_map()
    T = scenario.n_steps
    nx, nu = sysd.nx, sysd.nu

    x = np.zeros((nx, T + 1))    # state trajectory
    u = np.zeros((nu, T))        # control inputs
    y = np.zeros((C.shape[0], T))  # measurements
    x_ref = np.zeros((nx, T))
    t = np.arange(T + 1) * scenario.h

    x[:, 0] = scenario.x0

    for k in range(T):
        # reference states from the (x, y, z, yaw) reference
        x_ref[:, k] = B_ref @ scenario.reference[:, k]

        try:
            u[:, k] = controller.control(x[:, k], x_ref[:, k])
        except ControlEngineError as exc:
            raise _at_step(exc, k)

        # apply control action
        x[:, k + 1] = A @ x[:, k] + B @ u[:, k]
        y[:, k] = C @ x[:, k]
        check_finite("state propagation", x[:, k + 1], step=k)

        if verbose and k % 10 == 0:
            err = np.linalg.norm(x[:, k] - x_ref[:, k])
            print(f"  step {k:4d}: |x - x_ref| = {err:.4f}, "
                  f"solve time {controller.solve_times[-1]*1000:.2f} ms")

    return MPCRun(t, x, u, y, x_ref, controller.solve_times, sysd.states, sysd.inputs)


def simulate_rotating_lqr(scenario, verbose=False):
    """
    Frozen-time LQR around the rotating equilibrium.

    At each step the model, equilibrium and gain are recomputed from
    Omega(k) and R_radius(k); absolute positions and angles are restored by
    rotating the deviation states through the integrated heading and adding
    the equilibrium back.
    """
    controller = RotatingLQRController(scenario.L, scenario.g, scenario.h,
                                       scenario.Q, scenario.R,
                                       scenario.zeta_guess, scenario.fixed_point_iterations)
    T = scenario.n_steps
    nx, nu = len(ROTATING_STATES), 3

    x = np.zeros((nx, T + 1))
    u = np.zeros((nu, T))
    y = np.zeros((nx, T))
    t = np.arange(T + 1) * scenario.h

    states_cart = np.zeros((3, T))
    euler_angles = np.zeros((2, T))
    states_pendulum = np.zeros((2, T))
    states_pendulum_actual = np.zeros((2, T))
    beta_angle = np.zeros(T)
    gamma_angle = np.zeros(T)
    beta_dot_angle = np.zeros(T)
    gamma_dot_angle = np.zeros(T)
    reference_trajectory = np.zeros((2, T))
    heading = np.zeros(T)
    actual = {key: np.zeros(T) for key in ('u', 'v', 'w', 'p', 'q', 'mu', 'nu')}
    equilibria = []
    gains = np.zeros((T, nu, nx))
    closed_loop_eigvals = np.zeros((T, nx), dtype=complex)

    x[:, 0] = scenario.x0
    omega_angle = 0.0

    for k in range(T):
        omega = scenario.omega_sequence[k]
        radius = scenario.radius_sequence[k]

        try:
            sysd, ep, K, eigvals = controller.update(omega, radius)
        except ControlEngineError as exc:
            raise _at_step(exc, k)

        # control action from LQR
        u[:, k] = -K @ x[:, k]

        omega_angle = omega_angle + omega * scenario.h
        sample = reconstruct_rotating(x[:, k], ep, omega_angle, omega, radius, scenario.g)

        states_cart[:, k] = sample.cart
        euler_angles[:, k] = sample.euler
        states_pendulum[:, k] = sample.pendulum
        states_pendulum_actual[:, k] = sample.pendulum_actual
        beta_angle[k] = sample.beta
        gamma_angle[k] = sample.gamma
        beta_dot_angle[k] = sample.beta_dot
        gamma_dot_angle[k] = sample.gamma_dot
        reference_trajectory[:, k] = sample.reference
        heading[k] = omega_angle
        for key, value in sample.actual.items():
            actual[key][k] = value
        equilibria.append(ep)
        gains[k] = K
        closed_loop_eigvals[k] = eigvals

        # apply control and update state equations
        x[:, k + 1] = sysd.A @ x[:, k] + sysd.B @ u[:, k]
        y[:, k] = sysd.C @ x[:, k]
        check_finite("state propagation", x[:, k + 1], step=k)

        if verbose and k % 50 == 0:
            print(f"  step {k:4d}: Omega = {omega:.4f} rad/s, "
                  f"radius = {np.hypot(*sample.cart[:2]):.4f} m, "
                  f"max |eig| = {np.max(np.abs(eigvals)):.4f}")

    return RotatingRun(
        t, x, u, y, ROTATING_STATES, ROTATING_INPUTS,
        states_cart=states_cart, euler_angles=euler_angles,
        states_pendulum=states_pendulum, states_pendulum_actual=states_pendulum_actual,
        beta_angle=beta_angle, gamma_angle=gamma_angle,
        beta_dot_angle=beta_dot_angle, gamma_dot_angle=gamma_dot_angle,
        reference_trajectory=reference_trajectory, heading=heading, actual=actual,
        equilibria=equilibria, gains=gains, closed_loop_eigvals=closed_loop_eigvals,
    )


def simulate_balancing_lqr(scenario):
    """
    Step response of the single-axis model under LQR:
    x(k+1) = (A - BK) x(k) + B, x(0) = 0.

    Returns: SimulationRun, K
    """
    sysd = scenario.system.single_axis_dynamics().discretize(scenario.h)
    A, B, C = sysd.A, sysd.B, sysd.C
    check_stabilizable(A, B, scenario.Q)
    K, _ = dlqr(A, B, scenario.Q, scenario.R)

    T = scenario.n_steps
    x = np.zeros((sysd.nx, T + 1))
    u = np.zeros((sysd.nu, T))
    y = np.zeros((C.shape[0], T))
    t = np.arange(T + 1) * scenario.h

    for k in range(T):
        # unit step on top of the state feedback
        u[:, k] = -K @ x[:, k] + 1.0
        x[:, k + 1] = A @ x[:, k] + B @ u[:, k]
        y[:, k] = C @ x[:, k]

    return SimulationRun(t, x, u, y, sysd.states, sysd.inputs), K
