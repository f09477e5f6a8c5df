"""
Quadrotor with Suspended Pendulum - Linearized Models
=====================================================

This module holds the linear(ized) state-space models of a quadrotor
balancing a pendulum (after "A Flying Inverted Pendulum", Hehn & D'Andrea):
- Physical constants of the vehicle
- Named state/input layouts for every scenario
- Single-axis balancing model (5 states, 1 input)
- Full model around hover (16 states, 4 inputs)
- Zero-order hold discretization
- Controllability / stabilizability checks
"""

import numpy as np
from scipy.linalg import expm

from control_errors import ModelConfigurationError, NumericalIllConditioning

# Physical constants
G = 9.81  # Gravity (m/s^2)

# Vehicle parameters
M_QUAD = 0.5          # Quadrotor mass (kg)
L_PENDULUM = 0.565    # Length of pendulum to center of mass (m)
L_ARM = 0.17          # Quadrotor center to rotor center (m)
I_YY = 3.2e-3         # Inertia around y-axis (kg m^2)
I_XX = I_YY           # Inertia around x-axis (kg m^2)
I_ZZ = 5.5e-3         # Inertia around z-axis (kg m^2)

# Sampling times
TS_BALANCING = 0.05  # seconds
TS_MPC = 0.2         # seconds


class StateLayout:
    """Named ordering of a state (or input) vector.

    The ordering is fixed at model construction; weights, reference maps and
    reconstruction code look indices up by name instead of hard-coding them.
    """

    def __init__(self, name, names):
        self.name = name
        self.names = tuple(names)
        self._index = {key: i for i, key in enumerate(self.names)}
        if len(self._index) != len(self.names):
            raise ValueError(f"duplicate entries in layout {name}")

    def __len__(self):
        return len(self.names)

    def __getitem__(self, key):
        return self._index[key]

    def __contains__(self, key):
        return key in self._index

    def __iter__(self):
        return iter(self.names)

    def indices(self, *keys):
        return [self._index[key] for key in keys]

    def vector(self, **values):
        """Build a vector from named entries, everything else zero"""
        v = np.zeros(len(self))
        for key, value in values.items():
            v[self._index[key]] = value
        return v

    def __repr__(self):
        return f"StateLayout({self.name!r}, {list(self.names)})"


# Single-axis balancing case (x-direction only)
# - r:     displacement of pendulum relative to quadrotor
# - x:     displacement of quadrotor in the inertial frame
# - beta:  pitch angle of quad (rotation around y-axis)
SINGLE_AXIS_STATES = StateLayout('single_axis', ['r', 'r_dot', 'x', 'x_dot', 'beta'])
SINGLE_AXIS_INPUTS = StateLayout('single_axis_inputs', ['beta_dot'])

# Full model: x-axis block, y-axis block, altitude, yaw
FULL_STATES = StateLayout('full', [
    'r', 'r_dot', 'x', 'x_dot', 'beta', 'beta_dot',
    's', 's_dot', 'y', 'y_dot', 'gamma', 'gamma_dot',
    'z', 'z_dot',
    'alpha', 'alpha_dot',
])
FULL_INPUTS = StateLayout('full_inputs', ['f_beta', 'f_gamma', 'thrust', 'tau_alpha'])

# References for the full model are (x, y, z, yaw)
FULL_REFERENCES = StateLayout('full_references', ['x', 'y', 'z', 'yaw'])


def check_finite(name, *arrays, step=None):
    """Raise NumericalIllConditioning if any array holds NaN or Inf"""
    for array in arrays:
        if not np.all(np.isfinite(array)):
            raise NumericalIllConditioning(f"{name} produced non-finite values", step=step)


def discretize(A, B, C, dt):
    """
    Discretize continuous-time linear system using zero-order hold.

    Matrix exponential method for exact discretization:
        [Ad  Bd] = expm([A  B] * dt)
        [0   I ]       [0  0]

    Returns: Ad, Bd, Cd
    """
    if dt <= 0:
        raise ModelConfigurationError(f"sample period must be positive, got {dt}")

    n = A.shape[0]
    m = B.shape[1]

    M = np.zeros((n + m, n + m))
    M[:n, :n] = A
    M[:n, n:] = B

    M_exp = expm(M * dt)

    Ad = M_exp[:n, :n]
    Bd = M_exp[:n, n:]
    Cd = np.array(C, dtype=float)

    check_finite("discretization", Ad, Bd)

    return Ad, Bd, Cd


class DiscreteModel:
    """Discrete-time model x[k+1] = A x[k] + B u[k], y[k] = C x[k]"""

    def __init__(self, A, B, C, dt, states=None, inputs=None):
        self.A = A
        self.B = B
        self.C = C
        self.dt = dt
        self.states = states
        self.inputs = inputs

    @property
    def nx(self):
        return self.A.shape[0]

    @property
    def nu(self):
        return self.B.shape[1]

    def step(self, x, u):
        return self.A @ x + self.B @ u


class LinearPlantModel:
    """Continuous-time linear model dx/dt = Ac x + Bc u, y = Cc x"""

    def __init__(self, Ac, Bc, Cc=None, states=None, inputs=None):
        Ac = np.asarray(Ac, dtype=float)
        Bc = np.asarray(Bc, dtype=float)
        if Bc.ndim == 1:
            Bc = Bc.reshape(-1, 1)
        if Cc is None:
            Cc = np.eye(Ac.shape[0])

        if Ac.shape[0] != Ac.shape[1] or Bc.shape[0] != Ac.shape[0]:
            raise ModelConfigurationError(
                f"incompatible model dimensions A{Ac.shape} B{Bc.shape}")
        if states is not None and len(states) != Ac.shape[0]:
            raise ModelConfigurationError(
                f"state layout {states.name} has {len(states)} entries, model has {Ac.shape[0]}")
        if inputs is not None and len(inputs) != Bc.shape[1]:
            raise ModelConfigurationError(
                f"input layout {inputs.name} has {len(inputs)} entries, model has {Bc.shape[1]}")

        self.Ac = Ac
        self.Bc = Bc
        self.Cc = np.asarray(Cc, dtype=float)
        self.states = states
        self.inputs = inputs

    def discretize(self, dt):
        """Get discrete-time model at sample period dt."""
        Ad, Bd, Cd = discretize(self.Ac, self.Bc, self.Cc, dt)
        return DiscreteModel(Ad, Bd, Cd, dt, self.states, self.inputs)

    def uncontrollable_eigenvalues(self):
        return uncontrollable_eigenvalues(self.Ac, self.Bc)


def uncontrollable_eigenvalues(A, B):
    """
    Hautus test: eigenvalue lambda is uncontrollable when
    rank([lambda*I - A, B]) < n.

    Returns: array of uncontrollable eigenvalues (empty if controllable)
    """
    n = A.shape[0]
    eigvals = np.linalg.eigvals(A)
    bad = []
    for lam in eigvals:
        rk = np.linalg.matrix_rank(np.hstack([lam * np.eye(n) - A, B]))
        if rk < n:
            bad.append(lam)
    return np.array(bad)


def check_stabilizable(A, B, Q, tol=1e-9):
    """
    Discrete-time check that every mode penalized by Q is stabilizable.

    Unstable uncontrollable modes are tolerated only when Q does not weight
    them (e.g. a yaw mode whose Q entries are zero).
    """
    n = A.shape[0]
    eigvals, eigvecs = np.linalg.eig(A)
    for i, lam in enumerate(eigvals):
        if abs(lam) < 1.0:
            continue
        rk = np.linalg.matrix_rank(np.hstack([lam * np.eye(n) - A, B]))
        if rk < n and np.linalg.norm(Q @ eigvecs[:, i]) > tol:
            raise ModelConfigurationError(
                f"mode with eigenvalue {lam:.4g} is penalized by Q but not stabilizable")


def check_weights(Q=None, R=None, S=None):
    """Q and S symmetric positive semi-definite, R symmetric positive definite"""
    for name, M in (('Q', Q), ('S', S)):
        if M is None:
            continue
        if not np.allclose(M, M.T):
            raise ModelConfigurationError(f"{name} must be symmetric")
        if np.min(np.linalg.eigvalsh(M)) < -1e-10:
            raise ModelConfigurationError(f"{name} must be positive semi-definite")
    if R is not None:
        if not np.allclose(R, R.T):
            raise ModelConfigurationError("R must be symmetric")
        try:
            np.linalg.cholesky(R)
        except np.linalg.LinAlgError as exc:
            raise ModelConfigurationError("R must be positive definite") from exc


class QuadPendulumSystem:
    """
    Quadrotor balancing a pendulum.

    Parameters:
    - g:     9.81 m/s^2 (gravity)
    - m:     0.5 kg (quadrotor mass)
    - L:     0.565 m (length of pendulum to center of mass)
    - l:     0.17 m (quadrotor center to rotor center)
    - I_xx, I_yy, I_zz: quadrotor inertias (kg m^2)
    """

    def __init__(self, g=G, m=M_QUAD, L=L_PENDULUM, l=L_ARM,
                 I_xx=I_XX, I_yy=I_YY, I_zz=I_ZZ):
        if min(m, L, l, I_xx, I_yy, I_zz) <= 0:
            raise ModelConfigurationError("physical constants must be positive")
        self.g = g
        self.m = m
        self.L = L
        self.l = l
        self.I_xx = I_xx
        self.I_yy = I_yy
        self.I_zz = I_zz

    def single_axis_dynamics(self):
        """
        Linearized x-direction dynamics around the upright equilibrium.

        State: [r, r_dot, x, x_dot, beta]
        Input: beta_dot (pitch rate command)

        r_ddot = (g/L)*r - g*beta
        x_ddot = g*beta
        """
        g, L = self.g, self.L

        Ac = np.array([
            [0,     1, 0, 0,  0],   # d(r)/dt = r_dot
            [g / L, 0, 0, 0, -g],   # d(r_dot)/dt
            [0,     0, 0, 1,  0],   # d(x)/dt = x_dot
            [0,     0, 0, 0,  g],   # d(x_dot)/dt = g*beta
            [0,     0, 0, 0,  0],   # d(beta)/dt = input
        ])
        Bc = np.array([[0], [0], [0], [0], [1]])

        return LinearPlantModel(Ac, Bc, np.eye(5), SINGLE_AXIS_STATES, SINGLE_AXIS_INPUTS)

    def full_dynamics(self):
        """
        Linearized 16-state dynamics around hover.

        The x and y axes each carry a pendulum, a translational double
        integrator and a second-order attitude; altitude and yaw are double
        integrators driven by thrust and yaw torque.
        """
        g, L, l = self.g, self.L, self.l
        S, I = FULL_STATES, FULL_INPUTS

        Ac = np.zeros((16, 16))
        Bc = np.zeros((16, 4))

        # x-axis: pendulum r, position x, pitch beta
        Ac[S['r'], S['r_dot']] = 1
        Ac[S['r_dot'], S['r']] = g / L
        Ac[S['r_dot'], S['beta']] = -g
        Ac[S['x'], S['x_dot']] = 1
        Ac[S['x_dot'], S['beta']] = g
        Ac[S['beta'], S['beta_dot']] = 1
        Bc[S['beta_dot'], I['f_beta']] = l / self.I_yy

        # y-axis: pendulum s, position y, roll gamma
        Ac[S['s'], S['s_dot']] = 1
        Ac[S['s_dot'], S['s']] = g / L
        Ac[S['s_dot'], S['gamma']] = g
        Ac[S['y'], S['y_dot']] = 1
        Ac[S['y_dot'], S['gamma']] = -g
        Ac[S['gamma'], S['gamma_dot']] = 1
        Bc[S['gamma_dot'], I['f_gamma']] = l / self.I_xx

        # altitude
        Ac[S['z'], S['z_dot']] = 1
        Bc[S['z_dot'], I['thrust']] = 1 / self.m

        # yaw
        Ac[S['alpha'], S['alpha_dot']] = 1
        Bc[S['alpha_dot'], I['tau_alpha']] = 1 / self.I_zz

        return LinearPlantModel(Ac, Bc, np.eye(16), FULL_STATES, FULL_INPUTS)

    def reference_map(self):
        """
        B_ref relates the (x, y, z, yaw) reference to states: x_ref = B_ref @ r.

        The y reference enters with a negative sign (roll sign convention).
        """
        B_ref = np.zeros((len(FULL_STATES), len(FULL_REFERENCES)))
        B_ref[FULL_STATES['x'], FULL_REFERENCES['x']] = 1
        B_ref[FULL_STATES['y'], FULL_REFERENCES['y']] = -1
        B_ref[FULL_STATES['z'], FULL_REFERENCES['z']] = 1
        B_ref[FULL_STATES['alpha'], FULL_REFERENCES['yaw']] = 1
        return B_ref
