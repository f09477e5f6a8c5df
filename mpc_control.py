"""
Receding-Horizon (Model Predictive) Control
===========================================

Batch formulation of the finite-horizon problem on the deviation dynamics
x0 = x(k) - x_ref(k):

             N-1
    V(U) =   Sum 1/2[ x(k)'Q x(k) + u(k)'R u(k) ] + x(N)'S x(N)
             k=0

Stacking the predicted states gives the dense QP

    min 1/2 U'H U + d'U   s.t.  -u_max <= U <= u_max

solved with CVXPY at every step; only the first input block is applied.
"""

import time

import cvxpy as cp
import numpy as np

from control_errors import ModelConfigurationError, SolverFailure
from pendulum_models import check_finite, check_weights

# Solver statuses accepted as a valid solution
SUCCESS_STATUSES = ["optimal", "optimal_inaccurate"]

# Box bound on every entry of the control sequence
U_MAX = 1000.0


class PredictionModel:
    """
    Prediction matrices for horizon N.

    - P: [I; A; A^2; ...; A^N]                        ((N+1)n x n)
    - Z: Z[i][j] = A^(i-j-1) B for i > j, else 0     (Nn x Nm)
         block row i is the predicted stage k = i
    - W: [A^(N-1)B, ..., AB, B]                       (n x Nm)

    Stage k < N is the k-th block of P x0 + Z U and the terminal state is
    A^N x0 + W U.
    """

    def __init__(self, A, B, N):
        if N < 1:
            raise ModelConfigurationError(f"horizon must be a positive integer, got {N}")

        n, m = B.shape
        if A.shape != (n, n):
            raise ModelConfigurationError(f"incompatible model dimensions A{A.shape} B{B.shape}")

        # A^0 ... A^N accumulated once
        powers = [np.eye(n)]
        for _ in range(N):
            powers.append(A @ powers[-1])
        check_finite(f"matrix powers up to A^{N}", *powers)

        # A^k B for k = 0 ... N-1
        AkB = [Ak @ B for Ak in powers[:N]]

        Z = np.zeros((N * n, N * m))
        for i in range(1, N):
            for j in range(i):
                Z[i*n:(i+1)*n, j*m:(j+1)*m] = AkB[i - j - 1]

        self.A = A
        self.B = B
        self.N = N
        self.n = n
        self.m = m
        self.P = np.vstack(powers)
        self.Z = Z
        self.W = np.hstack([AkB[N - 1 - j] for j in range(N)])
        self.A_N = powers[N]

    @property
    def P_stage(self):
        """Free response of stages 0..N-1 (first N blocks of P)"""
        return self.P[:self.N * self.n]

    def predict(self, x0, U):
        """
        Predicted deviation states for a control sequence.

        Returns: (n, N+1) array, column k is the state k steps ahead
        """
        stages = self.P_stage @ x0 + self.Z @ U
        terminal = self.A_N @ x0 + self.W @ U
        return np.column_stack([stages.reshape(self.N, self.n).T, terminal])


def prediction_matrices(A, B, N):
    """Build P, Z, W for horizon N."""
    model = PredictionModel(A, B, N)
    return model.P, model.Z, model.W


class QPCost:
    """
    Dense QP cost for one receding-horizon solve.

    H = Z'Qbar Z + Rbar + 2 W'S W
    d = (x0'P'Qbar Z + 2 x0'(A^N)'S W)'  = F x0

    H depends only on the model and weights; d is rebuilt from the current
    deviation state at every control step.
    """

    def __init__(self, prediction, Q, R, S):
        n, m, N = prediction.n, prediction.m, prediction.N
        Q = np.atleast_2d(np.asarray(Q, dtype=float))
        R = np.atleast_2d(np.asarray(R, dtype=float))
        S = np.atleast_2d(np.asarray(S, dtype=float))
        if Q.shape != (n, n) or S.shape != (n, n) or R.shape != (m, m):
            raise ModelConfigurationError(
                f"weights Q{Q.shape} R{R.shape} S{S.shape} do not match n={n}, m={m}")
        check_weights(Q, R, S)

        Z, W = prediction.Z, prediction.W

        self.prediction = prediction
        self.Q = Q
        self.R = R
        self.S = S
        self.Qbar = np.kron(np.eye(N), Q)
        self.Rbar = np.kron(np.eye(N), R)

        self.H = Z.T @ self.Qbar @ Z + self.Rbar + 2 * W.T @ S @ W
        self.F = Z.T @ self.Qbar @ prediction.P_stage + 2 * W.T @ S @ prediction.A_N

        try:
            np.linalg.cholesky(0.5 * (self.H + self.H.T))
        except np.linalg.LinAlgError as exc:
            raise ModelConfigurationError("QP Hessian H is not positive definite") from exc

    def linear_term(self, x0):
        return self.F @ x0

    def value(self, U, x0):
        """Cost 1/2 U'HU + d'U (constant term in x0 omitted)"""
        return 0.5 * U @ self.H @ U + self.linear_term(x0) @ U

    def unconstrained_gain(self):
        """
        Feedback gain of the unconstrained receding-horizon law u = -K x0
        (first input block of H^-1 F).
        """
        m = self.prediction.m
        return np.linalg.solve(self.H, self.F)[:m]


def qp_cost(Q, R, S, prediction):
    """Assemble Qbar, Rbar, H and the map x0 -> d."""
    return QPCost(prediction, Q, R, S)


def solve_box_qp(H, d, lower_bound, upper_bound, solver=None, verbose=False, **solver_params):
    """
    Solve min 1/2 u'Hu + d'u s.t. lower_bound <= u <= upper_bound.

    Raises SolverFailure if the problem is infeasible or the solver fails.
    """
    u = cp.Variable(d.shape[0])
    H_sym = 0.5 * (H + H.T)
    objective = cp.Minimize(0.5 * cp.quad_form(u, cp.psd_wrap(H_sym)) + d @ u)
    problem = cp.Problem(objective, [u >= lower_bound, u <= upper_bound])
    _solve(problem, solver, verbose, solver_params, {'H': H, 'd': d})
    return u.value


def _solve(problem, solver, verbose, solver_params, matrices):
    try:
        problem.solve(solver=solver or cp.CLARABEL, verbose=verbose, **solver_params)
    except cp.SolverError as exc:
        raise SolverFailure(f"QP solver error: {exc}", matrices=matrices) from exc

    if problem.status not in SUCCESS_STATUSES:
        raise SolverFailure(f"QP status: {problem.status}", matrices=matrices)


class MPCController:
    """Model Predictive Controller on a fixed discrete model"""

    def __init__(self, Ad, Bd, Q, R, S, horizon=8, u_max=U_MAX,
                 solver=None, solver_params=None, verbose=False):
        """
        Initialize MPC controller

        Args:
            Ad: Discrete state matrix
            Bd: Discrete input matrix
            Q: Stage state weight
            R: Input weight
            S: Terminal state weight
            horizon: Prediction horizon N
            u_max: Elementwise bound on the control sequence
            solver: CVXPY solver name (CLARABEL if None)
            solver_params: Extra keyword arguments for the solver
        """
        self.prediction = PredictionModel(Ad, Bd, horizon)
        self.cost = QPCost(self.prediction, Q, R, S)
        self.N = horizon
        self.nx = self.prediction.n
        self.nu = self.prediction.m
        self.u_max = u_max
        self.solver = solver or cp.CLARABEL
        self.solver_params = dict(solver_params or {})
        self.verbose = verbose

        # Problem built once; only d changes between steps
        n_u = self.N * self.nu
        self._U = cp.Variable(n_u)
        self._d = cp.Parameter(n_u)
        H = self.cost.H
        objective = cp.Minimize(
            0.5 * cp.quad_form(self._U, cp.psd_wrap(0.5 * (H + H.T))) + self._d @ self._U)
        constraints = [self._U >= -u_max, self._U <= u_max]
        self._problem = cp.Problem(objective, constraints)

        self.solve_times = []

    def solve(self, x0):
        """
        Solve the QP from deviation state x0.

        Returns:
            U: Optimal control sequence (N*nu,)
        """
        d = self.cost.linear_term(x0)
        self._d.value = d

        start_time = time.time()
        _solve(self._problem, self.solver, self.verbose, self.solver_params,
               {'H': self.cost.H, 'd': d, 'x0': x0})
        self.solve_times.append(time.time() - start_time)

        U = np.asarray(self._U.value).reshape(-1)
        check_finite("QP solution", U)
        return U

    def control(self, x, x_ref):
        """First input block of the optimal sequence (receding horizon)"""
        U = self.solve(x - x_ref)
        return U[:self.nu]
