"""
Horizon Sweep for Receding-Horizon MPC
======================================

Runs the MPC regulator for several horizon lengths N and compares its
closed-loop decay with the infinite-horizon LQR on the same model and
weights. As N grows the receding-horizon gain approaches the LQR gain, so
the two decay rates should agree up to a truncation error that shrinks
with N.

Each horizon is an independent run; steps inside a run stay ordered.
"""

import numpy as np
import pandas as pd

from mpc_control import MPCController, U_MAX
from pendulum_models import QuadPendulumSystem, TS_MPC
from rotating_lqr import dlqr

HORIZONS = (2, 4, 8, 12, 16)


def regulate_mpc(A, B, Q, R, S, horizon, x0, n_steps, u_max=U_MAX, solver=None):
    """
    Drive x0 to the origin with MPC.

    Returns:
        x: state trajectory (nx, n_steps+1)
        controller: MPCController (holds solve times)
    """
    controller = MPCController(A, B, Q, R, S, horizon=horizon, u_max=u_max, solver=solver)
    x = np.zeros((A.shape[0], n_steps + 1))
    x[:, 0] = x0
    for k in range(n_steps):
        u_k = controller.solve(x[:, k])[:controller.nu]
        x[:, k + 1] = A @ x[:, k] + B @ u_k
    return x, controller


def regulate_lqr(A, B, K, x0, n_steps):
    x = np.zeros((A.shape[0], n_steps + 1))
    x[:, 0] = x0
    for k in range(n_steps):
        x[:, k + 1] = (A - B @ K) @ x[:, k]
    return x


def observed_decay_rate(x, start=1):
    """Geometric mean contraction of the state norm per step"""
    norms = np.linalg.norm(x, axis=0)
    end = len(norms) - 1
    if end <= start or norms[start] == 0:
        return 0.0
    ratio = max(norms[end], np.finfo(float).tiny) / norms[start]
    return ratio ** (1.0 / (end - start))


def spectral_radius(M):
    return np.max(np.abs(np.linalg.eigvals(M)))


def horizon_sweep(A, B, Q, R, S, x0, horizons=HORIZONS, n_steps=40, solver=None, verbose=False):
    """
    Compare MPC regulation for each horizon with the LQR.

    Returns: DataFrame with one row per horizon
    """
    K_lqr, eig_lqr = dlqr(A, B, Q, R)
    lqr_rate = np.max(np.abs(eig_lqr))
    x_lqr = regulate_lqr(A, B, K_lqr, x0, n_steps)

    results = []
    for N in horizons:
        x, controller = regulate_mpc(A, B, Q, R, S, N, x0, n_steps, solver=solver)
        K_N = controller.cost.unconstrained_gain()

        row = {
            'horizon': N,
            'decay_rate': spectral_radius(A - B @ K_N),
            'lqr_decay_rate': lqr_rate,
            'observed_decay_rate': observed_decay_rate(x),
            'lqr_observed_decay_rate': observed_decay_rate(x_lqr),
            'gain_error': np.linalg.norm(K_N - K_lqr) / np.linalg.norm(K_lqr),
            'final_error': np.linalg.norm(x[:, -1]),
            'mean_solve_time': np.mean(controller.solve_times),
        }
        results.append(row)

        if verbose:
            print(f"  N = {N:3d}: decay {row['decay_rate']:.4f} (LQR {lqr_rate:.4f}), "
                  f"gain error {row['gain_error']:.2e}, "
                  f"{row['mean_solve_time']*1000:.2f} ms/solve")

    return pd.DataFrame(results)


def sweep_full_model(horizons=HORIZONS, h=TS_MPC, n_steps=40, solver=None, verbose=False):
    """Horizon sweep on the 16-state model with the default tuning weights"""
    system = QuadPendulumSystem()
    sysd = system.full_dynamics().discretize(h)
    n, m = sysd.nx, sysd.nu
    Q = 10 * np.eye(n)
    R = 0.1 * np.eye(m)
    S = 10 * np.eye(n)
    x0 = np.full(n, 0.1)
    return horizon_sweep(sysd.A, sysd.B, Q, R, S, x0, horizons, n_steps,
                         solver=solver, verbose=verbose)
