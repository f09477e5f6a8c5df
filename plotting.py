"""
Plots of simulated trajectories.

Every function takes a finished run and returns the matplotlib figure;
nothing here feeds back into the control loop.
"""

import matplotlib.pyplot as plt
import numpy as np


def plot_states(run, keys, title, ylabels=None):
    """
    Stair plots of selected states of a run, one subplot per state.

    Args:
        run: SimulationRun
        keys: state names from the run's layout
        title: figure title
        ylabels: axis labels (defaults to the state names)
    """
    ylabels = ylabels or keys
    fig, axes = plt.subplots(len(keys), 1, figsize=(10, 2.2 * len(keys)), sharex=True)
    axes = np.atleast_1d(axes)
    fig.suptitle(title, fontsize=14, fontweight='bold')

    for ax, key, label in zip(axes, keys, ylabels):
        ax.step(run.t, run.x[run.states[key], :], 'b-', where='post', linewidth=2)
        ax.set_ylabel(label)
        ax.grid(True, alpha=0.3)

    axes[-1].set_xlabel('Time (s)')
    fig.tight_layout()
    return fig


def plot_inputs(run, title='Inputs'):
    keys = list(run.inputs)
    fig, axes = plt.subplots(len(keys), 1, figsize=(10, 2.2 * len(keys)), sharex=True)
    axes = np.atleast_1d(axes)
    fig.suptitle(title, fontsize=14, fontweight='bold')

    t_u = run.t[:-1]
    for ax, key in zip(axes, keys):
        ax.step(t_u, run.u[run.inputs[key], :], 'm-', where='post', linewidth=2)
        ax.axhline(0, color='k', linestyle=':', alpha=0.5)
        ax.set_ylabel(key)
        ax.grid(True, alpha=0.3)

    axes[-1].set_xlabel('Time (s)')
    fig.tight_layout()
    return fig


def plot_mpc_tracking(run):
    """Tracked coordinates (x, y, z, yaw) against their references"""
    keys = ['x', 'y', 'z', 'alpha']
    labels = ['x (m)', 'y (m)', 'z (m)', 'Yaw (rad)']

    fig, axes = plt.subplots(4, 1, figsize=(12, 10), sharex=True)
    fig.suptitle('MPC Reference Tracking', fontsize=14, fontweight='bold')

    t_u = run.t[:-1]
    for ax, key, label in zip(axes, keys, labels):
        i = run.states[key]
        ax.step(run.t, run.x[i, :], 'b-', where='post', linewidth=2, label='State')
        ax.step(t_u, run.x_ref[i, :], 'k--', where='post', alpha=0.6, label='Reference')
        ax.set_ylabel(label)
        ax.legend(loc='upper right')
        ax.grid(True, alpha=0.3)

    axes[-1].set_xlabel('Time (s)')
    fig.tight_layout()
    return fig


def plot_rotating_overview(run):
    """Circular path, pendulum deflections and propeller tilt angles"""
    fig, axes = plt.subplots(2, 2, figsize=(14, 10))
    fig.suptitle('Rotating Equilibrium LQR', fontsize=14, fontweight='bold')

    ax = axes[0, 0]
    ax.plot(run.states_cart[0], run.states_cart[1], 'b-', linewidth=2, label='Quadrotor')
    ax.plot(run.states_pendulum_actual[0], run.states_pendulum_actual[1], 'r-',
            linewidth=1, alpha=0.7, label='Pendulum')
    ax.plot(run.reference_trajectory[0], run.reference_trajectory[1], 'k--',
            alpha=0.5, label='Reference')
    ax.set_xlabel('x (m)')
    ax.set_ylabel('y (m)')
    ax.set_aspect('equal')
    ax.legend()
    ax.grid(True, alpha=0.3)
    ax.set_title('Path')

    t = run.t[:-1]

    ax = axes[0, 1]
    ax.step(t, run.radius(), 'b-', where='post', linewidth=2)
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Radius (m)')
    ax.grid(True, alpha=0.3)
    ax.set_title('Distance from Center')

    ax = axes[1, 0]
    ax.step(t, run.beta_angle, where='post', label='beta')
    ax.step(t, run.gamma_angle, where='post', label='gamma')
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Angle (rad)')
    ax.legend()
    ax.grid(True, alpha=0.3)
    ax.set_title('Control Inputs Seen By Quadrotor Props')

    ax = axes[1, 1]
    ax.step(t, run.beta_dot_angle, where='post', label='beta dot')
    ax.step(t, run.gamma_dot_angle, where='post', label='gamma dot')
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Rate (rad/s)')
    ax.legend()
    ax.grid(True, alpha=0.3)
    ax.set_title('Derivative of Control Inputs Seen By Quadrotor Props')

    fig.tight_layout()
    return fig


def plot_trajectory_3d(states_trajectory, reference=None, title='Quadrotor Trajectory'):
    """
    3D path of the quadrotor and the pendulum tip.

    Args:
        states_trajectory: (T, 8) record [x, y, z, roll, pitch, yaw, r, s]
        reference: optional (2, T) planar reference path
    """
    X = np.asarray(states_trajectory)
    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(projection='3d')

    ax.plot(X[:, 0], X[:, 1], X[:, 2], 'b-', linewidth=2, label='Quadrotor')
    ax.plot(X[:, 0] + X[:, 6], X[:, 1] + X[:, 7], X[:, 2], 'r-', alpha=0.7, label='Pendulum')
    if reference is not None:
        ax.plot(reference[0], reference[1], X[:, 2], 'k--', alpha=0.5, label='Reference')

    ax.set_xlabel('x (m)')
    ax.set_ylabel('y (m)')
    ax.set_zlabel('z (m)')
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.legend()
    return fig


def plot_horizon_sweep(df):
    """Decay rate and solve time against horizon length"""
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    ax = axes[0]
    ax.plot(df['horizon'], df['decay_rate'], 'bo-', linewidth=2, label='MPC')
    ax.plot(df['horizon'], df['lqr_decay_rate'], 'k--', label='LQR')
    ax.set_xlabel('Horizon N')
    ax.set_ylabel('Decay rate per step')
    ax.set_title('Closed-Loop Decay vs Horizon', fontsize=12, fontweight='bold')
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    ax.bar(df['horizon'].astype(str), df['mean_solve_time'] * 1000,
           color='green', alpha=0.7, edgecolor='black')
    ax.set_xlabel('Horizon N')
    ax.set_ylabel('Mean solve time (ms)')
    ax.set_title('QP Solve Time', fontsize=12, fontweight='bold')
    ax.grid(True, alpha=0.3, axis='y')

    fig.tight_layout()
    return fig
