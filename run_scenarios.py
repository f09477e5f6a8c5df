#!/usr/bin/env python3
"""
Quadrotor Balancing a Pendulum - Scenario Runner
================================================

Runs the three scenarios and saves their plots:
1. Single-axis balancing LQR (step response)
2. MPC tracking of a unit step in x, y, z and yaw
3. LQR on a rotating equilibrium (circular flight)
followed by a horizon sweep of the MPC against the LQR.
"""

import os

import matplotlib.pyplot as plt
import numpy as np

import plotting
from horizon_sweep import sweep_full_model
from pendulum_models import FULL_STATES
from simulation import (
    BalancingScenario, MPCScenario, RotatingScenario,
    simulate_balancing_lqr, simulate_mpc, simulate_rotating_lqr,
)


def run_balancing(output_dir):
    print("\n" + "-"*60)
    print("Scenario 1: SINGLE-AXIS BALANCING LQR")
    print("-"*60)

    scenario = BalancingScenario()
    run, K = simulate_balancing_lqr(scenario)

    print(f"LQR gain K = {np.array2string(K, precision=3)}")
    print(f"Final state: {np.array2string(run.x[:, -1], precision=4)}")

    fig = plotting.plot_states(run, list(run.states), 'Single-Axis Balancing - Step Response',
                               ['$r_1$ [m]', '$r_2$ [m/s]', '$x_1$ [m]', '$x_2$ [m/s]', r'$\beta$ [rad]'])
    fig.savefig(os.path.join(output_dir, 'balancing_states.png'), dpi=150, bbox_inches='tight')
    plt.close(fig)


def run_mpc(output_dir):
    print("\n" + "-"*60)
    print("Scenario 2: MPC REFERENCE TRACKING")
    print("-"*60)

    scenario = MPCScenario()
    print(f"Horizon: {scenario.horizon} steps ({scenario.horizon*scenario.h:.1f} s)")
    print(f"Simulation: {scenario.n_steps} steps ({scenario.t_final:.1f} s)")

    run = simulate_mpc(scenario, verbose=True)

    err = run.x[:, -1] - run.x_ref[:, -1]
    print(f"\nMPC solve statistics:")
    print(f"  Number of optimizations: {len(run.solve_times)}")
    print(f"  Average solve time: {np.mean(run.solve_times)*1000:.2f} ms")
    print(f"  Max solve time: {np.max(run.solve_times)*1000:.2f} ms")
    print(f"Final tracking error: {np.linalg.norm(err):.5f}")
    for key in ('x', 'y', 'z', 'alpha'):
        i = FULL_STATES[key]
        print(f"  {key:6s}: {run.x[i, -1]: .4f} (reference {run.x_ref[i, -1]: .1f})")

    figures = {
        'mpc_tracking.png': plotting.plot_mpc_tracking(run),
        'mpc_inputs.png': plotting.plot_inputs(run, 'MPC Inputs'),
        'mpc_trajectory_3d.png': plotting.plot_trajectory_3d(run.states_trajectory(),
                                                              title='MPC Trajectory'),
    }
    for name, fig in figures.items():
        fig.savefig(os.path.join(output_dir, name), dpi=150, bbox_inches='tight')
        plt.close(fig)


def run_rotating(output_dir):
    print("\n" + "-"*60)
    print("Scenario 3: ROTATING EQUILIBRIUM LQR")
    print("-"*60)

    scenario = RotatingScenario()
    print(f"Radius: {scenario.radius_sequence[0]:.2f} m, "
          f"Omega: {scenario.omega_sequence[0]:.4f} -> {scenario.omega_sequence[-1]:.4f} rad/s")

    run = simulate_rotating_lqr(scenario, verbose=True)

    radius = run.radius()
    print(f"\nRadius over the last half: mean {np.mean(radius[len(radius)//2:]):.4f} m")
    print(f"Largest closed-loop |eig| over the run: {np.max(run.spectral_radii()):.4f}")

    figures = {
        'rotating_overview.png': plotting.plot_rotating_overview(run),
        'rotating_pendulum.png': plotting.plot_states(run, ['p', 'p_dot', 'q', 'q_dot'],
                                                      'Pendulum States'),
        'rotating_quadrotor.png': plotting.plot_states(run, ['u', 'u_dot', 'v', 'v_dot', 'w', 'w_dot'],
                                                       'Quadrotor States'),
        'rotating_inputs.png': plotting.plot_inputs(run),
        'rotating_trajectory_3d.png': plotting.plot_trajectory_3d(
            run.states_trajectory(), run.reference_trajectory, title='Circular Flight'),
    }
    for name, fig in figures.items():
        fig.savefig(os.path.join(output_dir, name), dpi=150, bbox_inches='tight')
        plt.close(fig)


def run_sweep(output_dir):
    print("\n" + "-"*60)
    print("HORIZON SWEEP: MPC vs LQR")
    print("-"*60)

    df = sweep_full_model(verbose=True)
    csv_file = os.path.join(output_dir, 'horizon_sweep_results.csv')
    df.to_csv(csv_file, index=False)
    print(f"\nResults saved: {csv_file}")

    fig = plotting.plot_horizon_sweep(df)
    fig.savefig(os.path.join(output_dir, 'horizon_sweep.png'), dpi=150, bbox_inches='tight')
    plt.close(fig)


def main(output_dir=None):
    """Run all scenarios"""
    output_dir = output_dir or os.path.dirname(os.path.abspath(__file__))

    print("="*60)
    print("Quadrotor Balancing a Pendulum - Optimal Control")
    print("="*60)

    run_balancing(output_dir)
    run_mpc(output_dir)
    run_rotating(output_dir)
    run_sweep(output_dir)

    print("\n" + "="*60)
    print(f"All scenarios completed. Plots saved in {output_dir}")
    print("="*60)


if __name__ == "__main__":
    main()
