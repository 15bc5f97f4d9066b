"""
Closed-loop nonlinear MPC demo with command line interface
"""
import argparse
import logging

import numpy as np

from polyfit_mpc.config.params import DT, HORIZON, SIM_STEPS, MPCConfig
from polyfit_mpc.control.mpc import MPC
from polyfit_mpc.track.track import TRACKS, lookahead_waypoints
from polyfit_mpc.vehicle.dynamics import global_step
from polyfit_mpc.vehicle.state import ReferenceCurve, initial_state, to_vehicle_frame, to_world_frame


def run_simulation(steps=SIM_STEPS, speed=15.0, horizon=HORIZON, dt=DT, solver="ipopt",
                   track="sine", waypoint_count=8, waypoint_spacing=6):
    """
    Drive the kinematic plant along a track with the MPC in the loop

    Each cycle the waypoints ahead are moved into the vehicle frame and
    fitted with a cubic, so the controller always sees the car at the
    origin heading along +x.

    Args:
        steps: Maximum number of control cycles
        speed: Target cruise speed (m/s)
        horizon: MPC prediction steps
        dt: MPC and plant timestep (s)
        solver: "ipopt" or "sqp"
        track: Track name in TRACKS
        waypoint_count: Waypoints used for each polynomial fit
        waypoint_spacing: Centerline index stride between waypoints

    Returns:
        run: dict with center, states, controls, prediction_horizons, failures, config
    """
    config = MPCConfig.from_params(horizon=horizon, dt=dt, ref_v=speed, solver=solver)
    mpc = MPC(config)
    center = TRACKS[track]()

    start_heading = np.arctan2(center[1, 1] - center[0, 1], center[1, 0] - center[0, 0])
    pose = np.array([center[0, 0], center[0, 1], start_heading, 0.5 * speed])
    u_prev = np.zeros(2)

    states = [pose.copy()]
    controls = []
    prediction_horizons = []
    failures = 0

    print(f"Starting {track} run with {solver} solver...")
    print(f"Horizon: {horizon} steps x {dt}s, target speed: {speed} m/s")

    for t in range(steps):
        waypoints = lookahead_waypoints(center, pose, count=waypoint_count, spacing=waypoint_spacing)
        if len(waypoints) <= config.poly_degree:
            print(f"Destination reached after {t} steps. Final position: ({pose[0]:.1f}, {pose[1]:.1f})")
            break

        local = to_vehicle_frame(waypoints, pose[0], pose[1], pose[2])
        curve = ReferenceCurve.fit(local[:, 0], local[:, 1], degree=config.poly_degree)
        solution = mpc.solve(initial_state(curve, pose[3]), curve)

        if solution.ok:
            u = np.array([solution.steering, solution.throttle])
        else:
            # Caller policy on a failed cycle: hold the previous command
            failures += 1
            u = u_prev

        prediction_horizons.append(to_world_frame(solution.predicted_points, pose[0], pose[1], pose[2]))
        pose = global_step(pose, u, dt, config.lf)
        u_prev = u

        states.append(pose.copy())
        controls.append(u.copy())

        if t % 50 == 0:
            print(f"Step {t}/{steps}: Position ({pose[0]:.1f}, {pose[1]:.1f}), Speed: {pose[3]:.1f}, "
                  f"steer {u[0]:+.3f}, throttle {u[1]:+.2f}, cost {solution.cost:.1f}")

    return dict(
        center=center,
        states=np.array(states),
        controls=np.array(controls),
        prediction_horizons=prediction_horizons,
        failures=failures,
        config=config
    )


def main():
    parser = argparse.ArgumentParser(description='Nonlinear MPC path tracking demo')
    parser.add_argument('--steps', type=int, default=SIM_STEPS,
                        help='Maximum number of control cycles')
    parser.add_argument('--speed', type=float, default=15.0,
                        help='Target cruise speed (m/s)')
    parser.add_argument('--horizon', type=int, default=HORIZON,
                        help='MPC prediction horizon')
    parser.add_argument('--solver', type=str, default='ipopt', choices=['ipopt', 'sqp'],
                        help='Nonlinear solver backend')
    parser.add_argument('--track', type=str, default='sine', choices=sorted(TRACKS),
                        help='Track shape')
    parser.add_argument('--output', type=str, default='mpc_run.png',
                        help='Output plot filename (.png or .gif)')
    parser.add_argument('--no-plot', action='store_true',
                        help='Skip writing the plot')
    parser.add_argument('--verbose', action='store_true',
                        help='Log every solve')

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(asctime)s %(name)s %(levelname)s: %(message)s')

    run = run_simulation(steps=args.steps, speed=args.speed, horizon=args.horizon,
                         solver=args.solver, track=args.track)
    print(f"\nRun complete: {len(run['controls'])} cycles, {run['failures']} unsuccessful solves")

    if args.no_plot:
        return

    from polyfit_mpc.utils.plotting import create_trajectory_gif, plot_run

    if args.output.endswith('.gif'):
        create_trajectory_gif(run['states'], run['center'], run['prediction_horizons'], save_path=args.output)
    else:
        plot_run(run['states'], run['center'], run['prediction_horizons'], run['controls'],
                 save_path=args.output, horizon=run['config'].horizon, dt=run['config'].dt)
    print(f"Output: {args.output}")


if __name__ == "__main__":
    main()
