import matplotlib

matplotlib.use("Agg")

import matplotlib.animation as animation
import matplotlib.pyplot as plt
import numpy as np


def _draw_road(ax, center):
    ax.plot(center[:, 0], center[:, 1], 'k--', alpha=0.5, linewidth=1.5, label='Centerline')


def plot_run(states, center, prediction_horizons=None, controls=None, save_path="mpc_run.png",
             horizon=None, dt=None):
    """
    Static plot of a closed-loop run: driven path, reference and predicted horizons

    Args:
        states: Driven poses [T, 4] (X, Y, psi, v)
        center: Road centerline points
        prediction_horizons: Predicted (x, y) points per step, world frame
        controls: Applied [delta, a] per step
        save_path: PNG output path
        horizon, dt: Shown in the info box when given
    """
    s = np.array(states)

    fig, (ax, ax_u) = plt.subplots(2, 1, figsize=(14, 12), gridspec_kw={'height_ratios': [3, 1]})
    _draw_road(ax, center)

    if len(s) > 1:
        colors = plt.cm.viridis(np.linspace(0, 1, len(s)))
        for i in range(len(s)-1):
            ax.plot(s[i:i+2, 0], s[i:i+2, 1], color=colors[i], linewidth=2.5, alpha=0.9)

        ax.plot(s[0, 0], s[0, 1], 'go', markersize=12, label='Start', markeredgecolor='darkgreen', markeredgewidth=2)
        ax.plot(s[-1, 0], s[-1, 1], 'ro', markersize=12, label='End', markeredgecolor='darkred', markeredgewidth=2)

    # Every 10th horizon to avoid clutter
    if prediction_horizons:
        horizon_interval = max(1, len(prediction_horizons) // 10)
        for i in range(0, len(prediction_horizons), horizon_interval):
            points = np.asarray(prediction_horizons[i])
            if len(points) > 0:
                ax.plot(points[:, 0], points[:, 1], 'r.--', alpha=0.6, linewidth=1.5, markersize=3,
                        label='Prediction Horizon' if i == 0 else '')

    ax.set_xlabel('X [m]', fontsize=12, fontweight='bold')
    ax.set_ylabel('Y [m]', fontsize=12, fontweight='bold')
    ax.set_title('Nonlinear MPC: Driven Path with Prediction Horizon', fontsize=14, fontweight='bold')
    ax.axis('equal')
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper right', fontsize=9)

    if len(s) > 1:
        total_distance = np.sum(np.sqrt(np.diff(s[:, 0])**2 + np.diff(s[:, 1])**2))
        info_text = f'Total Distance: {total_distance:.1f}m\nAvg Speed: {np.mean(s[:, 3]):.1f}m/s\nSteps: {len(s)}'
        if horizon is not None and dt is not None:
            info_text += f'\nPrediction Horizon: {horizon} steps ({horizon*dt:.1f}s)'
        ax.text(0.02, 0.98, info_text, transform=ax.transAxes,
                bbox=dict(boxstyle='round', facecolor='lightblue', alpha=0.8),
                verticalalignment='top', fontsize=10, fontweight='bold')

    if controls is not None and len(controls) > 0:
        u = np.array(controls)
        ax_u.plot(u[:, 0], 'b-', label='Steering [rad]')
        ax_u.plot(u[:, 1], 'r-', label='Throttle')
        ax_u.set_xlabel('Step')
        ax_u.grid(True, alpha=0.3)
        ax_u.legend(loc='upper right')
    else:
        ax_u.set_visible(False)

    plt.tight_layout()
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    return save_path


def create_trajectory_gif(states, center, prediction_horizons=None, save_path="mpc_run.gif",
                          interval=50, fps=20):
    """
    Animated GIF of the run with the current prediction horizon

    Args:
        states: Driven poses [T, 4]
        center: Road centerline points
        prediction_horizons: Predicted (x, y) points per step, world frame
        save_path: GIF output path
        interval: Interval between frames in milliseconds
        fps: Frames per second for the GIF
    """
    s = np.array(states)
    fig, ax = plt.subplots(figsize=(12, 8))

    def animate_frame(frame_idx):
        ax.clear()
        current = s[:frame_idx+1]
        _draw_road(ax, center)

        if len(current) > 1:
            ax.plot(current[:, 0], current[:, 1], 'b-', linewidth=2.5, alpha=0.9, label='Driven Path')

        x, y, psi = current[-1, 0], current[-1, 1], current[-1, 2]
        ax.plot(x, y, 'ro', markersize=8, label='Current Position')
        ax.arrow(x, y, 3.0 * np.cos(psi), 3.0 * np.sin(psi), head_width=0.8, head_length=0.6,
                 fc='red', ec='red', alpha=0.7)

        if prediction_horizons is not None and frame_idx < len(prediction_horizons):
            points = np.asarray(prediction_horizons[frame_idx])
            if len(points) > 0:
                ax.plot(points[:, 0], points[:, 1], 'g.-', linewidth=2, alpha=0.8, label='Prediction Horizon')

        ax.set_xlabel('X [m]', fontsize=12, fontweight='bold')
        ax.set_ylabel('Y [m]', fontsize=12, fontweight='bold')
        ax.set_title(f'Nonlinear MPC - Frame {frame_idx+1}/{len(s)}', fontsize=14, fontweight='bold')
        ax.axis('equal')
        ax.grid(True, alpha=0.3)
        ax.legend(loc='upper right', fontsize=10)
        ax.text(0.02, 0.98, f'Speed: {current[-1, 3]:.1f} m/s', transform=ax.transAxes,
                bbox=dict(boxstyle='round', facecolor='lightblue', alpha=0.8),
                verticalalignment='top', fontsize=10, fontweight='bold')

    anim = animation.FuncAnimation(fig, animate_frame, frames=len(s),
                                   interval=interval, repeat=True, blit=False)
    anim.save(save_path, writer='pillow', fps=fps, dpi=100)
    plt.close(fig)
    return save_path
