import casadi as ca
import numpy as np

_SYMBOLIC = (ca.SX, ca.MX, ca.DM)


def _ops(*values):
    """Pick casadi for symbolic operands so the expression stays differentiable."""
    if any(isinstance(v, _SYMBOLIC) for v in values):
        return ca.cos, ca.sin, ca.atan
    return np.cos, np.sin, np.arctan


def step(state, u, dt, lf, curve):
    """
    Kinematic bicycle model augmented with cross-track and heading error

    Args:
        state: [x, y, psi, v, cte, epsi] at t
        u: control [delta, a] at t
        dt: time step
        lf: front axle to CoG distance
        curve: ReferenceCurve the errors are measured against

    Returns:
        next_state: tuple [x, y, psi, v, cte, epsi] at t+1
    """
    x, y, psi, v, cte, epsi = state
    delta, a = u
    cos, sin, atan = _ops(x, y, psi, v, epsi, delta, a)

    f = curve.evaluate(x)
    psi_des = atan(curve.derivative(x))

    return (
        x + v * cos(psi) * dt,
        y + v * sin(psi) * dt,
        psi + v / lf * delta * dt,
        v + a * dt,
        (f - y) + v * sin(epsi) * dt,
        (psi - psi_des) + v * delta / lf * dt,
    )


def simulate(state, controls, dt, lf, curve):
    """
    Roll the model forward from state under a control sequence

    Args:
        state: initial [x, y, psi, v, cte, epsi]
        controls: sequence of [delta, a], one per step
        dt, lf, curve: as in step()

    Returns:
        states: array [len(controls) + 1, 6]
    """
    states = [np.asarray(state, dtype=float)]
    for u in controls:
        states.append(np.array(step(states[-1], u, dt, lf, curve), dtype=float))
    return np.array(states)


def global_step(pose, u, dt, lf):
    """
    Plant update in world coordinates, no error states

    Args:
        pose: [X, Y, psi, v]
        u: control [delta, a]

    Returns:
        next_pose: [X, Y, psi, v]
    """
    X, Y, psi, v = pose
    delta, a = u

    dX = v * np.cos(psi)
    dY = v * np.sin(psi)
    dpsi = v / lf * delta

    next_pose = np.array([X + dX * dt, Y + dY * dt, psi + dpsi * dt, v + a * dt])
    next_pose[2] = np.arctan2(np.sin(next_pose[2]), np.cos(next_pose[2]))  # Normalize heading
    return next_pose
