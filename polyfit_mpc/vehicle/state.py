"""
Vehicle state and reference curve representation.

The controller works in the vehicle frame: the reference path is a
polynomial y = f(x) fitted to the waypoints ahead of the car.
"""
import math
from dataclasses import dataclass

import numpy as np

STATE_FIELDS = ("x", "y", "psi", "v", "cte", "epsi")
ACTUATOR_FIELDS = ("delta", "a")


def _as_finite_vector(values, expected_len, what):
    vec = np.asarray(values, dtype=float).reshape(-1)
    if expected_len is not None and vec.size != expected_len:
        raise ValueError(f"{what} must have {expected_len} entries, got {vec.size}")
    if not np.all(np.isfinite(vec)):
        raise ValueError(f"{what} contains non-finite values: {vec}")
    return vec


@dataclass(frozen=True)
class VehicleState:
    """[x, y, psi, v, cte, epsi] in the frame the reference curve is expressed in."""
    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0
    v: float = 0.0
    cte: float = 0.0
    epsi: float = 0.0

    def __post_init__(self):
        _as_finite_vector(self.to_vector(), len(STATE_FIELDS), "State")

    def to_vector(self):
        return np.array([getattr(self, name) for name in STATE_FIELDS], dtype=float)

    @classmethod
    def from_vector(cls, values):
        vec = _as_finite_vector(values, len(STATE_FIELDS), "State")
        return cls(*(float(v) for v in vec))


@dataclass(frozen=True)
class ReferenceCurve:
    """
    Polynomial reference path, coefficients in ascending power order:
    f(x) = c0 + c1*x + c2*x^2 + ...
    """
    coeffs: tuple

    def __post_init__(self):
        vec = _as_finite_vector(self.coeffs, None, "Reference coefficients")
        if vec.size < 2:
            raise ValueError("Reference curve needs at least 2 coefficients")
        object.__setattr__(self, "coeffs", tuple(float(c) for c in vec))

    @property
    def degree(self):
        return len(self.coeffs) - 1

    @classmethod
    def from_coeffs(cls, coeffs, degree=None):
        curve = cls(tuple(np.asarray(coeffs, dtype=float).reshape(-1)))
        if degree is not None and curve.degree != degree:
            raise ValueError(
                f"Expected {degree + 1} reference coefficients, got {len(curve.coeffs)}"
            )
        return curve

    @classmethod
    def fit(cls, xs, ys, degree=3):
        """
        Least-squares polynomial fit through waypoints.

        Args:
            xs: Waypoint x coordinates (vehicle frame)
            ys: Waypoint y coordinates (vehicle frame)
            degree: Polynomial degree

        Returns:
            curve: ReferenceCurve
        """
        xs = np.asarray(xs, dtype=float)
        ys = np.asarray(ys, dtype=float)
        if xs.shape != ys.shape or xs.ndim != 1:
            raise ValueError("xs and ys must be 1-D arrays of the same length")
        if xs.size <= degree:
            raise ValueError(f"Need more than {degree} waypoints for a degree {degree} fit")
        # np.polyfit returns the highest power first
        return cls(tuple(np.polyfit(xs, ys, degree)[::-1]))

    def evaluate(self, x):
        # Horner form, arithmetic only so symbolic x works too
        result = self.coeffs[-1]
        for c in reversed(self.coeffs[:-1]):
            result = result * x + c
        return result

    def derivative(self, x):
        result = self.degree * self.coeffs[-1]
        for power in range(self.degree - 1, 0, -1):
            result = result * x + power * self.coeffs[power]
        return result

    def desired_heading(self, x):
        return math.atan(self.derivative(x))


def to_vehicle_frame(points, px, py, psi):
    """
    Express global waypoints in the vehicle frame.

    Args:
        points: Waypoints [M, 2] in world coordinates
        px, py: Vehicle position in world coordinates
        psi: Vehicle heading (rad)

    Returns:
        local: Waypoints [M, 2], x pointing along the vehicle heading
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    dx = points[:, 0] - px
    dy = points[:, 1] - py
    c, s = np.cos(psi), np.sin(psi)
    return np.vstack([dx * c + dy * s, -dx * s + dy * c]).T


def to_world_frame(points, px, py, psi):
    """Inverse of to_vehicle_frame."""
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    c, s = np.cos(psi), np.sin(psi)
    xs = px + points[:, 0] * c - points[:, 1] * s
    ys = py + points[:, 0] * s + points[:, 1] * c
    return np.vstack([xs, ys]).T


def initial_state(curve, v):
    """
    Vehicle-frame state for a car sitting at the origin heading along +x.

    cte is measured as f(0) - y and epsi as psi - atan(f'(0)), the same
    sign conventions the dynamics model propagates.
    """
    return VehicleState(
        x=0.0,
        y=0.0,
        psi=0.0,
        v=float(v),
        cte=float(curve.evaluate(0.0)),
        epsi=-curve.desired_heading(0.0)
    )
