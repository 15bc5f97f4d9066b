import logging
from dataclasses import dataclass

import numpy as np

from polyfit_mpc.config.params import MPCConfig
from polyfit_mpc.control.layout import VariableLayout
from polyfit_mpc.control.problem import ProblemBuilder
from polyfit_mpc.control.solvers import make_solver
from polyfit_mpc.vehicle.state import STATE_FIELDS, ReferenceCurve, VehicleState

logger = logging.getLogger(__name__)


class BoundsError(ValueError):
    """Lower bound above upper bound while building the NLP bounds."""


@dataclass
class MPCSolution:
    ok: bool
    steering: float
    throttle: float
    predicted_points: np.ndarray  # [N, 2] (x, y)
    predicted_steering: np.ndarray  # [N-1]
    predicted_throttle: np.ndarray  # [N-1]
    cost: float
    status: str
    vars: np.ndarray
    iterations: int = 0
    solve_time: float = 0.0


def _check_bounds(lower, upper, what):
    bad = np.flatnonzero(lower > upper)
    if bad.size:
        raise BoundsError(f"{what} lower bound exceeds upper bound at indices {bad.tolist()}")


class MPC:
    """
    Nonlinear MPC on the kinematic bicycle model, tracking a polynomial path.

    Decision vector layout is owned by VariableLayout:
    [x, y, psi, v, cte, epsi] blocks of N, then [delta, a] blocks of N-1.
    """

    def __init__(self, config=None, solver=None):
        self.config = config if config is not None else MPCConfig()
        self.layout = VariableLayout(self.config.horizon)
        self.solver = solver if solver is not None else make_solver(self.config)
        self.last_vars = None

        self.first_delta = 0.0
        self.first_a = 0.0
        self.predicted_points = np.zeros((0, 2))

    def reset(self):
        """Forget the previous solution used for warm starting."""
        self.last_vars = None

    def _parse_inputs(self, state, coeffs):
        if isinstance(state, VehicleState):
            state = state.to_vector()
        state = VehicleState.from_vector(state).to_vector()

        if isinstance(coeffs, ReferenceCurve):
            curve = coeffs
            if curve.degree != self.config.poly_degree:
                raise ValueError(
                    f"Expected a degree {self.config.poly_degree} reference curve, got degree {curve.degree}"
                )
        else:
            curve = ReferenceCurve.from_coeffs(coeffs, degree=self.config.poly_degree)
        return state, curve

    def build_variable_bounds(self):
        """
        States are unbounded (Ipopt sentinel), steering within the lock,
        acceleration within the normalised throttle/brake authority.
        """
        cfg, lay = self.config, self.layout
        lower = np.full(lay.n_vars, -cfg.bound_sentinel)
        upper = np.full(lay.n_vars, cfg.bound_sentinel)

        delta = lay.actuator_slice("delta")
        lower[delta] = -cfg.steer_max
        upper[delta] = cfg.steer_max

        a = lay.actuator_slice("a")
        lower[a] = -cfg.accel_max
        upper[a] = cfg.accel_max

        _check_bounds(lower, upper, "Variable")
        return lower, upper

    def build_constraint_bounds(self, state):
        """
        Dynamics residuals must be exactly zero; the six initial-condition
        residuals are pinned to the current state.
        """
        lay = self.layout
        lower = np.zeros(lay.n_constraints)
        upper = np.zeros(lay.n_constraints)

        for idx, value in zip(lay.initial_indices(), state):
            lower[idx] = value
            upper[idx] = value

        _check_bounds(lower, upper, "Constraint")
        return lower, upper

    def initial_guess(self, state):
        """Zeros, or the previous solution shifted by one step when warm starting."""
        lay = self.layout
        guess = np.zeros(lay.n_vars)
        if not self.config.warm_start or self.last_vars is None:
            return guess

        prev = self.last_vars
        for _, start, length in lay.blocks():
            block = prev[start:start + length]
            guess[start:start + length] = np.append(block[1:], block[-1])
        for idx, value in zip(lay.initial_indices(), state):
            guess[idx] = value
        return guess

    def solve(self, state, coeffs):
        """
        Solve the model given an initial state and polynomial coefficients.

        Args:
            state: [x, y, psi, v, cte, epsi] or VehicleState
            coeffs: Reference polynomial coefficients (ascending powers) or ReferenceCurve

        Returns:
            solution: MPCSolution; ok is False when the solver did not report success
        """
        state, curve = self._parse_inputs(state, coeffs)
        lay = self.layout

        x0 = self.initial_guess(state)
        lbx, ubx = self.build_variable_bounds()
        lbg, ubg = self.build_constraint_bounds(state)

        problem = ProblemBuilder(curve, self.config, lay)
        result = self.solver.solve(problem, x0, lbx, ubx, lbg, ubg)

        if result.success:
            logger.debug("Cost %.4f (%s, %d iterations, %.1f ms)", result.obj_value,
                         result.status, result.iterations, result.solve_time * 1e3)
        else:
            logger.warning("MPC solve not successful: %s (cost %.4f)", result.status, result.obj_value)

        vars = result.x
        solution = MPCSolution(
            ok=result.success,
            steering=float(vars[lay.delta_start]),
            throttle=float(vars[lay.a_start]),
            predicted_points=np.column_stack([vars[lay.state_slice("x")], vars[lay.state_slice("y")]]),
            predicted_steering=vars[lay.actuator_slice("delta")].copy(),
            predicted_throttle=vars[lay.actuator_slice("a")].copy(),
            cost=result.obj_value,
            status=result.status,
            vars=vars,
            iterations=result.iterations,
            solve_time=result.solve_time
        )

        self.first_delta = solution.steering
        self.first_a = solution.throttle
        self.predicted_points = solution.predicted_points
        if self.config.warm_start and result.success:
            self.last_vars = vars.copy()
        return solution

    def state_trajectory(self, solution):
        """Predicted state blocks as an [N, 6] array."""
        return np.column_stack([solution.vars[self.layout.state_slice(name)] for name in STATE_FIELDS])
