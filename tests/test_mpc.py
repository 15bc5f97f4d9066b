"""
Tests for the solve orchestrator: bounds, extraction and closed scenarios.
"""

import numpy as np
import pytest

from polyfit_mpc.config.params import MPCConfig
from polyfit_mpc.control.mpc import MPC, BoundsError, MPCSolution
from polyfit_mpc.control.solvers import SolverResult
from polyfit_mpc.vehicle.state import ReferenceCurve, VehicleState

STRAIGHT = [0.0, 0.0, 0.0, 0.0]


class RecordingSolver:
    """Returns a canned vector and remembers what it was called with."""

    def __init__(self, status="Solve_Succeeded", fill=None):
        self.status = status
        self.fill = fill
        self.calls = []

    def solve(self, problem, x0, lbx, ubx, lbg, ubg):
        self.calls.append(dict(problem=problem, x0=x0.copy(), lbx=lbx, ubx=ubx, lbg=lbg, ubg=ubg))
        x = np.arange(problem.layout.n_vars, dtype=float) if self.fill is None else self.fill.copy()
        return SolverResult(status=self.status, success=self.status == "Solve_Succeeded",
                            x=x, obj_value=42.0, iterations=3, solve_time=0.01)


@pytest.fixture
def config():
    return MPCConfig(horizon=10, dt=0.1, ref_v=10.0)


def test_variable_bounds(config):
    mpc = MPC(config, solver=RecordingSolver())
    lower, upper = mpc.build_variable_bounds()
    lay = mpc.layout

    assert lower.size == upper.size == lay.n_vars
    assert np.all(lower[:lay.delta_start] == -1.0e19)
    assert np.all(upper[:lay.delta_start] == 1.0e19)
    assert np.allclose(lower[lay.actuator_slice("delta")], -0.436332 * 2.67)
    assert np.allclose(upper[lay.actuator_slice("delta")], 0.436332 * 2.67)
    assert np.allclose(lower[lay.actuator_slice("a")], -0.7)
    assert np.allclose(upper[lay.actuator_slice("a")], 0.7)


def test_constraint_bounds_pin_initial_state(config):
    mpc = MPC(config, solver=RecordingSolver())
    state = np.array([1.0, -2.0, 0.3, 12.0, 0.7, -0.1])
    lower, upper = mpc.build_constraint_bounds(state)
    initial = mpc.layout.initial_indices()

    assert np.array_equal(lower[initial], state)
    assert np.array_equal(upper[initial], state)
    rest = np.delete(np.arange(mpc.layout.n_constraints), initial)
    assert np.all(lower[rest] == 0.0)
    assert np.all(upper[rest] == 0.0)


def test_inconsistent_bounds_are_caught():
    from polyfit_mpc.control.mpc import _check_bounds

    with pytest.raises(BoundsError):
        _check_bounds(np.array([0.0, 1.0]), np.array([0.0, 0.5]), "Variable")


def test_solver_receives_zero_guess_and_bounds(config):
    solver = RecordingSolver()
    mpc = MPC(config, solver=solver)
    state = [0.0, 0.0, 0.0, 10.0, 0.5, 0.0]
    mpc.solve(state, STRAIGHT)

    call = solver.calls[0]
    assert np.all(call["x0"] == 0.0)
    assert np.array_equal(call["lbg"][mpc.layout.initial_indices()], state)
    assert call["problem"].curve.coeffs == (0.0, 0.0, 0.0, 0.0)


def test_extraction_uses_layout(config):
    mpc = MPC(config, solver=RecordingSolver())
    solution = mpc.solve(VehicleState(v=10.0), STRAIGHT)
    lay = mpc.layout

    # The canned vector is arange(n_vars), so every entry equals its index
    assert isinstance(solution, MPCSolution)
    assert solution.ok
    assert solution.steering == lay.delta_start
    assert solution.throttle == lay.a_start
    assert solution.predicted_points.shape == (10, 2)
    assert np.array_equal(solution.predicted_points[:, 0], np.arange(0, 10))
    assert np.array_equal(solution.predicted_points[:, 1], np.arange(10, 20))
    assert solution.predicted_steering.size == 9
    assert solution.cost == 42.0

    assert mpc.first_delta == solution.steering
    assert mpc.first_a == solution.throttle
    assert np.array_equal(mpc.predicted_points, solution.predicted_points)
    assert mpc.state_trajectory(solution).shape == (10, 6)


def test_unsuccessful_solve_is_flagged_not_raised(config):
    mpc = MPC(config, solver=RecordingSolver(status="Maximum_CpuTime_Exceeded"))
    solution = mpc.solve([0, 0, 0, 10, 0, 0], STRAIGHT)

    assert solution.ok is False
    assert solution.status == "Maximum_CpuTime_Exceeded"
    # best-effort vector is still returned
    assert solution.steering == mpc.layout.delta_start


@pytest.mark.parametrize("state, coeffs", [
    ([0.0] * 5, STRAIGHT),
    ([0.0] * 7, STRAIGHT),
    ([0.0, 0.0, 0.0, np.nan, 0.0, 0.0], STRAIGHT),
    ([0.0] * 6, [0.0, 0.0, 0.0]),
    ([0.0] * 6, [0.0, 0.0, 0.0, 0.0, 0.0]),
    ([0.0] * 6, [0.0, np.inf, 0.0, 0.0]),
])
def test_malformed_input_fails_fast(config, state, coeffs):
    solver = RecordingSolver()
    mpc = MPC(config, solver=solver)
    with pytest.raises(ValueError):
        mpc.solve(state, coeffs)
    assert solver.calls == []


@pytest.mark.parametrize("field", ["x", "psi", "v", "epsi"])
def test_non_finite_vehicle_state_is_rejected(config, field):
    solver = RecordingSolver()
    mpc = MPC(config, solver=solver)
    with pytest.raises(ValueError):
        mpc.solve(VehicleState(**{field: float("nan")}), STRAIGHT)
    with pytest.raises(ValueError):
        VehicleState(v=float("inf"))
    assert solver.calls == []


def test_warm_start_shifts_previous_solution(config):
    warm = config.with_overrides(warm_start=True)
    solver = RecordingSolver()
    mpc = MPC(warm, solver=solver)
    state = [0.0, 0.0, 0.0, 10.0, 0.0, 0.0]

    mpc.solve(state, STRAIGHT)
    mpc.solve(state, STRAIGHT)
    lay = mpc.layout
    guess = solver.calls[1]["x0"]

    # x block was 0..9 -> shifted to 1..9, 9 with the t=0 entry pinned to the state
    assert np.array_equal(guess[lay.state_slice("x")], [0, 2, 3, 4, 5, 6, 7, 8, 9, 9])
    assert guess[lay.v_start] == 10.0
    assert np.array_equal(guess[lay.actuator_slice("delta")], np.append(np.arange(61, 69), 68))

    mpc.reset()
    mpc.solve(state, STRAIGHT)
    assert np.all(solver.calls[2]["x0"] == 0.0)


def test_no_cross_call_memory_by_default(config):
    solver = RecordingSolver()
    mpc = MPC(config, solver=solver)
    mpc.solve([0, 0, 0, 10, 0, 0], STRAIGHT)
    mpc.solve([0, 0, 0, 10, 0, 0], STRAIGHT)
    assert np.all(solver.calls[1]["x0"] == 0.0)


def test_curve_degree_must_match(config):
    mpc = MPC(config, solver=RecordingSolver())
    with pytest.raises(ValueError):
        mpc.solve([0, 0, 0, 10, 0, 0], ReferenceCurve((0.0, 1.0)))


# Ipopt scenarios

def test_straight_line_scenario(config):
    mpc = MPC(config)
    solution = mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], STRAIGHT)

    assert solution.ok
    assert abs(solution.steering) < 1e-3
    assert abs(solution.throttle) < 1e-3
    points = solution.predicted_points
    assert points.shape == (10, 2)
    assert np.allclose(points[:, 1], 0.0, atol=1e-4)
    assert np.allclose(np.diff(points[:, 0]), 10.0 * 0.1, atol=1e-3)


def test_inconsistent_cte_is_absorbed_after_first_step(config):
    mpc = MPC(config)
    solution = mpc.solve([0.0, 0.0, 0.0, 10.0, 1.0, 0.0], STRAIGHT)
    cte = mpc.state_trajectory(solution)[:, 4]

    assert solution.ok
    assert cte[0] == pytest.approx(1.0)
    assert np.allclose(cte[1:], 0.0, atol=1e-4)


def test_lateral_offset_steers_toward_path(config):
    # Path one metre to the left of the car
    mpc = MPC(config)
    solution = mpc.solve([0.0, 0.0, 0.0, 10.0, 1.0, 0.0], [1.0, 0.0, 0.0, 0.0])
    states = mpc.state_trajectory(solution)

    assert solution.ok
    assert solution.steering > 1e-3
    assert states[-1, 1] > 0.0


def test_steering_stays_within_lock(config):
    tight = config.with_overrides(steer_max=0.05)
    mpc = MPC(tight)
    solution = mpc.solve([0.0, 0.0, 0.0, 10.0, 5.0, 0.0], [5.0, 0.0, 0.0, 0.0])

    assert solution.ok
    assert np.all(np.abs(solution.predicted_steering) <= 0.05 + 1e-6)
    assert np.all(np.abs(solution.predicted_throttle) <= 0.7 + 1e-6)


def test_solve_is_repeatable(config):
    mpc = MPC(config)
    state = [0.0, 0.0, 0.0, 10.0, 0.3, -0.02]
    coeffs = [0.3, 0.02, 0.001, -0.0001]

    first = mpc.solve(state, coeffs)
    second = mpc.solve(state, coeffs)

    assert first.ok and second.ok
    assert first.steering == pytest.approx(second.steering, abs=1e-9)
    assert first.throttle == pytest.approx(second.throttle, abs=1e-9)
    assert np.allclose(first.predicted_points, second.predicted_points, atol=1e-9)
