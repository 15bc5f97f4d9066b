"""
Nonlinear program backends.

Every backend takes a ProblemBuilder plus start point and bounds, and
returns a SolverResult holding the status, the (possibly best-effort)
decision vector and the objective value. None of them retries.
"""
import logging
import time
from dataclasses import dataclass

import casadi as ca
import numpy as np
import osqp
import scipy.sparse as sp

logger = logging.getLogger(__name__)

SUCCESS = "Solve_Succeeded"


@dataclass
class SolverResult:
    status: str
    success: bool
    x: np.ndarray
    obj_value: float
    iterations: int = 0
    solve_time: float = 0.0


class IpoptSolver:
    """
    Interior point solve through casadi's Ipopt interface.

    The time budget is handed to Ipopt twice: as max_cpu_time (process CPU
    time) and as max_wall_time (elapsed time). Whichever runs out first stops
    the solve. Building the casadi function graph happens before Ipopt's own
    clocks start and is only reported in solve_time.
    """

    name = "ipopt"

    def __init__(self, config):
        self.config = config

    def options(self):
        cfg = self.config
        opts = {
            "ipopt.print_level": 0,
            "ipopt.sb": "yes",
            "print_time": 0,
            "ipopt.max_cpu_time": cfg.max_cpu_time,
            "ipopt.max_wall_time": cfg.max_cpu_time,
            "ipopt.tol": cfg.tol,
            "ipopt.max_iter": cfg.max_iter,
            "error_on_fail": False,
        }
        opts.update(cfg.ipopt_options)
        return opts

    def solve(self, problem, x0, lbx, ubx, lbg, ubg):
        start = time.perf_counter()
        solver = ca.nlpsol("mpc", "ipopt", problem.symbolic(), self.options())
        sol = solver(x0=x0, lbx=lbx, ubx=ubx, lbg=lbg, ubg=ubg)
        elapsed = time.perf_counter() - start

        stats = solver.stats()
        status = stats.get("return_status", "unknown")
        return SolverResult(
            status=status,
            success=status == SUCCESS,
            x=np.array(sol["x"]).flatten(),
            obj_value=float(sol["f"]),
            iterations=int(stats.get("iter_count", 0)),
            solve_time=elapsed
        )


class SqpSolver:
    """
    Sequential quadratic programming with OSQP subproblems.

    The objective is quadratic in the decision vector, so its Hessian is
    constant. Each iteration linearises the constraint residuals around the
    current iterate and solves for the step d:

        min  1/2 d^T (H + rho I) d + grad^T d
        s.t. lbg - g(z) <= J(z) d <= ubg - g(z)
             lbx - z    <=   d    <= ubx - z

    The proximal term rho keeps the x, y and psi blocks, which carry no cost,
    strictly convex. It vanishes at a fixed point (d = 0), so it does not
    move the solution. Converged means a small step and constraint residuals
    within sqp_feas_tol.

    The time budget is elapsed (wall clock) time measured from the start of
    solve, including building the casadi functions. It is checked after each
    iteration, so a solve can overrun it by at most one QP.
    """

    name = "sqp"

    REGULARIZATION = 1e-4
    QP_EPS = 1e-6
    QP_MAX_ITER = 20000
    # OSQP statuses whose iterate is usable as a step
    QP_ACCEPTED = ("solved", "solved inaccurate", "maximum iterations reached")

    def __init__(self, config):
        self.config = config

    def _functions(self, problem):
        nlp = problem.symbolic()
        w, f, g = nlp["x"], nlp["f"], nlp["g"]
        H, _ = ca.hessian(f, w)
        cost = ca.Function("cost", [w], [f, ca.gradient(f, w)])
        cons = ca.Function("constraints", [w], [g, ca.jacobian(g, w)])
        hess = ca.Function("cost_hessian", [w], [H])
        return cost, cons, hess

    def _finite(self, bounds):
        bounds = np.asarray(bounds, dtype=float).copy()
        sentinel = self.config.bound_sentinel
        bounds[bounds >= sentinel] = np.inf
        bounds[bounds <= -sentinel] = -np.inf
        return bounds

    @staticmethod
    def _violation(values, lower, upper):
        """Largest distance of values outside [lower, upper]."""
        if values.size == 0:
            return 0.0
        return float(np.max(np.abs(values - np.clip(values, lower, upper))))

    def _qp_step(self, P, grad, J, g, z, lbx, ubx, lbg, ubg):
        n = z.size
        A = sp.vstack([sp.csc_matrix(J), sp.eye(n, format="csc")], format="csc")
        l = np.hstack([lbg - g, lbx - z])
        u = np.hstack([ubg - g, ubx - z])

        solver = osqp.OSQP()
        solver.setup(P=P, q=grad, A=A, l=l, u=u, eps_abs=self.QP_EPS, eps_rel=self.QP_EPS,
                     max_iter=self.QP_MAX_ITER, polishing=True, verbose=False)
        res = solver.solve(raise_error=False)

        status = res.info.status
        if res.x is None or status not in self.QP_ACCEPTED or not np.all(np.isfinite(res.x)):
            logger.warning("OSQP subproblem failed: %s", status)
            return None
        if status != "solved":
            logger.debug("OSQP subproblem returned '%s', using its iterate", status)
        return np.asarray(res.x, dtype=float)

    def solve(self, problem, x0, lbx, ubx, lbg, ubg):
        cfg = self.config
        start = time.perf_counter()
        cost, cons, hess = self._functions(problem)

        z = np.asarray(x0, dtype=float).copy()
        lbx, ubx = self._finite(lbx), self._finite(ubx)
        lbg, ubg = self._finite(lbg), self._finite(ubg)

        H = np.array(hess(z))
        P = sp.triu(sp.csc_matrix(H) + self.REGULARIZATION * sp.eye(z.size), format="csc")

        g, J = cons(z)
        g = np.array(g).flatten()

        status = "Maximum_Iterations_Exceeded"
        iterations = 0

        for iterations in range(1, cfg.sqp_max_iter + 1):
            _, grad = cost(z)
            d = self._qp_step(P, np.array(grad).flatten(), np.array(J), g, z, lbx, ubx, lbg, ubg)
            if d is None:
                status = "QP_Failed"
                break

            z = z + d
            g, J = cons(z)
            g = np.array(g).flatten()

            step_norm = float(np.linalg.norm(d, ord=np.inf))
            violation = max(self._violation(g, lbg, ubg), self._violation(z, lbx, ubx))
            logger.debug("SQP iter %d: |d|=%.3e, violation=%.3e", iterations, step_norm, violation)

            if step_norm < cfg.sqp_step_tol and violation < cfg.sqp_feas_tol:
                status = SUCCESS
                break

            if time.perf_counter() - start > cfg.max_cpu_time:
                status = "Maximum_WallTime_Exceeded"
                break

        f_val, _ = cost(z)
        return SolverResult(
            status=status,
            success=status == SUCCESS,
            x=z,
            obj_value=float(f_val),
            iterations=iterations,
            solve_time=time.perf_counter() - start
        )


SOLVERS = {
    IpoptSolver.name: IpoptSolver,
    SqpSolver.name: SqpSolver,
}


def make_solver(config):
    try:
        return SOLVERS[config.solver](config)
    except KeyError:
        raise ValueError(f"Unknown solver '{config.solver}', expected one of {sorted(SOLVERS)}") from None
