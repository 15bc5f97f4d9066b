import casadi as ca
import numpy as np

from polyfit_mpc.control.layout import VariableLayout
from polyfit_mpc.vehicle.dynamics import step


class ProblemBuilder:
    """
    Objective and constraint residuals of the tracking NLP.

    Works on any indexable vector whose elements support arithmetic:
    numpy arrays for numeric evaluation, casadi SX for building the NLP.
    Holds nothing but the reference curve, config and layout, so it is
    safe to call repeatedly and from several threads.
    """

    def __init__(self, curve, config, layout=None):
        self.curve = curve
        self.config = config
        self.layout = layout if layout is not None else VariableLayout(config.horizon)
        if self.layout.n != config.horizon:
            raise ValueError(
                f"Layout horizon {self.layout.n} does not match config horizon {config.horizon}"
            )

    def cost(self, vars):
        """
        sum w_cte (cte_t - ref_cte)^2 + w_epsi (epsi_t - ref_epsi)^2 + w_v (v_t - ref_v)^2
          + w_delta delta_t^2 + w_a a_t^2
          + w_delta_diff (delta_{t+1} - delta_t)^2 + w_a_diff (a_{t+1} - a_t)^2
        """
        cfg, lay = self.config, self.layout
        n = lay.n
        J = 0

        # Reference state
        for t in range(n):
            J += cfg.w_cte * (vars[lay.cte_start + t] - cfg.ref_cte) ** 2
            J += cfg.w_epsi * (vars[lay.epsi_start + t] - cfg.ref_epsi) ** 2
            J += cfg.w_v * (vars[lay.v_start + t] - cfg.ref_v) ** 2

        # Actuator magnitude
        for t in range(n - 1):
            J += cfg.w_delta * vars[lay.delta_start + t] ** 2
            J += cfg.w_a * vars[lay.a_start + t] ** 2

        # Gap between sequential actuations
        for t in range(n - 2):
            J += cfg.w_delta_diff * (vars[lay.delta_start + t + 1] - vars[lay.delta_start + t]) ** 2
            J += cfg.w_a_diff * (vars[lay.a_start + t + 1] - vars[lay.a_start + t]) ** 2

        return J

    def constraints(self, vars):
        """
        Residual vector of length 6N.

        Entry state_start(name) holds the t=0 value of that state (pinned by
        its bounds); entry state_start(name) + 1 + t holds
        state_{t+1} - model(state_t, u_t), driven to zero by the solver.
        """
        lay, cfg = self.layout, self.config
        n = lay.n
        starts = lay.initial_indices()
        g = [None] * lay.n_constraints

        for start in starts:
            g[start] = vars[start]

        for t in range(n - 1):
            current = [vars[start + t] for start in starts]
            following = [vars[start + t + 1] for start in starts]
            u = (vars[lay.delta_start + t], vars[lay.a_start + t])

            predicted = step(current, u, cfg.dt, cfg.lf, self.curve)
            for start, nxt, pred in zip(starts, following, predicted):
                g[start + 1 + t] = nxt - pred

        return g

    def __call__(self, vars):
        """fg vector: objective at index 0, constraint residuals at 1..6N."""
        return [self.cost(vars)] + self.constraints(vars)

    def evaluate(self, vars):
        """Numeric objective and residuals for a plain decision vector."""
        vars = np.asarray(vars, dtype=float).reshape(-1)
        if vars.size != self.layout.n_vars:
            raise ValueError(f"Decision vector must have {self.layout.n_vars} entries, got {vars.size}")
        return float(self.cost(vars)), np.array(self.constraints(vars), dtype=float)

    def symbolic(self):
        """casadi NLP dict {'x', 'f', 'g'} over an SX decision vector."""
        w = ca.SX.sym("w", self.layout.n_vars)
        elements = [w[i] for i in range(self.layout.n_vars)]
        return {"x": w, "f": self.cost(elements), "g": ca.vertcat(*self.constraints(elements))}

