import numbers
from dataclasses import dataclass

from polyfit_mpc.vehicle.state import ACTUATOR_FIELDS, STATE_FIELDS


@dataclass(frozen=True)
class VariableLayout:
    """
    Flat decision vector layout shared by cost, constraints, bounds and extraction.

    Decision vector is stacked as:
    [x_0..x_{N-1}, y_*, psi_*, v_*, cte_*, epsi_*, delta_0..delta_{N-2}, a_0..a_{N-2}]
    """
    n: int

    def __post_init__(self):
        if not isinstance(self.n, numbers.Integral) or isinstance(self.n, bool) or self.n < 2:
            raise ValueError(f"Horizon must be an integer >= 2, got {self.n}")

    @property
    def x_start(self):
        return 0

    @property
    def y_start(self):
        return self.x_start + self.n

    @property
    def psi_start(self):
        return self.y_start + self.n

    @property
    def v_start(self):
        return self.psi_start + self.n

    @property
    def cte_start(self):
        return self.v_start + self.n

    @property
    def epsi_start(self):
        return self.cte_start + self.n

    @property
    def delta_start(self):
        return self.epsi_start + self.n

    @property
    def a_start(self):
        return self.delta_start + self.n - 1

    @property
    def n_vars(self):
        return len(STATE_FIELDS) * self.n + len(ACTUATOR_FIELDS) * (self.n - 1)

    @property
    def n_constraints(self):
        return len(STATE_FIELDS) * self.n

    def state_start(self, name):
        if name not in STATE_FIELDS:
            raise KeyError(f"Unknown state variable '{name}'")
        return getattr(self, f"{name}_start")

    def actuator_start(self, name):
        if name not in ACTUATOR_FIELDS:
            raise KeyError(f"Unknown actuator '{name}'")
        return getattr(self, f"{name}_start")

    def state_slice(self, name):
        start = self.state_start(name)
        return slice(start, start + self.n)

    def actuator_slice(self, name):
        start = self.actuator_start(name)
        return slice(start, start + self.n - 1)

    def initial_indices(self):
        """Positions of the t=0 state entries, in STATE_FIELDS order."""
        return [self.state_start(name) for name in STATE_FIELDS]

    def blocks(self):
        """Ordered (name, start, length) for every block of the vector."""
        blocks = [(name, self.state_start(name), self.n) for name in STATE_FIELDS]
        blocks += [(name, self.actuator_start(name), self.n - 1) for name in ACTUATOR_FIELDS]
        return blocks
