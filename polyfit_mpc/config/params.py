import numbers
from dataclasses import dataclass, field, replace
from types import MappingProxyType

# 10 steps of 100 ms -> 1 s of look-ahead
DT = 0.1
HORIZON = 10
SIM_STEPS = 300

# Front axle to CoG distance. Tuned until the turning radius of the model
# matched the radius driven at constant steering and speed.
LF = 2.67

REFERENCE = dict(
    cte=0.0,
    epsi=0.0,
    v=110.0
)

# Tracking errors dominate, actuator magnitude barely matters,
# sequential actuator gaps are penalised to reduce jerk.
WEIGHTS = dict(
    cte=2500.0,
    epsi=2500.0,
    v=1.0,
    delta=1.0,
    a=1.0,
    delta_diff=200.0,
    a_diff=10.0
)

LIMITS = dict(
    steer_max=0.436332 * LF,  # 25 deg in rad, scaled by Lf
    accel_max=0.7
)

SOLVER = dict(
    name="ipopt",
    max_cpu_time=0.5,
    tol=1e-8,
    max_iter=3000,
    # Ipopt treats |bound| >= 1e19 as infinite
    bound_sentinel=1.0e19,
    sqp_max_iter=50,
    sqp_step_tol=1e-5,
    sqp_feas_tol=1e-5
)

SOLVER_NAMES = ("ipopt", "sqp")


def _is_int(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


@dataclass(frozen=True)
class MPCConfig:
    """Immutable tuning of one MPC instance."""

    horizon: int = HORIZON
    dt: float = DT
    lf: float = LF
    ref_cte: float = REFERENCE["cte"]
    ref_epsi: float = REFERENCE["epsi"]
    ref_v: float = REFERENCE["v"]
    w_cte: float = WEIGHTS["cte"]
    w_epsi: float = WEIGHTS["epsi"]
    w_v: float = WEIGHTS["v"]
    w_delta: float = WEIGHTS["delta"]
    w_a: float = WEIGHTS["a"]
    w_delta_diff: float = WEIGHTS["delta_diff"]
    w_a_diff: float = WEIGHTS["a_diff"]
    steer_max: float = LIMITS["steer_max"]
    accel_max: float = LIMITS["accel_max"]
    solver: str = SOLVER["name"]
    max_cpu_time: float = SOLVER["max_cpu_time"]
    tol: float = SOLVER["tol"]
    max_iter: int = SOLVER["max_iter"]
    bound_sentinel: float = SOLVER["bound_sentinel"]
    sqp_max_iter: int = SOLVER["sqp_max_iter"]
    sqp_step_tol: float = SOLVER["sqp_step_tol"]
    sqp_feas_tol: float = SOLVER["sqp_feas_tol"]
    warm_start: bool = False
    poly_degree: int = 3
    ipopt_options: MappingProxyType = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "ipopt_options", MappingProxyType(dict(self.ipopt_options)))
        self.validate()

    @classmethod
    def from_params(cls, **overrides):
        """
        Build a config from the module constants, applying overrides.

        Args:
            overrides: Field values replacing the defaults (e.g. horizon=20)

        Returns:
            config: Validated MPCConfig
        """
        unknown = set(overrides) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown MPC parameters: {sorted(unknown)}")
        return cls(**overrides)

    def with_overrides(self, **overrides):
        return replace(self, **overrides)

    @property
    def horizon_time(self):
        return self.horizon * self.dt

    def validate(self):
        if not _is_int(self.horizon) or self.horizon < 2:
            raise ValueError(f"Horizon must be an integer >= 2, got {self.horizon}")
        if self.dt <= 0:
            raise ValueError(f"Timestep must be positive, got {self.dt}")
        if self.lf <= 0:
            raise ValueError(f"Lf must be positive, got {self.lf}")

        weights = dict(
            w_cte=self.w_cte, w_epsi=self.w_epsi, w_v=self.w_v,
            w_delta=self.w_delta, w_a=self.w_a,
            w_delta_diff=self.w_delta_diff, w_a_diff=self.w_a_diff
        )
        for name, value in weights.items():
            if value <= 0:
                raise ValueError(f"Weight {name} must be positive, got {value}")

        if self.steer_max <= 0 or self.accel_max <= 0:
            raise ValueError("Actuator limits must be positive")
        if self.steer_max >= self.bound_sentinel or self.accel_max >= self.bound_sentinel:
            raise ValueError("Actuator limits must stay below the bound sentinel")
        if self.solver not in SOLVER_NAMES:
            raise ValueError(f"Unknown solver '{self.solver}', expected one of {SOLVER_NAMES}")
        if self.max_cpu_time <= 0:
            raise ValueError("Solver time budget must be positive")
        if not _is_int(self.sqp_max_iter) or self.sqp_max_iter < 1:
            raise ValueError(f"SQP iteration limit must be an integer >= 1, got {self.sqp_max_iter}")
        if self.sqp_step_tol <= 0 or self.sqp_feas_tol <= 0:
            raise ValueError("SQP tolerances must be positive")
        if self.poly_degree < 1:
            raise ValueError("Reference polynomial degree must be >= 1")
