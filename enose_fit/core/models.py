"""Parametric response models fitted to the exposition phase of a channel."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple, Type

import numpy as np
from scipy.optimize import minimize_scalar

logger = logging.getLogger(__name__)

Samples = Sequence[Tuple[float, float]]


def samples_to_arrays(samples: Samples) -> Tuple[np.ndarray, np.ndarray]:
    """Split a list of (t, y) pairs into two float arrays."""
    if len(samples) == 0:
        return np.empty(0, dtype=float), np.empty(0, dtype=float)
    arr = np.asarray(samples, dtype=float)
    return arr[:, 0], arr[:, 1]


def signed_extreme(y: np.ndarray) -> float:
    """Value of largest magnitude, keeping its sign (0 for an empty array)."""
    if y.size == 0:
        return 0.0
    return float(y[np.argmax(np.abs(y))])


def _minimize_abs(fun, x0: float, step: float = 1.0) -> float:
    """Location of the minimum of a 1-D function, searched downhill from x0."""
    try:
        res = minimize_scalar(fun, bracket=(x0, x0 + step), method='brent')
    except RuntimeError as e:
        # flat objective: no bracket exists, x0 is as good as any point
        logger.debug(f"No bracket found around t={x0:.3f}: {e}")
        return float(x0)
    return float(res.x)


class CurveModel(ABC):
    """Base class for nonlinear models f(t; params) fitted by least squares."""

    parameter_names: List[str] = []
    function_string: str = ""

    @property
    def n_params(self) -> int:
        return len(self.parameter_names)

    @abstractmethod
    def evaluate(self, t, params: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def jacobian(self, t, params: np.ndarray) -> np.ndarray:
        """Partial derivatives of f, shape (len(t), n_params)."""

    @abstractmethod
    def random_parameters(self, samples: Samples, rng: np.random.Generator) -> np.ndarray:
        ...

    @abstractmethod
    def parameters_valid(self, params: np.ndarray, y_limit: float) -> bool:
        ...

    @abstractmethod
    def tau_90(self, params: np.ndarray) -> float:
        ...

    @abstractmethod
    def f_t_90(self, params: np.ndarray) -> float:
        ...

    def residuals(self, params: np.ndarray, t: np.ndarray, y: np.ndarray) -> np.ndarray:
        return self.evaluate(t, params) - y

    def residual_sum_of_squares(self, params: np.ndarray, samples: Samples) -> float:
        t, y = samples_to_arrays(samples)
        with np.errstate(over='ignore', invalid='ignore'):
            res = self.residuals(params, t, y)
        return float(np.sum(res ** 2))

    def tooltips(self) -> List[str]:
        return [f"parameter {name}\n\n{self.function_string}" for name in self.parameter_names]


class SuperpositionModel(CurveModel):
    """Superposition of two asymptotic regression models.

    f(t) = alpha_1 * (1 - e^(-beta_1 * (t - t0_1))) + alpha_2 * (1 - e^(-beta_2 * (t - t0_2)))
    """

    parameter_names = ["alpha_1", "beta_1", "t0_1", "alpha_2", "beta_2", "t0_2"]
    function_string = "f(t) = alpha_1 * (1 - e^(-beta_1 * (t - t0_1))) + alpha_2 * (1 - e^(-beta_2 * (t - t0_2)))"

    def evaluate(self, t, params):
        a1, b1, t01, a2, b2, t02 = params
        t = np.asarray(t, dtype=float)
        return a1 * (1.0 - np.exp(-b1 * (t - t01))) + a2 * (1.0 - np.exp(-b2 * (t - t02)))

    def jacobian(self, t, params):
        a1, b1, t01, a2, b2, t02 = params
        t = np.asarray(t, dtype=float)
        e1 = np.exp(-b1 * (t - t01))
        e2 = np.exp(-b2 * (t - t02))
        return np.column_stack([
            1.0 - e1,
            a1 * (t - t01) * e1,
            -a1 * b1 * e1,
            1.0 - e2,
            a2 * (t - t02) * e2,
            -a2 * b2 * e2,
        ])

    def random_parameters(self, samples, rng):
        t, y = samples_to_arrays(samples)
        t_first = float(t.min()) if t.size else 0.0
        t_last = float(t.max()) if t.size else 0.0
        y_max = signed_extreme(y)
        duration = t_last - t_first
        if duration <= 0:
            duration = 1.0

        u = rng.random(self.n_params)
        params = np.empty(self.n_params, dtype=float)
        # alpha in (0, y_max)
        params[0] = u[0] * y_max
        params[3] = u[3] * y_max
        # beta in (0, 2 * ln(10) / duration): tau90 of the order of the window
        params[1] = 2.0 * u[1] * np.log(10) / duration
        params[4] = 2.0 * u[4] * np.log(10) / duration
        # t0 = t_first +- 10s
        params[2] = t_first + (u[2] - 0.5) * 20.0
        params[5] = t_first + (u[5] - 0.5) * 20.0
        return params

    def parameters_valid(self, params, y_limit):
        params = np.asarray(params, dtype=float)
        if params.shape != (self.n_params,) or not np.all(np.isfinite(params)):
            return False
        a1, b1, _, a2, b2, _ = params

        not_zero = not np.allclose(params, 0.0)
        plateau_valid = abs(a1 + a2) < y_limit
        same_sign = (a1 > 0) == (a2 > 0)
        beta_valid = b1 >= 0.0 and b2 >= 0.0
        return bool(not_zero and plateau_valid and same_sign and beta_valid)

    def tau_90(self, params):
        """Time from the zero crossing of f until 90% of the plateau is reached.

        Both points are found by a 1-D minimization started at the mean of
        the two t0 parameters.
        """
        a1, b1, t01, a2, b2, t02 = params
        t_start = 0.5 * (t01 + t02)
        target = self.f_t_90(params)

        def abs_f(x):
            with np.errstate(over='ignore', invalid='ignore'):
                return abs(float(self.evaluate(x, params)))

        def abs_f_minus_target(x):
            with np.errstate(over='ignore', invalid='ignore'):
                return abs(float(self.evaluate(x, params)) - target)

        t_zero = _minimize_abs(abs_f, t_start)
        t_90 = _minimize_abs(abs_f_minus_target, t_start)
        return t_90 - t_zero

    def f_t_90(self, params):
        return 0.9 * (params[0] + params[3])


MODEL_TYPES: Dict[str, Type[CurveModel]] = {
    "Exposition": SuperpositionModel,
}


def create_model(type_name: str) -> CurveModel:
    try:
        return MODEL_TYPES[type_name]()
    except KeyError:
        raise ValueError(f"Unknown model type: {type_name}. Must be one of {list(MODEL_TYPES)}") from None
