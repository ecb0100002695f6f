"""Randomized-restart nonlinear least squares for the response models."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import least_squares

from .models import CurveModel, Samples, samples_to_arrays, signed_extreme

logger = logging.getLogger(__name__)

LEAST_SQUARES_N_FITS = 20
LEAST_SQUARES_LIMIT_FACTOR = 1.5
LEAST_SQUARES_MAX_EVALUATIONS = 500

TRUST_REGION = 'trf'
LEVENBERG_MARQUARDT = 'lm'


class LeastSquaresFitter:
    """Fits a CurveModel to (t, y) samples from random starting points.

    Each restart draws a parameter vector from ``model.random_parameters``,
    minimizes the sum of squared residuals and is discarded when the
    resulting parameters fail ``model.parameters_valid``. The valid result
    with the lowest residual sum of squares is kept in ``params``.
    """

    def __init__(self, model: CurveModel, rng: Optional[np.random.Generator] = None,
                 max_evaluations: int = LEAST_SQUARES_MAX_EVALUATIONS):
        self.model = model
        self.rng = rng if rng is not None else np.random.default_rng()
        self.max_evaluations = max_evaluations
        self.params = np.zeros(model.n_params)
        self.valid = False
        self.method: Optional[str] = None

    def solve(self, samples: Samples, n_iterations: int = LEAST_SQUARES_N_FITS,
              limit_factor: float = LEAST_SQUARES_LIMIT_FACTOR) -> bool:
        """Trust-region reflective strategy."""
        return self._solve(samples, n_iterations, limit_factor, TRUST_REGION)

    def solve_lm(self, samples: Samples, n_iterations: int = LEAST_SQUARES_N_FITS,
                 limit_factor: float = LEAST_SQUARES_LIMIT_FACTOR) -> bool:
        """Levenberg-Marquardt strategy."""
        return self._solve(samples, n_iterations, limit_factor, LEVENBERG_MARQUARDT)

    def residual_sum_of_squares(self, samples: Samples) -> float:
        return self.model.residual_sum_of_squares(self.params, samples)

    def _jacobian(self, params, t, y):
        return self.model.jacobian(t, params)

    def _solve(self, samples, n_iterations, limit_factor, method):
        t, y = samples_to_arrays(samples)
        y_limit = limit_factor * abs(signed_extreme(y))

        best_error = np.inf
        best_params = None
        for i in range(n_iterations):
            x0 = self.model.random_parameters(samples, self.rng)

            with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
                res = least_squares(
                    self.model.residuals,
                    x0,
                    jac=self._jacobian,
                    args=(t, y),
                    method=method,
                    x_scale='jac',
                    max_nfev=self.max_evaluations,
                )
            candidate = res.x
            error = float(np.sum(res.fun ** 2))

            if not np.isfinite(error) or not self.model.parameters_valid(candidate, y_limit):
                logger.debug(
                    f"[{method}] restart {i}: parameters invalid "
                    f"(plateau={candidate[0] + candidate[3]:.4g}, limit={y_limit:.4g}), result ignored"
                )
                continue

            if error < best_error:
                logger.debug(f"[{method}] restart {i}: improved error from {best_error:.6g} to {error:.6g}")
                best_error = error
                best_params = candidate.copy()

        self.method = method
        self.valid = best_params is not None
        self.params = best_params if self.valid else np.zeros(self.model.n_params)
        if self.valid:
            logger.debug(f"[{method}] best error: {best_error:.6g}")
        return self.valid


@dataclass
class ModelFit:
    """Winning parameters of a channel fit."""
    params: np.ndarray
    residual_sum_of_squares: float
    method: Optional[str]
    valid: bool


def fit_samples(model: CurveModel, samples: Samples,
                rngs: Sequence[np.random.Generator],
                n_iterations: int = LEAST_SQUARES_N_FITS,
                limit_factor: float = LEAST_SQUARES_LIMIT_FACTOR,
                max_evaluations: int = LEAST_SQUARES_MAX_EVALUATIONS) -> ModelFit:
    """Run both strategies on the samples and pick the better valid result.

    ``rngs`` holds one generator per strategy (trust-region first) so the two
    restart pools are drawn independently.
    """
    fitter = LeastSquaresFitter(model, rngs[0], max_evaluations)
    fitter_lm = LeastSquaresFitter(model, rngs[1], max_evaluations)
    fitter.solve(samples, n_iterations, limit_factor)
    fitter_lm.solve_lm(samples, n_iterations, limit_factor)

    candidates = [f for f in (fitter, fitter_lm) if f.valid]
    if not candidates:
        return ModelFit(np.zeros(model.n_params), np.inf, None, False)

    errors = [f.residual_sum_of_squares(samples) for f in candidates]
    best = candidates[int(np.argmin(errors))]
    return ModelFit(best.params, float(min(errors)), best.method, True)
