import numpy as np
import pytest
from scipy.optimize import brentq

from enose_fit.core.models import SuperpositionModel, create_model
from enose_fit.core.optimizer import LeastSquaresFitter, fit_samples

TRUE_PARAMS = np.array([3.0, 0.2, 0.0, 2.0, 0.02, 0.0])


def _synthetic_samples(params=TRUE_PARAMS, n_points=301, noise=0.01, seed=0):
    rng = np.random.default_rng(seed)
    model = SuperpositionModel()
    t = np.arange(n_points, dtype=float)
    y = model.evaluate(t, params) + rng.normal(0.0, noise, size=t.size)
    return list(zip(t.tolist(), y.tolist()))


def _components(params):
    """(alpha, beta, t0) triplets, fast component first."""
    comps = [tuple(params[0:3]), tuple(params[3:6])]
    return sorted(comps, key=lambda c: -c[1])


def _analytic_tau90(params):
    model = SuperpositionModel()
    target = 0.9 * (params[0] + params[3])
    t_zero = brentq(lambda t: float(model.evaluate(t, params)), -50.0, 50.0)
    t_90 = brentq(lambda t: float(model.evaluate(t, params)) - target, t_zero, 1000.0)
    return t_90 - t_zero


def test_jacobian_matches_finite_differences():
    model = SuperpositionModel()
    params = np.array([1.5, 0.1, 2.0, 0.7, 0.03, -3.0])
    t = np.linspace(0.0, 100.0, 25)
    jac = model.jacobian(t, params)
    eps = 1e-6
    for k in range(6):
        step = np.zeros(6)
        step[k] = eps
        numeric = (model.evaluate(t, params + step) - model.evaluate(t, params - step)) / (2 * eps)
        np.testing.assert_allclose(jac[:, k], numeric, rtol=1e-5, atol=1e-7)


def test_parameters_valid_rules():
    model = SuperpositionModel()
    assert model.parameters_valid(TRUE_PARAMS, y_limit=10.0)
    # all zero
    assert not model.parameters_valid(np.zeros(6), y_limit=10.0)
    # plateau above the limit
    assert not model.parameters_valid(TRUE_PARAMS, y_limit=4.0)
    # alphas of different sign
    assert not model.parameters_valid(np.array([3.0, 0.2, 0.0, -1.0, 0.02, 0.0]), y_limit=10.0)
    # negative beta
    assert not model.parameters_valid(np.array([3.0, -0.2, 0.0, 2.0, 0.02, 0.0]), y_limit=10.0)
    # negative reaction
    assert model.parameters_valid(np.array([-3.0, 0.2, 0.0, -2.0, 0.02, 0.0]), y_limit=10.0)
    assert not model.parameters_valid(np.array([np.nan, 0.2, 0.0, 2.0, 0.02, 0.0]), y_limit=10.0)


def test_random_parameters_within_heuristic_ranges():
    model = SuperpositionModel()
    samples = _synthetic_samples(noise=0.0)
    rng = np.random.default_rng(1)
    y_max = max(y for _, y in samples)
    beta_max = 2 * np.log(10) / 300.0
    for _ in range(50):
        p = model.random_parameters(samples, rng)
        assert 0.0 <= p[0] <= y_max and 0.0 <= p[3] <= y_max
        assert 0.0 <= p[1] <= beta_max and 0.0 <= p[4] <= beta_max
        assert -10.0 <= p[2] <= 10.0 and -10.0 <= p[5] <= 10.0


def test_tau90_single_exponential_is_analytic():
    model = SuperpositionModel()
    params = np.array([1.0, 0.1, 0.0, 1.0, 0.1, 0.0])
    assert model.tau_90(params) == pytest.approx(np.log(10) / 0.1, rel=1e-4)
    assert model.f_t_90(params) == pytest.approx(1.8)


def test_tau90_superposition_matches_root_finding():
    model = SuperpositionModel()
    assert model.tau_90(TRUE_PARAMS) == pytest.approx(_analytic_tau90(TRUE_PARAMS), rel=1e-4)


def test_create_model_unknown_type():
    assert isinstance(create_model("Exposition"), SuperpositionModel)
    with pytest.raises(ValueError):
        create_model("Polynomial")


def test_fit_recovers_known_parameters():
    model = SuperpositionModel()
    samples = _synthetic_samples(seed=5)
    rngs = [np.random.default_rng(11), np.random.default_rng(12)]
    fit = fit_samples(model, samples, rngs, n_iterations=10, limit_factor=1.5)

    assert fit.valid
    assert fit.method in ('trf', 'lm')
    for (a, b, t0), (a_true, b_true, t0_true) in zip(_components(fit.params), _components(TRUE_PARAMS)):
        assert a == pytest.approx(a_true, rel=0.05)
        assert b == pytest.approx(b_true, rel=0.1)
        assert abs(t0 - t0_true) < 1.0

    assert model.f_t_90(fit.params) == pytest.approx(0.9 * 5.0, rel=0.01)
    assert model.tau_90(fit.params) == pytest.approx(_analytic_tau90(TRUE_PARAMS), rel=0.02)
    sigma_error = np.sqrt(fit.residual_sum_of_squares / len(samples))
    assert sigma_error == pytest.approx(0.01, rel=0.2)


def test_best_strategy_has_lowest_residual():
    model = SuperpositionModel()
    samples = _synthetic_samples(seed=8)
    rngs = [np.random.default_rng(21), np.random.default_rng(22)]
    fit = fit_samples(model, samples, rngs, n_iterations=5)

    trf = LeastSquaresFitter(model, np.random.default_rng(21))
    lm = LeastSquaresFitter(model, np.random.default_rng(22))
    trf.solve(samples, 5)
    lm.solve_lm(samples, 5)
    errors = [f.residual_sum_of_squares(samples) for f in (trf, lm) if f.valid]
    assert fit.residual_sum_of_squares == pytest.approx(min(errors))


def test_invalid_results_are_discarded():
    model = SuperpositionModel()
    samples = _synthetic_samples(seed=2)
    fitter = LeastSquaresFitter(model, np.random.default_rng(0))
    # plateau limit far below the data
    assert not fitter.solve(samples, n_iterations=3, limit_factor=0.01)
    assert not fitter.valid
    assert np.all(fitter.params == 0.0)

    fit = fit_samples(model, samples, [np.random.default_rng(1), np.random.default_rng(2)],
                      n_iterations=3, limit_factor=0.01)
    assert not fit.valid
