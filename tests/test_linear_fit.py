import numpy as np
import pytest

from enose_fit.core.linear_fit import LinearFitter


def test_exact_line_has_zero_noise():
    x = np.arange(10, dtype=float)
    line = LinearFitter().fit(x, 2.0 * x + 1.0)
    assert line.m == pytest.approx(2.0)
    assert line.b == pytest.approx(1.0)
    assert line.std_dev == pytest.approx(0.0, abs=1e-12)
    assert line.model(20.0) == pytest.approx(41.0)


def test_residual_std_dev_is_population_std():
    line = LinearFitter().fit([0, 1, 2, 3], [0, 1, 0, 1])
    assert line.m == pytest.approx(0.2)
    assert line.b == pytest.approx(0.2)
    # residuals 0.2, -0.6, 0.6, -0.2
    assert line.std_dev == pytest.approx(np.sqrt(0.2))


def test_noisy_line_recovers_slope():
    rng = np.random.default_rng(3)
    x = np.arange(200, dtype=float)
    y = -0.05 * x + 3.0 + rng.normal(0, 0.01, size=x.size)
    line = LinearFitter().fit(x, y)
    assert abs(line.m + 0.05) < 1e-3
    assert abs(line.std_dev - 0.01) < 3e-3


def test_fewer_than_four_points_report_no_noise():
    line = LinearFitter().fit([0, 1, 2], [0.0, 1.0, 0.5])
    assert line.std_dev == 0.0


def test_single_point_gives_horizontal_line():
    line = LinearFitter().fit([5.0], [1.5])
    assert line.m == 0.0
    assert line.model(100.0) == pytest.approx(1.5)


def test_empty_sample_raises():
    with pytest.raises(ValueError):
        LinearFitter().fit([], [])
