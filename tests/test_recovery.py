import numpy as np
import pandas as pd
import pytest

from enose_fit.core.recovery import determine_recovery_time


def _decay_series(plateau, tau, x_end=100, n_points=400, offset=0.5):
    t = np.arange(n_points)
    values = np.where(t < x_end, plateau, plateau * np.exp(-(t - x_end) / tau)) + offset
    return pd.Series(values, index=t)


def test_recovery_time_matches_analytic_crossing():
    series = _decay_series(plateau=4.0, tau=20.0)
    t10 = determine_recovery_time(series, x_end=100, y_offset=0.5, f_t90=3.6,
                                  t_recovery=300, t_average=1)
    # 10% of the plateau is reached after tau * ln(10)
    assert abs(t10 - 20.0 * np.log(10)) <= 1.0


def test_negative_reaction_uses_plateau_direction():
    series = _decay_series(plateau=-4.0, tau=20.0)
    t10 = determine_recovery_time(series, x_end=100, y_offset=0.5, f_t90=-3.6,
                                  t_recovery=300, t_average=1)
    assert abs(t10 - 20.0 * np.log(10)) <= 1.0


def test_rolling_average_delays_crossing():
    series = _decay_series(plateau=4.0, tau=20.0)
    t10_raw = determine_recovery_time(series, 100, 0.5, 3.6, 300, t_average=1)
    t10_avg = determine_recovery_time(series, 100, 0.5, 3.6, 300, t_average=4)
    assert t10_raw <= t10_avg <= t10_raw + 4


def test_recovery_time_is_censored_without_crossing():
    series = _decay_series(plateau=4.0, tau=1000.0)
    t10 = determine_recovery_time(series, x_end=100, y_offset=0.5, f_t90=3.6,
                                  t_recovery=120, t_average=4)
    assert t10 == 120.0


def test_no_data_after_exposition_is_censored():
    series = _decay_series(plateau=4.0, tau=20.0, n_points=100)
    assert determine_recovery_time(series, 150, 0.5, 3.6, 60) == 60.0
    assert determine_recovery_time(series, 50, 0.5, 0.0, 60) == pytest.approx(60.0)


def test_fractional_average_window():
    series = _decay_series(plateau=4.0, tau=20.0)
    t10_single = determine_recovery_time(series, 100, 0.5, 3.6, 300, t_average=1)
    # half a second still covers the current sample
    assert determine_recovery_time(series, 100, 0.5, 3.6, 300, t_average=0.5) == t10_single
    # 2.5s covers three one-second samples, like a 3s window
    t10_wide = determine_recovery_time(series, 100, 0.5, 3.6, 300, t_average=2.5)
    assert t10_wide == determine_recovery_time(series, 100, 0.5, 3.6, 300, t_average=3)
    assert t10_wide > t10_single
