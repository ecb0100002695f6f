import os
import tempfile

import numpy as np
import pandas as pd
import pytest

from enose_fit.data_loader import (
    MeasurementData,
    load_relative_series,
    load_sensor_failures,
    relative_deviation,
)


def test_relative_deviation_uses_first_row_as_baseline():
    absolute = pd.DataFrame({'a': [100.0, 110.0, 90.0], 'b': [50.0, 50.0, 75.0]}, index=[0, 1, 2])
    relative = relative_deviation(absolute)
    np.testing.assert_allclose(relative['a'], [0.0, 10.0, -10.0])
    np.testing.assert_allclose(relative['b'], [0.0, 0.0, 50.0])

    explicit = relative_deviation(absolute, baseline=[200.0, 25.0])
    assert explicit.loc[0, 'a'] == pytest.approx(-50.0)
    assert explicit.loc[2, 'b'] == pytest.approx(200.0)

    with pytest.raises(ValueError):
        relative_deviation(absolute, baseline=[0.0, 1.0])


def test_sensor_failure_bitstring():
    flags = load_sensor_failures("0101", 4)
    assert flags.tolist() == [False, True, False, True]
    assert not load_sensor_failures(None, 3).any()
    with pytest.raises(ValueError):
        load_sensor_failures("01", 4)
    with pytest.raises(ValueError):
        load_sensor_failures("01x1", 4)


def test_measurement_data_sorts_and_validates():
    relative = pd.DataFrame({'a': [3.0, 1.0, 2.0]}, index=[2, 0, 1])
    data = MeasurementData(relative)
    assert list(data.relative.index) == [0, 1, 2]
    assert data.start == 0 and data.end == 2
    assert data.n_channels == 1
    assert data.sensor_failures.tolist() == [False]
    with pytest.raises(ValueError):
        MeasurementData(relative, np.array([False, True]))


def test_load_relative_series_roundtrip():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'series.csv')
        with open(path, 'w', encoding='utf-8') as f:
            f.write("timestamp;ch1;ch2\n1;0.5;1.5\n0;0.0;1.0\n2;1.0;2.0\n")
        series = load_relative_series(path)

        assert list(series.index) == [0, 1, 2]
        assert list(series.columns) == ['ch1', 'ch2']
        assert series.loc[1, 'ch2'] == pytest.approx(1.5)

        with pytest.raises(FileNotFoundError):
            load_relative_series(os.path.join(tmp, 'missing.csv'))
