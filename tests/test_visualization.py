import os
import tempfile

import numpy as np
import pandas as pd

from enose_fit.core.fit_config import FitConfig
from enose_fit.core.fit_worker import CurveFitWorker
from enose_fit.core.models import SuperpositionModel
from enose_fit.data_loader import MeasurementData
from enose_fit.visualization import plot_channel_fit, save_fit_plots


def test_plot_channel_fit_saves_png():
    samples = [(float(t), 1.0 - np.exp(-0.1 * t)) for t in range(50)]
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'fit.png')
        fig = plot_channel_fit(samples, samples, channel=0, tau90=23.0, save_path=path)
        assert os.path.getsize(path) > 0
    assert fig.axes[0].get_title() == 'Channel 1 (tau90 = 23.0 s)'


def test_save_fit_plots_for_valid_channels():
    rng = np.random.default_rng(0)
    t = np.arange(120)
    params = np.array([2.0, 0.2, 0.0, 1.0, 0.05, 0.0])
    values = np.where(t < 20, 0.0, SuperpositionModel().evaluate(t - 20, params))
    relative = pd.DataFrame({'a': values + rng.normal(0.0, 0.01, t.size), 'b': values},
                            index=pd.Index(t, dtype=np.int64))
    data = MeasurementData(relative, np.array([False, True]))
    config = FitConfig(detect_exposition_start=False, n_iterations=4, random_seed=5)
    worker = CurveFitWorker(data, 2, config, window=(20, 119))
    worker.fit(n_workers=2, timeout=120)

    with tempfile.TemporaryDirectory() as tmp:
        paths = save_fit_plots(worker, tmp)
        assert [os.path.basename(p) for p in paths] == ['fit_ch1.png']
        assert os.path.isfile(paths[0])
