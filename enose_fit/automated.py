"""
Headless batch curve fit of a complete measurement.
"""
import dataclasses
import logging
import os
from typing import Any, Dict, Optional

from config.config_loader import load_config, get_section
from .core.fit_config import FitConfig
from .core.fit_worker import CurveFitWorker
from .data_loader import MeasurementData

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_PER_CHANNEL = 10  # s


class AutomatedFitWorker:
    """Fits all channels of a measurement without user interaction."""

    def __init__(self, data: MeasurementData, timeout: Optional[float] = None, n_cores: Optional[int] = None,
                 t_exposition: Optional[int] = None, t_recovery: Optional[int] = None,
                 t_offset: Optional[int] = None, config: Optional[Dict[str, Any]] = None,
                 fit_config: Optional[FitConfig] = None):
        """
        Initialize the batch fit.

        Args:
            data: Relative series and sensor failure flags
            timeout: Seconds to wait for the channel fits (default: 10s per channel)
            n_cores: Worker threads (default: all available cores)
            t_exposition: Exposition duration in s (default: until the end of the data)
            t_recovery: Recovery window in s (default: remaining data after the exposition)
            t_offset: Offset of the exposition start from the measurement start in s
            config: Configuration dictionary, loaded from config.yaml if omitted
            fit_config: Curve fit settings, taken from the `curve_fit` section if omitted
        """
        self.config = config if config is not None else load_config()
        auto_cfg = get_section(self.config, 'automated_fit')
        if fit_config is None:
            fit_config = FitConfig.from_dict(get_section(self.config, 'curve_fit'))

        t_offset = t_offset if t_offset is not None else int(auto_cfg.get('t_offset') or 0)
        if t_exposition is None:
            t_exposition = auto_cfg.get('t_exposition')
        if t_recovery is None:
            t_recovery = auto_cfg.get('t_recovery')

        self.data = data
        self.t_exposition_start = data.start + t_offset
        if t_exposition is None:
            self.t_exposition_end = data.end
        else:
            self.t_exposition_end = min(data.end, self.t_exposition_start + int(t_exposition))
        if self.t_exposition_start > self.t_exposition_end:
            raise ValueError(f"Exposition offset {t_offset}s lies beyond the end of the measurement")

        self.t_recovery = int(t_recovery) if t_recovery is not None else data.end - self.t_exposition_end
        fit_config = dataclasses.replace(fit_config, t_recovery=self.t_recovery)

        if timeout is None:
            per_channel = auto_cfg.get('timeout_per_channel') or DEFAULT_TIMEOUT_PER_CHANNEL
            timeout = data.n_channels * per_channel
        self.timeout = timeout
        self.n_cores = n_cores or auto_cfg.get('n_cores') or os.cpu_count() or 1

        self.worker = CurveFitWorker(
            data,
            data.n_channels,
            fit_config,
            window=(self.t_exposition_start, self.t_exposition_end),
        )

    def fit(self) -> bool:
        """
        Determine the channel ranges and fit all channels.

        Returns:
            True on completion, False if the timeout expired first
        """
        self.worker.determine_channel_ranges()
        logger.info(
            f"Starting curve fit: exposition [{self.t_exposition_start}, {self.t_exposition_end}], "
            f"recovery {self.t_recovery}s, max thread count {self.n_cores}, timeout {self.timeout}s"
        )
        success = self.worker.fit(self.n_cores, self.timeout)
        if success:
            logger.info("Automated curve fit succeeded")
        else:
            logger.warning("Automated curve fit timed out, results are partial")
        return success

    def save(self, file_path):
        self.worker.save(file_path)

    @property
    def results(self):
        return self.worker.results
