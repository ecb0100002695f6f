"""Unsupervised segmentation of channel time series into fit ranges.

For every channel the exposition start is detected as the first sample whose
successor deviates from a local linear drift model by more than
``jump_factor * sigma + jump_base_threshold``. Optionally the scan continues
until the local slope turns against the reaction direction, which marks the
start of the recovery phase. The samples between both points, shifted to the
exposition start and the drift baseline, form the channel's fit range.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .fit_config import FitConfig
from .linear_fit import LinearFitter

logger = logging.getLogger(__name__)


@dataclass
class ChannelRange:
    """Fit range of one channel."""
    x_start: int                  # timestamp of the exposition start
    x_end: int                    # timestamp of the exposition end
    y_offset: float = 0.0         # drift baseline at x_start
    sigma_noise: float = 0.0      # std deviation of the pre-exposition drift fit
    reaction_positive: bool = True
    samples: List[Tuple[float, float]] = field(default_factory=list)

    def timestamps(self) -> List[int]:
        return [int(round(t + self.x_start)) for t, _ in self.samples]


def window_bounds(series: pd.DataFrame, window: Optional[Tuple[int, int]] = None) -> Tuple[int, int]:
    """Clamp a (start, end) timestamp window to the series and return its index positions."""
    if series.empty:
        raise ValueError("Cannot determine channel ranges of an empty series")
    timestamps = series.index.to_numpy()
    if window is None:
        return 0, len(timestamps) - 1
    t_start, t_end = window
    first = int(np.searchsorted(timestamps, t_start, side='left'))
    last = int(np.searchsorted(timestamps, t_end, side='right')) - 1
    if first > last:
        raise ValueError(f"Window [{t_start}, {t_end}] contains no samples")
    return first, last


def _local_fit(timestamps: np.ndarray, values: np.ndarray, i: int, buffer: float,
               forward: bool, x_0: float) -> LinearFitter:
    """Line through the samples within `buffer` seconds before (or after) index i."""
    t_i = timestamps[i]
    if forward:
        hi = int(np.searchsorted(timestamps, t_i + buffer, side='left'))
        idx = slice(i, max(hi, i + 1))
    else:
        lo = int(np.searchsorted(timestamps, t_i - buffer, side='right'))
        idx = slice(min(lo, i), i + 1)
    return LinearFitter().fit(timestamps[idx] - x_0, values[idx])


def _pre_window_noise(timestamps: np.ndarray, values: np.ndarray, first: int, buffer: float) -> float:
    lo = int(np.searchsorted(timestamps, timestamps[first] - buffer, side='left'))
    if lo >= first:
        return 0.0
    x = timestamps[lo:first] - timestamps[first]
    return LinearFitter().fit(x, values[lo:first]).std_dev


def _collect_samples(timestamps: np.ndarray, values: np.ndarray, first: int, last: int,
                     x_start: int, x_end: int, y_offset: float) -> List[Tuple[float, float]]:
    ts = timestamps[first:last + 1]
    ys = values[first:last + 1]
    mask = (ts >= x_start) & (ts <= x_end)
    return [(float(t - x_start), float(y - y_offset)) for t, y in zip(ts[mask], ys[mask])]


def detect_channel_range(timestamps: np.ndarray, values: np.ndarray, first: int, last: int,
                         config: FitConfig) -> ChannelRange:
    """Determine the fit range of a single channel.

    Args:
        timestamps: All timestamps of the series (s), strictly increasing
        values: Relative deviation of the channel for every timestamp
        first: Index of the first sample of the detection window
        last: Index of the last sample of the detection window
        config: Detection settings

    Returns:
        ChannelRange; its samples are empty if no exposition start was found
    """
    buffer = float(config.fit_buffer)
    x_0 = timestamps[first]
    window_end = int(timestamps[last])

    if not config.detect_exposition_start:
        x_start = int(x_0)
        y_offset = float(values[first])
        sigma = _pre_window_noise(timestamps, values, first, buffer)
        samples = _collect_samples(timestamps, values, first, last, x_start, window_end, y_offset)
        return ChannelRange(x_start, window_end, y_offset, sigma, True, samples)

    in_range = False
    positive = True
    x_start = int(x_0)
    x_end = window_end
    y_offset = 0.0
    sigma = 0.0

    i = first
    while i <= last and i + 1 < len(timestamps):
        line = _local_fit(timestamps, values, i, buffer, forward=in_range, x_0=x_0)
        delta_y = values[i + 1] - line.model(timestamps[i + 1] - x_0)

        if not in_range and abs(delta_y) > config.jump_factor * line.std_dev + config.jump_base_threshold:
            x_start = int(timestamps[i])
            y_offset = float(line.model(x_start - x_0))
            sigma = line.std_dev
            positive = bool(delta_y > 0)
            in_range = True
        elif in_range:
            if not config.detect_recovery_start:
                x_end = window_end
                break
            recovery_threshold = config.recovery_factor * line.std_dev
            if (line.m < -recovery_threshold) if positive else (line.m > recovery_threshold):
                x_end = int(timestamps[i])
                break
        i += 1

    if not in_range:
        return ChannelRange(x_start, x_end, y_offset, sigma, positive, [])

    samples = _collect_samples(timestamps, values, first, last, x_start, x_end, y_offset)
    return ChannelRange(x_start, x_end, y_offset, sigma, positive, samples)


def determine_channel_ranges(series: pd.DataFrame, sensor_failures: Sequence[bool],
                             config: FitConfig,
                             window: Optional[Tuple[int, int]] = None) -> List[ChannelRange]:
    """Determine the fit range of every channel.

    Channels flagged in ``sensor_failures`` are not scanned; they get an
    empty range starting at the window start.
    """
    config.validate()
    first, last = window_bounds(series, window)
    timestamps = series.index.to_numpy(dtype=np.int64)
    data = series.to_numpy(dtype=float)
    n_channels = data.shape[1]
    if len(sensor_failures) != n_channels:
        raise ValueError(f"Sensor failure flags ({len(sensor_failures)}) do not match channel count ({n_channels})")

    ranges = []
    for channel in range(n_channels):
        if sensor_failures[channel]:
            ranges.append(ChannelRange(int(timestamps[first]), int(timestamps[last])))
            continue
        channel_range = detect_channel_range(timestamps, data[:, channel], first, last, config)
        logger.debug(
            f"Channel {channel}: x_start={channel_range.x_start}, x_end={channel_range.x_end}, "
            f"{len(channel_range.samples)} samples"
        )
        ranges.append(channel_range)
    return ranges
