"""Concurrent per-channel curve fitting.

`CurveFitWorker` owns the channel ranges of one measurement and fits every
channel in its own task on a bounded thread pool. Every task belongs to one
fit run; under a lock it stores its channel slot and counts itself finished,
but only while its run is still current. A timeout or a new run expires the
old tasks, whose results are then dropped. Progress and error notifications
are put on ``events`` and passed to an optional sink.
"""

import logging
import os
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..data_loader import MeasurementData
from .fit_config import FitConfig, DETECTION_FIELDS
from .models import create_model
from .optimizer import fit_samples
from .range_detection import ChannelRange, determine_channel_ranges, window_bounds
from .recovery import determine_recovery_time

logger = logging.getLogger(__name__)

# channels with fewer samples than this fraction of the window are not fitted
MIN_RANGE_FRACTION = 0.15


class FitState(Enum):
    IDLE = 'idle'
    RANGE_DETERMINING = 'range_determining'
    READY = 'ready'
    FITTING = 'fitting'
    AGGREGATING = 'aggregating'
    DONE = 'done'


class ChannelStatus(Enum):
    FITTED = 'fitted'
    INVALID = 'invalid'     # no restart produced valid parameters
    SKIPPED = 'skipped'     # sensor failure or insufficient samples
    ERROR = 'error'


@dataclass
class ChannelOutcome:
    channel: int
    status: ChannelStatus
    message: str = ''


@dataclass
class FitEvent:
    """Notification for progress sinks."""
    kind: str                       # started, progress, error, finished, ranges_determined, range_redetermination_possible
    channel: Optional[int] = None
    finished: int = 0
    message: str = ''


@dataclass
class FitResult:
    channel: int
    sensor_failure: bool
    fit_valid: bool
    n_samples: int
    sigma_error: float
    sigma_noise: float
    tau90: float
    f_t90: float
    t10_recovery: float
    params: Optional[np.ndarray]
    error: Optional[str] = None


class CurveFitWorker:
    """Range determination, channel fits and result aggregation for one measurement.

    Args:
        data: Relative series and sensor failure flags
        n_channels: Number of channels to fit
        config: Fit settings, defaults to `FitConfig()`
        window: (start, end) timestamps of the detection window, defaults to all data
        sink: Optional callable receiving every `FitEvent`; called from worker threads
    """

    def __init__(self, data: MeasurementData, n_channels: int, config: Optional[FitConfig] = None,
                 window: Optional[Tuple[int, int]] = None,
                 sink: Optional[Callable[[FitEvent], None]] = None):
        if data.n_channels != n_channels:
            raise ValueError(f"Measurement has {data.n_channels} channels, expected {n_channels}")
        self.data = data
        self.n_channels = n_channels
        self.config = config if config is not None else FitConfig()
        self.config.validate()
        self.window = window if window is not None else (data.start, data.end)
        self.sink = sink
        self.events: "queue.Queue[FitEvent]" = queue.Queue()

        self.state = FitState.IDLE
        self.outcomes: List[ChannelOutcome] = []
        self.futures: List[Future] = []
        self.table: Optional[pd.DataFrame] = None
        self.timed_out = False

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._channels_finished = 0
        self._range_redetermination_possible = False
        self._run = 0
        self._finished_outcomes: Dict[int, Optional[ChannelOutcome]] = {}

        self.channel_ranges: List[ChannelRange] = self._empty_ranges()
        self.init()

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    def init(self):
        """Reset the result arrays for a new fit run.

        Starting a new run invalidates the tasks of earlier runs; they no
        longer write results or count as finished.
        """
        self.model = create_model(self.config.model_type)
        self.parameter_names = list(self.model.parameter_names)

        with self._lock:
            self._run += 1
            self._reset_results()
            self._channels_finished = 0
            self._finished_outcomes = {}
            self._done.clear()
        self.outcomes = []
        self.timed_out = False

    def _reset_results(self):
        n = self.n_channels
        self.parameter_data = np.zeros((len(self.parameter_names), n))
        self.sigma_error = np.zeros(n)
        self.tau90 = np.zeros(n)
        self.f_t90 = np.zeros(n)
        self.t10_recovery = np.zeros(n)
        self.n_samples = np.zeros(n, dtype=int)
        self.fit_valid = np.zeros(n, dtype=bool)
        self.sensor_failure = np.asarray(self.data.sensor_failures, dtype=bool).copy()

    @property
    def channels_finished(self) -> int:
        with self._lock:
            return self._channels_finished

    @property
    def range_redetermination_possible(self) -> bool:
        with self._lock:
            return self._range_redetermination_possible

    def _set_range_redetermination_possible(self):
        with self._lock:
            self._range_redetermination_possible = True
        self._emit(FitEvent('range_redetermination_possible'))

    def _emit(self, event: FitEvent):
        self.events.put(event)
        if self.sink is not None:
            self.sink(event)

    def _empty_ranges(self) -> List[ChannelRange]:
        start, end = self.window
        return [ChannelRange(start, end) for _ in range(self.n_channels)]

    def range_is_set(self) -> bool:
        return any(r.samples for r in self.channel_ranges)

    # ------------------------------------------------------------------
    # settings
    # ------------------------------------------------------------------
    def set_parameter(self, name: str, value):
        """Change a fit setting; detection settings invalidate existing ranges."""
        if not hasattr(self.config, name):
            raise AttributeError(f"Unknown fit setting: {name}")
        if getattr(self.config, name) == value:
            return
        setattr(self.config, name, value)
        if name in DETECTION_FIELDS and self.range_is_set():
            self._set_range_redetermination_possible()

    def set_model_type(self, value: str):
        create_model(value)
        self.set_parameter('model_type', value)

    def set_fit_buffer(self, value: int):
        self.set_parameter('fit_buffer', value)

    def set_jump_factor(self, value: float):
        self.set_parameter('jump_factor', value)

    def set_jump_base_threshold(self, value: float):
        self.set_parameter('jump_base_threshold', value)

    def set_recovery_factor(self, value: float):
        self.set_parameter('recovery_factor', value)

    def set_detect_exposition_start(self, value: bool):
        self.set_parameter('detect_exposition_start', value)

    def set_detect_recovery_start(self, value: bool):
        self.set_parameter('detect_recovery_start', value)

    def set_n_iterations(self, value: int):
        self.set_parameter('n_iterations', value)

    def set_limit_factor(self, value: float):
        self.set_parameter('limit_factor', value)

    def set_t_recovery(self, value: int):
        self.set_parameter('t_recovery', value)

    def set_channel_ranges(self, start: int, end: int):
        """Set the detection window to [start, end]."""
        if (start, end) == tuple(self.window):
            return
        self.window = (start, end)
        if self.range_is_set():
            self._set_range_redetermination_possible()

    # ------------------------------------------------------------------
    # ranges
    # ------------------------------------------------------------------
    @property
    def window_size(self) -> int:
        first, last = window_bounds(self.data.relative, self.window)
        return last - first + 1

    def determine_channel_ranges(self) -> List[ChannelRange]:
        self.state = FitState.RANGE_DETERMINING
        logger.info(f"Determining channel ranges in window {self.window}")
        self.channel_ranges = determine_channel_ranges(
            self.data.relative, self.data.sensor_failures, self.config, self.window
        )
        with self._lock:
            self._range_redetermination_possible = False
        self.state = FitState.READY
        self._emit(FitEvent('ranges_determined'))
        return self.channel_ranges

    def _window_value(self, channel: int, timestamp: int) -> float:
        start, end = self.window
        if not start <= timestamp <= end or timestamp not in self.data.relative.index:
            raise KeyError(f"Timestamp {timestamp} is not part of the fit window {self.window}")
        return float(self.data.relative.iloc[:, channel].loc[timestamp])

    def add_to_range(self, channel: int, timestamps: Iterable[int]):
        """Add samples at the given timestamps to the range of one channel."""
        channel_range = self.channel_ranges[channel]
        samples = list(channel_range.samples)
        known = {t for t, _ in samples}
        changed = False
        for timestamp in timestamps:
            time = float(timestamp - channel_range.x_start)
            if time in known:
                continue
            value = self._window_value(channel, timestamp) - channel_range.y_offset
            samples.append((time, value))
            known.add(time)
            changed = True
        if changed:
            channel_range.samples = sorted(samples)
            self._set_range_redetermination_possible()

    def remove_from_range(self, channel: int, timestamps: Iterable[int]):
        """Remove the samples at the given timestamps from the range of one channel."""
        channel_range = self.channel_ranges[channel]
        drop = {float(t - channel_range.x_start) for t in timestamps}
        kept = [s for s in channel_range.samples if s[0] not in drop]
        if len(kept) != len(channel_range.samples):
            channel_range.samples = kept
            self._set_range_redetermination_possible()

    def get_channel_range(self, channel: int) -> List[int]:
        """Absolute timestamps of the samples in the range of a channel."""
        return self.channel_ranges[channel].timestamps()

    # ------------------------------------------------------------------
    # fitting
    # ------------------------------------------------------------------
    def _channel_rngs(self, channel: int) -> List[np.random.Generator]:
        seed_seq = np.random.SeedSequence(self.config.random_seed, spawn_key=(channel,))
        return [np.random.default_rng(s) for s in seed_seq.spawn(2)]

    def _fit_channel(self, channel: int) -> Tuple[ChannelOutcome, Optional[Dict[str, Any]]]:
        if self.sensor_failure[channel]:
            logger.debug(f"Channel {channel}: sensor failure, skipped")
            return ChannelOutcome(channel, ChannelStatus.SKIPPED, 'sensor failure'), None

        channel_range = self.channel_ranges[channel]
        samples = list(channel_range.samples)
        # no jump found or implausible range detected
        if not samples or len(samples) < MIN_RANGE_FRACTION * self.window_size:
            logger.debug(f"Channel {channel}: {len(samples)} samples, skipped")
            return ChannelOutcome(channel, ChannelStatus.SKIPPED, 'insufficient samples'), None

        model = create_model(self.config.model_type)
        fit = fit_samples(
            model,
            samples,
            self._channel_rngs(channel),
            n_iterations=self.config.n_iterations,
            limit_factor=self.config.limit_factor,
            max_evaluations=self.config.max_evaluations,
        )
        if not fit.valid:
            logger.info(f"Channel {channel}: no valid parameters found")
            return ChannelOutcome(channel, ChannelStatus.INVALID, 'no valid parameters'), None

        f_t90 = model.f_t_90(fit.params)
        slots = {
            'params': fit.params,
            'sigma_error': np.sqrt(fit.residual_sum_of_squares / len(samples)),
            'tau90': model.tau_90(fit.params),
            'f_t90': f_t90,
            'n_samples': len(samples),
            't10_recovery': self.determine_t_recovery(channel, f_t90),
        }
        logger.debug(f"Channel {channel}: fitted with {fit.method}, tau90={slots['tau90']:.2f}s")
        return ChannelOutcome(channel, ChannelStatus.FITTED), slots

    def _store(self, channel: int, slots: Dict[str, Any]):
        self.parameter_data[:, channel] = slots['params']
        self.sigma_error[channel] = slots['sigma_error']
        self.tau90[channel] = slots['tau90']
        self.f_t90[channel] = slots['f_t90']
        self.n_samples[channel] = slots['n_samples']
        self.t10_recovery[channel] = slots['t10_recovery']
        # last, so readers never see a valid flag with stale values
        self.fit_valid[channel] = True

    def determine_t_recovery(self, channel: int, f_t90: float) -> float:
        channel_range = self.channel_ranges[channel]
        return determine_recovery_time(
            self.data.relative.iloc[:, channel],
            channel_range.x_end,
            channel_range.y_offset,
            f_t90,
            self.config.t_recovery,
            self.config.t_average,
        )

    def fit_channel(self, channel: int, run: Optional[int] = None) -> ChannelOutcome:
        """Task body: fit one channel and report its completion.

        Results of a task whose run is no longer current are discarded.
        """
        if run is None:
            run = self._run
        outcome = None
        slots = None
        try:
            outcome, slots = self._fit_channel(channel)
        except (ValueError, ArithmeticError, RuntimeError, np.linalg.LinAlgError) as e:
            message = f"Error in channel {channel}: {e}"
            logger.error(message)
            self._emit(FitEvent('error', channel, message=message))
            outcome = ChannelOutcome(channel, ChannelStatus.ERROR, str(e))
        finally:
            self._channel_finished(channel, run, outcome, slots)
        return outcome

    def _channel_finished(self, channel: int, run: int, outcome: Optional[ChannelOutcome],
                          slots: Optional[Dict[str, Any]]):
        with self._lock:
            if run != self._run:
                logger.debug(f"Channel {channel}: result of an expired run discarded")
                return
            if slots is not None:
                self._store(channel, slots)
            self._finished_outcomes[channel] = outcome
            self._channels_finished += 1
            finished = self._channels_finished
        self._emit(FitEvent('progress', channel, finished=finished))
        if finished >= self.n_channels:
            self._done.set()

    def fit(self, n_workers: Optional[int] = None, timeout: Optional[float] = None) -> bool:
        """Fit all channels on a pool of `n_workers` threads.

        Blocks until every channel is finished or `timeout` seconds passed.
        Channels still running at the timeout keep running in the background
        and their results are discarded; queued channels are cancelled.

        Returns:
            True if all channels finished in time
        """
        if self.state == FitState.FITTING:
            raise RuntimeError("A fit is already running")
        if self.state == FitState.IDLE:
            self.determine_channel_ranges()

        self.init()
        n_workers = n_workers or os.cpu_count() or 1
        self.state = FitState.FITTING
        logger.info(f"Starting curve fit of {self.n_channels} channels with {n_workers} workers")
        self._emit(FitEvent('started'))

        if self.n_channels == 0:
            self._done.set()

        executor = ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix='curve-fit')
        run = self._run
        futures = [executor.submit(self.fit_channel, channel, run) for channel in range(self.n_channels)]
        self.futures = futures
        executor.shutdown(wait=False)

        completed = self._done.wait(timeout)
        self.timed_out = not completed
        if completed:
            logger.info("Curve fit finished")
        else:
            for future in futures:
                future.cancel()
            logger.warning(
                f"Curve fit timed out after {timeout}s: {self.channels_finished}/{self.n_channels} channels finished"
            )

        self.state = FitState.AGGREGATING
        with self._lock:
            if not completed:
                # late tasks of this run must not change the aggregated results
                self._run += 1
            finished = dict(self._finished_outcomes)
        self.outcomes = [
            self._collect(channel, channel in finished, finished.get(channel), future)
            for channel, future in enumerate(futures)
        ]
        self.table = self.get_data()
        self.state = FitState.DONE
        self._emit(FitEvent('finished', finished=self.channels_finished))
        return completed

    @staticmethod
    def _collect(channel: int, finished: bool, outcome: Optional[ChannelOutcome], future: Future) -> ChannelOutcome:
        if not finished:
            return ChannelOutcome(channel, ChannelStatus.ERROR, 'timeout')
        if outcome is not None:
            return outcome
        # counted without an outcome: the task raised past its handler
        error = future.exception()
        logger.error(f"Unexpected error in channel {channel}: {error!r}")
        return ChannelOutcome(channel, ChannelStatus.ERROR, repr(error))

    # ------------------------------------------------------------------
    # results
    # ------------------------------------------------------------------
    @property
    def results(self) -> List[FitResult]:
        errors = {o.channel: o.message for o in self.outcomes if o.status == ChannelStatus.ERROR}
        results = []
        for ch in range(self.n_channels):
            valid = bool(self.fit_valid[ch])
            results.append(FitResult(
                channel=ch,
                sensor_failure=bool(self.sensor_failure[ch]),
                fit_valid=valid,
                n_samples=int(self.n_samples[ch]),
                sigma_error=float(self.sigma_error[ch]),
                sigma_noise=float(self.channel_ranges[ch].sigma_noise),
                tau90=float(self.tau90[ch]),
                f_t90=float(self.f_t90[ch]),
                t10_recovery=float(self.t10_recovery[ch]),
                params=self.parameter_data[:, ch].copy() if valid else None,
                error=errors.get(ch),
            ))
        return results

    def fitted_curve(self, channel: int, step: float = 1.0) -> List[Tuple[float, float]]:
        """Absolute (timestamp, value) points of the fitted curve over the channel range."""
        if not self.fit_valid[channel]:
            return []
        channel_range = self.channel_ranges[channel]
        t = np.arange(0.0, channel_range.x_end - channel_range.x_start + step, step)
        y = self.model.evaluate(t, self.parameter_data[:, channel]) + channel_range.y_offset
        return list(zip((t + channel_range.x_start).tolist(), y.tolist()))

    def get_table_header(self) -> List[str]:
        header = [
            "sensor\nfailure",
            "fit\nvalid",
            "number of\nsamples",
            "sigma error\n[ % ]",
            "sigma noise\n[ % ]",
            "tau90\n[ s ]",
            "f(t90)\n[ % ]",
            "t10 recovery\n[ s ]",
        ]
        return header + self.parameter_names

    def get_header(self) -> List[str]:
        return [h.replace('\n', ' ') for h in self.get_table_header()]

    def get_tooltips(self) -> List[str]:
        tooltips = [
            "sensor failure:\nchannel was excluded from the fit",
            "fit valid:\na valid set of parameters was found",
            "number of samples:\nnumber of data points used for fitting the curve",
            "sigma error:\nstandard deviation of the exposition data in relation to the fitted curve",
            "sigma noise:\nstandard deviation before the start of the exposition in relation to the linear drift",
            "tau90:\ntime from start of the exposition until 90% of the plateau is reached",
            "f(t90):\n90% of the plateau height",
            "t10 recovery:\ntime from the end of the exposition until the response drops below 10% of the plateau",
        ]
        return tooltips + self.model.tooltips()

    def get_data(self) -> pd.DataFrame:
        """Result table: one row per metric/parameter, one column per channel."""
        sigma_noise = [r.sigma_noise for r in self.channel_ranges]
        rows = [
            self.sensor_failure.astype(float),
            self.fit_valid.astype(float),
            self.n_samples.astype(float),
            self.sigma_error,
            np.asarray(sigma_noise, dtype=float),
            self.tau90,
            self.f_t90,
            self.t10_recovery,
        ]
        rows.extend(self.parameter_data)
        columns = [f"ch{ch + 1}" for ch in range(self.n_channels)]
        return pd.DataFrame(np.vstack(rows), index=self.get_header(), columns=columns)

    def save(self, file_path):
        """Write the results as a semicolon separated table, one row per channel."""
        table = self.get_data().T
        for col in table.columns[:3]:
            table[col] = table[col].astype(int)
        table.to_csv(file_path, sep=';')
        logger.info(f"Curve fit results saved to {file_path}")
