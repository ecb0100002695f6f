import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Union
import logging

# Set up logging
logger = logging.getLogger(__name__)


@dataclass
class MeasurementData:
    """Relative channel series plus the sensor failure flags of a measurement.

    ``relative`` is indexed by integer timestamps (s) and holds one column per
    channel with the relative deviation from the baseline in %.
    """
    relative: pd.DataFrame
    sensor_failures: np.ndarray = field(default=None)

    def __post_init__(self):
        if not self.relative.index.is_monotonic_increasing or not self.relative.index.is_unique:
            self.relative = self.relative[~self.relative.index.duplicated(keep='last')].sort_index()
        if self.sensor_failures is None:
            self.sensor_failures = np.zeros(self.n_channels, dtype=bool)
        self.sensor_failures = np.asarray(self.sensor_failures, dtype=bool)
        if self.sensor_failures.size != self.n_channels:
            raise ValueError(
                f"Sensor failure flags ({self.sensor_failures.size}) do not match channel count ({self.n_channels})"
            )

    @property
    def n_channels(self) -> int:
        return self.relative.shape[1]

    @property
    def start(self) -> int:
        return int(self.relative.index[0])

    @property
    def end(self) -> int:
        return int(self.relative.index[-1])


def relative_deviation(absolute: pd.DataFrame, baseline: Optional[Sequence[float]] = None) -> pd.DataFrame:
    """
    Convert absolute sensor resistances to relative deviations in %.

    Args:
        absolute: Absolute values indexed by timestamp, one column per channel
        baseline: Reference resistance R0 per channel; defaults to the first row

    Returns:
        pd.DataFrame: (R / R0 - 1) * 100 with the same index and columns
    """
    if baseline is None:
        r0 = absolute.iloc[0].to_numpy(dtype=float)
    else:
        r0 = np.asarray(baseline, dtype=float)
    if np.any(r0 == 0):
        raise ValueError("Baseline contains zero values")
    return (absolute / r0 - 1.0) * 100.0


def load_relative_series(file_path: Union[str, Path], sep: str = ';') -> pd.DataFrame:
    """
    Load a relative measurement series.

    The file holds a `timestamp` column followed by one column per channel.

    Args:
        file_path: Path to the CSV file
        sep: Column separator

    Returns:
        pd.DataFrame: Series indexed by integer timestamps
    """
    try:
        data = pd.read_csv(file_path, sep=sep, index_col=0)
        data.index = data.index.astype(np.int64)
        data = data.astype(float).sort_index()
        logger.info(f"Successfully loaded {data.shape[1]} channels x {data.shape[0]} samples from {file_path}")
        return data
    except Exception as e:
        logger.error(f"Error loading data from {file_path}: {str(e)}")
        raise


def load_sensor_failures(flags: Optional[str], n_channels: int) -> np.ndarray:
    """
    Parse a sensor failure bitstring such as ``"0010..."`` (channel 1 first).

    Args:
        flags: String of '0'/'1' characters, or None for no failures
        n_channels: Number of channels

    Returns:
        np.ndarray: Boolean failure flags
    """
    if not flags:
        return np.zeros(n_channels, dtype=bool)
    flags = flags.strip()
    if len(flags) != n_channels or set(flags) - {'0', '1'}:
        raise ValueError(f"Invalid sensor failure string for {n_channels} channels: {flags!r}")
    return np.array([c == '1' for c in flags], dtype=bool)
