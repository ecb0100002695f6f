"""Recovery time (t10) determination after the end of an exposition."""

import numpy as np
import pandas as pd


def determine_recovery_time(values: pd.Series, x_end: int, y_offset: float, f_t90: float,
                            t_recovery: float, t_average: float = 4) -> float:
    """Time after ``x_end`` until the response has decayed to 10% of the plateau.

    The channel values are shifted by ``y_offset`` and smoothed with a trailing
    rolling mean of ``t_average`` seconds that only sees samples from ``x_end``
    on. The first sample within ``t_recovery`` seconds whose averaged response
    (taken in the direction of the plateau) drops below ``|f_t90| / 9`` gives
    the recovery time. If there is none, ``t_recovery`` is returned.

    Args:
        values: Relative deviation of one channel indexed by timestamp (s)
        x_end: Timestamp of the exposition end
        y_offset: Baseline of the fitted range
        f_t90: 90% of the fitted plateau height
        t_recovery: Maximum recovery window (s)
        t_average: Rolling average window (s)

    Returns:
        Recovery time in seconds
    """
    if f_t90 == 0 or not np.isfinite(f_t90):
        return float(t_recovery)

    segment = values.loc[x_end:x_end + t_recovery]
    if segment.empty:
        return float(t_recovery)

    elapsed = segment.index.to_numpy(dtype=float) - float(x_end)
    response = (segment.to_numpy(dtype=float) - y_offset) * np.sign(f_t90)

    smoothed = pd.Series(response, index=pd.to_datetime(elapsed, unit='s'))
    averaged = smoothed.rolling(pd.Timedelta(seconds=float(t_average)), min_periods=1).mean().to_numpy()

    below = np.flatnonzero(averaged < abs(f_t90) / 9.0)
    if below.size == 0:
        return float(t_recovery)
    return float(elapsed[below[0]])
