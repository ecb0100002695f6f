"""Closed-form linear least squares used by the range detection."""

from typing import Sequence

import numpy as np

MIN_POINTS_FOR_NOISE = 4


class LinearFitter:
    """Ordinary least-squares line y = m * x + b.

    The residual standard deviation is the population standard deviation of
    the residuals. Fits on fewer than ``MIN_POINTS_FOR_NOISE`` points report a
    standard deviation of 0.
    """

    def __init__(self):
        self.m = 0.0
        self.b = 0.0
        self.std_dev = 0.0

    def model(self, x):
        return self.m * x + self.b

    def fit(self, x: Sequence[float], y: Sequence[float]) -> "LinearFitter":
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if x.shape != y.shape:
            raise ValueError(f"x and y differ in length: {x.size} != {y.size}")
        n = x.size
        if n == 0:
            raise ValueError("Cannot fit a line to an empty sample")

        x_mean = x.sum() / n
        y_mean = y.sum() / n
        ss_xx = float(np.dot(x, x) - n * x_mean * x_mean)
        ss_xy = float(np.dot(x, y) - n * x_mean * y_mean)

        # single point or vertical spread: horizontal line through the mean
        if n < 2 or np.isclose(ss_xx, 0.0):
            self.m = 0.0
        else:
            self.m = ss_xy / ss_xx
        self.b = float(y_mean - self.m * x_mean)

        if n < MIN_POINTS_FOR_NOISE:
            self.std_dev = 0.0
        else:
            residuals = self.model(x) - y
            self.std_dev = float(np.sqrt(np.sum(residuals ** 2) / n))
        return self
