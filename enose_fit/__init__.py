"""
eNose Curve Fit Package
-------------------
Automatic exposition/recovery curve fitting for multi-channel gas sensor
measurements.
"""

__version__ = "1.0.0"

# Import key components for easier access
from .data_loader import MeasurementData, load_relative_series, relative_deviation
from .core.fit_config import FitConfig
from .core.fit_worker import CurveFitWorker, FitResult
from .automated import AutomatedFitWorker

__all__ = [
    'MeasurementData',
    'load_relative_series',
    'relative_deviation',
    'FitConfig',
    'CurveFitWorker',
    'FitResult',
    'AutomatedFitWorker',
]
