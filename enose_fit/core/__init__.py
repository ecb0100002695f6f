"""Core curve fit utilities.

Modules:
- linear_fit: closed-form line fits for drift and noise estimation
- models: parametric response models
- optimizer: randomized-restart nonlinear least squares
- range_detection: exposition/recovery segmentation per channel
- recovery: recovery time determination
- fit_worker: concurrent per-channel fitting and result aggregation
"""

from .linear_fit import LinearFitter
from .models import CurveModel, SuperpositionModel, MODEL_TYPES, create_model
from .optimizer import LeastSquaresFitter, ModelFit, fit_samples
from .fit_config import FitConfig
from .range_detection import ChannelRange, determine_channel_ranges
from .recovery import determine_recovery_time
from .fit_worker import (
    CurveFitWorker,
    ChannelOutcome,
    ChannelStatus,
    FitEvent,
    FitResult,
    FitState,
)
