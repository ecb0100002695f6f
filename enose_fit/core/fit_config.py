"""Settings of the range detection, the optimizer and the recovery analysis."""

import logging
from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Optional

from config.config_loader import load_config, get_section
from .optimizer import LEAST_SQUARES_N_FITS, LEAST_SQUARES_LIMIT_FACTOR, LEAST_SQUARES_MAX_EVALUATIONS

logger = logging.getLogger(__name__)

DEFAULT_MODEL_TYPE = "Exposition"
DEFAULT_BUFFER_SIZE = 30            # s
DEFAULT_JUMP_FACTOR = 5.0
DEFAULT_JUMP_BASE_THRESHOLD = 0.1   # %
DEFAULT_RECOVERY_FACTOR = 1.5
DEFAULT_RECOVERY_TIME = 600         # s
DEFAULT_AVERAGE_TIME = 4            # s

# changing one of these invalidates previously determined channel ranges
DETECTION_FIELDS = (
    'model_type',
    'detect_exposition_start',
    'detect_recovery_start',
    'jump_factor',
    'jump_base_threshold',
    'recovery_factor',
    'fit_buffer',
)


@dataclass
class FitConfig:
    """Curve fit configuration."""
    model_type: str = DEFAULT_MODEL_TYPE
    detect_exposition_start: bool = True
    detect_recovery_start: bool = False
    jump_factor: float = DEFAULT_JUMP_FACTOR          # multiples of sigma noise
    jump_base_threshold: float = DEFAULT_JUMP_BASE_THRESHOLD
    recovery_factor: float = DEFAULT_RECOVERY_FACTOR  # multiples of sigma noise
    fit_buffer: int = DEFAULT_BUFFER_SIZE             # s
    n_iterations: int = LEAST_SQUARES_N_FITS
    limit_factor: float = LEAST_SQUARES_LIMIT_FACTOR
    max_evaluations: int = LEAST_SQUARES_MAX_EVALUATIONS
    t_recovery: int = DEFAULT_RECOVERY_TIME           # s
    t_average: int = DEFAULT_AVERAGE_TIME             # s
    random_seed: Optional[int] = None

    def validate(self) -> "FitConfig":
        if self.detect_recovery_start and not self.detect_exposition_start:
            raise ValueError("Recovery start detection requires exposition start detection")
        if self.fit_buffer <= 0:
            raise ValueError(f"fit_buffer must be positive, got {self.fit_buffer}")
        if self.n_iterations < 1:
            raise ValueError(f"n_iterations must be at least 1, got {self.n_iterations}")
        if self.limit_factor <= 0:
            raise ValueError(f"limit_factor must be positive, got {self.limit_factor}")
        if self.t_recovery < 0 or self.t_average <= 0:
            raise ValueError("t_recovery must be non-negative and t_average positive")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> "FitConfig":
        cfg = cfg or {}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(cfg) - known)
        if unknown:
            logger.warning(f"Ignoring unknown curve fit settings: {unknown}")
        values = {k: v for k, v in cfg.items() if k in known and v is not None}
        return cls(**values).validate()

    @classmethod
    def from_config(cls, config_path: Optional[str] = None) -> "FitConfig":
        return cls.from_dict(get_section(load_config(config_path), 'curve_fit'))
