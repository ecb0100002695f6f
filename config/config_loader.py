import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

CONFIG_ENV_VAR = "ENOSE_FIT_CONFIG"


def _resolve_config_path(config_path: Optional[str]) -> Path:
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    # config.yaml shipped next to this module
    return Path(__file__).resolve().parent / "config.yaml"


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the YAML configuration of the curve fit engine.

    Args:
        config_path: Optional explicit path to the configuration file. If None,
                     the path in ``$ENOSE_FIT_CONFIG`` is used, falling back to
                     ``config.yaml`` in the `config` package directory.

    Returns:
        A dictionary containing the configuration settings.
    """
    path = _resolve_config_path(config_path)

    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    return config


def get_section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a named top-level section, or an empty dict if it is missing."""
    section = config.get(name, {}) if isinstance(config, dict) else {}
    return section if isinstance(section, dict) else {}
