# src/goalcore/config/loader.py
"""
Layered configuration loading for GoalCore.

Layers are merged by ``confy`` in order:
    1. Packaged ``default_config.toml``
    2. User TOML file (explicit path, or ~/.config/goalcore/config.toml)
    3. Environment variables (``GOALCORE_`` prefix, ``__`` for nesting,
       e.g. ``GOALCORE_STALE__THRESHOLD_DAYS=21``)
    4. Runtime overrides (dotted keys or nested dicts)

The merged sections are validated against
:class:`goalcore.config.models.GoalCoreConfig`.
"""

import importlib.resources
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from confy.loader import Config as ConfyConfig
from pydantic import ValidationError

from ..exceptions import ConfigError
from .models import GoalCoreConfig

try:
    import tomllib
except ImportError:
    import tomli as tomllib

logger = logging.getLogger(__name__)

ENV_PREFIX = "GOALCORE"
DEFAULT_USER_CONFIG = Path("~/.config/goalcore/config.toml")


def _load_default_toml() -> Dict[str, Any]:
    default_path = importlib.resources.files("goalcore.config").joinpath("default_config.toml")
    with default_path.open("rb") as f:
        return tomllib.load(f)


def _plain(value: Any) -> Any:
    """Turn the mapping values confy hands back into plain dicts."""
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    return value


def _resolve_file(config_file_path: Optional[Union[str, Path]]) -> Optional[str]:
    if config_file_path is not None:
        path = Path(config_file_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        return str(path)
    default_path = DEFAULT_USER_CONFIG.expanduser()
    return str(default_path) if default_path.is_file() else None


def load_confy_config(
    config_file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: Optional[str] = ENV_PREFIX,
) -> ConfyConfig:
    """
    Build the raw layered ``confy`` Config.

    Raises:
        ConfigError: If the user file is missing or any layer fails to load.
    """
    file_path = _resolve_file(config_file_path)
    try:
        config = ConfyConfig(
            defaults=_load_default_toml(),
            file_path=file_path,
            prefix=env_prefix,
            overrides_dict=dict(overrides) if overrides else None,
        )
    except Exception as e:
        raise ConfigError(f"GoalCore configuration loading failed: {e}") from e
    if file_path:
        logger.debug(f"Loaded user config from {file_path}")
    return config


def load_config(
    config_file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: Optional[str] = ENV_PREFIX,
) -> GoalCoreConfig:
    """
    Load and validate the GoalCore configuration.

    Args:
        config_file_path: Optional user TOML file. When given it must exist;
            when omitted, ~/.config/goalcore/config.toml is used if present.
        overrides: Highest-priority values. Keys may be dotted
            (``"stale.threshold_days"``) or nested dictionaries.
        env_prefix: Environment variable prefix; None disables the
            environment layer.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If a file cannot be read or parsed, or validation fails.
    """
    config = load_confy_config(config_file_path, overrides, env_prefix)
    data: Dict[str, Any] = {}
    for key in GoalCoreConfig.model_fields:
        value = config.get(key)
        if value is not None:
            data[key] = _plain(value)

    try:
        return GoalCoreConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
