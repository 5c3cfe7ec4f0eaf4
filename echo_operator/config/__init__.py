"""
Library configuration. The shipped config.yaml is loaded once at import time,
with environment variable overrides, and checked against
config_validation.yaml. Config keys are read as attributes of this module.
"""

# Standard
import os

# First Party
import aconfig

# Local
from ..exceptions import ConfigError
from ..log_format import configure_logging
from .validation import get_invalid_params

_CONFIG_DIR = os.path.dirname(__file__)


def _load_yaml(file_name: str, override_env_vars: bool) -> aconfig.Config:
    return aconfig.Config.from_yaml(
        os.path.join(_CONFIG_DIR, file_name), override_env_vars=override_env_vars
    )


library_config = _load_yaml("config.yaml", override_env_vars=True)
validation_config = _load_yaml("config_validation.yaml", override_env_vars=False)

_invalid_params = get_invalid_params(library_config, validation_config)
if _invalid_params:
    raise ConfigError(f"Library configuration found invalid values: {_invalid_params}")

configure_logging(
    library_config.log_level,
    library_config.log_filters,
    library_config.log_json,
    library_config.log_thread_id,
)


def __getattr__(name):
    if name in library_config:
        return library_config[name]
    raise AttributeError(f"No such config attribute {name}")
