"""
Load the declar8 library config at import time, reject values the operator
cannot run with, and do the initial log config
"""

# Standard
import os

# First Party
import aconfig
import alog

# Local
from .validation import get_inconsistent_params, get_invalid_params

# Read the library config, allowing env overrides. Environment overrides of
# nested keys use the section name as a prefix (BOOTSTRAP_OS, CHART_HELM_BINARY).
library_config = aconfig.Config.from_yaml(
    os.path.join(os.path.dirname(__file__), "config.yaml"),
    override_env_vars=True,
)

# Parse the validation file, not allowing env overrides
validation_config = aconfig.Config.from_yaml(
    os.path.join(os.path.dirname(__file__), "config_validation.yaml"),
    override_env_vars=False,
)

invalid_params = get_invalid_params(library_config, validation_config)
assert (
    not invalid_params
), f"Library configuration found invalid values: {invalid_params}"

# Durations, download urls and the operator-sdk release are checked once more
# after command line overrides in CmdBase.validate_config
inconsistent_params = get_inconsistent_params(library_config)
assert (
    not inconsistent_params
), f"Library configuration found unusable values: {inconsistent_params}"

# Do initial alog configuration
alog.configure(
    default_level=library_config.log_level,
    filters=library_config.log_filters,
    formatter="json" if library_config.log_json else "pretty",
    thread_id=library_config.log_thread_id,
)
