"""
Shared module to hold constant values for the library
"""

# Reconciliation configuration annotations
PAUSE_ANNOTATION_NAME = "declar8.org/pause-execution"

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = "declar8.org/log-default-level"
LOG_FILTERS_NAME = "declar8.org/log-filters"
LOG_THREAD_ID_NAME = "declar8.org/log-thread-id"
LOG_JSON_NAME = "declar8.org/log-json"

ALL_ANNOTATIONS = [
    LOG_DEFAULT_LEVEL_NAME,
    LOG_FILTERS_NAME,
    LOG_JSON_NAME,
    LOG_THREAD_ID_NAME,
    PAUSE_ANNOTATION_NAME,
]

# Finalizer added to chart-backed CRs so that rendered resources are removed
# before the CR goes away
DEFAULT_CHART_FINALIZER = "declar8.org/uninstall"

# Key a role uses with set_stats to report the resources it wants applied
ROLE_RESOURCES_STAT_KEY = "resources"

# Variable passed to roles describing the CR being reconciled
ROLE_META_VARIABLE = "ansible_operator_meta"

# Default namespace if none given
DEFAULT_NAMESPACE = "default"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
