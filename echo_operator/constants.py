"""
Shared module to hold constant values for the library
"""

# Reconciliation configuration annotations
PAUSE_ANNOTATION_NAME = "echo-operator.io/pause-execution"

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = "echo-operator.io/log-default-level"
LOG_FILTERS_NAME = "echo-operator.io/log-filters"
LOG_THREAD_ID_NAME = "echo-operator.io/log-thread-id"
LOG_JSON_NAME = "echo-operator.io/log-json"

# Labels applied to dependent resources
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
NAME_LABEL = "app.kubernetes.io/name"
INSTANCE_LABEL = "app.kubernetes.io/instance"
MANAGED_BY_VALUE = "echo-operator"

# Default namespace if none given
DEFAULT_NAMESPACE = "default"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Maximum length for a kubernetes name
MAX_NAME_LEN = 63

# Event reasons attached to the reconciled resource
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_INVALID_SPEC = "InvalidSpec"
