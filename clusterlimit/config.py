"""Configuration settings for the ClusterLimit Controller."""

# CRD Settings
CRD_GROUP = "jicki.cn"
CRD_VERSION = "v1"
CRD_PLURAL = "clusterlimits"
CRD_KIND = "ClusterLimit"

# The singleton policy driving enforcement
DEFAULT_POLICY_NAME = "global-limits"

# Managed LimitRange identity
LIMIT_RANGE_NAME = "default-limitrange"
MANAGED_LABEL_KEY = "app.kubernetes.io/managed-by"
MANAGED_LABEL_VALUE = "clusterlimit-controller"

# Accepted LimitRangeItem types
LIMIT_TYPES = ("Container", "Pod", "PersistentVolumeClaim")

# Watch settings
WATCH_TIMEOUT_SECONDS = 300
WATCH_ERROR_BACKOFF_SECONDS = 5

# Periodic re-evaluation to repair drift (30 minutes)
RECONCILE_INTERVAL_SECONDS = 1800

# Per-namespace fan-out
MAX_WORKERS = 8

# Upper bound for a whole convergence pass and for each API call
PASS_TIMEOUT_SECONDS = 120
REQUEST_TIMEOUT_SECONDS = 30
