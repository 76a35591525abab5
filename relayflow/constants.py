"""Shared defaults for relayflow."""

DEFAULT_ACTION_TIMEOUT = 30.0
# A step claim older than this may be taken back by a redelivery of the same execution.
DEFAULT_STEP_LEASE = 60.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 5000
DEFAULT_PREFETCH_COUNT = 1
DEFAULT_CONFIG_FILE = "config.yaml"
