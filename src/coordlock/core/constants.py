"""Constants and default values for coordlock.

This module centralizes node layout names, protocol constants, default
timeouts and the environment variables read by the configuration layer.
"""

# ==================== NODE LAYOUT ====================

# Root node under which all lock parents are created
DEFAULT_LOCKS_ROOT: str = "/coordlock/locks"

# Child of the locks root holding ephemeral (exclusive) locks
EXCLUSIVE_LOCKS_NODE: str = "exclusive"

# Child of the locks root holding persistent (durable) locks
DURABLE_LOCKS_NODE: str = "durable"

# ==================== PROTOCOL ====================

# Prefix of every sequential lock node; the store appends the sequence
LOCK_NAME_PREFIX: str = "lock-"

# Number of digits the store uses when zero-padding sequence suffixes
SEQUENCE_DIGITS: int = 10

# Separates lock name and node content inside a recovery key
RECOVERY_KEY_SEPARATOR: str = "_"

# Longest accepted lock identifier
MAX_ID_LENGTH: int = 255

# Node identity defaults when no node id / location is configured
DEFAULT_NODE_LOCATION: str = "local"

# ==================== STORE DEFAULTS ====================

DEFAULT_STORE_BACKEND: str = "zookeeper"
STORE_BACKENDS: tuple[str, ...] = ("zookeeper", "memory")
DEFAULT_HOSTS: str = "127.0.0.1:2181"
DEFAULT_SESSION_TIMEOUT: float = 10.0  # seconds
DEFAULT_CONNECT_TIMEOUT: float = 15.0  # seconds

# ==================== LOCK DEFAULTS ====================

DEFAULT_SUSPEND_TIMEOUT: float = 30.0  # seconds a suspended lock waits for resume

# ==================== RETRY DEFAULTS ====================

DEFAULT_MAX_RETRIES: int = 5
DEFAULT_RETRY_BASE_DELAY: float = 0.2  # seconds
DEFAULT_RETRY_MAX_DELAY: float = 2.0  # seconds
DEFAULT_RETRY_EXPONENTIAL_BASE: int = 2

# ==================== LOGGING DEFAULTS ====================

LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB max per log file
LOG_FILE_BACKUP_COUNT: int = 5  # Number of backup log files to keep
VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ==================== ENVIRONMENT VARIABLES ====================

ENV_STORE = "COORDLOCK_STORE"
ENV_HOSTS = "COORDLOCK_HOSTS"
ENV_LOCKS_ROOT = "COORDLOCK_LOCKS_ROOT"
ENV_SESSION_TIMEOUT = "COORDLOCK_SESSION_TIMEOUT"
ENV_SUSPEND_TIMEOUT = "COORDLOCK_SUSPEND_TIMEOUT"
ENV_MAX_RETRIES = "COORDLOCK_MAX_RETRIES"
ENV_RETRY_BASE_DELAY = "COORDLOCK_RETRY_BASE_DELAY"
ENV_RETRY_MAX_DELAY = "COORDLOCK_RETRY_MAX_DELAY"
ENV_NODE_ID = "COORDLOCK_NODE_ID"
ENV_NODE_LOCATION = "COORDLOCK_NODE_LOCATION"
ENV_LOG_LEVEL = "LOG_LEVEL"
