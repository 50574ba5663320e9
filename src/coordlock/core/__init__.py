"""Core module - Foundation components with no internal dependencies.

This module provides the basic building blocks used throughout coordlock:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
- Identifier and node path helpers
"""

from coordlock.core.version import __version__

from coordlock.core.exceptions import (
    CoordLockError,
    ConfigurationError,
    InvalidLockArgumentError,
    LockError,
    LockAcquisitionTimeoutError,
    LockAcquisitionFailedError,
    LockStolenError,
    StoreError,
    NoNodeError,
    NodeExistsError,
    BadVersionError,
    SessionLossError,
    StoreUnavailableError,
)

from coordlock.core.config import (
    RetryConfig,
    StoreConfig,
    NodeInfo,
    LockServiceConfig,
)

from coordlock.core.identifiers import (
    is_valid_id,
    join_path,
    node_name,
    parent_path,
    build_node_content,
)

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "CoordLockError",
    "ConfigurationError",
    "InvalidLockArgumentError",
    "LockError",
    "LockAcquisitionTimeoutError",
    "LockAcquisitionFailedError",
    "LockStolenError",
    "StoreError",
    "NoNodeError",
    "NodeExistsError",
    "BadVersionError",
    "SessionLossError",
    "StoreUnavailableError",
    # Config
    "RetryConfig",
    "StoreConfig",
    "NodeInfo",
    "LockServiceConfig",
    # Identifiers
    "is_valid_id",
    "join_path",
    "node_name",
    "parent_path",
    "build_node_content",
]
