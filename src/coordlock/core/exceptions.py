"""Custom exceptions for coordlock.

All exception classes carry a short message plus optional details so that
log lines and CLI output explain what failed and for which lock.
"""


class CoordLockError(Exception):
    """Base exception for all coordlock errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(CoordLockError):
    """Exception raised for invalid configuration values.

    Examples:
        - Unknown store backend name
        - Negative timeouts or retry counts
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class InvalidLockArgumentError(CoordLockError, ValueError):
    """Raised for malformed lock identifiers or recovery keys.

    Always raised before any call to the coordination store.
    """

    def __init__(self, message: str, argument: str | None = None, details: str | None = None):
        self.argument = argument
        super().__init__(message, details)


class LockError(CoordLockError):
    """Base exception for failures tied to a specific lock."""

    def __init__(self, lock_id: str, message: str, details: str | None = None):
        self.lock_id = lock_id
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [f"[{self.lock_id}] {self.message}"]
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)


class LockAcquisitionTimeoutError(LockError, TimeoutError):
    """Raised when a lock could not be acquired before the deadline.

    Attributes:
        lock_id: Identifier of the contended lock
        timeout: The timeout in seconds that elapsed
    """

    def __init__(self, lock_id: str, timeout: float | None = None, details: str | None = None):
        self.timeout = timeout
        message = "Unable to acquire lock within the given timeout"
        if timeout is not None:
            message = f"{message} ({timeout:.3f}s)"
        super().__init__(lock_id, message, details)


class LockAcquisitionFailedError(LockError):
    """Raised when the locking protocol cannot complete.

    Examples:
        - The preceding lock node could not be discovered
        - A recovery key does not match the lock node content
        - A concurrent recovery won the version-checked write
    """

    def __init__(self, lock_id: str, message: str, details: str | None = None):
        super().__init__(lock_id, message, details)


class LockStolenError(LockAcquisitionFailedError):
    """Raised when our lock node was rewritten by another process.

    The node belongs to whoever rewrote it and is never deleted by us.
    """


class StoreError(CoordLockError):
    """Base exception for coordination store failures.

    Attributes:
        path: Node path of the failed operation, if known
    """

    def __init__(self, message: str, path: str | None = None, details: str | None = None):
        self.path = path
        super().__init__(message, details)

    def __str__(self) -> str:
        text = super().__str__()
        if self.path:
            return f"{text} (path {self.path})"
        return text


class NoNodeError(StoreError):
    """Raised when an operation targets a node that does not exist."""


class NodeExistsError(StoreError):
    """Raised when creating a node that already exists."""


class BadVersionError(StoreError):
    """Raised when a version-checked write or delete loses a race."""


class SessionLossError(StoreError):
    """Raised when the store session expired.

    Fatal for ephemeral (exclusive) locks; durable locks survive it and can
    be recovered with their recovery key.
    """


class StoreUnavailableError(StoreError, ConnectionError):
    """Raised for transient store failures such as connection loss."""
