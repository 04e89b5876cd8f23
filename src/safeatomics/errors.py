"""Error types for safeatomics."""


class SafeAtomicsError(Exception):
    """Base exception for safeatomics errors."""
    pass


class ConfigError(SafeAtomicsError):
    """Configuration error."""
    pass


class InvalidKeyError(SafeAtomicsError, ValueError):
    """Key is empty or contains a non-primitive component."""
    pass


class UpdateFunctionError(SafeAtomicsError, TypeError):
    """Update function returned something that cannot be committed.

    Raised synchronously on the attempt where it happens. Never retried,
    and the backend is left untouched.
    """
    pass


class ResultArityError(UpdateFunctionError, ValueError):
    """Update function returned the wrong number of values."""
    pass


class AbortedError(SafeAtomicsError):
    """Update function declined the update."""

    def __init__(self, reason: str | None, values: list):
        super().__init__(reason or "Update aborted")
        self.reason = reason
        self.values = values


class TooManyRetriesError(SafeAtomicsError):
    """Raised when CAS retries are exhausted."""

    def __init__(self, message: str, values: list):
        super().__init__(message)
        self.values = values
