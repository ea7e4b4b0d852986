# ============================================================================
# AEGIS - Error Taxonomy
# ============================================================================
# Storage and validation errors surface to the immediate caller.
# Network errors are absorbed by the sync engine and the shell cache.
# Position errors are absorbed by the locator and become a status flag.
# ============================================================================


class AegisError(Exception):
    """Base class for all field core errors."""


class StorageError(AegisError):
    """The local database rejected an operation (disk full, corruption, lock)."""


class ValidationError(AegisError):
    """Caller-supplied input is malformed. Nothing was written."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class NetworkError(AegisError):
    """A network request failed or timed out."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class PositionUnavailable(AegisError):
    """The positioning source could not produce a fix."""

    def __init__(self, message: str, reason: str = "error"):
        super().__init__(message)
        # denied, unavailable, timeout, error
        self.reason = reason
