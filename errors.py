"""
Error types for watermark detection and removal.

"No match" is not an error: the detector returns None and callers branch on it.
"""


class WatermarkError(Exception):
    """Base class for every error raised by the eraser."""


class UnsupportedEnvironmentError(WatermarkError):
    """Rasterization backend missing. Recoverable via the array-only path."""


class SearchCancelled(WatermarkError):
    """Search abandoned at a yield point."""


class WorkerError(WatermarkError):
    """The background detection context failed a request."""


class WorkerUnavailableError(WorkerError):
    pass


class WorkerCrashedError(WorkerError):
    pass


class RequestTimeoutError(WorkerError, TimeoutError):
    """No response arrived within the caller's timeout."""
