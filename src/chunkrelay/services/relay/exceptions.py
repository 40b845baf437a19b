"""Custom exceptions for the relay service."""


class RelayException(Exception):
    """Base exception for the relay service."""
    pass


class SourceUnavailableError(RelayException):
    """Exception raised when the source metadata probe or a chunk fetch fails."""
    pass


class UnknownSizeError(RelayException):
    """Exception raised when the source size is zero or cannot be determined."""
    pass


class SessionRejectedError(RelayException):
    """Exception raised when the upload API refuses to open a resumable session."""
    pass


class ChunkTransmissionFailedError(RelayException):
    """Exception raised when a chunk could not be sent after all attempts."""

    def __init__(self, message: str, offset: int, attempts: int, last_error: Exception | None = None):
        super().__init__(message)
        self.offset = offset
        self.attempts = attempts
        self.last_error = last_error


class MissingObjectIdError(RelayException):
    """Exception raised when the final chunk succeeded without returning an object id."""
    pass


class RemoteProcessingFailedError(RelayException):
    """Exception raised when the upload API reports the object as FAILED."""
    pass


class ActivationTimeoutError(RelayException):
    """Exception raised when the object does not become ACTIVE before the deadline."""

    def __init__(self, timeout_seconds: float, elapsed_seconds: float, attempts: int, size_mb: float):
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        self.attempts = attempts
        self.size_mb = size_mb
        super().__init__(
            f"File did not become ACTIVE within {round(timeout_seconds)}s timeout "
            f"({round(elapsed_seconds)}s elapsed, {attempts} attempts). "
            f"Large files ({round(size_mb)}MB) may need more processing time."
        )


class ProgressDeliveryFailedError(RelayException):
    """Exception raised when the progress sink rejects an event. Never fatal."""
    pass
