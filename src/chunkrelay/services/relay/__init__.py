"""
Relay Service

Moves a file from a source URL to a resumable-upload API in fixed-size
chunks, reports progress to an external sink and waits for the uploaded
object to become ACTIVE.
"""

from chunkrelay.services.relay.exceptions import (
    ActivationTimeoutError,
    ChunkTransmissionFailedError,
    MissingObjectIdError,
    ProgressDeliveryFailedError,
    RelayException,
    RemoteProcessingFailedError,
    SessionRejectedError,
    SourceUnavailableError,
    UnknownSizeError,
)
from chunkrelay.services.relay.models import (
    Chunk,
    ProgressEvent,
    ProgressStatus,
    RelayResult,
    Transfer,
    TransferState,
    UploadSession,
)

__all__ = [
    "ActivationTimeoutError",
    "Chunk",
    "ChunkTransmissionFailedError",
    "MissingObjectIdError",
    "ProgressDeliveryFailedError",
    "ProgressEvent",
    "ProgressStatus",
    "RelayException",
    "RelayResult",
    "RemoteProcessingFailedError",
    "SessionRejectedError",
    "SourceUnavailableError",
    "Transfer",
    "TransferState",
    "UnknownSizeError",
    "UploadSession",
]
