"""
Transfer state and value objects for the relay service.

A Transfer is owned by exactly one orchestrator run. Its state only moves
forward (INITIALIZING -> TRANSMITTING -> FINALIZING -> POLLING -> COMPLETED),
except that any non-terminal state may move to FAILED.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TransferState(str, Enum):
    """Lifecycle of a single relay transfer."""

    INITIALIZING = "initializing"
    TRANSMITTING = "transmitting"
    FINALIZING = "finalizing"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


_FORWARD_ORDER = [
    TransferState.INITIALIZING,
    TransferState.TRANSMITTING,
    TransferState.FINALIZING,
    TransferState.POLLING,
    TransferState.COMPLETED,
]

TERMINAL_STATES = frozenset([TransferState.COMPLETED, TransferState.FAILED])


class ProgressStatus(str, Enum):
    """Status reported to the progress sink."""

    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidTransitionError(ValueError):
    """Raised on a backward or post-terminal state change."""
    pass


@dataclass
class Transfer:
    """Mutable bookkeeping for one relay call."""

    transfer_id: str
    source_url: str
    content_type: str
    display_name: str
    subject_id: str
    total_size: int = 0
    bytes_transmitted: int = 0
    state: TransferState = TransferState.INITIALIZING
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def percentage(self) -> int:
        return calculate_progress(self.bytes_transmitted, self.total_size)

    def set_total_size(self, total_size: int) -> None:
        """Fix the total size once it is known from the metadata probe."""
        if self.total_size:
            raise InvalidTransitionError("total_size is already fixed")
        if total_size <= 0:
            raise ValueError(f"total_size must be positive, got {total_size}")
        self.total_size = total_size

    def advance(self, state: TransferState) -> None:
        """Move forward to ``state``. Use ``fail`` for the FAILED state."""
        if state == TransferState.FAILED:
            raise InvalidTransitionError("use fail() to enter the FAILED state")
        if self.is_terminal:
            raise InvalidTransitionError(f"transfer already {self.state.value}")
        if _FORWARD_ORDER.index(state) <= _FORWARD_ORDER.index(self.state):
            raise InvalidTransitionError(
                f"cannot move from {self.state.value} to {state.value}"
            )
        self.state = state

    def fail(self, error: str) -> None:
        if self.is_terminal:
            raise InvalidTransitionError(f"transfer already {self.state.value}")
        self.state = TransferState.FAILED
        self.error = error

    def record_bytes(self, count: int) -> None:
        """Add ``count`` confirmed bytes, keeping 0 <= transmitted <= total."""
        if count < 0:
            raise ValueError("byte count cannot be negative")
        if self.bytes_transmitted + count > self.total_size:
            raise ValueError(
                f"{self.bytes_transmitted + count} bytes exceeds total size {self.total_size}"
            )
        self.bytes_transmitted += count


@dataclass
class UploadSession:
    """Resumable upload session; object_id is set by the final chunk."""

    upload_url: str
    object_id: Optional[str] = None


@dataclass(frozen=True)
class Chunk:
    """One contiguous byte range of the source."""

    offset: int
    payload: bytes
    is_final: bool

    @property
    def length(self) -> int:
        return len(self.payload)

    @property
    def end(self) -> int:
        return self.offset + len(self.payload)


@dataclass(frozen=True)
class SourceMetadata:
    total_size: int
    accepts_ranges: bool
    content_type: Optional[str] = None


@dataclass(frozen=True)
class ChunkReceipt:
    bytes_sent: int
    object_id: Optional[str] = None


@dataclass(frozen=True)
class ProgressSnapshot:
    """Transfer figures captured at one moment, before becoming an event."""

    bytes_uploaded: int
    total_bytes: int
    status: ProgressStatus
    message: Optional[str] = None


class ProgressEvent(BaseModel):
    """
    Immutable progress notification pushed to the progress sink.

    Serialized in camelCase, e.g. ``uploadId``, ``bytesUploaded``.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    upload_id: str = Field(..., description="Transfer identifier")
    subject_id: str = Field(..., description="External subject the upload belongs to")
    bytes_uploaded: int = Field(..., ge=0)
    total_bytes: int = Field(..., ge=0)
    percentage: int = Field(..., ge=0, le=100)
    status: ProgressStatus
    message: Optional[str] = None
    timestamp: datetime

    def to_payload(self) -> dict:
        """JSON-ready camelCase payload, omitting an absent message."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class ActivationResult:
    file_uri: str
    expires_at: datetime


@dataclass(frozen=True)
class RelayResult:
    """Terminal artifact of a successful transfer."""

    file_uri: str
    upload_id: str
    total_size: int
    expires_at: datetime


def calculate_progress(uploaded: int, total: int) -> int:
    """Whole-number percentage of ``uploaded`` over ``total``, halves rounded up.

    Returns 0 when ``total`` is 0.
    """
    if total <= 0:
        return 0
    return int(math.floor(uploaded * 100 / total + 0.5))


def format_bytes(num_bytes: int) -> str:
    """Human readable size, e.g. ``format_bytes(1536) == "1.5 KB"``."""
    sizes = ["Bytes", "KB", "MB", "GB", "TB"]
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(sizes) - 1:
        value /= 1024
        i += 1
    value = round(value, 2)
    if value == int(value):
        return f"{int(value)} {sizes[i]}"
    return f"{value} {sizes[i]}"
