"""Transfer record tracking store."""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from chunkrelay.core.config import settings
from chunkrelay.services.relay.models import ProgressEvent, TransferState


@dataclass
class TransferRecord:
    """Last known state of a transfer."""

    transfer_id: str
    subject_id: str
    display_name: str
    state: TransferState
    created_at: datetime
    updated_at: datetime
    upload_url: Optional[str] = None
    last_event: Optional[ProgressEvent] = None
    file_uri: Optional[str] = None
    error: Optional[str] = None


class TransferStore:
    """In-memory store for transfer records, bounded to ``max_entries``.

    The least recently written record is evicted once the bound is reached.
    """

    def __init__(self, max_entries: int = 1000):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._records: "OrderedDict[str, TransferRecord]" = OrderedDict()

    def create(self, record: TransferRecord) -> None:
        """Store a new transfer record."""
        self._put(record)

    def get(self, transfer_id: str) -> Optional[TransferRecord]:
        """Retrieve a transfer record by transfer_id."""
        return self._records.get(transfer_id)

    def update(self, transfer_id: str, **fields) -> Optional[TransferRecord]:
        """Update fields of an existing record. Unknown ids are ignored."""
        record = self._records.get(transfer_id)
        if record is None:
            return None
        for name, value in fields.items():
            if not hasattr(record, name):
                raise AttributeError(f"TransferRecord has no field {name!r}")
            setattr(record, name, value)
        record.updated_at = datetime.now(timezone.utc)
        self._put(record)
        return record

    def record_event(self, event: ProgressEvent) -> None:
        """Attach the latest progress event to its transfer, if tracked."""
        self.update(event.upload_id, last_event=event)

    def list_all(self) -> list[TransferRecord]:
        """List all transfer records, oldest first."""
        return list(self._records.values())

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def _put(self, record: TransferRecord) -> None:
        self._records[record.transfer_id] = record
        self._records.move_to_end(record.transfer_id)
        while len(self._records) > self.max_entries:
            self._records.popitem(last=False)


# Singleton instance
transfer_store = TransferStore(max_entries=settings.TRANSFER_STORE_MAX_ENTRIES)
