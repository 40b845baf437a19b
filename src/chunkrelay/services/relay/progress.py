"""Progress reporting to the external progress sink."""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from chunkrelay.services.relay.exceptions import ProgressDeliveryFailedError
from chunkrelay.services.relay.models import (
    ProgressEvent,
    ProgressSnapshot,
    ProgressStatus,
    calculate_progress,
)
from chunkrelay.storage.transfer_store import TransferStore

logger = logging.getLogger(__name__)


class ProgressEmitter:
    """
    Turns transfer snapshots into progress events and pushes them (best-effort).

    Delivery failures are logged and never reach the caller. Every event is
    also recorded in the transfer store when one is given.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        subject_id: str,
        sink_url: str = "",
        sink_token: str = "",
        store: Optional[TransferStore] = None,
        subject_field: str = "subjectId",
    ):
        self.client = client
        self.subject_id = subject_id
        self.sink_url = sink_url
        self.sink_token = sink_token
        self.store = store
        self.subject_field = subject_field or "subjectId"

    async def emit(self, transfer_id: str, snapshot: ProgressSnapshot) -> ProgressEvent:
        """
        Build an event from ``snapshot`` and push it to the sink.

        Args:
            transfer_id: Transfer the snapshot belongs to
            snapshot: Byte counts, status and optional message

        Returns:
            The immutable event that was emitted
        """
        event = ProgressEvent(
            upload_id=transfer_id,
            subject_id=self.subject_id,
            bytes_uploaded=snapshot.bytes_uploaded,
            total_bytes=snapshot.total_bytes,
            percentage=calculate_progress(snapshot.bytes_uploaded, snapshot.total_bytes),
            status=snapshot.status,
            message=snapshot.message,
            timestamp=datetime.now(timezone.utc),
        )

        logger.info(
            f"Reporting progress - {event.status.value}: {event.percentage}% "
            f"({event.bytes_uploaded}/{event.total_bytes})",
            extra={
                "subject_id": self.subject_id,
                "status": event.status.value,
                "percentage": event.percentage,
                "progress_message": event.message,
            },
        )

        self._remember(event)

        if not self.sink_url:
            return event

        try:
            await self._deliver(event)
        except ProgressDeliveryFailedError as e:
            if event.status == ProgressStatus.FAILED:
                logger.error(
                    "Could not notify progress sink of upload failure",
                    extra={"subject_id": self.subject_id, "error": str(e)},
                )
            else:
                logger.warning(
                    "Progress delivery failed (non-critical)",
                    extra={"subject_id": self.subject_id, "error": str(e)},
                )
        return event

    async def _deliver(self, event: ProgressEvent) -> None:
        headers = {"Content-Type": "application/json"}
        if self.sink_token:
            headers["Authorization"] = f"Bearer {self.sink_token}"

        payload = event.to_payload()
        if self.subject_field != "subjectId":
            payload[self.subject_field] = payload.pop("subjectId")

        try:
            response = await self.client.post(self.sink_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProgressDeliveryFailedError(f"Progress sink unreachable: {e}") from e

        if not response.is_success:
            raise ProgressDeliveryFailedError(
                f"Progress sink returned {response.status_code} {response.reason_phrase} - {response.text[:500]}"
            )

        logger.debug("Progress reported successfully", extra={"subject_id": self.subject_id})

    def _remember(self, event: ProgressEvent) -> None:
        if self.store is None:
            return
        try:
            self.store.record_event(event)
        except Exception as e:
            logger.warning(
                "Transfer store write failed (non-critical)",
                extra={"subject_id": self.subject_id, "error": str(e)},
            )
