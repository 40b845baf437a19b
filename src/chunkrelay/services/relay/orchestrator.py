"""Orchestrator for the chunked relay of one file."""

import asyncio
import logging
import random
import time
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

import httpx

from chunkrelay.core.config import TransferConfig, settings
from chunkrelay.core.logging import transfer_id_context
from chunkrelay.models.relay import RelayResponse
from chunkrelay.services.relay.exceptions import MissingObjectIdError, RelayException
from chunkrelay.services.relay.models import (
    ProgressSnapshot,
    ProgressStatus,
    RelayResult,
    Transfer,
    TransferState,
    format_bytes,
)
from chunkrelay.services.relay.poller import ActivationPoller
from chunkrelay.services.relay.progress import ProgressEmitter
from chunkrelay.services.relay.session import SessionNegotiator
from chunkrelay.services.relay.source import probe_source, select_chunk_source
from chunkrelay.services.relay.transmitter import ChunkTransmitter
from chunkrelay.storage.transfer_store import TransferRecord, TransferStore, transfer_store

logger = logging.getLogger(__name__)


class RelayOrchestrator:
    """
    Runs the transfer state machine for one file:

    probe -> open session -> send chunks in order -> poll activation -> report.

    Any error moves the transfer to FAILED, emits a ``failed`` progress event
    and is re-raised to the caller.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        emitter: ProgressEmitter,
        api_key: str,
        api_base_url: str,
        config: TransferConfig,
        store: Optional[TransferStore] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.emitter = emitter
        self.config = config
        self.store = store
        self.negotiator = SessionNegotiator(client, api_base_url, api_key)
        self.transmitter = ChunkTransmitter(
            client,
            max_attempts=config.max_attempts,
            retry_delay_seconds=config.retry_delay_seconds,
            sleep=sleep,
        )
        self.poller = ActivationPoller(
            client, api_base_url, api_key, config, sleep=sleep, clock=clock, rng=rng
        )

    async def upload(
        self,
        source_url: str,
        content_type: str,
        display_name: str,
        transfer_id: Optional[str] = None,
    ) -> RelayResult:
        """
        Relay the file at ``source_url`` to the upload API.

        Args:
            source_url: URL of the file to relay
            content_type: MIME type declared to the upload API
            display_name: Display name of the uploaded object
            transfer_id: Optional identifier, generated when omitted

        Returns:
            RelayResult of the ACTIVE object

        Raises:
            RelayException: On any unrecovered transfer error
        """
        transfer = Transfer(
            transfer_id=transfer_id or str(uuid4()),
            source_url=source_url,
            content_type=content_type,
            display_name=display_name,
            subject_id=self.emitter.subject_id,
        )
        token = transfer_id_context.set(transfer.transfer_id)
        self._track(transfer)
        try:
            return await self._run(transfer)
        except Exception as e:
            message = str(e) or "Streaming upload failed"
            if not transfer.is_terminal:
                transfer.fail(message)
            logger.error(
                "Relay transfer failed",
                extra={
                    "error": message,
                    "error_type": type(e).__name__,
                    "bytes_transmitted": transfer.bytes_transmitted,
                    "total_size": transfer.total_size,
                },
            )
            # A failed transfer reports zero progress regardless of how far it got
            await self.emitter.emit(
                transfer.transfer_id,
                ProgressSnapshot(bytes_uploaded=0, total_bytes=0, status=ProgressStatus.FAILED, message=message),
            )
            self._remember(transfer, state=TransferState.FAILED, error=message)
            raise
        finally:
            transfer_id_context.reset(token)

    async def _run(self, transfer: Transfer) -> RelayResult:
        metadata = await probe_source(self.client, transfer.source_url)
        transfer.set_total_size(metadata.total_size)
        total = transfer.total_size

        logger.info(
            f"File size: {format_bytes(total)} - streaming in {format_bytes(self.config.chunk_size)} chunks",
            extra={"total_size": total, "chunk_size": self.config.chunk_size},
        )
        await self._emit(transfer, ProgressStatus.UPLOADING, "Starting streaming upload")

        session = await self.negotiator.open_session(transfer.content_type, transfer.display_name, total)
        transfer.advance(TransferState.TRANSMITTING)
        self._remember(transfer, state=transfer.state, upload_url=session.upload_url)

        source = select_chunk_source(
            self.client, transfer.source_url, metadata, self.config.chunk_size, self.config.source_strategy
        )
        async with aclosing(source.chunks()) as chunks:
            async for chunk in chunks:
                receipt = await self.transmitter.send(session, chunk, transfer.content_type)
                transfer.record_bytes(receipt.bytes_sent)

                if chunk.is_final:
                    transfer.advance(TransferState.FINALIZING)
                    self._remember(transfer, state=transfer.state)
                    await self._emit(transfer, ProgressStatus.FINALIZING, "Finalizing streaming upload")
                else:
                    await self._emit(
                        transfer, ProgressStatus.UPLOADING, f"Streamed {format_bytes(transfer.bytes_transmitted)}"
                    )

        if not session.object_id:
            raise MissingObjectIdError("Streaming upload completed but no file URI received")

        transfer.advance(TransferState.POLLING)
        self._remember(transfer, state=transfer.state)
        activation = await self.poller.wait_active(session.object_id, total)

        transfer.advance(TransferState.COMPLETED)
        await self._emit(transfer, ProgressStatus.COMPLETED, "Streaming upload completed successfully")
        self._remember(transfer, state=transfer.state, file_uri=activation.file_uri)

        logger.info(
            "Relay transfer completed",
            extra={"file_uri": activation.file_uri, "total_size": total},
        )
        return RelayResult(
            file_uri=activation.file_uri,
            upload_id=transfer.transfer_id,
            total_size=total,
            expires_at=activation.expires_at,
        )

    async def _emit(self, transfer: Transfer, status: ProgressStatus, message: str) -> None:
        await self.emitter.emit(
            transfer.transfer_id,
            ProgressSnapshot(
                bytes_uploaded=transfer.bytes_transmitted,
                total_bytes=transfer.total_size,
                status=status,
                message=message,
            ),
        )

    def _track(self, transfer: Transfer) -> None:
        if self.store is None:
            return
        now = datetime.now(timezone.utc)
        try:
            self.store.create(
                TransferRecord(
                    transfer_id=transfer.transfer_id,
                    subject_id=transfer.subject_id,
                    display_name=transfer.display_name,
                    state=transfer.state,
                    created_at=now,
                    updated_at=now,
                )
            )
        except Exception as e:
            logger.warning("Transfer store write failed (non-critical)", extra={"error": str(e)})

    def _remember(self, transfer: Transfer, **fields) -> None:
        if self.store is None:
            return
        try:
            self.store.update(transfer.transfer_id, **fields)
        except Exception as e:
            logger.warning("Transfer store write failed (non-critical)", extra={"error": str(e)})


async def relay_file(
    source_url: str,
    content_type: str,
    display_name: str,
    subject_id: str,
    api_key: Optional[str] = None,
    progress_token: Optional[str] = None,
    transfer_id: Optional[str] = None,
    store: Optional[TransferStore] = transfer_store,
    client: Optional[httpx.AsyncClient] = None,
    config: Optional[TransferConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RelayResponse:
    """
    Relay one file and report the terminal outcome. Never raises.

    Args:
        source_url: URL of the file to relay
        content_type: MIME type declared to the upload API
        display_name: Display name of the uploaded object
        subject_id: External subject identifier for progress events
        api_key: Upload API key, defaults to UPLOAD_API_KEY
        progress_token: Progress sink bearer token, defaults to PROGRESS_SINK_TOKEN
        transfer_id: Optional transfer identifier
        store: Transfer store to record state in
        client: HTTP client to use; a client with REQUEST_TIMEOUT is opened when omitted
        config: Transfer tuning, defaults to the values from settings
        sleep: Awaitable sleep used for retry and poll delays
        clock: Monotonic clock used for the activation deadline

    Returns:
        RelayResponse with either the success or the failure payload
    """
    if client is None:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as owned_client:
            return await relay_file(
                source_url,
                content_type,
                display_name,
                subject_id,
                api_key=api_key,
                progress_token=progress_token,
                transfer_id=transfer_id,
                store=store,
                client=owned_client,
                config=config,
                sleep=sleep,
                clock=clock,
            )

    transfer_id = transfer_id or str(uuid4())
    emitter = ProgressEmitter(
        client,
        subject_id=subject_id,
        sink_url=settings.PROGRESS_SINK_URL,
        sink_token=progress_token or settings.PROGRESS_SINK_TOKEN,
        store=store,
        subject_field=settings.PROGRESS_SUBJECT_FIELD,
    )
    orchestrator = RelayOrchestrator(
        client,
        emitter,
        api_key=api_key or settings.UPLOAD_API_KEY,
        api_base_url=settings.UPLOAD_API_BASE_URL,
        config=config or settings.transfer_config(),
        store=store,
        sleep=sleep,
        clock=clock,
    )
    try:
        result = await orchestrator.upload(source_url, content_type, display_name, transfer_id=transfer_id)
    except RelayException as e:
        return RelayResponse(success=False, upload_id=transfer_id, error=str(e))
    except Exception as e:
        logger.error(
            "Unexpected error during relay",
            extra={"transfer_id": transfer_id, "error": str(e)},
            exc_info=True,
        )
        return RelayResponse(success=False, upload_id=transfer_id, error=str(e) or "Upload failed")

    return RelayResponse(
        success=True,
        file_uri=result.file_uri,
        upload_id=result.upload_id,
        total_size=result.total_size,
        expires_at=result.expires_at,
        message="File uploaded successfully to upload API",
    )
