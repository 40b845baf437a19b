"""Relay API routes."""

import logging
from uuid import uuid4

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import JSONResponse

from chunkrelay.core.config import settings
from chunkrelay.models.relay import RelayRequest, TransferStatusResponse
from chunkrelay.services.relay.orchestrator import relay_file
from chunkrelay.storage.transfer_store import transfer_store

router = APIRouter(prefix="/api/v1", tags=["relay"])
logger = logging.getLogger(__name__)


@router.post("/relay")
async def create_relay(request: RelayRequest = Body(...)) -> JSONResponse:
    """Relay a file from its source URL to the upload API.

    Responds once the uploaded object is ACTIVE (200) or the transfer has
    failed (500). Both outcomes carry a ``success`` flag.
    """
    prefixes = settings.allowed_content_type_prefixes
    if prefixes and not any(request.mime_type.startswith(p) for p in prefixes):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid mimeType. Must start with one of: {', '.join(prefixes)}",
        )

    api_key = request.upload_api_key or settings.UPLOAD_API_KEY
    if not api_key:
        raise HTTPException(status_code=400, detail="Missing required field: geminiApiKey")

    transfer_id = str(uuid4())
    logger.info(
        "Received relay request",
        extra={
            "transfer_id": transfer_id,
            "subject_id": request.subject_id,
            "mime_type": request.mime_type,
            "display_name": request.display_name,
        },
    )

    try:
        response = await relay_file(
            source_url=str(request.file_url),
            content_type=request.mime_type,
            display_name=request.display_name,
            subject_id=request.subject_id,
            api_key=api_key,
            progress_token=request.progress_token,
            transfer_id=transfer_id,
        )
    except Exception as e:
        logger.error(f"Unexpected error during relay: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    if response.success:
        logger.info(
            f"Relay completed: transfer_id={transfer_id}, size={response.total_size}",
        )
        return JSONResponse(status_code=200, content=response.to_payload())

    logger.warning(f"Relay failed: transfer_id={transfer_id}, error={response.error}")
    return JSONResponse(status_code=500, content=response.to_payload())


@router.get("/relay/{transfer_id}", response_model=TransferStatusResponse, response_model_by_alias=True)
async def get_relay_status(transfer_id: str) -> TransferStatusResponse:
    """Return the last recorded state of a transfer."""
    record = transfer_store.get(transfer_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Transfer not found")

    event = record.last_event
    return TransferStatusResponse(
        upload_id=record.transfer_id,
        subject_id=record.subject_id,
        display_name=record.display_name,
        state=record.state.value,
        bytes_uploaded=event.bytes_uploaded if event else 0,
        total_bytes=event.total_bytes if event else 0,
        percentage=event.percentage if event else 0,
        file_uri=record.file_uri,
        error=record.error,
        updated_at=record.updated_at,
    )
