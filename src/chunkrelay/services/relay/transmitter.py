"""Chunk transmission to an open resumable upload session."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from chunkrelay.services.relay.exceptions import ChunkTransmissionFailedError
from chunkrelay.services.relay.models import Chunk, ChunkReceipt, UploadSession

logger = logging.getLogger(__name__)

COMMAND_UPLOAD = "upload"
COMMAND_UPLOAD_FINALIZE = "upload, finalize"


class ChunkTransmitter:
    """Sends chunks one at a time, retrying each with a fixed delay."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    async def send(self, session: UploadSession, chunk: Chunk, content_type: str) -> ChunkReceipt:
        """
        Send one chunk at its offset, finalizing the upload if it is the last.

        On a successful final chunk the object id is parsed from the response
        and stored on ``session``.

        Args:
            session: Open upload session
            chunk: Chunk to send
            content_type: MIME type declared for the object

        Returns:
            ChunkReceipt with the byte count and, for the final chunk, the object id

        Raises:
            ChunkTransmissionFailedError: If every attempt failed
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay_seconds),
            retry=retry_if_exception_type(httpx.HTTPError),
            sleep=self._sleep,
            reraise=True,
        )

        attempt_number = 0
        receipt: Optional[ChunkReceipt] = None
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    receipt = await self._send_once(session, chunk, content_type, attempt_number)
        except httpx.HTTPError as e:
            logger.error(
                f"Chunk upload failed after {attempt_number} attempts",
                extra={
                    "offset": chunk.offset,
                    "length": chunk.length,
                    "total_attempts": attempt_number,
                    "final_error": str(e),
                },
            )
            raise ChunkTransmissionFailedError(
                f"Chunk upload failed at offset {chunk.offset} after {attempt_number} attempts: {e}",
                offset=chunk.offset,
                attempts=attempt_number,
                last_error=e,
            ) from e

        if receipt.object_id:
            session.object_id = receipt.object_id
        return receipt

    async def _send_once(
        self, session: UploadSession, chunk: Chunk, content_type: str, attempt: int
    ) -> ChunkReceipt:
        headers = {
            "Content-Length": str(chunk.length),
            "X-Goog-Upload-Offset": str(chunk.offset),
            "Content-Type": content_type,
            "X-Goog-Upload-Command": COMMAND_UPLOAD_FINALIZE if chunk.is_final else COMMAND_UPLOAD,
        }

        try:
            response = await self.client.post(session.upload_url, headers=headers, content=chunk.payload)
            if not response.is_success:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}: {response.text}",
                    request=response.request,
                    response=response,
                )
        except httpx.HTTPError as e:
            status_code = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            logger.warning(
                f"Chunk upload attempt {attempt}/{self.max_attempts} failed",
                extra={
                    "offset": chunk.offset,
                    "length": chunk.length,
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "error": str(e),
                    "status_code": status_code,
                },
            )
            raise

        object_id = self._parse_object_id(response) if chunk.is_final else None
        return ChunkReceipt(bytes_sent=chunk.length, object_id=object_id)

    @staticmethod
    def _parse_object_id(response: httpx.Response) -> Optional[str]:
        """Extract ``file.uri`` from the finalize response, None when absent."""
        try:
            uri = response.json()["file"]["uri"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Failed to parse final upload response",
                extra={"error": str(e), "response_body": response.text[:500]},
            )
            return None
        if not isinstance(uri, str) or not uri:
            logger.warning("Final upload response carried no file uri")
            return None
        return uri
