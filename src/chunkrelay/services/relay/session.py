"""Resumable upload session negotiation against the upload API."""

import logging

import httpx

from chunkrelay.services.relay.exceptions import SessionRejectedError, UnknownSizeError
from chunkrelay.services.relay.models import UploadSession

logger = logging.getLogger(__name__)

UPLOAD_START_PATH = "/upload/v1beta/files"
UPLOAD_URL_HEADER = "X-Goog-Upload-URL"


class SessionNegotiator:
    """Opens one resumable upload session per transfer. Never retries."""

    def __init__(self, client: httpx.AsyncClient, api_base_url: str, api_key: str):
        self.client = client
        self.api_base_url = api_base_url.rstrip("/")
        self.api_key = api_key

    async def open_session(self, content_type: str, display_name: str, total_size: int) -> UploadSession:
        """
        Start a resumable upload sized to ``total_size`` bytes.

        Args:
            content_type: Declared MIME type of the uploaded object
            display_name: Human readable name stored with the object
            total_size: Total number of bytes that will be sent

        Returns:
            UploadSession holding the upload URL for the chunk sends

        Raises:
            UnknownSizeError: If total_size is not positive
            SessionRejectedError: If the API fails or omits the upload URL
        """
        if total_size <= 0:
            raise UnknownSizeError(f"Cannot open upload session for size {total_size}")

        headers = {
            "x-goog-api-key": self.api_key,
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Header-Content-Length": str(total_size),
            "X-Goog-Upload-Header-Content-Type": content_type,
        }
        body = {"file": {"display_name": display_name}}

        try:
            response = await self.client.post(
                f"{self.api_base_url}{UPLOAD_START_PATH}", headers=headers, json=body
            )
        except httpx.HTTPError as e:
            logger.error(
                "Upload session request failed",
                extra={"display_name": display_name, "error": str(e)},
            )
            raise SessionRejectedError(f"Failed to start upload session: {e}") from e

        if not response.is_success:
            logger.error(
                "Upload session rejected",
                extra={
                    "display_name": display_name,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise SessionRejectedError(
                f"Failed to start upload session: {response.reason_phrase} - {response.text}"
            )

        upload_url = response.headers.get(UPLOAD_URL_HEADER)
        if not upload_url:
            raise SessionRejectedError("Missing upload URL from upload API")

        logger.info(
            "Upload session opened",
            extra={
                "display_name": display_name,
                "content_type": content_type,
                "total_size": total_size,
            },
        )
        return UploadSession(upload_url=upload_url)
