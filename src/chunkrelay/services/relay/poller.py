"""
Activation polling for uploaded objects.

After the last chunk is accepted the upload API processes the object
asynchronously. The poller waits for the ACTIVE state under a deadline that
grows with the object size, backing off exponentially between checks.
Transient status-check failures are logged and polling continues.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple

import httpx

from chunkrelay.core.config import TransferConfig
from chunkrelay.services.relay.exceptions import ActivationTimeoutError, RemoteProcessingFailedError
from chunkrelay.services.relay.models import ActivationResult

logger = logging.getLogger(__name__)

STATUS_PATH = "/v1beta/files/{file_id}"


class ActivationStatus(str, Enum):
    ACTIVE = "active"
    FAILED = "failed"
    PENDING = "pending"
    REQUEST_ERROR = "request_error"


def compute_timeout(total_size: int, config: TransferConfig) -> float:
    """Deadline in seconds: ``min(base + per_mb * size_mb, max)``."""
    size_mb = total_size / (1024 * 1024)
    return min(
        config.activation_base_timeout_seconds + size_mb * config.activation_seconds_per_mb,
        config.activation_max_timeout_seconds,
    )


def backoff_delay_ms(attempt: int, config: TransferConfig, rng: random.Random | None = None) -> float:
    """Delay before the next check, attempt starting at 1, jitter included."""
    base = min(
        config.poll_initial_delay_ms * config.poll_backoff_factor ** (attempt - 1),
        config.poll_max_delay_ms,
    )
    jitter = (rng or random).random() * config.poll_jitter_ms
    return base + jitter


def object_file_id(object_id: str) -> str:
    """``https://.../v1beta/files/abc123`` -> ``abc123``."""
    return object_id.rstrip("/").rsplit("/", 1)[-1]


class ActivationPoller:
    """Waits for an uploaded object to reach the ACTIVE state."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_base_url: str,
        api_key: str,
        config: TransferConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.api_base_url = api_base_url.rstrip("/")
        self.api_key = api_key
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    async def wait_active(self, object_id: str, total_size: int) -> ActivationResult:
        """
        Poll until the object is ACTIVE.

        Args:
            object_id: Object uri returned by the final chunk
            total_size: Object size in bytes, used to size the deadline

        Returns:
            ActivationResult with the usable object uri and its expiry

        Raises:
            RemoteProcessingFailedError: If the API reports the object FAILED
            ActivationTimeoutError: If the deadline elapses first
        """
        timeout = compute_timeout(total_size, self.config)
        size_mb = total_size / (1024 * 1024)
        file_id = object_file_id(object_id)

        logger.info(
            f"File activation timeout: {round(timeout)}s for {round(size_mb)}MB file",
            extra={"object_id": object_id, "timeout_seconds": timeout, "size_mb": round(size_mb, 2)},
        )

        start = self._clock()
        attempt = 0
        while self._clock() - start < timeout:
            attempt += 1
            status, detail = await self._check_status(file_id, attempt)
            elapsed = self._clock() - start

            if status == ActivationStatus.ACTIVE:
                logger.info(
                    f"File is now ACTIVE after {round(elapsed)}s",
                    extra={"object_id": object_id, "attempts": attempt, "elapsed_seconds": round(elapsed, 1)},
                )
                return ActivationResult(
                    file_uri=object_id,
                    expires_at=datetime.now(timezone.utc) + timedelta(hours=self.config.result_ttl_hours),
                )

            if status == ActivationStatus.FAILED:
                raise RemoteProcessingFailedError(
                    f"File processing failed in upload API: {detail or 'Unknown error'}"
                )

            remaining = timeout - elapsed
            if remaining <= 0:
                break
            delay = min(backoff_delay_ms(attempt, self.config, self._rng) / 1000, remaining)
            logger.debug(
                f"Waiting {delay:.1f}s before next status check",
                extra={"object_id": object_id, "attempt": attempt},
            )
            await self._sleep(delay)

        elapsed = self._clock() - start
        error = ActivationTimeoutError(timeout, elapsed, attempt, size_mb)
        logger.error(
            str(error),
            extra={
                "object_id": object_id,
                "timeout_seconds": timeout,
                "elapsed_seconds": round(elapsed, 1),
                "attempts": attempt,
                "size_mb": round(size_mb, 2),
            },
        )
        raise error

    async def _check_status(self, file_id: str, attempt: int) -> Tuple[ActivationStatus, Optional[str]]:
        """One status query, classified. Never raises."""
        url = f"{self.api_base_url}{STATUS_PATH.format(file_id=file_id)}"
        try:
            response = await self.client.get(url, headers={"x-goog-api-key": self.api_key})
        except httpx.HTTPError as e:
            logger.warning(
                f"Status check attempt {attempt} failed",
                extra={"file_id": file_id, "attempt": attempt, "error": str(e)},
            )
            return ActivationStatus.REQUEST_ERROR, str(e)

        if not response.is_success:
            logger.warning(
                f"File status check failed: {response.status_code} {response.reason_phrase}",
                extra={"file_id": file_id, "attempt": attempt, "status_code": response.status_code},
            )
            return ActivationStatus.REQUEST_ERROR, response.reason_phrase

        try:
            data = response.json()
            state = data.get("state")
        except (ValueError, AttributeError) as e:
            logger.warning(
                f"Status check attempt {attempt} returned an unreadable body",
                extra={"file_id": file_id, "attempt": attempt, "error": str(e)},
            )
            return ActivationStatus.REQUEST_ERROR, str(e)

        logger.info(
            f"File status check {attempt}: {state}",
            extra={"file_id": file_id, "attempt": attempt, "state": state},
        )
        if state == "ACTIVE":
            return ActivationStatus.ACTIVE, None
        if state == "FAILED":
            error = data.get("error")
            if isinstance(error, dict):
                error = error.get("message") or str(error)
            return ActivationStatus.FAILED, error
        return ActivationStatus.PENDING, state
