"""
Chunk sources for the relay service.

A source yields the file as consecutive ``Chunk`` objects covering
``[0, total_size)`` exactly once. Two interchangeable strategies exist:

* ``RangeChunkSource`` re-fetches each byte range with an HTTP Range request,
  so nothing beyond one chunk is ever held in memory.
* ``StreamChunkSource`` consumes a single streamed GET and buffers until a
  chunk is full, for servers that do not honour Range requests.
"""

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

import httpx

from chunkrelay.services.relay.exceptions import SourceUnavailableError, UnknownSizeError
from chunkrelay.services.relay.models import Chunk, SourceMetadata, format_bytes

logger = logging.getLogger(__name__)

STRATEGY_AUTO = "auto"
STRATEGY_RANGE = "range"
STRATEGY_STREAM = "stream"


async def probe_source(client: httpx.AsyncClient, source_url: str) -> SourceMetadata:
    """
    Read the size and range support of the source with a HEAD request.

    Args:
        client: HTTP client to issue the request with
        source_url: URL of the file to relay

    Returns:
        SourceMetadata with the declared total size

    Raises:
        SourceUnavailableError: If the request fails or returns non-2xx
        UnknownSizeError: If Content-Length is absent, zero or invalid
    """
    try:
        response = await client.head(source_url, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.error(
            "Source metadata probe failed",
            extra={"source_url": source_url, "error": str(e)},
        )
        raise SourceUnavailableError(f"Failed to get file metadata: {e}") from e

    if not response.is_success:
        logger.error(
            "Source metadata probe returned error status",
            extra={"source_url": source_url, "status_code": response.status_code},
        )
        raise SourceUnavailableError(
            f"Failed to get file metadata: {response.status_code} {response.reason_phrase}"
        )

    try:
        total_size = int(response.headers.get("content-length", "0"))
    except ValueError:
        total_size = 0
    if total_size <= 0:
        raise UnknownSizeError("Unable to determine file size")

    accepts_ranges = response.headers.get("accept-ranges", "").strip().lower() == "bytes"

    logger.info(
        "Source metadata probed",
        extra={
            "source_url": source_url,
            "total_size": total_size,
            "size_human": format_bytes(total_size),
            "accepts_ranges": accepts_ranges,
        },
    )
    return SourceMetadata(
        total_size=total_size,
        accepts_ranges=accepts_ranges,
        content_type=response.headers.get("content-type"),
    )


class ChunkSource(ABC):
    """Lazy, finite, non-restartable sequence of chunks of one source."""

    def __init__(self, client: httpx.AsyncClient, source_url: str, total_size: int, chunk_size: int):
        if total_size <= 0:
            raise UnknownSizeError("Unable to determine file size")
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.client = client
        self.source_url = source_url
        self.total_size = total_size
        self.chunk_size = chunk_size
        self._consumed = False

    @property
    def chunk_count(self) -> int:
        return -(-self.total_size // self.chunk_size)

    def chunks(self) -> AsyncIterator[Chunk]:
        """Iterate the chunks. A source can only be iterated once."""
        if self._consumed:
            raise RuntimeError(f"{type(self).__name__} has already been consumed")
        self._consumed = True
        return self._iter_chunks()

    @abstractmethod
    def _iter_chunks(self) -> AsyncIterator[Chunk]:
        pass

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Return strategy identifier."""
        pass


class RangeChunkSource(ChunkSource):
    """Fetches ``[offset, offset + len)`` from the source on demand."""

    async def _iter_chunks(self) -> AsyncIterator[Chunk]:
        offset = 0
        while offset < self.total_size:
            length = min(self.chunk_size, self.total_size - offset)
            payload = await self._fetch_range(offset, length)
            end = offset + length
            yield Chunk(offset=offset, payload=payload, is_final=end >= self.total_size)
            offset = end

    async def _fetch_range(self, offset: int, length: int) -> bytes:
        range_header = f"bytes={offset}-{offset + length - 1}"
        try:
            response = await self.client.get(
                self.source_url, headers={"Range": range_header}, follow_redirects=True
            )
        except httpx.HTTPError as e:
            logger.error(
                "Failed to fetch source range",
                extra={"source_url": self.source_url, "range": range_header, "error": str(e)},
            )
            raise SourceUnavailableError(f"Failed to fetch chunk at {offset}: {e}") from e

        if not response.is_success:
            raise SourceUnavailableError(
                f"Failed to fetch chunk at {offset}: {response.status_code} {response.reason_phrase}"
            )

        payload = response.content
        if len(payload) != length:
            raise SourceUnavailableError(
                f"Failed to fetch chunk at {offset}: expected {length} bytes, got {len(payload)}"
            )
        return payload

    def get_strategy_name(self) -> str:
        return STRATEGY_RANGE


class StreamChunkSource(ChunkSource):
    """Consumes one streamed response body, releasing full chunks as they fill."""

    async def _iter_chunks(self) -> AsyncIterator[Chunk]:
        buffer = bytearray()
        offset = 0
        try:
            async with self.client.stream("GET", self.source_url, follow_redirects=True) as response:
                if not response.is_success:
                    raise SourceUnavailableError(
                        f"Failed to stream source: {response.status_code} {response.reason_phrase}"
                    )
                async for data in response.aiter_bytes():
                    buffer.extend(data)
                    if offset + len(buffer) > self.total_size:
                        raise SourceUnavailableError(
                            f"Source stream exceeded declared size of {self.total_size} bytes"
                        )
                    # The final chunk is held back until the stream is drained
                    while len(buffer) >= self.chunk_size and offset + self.chunk_size < self.total_size:
                        payload = bytes(buffer[: self.chunk_size])
                        del buffer[: self.chunk_size]
                        yield Chunk(offset=offset, payload=payload, is_final=False)
                        offset += len(payload)
        except httpx.HTTPError as e:
            logger.error(
                "Source stream failed",
                extra={"source_url": self.source_url, "offset": offset, "error": str(e)},
            )
            raise SourceUnavailableError(f"Failed to stream source at {offset}: {e}") from e

        received = offset + len(buffer)
        if received < self.total_size:
            raise SourceUnavailableError(
                f"Source stream ended at {received} of {self.total_size} bytes"
            )

        payload = bytes(buffer)
        buffer.clear()
        yield Chunk(offset=offset, payload=payload, is_final=True)

    def get_strategy_name(self) -> str:
        return STRATEGY_STREAM


def select_chunk_source(
    client: httpx.AsyncClient,
    source_url: str,
    metadata: SourceMetadata,
    chunk_size: int,
    strategy: str = STRATEGY_AUTO,
) -> ChunkSource:
    """
    Pick the chunking strategy for a probed source.

    ``auto`` uses range requests when the source advertised
    ``Accept-Ranges: bytes`` and falls back to streaming otherwise.
    """
    strategy = (strategy or STRATEGY_AUTO).lower()
    if strategy == STRATEGY_AUTO:
        strategy = STRATEGY_RANGE if metadata.accepts_ranges else STRATEGY_STREAM

    if strategy == STRATEGY_RANGE:
        source_cls: type[ChunkSource] = RangeChunkSource
    elif strategy == STRATEGY_STREAM:
        source_cls = StreamChunkSource
    else:
        raise ValueError(f"Unknown source strategy: {strategy}")

    source = source_cls(client, source_url, metadata.total_size, chunk_size)
    logger.info(
        "Selected chunk source strategy",
        extra={
            "source_url": source_url,
            "strategy": source.get_strategy_name(),
            "source_content_type": metadata.content_type,
            "chunk_size": chunk_size,
            "chunk_count": source.chunk_count,
        },
    )
    return source
