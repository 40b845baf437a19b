"""Pytest configuration and shared fixtures."""

import json
from typing import Iterable, Optional

import httpx
import pytest

from chunkrelay.core.config import TransferConfig

MiB = 1024 * 1024

SOURCE_URL = "https://files.example.com/media/video.mp4"
API_BASE_URL = "https://upload.example.com"
UPLOAD_URL = "https://upload.example.com/upload/v1beta/files?upload_id=session-123"
SINK_URL = "https://sink.example.com/functions/v1/progress"
FILE_URI = "https://upload.example.com/v1beta/files/abc123"


def make_payload(size: int) -> bytes:
    """Deterministic, non-uniform bytes so misplaced ranges are detectable."""
    pattern = bytes(range(251))
    return (pattern * (size // len(pattern) + 1))[:size]


class FakeRemote:
    """
    In-process stand-in for the source server, the upload API and the
    progress sink, served through ``httpx.MockTransport``.
    """

    def __init__(
        self,
        data: bytes,
        accept_ranges: bool = True,
        states: Iterable[str] = ("ACTIVE",),
        chunk_failures: Optional[dict[int, int]] = None,
        final_body: Optional[dict] = None,
        session_status: int = 200,
        sink_status: int = 200,
        stream_piece_size: int = 64 * 1024,
    ):
        self.data = data
        self.accept_ranges = accept_ranges
        self.states = list(states)
        self.chunk_failures = dict(chunk_failures or {})
        self.final_body = final_body if final_body is not None else {"file": {"uri": FILE_URI, "state": "PROCESSING"}}
        self.session_status = session_status
        self.sink_status = sink_status
        self.stream_piece_size = stream_piece_size

        self.session_requests: list[httpx.Request] = []
        self.range_requests: list[str] = []
        self.chunk_requests: list[dict] = []
        self.chunk_attempts: dict[int, int] = {}
        self.status_checks = 0
        self.progress_events: list[dict] = []
        self.progress_headers: list[httpx.Headers] = []
        self.received = bytearray()

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "files.example.com":
            return self._source(request)
        if host == "upload.example.com":
            if "upload_id" in request.url.params:
                return self._chunk(request)
            if request.url.path == "/upload/v1beta/files":
                return self._start_session(request)
            if request.url.path.startswith("/v1beta/files/"):
                return self._status(request)
        if host == "sink.example.com":
            self.progress_events.append(json.loads(request.content))
            self.progress_headers.append(request.headers)
            return httpx.Response(self.sink_status, json={"ok": self.sink_status == 200})
        return httpx.Response(404)

    def _source(self, request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            headers = {"content-length": str(len(self.data))}
            if self.accept_ranges:
                headers["accept-ranges"] = "bytes"
            return httpx.Response(200, headers=headers)

        range_header = request.headers.get("range")
        if range_header:
            self.range_requests.append(range_header)
            start, end = range_header.removeprefix("bytes=").split("-")
            return httpx.Response(206, content=self.data[int(start): int(end) + 1])

        data, piece = self.data, self.stream_piece_size

        async def body():
            for i in range(0, len(data), piece):
                yield data[i: i + piece]

        return httpx.Response(200, content=body())

    def _start_session(self, request: httpx.Request) -> httpx.Response:
        self.session_requests.append(request)
        if self.session_status != 200:
            return httpx.Response(self.session_status, text="quota exceeded")
        return httpx.Response(200, headers={"X-Goog-Upload-URL": UPLOAD_URL})

    def _chunk(self, request: httpx.Request) -> httpx.Response:
        offset = int(request.headers["x-goog-upload-offset"])
        command = request.headers["x-goog-upload-command"]
        index = len({r["offset"] for r in self.chunk_requests} | {offset}) - 1
        self.chunk_attempts[index] = self.chunk_attempts.get(index, 0) + 1
        self.chunk_requests.append(
            {"offset": offset, "length": len(request.content), "command": command, "index": index}
        )

        if self.chunk_failures.get(index, 0) >= self.chunk_attempts[index]:
            return httpx.Response(503, text="backend unavailable")

        assert offset == len(self.received), "chunk sent out of order"
        self.received.extend(request.content)
        if command == "upload, finalize":
            return httpx.Response(200, json=self.final_body)
        return httpx.Response(200)

    def _status(self, request: httpx.Request) -> httpx.Response:
        self.status_checks += 1
        state = self.states[min(self.status_checks, len(self.states)) - 1]
        if state == "ERROR":
            return httpx.Response(500, text="internal")
        return httpx.Response(200, json={"name": "files/abc123", "state": state})

    @property
    def successful_chunks(self) -> list[dict]:
        """Last attempt per offset, in send order."""
        seen: dict[int, dict] = {}
        for req in self.chunk_requests:
            seen[req["offset"]] = req
        return list(seen.values())


class FakeClock:
    """Monotonic clock advanced only by the injected sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    """Fresh fake clock for each test."""
    return FakeClock()


@pytest.fixture
def transfer_config():
    """Default transfer configuration (8 MiB chunks, 3 attempts, 2 s delay)."""
    return TransferConfig()
