"""Tests for chunk transmission and retries."""

import httpx
import pytest

from chunkrelay.services.relay.exceptions import ChunkTransmissionFailedError
from chunkrelay.services.relay.models import Chunk, UploadSession
from chunkrelay.services.relay.transmitter import ChunkTransmitter

from conftest import FILE_URI, UPLOAD_URL, FakeRemote


def _transmitter(client, fake_clock, max_attempts=3):
    return ChunkTransmitter(client, max_attempts=max_attempts, retry_delay_seconds=2.0, sleep=fake_clock.sleep)


@pytest.mark.asyncio
async def test_send_intermediate_chunk(fake_clock):
    """Test headers of a chunk that is not the last."""
    remote = FakeRemote(b"")
    session = UploadSession(upload_url=UPLOAD_URL)
    async with remote.client() as client:
        receipt = await _transmitter(client, fake_clock).send(
            session, Chunk(offset=0, payload=b"abcd", is_final=False), "video/mp4"
        )

    assert receipt.bytes_sent == 4
    assert receipt.object_id is None
    assert session.object_id is None
    assert remote.chunk_requests == [{"offset": 0, "length": 4, "command": "upload", "index": 0}]
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_send_final_chunk_captures_object_id(fake_clock):
    """Test that the final chunk finalizes and yields the object id."""
    remote = FakeRemote(b"")
    remote.received.extend(b"abcd")
    session = UploadSession(upload_url=UPLOAD_URL)
    async with remote.client() as client:
        receipt = await _transmitter(client, fake_clock).send(
            session, Chunk(offset=4, payload=b"ef", is_final=True), "video/mp4"
        )

    assert receipt.object_id == FILE_URI
    assert session.object_id == FILE_URI
    assert remote.chunk_requests[0]["command"] == "upload, finalize"


@pytest.mark.asyncio
async def test_send_request_headers(fake_clock):
    """Test offset, length and content type headers on the wire."""
    captured = []

    def handler(request):
        captured.append(request)
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await _transmitter(client, fake_clock).send(
            UploadSession(upload_url=UPLOAD_URL), Chunk(offset=16, payload=b"x" * 8, is_final=False), "video/webm"
        )

    request = captured[0]
    assert request.method == "POST"
    assert request.headers["content-length"] == "8"
    assert request.headers["x-goog-upload-offset"] == "16"
    assert request.headers["content-type"] == "video/webm"
    assert request.headers["x-goog-upload-command"] == "upload"
    assert request.content == b"x" * 8


@pytest.mark.asyncio
async def test_send_succeeds_on_second_attempt(fake_clock):
    """Test that a transient failure is retried once and then stops."""
    remote = FakeRemote(b"", chunk_failures={0: 1})
    async with remote.client() as client:
        receipt = await _transmitter(client, fake_clock).send(
            UploadSession(upload_url=UPLOAD_URL), Chunk(offset=0, payload=b"abcd", is_final=False), "video/mp4"
        )

    assert receipt.bytes_sent == 4
    assert remote.chunk_attempts[0] == 2
    assert fake_clock.sleeps == [2.0]


@pytest.mark.asyncio
async def test_send_fails_after_three_attempts(fake_clock):
    """Test that exactly three attempts are made before giving up."""
    remote = FakeRemote(b"", chunk_failures={0: 99})
    async with remote.client() as client:
        with pytest.raises(ChunkTransmissionFailedError) as exc_info:
            await _transmitter(client, fake_clock).send(
                UploadSession(upload_url=UPLOAD_URL), Chunk(offset=0, payload=b"abcd", is_final=False), "video/mp4"
            )

    assert remote.chunk_attempts[0] == 3
    assert fake_clock.sleeps == [2.0, 2.0]
    error = exc_info.value
    assert error.attempts == 3
    assert error.offset == 0
    assert isinstance(error.last_error, httpx.HTTPStatusError)
    assert "HTTP 503" in str(error)


@pytest.mark.asyncio
async def test_send_retries_transport_errors(fake_clock):
    """Test that connection failures count as failed attempts."""
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ReadError("connection reset", request=request)
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        receipt = await _transmitter(client, fake_clock).send(
            UploadSession(upload_url=UPLOAD_URL), Chunk(offset=0, payload=b"ab", is_final=False), "video/mp4"
        )

    assert receipt.bytes_sent == 2
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_send_respects_configured_attempts(fake_clock):
    """Test that max_attempts comes from construction, not a global."""
    remote = FakeRemote(b"", chunk_failures={0: 99})
    async with remote.client() as client:
        with pytest.raises(ChunkTransmissionFailedError):
            await _transmitter(client, fake_clock, max_attempts=1).send(
                UploadSession(upload_url=UPLOAD_URL), Chunk(offset=0, payload=b"ab", is_final=False), "video/mp4"
            )

    assert remote.chunk_attempts[0] == 1
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
@pytest.mark.parametrize("final_body", [{}, {"file": {}}, {"file": {"uri": ""}}, ["unexpected"]])
async def test_final_chunk_without_object_id_is_not_fatal(fake_clock, final_body):
    """Test that an unparsable finalize response yields no id but no error."""
    remote = FakeRemote(b"", final_body=final_body)
    session = UploadSession(upload_url=UPLOAD_URL)
    async with remote.client() as client:
        receipt = await _transmitter(client, fake_clock).send(
            session, Chunk(offset=0, payload=b"ab", is_final=True), "video/mp4"
        )

    assert receipt.bytes_sent == 2
    assert receipt.object_id is None
    assert session.object_id is None


@pytest.mark.asyncio
async def test_final_chunk_with_non_json_body(fake_clock):
    """Test that a non-JSON finalize response yields no id."""
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))
    async with httpx.AsyncClient(transport=transport) as client:
        receipt = await _transmitter(client, fake_clock).send(
            UploadSession(upload_url=UPLOAD_URL), Chunk(offset=0, payload=b"ab", is_final=True), "video/mp4"
        )

    assert receipt.object_id is None
