"""Tests for resumable session negotiation."""

import json

import httpx
import pytest

from chunkrelay.services.relay.exceptions import SessionRejectedError, UnknownSizeError
from chunkrelay.services.relay.session import SessionNegotiator

from conftest import API_BASE_URL, UPLOAD_URL, FakeRemote


@pytest.mark.asyncio
async def test_open_session_success():
    """Test that the session handle is taken from the response header."""
    remote = FakeRemote(b"")
    async with remote.client() as client:
        negotiator = SessionNegotiator(client, API_BASE_URL + "/", "secret-key")
        session = await negotiator.open_session("video/mp4", "lecture.mp4", 20971520)

    assert session.upload_url == UPLOAD_URL
    assert session.object_id is None

    request = remote.session_requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://upload.example.com/upload/v1beta/files"
    assert request.headers["x-goog-api-key"] == "secret-key"
    assert request.headers["x-goog-upload-protocol"] == "resumable"
    assert request.headers["x-goog-upload-command"] == "start"
    assert request.headers["x-goog-upload-header-content-length"] == "20971520"
    assert request.headers["x-goog-upload-header-content-type"] == "video/mp4"
    assert json.loads(request.content) == {"file": {"display_name": "lecture.mp4"}}


@pytest.mark.asyncio
@pytest.mark.parametrize("total_size", [0, -1])
async def test_open_session_requires_positive_size(total_size):
    """Test that no request is made for an unknown size."""
    remote = FakeRemote(b"")
    async with remote.client() as client:
        negotiator = SessionNegotiator(client, API_BASE_URL, "secret-key")
        with pytest.raises(UnknownSizeError):
            await negotiator.open_session("video/mp4", "x.mp4", total_size)

    assert remote.session_requests == []


@pytest.mark.asyncio
async def test_open_session_rejected_status():
    """Test that a non-2xx response raises SessionRejectedError."""
    remote = FakeRemote(b"", session_status=429)
    async with remote.client() as client:
        negotiator = SessionNegotiator(client, API_BASE_URL, "secret-key")
        with pytest.raises(SessionRejectedError, match="quota exceeded"):
            await negotiator.open_session("video/mp4", "x.mp4", 10)

    # Negotiation is never retried
    assert len(remote.session_requests) == 1


@pytest.mark.asyncio
async def test_open_session_missing_upload_url():
    """Test that a success without the session header is rejected."""
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    async with httpx.AsyncClient(transport=transport) as client:
        negotiator = SessionNegotiator(client, API_BASE_URL, "secret-key")
        with pytest.raises(SessionRejectedError, match="Missing upload URL"):
            await negotiator.open_session("video/mp4", "x.mp4", 10)


@pytest.mark.asyncio
async def test_open_session_transport_error():
    """Test that a connection failure raises SessionRejectedError."""

    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        negotiator = SessionNegotiator(client, API_BASE_URL, "secret-key")
        with pytest.raises(SessionRejectedError):
            await negotiator.open_session("video/mp4", "x.mp4", 10)
