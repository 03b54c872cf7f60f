import asyncio

import httpx
import pytest

from renderhub.errors import FetchError
from renderhub.fetcher import fetch_bytes


def _fetch(handler, **kwargs):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetch_bytes(
                "https://media.example.com/talk.mp3",
                timeout_seconds=kwargs.pop("timeout_seconds", 5),
                max_attempts=kwargs.pop("max_attempts", 3),
                retry_delay_seconds=0,
                client=client,
                **kwargs,
            )

    return asyncio.run(run())


def test_fetch_returns_body():
    data = _fetch(lambda request: httpx.Response(200, content=b"ID3audio"))

    assert data == b"ID3audio"


def test_fetch_retries_transient_errors():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, content=b"ok")

    assert _fetch(handler) == b"ok"
    assert len(calls) == 3


def test_fetch_gives_up_after_max_attempts():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(FetchError) as excinfo:
        _fetch(handler, max_attempts=2)

    assert len(calls) == 2
    assert "after 2 attempts" in str(excinfo.value)


def test_fetch_does_not_retry_http_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404)

    with pytest.raises(FetchError) as excinfo:
        _fetch(handler)

    assert len(calls) == 1
    assert excinfo.value.status_code == 404


def test_fetch_enforces_size_cap():
    with pytest.raises(FetchError):
        _fetch(lambda request: httpx.Response(200, content=b"x" * 64), max_bytes=16)
