import asyncio
import json

import pytest

from gearpatch.registry import FunctionRegistry


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("PATCH_ALLOWED_HOSTS", raising=False)
    monkeypatch.delenv("PATCH_HTTP_TIMEOUT_MS", raising=False)


@pytest.fixture
def registry():
    return FunctionRegistry()


class FakeResponse:
    """Stands in for aiohttp.ClientResponse inside `async with session.post(...)`."""

    def __init__(self, status=200, body=None, content_type="application/json", delay=0.0):
        self.status = status
        self.content_type = content_type
        self.delay = delay
        if isinstance(body, str):
            self._text = body
        else:
            self._text = json.dumps(body) if body is not None else ""

    async def text(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse
