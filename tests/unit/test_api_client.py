import pytest

from aiworker.infrastructure.api_clients.base import APIClient, APIError


class _FakeResponse:
    def __init__(self, status, payload=None, text="", headers=None):
        self.status = status
        self.payload = payload
        self._text = text
        self.headers = headers or {}

    async def json(self):
        return self.payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _FakeSession:
    def __init__(self, response):
        self.response = response
        self.closed = False
        self.posts = []

    def post(self, url, json=None):
        self.posts.append((url, json))
        return self.response

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_post_json_returns_body():
    client = APIClient("https://api.example.test/v1/", api_key="k")
    session = _FakeSession(_FakeResponse(200, {"ok": True}))
    client._session = session

    assert await client.post_json("/chat/completions", {"model": "m"}) == {"ok": True}
    assert session.posts == [("https://api.example.test/v1/chat/completions", {"model": "m"})]


@pytest.mark.asyncio
async def test_non_2xx_raises_api_error_with_retry_after():
    client = APIClient("https://api.example.test/v1")
    client._session = _FakeSession(_FakeResponse(429, text="slow down", headers={"Retry-After": "7"}))

    with pytest.raises(APIError) as excinfo:
        await client.post_json("chat/completions", {})

    assert excinfo.value.status == 429
    assert excinfo.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_close_releases_session():
    client = APIClient("https://api.example.test/v1")
    session = _FakeSession(_FakeResponse(200, {}))
    client._session = session

    await client.close()

    assert session.closed is True
    assert client._session is None
