import asyncio
import time

import httpx
import pytest

from lumina.config import get_settings
from lumina.connections import github, lumina_connections
from lumina.storage.errors import (
    BadCredentialsError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    StorageError,
    TransientError,
    raise_for_response,
)
from lumina.storage.transport import GitHubTransport
from tests.tools import API_URL

CONTENTS_URL = f"{API_URL}/repos/o/r/contents/a.txt"


@pytest.fixture()
async def transport():
    gh = GitHubTransport(
        token="t", owner="o", repo="r", branch="main", api_url=API_URL, retry_base_delay=0, retry_max_jitter=0
    )
    yield gh
    await gh.close()


@pytest.mark.anyio
async def test_retry_on_server_error(httpx_mock, transport):
    httpx_mock.add_response(url=CONTENTS_URL, status_code=502)
    httpx_mock.add_response(url=CONTENTS_URL, status_code=429)
    httpx_mock.add_response(url=CONTENTS_URL, json={"name": "a.txt"})
    response = await transport.request("GET", transport.contents_url("a.txt"))
    assert response.status_code == 200
    assert response.json() == {"name": "a.txt"}
    assert len(httpx_mock.get_requests()) == 3


@pytest.mark.anyio
async def test_retry_gives_up_with_last_response(httpx_mock, transport):
    httpx_mock.add_response(url=CONTENTS_URL, status_code=503, is_reusable=True)
    response = await transport.request("GET", transport.contents_url("a.txt"))
    assert response.status_code == 503
    assert len(httpx_mock.get_requests()) == transport.retry_max_attempts == 5


@pytest.mark.anyio
async def test_no_retry_on_client_error(httpx_mock, transport):
    httpx_mock.add_response(url=CONTENTS_URL, status_code=404, json={"message": "Not Found"})
    response = await transport.request("GET", transport.contents_url("a.txt"))
    assert response.status_code == 404
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.anyio
async def test_retry_on_network_error(httpx_mock, transport):
    httpx_mock.add_exception(httpx.ConnectError("Connection refused"), url=CONTENTS_URL)
    httpx_mock.add_response(url=CONTENTS_URL, json={"name": "a.txt"})
    response = await transport.request("GET", transport.contents_url("a.txt"))
    assert response.status_code == 200


@pytest.mark.anyio
async def test_network_error_after_last_attempt(httpx_mock, transport):
    httpx_mock.add_exception(httpx.ReadTimeout("Timed out"), url=CONTENTS_URL, is_reusable=True)
    with pytest.raises(TransientError):
        await transport.request("GET", transport.contents_url("a.txt"))
    assert len(httpx_mock.get_requests()) == 5


@pytest.mark.anyio
async def test_headers(httpx_mock, transport):
    httpx_mock.add_response(url=CONTENTS_URL, json={})
    await transport.request("GET", transport.contents_url("a.txt"))
    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "Bearer t"
    assert request.headers["Accept"] == "application/vnd.github+json"
    assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"
    assert request.headers["User-Agent"].startswith("lumina")


@pytest.mark.anyio
async def test_write_gate_spaces_writes(httpx_mock, transport):
    times = []

    def record(request: httpx.Request) -> httpx.Response:
        times.append(time.monotonic())
        return httpx.Response(201, json={})

    httpx_mock.add_callback(record, is_reusable=True)
    transport.write_interval = 0.05
    await asyncio.gather(*(transport.write("PUT", transport.contents_url(f"{i}.txt"), json={}) for i in range(4)))
    assert len(times) == 4
    gaps = [b - a for (a, b) in zip(times, times[1:])]
    assert all(gap >= 0.045 for gap in gaps), gaps


@pytest.mark.anyio
async def test_reads_are_not_gated(httpx_mock, transport):
    httpx_mock.add_response(url=CONTENTS_URL, json={}, is_reusable=True)
    transport.write_interval = 10
    httpx_mock.add_response(url=f"{API_URL}/repos/o/r/contents/b.txt", method="PUT", json={})
    await transport.write("PUT", transport.contents_url("b.txt"), json={})
    start = time.monotonic()
    await asyncio.gather(*(transport.request("GET", transport.contents_url("a.txt")) for _ in range(3)))
    assert time.monotonic() - start < 1


def test_missing_configuration():
    with pytest.raises(ConfigurationError):
        GitHubTransport(token="", owner="o", repo="r", branch="main")
    with pytest.raises(ConfigurationError):
        GitHubTransport(token="t", owner="o", repo=" ", branch="main")


@pytest.mark.anyio
async def test_connections_need_configuration():
    with pytest.raises(ConnectionError):
        github()
    get_settings().github_token = None
    with pytest.raises(ConfigurationError):
        async with lumina_connections():
            pass


@pytest.mark.parametrize(
    "status, error",
    [(401, BadCredentialsError), (404, NotFoundError), (409, ConflictError), (422, ConflictError), (500, StorageError)],
)
def test_raise_for_response(status, error):
    response = httpx.Response(status, json={"message": "nope"})
    with pytest.raises(error) as exc_info:
        raise_for_response(response, "test")
    assert exc_info.value.status_code == status
    assert "nope" in str(exc_info.value)


def test_raise_for_response_success():
    raise_for_response(httpx.Response(201, json={}), "test")
