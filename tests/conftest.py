import pytest
from httpx import ASGITransport, AsyncClient

from lumina import api
from lumina.config import Settings, get_settings
from lumina.connections import lumina_connections
from tests.tools import API_URL, BRANCH, OWNER, REPO, FakeGitHub

UPLOAD_TOKEN = "test-upload-token"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def settings():
    """Point lumina at the fake GitHub repository, without waiting between writes or retries"""
    settings = get_settings()
    original = settings.model_copy()
    settings.github_token = "test-github-token"
    settings.gh_owner = OWNER
    settings.gh_repo = REPO
    settings.gh_branch = BRANCH
    settings.github_api_url = API_URL
    settings.write_interval = 0
    settings.retry_base_delay = 0
    settings.retry_max_jitter = 0
    settings.batch_max_attempts = 3
    settings.upload_token = UPLOAD_TOKEN
    yield settings
    for field in Settings.model_fields:
        setattr(settings, field, getattr(original, field))


@pytest.fixture()
async def fake_github(httpx_mock, settings):
    fake = FakeGitHub()
    httpx_mock.add_callback(fake, is_reusable=True, is_optional=True)
    async with lumina_connections():
        yield fake


@pytest.fixture()
async def client(fake_github):
    async with AsyncClient(transport=ASGITransport(app=api.app), base_url="http://test", follow_redirects=False) as client:
        yield client


@pytest.fixture()
def upload_headers():
    return {"X-Upload-Token": UPLOAD_TOKEN}
