"""
HTTP transport for the GitHub API.

Every request is retried with exponential backoff when GitHub answers 429/5xx or cannot be reached.
Mutating requests additionally pass a write gate: GitHub limits content creation per token (not per file),
so all writes made through one transport are serialized and spaced at least `write_interval` seconds apart.
"""

import asyncio
import logging
import random
import time
from urllib.parse import quote

import httpx

from lumina.config import Settings
from lumina.storage.errors import ConfigurationError, TransientError

logger = logging.getLogger("lumina.transport")

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
USER_AGENT = "lumina-github-storage/1.0"


class GitHubTransport:
    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        branch: str,
        api_url: str = "https://api.github.com",
        api_version: str = "2022-11-28",
        write_interval: float = 1.1,
        retry_max_attempts: int = 5,
        retry_base_delay: float = 0.6,
        retry_max_jitter: float = 0.25,
        batch_max_attempts: int = 3,
        timeout: float = 30.0,
    ):
        for name, value in [("github_token", token), ("gh_owner", owner), ("gh_repo", repo), ("gh_branch", branch)]:
            if not (value and value.strip()):
                raise ConfigurationError(f"{name.upper()} is not configured")
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.write_interval = write_interval
        self.retry_max_attempts = retry_max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_jitter = retry_max_jitter
        self.batch_max_attempts = batch_max_attempts
        self.client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            timeout=timeout,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": api_version,
            },
        )
        self._write_lock = asyncio.Lock()
        self._last_write = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubTransport":
        return cls(
            token=settings.github_token or "",
            owner=settings.gh_owner or "",
            repo=settings.gh_repo or "",
            branch=settings.gh_branch or "",
            api_url=settings.github_api_url,
            api_version=settings.github_api_version,
            write_interval=settings.write_interval,
            retry_max_attempts=settings.retry_max_attempts,
            retry_base_delay=settings.retry_base_delay,
            retry_max_jitter=settings.retry_max_jitter,
            batch_max_attempts=settings.batch_max_attempts,
            timeout=settings.request_timeout,
        )

    async def close(self):
        await self.client.aclose()

    def contents_url(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/contents/{quote(path)}"

    def git_url(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/git/{path}"

    def backoff(self, attempt: int) -> float:
        return self.retry_base_delay * 2 ** (attempt - 1) + random.uniform(0, self.retry_max_jitter)

    async def request(self, method: str, url: str, **kargs) -> httpx.Response:
        """
        Send a request, retrying on 429/5xx and network errors.
        After the last attempt the response is returned as-is, callers check the status themselves.
        """
        attempt = 1
        while True:
            try:
                response = await self.client.request(method, url, **kargs)
            except httpx.TransportError as e:
                if attempt >= self.retry_max_attempts:
                    raise TransientError(f"GitHub {method} {url} failed after {attempt} attempts: {e!r}") from e
                problem = repr(e)
            else:
                if response.status_code not in RETRY_STATUSES or attempt >= self.retry_max_attempts:
                    return response
                problem = f"status {response.status_code}"
            delay = self.backoff(attempt)
            logger.warning(f"GitHub {method} {url}: {problem}, retrying in {delay:.2f}s (attempt {attempt})")
            await asyncio.sleep(delay)
            attempt += 1

    async def write(self, method: str, url: str, **kargs) -> httpx.Response:
        """Send a mutating request through the write gate"""
        async with self._write_lock:
            elapsed = time.monotonic() - self._last_write
            if elapsed < self.write_interval:
                wait = self.write_interval - elapsed
                logger.debug(f"Write gate: waiting {wait:.2f}s before {method} {url}")
                await asyncio.sleep(wait)
            try:
                return await self.request(method, url, **kargs)
            finally:
                self._last_write = time.monotonic()
