import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from lumina.config import get_settings
from lumina.storage.transport import GitHubTransport


class LuminaConnections:
    github: GitHubTransport | None

    def __init__(self, github: GitHubTransport | None = None):
        self.github = github


CONNECTIONS = LuminaConnections(github=None)


@asynccontextmanager
async def lumina_connections() -> AsyncGenerator[None, None]:
    """
    The main context manager to start and stop connections used by lumina.
    Always use this once (and only once):
        - For running the server: in the FastAPI lifespan
        - For tests: in the fixture that sets up the fake GitHub
        - For CLI commands: within the CLI command
    """
    try:
        await start_lumina_connections()
        yield
    finally:
        await close_lumina_connections()


async def start_lumina_connections() -> None:
    settings = get_settings()
    logging.debug(f"Connecting with GitHub repository {settings.gh_owner}/{settings.gh_repo}@{settings.gh_branch}")
    # raises ConfigurationError if token or repository are missing
    CONNECTIONS.github = GitHubTransport.from_settings(settings)


async def close_lumina_connections() -> None:
    if CONNECTIONS.github is not None:
        await CONNECTIONS.github.close()
        CONNECTIONS.github = None


def github() -> GitHubTransport:
    """
    Use this function to access the GitHub transport.
    """
    if CONNECTIONS.github is None:
        raise ConnectionError("GitHub connection not initialized")
    return CONNECTIONS.github
