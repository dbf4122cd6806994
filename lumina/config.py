"""
Lumina Configuration

We read configuration from 2 sources, in order of precedence (higher is more priority)
- Environment variables
- A .env file, either in the current working directory or in a location specified
  by the LUMINA_ENV_FILE environment variable
"""

import functools
from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "lumina_"


class Settings(BaseSettings):
    env_file: Annotated[
        Path,
        Field(
            description="Location of a .env file (if used) relative to working directory",
        ),
    ] = Path(".env")

    github_token: Annotated[
        str | None,
        Field(description="GitHub token with contents read/write permission on the storage repository"),
    ] = None
    gh_owner: Annotated[str | None, Field(description="Owner (user or organisation) of the storage repository")] = None
    gh_repo: Annotated[str | None, Field(description="Name of the storage repository")] = None
    gh_branch: Annotated[str | None, Field(description="Branch that holds the gallery objects")] = "main"

    github_api_url: Annotated[str, Field(description="Base URL of the GitHub REST API")] = "https://api.github.com"
    github_api_version: Annotated[
        str, Field(description="Value of the X-GitHub-Api-Version header sent with every request")
    ] = "2022-11-28"
    request_timeout: Annotated[float, Field(description="Timeout in seconds for a single GitHub request")] = 30.0

    write_interval: Annotated[
        float,
        Field(
            description=(
                "Minimum number of seconds between two mutating GitHub calls. "
                "GitHub throttles content creation per token, so all writes share this gate"
            ),
            ge=0,
        ),
    ] = 1.1
    retry_max_attempts: Annotated[
        int, Field(description="Number of attempts for a request that fails with 429, 5xx or a network error", ge=1)
    ] = 5
    retry_base_delay: Annotated[
        float, Field(description="Base delay in seconds for exponential backoff between attempts", ge=0)
    ] = 0.6
    retry_max_jitter: Annotated[float, Field(description="Maximum random jitter in seconds added to a backoff", ge=0)] = 0.25
    batch_max_attempts: Annotated[
        int, Field(description="Number of times an atomic batch commit is retried when the branch moved", ge=1)
    ] = 3

    upload_token: Annotated[
        str | None,
        Field(description="Shared secret clients must send as X-Upload-Token to upload, modify or delete images"),
    ] = None
    allow_origin: Annotated[str, Field(description="Value for the CORS Access-Control-Allow-Origin header")] = "*"
    max_original_bytes: Annotated[int, Field(description="Maximum size of an uploaded original in bytes")] = (
        25 * 1024 * 1024
    )
    max_live_video_bytes: Annotated[
        int, Field(description="Maximum size of an uploaded live photo video in bytes")
    ] = 10 * 1024 * 1024
    list_default_limit: Annotated[int, Field(description="Page size used when a list request gives no limit")] = 20
    list_max_limit: Annotated[int, Field(description="Largest page size a list request may ask for")] = 100

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX)


@functools.lru_cache()
def get_settings() -> Settings:
    temp = Settings()
    load_dotenv(temp.env_file, override=False)
    return Settings()


REQUIRED_SETTINGS = ("github_token", "gh_owner", "gh_repo", "gh_branch")


def validate_settings() -> list[str]:
    """Return a list of problems that prevent connecting to the storage repository"""
    settings = get_settings()
    problems = []
    for name in REQUIRED_SETTINGS:
        value = getattr(settings, name)
        if not (value and value.strip()):
            problems.append(f"{ENV_PREFIX.upper()}{name.upper()} is not configured")
    return problems


if __name__ == "__main__":
    # Echo the settings
    for k, v in get_settings().model_dump().items():
        if k == "github_token" and v:
            v = "***"
        print(f"{ENV_PREFIX.upper()}{k.upper()}={v}")
