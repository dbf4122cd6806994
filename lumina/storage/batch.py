"""
Atomic multi-file commits through the git data API.

The contents API creates one commit per file. To make several files appear at once (e.g. metadata files
together with the index that references them), we build a single commit by hand:

  1. read the branch head            GET   git/ref/heads/{branch}
  2. read the head's tree            GET   git/commits/{head}
  3. create a blob per file          POST  git/blobs
  4. create a tree on top of it      POST  git/trees
  5. create a commit (parent: head)  POST  git/commits
  6. move the branch (no force)      PATCH git/refs/heads/{branch}

If the branch moved between 1 and 6, GitHub refuses the fast-forward (409/422) and the whole sequence is
restarted. Blobs, trees and commits of abandoned attempts stay behind unreferenced; GitHub garbage
collects them, and they must not be removed by us since a later attempt may reuse identical blobs.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable
from urllib.parse import quote

from lumina.connections import github
from lumina.storage.contents import encode_content
from lumina.storage.errors import ConflictError, StorageError, raise_for_response

logger = logging.getLogger("lumina.batch")

FILE_MODE = "100644"


@dataclass
class CommitFile:
    path: str
    content: bytes


FileBuilder = Callable[[], Awaitable[list[CommitFile]]]


def _get_sha(data: dict, *keys: str) -> str:
    value = data
    for key in keys:
        value = value.get(key) if isinstance(value, dict) else None
    if not isinstance(value, str) or not value:
        raise StorageError(f"GitHub response is missing {'.'.join(keys)}")
    return value


async def _resolve_head() -> tuple[str, str]:
    """Return the sha of the branch head commit and of its tree"""
    gh = github()
    response = await gh.request("GET", gh.git_url(f"ref/heads/{quote(gh.branch)}"))
    raise_for_response(response, "ref lookup")
    head_sha = _get_sha(response.json(), "object", "sha")

    response = await gh.request("GET", gh.git_url(f"commits/{head_sha}"))
    raise_for_response(response, "commit lookup")
    tree_sha = _get_sha(response.json(), "tree", "sha")
    return head_sha, tree_sha


async def _create_commit(files: list[CommitFile], message: str, head_sha: str, base_tree_sha: str) -> str:
    gh = github()
    tree = []
    for file in files:
        response = await gh.request(
            "POST", gh.git_url("blobs"), json={"content": encode_content(file.content), "encoding": "base64"}
        )
        raise_for_response(response, "blob create")
        tree.append({"path": file.path, "mode": FILE_MODE, "type": "blob", "sha": _get_sha(response.json(), "sha")})

    response = await gh.request("POST", gh.git_url("trees"), json={"base_tree": base_tree_sha, "tree": tree})
    raise_for_response(response, "tree create")
    tree_sha = _get_sha(response.json(), "sha")

    response = await gh.request(
        "POST", gh.git_url("commits"), json={"message": message, "tree": tree_sha, "parents": [head_sha]}
    )
    raise_for_response(response, "commit create")
    return _get_sha(response.json(), "sha")


async def commit_files(
    files: list[CommitFile] | FileBuilder, message: str, max_attempts: int | None = None
) -> str | None:
    """
    Commit all files to the branch as a single commit, returning the new commit sha (None if there are no files).
    files can also be an async function producing the files. It is called again after every fresh read of the
    branch head, so content derived from other files (like the index) can be merged with the latest version.
    Raises ConflictError if the branch kept moving for max_attempts attempts; the branch is then unchanged.
    """
    if isinstance(files, list) and not files:
        return None
    gh = github()
    max_attempts = max_attempts or gh.batch_max_attempts
    ref_url = gh.git_url(f"refs/heads/{quote(gh.branch)}")

    attempt = 1
    while True:
        head_sha, base_tree_sha = await _resolve_head()
        to_commit = files if isinstance(files, list) else await files()
        if not to_commit:
            return None
        commit_sha = await _create_commit(to_commit, message, head_sha, base_tree_sha)
        response = await gh.write("PATCH", ref_url, json={"sha": commit_sha, "force": False})
        if response.is_success:
            logger.info(f"Committed {len(to_commit)} files as {commit_sha[:10]} on {gh.branch}")
            return commit_sha
        if response.status_code not in (409, 422):
            raise_for_response(response, "ref update")
        if attempt >= max_attempts:
            raise ConflictError(
                f"Branch {gh.branch} kept moving, gave up after {attempt} attempts", response.status_code, response.text
            )
        delay = gh.retry_base_delay * attempt
        logger.warning(
            f"Branch {gh.branch} moved during batch commit (attempt {attempt}/{max_attempts}), retrying in {delay:.2f}s"
        )
        await asyncio.sleep(delay)
        attempt += 1
