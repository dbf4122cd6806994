"""
Single file operations on the GitHub contents API.

Writes and deletes are compare-and-swap: the current blob sha is read right before the mutation and sent
along, so GitHub rejects the write if the file changed in between. Such a rejection is raised as a
ConflictError; it is not retried here.
"""

import base64
import logging

from lumina.connections import github
from lumina.models import RemoteFile
from lumina.storage.errors import MalformedError, NotFoundError, raise_for_response

logger = logging.getLogger("lumina.storage")


def encode_content(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


async def get_file(path: str) -> RemoteFile | None:
    """Get a file with its content and current sha, or None if it does not exist"""
    gh = github()
    response = await gh.request("GET", gh.contents_url(path), params={"ref": gh.branch})
    if response.status_code == 404:
        logger.debug(f"{path} not found")
        return None
    raise_for_response(response, f"GET {path}")
    data = response.json()
    if isinstance(data, list):
        raise MalformedError(f"{path} is a directory, not a file")
    return RemoteFile.model_validate(data)


async def read_file(path: str) -> bytes | None:
    """Get the decoded content of a file, or None if it does not exist"""
    file = await get_file(path)
    if file is None:
        return None
    if file.encoding == "none":
        # files over 1MB come without inline content, ask for the raw bytes instead
        gh = github()
        response = await gh.request(
            "GET", gh.contents_url(path), params={"ref": gh.branch}, headers={"Accept": "application/vnd.github.raw"}
        )
        raise_for_response(response, f"GET raw {path}")
        return response.content
    return file.decoded()


async def list_directory(path: str) -> list[RemoteFile]:
    """List the entries of a directory. A missing directory is listed as empty."""
    gh = github()
    response = await gh.request("GET", gh.contents_url(path), params={"ref": gh.branch})
    if response.status_code == 404:
        return []
    raise_for_response(response, f"list {path}")
    data = response.json()
    if not isinstance(data, list):
        raise MalformedError(f"{path} is a file, not a directory")
    return [RemoteFile.model_validate(entry) for entry in data]


async def put_file(path: str, content: bytes, message: str) -> None:
    """Create or replace a file"""
    gh = github()
    existing = await get_file(path)
    body = {"message": message, "content": encode_content(content), "branch": gh.branch}
    if existing is not None:
        body["sha"] = existing.sha
    response = await gh.write("PUT", gh.contents_url(path), json=body)
    raise_for_response(response, f"PUT {path}")
    logger.debug(f"{'Updated' if existing else 'Created'} {path} ({len(content)} bytes)")


async def delete_file(path: str, message: str) -> None:
    """Delete a file, raising NotFoundError if it does not exist"""
    gh = github()
    existing = await get_file(path)
    if existing is None:
        raise NotFoundError(f"File not found: {path}", 404)
    body = {"message": message, "branch": gh.branch, "sha": existing.sha}
    response = await gh.write("DELETE", gh.contents_url(path), json=body)
    raise_for_response(response, f"DELETE {path}")
    logger.debug(f"Deleted {path}")
