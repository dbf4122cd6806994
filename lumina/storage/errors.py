"""
Errors raised by the storage layer.

The HTTP layer maps these to status codes; the storage layer itself never deals in HTTP responses to clients.
"""

import httpx


class StorageError(Exception):
    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ConfigurationError(StorageError):
    """Credentials or repository coordinates are missing"""


class BadCredentialsError(StorageError):
    """GitHub rejected the token"""


class NotFoundError(StorageError):
    pass


class ConflictError(StorageError):
    """The file or branch changed between reading its sha and writing"""


class TransientError(StorageError):
    """GitHub could not be reached, even after retrying"""


class MalformedError(StorageError, ValueError):
    """An identifier, cursor or stored document has the wrong shape"""


def raise_for_response(response: httpx.Response, action: str) -> None:
    """Raise the matching StorageError if the response is not a 2xx"""
    if response.is_success:
        return
    status = response.status_code
    detail = response.text
    message = f"GitHub {action} failed: {status} {detail}"
    if status == 401:
        raise BadCredentialsError(message, status, detail)
    if status == 404:
        raise NotFoundError(message, status, detail)
    if status in (409, 422):
        raise ConflictError(message, status, detail)
    raise StorageError(message, status, detail)
