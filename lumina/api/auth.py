"""Upload token check for the endpoints that change the gallery."""

import secrets

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from lumina.config import get_settings

upload_token_scheme = APIKeyHeader(name="X-Upload-Token", scheme_name="Upload Token Header", auto_error=False)


def upload_token_required(token: str | None = Security(upload_token_scheme)) -> None:
    expected = (get_settings().upload_token or "").strip()
    if not expected:
        raise HTTPException(status_code=500, detail="Server upload token is not configured")
    if not (token and token.strip()):
        raise HTTPException(status_code=401, detail="Missing upload token")
    if not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=403, detail="Invalid upload token")
