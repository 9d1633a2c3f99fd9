from __future__ import annotations
import hmac
from fastapi import Request, Security
from fastapi.security import APIKeyHeader
from updown.exceptions import AuthenticationError


_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """The presentation layer authenticates with a shared key; an unset API_KEY locks the API."""
    expected = request.app.state.ctx.settings.API_KEY
    if not expected or not api_key or not hmac.compare_digest(api_key, expected):
        raise AuthenticationError("Invalid or missing API key")
    return api_key
