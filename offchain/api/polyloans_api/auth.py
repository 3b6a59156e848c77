"""
Shared-secret gate for relay submission.

Relaying spends the relayer account's gas, so POST /relay-tx can be limited
to known frontends by setting API_TOKEN. Read endpoints stay open. The token
travels in the X-API-Key header only.
"""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from .config import ApiSettings, get_settings

relay_token_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,
    description="Relay submission token (only enforced when API_TOKEN is set)",
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "X-API-Key"},
    )


async def require_relay_token(
    presented: Optional[str] = Depends(relay_token_header),
    settings: ApiSettings = Depends(get_settings),
) -> None:
    """Reject relay submissions without the configured token."""
    expected = settings.api_token
    if not expected:
        return

    if not presented:
        raise _unauthorized("API token required. Provide via X-API-Key header.")
    if not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise _unauthorized("Invalid API token")
