import hmac
from typing import Optional

from fastapi import Header, Request

from receipt_api.core.errors import Unauthorized


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
):
    """Validate API key from x-api-key or Authorization: Bearer. No-op when API_KEY is unset."""
    expected = request.app.state.settings.API_KEY
    if not expected:
        return None
    # Either header may carry the key; a stale one in the other header does not block
    for provided in (x_api_key, _bearer_token(authorization)):
        if provided and hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            return provided
    raise Unauthorized()
