"""
Access control for the ingestion endpoint.

The extension authenticates with a shared ingest key. When no key is
configured every request is accepted, which is the development default.
"""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from pairlog.config import settings

logger = logging.getLogger(__name__)


def _extract_token(authorization: Optional[str], x_api_key: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None


def require_ingest_access(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None, alias="X-Api-Key"),
) -> None:
    """
    FastAPI dependency guarding the ingestion endpoint.

    Raises:
        HTTPException: 401 if a key is configured and the request does not
            carry it in X-Api-Key or as a Bearer token
    """
    expected = settings.ingest_api_key
    if not expected:
        return

    token = _extract_token(authorization, x_api_key)
    if token is None or not secrets.compare_digest(token, expected):
        logger.warning("Rejected ingestion request with missing or invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
