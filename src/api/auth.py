"""API key authentication for the pipeline API.

Implements API key validation using X-API-Key header with
constant-time comparison to prevent timing attacks.

Usage:
    from src.api.auth import verify_api_key

    @router.post("/suggestions/{id}/accept")
    def accept(id: str, api_key: str = Depends(verify_api_key)):
        ...
"""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from src.common.config import load_api_config
from src.common.logging import get_logger

logger = get_logger(__name__)

# auto_error=False so we can return 401 (not 403) for missing header
api_key_header = APIKeyHeader(
    name="X-API-Key",
    description="API key for authentication",
    auto_error=False,
)


def verify_api_key(
    api_key: Optional[str] = Depends(api_key_header),
) -> str:
    """Validate API key with constant-time comparison.

    Args:
        api_key: The API key from the X-API-Key header.

    Returns:
        The validated API key.

    Raises:
        HTTPException: 401 Unauthorized if API key is invalid or missing.
    """
    if api_key is None:
        logger.warning("Missing X-API-Key header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "APIKey"},
        )

    expected_key = load_api_config().api_key

    # If no API key is configured, reject all requests
    if not expected_key:
        logger.warning("PIPELINE_API_KEY not configured - rejecting request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key not configured on server",
            headers={"WWW-Authenticate": "APIKey"},
        )

    if not secrets.compare_digest(api_key.encode("utf-8"), expected_key.encode("utf-8")):
        logger.warning("Invalid API key provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "APIKey"},
        )

    return api_key
