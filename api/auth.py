"""
Admin authentication for the FastAPI API.
"""

import secrets

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from utilities.config import config

logger = structlog.get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


async def verify_admin_key(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    """
    Verify the admin key from the Authorization header.

    Args:
        credentials: HTTP bearer credentials

    Returns:
        The admin key if valid

    Raises:
        HTTPException: If the header is missing or the key does not match
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    api_key = credentials.credentials
    if not secrets.compare_digest(api_key.encode("utf-8"), config.admin_key.encode("utf-8")):
        logger.warning("Invalid admin key attempted", api_key=api_key[:4] + "...")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key",
        )

    return api_key
