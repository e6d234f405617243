"""
Bearer token authentication handler for SSO Bridge.

This module provides FastAPI dependency for authenticating requests from the
platform's request-handling layer using bearer token authentication.
"""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import SSOBridgeSettings, get_settings

# HTTP Bearer security scheme
security = HTTPBearer()


def verify_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    settings: Annotated[SSOBridgeSettings, Depends(get_settings)],
) -> str:
    """
    Verify bearer token from the request against the configured token.

    Args:
        credentials: HTTP Authorization credentials extracted by FastAPI
        settings: Application settings holding the expected token

    Returns:
        str: The verified token value

    Raises:
        HTTPException: 401 Unauthorized if token is missing or doesn't match

    Example:
        @app.delete("/organizations/{organization_id}/oidc-provider",
                    dependencies=[Depends(verify_bearer_token)])
        async def delete_oidc_provider(organization_id: str):
            # Token is already verified by dependency
            pass
    """
    provided_token = credentials.credentials

    if not provided_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Constant-time comparison
    if not secrets.compare_digest(settings.api_bearer_token, provided_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return provided_token
