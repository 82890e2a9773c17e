"""
JWT configuration settings for the check-in authentication service.

This module provides the claim names and lifetimes used for access token
generation and validation.
"""
from datetime import timedelta
from typing import Dict, Optional, Union

from checkin_auth.config.settings import Settings, settings

# Token settings
TOKEN_TYPE_BEARER = "Bearer"

# Custom claims carried next to the registered sub/iat/exp/iss claims
CLAIM_USER_ID = "userId"
CLAIM_ROLES = "roles"
CLAIM_SESSION_ID = "sessionId"

REQUIRED_CLAIMS = ["sub", "iat", "exp", "iss"]


# PUBLIC_INTERFACE
def get_jwt_settings(app_settings: Optional[Settings] = None) -> Dict[str, Union[str, int]]:
    """
    Get JWT configuration settings.

    Args:
        app_settings: Settings to read, the global settings by default.

    Returns:
        Dictionary containing JWT configuration settings.
    """
    source = app_settings or settings
    return {
        "secret_key": source.JWT_SECRET_KEY,
        "algorithm": source.JWT_ALGORITHM,
        "issuer": source.JWT_ISSUER,
        "access_token_expire_minutes": source.JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
    }


# PUBLIC_INTERFACE
def get_access_token_ttl() -> timedelta:
    """
    Get the default lifetime of an access token.

    Returns:
        Timedelta representing access token lifetime.
    """
    return timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
