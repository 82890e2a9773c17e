"""
Configuration module for the check-in authentication service.

This module provides configuration settings for the authentication core.
"""

from checkin_auth.config.jwt_config import (
    CLAIM_ROLES,
    CLAIM_SESSION_ID,
    CLAIM_USER_ID,
    TOKEN_TYPE_BEARER,
    get_access_token_ttl,
    get_jwt_settings,
)
from checkin_auth.config.settings import Settings, get_settings, settings

__all__ = [
    "get_jwt_settings",
    "get_access_token_ttl",
    "TOKEN_TYPE_BEARER",
    "CLAIM_USER_ID",
    "CLAIM_ROLES",
    "CLAIM_SESSION_ID",
    "Settings",
    "settings",
    "get_settings",
]
