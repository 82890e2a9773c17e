"""
Dependency injection for the check-in authentication API.

This module provides FastAPI dependency functions for reaching the
coordinator, extracting bearer tokens and client details, and resolving the
authenticated caller.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from checkin_auth.auth import AuthCoordinator
from checkin_auth.errors import InvalidTokenError
from checkin_auth.models import UserRole
from checkin_auth.token import TokenClaims

# Security scheme for JWT tokens
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# PUBLIC_INTERFACE
def get_coordinator(request: Request) -> AuthCoordinator:
    """
    Get the coordinator attached to the running application.

    Raises:
        HTTPException: If the application has not finished starting.
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting",
        )
    return coordinator


# PUBLIC_INTERFACE
def get_client_ip(request: Request) -> str:
    """
    Best guess at the client's IP address.

    The first X-Forwarded-For entry wins, then X-Real-IP, then the socket peer.

    Args:
        request: FastAPI request object.

    Returns:
        IP address string, or "unknown".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


# PUBLIC_INTERFACE
def get_optional_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Bearer token from the Authorization header, or None."""
    if credentials is None:
        return None
    return credentials.credentials


# PUBLIC_INTERFACE
def get_token_from_header(token: Optional[str] = Depends(get_optional_token)) -> str:
    """
    Extract the bearer token from the Authorization header.

    Raises:
        HTTPException: If no token is provided.
    """
    if not token:
        raise _unauthorized("Not authenticated")
    return token


# PUBLIC_INTERFACE
def get_current_claims(
    token: str = Depends(get_token_from_header),
    coordinator: AuthCoordinator = Depends(get_coordinator),
) -> TokenClaims:
    """
    Resolve the authenticated caller from a valid, unrevoked access token.

    Args:
        token: Bearer token.
        coordinator: The application's AuthCoordinator.

    Returns:
        Claims of the caller's token.

    Raises:
        HTTPException: If the token is not currently valid.
    """
    validation = coordinator.validate_token(token)
    if not validation.valid:
        raise _unauthorized(validation.message or "Invalid token")
    try:
        return coordinator.issuer.decode_claims(token)
    except InvalidTokenError as e:
        raise _unauthorized(e.message)


def is_admin(claims: TokenClaims) -> bool:
    """Check whether the caller's token carries the admin role."""
    return UserRole.ADMIN.value in claims.roles
