"""
API router and Pydantic models for the check-in authentication service.

This module provides the FastAPI router with the authentication, password and
session endpoints and the Pydantic models for request/response validation.
Endpoints are plain functions: FastAPI runs them on its threadpool, which
keeps bcrypt and database calls off the event loop.

Errors raised by the coordinator are AuthError subclasses; the application's
exception handler turns them into responses (see main.py).
"""
from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field

from checkin_auth.auth import AuthCoordinator, LoginSuccess
from checkin_auth.config import TOKEN_TYPE_BEARER
from checkin_auth.dependencies import (get_client_ip, get_coordinator, get_current_claims,
                                       get_optional_token, get_token_from_header,
                                       get_user_agent, is_admin)
from checkin_auth.sessions import Session
from checkin_auth.token import TokenClaims

# Create API router
router = APIRouter(tags=["authentication"])


# Pydantic models for request/response
class LoginRequest(BaseModel):
    """Request model for user login."""
    email: str = Field(..., description="Login email")
    password: str = Field(..., description="User password")
    mfa_code: Optional[str] = Field(None, description="Second factor code")
    force_login: bool = Field(False, description="End the oldest session if at the session limit")


class UserResponse(BaseModel):
    """Public view of the logged-in user."""
    id: int
    email: str
    name: Optional[str] = None
    roles: List[str] = Field(default_factory=list)


class LoginResponse(BaseModel):
    """Response model for a successful login."""
    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="Opaque refresh token")
    token_type: str = Field(TOKEN_TYPE_BEARER, description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    session_id: str = Field(..., description="ID of the new session")
    user: UserResponse
    requires_password_change: bool = Field(False, description="Password must be changed")


class MfaRequiredResponse(BaseModel):
    """Response model when a second factor code is needed."""
    requires_mfa: bool = True
    message: str = "MFA code required"


class RefreshRequest(BaseModel):
    """Request model for token refresh."""
    refresh_token: str = Field(..., description="Opaque refresh token")


class RefreshResponse(BaseModel):
    """Response model for token refresh."""
    access_token: str
    refresh_token: str = Field(..., description="Refresh token to keep; differs after rotation")
    token_type: str = TOKEN_TYPE_BEARER
    expires_in: int


class ValidateResponse(BaseModel):
    """Response model for token validation."""
    valid: bool
    email: Optional[str] = None
    expiration: Optional[datetime] = None
    roles: List[str] = Field(default_factory=list)
    message: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    """Request model for a password reset request."""
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request model for resetting a password with a reset code."""
    token: str
    new_password: str
    confirm_password: str


class ChangePasswordRequest(BaseModel):
    """Request model for password change."""
    current_password: str
    new_password: str
    confirm_password: str


class SessionResponse(BaseModel):
    """One active session."""
    session_id: str
    user_email: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    login_time: datetime
    last_activity: datetime
    expires_at: datetime
    current: bool = False


class SessionListResponse(BaseModel):
    """Active sessions of the caller."""
    sessions: List[SessionResponse]
    total: int


class SuccessResponse(BaseModel):
    """Response model for operations without a payload."""
    success: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str


def _session_response(session: Session, current_session_id: Optional[str] = None) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        user_email=session.user_email,
        ip_address=session.ip_address,
        user_agent=session.user_agent,
        login_time=session.login_time,
        last_activity=session.last_activity,
        expires_at=session.expires_at,
        current=session.session_id == current_session_id,
    )


# API endpoints
@router.post(
    "/login",
    response_model=Union[LoginResponse, MfaRequiredResponse],
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        409: {"model": ErrorResponse, "description": "Concurrent session limit reached"},
        423: {"model": ErrorResponse, "description": "Account locked"},
        429: {"model": ErrorResponse, "description": "Too many attempts from this IP"},
    },
    summary="Authenticate user and get tokens",
)
def login(
    login_data: LoginRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator),
    client_ip: str = Depends(get_client_ip),
    user_agent: Optional[str] = Depends(get_user_agent),
):
    """
    Authenticate a user and open a session.

    Returns:
        LoginResponse with tokens, or MfaRequiredResponse.
    """
    result = coordinator.login(
        login_data.email,
        login_data.password,
        mfa_code=login_data.mfa_code,
        force_login=login_data.force_login,
        ip_address=client_ip,
        user_agent=user_agent,
    )
    if not isinstance(result, LoginSuccess):
        return MfaRequiredResponse()

    return LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        session_id=result.session_id,
        user=UserResponse(
            id=result.user.id,
            email=result.user.email,
            name=result.user.name,
            roles=result.user.roles,
        ),
        requires_password_change=result.requires_password_change,
    )


@router.post("/logout", response_model=SuccessResponse, summary="End the current session")
def logout(
    token: Optional[str] = Depends(get_optional_token),
    coordinator: AuthCoordinator = Depends(get_coordinator),
    client_ip: str = Depends(get_client_ip),
):
    """Log out. Always succeeds, even without a usable token."""
    coordinator.logout(token, ip_address=client_ip)
    return SuccessResponse(message="Logged out")


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid refresh token"}},
    summary="Exchange a refresh token for a new access token",
)
def refresh(
    refresh_data: RefreshRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator),
    client_ip: str = Depends(get_client_ip),
    user_agent: Optional[str] = Depends(get_user_agent),
):
    result = coordinator.refresh(refresh_data.refresh_token, client_ip, user_agent)
    return RefreshResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
    )


@router.get("/validate", response_model=ValidateResponse, summary="Validate an access token")
def validate(
    token: Optional[str] = Depends(get_optional_token),
    coordinator: AuthCoordinator = Depends(get_coordinator),
):
    """
    Describe the bearer token.

    An invalid token is reported in the body with valid=false, not as an
    error status.
    """
    result = coordinator.validate_token(token)
    if not result.valid:
        return ValidateResponse(valid=False, message=result.message)
    return ValidateResponse(
        valid=True,
        email=result.email,
        expiration=result.expires_at,
        roles=result.roles,
    )


@router.post(
    "/forgot-password",
    response_model=SuccessResponse,
    summary="Request a password reset code",
)
def forgot_password(
    request_data: ForgotPasswordRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator),
    client_ip: str = Depends(get_client_ip),
):
    """Always answers the same way, whether or not the email is registered."""
    coordinator.request_password_reset(str(request_data.email), ip_address=client_ip)
    return SuccessResponse(
        message="If the email is registered, a reset code has been sent."
    )


@router.post(
    "/reset-password",
    response_model=SuccessResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Password rejected"},
        401: {"model": ErrorResponse, "description": "Invalid or expired reset code"},
    },
    summary="Set a new password with a reset code",
)
def reset_password(
    reset_data: ResetPasswordRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator),
    client_ip: str = Depends(get_client_ip),
):
    coordinator.reset_password(
        reset_data.token,
        reset_data.new_password,
        confirmation=reset_data.confirm_password,
        ip_address=client_ip,
    )
    return SuccessResponse(message="Password has been reset. Please log in again.")


@router.post(
    "/change-password",
    response_model=SuccessResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Password rejected"},
        401: {"model": ErrorResponse, "description": "Current password is incorrect"},
    },
    summary="Change the caller's password",
)
def change_password(
    change_data: ChangePasswordRequest,
    claims: TokenClaims = Depends(get_current_claims),
    coordinator: AuthCoordinator = Depends(get_coordinator),
    client_ip: str = Depends(get_client_ip),
):
    """Change the password and sign out every session, including this one."""
    coordinator.change_password(
        claims.subject,
        change_data.current_password,
        change_data.new_password,
        confirmation=change_data.confirm_password,
        ip_address=client_ip,
    )
    return SuccessResponse(message="Password changed. Please log in again.")


@router.get("/session", response_model=SessionResponse, summary="Current session")
def current_session(
    claims: TokenClaims = Depends(get_current_claims),
    token: str = Depends(get_token_from_header),
    coordinator: AuthCoordinator = Depends(get_coordinator),
):
    session = coordinator.current_session(token)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return _session_response(session, claims.session_id)


@router.get("/sessions", response_model=SessionListResponse, summary="List the caller's sessions")
def list_sessions(
    claims: TokenClaims = Depends(get_current_claims),
    coordinator: AuthCoordinator = Depends(get_coordinator),
):
    sessions = coordinator.list_sessions(claims.subject)
    return SessionListResponse(
        sessions=[_session_response(s, claims.session_id) for s in sessions],
        total=len(sessions),
    )


@router.delete(
    "/sessions/{session_id}",
    response_model=SuccessResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Session belongs to another user"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
    summary="End one session",
)
def delete_session(
    session_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    coordinator: AuthCoordinator = Depends(get_coordinator),
    client_ip: str = Depends(get_client_ip),
):
    """End a session of the caller; admins may end anyone's."""
    ended = coordinator.invalidate_session(
        session_id,
        requester_email=claims.subject,
        requester_is_admin=is_admin(claims),
        ip_address=client_ip,
    )
    if not ended:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return SuccessResponse(message="Session ended")
