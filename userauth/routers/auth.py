"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from userauth.database import get_db
from userauth.dependencies import CurrentUser, get_auth_service, get_client_ip, get_current_user
from userauth.rate_limit import limiter
from userauth.schemas.auth import (
    EMAIL_PATTERN,
    PASSWORD_MAX,
    PASSWORD_MIN,
    USERNAME_MAX,
    USERNAME_MIN,
    EmailRequest,
    MessageResponse,
    RefreshTokenRequest,
    ResetPasswordRequest,
    SessionUser,
    SigninRequest,
    SigninResponse,
    SignupResponse,
    TokenPairResponse,
)
from userauth.schemas.user import ProfileUpdateResponse, UserResponse
from userauth.services.auth import AuthService
from userauth.services.profile_image import get_profile_image_storage

logger = logging.getLogger("userauth")

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


async def _store_image(upload: UploadFile | None) -> str | None:
    # Browsers send an empty part when no file was picked.
    if upload is None or not upload.filename:
        return None
    return await get_profile_image_storage().store(upload)


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def signup(
    request: Request,
    username: str = Form(..., min_length=USERNAME_MIN, max_length=USERNAME_MAX),
    email: str = Form(..., pattern=EMAIL_PATTERN),
    password: str = Form(..., min_length=PASSWORD_MIN, max_length=PASSWORD_MAX),
    profile_image: UploadFile | None = File(None, alias="profileImage"),
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> SignupResponse:
    """Register a new account. The verification email is best-effort."""
    stored_image = await _store_image(profile_image)
    result = await run_in_threadpool(auth_service.signup, db, username, email, password, stored_image)
    return SignupResponse(
        id=result.user.id,
        username=result.user.username,
        email=result.user.email,
        message="User registered. Please verify your email.",
        warning=result.warning,
    )


@router.get("/verify-email", response_model=MessageResponse)
def verify_email(
    token: str = "",
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Consume a single-use email verification token."""
    auth_service.verify_email(db, token)
    return MessageResponse(message="Email verified successfully.")


@router.post("/resend-verification", response_model=MessageResponse)
@limiter.limit("3/minute")
def resend_verification(
    request: Request,
    body: EmailRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send the verification email again."""
    sent = auth_service.resend_verification(db, body.email)
    if not sent:
        return MessageResponse(
            message="Verification email could not be sent.",
            warning="Mail delivery failed. Try again later.",
        )
    return MessageResponse(message="Verification email resent")


@router.post("/signin", response_model=SigninResponse)
@limiter.limit("10/minute")
def signin(
    request: Request,
    body: SigninRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> SigninResponse:
    """Authenticate and receive an access token and a refresh token."""
    result = auth_service.signin(db, body.email, body.password, get_client_ip(request))
    user = result.user
    return SigninResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        user=SessionUser(
            id=user.id,
            username=user.username,
            email=user.email,
            roles=[role.value for role in user.role_names],
            profile_image=user.profile_image,
        ),
    )


@router.post("/refresh-token", response_model=TokenPairResponse)
@limiter.limit("30/minute")
def refresh_token(
    request: Request,
    body: RefreshTokenRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenPairResponse:
    """Rotate a refresh token. The presented token stops working immediately."""
    pair = auth_service.refresh(db, body.refresh_token, get_client_ip(request))
    return TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: RefreshTokenRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke a refresh token."""
    auth_service.logout(db, body.refresh_token, get_client_ip(request))
    return MessageResponse(message="Logged out")


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit("3/minute")
def forgot_password(
    request: Request,
    body: EmailRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Email a one-hour password reset link. Delivery failure is an error."""
    auth_service.forgot_password(db, body.email)
    return MessageResponse(message="Password reset email sent")


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit("5/minute")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Set a new password using a valid reset token."""
    auth_service.reset_password(db, body.token, body.password, get_client_ip(request))
    return MessageResponse(message="Password updated successfully")


@router.get("/me", response_model=UserResponse)
def me(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Return the current user."""
    return UserResponse.model_validate(auth_service.get_user(db, user.user_id))


@router.put("/update-profile", response_model=ProfileUpdateResponse)
async def update_profile(
    username: str | None = Form(None, min_length=USERNAME_MIN, max_length=USERNAME_MAX),
    email: str | None = Form(None, pattern=EMAIL_PATTERN),
    profile_image: UploadFile | None = File(None, alias="profileImage"),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> ProfileUpdateResponse:
    """Update username, email and/or profile image."""
    stored_image = await _store_image(profile_image)
    updated = await run_in_threadpool(auth_service.update_profile, db, user.user_id, username, email, stored_image)
    return ProfileUpdateResponse(message="Profile updated", user=UserResponse.model_validate(updated))
