"""Sign-in and password reset.

Security contract:
- reset-password answers identically whether or not the email is registered
- reset-password-confirm trusts only a signature-verified recovery token
- Passwords are validated for strength and never logged
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from course_platform.channels import get_dispatcher
from course_platform.config import get_settings
from course_platform.errors import AuthenticationError, IdentityProviderError, ValidationError
from course_platform.identity import IdentityProvider, get_identity_provider
from course_platform.security.auth import verify_token
from course_platform.security.sanitization import sanitize_email, validate_password_strength

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_REQUESTED_MESSAGE = "If the email address is registered, a reset link has been sent"


class LoginRequest(BaseModel):
    email: str
    password: str


class ResetPasswordRequest(BaseModel):
    email: str


class ResetPasswordConfirm(BaseModel):
    token: str
    password: str


@router.post("/login")
def login(body: LoginRequest, identity: IdentityProvider = Depends(get_identity_provider)):
    email = sanitize_email(body.email)
    if email is None or not body.password:
        raise ValidationError("Email and password are required")
    try:
        session = identity.sign_in_with_password(email, body.password)
    except IdentityProviderError as e:
        if e.upstream_status in (400, 401, 422):
            raise AuthenticationError("Invalid email or password") from e
        raise
    return {
        "access_token": session.get("access_token"),
        "refresh_token": session.get("refresh_token"),
        "expires_in": session.get("expires_in"),
        "token_type": session.get("token_type", "bearer"),
        "user": {"id": (session.get("user") or {}).get("id"), "email": email},
    }


@router.post("/reset-password")
def reset_password(body: ResetPasswordRequest, identity: IdentityProvider = Depends(get_identity_provider)):
    email = sanitize_email(body.email)
    if email is None:
        raise ValidationError("A valid email address is required")

    try:
        account = identity.find_user_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email")
            return {"message": RESET_REQUESTED_MESSAGE}
        link = identity.generate_recovery_link(email, get_settings().password_reset_redirect)
    except IdentityProviderError:
        logger.exception("Recovery link generation failed")
        return {"message": RESET_REQUESTED_MESSAGE}

    get_dispatcher().send_password_reset(email, link)
    return {"message": RESET_REQUESTED_MESSAGE}


@router.post("/reset-password-confirm")
def reset_password_confirm(
    body: ResetPasswordConfirm, identity: IdentityProvider = Depends(get_identity_provider)
):
    try:
        claims = verify_token(body.token)
    except ValueError as e:
        raise ValidationError("Invalid or expired reset token") from e

    problems = validate_password_strength(body.password)
    if problems:
        raise ValidationError("Password is too weak", details=problems)

    identity.update_user(str(claims["sub"]), {"password": body.password})
    logger.info("Password changed via recovery for %s", claims["sub"])
    return {"message": "Password changed successfully"}
