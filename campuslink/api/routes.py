from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Response

from campuslink.api.dependencies import get_current_user, optional_user, sensitive_op_limit
from campuslink.api.schemas import (
    AuthResponse,
    DeactivateRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateDetailsRequest,
    UpdatePasswordRequest,
    UserEnvelope,
)
from campuslink.api.session import apply_session_cookie, clear_session_cookie
from campuslink.service.auth import AuthResult, Registration
from campuslink.service.runtime import get_runtime
from campuslink.storage.models import HostelInfo, User

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session_response(response: Response, result: AuthResult) -> AuthResponse:
    apply_session_cookie(response, result.token, get_runtime().settings)
    return AuthResponse(token=result.token, user=result.user.public_dict())


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest, response: Response, background_tasks: BackgroundTasks
):
    """Create a student or admin account and start a session.

    The welcome email goes out after the response is sent; a delivery
    failure never undoes the registration.

    Raises:
        400: If the email or student ID is taken, or student fields are missing
        403: If admin self-registration is disabled
    """
    runtime = get_runtime()
    hostel = (
        HostelInfo(block=body.hostel_info.block, room_number=body.hostel_info.room_number)
        if body.hostel_info
        else None
    )
    result = await runtime.auth.register(
        Registration(
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            role=body.role,
            student_id=body.student_id,
            department=body.department,
            year=body.year,
            hostel=hostel,
            phone_number=body.phone_number,
        )
    )
    background_tasks.add_task(runtime.auth.send_welcome, result.user)
    return _session_response(response, result)


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(sensitive_op_limit("login"))],
)
async def login(body: LoginRequest, response: Response):
    """Authenticate with email and password.

    Raises:
        400: If email or password is missing
        401: If the credentials are wrong or the account is deactivated
        429: If too many attempts were made from this client
    """
    result = await get_runtime().auth.login(body.email, body.password)
    return _session_response(response, result)


@router.get("/logout", response_model=MessageResponse)
async def logout(response: Response, user: Optional[User] = Depends(optional_user)):
    """Expire the session cookie. Succeeds with or without a live session."""
    clear_session_cookie(response, get_runtime().settings)
    return MessageResponse(message="User logged out successfully")


@router.get("/me", response_model=UserEnvelope)
async def me(user: User = Depends(get_current_user)):
    """Return the authenticated user without credential fields."""
    return UserEnvelope(user=user.public_dict())


@router.put("/updatedetails", response_model=UserEnvelope)
async def update_details(body: UpdateDetailsRequest, user: User = Depends(get_current_user)):
    """Patch profile fields. Email, role and password are ignored here.

    Raises:
        400: If a field is invalid or does not apply to the account's role
    """
    updated = await get_runtime().auth.update_details(user, body.to_changes())
    return UserEnvelope(user=updated.public_dict())


@router.put(
    "/updatepassword",
    response_model=AuthResponse,
    dependencies=[Depends(sensitive_op_limit("updatepassword"))],
)
async def update_password(
    body: UpdatePasswordRequest, response: Response, user: User = Depends(get_current_user)
):
    """Change the password and re-issue the session token.

    Raises:
        400: If either password is missing or the new one is too short
        401: If the current password is incorrect
        429: If too many attempts were made
    """
    result = await get_runtime().auth.update_password(
        user, body.current_password, body.new_password
    )
    return _session_response(response, result)


@router.post(
    "/forgotpassword",
    response_model=MessageResponse,
    dependencies=[Depends(sensitive_op_limit("forgotpassword"))],
)
async def forgot_password(body: ForgotPasswordRequest):
    """Mail a one-hour reset link.

    Unknown addresses get the same response as registered ones unless
    FORGOT_PASSWORD_REVEALS_UNKNOWN_EMAIL is set.

    Raises:
        400: If no email was provided
        404: If the email is unknown and revealing unknown emails is enabled
        500: If the email could not be sent
    """
    sent = await get_runtime().auth.forgot_password(body.email)
    if sent:
        return MessageResponse(message="Email sent")
    return MessageResponse(message="If that email is registered, a reset link has been sent")


@router.put(
    "/resetpassword/{resettoken}",
    response_model=AuthResponse,
    dependencies=[Depends(sensitive_op_limit("resetpassword"))],
)
async def reset_password(resettoken: str, body: ResetPasswordRequest, response: Response):
    """Set a new password using the mailed one-time token.

    Raises:
        400: If the token is invalid, expired or already used
        429: If too many attempts were made from this client
    """
    result = await get_runtime().auth.reset_password(resettoken, body.new_password)
    return _session_response(response, result)


@router.get("/verify/{token}", response_model=MessageResponse)
async def verify_email(token: str):
    """Mark the email verified. Raises 400 for an invalid or expired token."""
    await get_runtime().auth.verify_email(token)
    return MessageResponse(message="Email verified successfully")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(user: User = Depends(get_current_user)):
    """Issue a fresh verification link.

    Raises:
        400: If the email is already verified
        500: If the email could not be sent
    """
    await get_runtime().auth.resend_verification(user)
    return MessageResponse(message="Verification email sent")


@router.put(
    "/deactivate",
    response_model=MessageResponse,
    dependencies=[Depends(sensitive_op_limit("deactivate"))],
)
async def deactivate(
    body: DeactivateRequest, response: Response, user: User = Depends(get_current_user)
):
    """Soft-disable the account after password confirmation and clear the cookie.

    Raises:
        400: If the password is missing
        401: If the password is incorrect
    """
    await get_runtime().auth.deactivate(user, body.password)
    clear_session_cookie(response, get_runtime().settings)
    return MessageResponse(message="Account deactivated successfully")


@router.post("/refresh", response_model=AuthResponse)
async def refresh(response: Response, user: User = Depends(get_current_user)):
    result = await get_runtime().auth.refresh(user)
    return _session_response(response, result)
