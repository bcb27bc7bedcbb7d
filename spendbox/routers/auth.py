import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, status

from spendbox.core.config import settings
from spendbox.core.deps import get_current_user
from spendbox.core.errors import BadRequest, Conflict, InternalError, Unauthorized
from spendbox.core.rate_limit import auth_limiter
from spendbox.core.security import (
    create_access_token,
    generate_one_time_token,
    get_password_hash,
    hash_one_time_token,
    verify_password,
)
from spendbox.db import dynamo
from spendbox.models.common import Envelope, utcnow
from spendbox.models.user import (
    AuthResponse,
    ForgotPasswordRequest,
    PasswordChange,
    ProfileUpdate,
    ResetPasswordRequest,
    UserCreate,
    UserInDB,
    UserLogin,
    UserPublic,
    VerifyEmailRequest,
    normalize_email,
)
from spendbox.utils.email_service import send_password_reset_email, send_verification_email

router = APIRouter()
logger = logging.getLogger(__name__)

RESET_SENT_MESSAGE = "If an account with that email exists, a password reset link has been sent"


def _save_user_updates(user: UserInDB, updates: dict) -> UserInDB:
    updates["updated_at"] = utcnow().isoformat()
    updated = dynamo.update_user(user.user_id, updates)
    if not updated:
        raise InternalError("Failed to update user")
    return UserInDB.model_validate(updated)


def apply_profile_update(user: UserInDB, profile: ProfileUpdate) -> UserInDB:
    updates = {}
    if profile.first_name is not None:
        updates["first_name"] = profile.first_name.strip()
    if profile.last_name is not None:
        updates["last_name"] = profile.last_name.strip()
    if profile.preferences is not None:
        updates["preferences"] = user.preferences.merged(profile.preferences).model_dump(mode="json")
    if not updates:
        return user
    return _save_user_updates(user, updates)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_limiter)],
)
def register(payload: UserCreate):
    email = normalize_email(payload.email)
    if dynamo.get_user_by_email(email):
        raise Conflict("User already exists")

    verification_token = generate_one_time_token()
    user = UserInDB(
        email=email,
        password_hash=get_password_hash(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        email_verification_token=hash_one_time_token(verification_token),
    )

    # Raises Conflict when a concurrent registration took the email first
    if not dynamo.create_user(user.model_dump(mode="json")):
        raise InternalError("Error saving user")

    send_verification_email(user.email, user.first_name, verification_token)
    logger.info(f"Registered user {user.user_id}")
    return AuthResponse(token=create_access_token({"sub": user.user_id}), user=UserPublic.from_db(user))


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(auth_limiter)])
def login(payload: UserLogin):
    item = dynamo.get_user_by_email(normalize_email(payload.email))
    # Same answer for an unknown email and a wrong password
    if not item or not verify_password(payload.password, item.get("password_hash")):
        logger.warning("Failed login attempt")
        raise Unauthorized("Invalid credentials")

    user = UserInDB.model_validate(item)
    updated = dynamo.update_user(user.user_id, {"last_login": utcnow().isoformat()})
    if updated:
        user = UserInDB.model_validate(updated)

    logger.info(f"Login successful for user {user.user_id}")
    return AuthResponse(token=create_access_token({"sub": user.user_id}), user=UserPublic.from_db(user))


@router.get("/me", response_model=Envelope[UserPublic])
def me(user: UserInDB = Depends(get_current_user)):
    return Envelope(data=UserPublic.from_db(user))


@router.put("/profile", response_model=Envelope[UserPublic])
def update_profile(profile: ProfileUpdate, user: UserInDB = Depends(get_current_user)):
    updated = apply_profile_update(user, profile)
    return Envelope(data=UserPublic.from_db(updated), message="Profile updated successfully")


@router.put("/password", response_model=Envelope)
def change_password(payload: PasswordChange, user: UserInDB = Depends(get_current_user)):
    if not verify_password(payload.current_password, user.password_hash):
        raise BadRequest("Current password is incorrect")
    _save_user_updates(user, {"password_hash": get_password_hash(payload.new_password)})
    logger.info(f"Password changed for user {user.user_id}")
    return Envelope(message="Password updated successfully")


@router.post("/forgot-password", response_model=Envelope, dependencies=[Depends(auth_limiter)])
def forgot_password(payload: ForgotPasswordRequest):
    item = dynamo.get_user_by_email(normalize_email(payload.email))
    if item:
        user = UserInDB.model_validate(item)
        token = generate_one_time_token()
        expires = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        _save_user_updates(
            user,
            {"password_reset_token": hash_one_time_token(token), "password_reset_expires": expires.isoformat()},
        )
        send_password_reset_email(user.email, token)
        logger.info(f"Password reset requested for user {user.user_id}")
    return Envelope(message=RESET_SENT_MESSAGE)


@router.post("/reset-password", response_model=Envelope)
def reset_password(payload: ResetPasswordRequest):
    item = dynamo.find_user_by_attribute("password_reset_token", hash_one_time_token(payload.token))
    user = UserInDB.model_validate(item) if item else None
    if not user or not user.password_reset_expires or user.password_reset_expires <= utcnow():
        raise BadRequest("Invalid or expired reset token")

    _save_user_updates(
        user,
        {
            "password_hash": get_password_hash(payload.password),
            "password_reset_token": None,
            "password_reset_expires": None,
        },
    )
    logger.info(f"Password reset completed for user {user.user_id}")
    return Envelope(message="Password reset successful")


@router.post("/verify-email", response_model=Envelope)
def verify_email(payload: VerifyEmailRequest):
    item = dynamo.find_user_by_attribute("email_verification_token", hash_one_time_token(payload.token))
    if not item:
        raise BadRequest("Invalid verification token")
    _save_user_updates(
        UserInDB.model_validate(item),
        {"is_email_verified": True, "email_verification_token": None},
    )
    return Envelope(message="Email verified successfully")


@router.post("/resend-verification", response_model=Envelope)
def resend_verification(user: UserInDB = Depends(get_current_user)):
    if user.is_email_verified:
        raise BadRequest("Email is already verified")
    token = generate_one_time_token()
    _save_user_updates(user, {"email_verification_token": hash_one_time_token(token)})
    send_verification_email(user.email, user.first_name, token)
    return Envelope(message="Verification email sent")
