from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.security import hash_password, verify_password
from app.models.otp_record import OtpPurpose
from app.models.user import ROLE_ADMIN, ROLE_USER, User
from app.services.email_service import DeliveryFailed, send_password_changed_email, send_welcome_email
from app.services.otp_lifecycle import InvalidOrExpiredCode, OtpLifecycleManager
from app.services.verification_gate import require_verified_channel

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "phone")
ADMIN_EDITABLE_FIELDS = PROFILE_FIELDS + ("role", "is_email_verified", "is_phone_verified", "is_active")
PROTECTED_FIELDS = ("password", "password_hash", "email", "refresh_token")
ROLES = (ROLE_USER, ROLE_ADMIN)


class AccountError(Exception):
    pass


class UserNotFound(AccountError):
    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class EmailAlreadyRegistered(AccountError):
    def __init__(self, message: str = "User with this email already exists"):
        super().__init__(message)


class EmailAlreadyVerified(AccountError):
    def __init__(self, message: str = "Email is already verified"):
        super().__init__(message)


class InvalidCredentials(AccountError):
    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class AccountDeactivated(AccountError):
    def __init__(self, message: str = "Account is deactivated. Please contact support."):
        super().__init__(message)


def normalize_email(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.query(User).filter(func.lower(User.email) == normalized).first()


def get_user_by_id(db: Session, user_id: uuid.UUID) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def resolve_user(db: Session, *, user_id: uuid.UUID | None = None, email: str | None = None) -> User:
    if user_id is not None:
        user = get_user_by_id(db, user_id)
    elif normalize_email(email):
        user = get_user_by_email(db, str(email))
    else:
        raise AccountError("Either an access token or email is required")
    if user is None:
        raise UserNotFound()
    return user


def _send_otp_best_effort(otp: OtpLifecycleManager, user: User, purpose: OtpPurpose) -> bool:
    try:
        otp.issue(user.id, user.email, user.display_name, purpose)
    except DeliveryFailed:
        logger.warning("otp_send_failed user_id=%s purpose=%s", user.id, purpose.value)
        return False
    return True


def register_user(
    db: Session,
    otp: OtpLifecycleManager,
    *,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> tuple[User, bool]:
    normalized = normalize_email(email)
    if get_user_by_email(db, normalized) is not None:
        raise EmailAlreadyRegistered()

    user = User(
        email=normalized,
        password_hash=hash_password(password),
        first_name=(first_name or "").strip() or None,
        last_name=(last_name or "").strip() or None,
        phone=(phone or "").strip() or None,
        role=ROLE_USER,
        is_email_verified=False,
        is_phone_verified=False,
        is_active=True,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise EmailAlreadyRegistered() from exc
    db.refresh(user)
    logger.info("user_registered user_id=%s", user.id)

    # Registration stands even when the verification email cannot be sent.
    otp_sent = _send_otp_best_effort(otp, user, OtpPurpose.EMAIL_VERIFICATION)
    return user, otp_sent


def authenticate(db: Session, *, email: str, password: str) -> User:
    user = get_user_by_email(db, email)
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        raise InvalidCredentials()
    return user


def verify_email(
    db: Session,
    otp: OtpLifecycleManager,
    *,
    code: str,
    user_id: uuid.UUID | None = None,
    email: str | None = None,
) -> User:
    user = resolve_user(db, user_id=user_id, email=email)
    if user.is_email_verified:
        raise EmailAlreadyVerified()

    otp.verify(user.id, code, OtpPurpose.EMAIL_VERIFICATION)

    user.is_email_verified = True
    db.add(user)
    db.commit()
    db.refresh(user)

    try:
        send_welcome_email(email=user.email, name=user.display_name)
    except DeliveryFailed:
        logger.warning("welcome_email_failed user_id=%s", user.id)
    return user


def resend_email_otp(
    db: Session,
    otp: OtpLifecycleManager,
    *,
    user_id: uuid.UUID | None = None,
    email: str | None = None,
) -> User:
    user = resolve_user(db, user_id=user_id, email=email)
    if user.is_email_verified:
        raise EmailAlreadyVerified()
    otp.resend(user.id, user.email, user.display_name, OtpPurpose.EMAIL_VERIFICATION)
    return user


def request_password_reset(db: Session, otp: OtpLifecycleManager, *, email: str) -> None:
    user = get_user_by_email(db, email)
    if user is None or not user.is_active:
        # Same response either way; nothing tells the caller whether the account exists.
        logger.info("password_reset_requested_for_unknown_email")
        return
    _send_otp_best_effort(otp, user, OtpPurpose.PASSWORD_RESET)


def reset_password(db: Session, otp: OtpLifecycleManager, *, email: str, code: str, new_password: str) -> User:
    user = get_user_by_email(db, email)
    if user is None:
        # Unknown emails get the same answer as a wrong code.
        raise InvalidOrExpiredCode()
    if not user.is_active:
        raise AccountDeactivated()

    otp.verify(user.id, code, OtpPurpose.PASSWORD_RESET)

    user.password_hash = hash_password(new_password)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("password_reset user_id=%s", user.id)

    try:
        send_password_changed_email(email=user.email, name=user.display_name)
    except DeliveryFailed:
        logger.warning("password_changed_email_failed user_id=%s", user.id)
    return user


def update_profile(db: Session, user: User, changes: dict[str, Any]) -> User:
    require_verified_channel(user)
    for field in PROFILE_FIELDS:
        if field in changes:
            value = changes[field]
            setattr(user, field, (str(value).strip() or None) if value is not None else None)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def change_password(db: Session, user: User, *, current_password: str, new_password: str) -> User:
    require_verified_channel(user)
    if not verify_password(current_password, user.password_hash):
        raise InvalidCredentials("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.add(user)
    db.commit()
    db.refresh(user)

    try:
        send_password_changed_email(email=user.email, name=user.display_name)
    except DeliveryFailed:
        logger.warning("password_changed_email_failed user_id=%s", user.id)
    return user


def delete_account(db: Session, otp: OtpLifecycleManager, user: User) -> None:
    user_id = user.id
    otp.purge_user(user_id)
    db.delete(user)
    db.commit()
    logger.info("user_deleted user_id=%s", user_id)


def mark_phone_verified(db: Session, user_id: uuid.UUID) -> User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFound()
    user.is_phone_verified = True
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def list_users(db: Session, *, limit: int = 50, offset: int = 0) -> tuple[list[User], int]:
    query = db.query(User)
    total = int(query.count())
    rows = query.order_by(User.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total


def update_user(db: Session, user_id: uuid.UUID, changes: dict[str, Any]) -> User:
    """Admin edit of a user record.

    Credentials and the login email cannot be changed here; unknown fields
    are rejected rather than ignored.
    """
    if any(field in PROTECTED_FIELDS for field in changes):
        raise AccountError("Cannot update password, email, or refresh token through this endpoint")
    unknown = sorted(field for field in changes if field not in ADMIN_EDITABLE_FIELDS)
    if unknown:
        raise AccountError(f"Unknown fields: {', '.join(unknown)}")
    if "role" in changes and changes["role"] not in ROLES:
        raise AccountError(f"Unknown role: {changes['role']}")

    user = get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFound()
    for field, value in changes.items():
        if field in PROFILE_FIELDS:
            value = (str(value).strip() or None) if value is not None else None
        elif value is None:
            raise AccountError(f"{field} cannot be null")
        setattr(user, field, value)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_updated user_id=%s fields=%s", user.id, ",".join(sorted(changes)))
    return user


def deactivate_user(db: Session, otp: OtpLifecycleManager, user_id: uuid.UUID) -> User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFound()
    user.is_active = False
    db.add(user)
    db.commit()
    db.refresh(user)
    # A deactivated account keeps no pending codes.
    otp.purge_user(user.id)
    logger.info("user_deactivated user_id=%s", user.id)
    return user
