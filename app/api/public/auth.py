from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.common import domain_errors_as_http, rate_limit_or_429
from app.core.config import settings
from app.core.deps import get_current_user, get_optional_claims, get_otp_manager
from app.core.security import create_access_token
from app.db.session import get_db
from app.models.otp_record import OtpPurpose
from app.models.user import User
from app.schemas.public import (
    ForgotPasswordIn,
    LoginIn,
    MessageOut,
    RegisterIn,
    RegisterOut,
    ResendOtpIn,
    ResetPasswordIn,
    TokenOut,
    UserRead,
    VerifyEmailIn,
)
from app.services import accounts
from app.services.otp_lifecycle import OtpLifecycleManager

router = APIRouter()

FORGOT_PASSWORD_MESSAGE = (
    "If the email exists in our system, a password reset OTP has been sent. Please check your email."
)


def _token_for(user: User) -> TokenOut:
    token = create_access_token(subject=str(user.id), email=user.email, role=user.role)
    return TokenOut(access_token=token, user=UserRead.model_validate(user))


def _user_id_from_claims(claims: dict | None) -> UUID | None:
    if not claims:
        return None
    try:
        return UUID(str(claims.get("sub") or ""))
    except ValueError:
        return None


@router.post("/register", response_model=RegisterOut, status_code=201)
def register(
    payload: RegisterIn,
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    with domain_errors_as_http():
        user, otp_sent = accounts.register_user(
            db,
            otp,
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
        )
    return RegisterOut(user=UserRead.model_validate(user), otp_sent=otp_sent)


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    with domain_errors_as_http():
        user = accounts.authenticate(db, email=payload.email, password=payload.password)
    return _token_for(user)


@router.post("/verify-email", response_model=UserRead)
def verify_email(
    payload: VerifyEmailIn,
    request: Request,
    claims: dict | None = Depends(get_optional_claims),
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    user_id = _user_id_from_claims(claims)
    rate_limit_or_429(
        "verify",
        request=request,
        subject=str(user_id) if user_id else payload.email,
        limit=settings.OTP_VERIFY_RATE_LIMIT,
    )
    with domain_errors_as_http():
        user = accounts.verify_email(db, otp, code=payload.otp, user_id=user_id, email=payload.email)
    return UserRead.model_validate(user)


@router.post("/resend-otp", response_model=MessageOut)
def resend_otp(
    payload: ResendOtpIn,
    request: Request,
    claims: dict | None = Depends(get_optional_claims),
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    user_id = _user_id_from_claims(claims)
    rate_limit_or_429(
        "resend",
        request=request,
        subject=str(user_id) if user_id else payload.email,
        limit=settings.OTP_RESEND_RATE_LIMIT,
    )
    with domain_errors_as_http():
        accounts.resend_email_otp(db, otp, user_id=user_id, email=payload.email)
    return MessageOut(message="OTP has been sent to your email")


@router.get("/otp-status")
def otp_status(
    user: User = Depends(get_current_user),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    with domain_errors_as_http():
        expires_at = otp.get_expiry_time(user.id, OtpPurpose.EMAIL_VERIFICATION)
    return {
        "is_email_verified": bool(user.is_email_verified),
        "pending": expires_at is not None,
        "expires_at": expires_at.isoformat() if expires_at else None,
    }


@router.post("/forgot-password", response_model=MessageOut)
def forgot_password(
    payload: ForgotPasswordIn,
    request: Request,
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    rate_limit_or_429("reset", request=request, subject=payload.email, limit=settings.OTP_RESEND_RATE_LIMIT)
    with domain_errors_as_http():
        accounts.request_password_reset(db, otp, email=payload.email)
    return MessageOut(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageOut)
def reset_password(
    payload: ResetPasswordIn,
    request: Request,
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    rate_limit_or_429("verify", request=request, subject=payload.email, limit=settings.OTP_VERIFY_RATE_LIMIT)
    with domain_errors_as_http():
        accounts.reset_password(db, otp, email=payload.email, code=payload.otp, new_password=payload.new_password)
    return MessageOut(message="Password has been reset successfully")
