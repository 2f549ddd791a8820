from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hash_password, verify_password
from app.models.user import ROLE_ADMIN, User
from app.services.accounts import get_user_by_email, normalize_email


def ensure_bootstrap_admin_for_login(db: Session, email: str, password: str) -> User | None:
    """Create or repair the configured bootstrap admin when its credentials are used.

    The bootstrap account counts as email-verified so the verification gate
    never locks out the first administrator.
    """
    if not settings.ADMIN_BOOTSTRAP_ENABLED:
        return None

    normalized_email = normalize_email(email)
    bootstrap_email = normalize_email(settings.ADMIN_BOOTSTRAP_EMAIL)
    if not bootstrap_email or normalized_email != bootstrap_email:
        return None
    bootstrap_password = str(settings.ADMIN_BOOTSTRAP_PASSWORD or "")
    if str(password or "") != bootstrap_password:
        return None

    user = get_user_by_email(db, bootstrap_email)
    if user is None:
        user = User(
            role=ROLE_ADMIN,
            email=bootstrap_email,
            first_name=str(settings.ADMIN_BOOTSTRAP_FIRST_NAME or "Administrator"),
            password_hash=hash_password(bootstrap_password),
            is_email_verified=True,
            is_phone_verified=False,
            is_active=True,
        )
    else:
        user.role = ROLE_ADMIN
        user.is_active = True
        user.is_email_verified = True
        if not verify_password(bootstrap_password, str(user.password_hash or "")):
            user.password_hash = hash_password(bootstrap_password)
    db.add(user)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return get_user_by_email(db, bootstrap_email)
    db.refresh(user)
    return user
