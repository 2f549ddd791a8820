from __future__ import annotations

from typing import Any


class VerificationRequired(Exception):
    def __init__(self, message: str = "Please verify your email or phone number to access this resource"):
        super().__init__(message)


def has_verified_channel(user: Any) -> bool:
    return bool(getattr(user, "is_email_verified", False)) or bool(getattr(user, "is_phone_verified", False))


def require_verified_channel(user: Any) -> None:
    if not has_verified_channel(user):
        raise VerificationRequired()
