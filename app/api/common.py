from __future__ import annotations

import hashlib
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, Request

from app.core.config import settings
from app.services.accounts import (
    AccountError,
    EmailAlreadyRegistered,
    EmailAlreadyVerified,
    InvalidCredentials,
    UserNotFound,
)
from app.services.email_service import DeliveryFailed
from app.services.otp_lifecycle import OtpError
from app.services.otp_store import StorageUnavailable
from app.services.rate_limit import get_rate_limiter
from app.services.verification_gate import VerificationRequired


@contextmanager
def domain_errors_as_http() -> Iterator[None]:
    try:
        yield
    except OtpError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except VerificationRequired as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except DeliveryFailed as exc:
        raise HTTPException(status_code=502, detail="Failed to send OTP email. Please try again.") from exc
    except StorageUnavailable as exc:
        raise HTTPException(status_code=503, detail="Service temporarily unavailable") from exc
    except UserNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except EmailAlreadyRegistered as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except (EmailAlreadyVerified, AccountError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def client_ip(request: Request) -> str:
    xff = str(request.headers.get("x-forwarded-for") or "").strip()
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    client = request.client
    return str(client.host if client else "unknown")


def _hash_key_part(value: str | None) -> str:
    raw = str(value or "").strip().lower()
    if not raw:
        return "-"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:20]


def rate_limit_or_429(action: str, *, request: Request, subject: str | None, limit: int) -> None:
    limiter = get_rate_limiter()
    window = int(max(settings.OTP_RATE_LIMIT_WINDOW_SECONDS, 1))
    if subject:
        key = f"otp:{action}:subject:{_hash_key_part(subject)}"
    else:
        key = f"otp:{action}:ip:{_hash_key_part(client_ip(request))}"
    result = limiter.hit(key, limit=int(max(limit, 1)), window_seconds=window)
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Too many OTP requests. Try again in {max(result.retry_after_seconds, 1)} seconds.",
        )
