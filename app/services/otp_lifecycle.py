from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from app.models.common import as_utc, utcnow
from app.models.otp_record import OtpPurpose, OtpRecord
from app.services.email_service import DeliveryFailed, NotificationSink
from app.services.otp_generator import generate_code
from app.services.otp_store import OtpStore

logger = logging.getLogger(__name__)

DEFAULT_OTP_TTL = timedelta(minutes=5)


class OtpError(Exception):
    pass


class InvalidOrExpiredCode(OtpError):
    def __init__(self, message: str = "Invalid or expired OTP"):
        super().__init__(message)


class CodeExpired(OtpError):
    def __init__(self, message: str = "OTP has expired. Please request a new one."):
        super().__init__(message)


def normalize_purpose(raw: str | OtpPurpose | None) -> str:
    value = raw.value if isinstance(raw, OtpPurpose) else str(raw or "").strip().lower()
    try:
        return OtpPurpose(value).value
    except ValueError as exc:
        raise ValueError(f"Unknown OTP purpose: {raw}") from exc


class OtpLifecycleManager:
    """Issues, verifies and retires one-time passcodes.

    Each ``(user_id, purpose)`` slot holds at most one live record. Issuing
    wipes the slot before inserting, and a successful or expired verification
    deletes the record, so a code can never be verified twice. Expiry is
    detected lazily at verify time; ``cleanup_expired`` is an optional sweep.

    The store is the only shared state. Concurrent verifies of one code are
    settled by the delete: whoever removes the row wins, the rest are
    rejected.
    """

    def __init__(
        self,
        store: OtpStore,
        sink: NotificationSink,
        *,
        code_generator: Callable[[], str] = generate_code,
        clock: Callable[[], datetime] = utcnow,
        ttl: timedelta = DEFAULT_OTP_TTL,
    ):
        self.store = store
        self.sink = sink
        self.code_generator = code_generator
        self.clock = clock
        self.ttl = ttl

    def issue(self, user_id: uuid.UUID, email: str, display_name: str, purpose: str | OtpPurpose) -> OtpRecord:
        """Create a fresh code for the slot and deliver it.

        Raises ``StorageUnavailable`` before anything is sent if the slot
        cannot be cleared or the record cannot be stored. Raises
        ``DeliveryFailed`` after the record is stored if the sink fails; the
        record stays until the next issue replaces it.
        """
        purpose_value = normalize_purpose(purpose)
        code = self.code_generator()
        now = self.clock()

        replaced = self.store.delete_many(user_id=user_id, purpose=purpose_value)
        record = self.store.create(
            OtpRecord(
                id=uuid.uuid4(),
                user_id=user_id,
                email=email,
                code=code,
                purpose=purpose_value,
                expires_at=now + self.ttl,
                consumed=False,
                created_at=now,
            )
        )
        logger.info(
            "otp_issued user_id=%s purpose=%s record_id=%s replaced=%s",
            user_id,
            purpose_value,
            record.id,
            replaced,
        )

        try:
            self.sink.deliver(email, code, display_name, purpose_value)
        except DeliveryFailed:
            logger.warning("otp_delivery_failed user_id=%s purpose=%s", user_id, purpose_value, exc_info=True)
            raise
        return record

    def resend(self, user_id: uuid.UUID, email: str, display_name: str, purpose: str | OtpPurpose) -> OtpRecord:
        return self.issue(user_id, email, display_name, purpose)

    def verify(self, user_id: uuid.UUID, code: str, purpose: str | OtpPurpose) -> bool:
        purpose_value = normalize_purpose(purpose)
        submitted = str(code or "").strip()
        if not submitted:
            raise InvalidOrExpiredCode()

        record = self.store.find_one(user_id=user_id, code=submitted, purpose=purpose_value)
        if record is None:
            logger.info("otp_verify_rejected user_id=%s purpose=%s reason=not_found", user_id, purpose_value)
            raise InvalidOrExpiredCode()

        if self.clock() > as_utc(record.expires_at):
            self.store.delete_one(record.id)
            logger.info("otp_verify_rejected user_id=%s purpose=%s reason=expired", user_id, purpose_value)
            raise CodeExpired()

        # Only the caller whose delete removed the row wins a concurrent verify.
        if self.store.delete_one(record.id) == 0:
            logger.info("otp_verify_rejected user_id=%s purpose=%s reason=already_consumed", user_id, purpose_value)
            raise InvalidOrExpiredCode()
        logger.info("otp_verified user_id=%s purpose=%s", user_id, purpose_value)
        return True

    def has_pending(self, user_id: uuid.UUID, purpose: str | OtpPurpose) -> bool:
        return self.get_expiry_time(user_id, purpose) is not None

    def get_expiry_time(self, user_id: uuid.UUID, purpose: str | OtpPurpose) -> datetime | None:
        record = self.store.find_live(user_id=user_id, purpose=normalize_purpose(purpose), now=self.clock())
        return as_utc(record.expires_at) if record is not None else None

    def purge_user(self, user_id: uuid.UUID) -> int:
        deleted = self.store.delete_all_for_user(user_id)
        logger.info("otp_purged user_id=%s deleted=%s", user_id, deleted)
        return deleted

    def cleanup_expired(self) -> int:
        deleted = self.store.delete_expired(self.clock())
        logger.info("otp_cleanup deleted=%s", deleted)
        return deleted
