from __future__ import annotations

import logging
import uuid
from datetime import datetime
from threading import Lock
from typing import Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.common import as_utc
from app.models.otp_record import OtpRecord

_LOG = logging.getLogger("app.otp_store")


class StorageUnavailable(Exception):
    pass


class OtpStore(Protocol):
    def create(self, record: OtpRecord) -> OtpRecord:
        ...

    def find_one(self, *, user_id: uuid.UUID, code: str, purpose: str) -> OtpRecord | None:
        ...

    def find_live(self, *, user_id: uuid.UUID, purpose: str, now: datetime) -> OtpRecord | None:
        ...

    def delete_many(self, *, user_id: uuid.UUID, purpose: str) -> int:
        ...

    def delete_one(self, record_id: uuid.UUID) -> int:
        ...

    def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        ...

    def delete_expired(self, now: datetime) -> int:
        ...


class InMemoryOtpStore:
    def __init__(self):
        self._rows: dict[uuid.UUID, OtpRecord] = {}
        self._lock = Lock()

    def create(self, record: OtpRecord) -> OtpRecord:
        with self._lock:
            self._rows[record.id] = record
        return record

    def find_one(self, *, user_id: uuid.UUID, code: str, purpose: str) -> OtpRecord | None:
        with self._lock:
            for row in self._rows.values():
                if row.user_id == user_id and row.code == code and row.purpose == purpose and not row.consumed:
                    return row
        return None

    def find_live(self, *, user_id: uuid.UUID, purpose: str, now: datetime) -> OtpRecord | None:
        with self._lock:
            for row in self._rows.values():
                if row.user_id == user_id and row.purpose == purpose and not row.consumed and row.expires_at > now:
                    return row
        return None

    def delete_many(self, *, user_id: uuid.UUID, purpose: str) -> int:
        with self._lock:
            doomed = [
                key
                for key, row in self._rows.items()
                if row.user_id == user_id and row.purpose == purpose and not row.consumed
            ]
            for key in doomed:
                del self._rows[key]
        return len(doomed)

    def delete_one(self, record_id: uuid.UUID) -> int:
        with self._lock:
            return 1 if self._rows.pop(record_id, None) is not None else 0

    def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        with self._lock:
            doomed = [key for key, row in self._rows.items() if row.user_id == user_id]
            for key in doomed:
                del self._rows[key]
        return len(doomed)

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            doomed = [key for key, row in self._rows.items() if row.expires_at <= now]
            for key in doomed:
                del self._rows[key]
        return len(doomed)

    def count(self) -> int:
        with self._lock:
            return len(self._rows)


class SqlAlchemyOtpStore:
    """OTP persistence on the relational database.

    Every operation opens its own session and commits once, so each mutating
    step of the lifecycle is a single store operation. Returned rows are
    detached from the session and have ``expires_at`` normalized to UTC.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _detach(self, db: Session, row: OtpRecord | None) -> OtpRecord | None:
        if row is None:
            return None
        db.expunge(row)
        row.expires_at = as_utc(row.expires_at)
        return row

    def create(self, record: OtpRecord) -> OtpRecord:
        db = self.session_factory()
        try:
            db.add(record)
            db.commit()
            db.refresh(record)
            return self._detach(db, record)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageUnavailable(f"Failed to store OTP record: {exc}") from exc
        finally:
            db.close()

    def find_one(self, *, user_id: uuid.UUID, code: str, purpose: str) -> OtpRecord | None:
        db = self.session_factory()
        try:
            row = (
                db.query(OtpRecord)
                .filter(
                    OtpRecord.user_id == user_id,
                    OtpRecord.code == code,
                    OtpRecord.purpose == purpose,
                    OtpRecord.consumed.is_(False),
                )
                .order_by(OtpRecord.created_at.desc())
                .first()
            )
            return self._detach(db, row)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Failed to look up OTP record: {exc}") from exc
        finally:
            db.close()

    def find_live(self, *, user_id: uuid.UUID, purpose: str, now: datetime) -> OtpRecord | None:
        db = self.session_factory()
        try:
            row = (
                db.query(OtpRecord)
                .filter(
                    OtpRecord.user_id == user_id,
                    OtpRecord.purpose == purpose,
                    OtpRecord.consumed.is_(False),
                    OtpRecord.expires_at > now,
                )
                .order_by(OtpRecord.created_at.desc())
                .first()
            )
            return self._detach(db, row)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Failed to look up OTP record: {exc}") from exc
        finally:
            db.close()

    def _delete(self, *criteria) -> int:
        db = self.session_factory()
        try:
            deleted = db.query(OtpRecord).filter(*criteria).delete(synchronize_session=False)
            db.commit()
            return int(deleted or 0)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageUnavailable(f"Failed to delete OTP records: {exc}") from exc
        finally:
            db.close()

    def delete_many(self, *, user_id: uuid.UUID, purpose: str) -> int:
        return self._delete(
            OtpRecord.user_id == user_id,
            OtpRecord.purpose == purpose,
            OtpRecord.consumed.is_(False),
        )

    def delete_one(self, record_id: uuid.UUID) -> int:
        return self._delete(OtpRecord.id == record_id)

    def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        return self._delete(OtpRecord.user_id == user_id)

    def delete_expired(self, now: datetime) -> int:
        return self._delete(OtpRecord.expires_at <= now)


def build_otp_store(backend: str, session_factory: Callable[[], Session]) -> OtpStore:
    normalized = str(backend or "sql").strip().lower()
    if normalized == "memory":
        _LOG.warning("OTP_STORE_BACKEND=memory: OTP records are not persisted across restarts")
        return InMemoryOtpStore()
    if normalized == "sql":
        return SqlAlchemyOtpStore(session_factory)
    raise ValueError(f"Unknown OTP_STORE_BACKEND: {backend}")
