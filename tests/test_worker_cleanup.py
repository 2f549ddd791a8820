import os
import unittest
import uuid
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from app.core.config import settings
from app.models.common import utcnow
from app.models.otp_record import OtpRecord
from app.models.user import User
from app.services.otp_store import InMemoryOtpStore
from app.workers.celery_app import celery_app
from app.workers.tasks import security as security_task


class OtpCleanupTaskTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        User.__table__.create(bind=cls.engine)
        OtpRecord.__table__.create(bind=cls.engine)
        cls._old_session_local = security_task.SessionLocal
        security_task.SessionLocal = cls.SessionLocal

    @classmethod
    def tearDownClass(cls):
        security_task.SessionLocal = cls._old_session_local
        OtpRecord.__table__.drop(bind=cls.engine)
        User.__table__.drop(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            db.execute(delete(OtpRecord))
            db.commit()

    def _add(self, *, expires_in: timedelta, code: str) -> None:
        now = utcnow()
        with self.SessionLocal() as db:
            db.add(
                OtpRecord(
                    user_id=uuid.uuid4(),
                    email="sweep@example.com",
                    code=code,
                    purpose="email_verification",
                    expires_at=now + expires_in,
                    consumed=False,
                    created_at=now,
                )
            )
            db.commit()

    def test_cleanup_removes_only_expired_records(self):
        self._add(expires_in=timedelta(minutes=-10), code="100001")
        self._add(expires_in=timedelta(minutes=-1), code="100002")
        self._add(expires_in=timedelta(minutes=4), code="100003")

        result = security_task.cleanup_expired_otps()

        self.assertEqual(result, {"deleted": 2})
        with self.SessionLocal() as db:
            remaining = [row.code for row in db.query(OtpRecord).all()]
        self.assertEqual(remaining, ["100003"])

    def test_task_is_scheduled_hourly(self):
        schedule = celery_app.conf.beat_schedule["cleanup_expired_otps"]
        self.assertEqual(schedule["task"], "app.workers.tasks.security.cleanup_expired_otps")
        self.assertEqual(schedule["schedule"], 3600.0)

    def test_cleanup_uses_configured_store_backend(self):
        self._add(expires_in=timedelta(minutes=-10), code="100004")
        store = InMemoryOtpStore()
        backend = settings.OTP_STORE_BACKEND
        settings.OTP_STORE_BACKEND = "memory"
        try:
            with patch.object(security_task, "build_otp_store", return_value=store) as build:
                result = security_task.cleanup_expired_otps()
        finally:
            settings.OTP_STORE_BACKEND = backend

        build.assert_called_once_with("memory", self.SessionLocal)
        self.assertEqual(result, {"deleted": 0})
        with self.SessionLocal() as db:
            self.assertEqual(db.query(OtpRecord).count(), 1)
