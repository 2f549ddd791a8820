from __future__ import annotations

import logging

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.email_service import EmailNotificationSink
from app.services.otp_lifecycle import OtpLifecycleManager
from app.services.otp_store import build_otp_store
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.tasks.security.cleanup_expired_otps")
def cleanup_expired_otps():
    store = build_otp_store(settings.OTP_STORE_BACKEND, SessionLocal)
    manager = OtpLifecycleManager(store=store, sink=EmailNotificationSink())
    deleted = manager.cleanup_expired()
    logger.info("cleanup_expired_otps backend=%s deleted=%s", settings.OTP_STORE_BACKEND, deleted)
    return {"deleted": int(deleted)}
