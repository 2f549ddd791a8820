from celery import Celery
from app.core.config import settings

celery_app = Celery("account_service", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery_app.conf.beat_schedule = {
    "cleanup_expired_otps": {"task": "app.workers.tasks.security.cleanup_expired_otps", "schedule": 3600.0},
}
celery_app.conf.timezone = "UTC"
