from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.db.session import SessionLocal
from app.api.public.router import router as public_router
from app.api.admin.router import router as admin_router
from app.services.email_service import EmailNotificationSink, email_provider_health
from app.services.otp_lifecycle import OtpLifecycleManager
from app.services.otp_store import build_otp_store


def build_otp_manager() -> OtpLifecycleManager:
    return OtpLifecycleManager(
        store=build_otp_store(settings.OTP_STORE_BACKEND, SessionLocal),
        sink=EmailNotificationSink(),
        ttl=timedelta(minutes=settings.OTP_TTL_MINUTES),
    )


app = FastAPI(title=settings.APP_NAME, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.otp_manager = build_otp_manager()

app.include_router(public_router, prefix="/api/public")
app.include_router(admin_router, prefix="/api/admin")

@app.get("/", include_in_schema=False)
def landing():
    return JSONResponse({"service": settings.APP_NAME, "status": "ok"})

@app.get("/health")
def health():
    return {"status": "ok", "email": email_provider_health()}
