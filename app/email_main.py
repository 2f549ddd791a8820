from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from app.core.config import settings
from app.services.email_service import EMAIL_KINDS, EmailDeliveryError, render_email, send_email_via_smtp

logger = logging.getLogger(__name__)

app = FastAPI(title=f"{settings.APP_NAME}-email-relay")


class RelayEmailIn(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    kind: str
    name: str = "User"
    code: Optional[str] = Field(default=None, max_length=12)
    purpose: Optional[str] = None


def _check_internal_token(received: str | None) -> None:
    expected = str(settings.INTERNAL_SERVICE_TOKEN or "").strip()
    if not expected:
        raise HTTPException(status_code=500, detail="INTERNAL_SERVICE_TOKEN is not configured")
    if str(received or "").strip() != expected:
        raise HTTPException(status_code=401, detail="Invalid internal token")


@app.get("/health")
def health():
    smtp_ready = bool(str(settings.SMTP_HOST or "").strip() and str(settings.SMTP_FROM or "").strip())
    return {"status": "ok" if smtp_ready else "degraded", "service": "email-relay", "kinds": list(EMAIL_KINDS)}


@app.post("/internal/send")
def internal_send(payload: RelayEmailIn, x_internal_token: str | None = Header(default=None)):
    _check_internal_token(x_internal_token)
    if payload.kind not in EMAIL_KINDS:
        raise HTTPException(status_code=422, detail=f"Unsupported email kind: {payload.kind}")
    try:
        subject, body = render_email(payload.kind, name=payload.name, code=payload.code, purpose=payload.purpose)
    except EmailDeliveryError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    try:
        result = send_email_via_smtp(email=payload.email, subject=subject, body=body)
    except EmailDeliveryError as exc:
        logger.warning("relay_send_failed kind=%s error=%s", payload.kind, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    logger.info("relay_sent kind=%s purpose=%s", payload.kind, payload.purpose or "-")
    return {"status": "sent", "kind": payload.kind, "result": result}
