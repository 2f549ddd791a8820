from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Protocol
import httpx

from app.core.config import settings


class DeliveryFailed(Exception):
    pass


class EmailDeliveryError(DeliveryFailed):
    pass


class NotificationSink(Protocol):
    def deliver(self, address: str, code: str, display_name: str, purpose: str) -> None:
        ...


logger = logging.getLogger("uvicorn.error")

MOCK_PROVIDERS = {"", "dummy", "mock", "console"}
SERVICE_PROVIDERS = {"service", "email_service"}

KIND_OTP = "otp"
KIND_WELCOME = "welcome"
KIND_PASSWORD_CHANGED = "password_changed"
EMAIL_KINDS = (KIND_OTP, KIND_WELCOME, KIND_PASSWORD_CHANGED)


def _otp_dev_mode_enabled() -> bool:
    return bool(getattr(settings, "OTP_DEV_MODE", False))


def _provider() -> str:
    return str(settings.EMAIL_PROVIDER or "dummy").strip().lower()


def _normalize_email(value: str | None) -> str:
    return str(value or "").strip().lower()


def _render(template: str | None, fallback: str, **values: Any) -> str:
    text = str(template or "").strip() or fallback
    try:
        return text.format(**values)
    except (KeyError, IndexError, ValueError):
        return fallback.format(**values)


def _build_otp_subject(*, code: str, purpose: str) -> str:
    if purpose == "password_reset":
        return _render(settings.PASSWORD_RESET_EMAIL_SUBJECT_TEMPLATE, "Reset your password", code=code)
    return _render(settings.OTP_EMAIL_SUBJECT_TEMPLATE, "Verify your email", code=code)


def _build_otp_body(*, code: str, name: str) -> str:
    return _render(
        settings.OTP_EMAIL_TEMPLATE,
        "Your verification code is: {code}",
        code=code,
        name=name,
        ttl_minutes=settings.OTP_TTL_MINUTES,
    )


def _mock_send(*, email: str, subject: str, code: str | None = None) -> dict[str, Any]:
    line = f"[EMAIL MOCK] email={email} subject={subject!r}"
    if code is not None:
        line += f" code={code}"
    logger.warning(line)
    payload: dict[str, Any] = {
        "provider": "mock_email",
        "status": "accepted",
        "sent": False,
        "mocked": True,
        "dev_mode": bool(_otp_dev_mode_enabled()),
    }
    if code is not None:
        payload["debug_code"] = str(code)
    return payload


def _send_smtp(*, email: str, subject: str, body: str) -> dict[str, Any]:
    host = str(settings.SMTP_HOST or "").strip()
    port = int(settings.SMTP_PORT or 0)
    username = str(settings.SMTP_USER or "").strip()
    password = str(settings.SMTP_PASSWORD or "").strip()
    sender = str(settings.SMTP_FROM or "").strip()
    use_tls = bool(getattr(settings, "SMTP_USE_TLS", True))
    use_ssl = bool(getattr(settings, "SMTP_USE_SSL", False))

    if not host or not port or not sender:
        raise EmailDeliveryError("SMTP_HOST/SMTP_PORT/SMTP_FROM are not configured")
    if use_tls and use_ssl:
        raise EmailDeliveryError("SMTP_USE_TLS and SMTP_USE_SSL cannot both be enabled")

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        if use_ssl:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=15)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=15)
        with smtp as client:
            client.ehlo()
            if use_tls:
                client.starttls()
                client.ehlo()
            if username:
                client.login(username, password)
            client.send_message(msg)
    except (OSError, smtplib.SMTPException) as exc:
        raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc

    return {"provider": "smtp", "status": "accepted", "sent": True}


def send_email_via_smtp(*, email: str, subject: str, body: str) -> dict[str, Any]:
    normalized_email = _normalize_email(email)
    if not normalized_email:
        raise EmailDeliveryError("Invalid email address")
    return _send_smtp(email=normalized_email, subject=subject, body=body)


def _send_via_email_service(
    *,
    email: str,
    kind: str,
    name: str,
    code: str | None = None,
    purpose: str | None = None,
) -> dict[str, Any]:
    base_url = str(settings.EMAIL_SERVICE_URL or "").strip().rstrip("/")
    token = str(settings.INTERNAL_SERVICE_TOKEN or "").strip()
    if not base_url:
        raise EmailDeliveryError("EMAIL_SERVICE_URL is not configured")
    if not token:
        raise EmailDeliveryError("INTERNAL_SERVICE_TOKEN is not configured")
    try:
        with httpx.Client(timeout=15.0) as client:
            response = client.post(
                f"{base_url}/internal/send",
                headers={"X-Internal-Token": token, "Content-Type": "application/json"},
                json={"email": email, "kind": kind, "name": name, "code": code, "purpose": purpose},
            )
    except httpx.HTTPError as exc:
        raise EmailDeliveryError(f"email-service unreachable: {exc}") from exc
    payload: dict[str, Any] = {}
    try:
        payload = response.json() if response.content else {}
    except ValueError:
        payload = {}
    if response.status_code >= 400:
        detail = str(payload.get("detail") or payload.get("error") or response.text or response.status_code)
        raise EmailDeliveryError(f"email-service error: {detail}")
    return {"provider": "email-service", "status": "accepted", "sent": True, "response": payload}


def render_email(kind: str, *, name: str, code: str | None = None, purpose: str | None = None) -> tuple[str, str]:
    """Return ``(subject, body)`` for one of ``EMAIL_KINDS``.

    Both the app and the relay render through here.
    """
    if kind == KIND_OTP:
        if not code:
            raise EmailDeliveryError("OTP email requires a code")
        return _build_otp_subject(code=code, purpose=str(purpose or "")), _build_otp_body(code=code, name=name)
    if kind == KIND_WELCOME:
        body = _render(settings.WELCOME_EMAIL_TEMPLATE, "Welcome, {name}!", name=name)
        return str(settings.WELCOME_EMAIL_SUBJECT), body
    if kind == KIND_PASSWORD_CHANGED:
        body = _render(settings.PASSWORD_CHANGED_EMAIL_TEMPLATE, "Hi {name}, your password was changed.", name=name)
        return str(settings.PASSWORD_CHANGED_EMAIL_SUBJECT), body
    raise EmailDeliveryError(f"Unknown email kind: {kind}")


def send_email_message(
    *,
    email: str,
    kind: str,
    name: str,
    code: str | None = None,
    purpose: str | None = None,
) -> dict[str, Any]:
    normalized_email = _normalize_email(email)
    if not normalized_email:
        raise EmailDeliveryError("Invalid email address")

    provider = _provider()
    if provider in SERVICE_PROVIDERS and not _otp_dev_mode_enabled():
        return _send_via_email_service(email=normalized_email, kind=kind, name=name, code=code, purpose=purpose)

    subject, body = render_email(kind, name=name, code=code, purpose=purpose)
    if _otp_dev_mode_enabled() or provider in MOCK_PROVIDERS:
        return _mock_send(email=normalized_email, subject=subject, code=code)

    if provider == "smtp":
        return _send_smtp(email=normalized_email, subject=subject, body=body)

    raise EmailDeliveryError(f"Unknown EMAIL_PROVIDER: {provider}")


def send_otp_email_message(*, email: str, code: str, name: str, purpose: str) -> dict[str, Any]:
    return send_email_message(email=email, kind=KIND_OTP, name=name, code=code, purpose=purpose)


def send_welcome_email(*, email: str, name: str) -> dict[str, Any]:
    return send_email_message(email=email, kind=KIND_WELCOME, name=name)


def send_password_changed_email(*, email: str, name: str) -> dict[str, Any]:
    return send_email_message(email=email, kind=KIND_PASSWORD_CHANGED, name=name)


class EmailNotificationSink:
    def deliver(self, address: str, code: str, display_name: str, purpose: str) -> None:
        send_otp_email_message(email=address, code=code, name=display_name, purpose=purpose)


def email_provider_health() -> dict[str, Any]:
    provider = _provider()
    if _otp_dev_mode_enabled() or provider in MOCK_PROVIDERS:
        return {"provider": provider or "dummy", "status": "ok", "mode": "mock", "can_send": True, "issues": []}

    if provider in SERVICE_PROVIDERS:
        base_url = str(settings.EMAIL_SERVICE_URL or "").strip().rstrip("/")
        issues: list[str] = []
        if not base_url:
            issues.append("EMAIL_SERVICE_URL is not configured")
        if not str(settings.INTERNAL_SERVICE_TOKEN or "").strip():
            issues.append("INTERNAL_SERVICE_TOKEN is not configured")
        if not issues:
            try:
                with httpx.Client(timeout=5.0) as client:
                    response = client.get(f"{base_url}/health")
                if response.status_code >= 400:
                    issues.append(f"email-service unavailable: HTTP {response.status_code}")
            except httpx.HTTPError as exc:
                issues.append(f"email-service unavailable: {exc}")
        return {
            "provider": "email-service",
            "status": "degraded" if issues else "ok",
            "mode": "service",
            "can_send": not issues,
            "issues": issues,
        }

    if provider == "smtp":
        issues = []
        if not str(settings.SMTP_HOST or "").strip():
            issues.append("SMTP_HOST is not configured")
        if not str(settings.SMTP_FROM or "").strip():
            issues.append("SMTP_FROM is not configured")
        return {
            "provider": "smtp",
            "status": "degraded" if issues else "ok",
            "mode": "real",
            "can_send": not issues,
            "issues": issues,
        }

    return {
        "provider": provider,
        "status": "error",
        "mode": "unknown",
        "can_send": False,
        "issues": [f"Unknown EMAIL_PROVIDER: {provider}"],
    }
