import os
import unittest
from unittest.mock import Mock, patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

import httpx

from app.core.config import settings
from app.services.email_service import (
    DeliveryFailed,
    EmailDeliveryError,
    EmailNotificationSink,
    email_provider_health,
    render_email,
    send_otp_email_message,
    send_welcome_email,
)


class EmailServiceTests(unittest.TestCase):
    def setUp(self):
        self._backup = {
            "EMAIL_PROVIDER": settings.EMAIL_PROVIDER,
            "EMAIL_SERVICE_URL": settings.EMAIL_SERVICE_URL,
            "INTERNAL_SERVICE_TOKEN": settings.INTERNAL_SERVICE_TOKEN,
            "OTP_DEV_MODE": settings.OTP_DEV_MODE,
            "SMTP_HOST": settings.SMTP_HOST,
            "SMTP_FROM": settings.SMTP_FROM,
        }

    def tearDown(self):
        for key, value in self._backup.items():
            setattr(settings, key, value)

    def _mock_client(self, *, status_code: int, payload: dict) -> Mock:
        mock_response = Mock()
        mock_response.status_code = status_code
        mock_response.content = b"{}"
        mock_response.text = str(payload)
        mock_response.json.return_value = payload

        mock_client = Mock()
        mock_client.__enter__ = Mock(return_value=mock_client)
        mock_client.__exit__ = Mock(return_value=False)
        mock_client.post.return_value = mock_response
        return mock_client

    def test_dev_mode_forces_mock_send(self):
        settings.EMAIL_PROVIDER = "smtp"
        settings.OTP_DEV_MODE = True
        payload = send_otp_email_message(email="User@Example.com", code="123456", name="Ann", purpose="email_verification")
        self.assertEqual(payload.get("provider"), "mock_email")
        self.assertTrue(bool(payload.get("dev_mode")))
        self.assertEqual(payload.get("debug_code"), "123456")

    def test_service_provider_posts_typed_message(self):
        settings.OTP_DEV_MODE = False
        settings.EMAIL_PROVIDER = "service"
        settings.EMAIL_SERVICE_URL = "http://email-service:8010/"
        settings.INTERNAL_SERVICE_TOKEN = "token"
        mock_client = self._mock_client(status_code=200, payload={"status": "sent"})

        with patch("app.services.email_service.httpx.Client", return_value=mock_client):
            payload = send_otp_email_message(email="user@example.com", code="654321", name="Ann", purpose="password_reset")

        self.assertEqual(payload.get("provider"), "email-service")
        self.assertTrue(bool(payload.get("sent")))
        url = mock_client.post.call_args.args[0]
        body = mock_client.post.call_args.kwargs["json"]
        headers = mock_client.post.call_args.kwargs["headers"]
        self.assertEqual(url, "http://email-service:8010/internal/send")
        self.assertEqual(headers["X-Internal-Token"], "token")
        self.assertEqual(
            body,
            {
                "email": "user@example.com",
                "kind": "otp",
                "name": "Ann",
                "code": "654321",
                "purpose": "password_reset",
            },
        )

    def test_render_email_by_kind(self):
        subject, body = render_email("otp", name="Ann", code="654321", purpose="password_reset")
        self.assertEqual(subject, "Reset your password")
        self.assertIn("654321", body)
        self.assertIn("Hi Ann", body)
        self.assertIn("5 minutes", body)

        subject, _ = render_email("otp", name="Ann", code="654321", purpose="email_verification")
        self.assertEqual(subject, "Verify your email")
        with self.assertRaises(EmailDeliveryError):
            render_email("otp", name="Ann")
        with self.assertRaises(EmailDeliveryError):
            render_email("newsletter", name="Ann")

    def test_service_error_response_raises_delivery_error(self):
        settings.OTP_DEV_MODE = False
        settings.EMAIL_PROVIDER = "service"
        settings.INTERNAL_SERVICE_TOKEN = "token"
        mock_client = self._mock_client(status_code=502, payload={"detail": "smtp down"})

        with patch("app.services.email_service.httpx.Client", return_value=mock_client):
            with self.assertRaises(EmailDeliveryError) as ctx:
                send_welcome_email(email="user@example.com", name="Ann")
        self.assertIn("smtp down", str(ctx.exception))

    def test_service_unreachable_raises_delivery_error(self):
        settings.OTP_DEV_MODE = False
        settings.EMAIL_PROVIDER = "service"
        settings.INTERNAL_SERVICE_TOKEN = "token"
        mock_client = Mock()
        mock_client.__enter__ = Mock(return_value=mock_client)
        mock_client.__exit__ = Mock(return_value=False)
        mock_client.post.side_effect = httpx.ConnectError("refused")

        with patch("app.services.email_service.httpx.Client", return_value=mock_client):
            with self.assertRaises(DeliveryFailed):
                send_otp_email_message(email="user@example.com", code="111111", name="Ann", purpose="email_verification")

    def test_unknown_provider_raises(self):
        settings.OTP_DEV_MODE = False
        settings.EMAIL_PROVIDER = "unknown"
        with self.assertRaises(EmailDeliveryError):
            send_otp_email_message(email="user@example.com", code="111111", name="Ann", purpose="email_verification")

    def test_blank_address_raises(self):
        settings.EMAIL_PROVIDER = "dummy"
        with self.assertRaises(EmailDeliveryError):
            send_otp_email_message(email="  ", code="111111", name="Ann", purpose="email_verification")

    def test_smtp_without_host_is_delivery_failure(self):
        settings.OTP_DEV_MODE = False
        settings.EMAIL_PROVIDER = "smtp"
        settings.SMTP_HOST = ""
        settings.SMTP_FROM = ""
        with self.assertRaises(EmailDeliveryError):
            EmailNotificationSink().deliver("user@example.com", "222222", "Ann", "email_verification")
        health = email_provider_health()
        self.assertEqual(health["status"], "degraded")
        self.assertFalse(health["can_send"])

    def test_sink_delivers_through_provider(self):
        settings.OTP_DEV_MODE = False
        settings.EMAIL_PROVIDER = "dummy"
        with patch("app.services.email_service.send_otp_email_message") as send:
            EmailNotificationSink().deliver("user@example.com", "333333", "Ann", "email_verification")
        send.assert_called_once_with(email="user@example.com", code="333333", name="Ann", purpose="email_verification")
