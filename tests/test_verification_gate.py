import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from app.models.user import User
from app.services.verification_gate import VerificationRequired, has_verified_channel, require_verified_channel


class VerificationGateTests(unittest.TestCase):
    def _user(self, *, email_verified: bool, phone_verified: bool) -> User:
        return User(
            email="gate@example.com",
            password_hash="x",
            is_email_verified=email_verified,
            is_phone_verified=phone_verified,
        )

    def test_unverified_user_is_blocked(self):
        user = self._user(email_verified=False, phone_verified=False)
        self.assertFalse(has_verified_channel(user))
        with self.assertRaises(VerificationRequired) as ctx:
            require_verified_channel(user)
        self.assertIn("verify your email or phone", str(ctx.exception))

    def test_either_channel_is_enough(self):
        require_verified_channel(self._user(email_verified=True, phone_verified=False))
        require_verified_channel(self._user(email_verified=False, phone_verified=True))
        require_verified_channel(self._user(email_verified=True, phone_verified=True))
