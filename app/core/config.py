from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "account-service"

    JWT_SECRET: str = "change_me_jwt"
    JWT_TTL_MINUTES: int = 60 * 24

    CORS_ORIGINS: str = "http://localhost:3000"

    DATABASE_URL: str
    REDIS_URL: str

    OTP_TTL_MINUTES: int = 5
    OTP_STORE_BACKEND: str = "sql"  # sql | memory
    OTP_DEV_MODE: bool = False
    OTP_RATE_LIMIT_WINDOW_SECONDS: int = 60
    OTP_RESEND_RATE_LIMIT: int = 1
    OTP_VERIFY_RATE_LIMIT: int = 10

    EMAIL_PROVIDER: str = "dummy"  # dummy | smtp | service
    EMAIL_SERVICE_URL: str = "http://email-service:8010"
    INTERNAL_SERVICE_TOKEN: str = "change_me_internal_service_token"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    OTP_EMAIL_SUBJECT_TEMPLATE: str = "Verify your email"
    OTP_EMAIL_TEMPLATE: str = (
        "Hi {name},\n\nYour verification code is: {code}\n\n"
        "This code will expire in {ttl_minutes} minutes.\n\n"
        "If you didn't request this, please ignore this email."
    )
    PASSWORD_RESET_EMAIL_SUBJECT_TEMPLATE: str = "Reset your password"
    WELCOME_EMAIL_SUBJECT: str = "Welcome aboard"
    WELCOME_EMAIL_TEMPLATE: str = "Hi {name},\n\nYour email has been verified. Welcome!"
    PASSWORD_CHANGED_EMAIL_SUBJECT: str = "Your password was changed"
    PASSWORD_CHANGED_EMAIL_TEMPLATE: str = (
        "Hi {name},\n\nYour password was changed. If this wasn't you, contact support immediately."
    )

    ADMIN_BOOTSTRAP_ENABLED: bool = True
    ADMIN_BOOTSTRAP_EMAIL: str = "admin@example.com"
    ADMIN_BOOTSTRAP_PASSWORD: str = "admin123"
    ADMIN_BOOTSTRAP_FIRST_NAME: str = "Administrator"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
