from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from uuid import UUID

class RegisterIn(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)

class LoginIn(BaseModel):
    email: str
    password: str

class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    is_email_verified: bool
    is_phone_verified: bool
    is_active: bool
    created_at: Optional[datetime] = None

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    user: UserRead

class RegisterOut(BaseModel):
    user: UserRead
    otp_sent: bool

class VerifyEmailIn(BaseModel):
    otp: str = Field(min_length=1, max_length=12)
    email: Optional[str] = None

class ResendOtpIn(BaseModel):
    email: Optional[str] = None

class ForgotPasswordIn(BaseModel):
    email: str

class ResetPasswordIn(BaseModel):
    email: str
    otp: str = Field(min_length=1, max_length=12)
    new_password: str = Field(min_length=8, max_length=128)

class ProfileUpdateIn(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)

class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)

class MessageOut(BaseModel):
    message: str
