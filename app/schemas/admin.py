from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from app.schemas.public import UserRead

class AdminLogin(BaseModel):
    email: str
    password: str

class AdminToken(BaseModel):
    access_token: str
    token_type: str = "Bearer"

class UserListOut(BaseModel):
    rows: list[UserRead]
    total: int

class AdminUserUpdateIn(BaseModel):
    # Extra keys pass through so the service can reject protected fields by name.
    model_config = ConfigDict(extra="allow")

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    role: Optional[str] = None
    is_email_verified: Optional[bool] = None
    is_phone_verified: Optional[bool] = None
    is_active: Optional[bool] = None
