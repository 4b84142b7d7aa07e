from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class SignUpRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=6)
    username: str = Field(..., min_length=1, max_length=100)

    @field_validator("email", "username")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)


class AuthUser(BaseModel):
    id: UUID
    email: str | None = None
    username: str | None = None
    email_confirmed: bool = False


class SignUpResponse(BaseModel):
    user: AuthUser
    message: str


class SessionResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int | None = None
    user: AuthUser


class ConfirmationStatus(BaseModel):
    confirmed: bool
    email_confirmed_at: datetime | None = None
