import re

from pydantic import BaseModel, EmailStr, Field, field_validator

from coaching.schemas.user import User

PASSWORD_MIN_LENGTH = 8


class TokenValidation(BaseModel):
    token: str = Field(..., min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)

    class Config:
        populate_by_name = True


class TokenValidationResponse(BaseModel):
    valid: bool = True
    email: str
    name: str | None = None


class AccountActivation(TokenValidation):
    password: str
    name: str | None = Field(None, max_length=255)
    captcha_token: str | None = Field(None, alias="h-captcha-response")

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if len(value) < PASSWORD_MIN_LENGTH:
            raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        if not re.search(r"[a-z]", value):
            raise ValueError("Password must contain a lowercase letter")
        if not re.search(r"[A-Z]", value):
            raise ValueError("Password must contain an uppercase letter")
        if not re.search(r"\d", value):
            raise ValueError("Password must contain a digit")
        return value


class ActivationResponse(BaseModel):
    success: bool = True
    message: str = "Account activated"
    user: User


class ResendActivation(BaseModel):
    email: EmailStr
    captcha_token: str | None = Field(None, alias="h-captcha-response")

    class Config:
        populate_by_name = True


class ResendActivationResponse(BaseModel):
    success: bool
    message: str


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User
