from pydantic import BaseModel, EmailStr, Field

from coaching.services.webhook_events import DEFAULT_DOCUMENT_VERSION


class CheckoutSessionCreate(BaseModel):
    plan_id: str = Field(..., alias="planId", min_length=1)
    email: EmailStr
    accepted_tos: bool = Field(False, alias="acceptedTos")
    accepted_privacy: bool = Field(False, alias="acceptedPrivacy")
    tos_version: str = Field(DEFAULT_DOCUMENT_VERSION, alias="tosVersion", max_length=20)
    privacy_version: str = Field(DEFAULT_DOCUMENT_VERSION, alias="privacyVersion", max_length=20)
    marketing_opt_in: bool = Field(False, alias="marketingOptIn")
    captcha_token: str | None = Field(None, alias="h-captcha-response")

    class Config:
        populate_by_name = True


class CheckoutSessionResponse(BaseModel):
    url: str
