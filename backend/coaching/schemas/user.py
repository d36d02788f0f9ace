from pydantic import BaseModel
from datetime import datetime

from coaching.models import UserRole


class User(BaseModel):
    id: str
    email: str
    name: str | None = None
    role: UserRole
    email_verified: bool
    activated_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
